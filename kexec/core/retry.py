import logging

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import ClusterUnreachable, EngineUnavailable, RegistryUnreachable

logger = logging.getLogger(__name__)

# Only transient infrastructure failures are retried; validation, build,
# auth and scheduler-rejection errors are deterministic.
TRANSIENT_ERRORS = (EngineUnavailable, RegistryUnreachable, ClusterUnreachable)


def transient_retry(attempts: int = 3, backoff: float = 0.5) -> Retrying:
    """
    Build a tenacity controller for transient infrastructure errors.

    Usage::

        for attempt in transient_retry(3, 0.5):
            with attempt:
                do_call()
    """
    return Retrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=backoff, min=backoff, max=backoff * 8),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
