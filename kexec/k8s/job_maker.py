from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError
from typing import Dict, Optional
import logging

from ..core.errors import DispatchFailed, NamespaceUnavailable, SchedulerRejected
from ..core.ids import new_time_based_id
from ..core.naming import image_reference, validate_function_name, validate_user_id
from .naming import Invocation

# Configure logging
logger = logging.getLogger(__name__)

JOB_NAME_LABEL = "job-name"
FUNCTION_LABEL = "kexec/function"
INVOCATION_LABEL = "kexec/invocation"
OWNER_LABEL = "kexec/owner"


def build_job_manifest(job_name: str, image: str, params: str, namespace: str,
                       params_env: str = "SERVERLESS_PARAMS",
                       labels: Optional[Dict[str, str]] = None,
                       ttl_seconds_after_finished: Optional[int] = None) -> client.V1Job:
    """
    Create the Job for one invocation.

    Single container running the function image, parameters passed verbatim
    through one environment variable, never restarted: an invocation either
    completes or fails.
    """
    job_labels = dict(labels or {})
    job_labels[JOB_NAME_LABEL] = job_name

    container = client.V1Container(
        name=job_name,
        image=image,
        image_pull_policy="Always",
        env=[
            client.V1EnvVar(name=params_env, value=params),
            client.V1EnvVar(name="PYTHONUNBUFFERED", value="1"),  # Ensure output is not buffered
        ]
    )

    template = client.V1PodTemplateSpec(
        metadata=client.V1ObjectMeta(name=job_name, labels=job_labels),
        spec=client.V1PodSpec(
            restart_policy="Never",
            containers=[container],
        )
    )

    job_spec = client.V1JobSpec(
        template=template,
        backoff_limit=0,
        ttl_seconds_after_finished=ttl_seconds_after_finished,
    )

    return client.V1Job(
        api_version="batch/v1",
        kind="Job",
        metadata=client.V1ObjectMeta(name=job_name, namespace=namespace, labels=job_labels),
        spec=job_spec
    )


class ExecutionDispatcher:
    """Submits one correlated Job per invocation into the tenant namespace."""

    def __init__(self, batch_v1: client.BatchV1Api, registry: str,
                 params_env: str = "SERVERLESS_PARAMS",
                 ttl_seconds_after_finished: Optional[int] = 600):
        self.batch_v1 = batch_v1
        self.registry = registry
        self.params_env = params_env
        self.ttl_seconds_after_finished = ttl_seconds_after_finished

    def dispatch(self, user_id: str, function_name: str, params: str, namespace: str) -> Invocation:
        """
        Submit the job and return as soon as the scheduler accepts it.
        Completion is awaited separately.
        """
        validate_user_id(user_id)
        validate_function_name(function_name)

        invocation = Invocation(
            function_name=function_name,
            invocation_id=new_time_based_id(),
            namespace=namespace,
        )
        job_name = invocation.job_name
        image = image_reference(self.registry, user_id, function_name)
        labels = {
            FUNCTION_LABEL: function_name,
            INVOCATION_LABEL: invocation.invocation_id,
            OWNER_LABEL: user_id,
        }
        job = build_job_manifest(
            job_name=job_name,
            image=image,
            params=params or "",
            namespace=namespace,
            params_env=self.params_env,
            labels=labels,
            ttl_seconds_after_finished=self.ttl_seconds_after_finished,
        )

        if params:
            logger.info(f"Calling function {function_name} with parameters {params}")
        else:
            logger.info(f"Calling function {function_name}")
        logger.info(f"Submitting job {job_name} ({image}) to namespace {namespace}")

        try:
            self.batch_v1.create_namespaced_job(namespace=namespace, body=job)
        except ApiException as e:
            logger.error(f"Failed to call function {function_name}: {e.status} {e.reason}")
            if e.status == 404:
                raise NamespaceUnavailable(namespace, job_name, invocation.invocation_id) from e
            if e.status in (400, 403, 409, 422):
                raise SchedulerRejected(job_name, e.body or e.reason or str(e), invocation.invocation_id) from e
            raise DispatchFailed(job_name, e, invocation.invocation_id) from e
        except TransportError as e:
            logger.error(f"Failed to call function {function_name}: {e}")
            raise DispatchFailed(job_name, e, invocation.invocation_id) from e

        logger.info(f"Job {job_name} accepted")
        return invocation
