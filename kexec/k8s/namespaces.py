import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Dict

from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError

from ..core.errors import ClusterUnreachable, NamespaceFailure, PermissionDenied
from ..core.retry import transient_retry

logger = logging.getLogger(__name__)

OWNER_LABEL = "kexec/owner"
MAX_NAMESPACE_LENGTH = 63
NAMESPACE_DIGEST_LENGTH = 8


@dataclass(frozen=True)
class NamespaceHandle:
    name: str
    owner: str
    created: bool = False
    labels: Dict[str, str] = field(default_factory=dict)


def namespace_for_user(user_id: str, suffix: str = "serverless") -> str:
    """
    Stable namespace name for a user: separators canonicalized to '-' and a
    fixed suffix appended, e.g. ``john_doe`` -> ``john-doe-serverless``.

    Ids too long for a 63 character name are truncated and tagged with a
    short digest of the full id, so two long ids sharing a prefix still get
    distinct namespaces.
    """
    base = re.sub(r"[^a-z0-9]+", "-", user_id.lower()).strip("-")
    tail = f"-{suffix}" if suffix else ""
    if len(base) + len(tail) > MAX_NAMESPACE_LENGTH:
        digest = hashlib.sha1(user_id.encode("utf-8")).hexdigest()[:NAMESPACE_DIGEST_LENGTH]
        keep = MAX_NAMESPACE_LENGTH - len(tail) - len(digest) - 1
        base = f"{base[:keep].rstrip('-')}-{digest}"
    return f"{base}{tail}"


def _owner_label_value(user_id: str) -> str:
    # Label values allow [A-Za-z0-9_.-], at most 63 chars
    return re.sub(r"[^A-Za-z0-9_.-]", "-", user_id)[:63].strip("-_.")


class NamespaceManager:
    """Get-or-create of the per-user namespace; never deletes."""

    def __init__(self, core_v1: client.CoreV1Api, suffix: str = "serverless",
                 retry_attempts: int = 3, retry_backoff: float = 0.5):
        self.core_v1 = core_v1
        self.suffix = suffix
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    def ensure_namespace(self, user_id: str) -> NamespaceHandle:
        name = namespace_for_user(user_id, self.suffix)
        for attempt in transient_retry(self.retry_attempts, self.retry_backoff):
            with attempt:
                return self._ensure(name, user_id)

    def _ensure(self, name: str, user_id: str) -> NamespaceHandle:
        existing = self._read(name)
        if existing is not None:
            logger.debug(f"Namespace {name} already exists")
            return self._handle(name, existing, user_id, created=False)

        labels = {"name": name, OWNER_LABEL: _owner_label_value(user_id)}
        body = client.V1Namespace(
            api_version="v1",
            kind="Namespace",
            metadata=client.V1ObjectMeta(name=name, labels=labels),
        )
        try:
            created = self.core_v1.create_namespace(body=body)
            logger.info(f"Created namespace {name} for user {user_id}")
            return self._handle(name, created, user_id, created=True)
        except ApiException as e:
            if e.status == 409:
                # Another request won the creation race; that is success
                logger.warning(f"Namespace {name} created concurrently, using existing one")
                existing = self._read(name)
                if existing is None:
                    return NamespaceHandle(name=name, owner=user_id, labels=labels)
                return self._handle(name, existing, user_id, created=False)
            raise self._translate(e, name) from e
        except TransportError as e:
            raise ClusterUnreachable(e, namespace=name) from e

    def _read(self, name: str):
        try:
            return self.core_v1.read_namespace(name=name)
        except ApiException as e:
            if e.status == 404:
                return None
            raise self._translate(e, name) from e
        except TransportError as e:
            raise ClusterUnreachable(e, namespace=name) from e

    @staticmethod
    def _translate(e: ApiException, name: str) -> NamespaceFailure:
        if e.status in (401, 403):
            logger.error(f"Permission denied for namespace {name}: {e.reason}")
            return PermissionDenied(name, e.reason or str(e))
        logger.error(f"Failed to get/create user namespace {name}: {e.status} {e.reason}")
        if e.status == 0 or (e.status is not None and e.status >= 500):
            return ClusterUnreachable(e, namespace=name)
        return NamespaceFailure(f"Failed to get/create namespace {name}: {e.reason}", namespace=name)

    @staticmethod
    def _handle(name: str, ns, user_id: str, created: bool) -> NamespaceHandle:
        metadata = getattr(ns, "metadata", None)
        labels = dict(getattr(metadata, "labels", None) or {})
        return NamespaceHandle(name=name, owner=user_id, created=created, labels=labels)
