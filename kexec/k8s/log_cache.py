import logging
from typing import Optional

import redis

logger = logging.getLogger(__name__)


class InvocationLogCache:
    """Keeps retrieved invocation logs in Redis, keyed by namespace and job name."""

    def __init__(self, redis_client: redis.Redis, ttl_seconds: int = 3600, prefix: str = "kexec:log"):
        self.r = redis_client
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = 3600) -> "InvocationLogCache":
        return cls(redis.Redis.from_url(url), ttl_seconds=ttl_seconds)

    def _key(self, namespace: str, job_name: str) -> str:
        return f"{self.prefix}:{namespace}:{job_name}"

    def get(self, namespace: str, job_name: str) -> Optional[bytes]:
        try:
            return self.r.get(self._key(namespace, job_name))
        except redis.RedisError as e:
            logger.warning(f"Log cache read failed for {job_name}: {e}")
            return None

    def put(self, namespace: str, job_name: str, log: bytes):
        try:
            self.r.set(self._key(namespace, job_name), log, ex=self.ttl_seconds)
        except redis.RedisError as e:
            logger.warning(f"Log cache write failed for {job_name}: {e}")
