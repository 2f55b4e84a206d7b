"""
Status store: the durable copy of each job record.

Key `job:<id>` holds the whole envelope JSON and is replaced on every
transition. Every write carries the same expiry, so abandoned jobs are
reclaimed by Redis itself.
"""

import logging
from typing import Optional

import redis

from common import config
from common.errors import MalformedJob, PersistenceError
from common.job_schema import Job

logger = logging.getLogger(__name__)

KEY_PREFIX = "job:"


def status_key(job_id: str) -> str:
    return f"{KEY_PREFIX}{job_id}"


class StatusStore:
    def __init__(self, client: redis.Redis, ttl_seconds: int = config.JOB_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    def save(self, job: Job) -> None:
        try:
            self.client.set(status_key(job.id), job.to_json(), ex=self.ttl_seconds)
        except redis.RedisError as e:
            raise PersistenceError(f"failed to save job {job.id}: {e}") from e

    def get(self, job_id: str) -> Optional[Job]:
        """Return the stored job, or None when the key is absent or expired."""
        try:
            data = self.client.get(status_key(job_id))
        except redis.RedisError as e:
            raise PersistenceError(f"failed to read job {job_id}: {e}") from e
        if data is None:
            return None
        try:
            return Job.from_json(data)
        except MalformedJob as e:
            raise PersistenceError(f"stored record for job {job_id} is corrupt: {e}") from e

    def ping(self) -> None:
        self.client.ping()


def get_redis_client(url: Optional[str] = None) -> redis.Redis:
    return redis.Redis.from_url(
        url or config.REDIS_URL,
        socket_connect_timeout=config.CONNECT_TIMEOUT_SECONDS,
        socket_timeout=config.FETCH_TIMEOUT_SECONDS,
    )
