"""
Reliable work queue on top of Redis lists.

A reserved message is moved atomically onto the worker's own in-flight list
and only removed from there once it is acked. Anything left in-flight when a
worker dies is pushed back onto the main queue by `recover_inflight` on the
next start, which gives at-least-once delivery.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import redis

from common import config
from common.errors import PersistenceError
from common.job_schema import Job

logger = logging.getLogger(__name__)


@dataclass
class Delivery:
    body: bytes


class JobQueue:
    def __init__(self, client: redis.Redis, name: str = config.JOB_QUEUE, worker_id: str = config.WORKER_ID):
        self.client = client
        self.name = name
        self.inflight = f"{name}:processing:{worker_id}"

    def publish(self, job: Job) -> None:
        try:
            self.client.lpush(self.name, job.to_json())
        except redis.RedisError as e:
            raise PersistenceError(f"failed to enqueue job {job.id}: {e}") from e

    def reserve(self, timeout: int = config.QUEUE_POLL_TIMEOUT) -> Optional[Delivery]:
        body = self.client.blmove(self.name, self.inflight, timeout, "RIGHT", "LEFT")
        if body is None:
            return None
        return Delivery(body=body)

    def ack(self, delivery: Delivery) -> None:
        self.client.lrem(self.inflight, 1, delivery.body)

    def recover_inflight(self) -> int:
        count = 0
        while self.client.lmove(self.inflight, self.name, "RIGHT", "RIGHT") is not None:
            count += 1
        if count:
            logger.warning("Requeued %d unacknowledged message(s) from %s", count, self.inflight)
        return count
