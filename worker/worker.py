import logging
import signal
import sys
import threading
import time
from typing import List, Optional

import redis

from common import config
from common.bootstrap import wait_for
from common.errors import BootstrapError, MalformedJob, OperationError, PersistenceError, SourceError
from common.job_queue import JobQueue
from common.job_schema import Job, JobStatus, ProcessedImage
from common.status_store import StatusStore, get_redis_client
from common.storage import get_object_store
from worker.acquirer import SourceAcquirer
from worker.sink import ResultSink
from worker.transforms import TransformPipeline

logger = logging.getLogger(__name__)


class Worker:
    """
    Consumes one job at a time: in_progress -> acquire -> transform each
    operation -> completed/failed.

    Each job gets exactly one terminal write per delivery. The message is
    acked only after that write has been attempted, so a crash mid-job leaves
    it in-flight for redelivery.
    """

    def __init__(self, queue: JobQueue, status_store: StatusStore, acquirer: SourceAcquirer, pipeline: TransformPipeline):
        self.queue = queue
        self.status_store = status_store
        self.acquirer = acquirer
        self.pipeline = pipeline

    def _persist(self, job: Job) -> bool:
        try:
            self.status_store.save(job)
            return True
        except PersistenceError as e:
            # not retried; readers may not observe this transition
            logger.error("Failed to save job %s (%s): %s", job.id, job.status.value, e)
            return False

    def process_job(self, job: Job) -> Job:
        start = time.perf_counter()

        job.mark_in_progress()
        self._persist(job)

        try:
            image = self.acquirer.acquire(job.source_reference)
        except SourceError as e:
            logger.error("Failed to process job %s: %s", job.id, e)
            job.mark_failed(str(e))
            self._persist(job)
            return job

        results: List[ProcessedImage] = []
        for index, op in enumerate(job.operations):
            try:
                result, image = self.pipeline.run(job.id, image, op)
            except OperationError as e:
                logger.warning("Failed to process operation %d (%s) of job %s: %s", index, op.kind, job.id, e)
                continue
            results.append(result)

        job.mark_completed(results)
        self._persist(job)
        logger.info(
            "Processed job %s in %.3fs with %d/%d results",
            job.id, time.perf_counter() - start, len(results), len(job.operations),
        )
        return job

    def handle_message(self, body) -> Optional[Job]:
        try:
            job = Job.from_json(body)
        except MalformedJob as e:
            logger.error("Dropping malformed job message: %s", e)
            return None

        logger.info("Received job: %s (status: %s)", job.id, job.status.value)
        if job.is_terminal:
            # redelivered after completion: reprocess from scratch
            logger.warning("Job %s was already %s, reprocessing", job.id, job.status.value)
            job = job.model_copy(update={"status": JobStatus.PENDING, "completed_at": None, "results": [], "error": None})
        return self.process_job(job)

    def run_once(self, timeout: int = config.QUEUE_POLL_TIMEOUT) -> bool:
        delivery = self.queue.reserve(timeout)
        if delivery is None:
            return False
        try:
            self.handle_message(delivery.body)
        finally:
            self.queue.ack(delivery)
        return True

    def run(self, stop: Optional[threading.Event] = None) -> None:
        stop = stop or threading.Event()
        self.queue.recover_inflight()
        logger.info("Worker started. Waiting for jobs on %s...", self.queue.name)
        while not stop.is_set():
            try:
                self.run_once()
            except redis.RedisError as e:
                logger.error("Queue error: %s", e)
                stop.wait(config.BOOTSTRAP_RETRY_DELAY)
            except Exception:  # noqa: BLE001
                logger.exception("Unexpected error while handling a job")
        logger.info("Worker stopped")


def build_worker() -> Worker:
    client = get_redis_client()
    status_store = StatusStore(client)
    wait_for("Redis", status_store.ping)

    object_store = get_object_store()
    wait_for(f"object store ({config.STORAGE_BACKEND})", object_store.ping)
    object_store.ensure_bucket()

    return Worker(
        queue=JobQueue(client),
        status_store=status_store,
        acquirer=SourceAcquirer(object_store),
        pipeline=TransformPipeline(ResultSink(object_store)),
    )


def main():
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        worker = build_worker()
    except BootstrapError as e:
        logger.critical("Startup failed: %s", e)
        sys.exit(1)

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    worker.run(stop)


if __name__ == "__main__":
    main()
