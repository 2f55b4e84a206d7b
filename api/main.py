import logging
import uuid
from functools import lru_cache
from pathlib import Path
from typing import List

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from pydantic import BaseModel, Field

from common import config
from common.errors import PersistenceError
from common.job_queue import JobQueue
from common.job_schema import ImageOperation, Job
from common.status_store import StatusStore, get_redis_client
from common.storage import ObjectStore, get_object_store

logging.basicConfig(level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Image Pipeline API")

UPLOAD_PREFIX = "uploads/"


class JobRequest(BaseModel):
    source_reference: str = Field(..., min_length=1)
    operations: List[ImageOperation] = Field(default_factory=list)


# ---------- dependencies ----------

@lru_cache()
def _redis():
    return get_redis_client()


def get_status_store() -> StatusStore:
    return StatusStore(_redis())


def get_job_queue() -> JobQueue:
    return JobQueue(_redis())


@lru_cache()
def get_store() -> ObjectStore:
    return get_object_store()


def _admit(job: Job, status_store: StatusStore, queue: JobQueue) -> Job:
    # status is written before publish
    try:
        status_store.save(job)
        queue.publish(job)
    except PersistenceError as e:
        logger.error("Failed to admit job %s: %s", job.id, e)
        raise HTTPException(status_code=503, detail="Failed to queue job") from e
    logger.info("Queued job %s with %d operation(s)", job.id, len(job.operations))
    return job


# ---------- API endpoints ----------

@app.post("/jobs", response_model=Job, status_code=201)
def create_job(
    body: JobRequest,
    status_store: StatusStore = Depends(get_status_store),
    queue: JobQueue = Depends(get_job_queue),
):
    job = Job.new(body.source_reference, body.operations)
    return _admit(job, status_store, queue)


@app.post("/uploads", response_model=Job, status_code=201)
async def upload_image(
    file: UploadFile = File(...),
    store: ObjectStore = Depends(get_store),
    status_store: StatusStore = Depends(get_status_store),
    queue: JobQueue = Depends(get_job_queue),
):
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="File required")

    filename = Path(file.filename or "upload").name
    key = f"{UPLOAD_PREFIX}{uuid.uuid4().hex}_{filename}"
    try:
        store.put_bytes(key, content, file.content_type or "application/octet-stream")
    except Exception as e:  # noqa: BLE001
        logger.exception("Failed to store upload %s", key)
        raise HTTPException(status_code=503, detail="Upload to storage failed") from e

    return _admit(Job.new(key), status_store, queue)


@app.get("/jobs/{job_id}", response_model=Job)
def read_job(job_id: str, status_store: StatusStore = Depends(get_status_store)):
    try:
        job = status_store.get(job_id)
    except PersistenceError as e:
        logger.error("Failed to read job %s: %s", job_id, e)
        raise HTTPException(status_code=503, detail="Failed to get job") from e
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@app.get("/health")
def health():
    return {"status": "healthy"}
