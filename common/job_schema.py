import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from common.errors import InvalidTransition, MalformedJob


class JobStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}


class OperationType(str, Enum):
    RESIZE = "resize"
    FORMAT = "format"
    WATERMARK = "watermark"


class ImageFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImageOperation(BaseModel):
    # kind and format stay plain strings so a bad value fails one
    # operation instead of the whole message
    kind: str
    width: int = 0           # 0 = unconstrained
    height: int = 0
    format: str = ""
    quality: int = 0         # 0 = default quality
    watermark: str = ""      # watermark text or logo path
    output_key: str = ""     # explicit object key, used unmodified

    model_config = {"frozen": True}


class ProcessedImage(BaseModel):
    operation: ImageOperation
    output_location: str
    output_key: str
    size: int                # bytes
    width: int
    height: int
    format: str
    processing_time: float   # seconds

    model_config = {"frozen": True}


def default_operations() -> List[ImageOperation]:
    return [
        ImageOperation(
            kind=OperationType.RESIZE.value,
            width=800,
            height=600,
            format=ImageFormat.JPEG.value,
            quality=90,
        )
    ]


class Job(BaseModel):
    id: str
    status: JobStatus = JobStatus.PENDING
    source_reference: str          # http(s) URL or object-store key
    operations: List[ImageOperation] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    results: List[ProcessedImage] = Field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def new(cls, source_reference: str, operations: Optional[List[ImageOperation]] = None) -> "Job":
        return cls(
            id=str(uuid.uuid4()),
            status=JobStatus.PENDING,
            source_reference=source_reference,
            operations=list(operations) if operations else default_operations(),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    # ---------- transitions ----------

    def _check_not_terminal(self, target: JobStatus) -> None:
        if self.is_terminal:
            raise InvalidTransition(f"job {self.id}: {self.status.value} -> {target.value}")

    def mark_in_progress(self) -> None:
        self._check_not_terminal(JobStatus.IN_PROGRESS)
        self.status = JobStatus.IN_PROGRESS

    def mark_completed(self, results: List[ProcessedImage]) -> None:
        self._check_not_terminal(JobStatus.COMPLETED)
        if len(results) > len(self.operations):
            raise ValueError("more results than operations")
        self.results = list(results)
        self.completed_at = _utcnow()
        self.status = JobStatus.COMPLETED

    def mark_failed(self, error: str) -> None:
        self._check_not_terminal(JobStatus.FAILED)
        self.results = []
        self.error = error or "unknown error"
        self.completed_at = _utcnow()
        self.status = JobStatus.FAILED

    # ---------- wire format ----------

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, payload) -> "Job":
        try:
            return cls.model_validate_json(payload)
        except (ValidationError, ValueError, TypeError) as e:
            raise MalformedJob(str(e)) from e
