import os
import socket
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Redis backs both the job queue and the status store
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
JOB_QUEUE = os.getenv("JOB_QUEUE", "jobs")
WORKER_ID = os.getenv("WORKER_ID", socket.gethostname())
JOB_TTL_SECONDS = int(os.getenv("JOB_TTL_SECONDS", "86400"))
QUEUE_POLL_TIMEOUT = int(os.getenv("QUEUE_POLL_TIMEOUT", "5"))

# Storage mode: local / gcp / azure / s3
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local")

LOCAL_STORAGE_DIR = Path(os.getenv("LOCAL_STORAGE_DIR", str(BASE_DIR / "data" / "objects")))

GCS_BUCKET = os.getenv("GCS_BUCKET")

AZURE_CONN_STR = os.getenv("AZURE_STORAGE_CONNECTION_STRING")
AZURE_CONTAINER = os.getenv("AZURE_CONTAINER")

# S3 / MinIO
S3_ENDPOINT = os.getenv("S3_ENDPOINT")
S3_BUCKET = os.getenv("S3_BUCKET", "images")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY")
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY")
S3_REGION = os.getenv("S3_REGION", "us-east-1")

# Per-call deadlines for source fetches (seconds)
CONNECT_TIMEOUT_SECONDS = float(os.getenv("CONNECT_TIMEOUT_SECONDS", "5"))
FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "30"))

# Startup connectivity checks
BOOTSTRAP_MAX_ATTEMPTS = int(os.getenv("BOOTSTRAP_MAX_ATTEMPTS", "30"))
BOOTSTRAP_RETRY_DELAY = float(os.getenv("BOOTSTRAP_RETRY_DELAY", "1.0"))

DEFAULT_QUALITY = int(os.getenv("DEFAULT_QUALITY", "90"))

# Largest width/height a resize may request
MAX_DIMENSION = int(os.getenv("MAX_DIMENSION", "16384"))
