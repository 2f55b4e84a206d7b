import logging
from pathlib import Path
from typing import Optional

from common import config
from common.errors import ObjectNotFound

# ------------------------------------------------------------------------------
# CONDITIONAL IMPORTS
# Each cloud SDK is only needed by its own backend. A missing SDK surfaces as
# a RuntimeError when that backend is constructed.
# ------------------------------------------------------------------------------

try:
    from google.cloud import storage as gcs
    from google.api_core import exceptions as gcs_exceptions
except ImportError:
    gcs = None
    gcs_exceptions = None

try:
    from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
    from azure.storage.blob import BlobServiceClient, ContentSettings
except ImportError:
    BlobServiceClient = ContentSettings = None
    ResourceExistsError = ResourceNotFoundError = None

try:
    import boto3
    from botocore.client import Config as BotoConfig
    from botocore.exceptions import ClientError
except ImportError:
    boto3 = None
    BotoConfig = ClientError = None

logger = logging.getLogger(__name__)


class ObjectStore:
    """Minimal blob interface used by the acquirer, the sink and the API."""

    def get_bytes(self, key: str) -> bytes:
        raise NotImplementedError

    def put_bytes(self, key: str, data: bytes, content_type: str) -> str:
        """Write `data` under `key` and return an external reference to it."""
        raise NotImplementedError

    def ping(self) -> None:
        raise NotImplementedError

    def ensure_bucket(self) -> None:
        pass


# ------------------------------------------------------------------------------
# LOCAL FILESYSTEM
# Used when STORAGE_BACKEND="local".
# ------------------------------------------------------------------------------

class LocalObjectStore(ObjectStore):
    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Key escapes storage root: {key}")
        return path

    def get_bytes(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise ObjectNotFound(key)
        return path.read_bytes()

    def put_bytes(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return f"local://{path}"

    def ping(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def ensure_bucket(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)


# ------------------------------------------------------------------------------
# GOOGLE CLOUD STORAGE (GCS)
# Used when STORAGE_BACKEND="gcp".
# ------------------------------------------------------------------------------

class GCSObjectStore(ObjectStore):
    def __init__(self, bucket_name: Optional[str], client=None):
        if not bucket_name:
            raise ValueError("GCS_BUCKET is required for GCP backend")
        if client is None:
            if not gcs:
                raise RuntimeError("google-cloud-storage library is not installed.")
            client = gcs.Client()
        self.client = client
        self.bucket_name = bucket_name

    def get_bytes(self, key: str) -> bytes:
        blob = self.client.bucket(self.bucket_name).blob(key)
        if not blob.exists():
            raise ObjectNotFound(key)
        return blob.download_as_bytes()

    def put_bytes(self, key: str, data: bytes, content_type: str) -> str:
        blob = self.client.bucket(self.bucket_name).blob(key)
        blob.upload_from_string(data, content_type=content_type)
        return f"gs://{self.bucket_name}/{key}"

    def ping(self) -> None:
        self.client.get_bucket(self.bucket_name)

    def ensure_bucket(self) -> None:
        try:
            self.client.get_bucket(self.bucket_name)
        except gcs_exceptions.NotFound:
            logger.info("Creating bucket: %s", self.bucket_name)
            self.client.create_bucket(self.bucket_name)


# ------------------------------------------------------------------------------
# AZURE BLOB STORAGE
# Used when STORAGE_BACKEND="azure".
# ------------------------------------------------------------------------------

class AzureObjectStore(ObjectStore):
    def __init__(self, conn_str: Optional[str], container: Optional[str], client=None):
        if not container:
            raise ValueError("AZURE_CONTAINER env var is required for Azure backend")
        if client is None:
            if not BlobServiceClient:
                raise RuntimeError("azure-storage-blob library is not installed.")
            if not conn_str:
                raise ValueError("AZURE_STORAGE_CONNECTION_STRING env var is missing.")
            client = BlobServiceClient.from_connection_string(conn_str)
        self.container = container
        self.container_client = client.get_container_client(container)

    def get_bytes(self, key: str) -> bytes:
        blob_client = self.container_client.get_blob_client(key)
        try:
            return blob_client.download_blob().readall()
        except ResourceNotFoundError as e:
            raise ObjectNotFound(key) from e

    def put_bytes(self, key: str, data: bytes, content_type: str) -> str:
        blob_client = self.container_client.get_blob_client(key)
        blob_client.upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type),
        )
        return f"az://{self.container}/{key}"

    def ping(self) -> None:
        self.container_client.get_container_properties()

    def ensure_bucket(self) -> None:
        if not self.container_client.exists():
            logger.info("Creating container: %s", self.container)
            try:
                self.container_client.create_container()
            except ResourceExistsError:
                pass


# ------------------------------------------------------------------------------
# S3 / MINIO
# Used when STORAGE_BACKEND="s3".
# ------------------------------------------------------------------------------

class S3ObjectStore(ObjectStore):
    def __init__(self, bucket_name: str, client=None):
        if client is None:
            if not boto3:
                raise RuntimeError("boto3 library is not installed.")
            session = boto3.session.Session()
            client = session.client(
                service_name="s3",
                endpoint_url=config.S3_ENDPOINT,
                aws_access_key_id=config.S3_ACCESS_KEY,
                aws_secret_access_key=config.S3_SECRET_KEY,
                region_name=config.S3_REGION,
                config=BotoConfig(
                    signature_version="s3v4",
                    connect_timeout=config.CONNECT_TIMEOUT_SECONDS,
                    read_timeout=config.FETCH_TIMEOUT_SECONDS,
                ),
            )
        self.client = client
        self.bucket_name = bucket_name

    def get_bytes(self, key: str) -> bytes:
        try:
            resp = self.client.get_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404", "NotFound"):
                raise ObjectNotFound(key) from e
            raise
        return resp["Body"].read()

    def put_bytes(self, key: str, data: bytes, content_type: str) -> str:
        self.client.put_object(
            Bucket=self.bucket_name,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        return f"s3://{self.bucket_name}/{key}"

    def ping(self) -> None:
        self.client.head_bucket(Bucket=self.bucket_name)

    def ensure_bucket(self) -> None:
        try:
            self.client.head_bucket(Bucket=self.bucket_name)
        except ClientError:
            logger.info("Creating bucket: %s", self.bucket_name)
            self.client.create_bucket(Bucket=self.bucket_name)


# ------------------------------------------------------------------------------
# FACTORY
# The API and the worker call THIS; it routes on STORAGE_BACKEND.
# ------------------------------------------------------------------------------

def get_object_store(backend: Optional[str] = None) -> ObjectStore:
    backend = backend or config.STORAGE_BACKEND

    if backend == "local":
        return LocalObjectStore(config.LOCAL_STORAGE_DIR)
    elif backend == "gcp":
        return GCSObjectStore(config.GCS_BUCKET)
    elif backend == "azure":
        return AzureObjectStore(config.AZURE_CONN_STR, config.AZURE_CONTAINER)
    elif backend == "s3":
        return S3ObjectStore(config.S3_BUCKET)
    else:
        raise RuntimeError(f"Unsupported STORAGE_BACKEND: {backend}")
