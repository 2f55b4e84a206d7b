import logging

from common.errors import UploadFailure
from common.storage import ObjectStore

logger = logging.getLogger(__name__)


class ResultSink:
    """Writes encoded outputs to the object store."""

    def __init__(self, object_store: ObjectStore):
        self.object_store = object_store

    def store(self, key: str, data: bytes, content_type: str) -> str:
        try:
            location = self.object_store.put_bytes(key, data, content_type)
        except Exception as e:  # noqa: BLE001
            raise UploadFailure(f"failed to upload to storage: {e}") from e
        logger.debug("Uploaded %s (%d bytes, %s)", key, len(data), content_type)
        return location
