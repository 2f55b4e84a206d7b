import logging
from io import BytesIO
from typing import Optional, Tuple

import requests
from PIL import Image, UnidentifiedImageError

from common import config
from common.errors import ObjectNotFound, SourceDecodeError, SourceNotFound, SourceNotReachable
from common.storage import ObjectStore

logger = logging.getLogger(__name__)

NETWORK_SCHEMES = ("http://", "https://")


def decode_image(data: bytes) -> Image.Image:
    """Decode raw bytes into a fully loaded raster."""
    try:
        image = Image.open(BytesIO(data))
        # full decode; truncated data fails here
        image.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise SourceDecodeError(f"failed to decode image: {e}") from e
    return image


class SourceAcquirer:
    """Fetches a job's source image from HTTP or the object store."""

    def __init__(
        self,
        object_store: ObjectStore,
        session: Optional[requests.Session] = None,
        timeout: Tuple[float, float] = (config.CONNECT_TIMEOUT_SECONDS, config.FETCH_TIMEOUT_SECONDS),
    ):
        self.object_store = object_store
        self.session = session or requests.Session()
        self.timeout = timeout

    def acquire(self, reference: str) -> Image.Image:
        if reference.startswith(NETWORK_SCHEMES):
            data = self._fetch_http(reference)
        else:
            data = self._fetch_object(reference)
        return decode_image(data)

    def _fetch_http(self, url: str) -> bytes:
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise SourceNotReachable(f"failed to download image: {e}") from e
        if resp.status_code == 404:
            raise SourceNotFound(f"HTTP error: {resp.status_code}")
        if not 200 <= resp.status_code < 300:
            raise SourceNotReachable(f"HTTP error: {resp.status_code}")
        return resp.content

    def _fetch_object(self, key: str) -> bytes:
        try:
            return self.object_store.get_bytes(key)
        except ObjectNotFound as e:
            raise SourceNotFound(f"object not found in storage: {key}") from e
        except Exception as e:  # noqa: BLE001
            raise SourceNotReachable(f"failed to get object from storage: {e}") from e
