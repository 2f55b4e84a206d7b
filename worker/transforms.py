"""
Per-operation transforms.

Operations are applied cumulatively: the raster an operation produces is the
input of the next one, so operation order is part of a job's meaning. A
failed operation leaves the raster as it was before that operation.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Tuple

from PIL import Image

from common import config
from common.errors import BadParameters, EncodeFailure, OperationError
from common.job_schema import ImageFormat, ImageOperation, OperationType, ProcessedImage

logger = logging.getLogger(__name__)

KNOWN_KINDS = {k.value for k in OperationType}
KNOWN_FORMATS = {f.value for f in ImageFormat}
LOSSY_FORMATS = {ImageFormat.JPEG.value, ImageFormat.WEBP.value}

RESAMPLE_FILTER = Image.Resampling.LANCZOS


@dataclass
class EncodedImage:
    data: bytes
    format: str
    quality: Optional[int]   # None for lossless formats
    width: int
    height: int

    @property
    def size(self) -> int:
        return len(self.data)


def validate_operation(op: ImageOperation) -> None:
    if op.kind not in KNOWN_KINDS:
        raise BadParameters(f"unknown operation type: {op.kind!r}")
    if op.width < 0 or op.height < 0:
        raise BadParameters(f"negative dimensions: {op.width}x{op.height}")
    if op.width > config.MAX_DIMENSION or op.height > config.MAX_DIMENSION:
        raise BadParameters(f"dimensions exceed {config.MAX_DIMENSION}px: {op.width}x{op.height}")
    if not 0 <= op.quality <= 100:
        raise BadParameters(f"quality out of range 1-100: {op.quality}")


# ---------- pixel operations ----------

def target_size(size: Tuple[int, int], width: int, height: int) -> Tuple[int, int]:
    """Target dimensions for a resize; a zero side follows the source aspect ratio."""
    src_w, src_h = size
    if width > 0 and height > 0:
        return width, height
    if width > 0:
        return width, max(1, round(src_h * width / src_w))
    if height > 0:
        return max(1, round(src_w * height / src_h)), height
    return src_w, src_h


def resize(image: Image.Image, width: int, height: int) -> Image.Image:
    if width == 0 and height == 0:
        return image
    return image.resize(target_size(image.size, width, height), RESAMPLE_FILTER)


def add_watermark(image: Image.Image, text: str) -> Image.Image:
    # TODO: render `text` (or the logo it points to) onto the raster
    logger.warning("Watermarking not yet implemented, returning original image")
    return image


def apply_operation(image: Image.Image, op: ImageOperation) -> Image.Image:
    try:
        if op.kind == OperationType.RESIZE.value:
            return resize(image, op.width, op.height)
        if op.kind == OperationType.WATERMARK.value:
            return add_watermark(image, op.watermark)
        # format conversions only change the encoding step
        return image
    except (OSError, ValueError) as e:
        raise EncodeFailure(f"failed to apply operation: {e}") from e


# ---------- encoding ----------

def resolve_format(name: str) -> str:
    fmt = (name or "").lower()
    if not fmt:
        return ImageFormat.JPEG.value
    if fmt not in KNOWN_FORMATS:
        logger.warning("Unsupported format %r, falling back to JPEG", name)
        return ImageFormat.JPEG.value
    return fmt


def resolve_quality(op: ImageOperation) -> int:
    # the JPEG fallback for an unsupported format always uses the default
    if (op.format or "").lower() not in KNOWN_FORMATS:
        return config.DEFAULT_QUALITY
    return op.quality or config.DEFAULT_QUALITY


def extension_for(fmt: str) -> str:
    if fmt == ImageFormat.JPEG.value:
        return ".jpg"
    return f".{fmt}"


def content_type_for(fmt: str) -> str:
    return f"image/{fmt}"


def _prepare_mode(image: Image.Image, fmt: str) -> Image.Image:
    if fmt == ImageFormat.JPEG.value:
        if image.mode not in ("RGB", "L"):
            return image.convert("RGB")
    elif fmt == ImageFormat.WEBP.value:
        if image.mode not in ("RGB", "RGBA"):
            has_alpha = "A" in image.mode or "transparency" in image.info
            return image.convert("RGBA" if has_alpha else "RGB")
    elif image.mode == "CMYK":
        return image.convert("RGB")
    return image


def encode_image(image: Image.Image, op: ImageOperation) -> EncodedImage:
    fmt = resolve_format(op.format)
    quality = resolve_quality(op) if fmt in LOSSY_FORMATS else None

    params = {"quality": quality} if quality is not None else {}
    buf = BytesIO()
    try:
        _prepare_mode(image, fmt).save(buf, format=fmt.upper(), **params)
    except (OSError, ValueError, KeyError) as e:
        raise EncodeFailure(f"failed to encode image: {e}") from e

    width, height = image.size
    return EncodedImage(data=buf.getvalue(), format=fmt, quality=quality, width=width, height=height)


def derive_output_key(job_id: str, op: ImageOperation, fmt: str) -> str:
    """
    Object key for an operation's output.

    An explicit `output_key` is used unmodified. Otherwise the key carries a
    fresh random token, so reprocessing the same job writes new objects next
    to the old ones rather than overwriting them.
    """
    if op.output_key:
        return op.output_key
    token = uuid.uuid4().hex[:8]
    return f"processed/{job_id}/{op.kind}_{token}{extension_for(fmt)}"


class TransformPipeline:
    def __init__(self, sink):
        self.sink = sink

    def run(self, job_id: str, image: Image.Image, op: ImageOperation) -> Tuple[ProcessedImage, Image.Image]:
        """
        Apply one operation and upload its output.

        Returns the result record and the raster the next operation should
        start from. Raises only OperationError subclasses.
        """
        start = time.perf_counter()
        validate_operation(op)

        try:
            processed = apply_operation(image, op)
            encoded = encode_image(processed, op)
        except OperationError:
            raise
        except Exception as e:  # noqa: BLE001
            raise EncodeFailure(f"failed to process operation: {e!r}") from e

        key = derive_output_key(job_id, op, encoded.format)
        location = self.sink.store(key, encoded.data, content_type_for(encoded.format))

        result = ProcessedImage(
            operation=op,
            output_location=location,
            output_key=key,
            size=encoded.size,
            width=encoded.width,
            height=encoded.height,
            format=encoded.format,
            processing_time=time.perf_counter() - start,
        )
        return result, processed
