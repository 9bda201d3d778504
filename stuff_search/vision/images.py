"""
Photo decoding and downscaling.

Every upload is decoded before it reaches the captioner, so archives with
stray documents and files that merely look like photos are caught early.
Two JPEG copies are kept per item: a large one for viewing and a small
thumbnail for result lists.
"""

import io
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from ..core.errors import InvalidImage

LARGE_MAX_DIMENSION = 1024
SMALL_MAX_DIMENSION = 512
JPEG_QUALITY = 90


@dataclass
class PreparedPhoto:
    large: bytes
    small: bytes
    width: int
    height: int


def decode_image(data: bytes, source: str = None) -> Image.Image:
    """Fully decode `data` or raise InvalidImage."""
    if not data:
        raise InvalidImage(source)
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise InvalidImage(source) from e
    return image


def is_image(data: bytes) -> bool:
    try:
        decode_image(data)
    except InvalidImage:
        return False
    return True


def downscale(image: Image.Image, max_dimension: int) -> bytes:
    """JPEG copy whose longest side is at most `max_dimension`. Never upscales."""
    copy = image.convert("RGB")
    copy.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    copy.save(buffer, "JPEG", quality=JPEG_QUALITY)
    return buffer.getvalue()


def prepare_photo(data: bytes, source: str = None) -> PreparedPhoto:
    """Decode an uploaded photo and produce its large and small copies."""
    image = decode_image(data, source)
    return PreparedPhoto(
        large=downscale(image, LARGE_MAX_DIMENSION),
        small=downscale(image, SMALL_MAX_DIMENSION),
        width=image.width,
        height=image.height,
    )
