from PIL import Image, UnidentifiedImageError
from dataclasses import dataclass
from io import BytesIO
from typing import Tuple
import base64
import logging

from errors import ImageDecodeError

logger = logging.getLogger(__name__)

# Fixed model input resolutions (width, height)
TRYON_SIZE = (400, 600)
WARDROBE_SIZE = (224, 224)
PERSON_SIZE = (512, 512)

_EXTENSIONS = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp"}


@dataclass
class NormalizedImage:
    """Image bytes resized to the exact input shape of a remote model."""
    data: bytes
    size: Tuple[int, int]
    format: str = "JPEG"

    @property
    def extension(self) -> str:
        return _EXTENSIONS.get(self.format, self.format.lower())

    @property
    def mime_type(self) -> str:
        return Image.MIME.get(self.format, "application/octet-stream")


def open_image(image_bytes: bytes) -> Image.Image:
    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Unsupported or corrupt image data: {e}") from e
    return image


def normalize_image(image_bytes: bytes, size: Tuple[int, int], fmt: str = "JPEG") -> NormalizedImage:
    """Stretch the image to exactly ``size``; no letterboxing."""
    image = open_image(image_bytes)
    original_size = image.size

    # JPEG has no alpha channel
    if fmt == "JPEG" and image.mode != "RGB":
        image = image.convert("RGB")
    elif image.mode not in ("RGB", "RGBA", "L"):
        image = image.convert("RGBA")

    resized = image.resize(size, Image.LANCZOS)
    buffer = BytesIO()
    resized.save(buffer, format=fmt)
    logger.info(f"Resized image from {original_size[0]}x{original_size[1]} to {size[0]}x{size[1]}")
    return NormalizedImage(buffer.getvalue(), size, fmt)


def ensure_png(image_bytes: bytes) -> bytes:
    """Return PNG bytes, re-encoding other formats."""
    image = open_image(image_bytes)
    if image.format == "PNG":
        return image_bytes
    buffer = BytesIO()
    if image.mode not in ("RGB", "RGBA", "L", "LA", "P"):
        image = image.convert("RGBA")
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def image_to_base64(image_bytes: bytes) -> str:
    return base64.b64encode(image_bytes).decode("utf-8")
