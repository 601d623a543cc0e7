from io import BytesIO

import pytest
from PIL import Image

from conftest import make_image_bytes
from errors import ImageDecodeError
from process import PERSON_SIZE, TRYON_SIZE, WARDROBE_SIZE, ensure_png, normalize_image


@pytest.mark.parametrize("size", [TRYON_SIZE, WARDROBE_SIZE, PERSON_SIZE])
def test_normalize_stretches_to_exact_size(size):
    normalized = normalize_image(make_image_bytes(size=(1000, 300)), size)
    assert normalized.size == size
    assert Image.open(BytesIO(normalized.data)).size == size


def test_normalize_drops_alpha_for_jpeg():
    rgba = Image.new("RGBA", (50, 80), (10, 20, 30, 128))
    buffer = BytesIO()
    rgba.save(buffer, format="PNG")
    normalized = normalize_image(buffer.getvalue(), TRYON_SIZE)
    image = Image.open(BytesIO(normalized.data))
    assert image.format == "JPEG"
    assert image.mode == "RGB"
    assert normalized.extension == "jpg"
    assert normalized.mime_type == "image/jpeg"


def test_normalize_png_output():
    normalized = normalize_image(make_image_bytes(), PERSON_SIZE, fmt="PNG")
    assert Image.open(BytesIO(normalized.data)).format == "PNG"
    assert normalized.extension == "png"


def test_normalize_rejects_garbage():
    with pytest.raises(ImageDecodeError):
        normalize_image(b"\x00\x01\x02 not an image", TRYON_SIZE)


def test_normalize_rejects_oversized_pixel_count(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    with pytest.raises(ImageDecodeError):
        normalize_image(make_image_bytes(size=(100, 100)), TRYON_SIZE)


def test_ensure_png():
    png = make_image_bytes(fmt="PNG")
    assert ensure_png(png) is png
    converted = ensure_png(make_image_bytes(fmt="JPEG"))
    assert Image.open(BytesIO(converted)).format == "PNG"
