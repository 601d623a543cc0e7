"""
Image acquisition for the FitMirror Try-On API.

Turns whatever the caller supplied for an image slot (multipart upload,
remote URL or base64 string) into an in-memory ImageAsset.
"""
import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

import httpx
from fastapi import UploadFile

from errors import (
    DecodeError,
    FetchError,
    FetchTimeoutError,
    MissingInputError,
    PayloadTooLargeError,
    UnsupportedMediaError,
)

logger = logging.getLogger(__name__)


@dataclass
class ImageAsset:
    """Raw image bytes plus where they came from."""
    data: bytes
    source: str
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


class ImageFetcher:
    """Downloads remote images with a bounded timeout and size guard."""

    def __init__(self, timeout: float, max_bytes: int, client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout), follow_redirects=True)

    async def fetch(self, url: str) -> bytes:
        logger.info(f"Downloading image from {url}")
        try:
            data = await asyncio.wait_for(self._download(url), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise FetchTimeoutError(f"Timed out after {self.timeout:g}s fetching {url}") from exc
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(f"Timed out fetching {url}: {exc}") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise FetchError(f"Failed to fetch {url}: {exc}") from exc
        logger.info(f"Downloaded {len(data)} bytes from {url}")
        return data

    async def _download(self, url: str) -> bytes:
        async with self.client.stream("GET", url) as response:
            if not response.is_success:
                raise FetchError(f"Failed to fetch {url}: HTTP {response.status_code}")
            sink = BytesIO()
            async for chunk in response.aiter_bytes():
                sink.write(chunk)
                if sink.tell() > self.max_bytes:
                    raise PayloadTooLargeError(f"Image at {url} exceeds {self.max_bytes} bytes")
            return sink.getvalue()

    async def aclose(self):
        await self.client.aclose()


async def from_upload(upload: UploadFile, max_bytes: int, allowed_types: set) -> Optional[ImageAsset]:
    """Read an uploaded file; returns None for an empty upload."""
    image_bytes = await upload.read()
    if not image_bytes:
        return None
    if upload.content_type and upload.content_type not in allowed_types:
        raise UnsupportedMediaError(f"Unsupported content-type: {upload.content_type}")
    if len(image_bytes) > max_bytes:
        raise PayloadTooLargeError(f"File too large. Max {max_bytes // (1024 * 1024)}MB")
    return ImageAsset(image_bytes, "upload", upload.content_type)


def from_base64(text: str) -> ImageAsset:
    """Decode a base64 image, tolerating a ``data:image/...;base64,`` prefix."""
    content_type = None
    if text.startswith("data:"):
        header, _, text = text.partition(",")
        content_type = header[5:].split(";", 1)[0] or None
    try:
        data = base64.b64decode("".join(text.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Malformed base64 image data: {exc}") from exc
    if not data:
        raise DecodeError("Base64 image data is empty")
    return ImageAsset(data, "base64", content_type)


async def acquire(
    slot: str,
    fetcher: ImageFetcher,
    upload: Optional[ImageAsset] = None,
    url: Optional[str] = None,
    b64: Optional[str] = None,
) -> ImageAsset:
    """Resolve one image slot, preferring upload, then URL, then base64."""
    if upload is not None:
        logger.info(f"{slot}: using uploaded file ({upload.size} bytes)")
        return upload
    if url:
        data = await fetcher.fetch(url)
        return ImageAsset(data, "url")
    if b64:
        asset = from_base64(b64)
        logger.info(f"{slot}: decoded base64 payload ({asset.size} bytes)")
        return asset
    raise MissingInputError(f"{slot} is required: provide an uploaded file, a URL or base64 data")
