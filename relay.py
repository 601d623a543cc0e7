"""
Result relay: turns a remote prediction into this service's response shape.
"""
import base64
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence, Union

from fastapi.responses import JSONResponse, Response

from acquisition import ImageFetcher
from errors import ImageDecodeError, RemoteModelError
from process import ensure_png, image_to_base64, open_image

logger = logging.getLogger(__name__)


class OutputFormat(str, Enum):
    JSON = "json"
    BASE64 = "base64"
    MEDIA = "media"


def _find_image_ref(node: Any) -> Optional[Union[str, bytes]]:
    """Depth-first search for the first inline image, URL or file path."""
    if isinstance(node, (bytes, bytearray)):
        return bytes(node)
    if isinstance(node, str):
        return node or None
    if isinstance(node, dict):
        for key in ("url", "path"):
            value = node.get(key)
            if isinstance(value, str) and value:
                return value
        for value in node.values():
            found = _find_image_ref(value)
            if found is not None:
                return found
    if isinstance(node, (list, tuple)):
        for item in node:
            found = _find_image_ref(item)
            if found is not None:
                return found
    return None


def _jsonable(node: Any) -> Any:
    if isinstance(node, (bytes, bytearray)):
        return base64.b64encode(bytes(node)).decode("utf-8")
    if isinstance(node, dict):
        return {str(k): _jsonable(v) for k, v in node.items()}
    if isinstance(node, (list, tuple)):
        return [_jsonable(v) for v in node]
    if node is None or isinstance(node, (str, int, float, bool)):
        return node
    return str(node)


@dataclass
class PredictionResult:
    """A remote model response: the raw structure and the image it points at."""
    raw: Any
    reference: Optional[Union[str, bytes]] = field(default=None)

    @classmethod
    def from_raw(cls, raw: Any) -> "PredictionResult":
        return cls(raw, _find_image_ref(raw))

    @property
    def is_inline(self) -> bool:
        return isinstance(self.reference, bytes)

    @property
    def is_url(self) -> bool:
        return isinstance(self.reference, str) and self.reference.startswith(("http://", "https://"))


class ResultRelay:
    def __init__(self, fetcher: ImageFetcher, local_roots: Sequence[str] = ()):
        self.fetcher = fetcher
        # Only files under these directories (model client downloads) may be read
        self.local_roots = [os.path.realpath(root) for root in local_roots]

    def _is_readable_path(self, path: str) -> bool:
        real = os.path.realpath(path)
        for root in self.local_roots:
            try:
                if os.path.commonpath([real, root]) == root:
                    return os.path.isfile(real)
            except ValueError:
                continue
        return False

    async def resolve_bytes(self, result: PredictionResult) -> bytes:
        """Inline data is returned as is; URLs are fetched and local paths read."""
        if result.reference is None:
            raise RemoteModelError("Remote model returned no image")
        if result.is_inline:
            return result.reference
        if result.is_url:
            return await self.fetcher.fetch(result.reference)
        if self._is_readable_path(result.reference):
            with open(result.reference, "rb") as f:
                return f.read()
        raise RemoteModelError(f"Remote model result is not an image reference: {result.reference[:200]}")

    async def resolve_image(self, result: PredictionResult) -> bytes:
        image_bytes = await self.resolve_bytes(result)
        try:
            open_image(image_bytes)
        except ImageDecodeError as exc:
            raise RemoteModelError(f"Remote model returned an undecodable image: {exc.message}") from exc
        return image_bytes

    async def render(self, result: PredictionResult, fmt: OutputFormat) -> Response:
        if fmt == OutputFormat.JSON:
            return JSONResponse({"result": _jsonable(result.raw)})

        image_bytes = await self.resolve_image(result)
        if fmt == OutputFormat.BASE64:
            return JSONResponse({"result": image_to_base64(image_bytes)})

        png_bytes = ensure_png(image_bytes)
        logger.info(f"Relaying {len(png_bytes)} bytes of image/png")
        return Response(content=png_bytes, media_type="image/png")
