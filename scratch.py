"""
Per-request scratch space for intermediate image files.
"""
import logging
import os
import shutil
import tempfile
from typing import Optional

logger = logging.getLogger(__name__)


class ScratchSpace:
    """A private directory for one request; removed on exit (best-effort)."""

    def __init__(self, root: str, request_id: str):
        self.root = root
        self.request_id = request_id
        self.path: Optional[str] = None

    def __enter__(self) -> "ScratchSpace":
        os.makedirs(self.root, exist_ok=True)
        self.path = tempfile.mkdtemp(prefix=f"{self.request_id}-", dir=self.root)
        return self

    def __exit__(self, exc_type, exc, tb):
        if self.path:
            shutil.rmtree(self.path, ignore_errors=True)
            self.path = None

    def write(self, name: str, data: bytes) -> str:
        """Write ``data`` under this request's directory and return the path."""
        if self.path is None:
            raise RuntimeError("ScratchSpace used outside its context")
        file_path = os.path.join(self.path, os.path.basename(name))
        with open(file_path, "wb") as f:
            f.write(data)
        logger.debug(f"[{self.request_id}] wrote {len(data)} bytes to {file_path}")
        return file_path
