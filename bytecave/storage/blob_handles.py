"""
Blob handles - retrieved payloads materialized as temporary files.

A handle gives display code a stable local path/URI for content fetched
from the network. Handles must be released when no longer referenced;
releasing deletes the backing file.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from ..core.types import DEFAULT_MIME_TYPE

logger = logging.getLogger(__name__)


class BlobHandle:
    """Temporary file holding one blob."""

    def __init__(self, path: Path, size: int, media_type: str = DEFAULT_MIME_TYPE):
        self.path = path
        self.size = size
        self.media_type = media_type
        self.released = False

    @property
    def uri(self) -> str:
        return self.path.as_uri()

    def read(self) -> bytes:
        if self.released:
            raise ValueError(f"Blob handle {self.path.name} was released")
        with open(self.path, "rb") as f:
            return f.read()

    def release(self):
        """Delete the backing file. Releasing twice is a no-op."""
        if self.released:
            return
        self.released = True
        try:
            self.path.unlink()
            logger.debug(f"Released blob handle {self.path.name}")
        except FileNotFoundError:
            logger.debug(f"Blob handle {self.path.name} already removed")

    def __repr__(self) -> str:
        return f"BlobHandle({self.path.name}, {self.size} bytes, {self.media_type})"


def create_blob_handle(
    data: bytes,
    media_type: str = DEFAULT_MIME_TYPE,
    directory: Optional[Path] = None
) -> BlobHandle:
    """
    Write ``data`` to a new temporary file.

    Args:
        data: Blob bytes
        media_type: Media type recorded on the handle
        directory: Directory for the file (system temp dir if None)

    Returns:
        Handle owning the file
    """
    if directory is not None:
        Path(directory).mkdir(parents=True, exist_ok=True)

    fd, name = tempfile.mkstemp(prefix="bytecave-", suffix=".blob", dir=directory)
    with os.fdopen(fd, "wb") as f:
        f.write(data)

    return BlobHandle(Path(name), len(data), media_type)


def release_blob_handle(handle: BlobHandle):
    handle.release()
