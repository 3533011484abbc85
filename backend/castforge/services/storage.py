"""
Durable object storage.

The pipeline only needs put(key, bytes, content_type) -> url and
get(key) -> url. LocalObjectStorage keeps objects under a directory that
the API serves as static files, so returned URLs are fetchable by
external engines once public_base_url points at a public host.
"""

import asyncio
import logging
import os
import shutil
import uuid
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable

from castforge.config import Settings

logger = logging.getLogger(__name__)


@runtime_checkable
class ObjectStorage(Protocol):
    """Backend-agnostic object storage used by the pipeline."""

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store bytes under key and return a URL for them."""
        ...

    async def put_file(self, key: str, path: Path, content_type: str) -> str:
        """Store a local file under key and return a URL for it."""
        ...

    async def get(self, key: str) -> str:
        """URL of a stored object; raises FileNotFoundError when absent."""
        ...

    async def delete(self, key: str) -> None:
        """Remove an object if present."""
        ...

    def local_path_for(self, url: str) -> Path | None:
        """Local file behind url when this backend owns it, else None."""
        ...


class LocalObjectStorage:
    """
    Filesystem-backed object storage.

    Example:
        storage = LocalObjectStorage(Path("/data/storage"), "http://host/files")
        url = await storage.put("audio/abc.mp3", data, "audio/mpeg")
        # http://host/files/audio/abc.mp3
    """

    def __init__(self, root: Path, public_base_url: str):
        """
        Initialize storage.

        Args:
            root: Directory holding stored objects
            public_base_url: URL prefix under which root is served
        """
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalObjectStorage":
        """Create storage from application settings."""
        return cls(settings.storage_root, settings.public_base_url)

    def _path_for_key(self, key: str) -> Path:
        """
        Map a storage key to a path under root.

        Raises:
            ValueError: If the key is absolute or escapes root
        """
        pure = PurePosixPath(key)
        if not key or pure.is_absolute() or ".." in pure.parts:
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.root.joinpath(*pure.parts)

    def url_for(self, key: str) -> str:
        """Public URL of a key."""
        return f"{self.public_base_url}/{key}"

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        path = self._path_for_key(key)
        await asyncio.to_thread(_atomic_write, path, data)
        logger.info(f"Stored {key} ({len(data) / 1024:.1f} KB, {content_type})")
        return self.url_for(key)

    async def put_file(self, key: str, path: Path, content_type: str) -> str:
        target = self._path_for_key(key)
        await asyncio.to_thread(_atomic_copy, Path(path), target)
        logger.info(f"Stored {key} from {Path(path).name} ({content_type})")
        return self.url_for(key)

    async def get(self, key: str) -> str:
        path = self._path_for_key(key)
        if not path.exists():
            raise FileNotFoundError(f"No stored object: {key}")
        return self.url_for(key)

    async def delete(self, key: str) -> None:
        path = self._path_for_key(key)
        if path.exists():
            await asyncio.to_thread(path.unlink)
            logger.debug(f"Deleted {key}")

    def local_path_for(self, url: str) -> Path | None:
        prefix = f"{self.public_base_url}/"
        if not url.startswith(prefix):
            return None
        try:
            path = self._path_for_key(url[len(prefix):])
        except ValueError:
            return None
        return path if path.exists() else None


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    tmp_path.write_bytes(data)
    os.replace(tmp_path, path)


def _atomic_copy(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = target.with_name(f".{target.name}.{uuid.uuid4().hex[:8]}.tmp")
    shutil.copyfile(source, tmp_path)
    os.replace(tmp_path, target)
