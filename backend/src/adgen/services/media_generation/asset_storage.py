"""Local filesystem storage for generated and uploaded assets.

Files live under <media_root>/<job_id>/ and are served at
<url_prefix>/<job_id>/<name>. Each asset is written once under a name
derived from its own uuid, so concurrent units never share a path.
"""

import asyncio
from pathlib import Path
from typing import Optional

import structlog

from adgen.services.exceptions import AssetStorageError

logger = structlog.get_logger(__name__)


class AssetStorage:
    """Write-once asset store namespaced by job id."""

    def __init__(self, media_root: str | Path, url_prefix: str = "/media"):
        self.root = Path(media_root).resolve()
        self.url_prefix = "/" + url_prefix.strip("/")

    async def save(self, job_id: str, filename: str, data: bytes, subdir: str = "") -> str:
        """Persist asset bytes.

        Args:
            job_id: Owning job (first path component)
            filename: File name inside the job directory
            data: Asset bytes
            subdir: Optional directory below the job directory (e.g. "uploads")

        Returns:
            Public URL of the stored asset

        Raises:
            AssetStorageError: If the path escapes the media root or the write fails
        """
        parts = [job_id, subdir] if subdir else [job_id]
        relative = Path(*parts, Path(filename).name)
        target = (self.root / relative).resolve()
        if self.root not in target.parents:
            raise AssetStorageError(f"Refusing to write outside media root: {relative}")

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise AssetStorageError(f"Failed to store asset {relative}: {e}") from e

        url = f"{self.url_prefix}/{relative.as_posix()}"
        logger.info("asset.stored", job_id=job_id, url=url, size_bytes=len(data))
        return url

    def resolve(self, url: str) -> Optional[Path]:
        """Map a public asset URL back to an existing local file.

        Returns:
            Path of the file, or None for remote URLs, paths outside the
            media root and files that do not exist
        """
        if not url or not url.startswith(self.url_prefix + "/"):
            return None
        relative = url[len(self.url_prefix) + 1 :]
        path = (self.root / relative).resolve()
        if self.root not in path.parents or not path.is_file():
            return None
        return path

    async def read(self, url: str) -> Optional[bytes]:
        """Read a locally stored asset, or None if it is not available."""
        path = self.resolve(url)
        if path is None:
            return None
        return await asyncio.to_thread(path.read_bytes)
