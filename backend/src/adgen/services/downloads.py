"""Packaging of selected job media for download."""

import asyncio
import io
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from adgen.services.exceptions import MediaNotFoundError, ValidationError
from adgen.services.job_store import JobStore
from adgen.services.media_generation.asset_storage import AssetStorage

logger = structlog.get_logger(__name__)

ZIP_CONTENT_TYPE = "application/zip"


@dataclass
class DownloadArtifact:
    """A file ready to be sent as an attachment.

    Single assets are served from `path`; archives are built in memory
    and carried in `content`.
    """

    filename: str
    content_type: str
    path: Optional[Path] = None
    content: Optional[bytes] = None


def content_type_for(path: Path) -> str:
    return "video/mp4" if path.suffix.lower() == ".mp4" else "image/png"


def archive_entry_name(output: dict, path: Path) -> str:
    """<angle_name>_<type>[_<placement>]<ext>"""
    name = f"{output.get('angle_name') or 'media'}_{output.get('type')}"
    if output.get("placement"):
        name += f"_{output['placement']}"
    return name.replace("/", "_") + path.suffix


def _build_zip(entries: list[tuple[str, Path]]) -> bytes:
    buffer = io.BytesIO()
    used: set[str] = set()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
        for name, path in entries:
            # Two outputs can share angle, type and placement
            unique, n = name, 1
            while unique in used:
                n += 1
                unique = f"{Path(name).stem}_{n}{Path(name).suffix}"
            used.add(unique)
            archive.write(path, arcname=unique)
    return buffer.getvalue()


class DownloadService:
    """Resolves selected media outputs of a job to local files."""

    def __init__(self, job_store: JobStore, storage: AssetStorage):
        self.job_store = job_store
        self.storage = storage

    async def prepare(self, job_id: str, media_ids: list[str]) -> DownloadArtifact:
        """Build the download for the selected outputs of a job.

        Args:
            job_id: Job owning the outputs
            media_ids: MediaOutput ids to include

        Returns:
            The single file, or a ZIP archive when several outputs are selected

        Raises:
            ValidationError: Missing job_id or media_ids
            JobNotFoundError: Unknown job
            MediaNotFoundError: No selected output, or no selected file stored locally
        """
        if not job_id or not media_ids:
            raise ValidationError("job_id and media_ids array required")

        job = await self.job_store.get_job(job_id)
        wanted = set(media_ids)
        selected = [o for o in job.media_outputs if o.get("id") in wanted]
        if not selected:
            raise MediaNotFoundError("No valid media found for selected IDs")

        if len(selected) == 1:
            path = self.storage.resolve(selected[0].get("url", ""))
            if path is None:
                raise MediaNotFoundError("File not found")
            return DownloadArtifact(
                filename=path.name, content_type=content_type_for(path), path=path
            )

        entries = []
        for output in selected:
            path = self.storage.resolve(output.get("url", ""))
            if path is None:
                logger.warning("download.file_missing", job_id=job_id, media_id=output.get("id"))
                continue
            entries.append((archive_entry_name(output, path), path))

        if not entries:
            raise MediaNotFoundError("None of the selected files are stored locally")

        content = await asyncio.to_thread(_build_zip, entries)
        logger.info(
            "download.archive_built", job_id=job_id, files=len(entries), size_bytes=len(content)
        )
        return DownloadArtifact(
            filename=f"campaign_{job_id[:8]}.zip", content_type=ZIP_CONTENT_TYPE, content=content
        )
