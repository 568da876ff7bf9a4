"""
Evidence storage: student complaint photos and worker proof-of-completion photos.

S3 is used when ``STORAGE_PROVIDER=s3``; otherwise (or when an S3 write fails)
files land in the local ``storage/`` directory that ``main.py`` serves at
``/storage``.
"""

import asyncio
from pathlib import Path
from typing import Optional
import logging
import tempfile
import uuid

from .config import Settings
from .storage_s3 import S3Storage, StorageError, guess_extension

logger = logging.getLogger("grievance.storage")

COMPLAINT_PHOTO_FOLDER = "complaints"
WORKER_PROOF_FOLDER = "worker-proofs"

DEFAULT_LOCAL_STORAGE_PATH = Path(__file__).resolve().parents[1] / "storage"


def _prepare_local_dir(path: Path) -> Path:
    try:
        path.mkdir(parents=True, exist_ok=True)
        return path
    except PermissionError:
        # Non-root runtime users may not be able to create the directory.
        tmp = Path(tempfile.mkdtemp(prefix="grievance_storage_"))
        logger.warning("Could not create %s; falling back to temp storage %s", path, tmp)
        return tmp


class EvidenceStorage:
    def __init__(
        self,
        settings: Settings,
        local_path: Optional[Path] = None,
        s3: Optional[S3Storage] = None,
    ):
        self.local_path = _prepare_local_dir(local_path or DEFAULT_LOCAL_STORAGE_PATH)
        self._s3 = s3
        if self._s3 is None and settings.storage_provider == "s3":
            try:
                self._s3 = S3Storage(settings)
                self._s3.ensure_bucket()
            except Exception as exc:  # pragma: no cover - initialization failure
                logger.error("Failed to initialize S3 storage, falling back to local filesystem: %s", exc)
                self._s3 = None
        logger.info("Storage initialized (provider=%s)", "s3" if self._s3 else "local")

    @property
    def provider(self) -> str:
        return "s3" if self._s3 else "local"

    def _write_local(self, folder: str, file_name: str, data: bytes) -> str:
        target_dir = self.local_path / folder
        target_dir.mkdir(parents=True, exist_ok=True)
        (target_dir / file_name).write_bytes(data)
        logger.info("Stored evidence locally: %s/%s", folder, file_name)
        return f"/storage/{folder}/{file_name}"

    def store(self, data: bytes, content_type: Optional[str], folder: str) -> str:
        """Store bytes under ``folder`` and return a durable URL."""
        object_id = uuid.uuid4().hex
        extension = guess_extension(content_type)

        if self._s3:
            key = S3Storage.build_s3_key(folder, object_id, extension)
            try:
                self._s3.put_object(key, data, content_type)
                return self._s3.public_url(key)
            except StorageError as exc:
                logger.error("Failed to upload evidence to S3, falling back to local storage: %s", exc)

        return self._write_local(folder, f"{object_id}.{extension}", data)

    async def upload_evidence(self, data: bytes, content_type: Optional[str], folder: str) -> str:
        # boto3 and file writes block; keep them off the event loop.
        return await asyncio.to_thread(self.store, data, content_type, folder)


__all__ = ["EvidenceStorage", "COMPLAINT_PHOTO_FOLDER", "WORKER_PROOF_FOLDER"]
