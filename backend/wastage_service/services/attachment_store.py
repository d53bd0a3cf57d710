"""Disk storage for wastage photos.

Images are written below ``<UPLOAD_ROOT>/uploads/wastage/<challan id>/`` under
a random name that keeps only the original extension, and are referenced by
the relative URL the static ``/uploads`` mount serves them from.
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Iterable, Optional, Sequence

from fastapi import UploadFile
from loguru import logger

from wastage_service.core.concurrency import run_in_thread_limited
from wastage_service.core.config import Settings

UPLOADS_FOLDER = "uploads/wastage"


def _write_bytes(path: Path, contents: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(contents)


def _remove_file(path: Path) -> bool:
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


class AttachmentStore:
    def __init__(
        self,
        upload_root: Path | str,
        *,
        allowed_extensions: Iterable[str] = (".jpg", ".jpeg", ".png", ".gif"),
        max_bytes: int = 10 * 1024 * 1024,
    ):
        self.upload_root = Path(upload_root)
        self.allowed_extensions = frozenset(ext.lower() for ext in allowed_extensions)
        self.max_bytes = max_bytes

    @classmethod
    def from_settings(cls, settings: Settings) -> "AttachmentStore":
        return cls(
            settings.UPLOAD_ROOT,
            allowed_extensions=settings.ALLOWED_IMAGE_EXTENSIONS,
            max_bytes=settings.MAX_IMAGE_BYTES,
        )

    @staticmethod
    def is_valid_scope_key(scope_key: str) -> bool:
        """A scope key becomes one directory name, so it may not walk the tree."""

        if not scope_key or scope_key.strip() in {".", ".."}:
            return False
        return not any(ch in scope_key for ch in ("/", "\\", "\x00"))

    async def save(self, files: Sequence[UploadFile], scope_key: str) -> list[str]:
        """Store the acceptable files and return their URLs in input order.

        Files with a disallowed extension, no content or more than
        ``max_bytes`` are skipped, as is any file whose write fails.
        """

        if not self.is_valid_scope_key(scope_key):
            raise ValueError(f"Invalid attachment scope: {scope_key!r}")

        image_urls: list[str] = []
        if not files:
            return image_urls

        target_dir = self.upload_root / UPLOADS_FOLDER / scope_key
        for upload in files:
            try:
                url = await self._save_one(upload, scope_key, target_dir)
            except OSError:
                logger.bind(filename=upload.filename, scope=scope_key).exception(
                    "attachment_save_failed"
                )
                continue
            if url is not None:
                image_urls.append(url)
        return image_urls

    async def _save_one(
        self, upload: UploadFile, scope_key: str, target_dir: Path
    ) -> Optional[str]:
        extension = Path(upload.filename or "").suffix.lower()
        if extension not in self.allowed_extensions:
            logger.bind(filename=upload.filename, extension=extension).warning(
                "attachment_invalid_type"
            )
            return None

        try:
            contents = await upload.read(self.max_bytes + 1)
        finally:
            await upload.close()

        if not contents:
            logger.bind(filename=upload.filename).warning("attachment_empty")
            return None
        if len(contents) > self.max_bytes:
            logger.bind(filename=upload.filename, max_bytes=self.max_bytes).warning(
                "attachment_too_large"
            )
            return None

        file_name = f"{uuid.uuid4().hex}{extension}"
        await run_in_thread_limited(_write_bytes, target_dir / file_name, contents)

        relative_url = f"/{UPLOADS_FOLDER}/{scope_key}/{file_name}"
        logger.bind(url=relative_url, size=len(contents)).info("attachment_saved")
        return relative_url

    def resolve(self, relative_url: str) -> Optional[Path]:
        """Map a stored URL back to its file, or ``None`` if it points outside the root."""

        root = self.upload_root.resolve()
        path = (root / relative_url.lstrip("/")).resolve()
        if not path.is_relative_to(root):
            return None
        return path

    async def delete(self, image_urls: Sequence[str]) -> int:
        """Remove stored files; missing files are fine. Returns how many were removed."""

        removed = 0
        for url in image_urls or []:
            path = self.resolve(url)
            if path is None:
                logger.bind(url=url).warning("attachment_delete_outside_root")
                continue
            try:
                if await run_in_thread_limited(_remove_file, path):
                    removed += 1
                    logger.bind(url=url).info("attachment_deleted")
            except OSError:
                logger.bind(url=url).exception("attachment_delete_failed")
        return removed
