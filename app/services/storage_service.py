"""Filesystem storage for uploaded receipt files.

Saved files return a *relative key* (``user_id/uuid_filename``) that is
persisted on the receipt document as ``fileKey``.  Retrieval resolves the
key under ``settings.STORAGE_DIRECTORY``.
"""

import logging
import uuid
from pathlib import Path
from typing import Tuple

from app.core.config import settings

logger = logging.getLogger(__name__)


class StorageService:
    """Stores uploads under a base directory, one sub-directory per user."""

    def __init__(self, base_dir: str | None = None) -> None:
        base_path = Path(base_dir or settings.STORAGE_DIRECTORY)
        if not base_path.is_absolute():
            repo_root = Path(__file__).resolve().parents[2]
            base_path = repo_root / base_path
        self.base_dir = base_path.resolve()

    def _normalise_filename(self, filename: str) -> str:
        """Remove potentially dangerous characters and ensure a safe filename."""
        keepchars = {"-", "_", "."}
        return "".join(c for c in filename if c.isalnum() or c in keepchars) or "receipt"

    def save_bytes(self, contents: bytes, filename: str | None, user_id: str) -> Tuple[str, str]:
        """Persist ``contents`` and return ``(key, original_name)``."""
        if not contents:
            raise ValueError("Empty upload payload")
        original_name = filename or "receipt"
        safe_user = self._normalise_filename(user_id)
        name = f"{uuid.uuid4().hex}_{self._normalise_filename(original_name)}"

        user_dir = self.base_dir / safe_user
        user_dir.mkdir(parents=True, exist_ok=True)
        file_path = user_dir / name
        file_path.write_bytes(contents)
        logger.info("[storage] saved %s bytes=%d", file_path, len(contents))
        return f"{safe_user}/{name}", original_name

    def get_full_path(self, relative_key: str) -> Path:
        path = (self.base_dir / relative_key).resolve()
        if self.base_dir not in path.parents:
            raise ValueError(f"Invalid file key: {relative_key}")
        return path

    def load(self, relative_key: str) -> bytes:
        try:
            return self.get_full_path(relative_key).read_bytes()
        except FileNotFoundError as e:
            raise ValueError(f"File not found: {relative_key}") from e
