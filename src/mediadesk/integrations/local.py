"""Local filesystem asset store for development setups."""

from __future__ import annotations

import logging
from pathlib import Path

from mediadesk.content.models import AssetRef
from mediadesk.errors import TransientIOError
from mediadesk.integrations.base import AssetStore

logger = logging.getLogger(__name__)


class LocalAssetStore(AssetStore):
    """Stores assets under a base directory, preserving the key structure."""

    def __init__(self, base_path: str | Path, public_base_url: str = "") -> None:
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/") or self.base_path.as_uri()

    def _resolve_path(self, key: str) -> Path:
        clean = Path(key).as_posix().lstrip("/")
        full_path = (self.base_path / clean).resolve()
        try:
            full_path.relative_to(self.base_path)
        except ValueError:
            raise ValueError(f"Invalid key: {key} (outside base directory)") from None
        return full_path

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key.lstrip('/')}"

    def put(self, key: str, data: bytes, content_type: str | None = None) -> AssetRef:
        full_path = self._resolve_path(key)
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(data)
        except OSError as exc:
            raise TransientIOError(f"Failed to write {key}: {exc}") from exc
        logger.debug("Stored %d bytes at %s", len(data), full_path)
        return AssetRef(key=key, url=self.public_url(key))

    def get(self, key: str) -> bytes:
        full_path = self._resolve_path(key)
        if not full_path.is_file():
            raise FileNotFoundError(key)
        return full_path.read_bytes()

    def delete(self, key: str) -> bool:
        full_path = self._resolve_path(key)
        try:
            full_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise TransientIOError(f"Failed to delete {key}: {exc}") from exc
        return True
