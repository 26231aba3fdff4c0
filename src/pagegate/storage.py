"""Artifact stores for redacted outputs.

``put`` returns an opaque locator; ``get`` raises :class:`ArtifactNotFound`
for unknown locators. :class:`FallbackArtifactStore` wraps a primary store and
degrades to a secondary one when the primary fails.
"""

from __future__ import annotations

import mimetypes
import threading
from pathlib import Path
from typing import Dict, Tuple
from uuid import uuid4

from .errors import ArtifactNotFound
from .interfaces import ArtifactStore
from .logging import get_logger

logger = get_logger("pagegate.storage")

_EXTENSIONS = {
    "application/pdf": ".pdf",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "application/json": ".json",
}


def _extension(content_type: str) -> str:
    return _EXTENSIONS.get(content_type) or mimetypes.guess_extension(content_type) or ".bin"


def new_locator(content_type: str) -> str:
    return f"{uuid4().hex}{_extension(content_type)}"


class InMemoryArtifactStore(ArtifactStore):
    def __init__(self) -> None:
        self._items: Dict[str, Tuple[bytes, str]] = {}
        self._lock = threading.Lock()

    def put(self, content: bytes, content_type: str) -> str:
        key = new_locator(content_type)
        with self._lock:
            self._items[key] = (bytes(content), content_type)
        return key

    def _entry(self, locator: str) -> Tuple[bytes, str]:
        with self._lock:
            try:
                return self._items[locator]
            except KeyError as exc:
                raise ArtifactNotFound(locator) from exc

    def get(self, locator: str) -> bytes:
        return self._entry(locator)[0]

    def content_type(self, locator: str) -> str:
        return self._entry(locator)[1]

    def delete(self, locator: str) -> None:
        with self._lock:
            self._items.pop(locator, None)

    def __len__(self) -> int:
        return len(self._items)


class LocalArtifactStore(ArtifactStore):
    """Files under a root directory, one file per artifact."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, locator: str) -> Path:
        # Locators are bare file names; anything else cannot have come from put().
        if not locator or Path(locator).name != locator or locator.startswith("."):
            raise ArtifactNotFound(locator)
        return self.root / locator

    def put(self, content: bytes, content_type: str) -> str:
        key = new_locator(content_type)
        self._path(key).write_bytes(content)
        logger.debug("Stored artifact", extra={"extra": {"locator": key, "bytes": len(content)}})
        return key

    def get(self, locator: str) -> bytes:
        path = self._path(locator)
        if not path.is_file():
            raise ArtifactNotFound(locator)
        return path.read_bytes()

    def content_type(self, locator: str) -> str:
        path = self._path(locator)
        if not path.is_file():
            raise ArtifactNotFound(locator)
        return mimetypes.guess_type(path.name)[0] or "application/octet-stream"

    def delete(self, locator: str) -> None:
        try:
            path = self._path(locator)
        except ArtifactNotFound:
            return
        path.unlink(missing_ok=True)


class FallbackArtifactStore(ArtifactStore):
    """Write to ``primary``; on failure write to ``secondary``. Reads try both."""

    def __init__(self, primary: ArtifactStore, secondary: ArtifactStore) -> None:
        self.primary = primary
        self.secondary = secondary

    def put(self, content: bytes, content_type: str) -> str:
        try:
            return self.primary.put(content, content_type)
        except Exception:
            logger.warning("Primary artifact store failed; using fallback", exc_info=True)
            return self.secondary.put(content, content_type)

    def get(self, locator: str) -> bytes:
        try:
            return self.primary.get(locator)
        except ArtifactNotFound:
            return self.secondary.get(locator)
        except Exception:
            logger.warning("Primary artifact store failed on read", exc_info=True)
            return self.secondary.get(locator)

    def content_type(self, locator: str) -> str:
        try:
            return self.primary.content_type(locator)
        except ArtifactNotFound:
            return self.secondary.content_type(locator)
        except Exception:
            logger.warning("Primary artifact store failed on read", exc_info=True)
            return self.secondary.content_type(locator)

    def delete(self, locator: str) -> None:
        try:
            self.primary.delete(locator)
        except Exception:
            logger.warning("Primary artifact store failed on delete", exc_info=True)
        self.secondary.delete(locator)


__all__ = [
    "InMemoryArtifactStore",
    "LocalArtifactStore",
    "FallbackArtifactStore",
    "new_locator",
]
