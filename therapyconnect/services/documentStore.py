"""
Document blob storage.

The credentialing engine only ever sees an opaque storage reference.  Any
backend that satisfies ``DocumentStore`` can be plugged in (local disk in
development, an object store in production).  Backends signal outages with
``StorageUnavailable`` so the engine can abort the submission without
touching credentialing state.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from therapyconnect.core.config import settings
from therapyconnect.core.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol every document storage backend must satisfy."""

    async def put(self, data: bytes, metadata: dict[str, Any]) -> str:
        """Persist bytes and return an opaque reference."""
        ...

    async def get(self, reference: str) -> bytes:
        ...

    async def delete(self, reference: str) -> None:
        ...


class LocalDocumentStore:
    """Filesystem-backed store; references are paths relative to ``root``."""

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root if root is not None else settings.document_storage_path)

    def _resolve(self, reference: str) -> Path:
        path = (self._root / reference).resolve()
        if self._root.resolve() not in path.parents:
            raise StorageUnavailable("Storage reference escapes the storage root", reference=reference)
        return path

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def put(self, data: bytes, metadata: dict[str, Any]) -> str:
        provider_id = str(metadata.get("provider_id", "unassigned"))
        extension = mimetypes.guess_extension(str(metadata.get("mime_type", ""))) or ""
        reference = f"{provider_id}/{uuid.uuid4().hex}{extension}"
        try:
            await asyncio.to_thread(self._write, self._resolve(reference), data)
        except OSError as exc:
            logger.error("Document store write failed for %s: %s", reference, exc)
            raise StorageUnavailable("Document storage is unavailable", reason=str(exc)) from exc
        logger.info("Stored document %s (%d bytes)", reference, len(data))
        return reference

    async def get(self, reference: str) -> bytes:
        try:
            return await asyncio.to_thread(self._resolve(reference).read_bytes)
        except OSError as exc:
            raise StorageUnavailable("Document storage is unavailable", reason=str(exc)) from exc

    async def delete(self, reference: str) -> None:
        try:
            await asyncio.to_thread(self._resolve(reference).unlink, True)
        except OSError as exc:
            raise StorageUnavailable("Document storage is unavailable", reason=str(exc)) from exc
