"""Object storage for uploaded quote documents."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Protocol
from uuid import UUID

import aiofiles
import aiofiles.os

from mpintel.exceptions import StorageError


class ObjectStorage(Protocol):
    """Byte store addressed by opaque locators."""

    async def put(self, locator: str, content: bytes) -> str: ...

    async def get(self, locator: str) -> bytes: ...

    async def delete(self, locator: str) -> None: ...


def build_locator(org_id: str, document_id: UUID, file_name: str) -> str:
    """Storage key for a document: ``<org>/<document id>/<safe file name>``."""
    safe_name = re.sub(r"[^\w.\-]+", "_", os.path.basename(file_name)).strip("._")
    return f"{org_id}/{document_id}/{safe_name or 'document'}"


class LocalObjectStorage:
    """Filesystem-backed storage rooted at a directory."""

    def __init__(self, root_dir: Path):
        self.root_dir = Path(root_dir)

    def _path(self, locator: str) -> Path:
        path = (self.root_dir / locator).resolve()
        if self.root_dir.resolve() not in path.parents:
            raise StorageError(f"Locator escapes storage root: {locator}")
        return path

    async def put(self, locator: str, content: bytes) -> str:
        path = self._path(locator)
        try:
            os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(path, "wb") as out_file:
                await out_file.write(content)
        except OSError as exc:
            raise StorageError(f"Failed to store {locator}: {exc}") from exc
        return locator

    async def get(self, locator: str) -> bytes:
        path = self._path(locator)
        try:
            async with aiofiles.open(path, "rb") as in_file:
                return await in_file.read()
        except OSError as exc:
            raise StorageError(f"Failed to read {locator}: {exc}") from exc

    async def delete(self, locator: str) -> None:
        path = self._path(locator)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"Failed to delete {locator}: {exc}") from exc


class InMemoryObjectStorage:
    """Dict-backed storage for tests and local runs."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}

    async def put(self, locator: str, content: bytes) -> str:
        self.objects[locator] = content
        return locator

    async def get(self, locator: str) -> bytes:
        try:
            return self.objects[locator]
        except KeyError:
            raise StorageError(f"Object not found: {locator}") from None

    async def delete(self, locator: str) -> None:
        self.objects.pop(locator, None)
