from typing import Dict, Optional, Protocol, runtime_checkable
from pathlib import Path
import asyncio
import os
import re
import tempfile

from agent_hub.errors import SerializationError


@runtime_checkable
class KeyValueStore(Protocol):
    """Durable string-to-string storage addressed by fixed keys"""

    async def get(self, key: str) -> Optional[str]: ...
    async def set(self, key: str, value: str) -> None: ...
    async def delete(self, key: str) -> bool: ...


class InMemoryKeyValueStore:
    """Process-local store, used when no storage directory is configured"""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            self.data[key] = value

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self.data.get(key)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            if key in self.data:
                del self.data[key]
                return True
            return False


_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class FileKeyValueStore:
    """One UTF-8 file per key inside a directory.

    Writes go to a temporary file that is atomically renamed over the target,
    so a crash mid-write leaves the previous value intact.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory)
        self._lock = asyncio.Lock()

    def _path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def _write(self, path: Path, value: str):
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{path.stem}-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _read(self, path: Path) -> Optional[str]:
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise SerializationError(f"{path.name} is not valid UTF-8") from e

    def _remove(self, path: Path) -> bool:
        if path.exists():
            path.unlink()
            return True
        return False

    async def set(self, key: str, value: str) -> None:
        path = self._path(key)
        async with self._lock:
            await asyncio.to_thread(self._write, path, value)

    async def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        async with self._lock:
            return await asyncio.to_thread(self._read, path)

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        async with self._lock:
            return await asyncio.to_thread(self._remove, path)


def create_store(storage_dir: Optional[str] = None) -> KeyValueStore:
    """File-backed store when a directory is given, in-memory otherwise"""
    if storage_dir:
        return FileKeyValueStore(storage_dir)
    return InMemoryKeyValueStore()
