"""JSON file backed state store."""

import asyncio
import copy
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from order_bridge.core.logger import setup_logger
from order_bridge.store.base import StateStore

logger = setup_logger(__name__)


class JSONFileStore(StateStore):
    """Stores each key as one JSON file.

    Writes go to a temp file in the same directory and are moved into place
    with os.replace, so readers never see a half-written file. A per-key
    asyncio.Lock serializes read-modify-write within the process.
    """

    def __init__(self, base_dir: str = ".", files: Optional[Dict[str, str]] = None):
        """
        Args:
            base_dir: Directory for keys without an explicit file
            files: Optional key -> file path overrides
        """
        self.base_dir = Path(base_dir)
        self.files = {key: Path(path) for key, path in (files or {}).items()}
        self._locks: Dict[str, asyncio.Lock] = {}

    def path_for(self, key: str) -> Path:
        return self.files.get(key) or self.base_dir / f"{key}.json"

    def _lock_for(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _read(self, key: str) -> Optional[Any]:
        path = self.path_for(key)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(value, f, indent=2, default=str)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock_for(key):
            return self._read(key)

    async def put(self, key: str, value: Any) -> None:
        async with self._lock_for(key):
            self._write(key, value)
        logger.debug(f"Saved {key} to {self.path_for(key)}")

    async def update(self, key: str, mutate: Callable[[Optional[Any]], Any]) -> Any:
        async with self._lock_for(key):
            current = self._read(key)
            new_value = mutate(copy.deepcopy(current))
            self._write(key, new_value)
            return new_value

    async def health_check(self) -> bool:
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            return os.access(self.base_dir, os.W_OK)
        except OSError as e:
            logger.error(f"State directory not accessible: {e}")
            return False


class MemoryStateStore(StateStore):
    """In-process store, for tests and single-run tooling."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial or {})
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self._data.get(key))

    async def put(self, key: str, value: Any) -> None:
        async with self._lock:
            self._data[key] = copy.deepcopy(value)

    async def update(self, key: str, mutate: Callable[[Optional[Any]], Any]) -> Any:
        async with self._lock:
            new_value = mutate(copy.deepcopy(self._data.get(key)))
            self._data[key] = copy.deepcopy(new_value)
            return new_value

    async def health_check(self) -> bool:
        return True
