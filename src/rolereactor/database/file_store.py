"""
JSON file fallback store.

One file per collection under the storage root (``<root>/<collection>.json``),
used while MongoDB is unreachable. The contract matches the remote store:

* reading a missing file yields ``{}``;
* reading a corrupted file copies it to ``<collection>.json.corrupted.<ms>``,
  salvages the outermost JSON object if one can be found, rewrites the file
  with the salvage (or ``{}``) and carries on;
* writes replace the file atomically (temp file + ``os.replace``);
* ``archive`` renames the file to ``<collection>.json.migrated``.

Blocking file I/O runs in a worker thread so the event loop never stalls.

Usage
-----
    store = FileFallbackStore(Path("./data"))

    polls = await store.read("polls")

    # Read-modify-write serialised per collection, written on clean exit
    async with store.transaction("polls") as data:
        data["poll-1"] = {...}
"""

from __future__ import annotations

import asyncio
import json
import os
import re
import shutil
import tempfile
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, AsyncIterator, Dict

from rolereactor.database.errors import FallbackStoreError
from rolereactor.util.logger import get_logger

logger = get_logger("file_store")

_OUTERMOST_OBJECT = re.compile(r"\{[\s\S]*\}")


class ReadOutcome(Enum):
    OK = "ok"
    MISSING = "missing"
    RECOVERED_FROM_BACKUP = "recovered_from_backup"
    RESET_TO_EMPTY = "reset_to_empty"
    FAILED = "failed"


@dataclass
class ReadResult:
    """Contents of one collection file plus how they were obtained."""

    data: Dict[str, Any] = field(default_factory=dict)
    outcome: ReadOutcome = ReadOutcome.OK
    backup_path: Path | None = None

    @property
    def recovered(self) -> bool:
        return self.outcome in (ReadOutcome.RECOVERED_FROM_BACKUP, ReadOutcome.RESET_TO_EMPTY)


def salvage_json_object(text: str) -> Dict[str, Any] | None:
    """Pull the outermost JSON object out of damaged text, or return None."""
    match = _OUTERMOST_OBJECT.search(text)
    if match is not None:
        try:
            candidate = json.loads(match.group(0))
        except json.JSONDecodeError:
            candidate = None
        if isinstance(candidate, dict):
            return candidate

    start = text.find("{")
    if start == -1:
        return None
    try:
        candidate, _ = json.JSONDecoder().raw_decode(text, start)
    except json.JSONDecodeError:
        return None
    return candidate if isinstance(candidate, dict) else None


class FileFallbackStore:
    """Durable JSON-per-collection store with corruption recovery."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self._locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def path_for(self, collection: str) -> Path:
        if not collection or "/" in collection or "\\" in collection or collection.startswith("."):
            raise ValueError(f"Invalid collection name: {collection!r}")
        return self.root / f"{collection}.json"

    def _lock_for(self, collection: str) -> asyncio.Lock:
        lock = self._locks.get(collection)
        if lock is None:
            lock = self._locks[collection] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Blocking helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _write_sync(self, path: Path, data: Dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, default=str)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def _recover_sync(self, path: Path, text: str) -> ReadResult:
        backup = path.with_name(f"{path.name}.corrupted.{int(time.time() * 1000)}")
        try:
            shutil.copy2(path, backup)
        except OSError as exc:
            logger.error("[FILE STORE] Could not back up corrupted %s, leaving it untouched: %s", path, exc)
            return ReadResult({}, ReadOutcome.FAILED)
        logger.info("[FILE STORE] Backed up corrupted %s to %s", path.name, backup)

        salvaged = salvage_json_object(text)
        data = salvaged if salvaged is not None else {}
        outcome = ReadOutcome.RECOVERED_FROM_BACKUP if salvaged is not None else ReadOutcome.RESET_TO_EMPTY
        try:
            self._write_sync(path, data)
        except OSError as exc:
            logger.error("[FILE STORE] Could not rewrite %s after recovery: %s", path, exc)
            return ReadResult(data, ReadOutcome.FAILED, backup)

        if salvaged is not None:
            logger.warning("[FILE STORE] Salvaged %d top-level keys from corrupted %s", len(data), path.name)
        else:
            logger.warning("[FILE STORE] Nothing salvageable in %s, reset to empty", path.name)
        return ReadResult(data, outcome, backup)

    def _read_sync(self, path: Path) -> ReadResult:
        if not path.exists():
            return ReadResult({}, ReadOutcome.MISSING)
        try:
            raw = path.read_bytes()
        except OSError as exc:
            logger.error("[FILE STORE] Failed to read %s: %s", path, exc)
            return ReadResult({}, ReadOutcome.FAILED)
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            logger.warning("[FILE STORE] %s is not valid UTF-8: %s", path.name, exc)
            return self._recover_sync(path, raw.decode("utf-8", errors="replace"))

        if not text.strip():
            return ReadResult({}, ReadOutcome.OK)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.warning("[FILE STORE] Corrupted JSON in %s: %s", path.name, exc)
            return self._recover_sync(path, text)
        if not isinstance(data, dict):
            logger.warning("[FILE STORE] %s does not hold a JSON object", path.name)
            return self._recover_sync(path, text)
        return ReadResult(data, ReadOutcome.OK)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def read_with_outcome(self, collection: str) -> ReadResult:
        """Read a collection and report whether recovery was needed. Never raises for bad data."""
        return await asyncio.to_thread(self._read_sync, self.path_for(collection))

    async def read(self, collection: str) -> Dict[str, Any]:
        result = await self.read_with_outcome(collection)
        return result.data

    async def write(self, collection: str, data: Dict[str, Any]) -> bool:
        """Atomically replace a collection file. Returns False (and logs) on failure."""
        path = self.path_for(collection)
        try:
            await asyncio.to_thread(self._write_sync, path, data)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("[FILE STORE] Failed to write %s: %s", path, exc)
            return False
        return True

    async def exists(self, collection: str) -> bool:
        return await asyncio.to_thread(self.path_for(collection).exists)

    async def delete(self, collection: str) -> bool:
        path = self.path_for(collection)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.error("[FILE STORE] Failed to delete %s: %s", path, exc)
            return False
        logger.info("[FILE STORE] Deleted %s", path.name)
        return True

    async def archive(self, collection: str) -> Path | None:
        """Rename ``<collection>.json`` to ``<collection>.json.migrated`` for manual recovery later."""
        path = self.path_for(collection)
        target = path.with_name(f"{path.name}.migrated")
        try:
            await asyncio.to_thread(os.replace, path, target)
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.error("[FILE STORE] Failed to archive %s: %s", path, exc)
            return None
        logger.info("[FILE STORE] Archived %s to %s", path.name, target.name)
        return target

    @asynccontextmanager
    async def transaction(self, collection: str) -> AsyncIterator[Dict[str, Any]]:
        """
        Serialised read-modify-write of one collection.

        * Holds the collection lock so helpers for the same file do not
          interleave their read and write.
        * Writes the (mutated) mapping back on clean exit.
        * Leaves the file untouched if the body raises.
        * Refuses to run when the file could not be read or backed up, so
          unreadable contents are never overwritten.

        Raises:
            FallbackStoreError: If the file is unreadable or the final write fails.
        """
        async with self._lock_for(collection):
            result = await self.read_with_outcome(collection)
            if result.outcome is ReadOutcome.FAILED:
                raise FallbackStoreError(f"{collection} could not be read safely, refusing to overwrite it")
            data = result.data
            yield data
            if not await self.write(collection, data):
                raise FallbackStoreError(f"Could not persist {collection} to {self.root}")
