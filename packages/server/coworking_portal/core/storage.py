"""
Keyed list storage with interchangeable backends.

Every domain accessor reads and writes whole lists of JSON-compatible records
by key. Backends:
- InMemoryStore: per-process dict, gone on restart
- FileBackedStore: one JSON file per key under a data directory
- BrowserLocalStore: JSON strings in a localStorage-style string mapping
- DatabaseStore: one row per key in the ``storage_entries`` table
- MirroredStore: a primary store mirrored into a fallback store

``load``/``save`` report failures as a StorageResult so callers can decide
whether degradation is acceptable. ``read``/``write`` are the best-effort
variants: they log failures and never raise for storage errors.

This is not a cache: no eviction, no TTL, no invalidation. Writes replace the
full list and are last-write-wins across processes.
"""

from __future__ import annotations

import copy
import json
import os
import threading
from abc import ABC, abstractmethod
from collections.abc import MutableMapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Sequence, Union

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from coworking_portal.core.config import Settings
from coworking_portal.models.storage_entry import StorageEntry
from coworking_portal_shared.schemas.common import StorageKey

log = structlog.get_logger()

Key = Union[str, StorageKey]


def key_name(key: Key) -> str:
    return key.value if isinstance(key, Enum) else str(key)


@dataclass(frozen=True)
class StorageError:
    key: str
    backend: str
    operation: str  # read | write
    exc: BaseException

    def __str__(self) -> str:
        return f"{self.backend} {self.operation} failed for {self.key!r}: {self.exc}"


@dataclass(frozen=True)
class StorageResult:
    """Outcome of a load or save.

    ``value`` is None when the key was never written (or on a failed read with
    nothing to fall back to). ``degraded`` marks results served by a fallback.
    """

    value: Optional[list] = None
    error: Optional[StorageError] = None
    degraded: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class ListStore(ABC):
    """Abstract keyed list store."""

    name = "abstract"

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @abstractmethod
    def load(self, key: Key) -> StorageResult:
        ...

    @abstractmethod
    def save(self, key: Key, data: Sequence[Any]) -> StorageResult:
        ...

    def read(self, key: Key, default: list) -> list:
        """Return the stored list, or ``default`` itself when absent or unreadable."""
        result = self.load(key)
        if result.error is not None:
            log.warning(
                "storage.read_failed",
                key=key_name(key),
                backend=self.name,
                error=str(result.error),
                degraded=result.degraded,
            )
        if result.value is None:
            return default
        return result.value

    def write(self, key: Key, data: Sequence[Any]) -> None:
        """Persist the full list; failures are logged and swallowed."""
        result = self.save(key, data)
        if result.error is not None:
            log.error(
                "storage.write_failed",
                key=key_name(key),
                backend=self.name,
                error=str(result.error),
                degraded=result.degraded,
            )
        else:
            log.debug("storage.written", key=key_name(key), backend=self.name, items=len(data))

    def lock(self, key: Key) -> threading.RLock:
        """Per-key in-process mutex for read-modify-write sequences."""
        name = key_name(key)
        with self._locks_guard:
            if name not in self._locks:
                self._locks[name] = threading.RLock()
            return self._locks[name]

    def _error(self, key: Key, operation: str, exc: BaseException) -> StorageResult:
        return StorageResult(error=StorageError(key_name(key), self.name, operation, exc))


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class InMemoryStore(ListStore):
    """Per-process keyed lists. The backing dict can be injected."""

    name = "memory"

    def __init__(self, initial: Optional[MutableMapping[str, list]] = None):
        super().__init__()
        self._data: MutableMapping[str, list] = initial if initial is not None else {}

    def load(self, key: Key) -> StorageResult:
        name = key_name(key)
        if name not in self._data:
            return StorageResult()
        return StorageResult(value=copy.deepcopy(self._data[name]))

    def save(self, key: Key, data: Sequence[Any]) -> StorageResult:
        self._data[key_name(key)] = copy.deepcopy(list(data))
        return StorageResult()

    def reset(self) -> None:
        self._data.clear()


class FileBackedStore(ListStore):
    """One pretty-printed JSON array per key inside ``directory``."""

    name = "file"

    DEFAULT_FILENAMES = {
        StorageKey.TASKS.value: "tasks.json",
        StorageKey.ADDITIONAL_USERS.value: "users.json",
    }

    def __init__(self, directory: Union[str, Path] = "data", filenames: Optional[dict[str, str]] = None):
        super().__init__()
        self.directory = Path(directory)
        self._filenames = {**self.DEFAULT_FILENAMES, **(filenames or {})}

    def path_for(self, key: Key) -> Path:
        name = key_name(key)
        return self.directory / self._filenames.get(name, f"{name}.json")

    def load(self, key: Key) -> StorageResult:
        path = self.path_for(key)
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return StorageResult()
        except (OSError, ValueError) as exc:
            return self._error(key, "read", exc)
        if not isinstance(data, list):
            return self._error(key, "read", ValueError(f"{path} does not hold a JSON array"))
        return StorageResult(value=data)

    def save(self, key: Key, data: Sequence[Any]) -> StorageResult:
        path = self.path_for(key)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(list(data), f, indent=2)
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as exc:
            return self._error(key, "write", exc)
        return StorageResult()


class BrowserLocalStore(ListStore):
    """localStorage contract: string values holding serialized JSON.

    The default mapping is a plain dict; hosts that have a real string store
    (a session-scoped mapping, a shelf) inject it.
    """

    name = "local"

    def __init__(self, storage: Optional[MutableMapping[str, str]] = None):
        super().__init__()
        self.storage: MutableMapping[str, str] = storage if storage is not None else {}

    def load(self, key: Key) -> StorageResult:
        raw = self.storage.get(key_name(key))
        if raw is None:
            return StorageResult()
        try:
            data = json.loads(raw)
        except ValueError as exc:
            return self._error(key, "read", exc)
        if not isinstance(data, list):
            return self._error(key, "read", ValueError("stored value is not a JSON array"))
        return StorageResult(value=data)

    def save(self, key: Key, data: Sequence[Any]) -> StorageResult:
        try:
            self.storage[key_name(key)] = json.dumps(list(data))
        except (OSError, TypeError, ValueError) as exc:
            return self._error(key, "write", exc)
        return StorageResult()


class DatabaseStore(ListStore):
    """Keyed lists stored as JSON payload rows through SQLModel."""

    name = "database"

    def __init__(self, url: Optional[str] = None, engine=None):
        super().__init__()
        if engine is None:
            if url is None:
                raise ValueError("DatabaseStore needs a url or an engine")
            engine = _create_engine(url)
        self.engine = engine

    def create_tables(self) -> None:
        """Create the storage table (development helper, no migrations)."""
        SQLModel.metadata.create_all(self.engine, tables=[StorageEntry.__table__])

    def load(self, key: Key) -> StorageResult:
        try:
            with Session(self.engine) as session:
                entry = session.get(StorageEntry, key_name(key))
                if entry is None:
                    return StorageResult()
                return StorageResult(value=copy.deepcopy(list(entry.payload)))
        except SQLAlchemyError as exc:
            return self._error(key, "read", exc)

    def save(self, key: Key, data: Sequence[Any]) -> StorageResult:
        payload = copy.deepcopy(list(data))
        try:
            with Session(self.engine) as session:
                entry = session.get(StorageEntry, key_name(key))
                if entry is None:
                    entry = StorageEntry(key=key_name(key), payload=payload)
                else:
                    entry.payload = payload
                session.add(entry)
                session.commit()
        except (SQLAlchemyError, TypeError, ValueError) as exc:
            return self._error(key, "write", exc)
        return StorageResult()


class MirroredStore(ListStore):
    """Primary store with every write mirrored into a fallback store.

    Reads prefer the primary; when it fails the fallback copy is served and
    the result is marked degraded, carrying the primary's error.
    """

    name = "mirrored"

    def __init__(self, primary: ListStore, fallback: ListStore):
        super().__init__()
        self.primary = primary
        self.fallback = fallback

    def load(self, key: Key) -> StorageResult:
        result = self.primary.load(key)
        if result.ok:
            return result
        backup = self.fallback.load(key)
        return StorageResult(value=backup.value, error=result.error, degraded=True)

    def save(self, key: Key, data: Sequence[Any]) -> StorageResult:
        mirror = self.fallback.save(key, data)
        if not mirror.ok:
            log.warning("storage.mirror_failed", key=key_name(key), error=str(mirror.error))
        result = self.primary.save(key, data)
        if result.ok:
            return result
        return StorageResult(error=result.error, degraded=mirror.ok)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def _create_engine(url: str):
    parsed = make_url(url)
    connect_args = {}
    if parsed.drivername.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if parsed.database and parsed.database != ":memory:":
            os.makedirs(os.path.dirname(parsed.database) or ".", exist_ok=True)
    return create_engine(url, connect_args=connect_args)


def build_store(settings: Settings) -> ListStore:
    """Select the storage backend named in settings."""
    backend = settings.storage_backend
    if backend == "memory":
        return InMemoryStore()
    if backend == "file":
        return FileBackedStore(settings.data_dir)
    if backend == "local":
        return BrowserLocalStore()

    database = DatabaseStore(settings.database_url)
    if backend == "database":
        database.create_tables()
        return database

    try:
        database.create_tables()
    except SQLAlchemyError as exc:
        log.warning("storage.database_unavailable", error=str(exc))
    return MirroredStore(database, FileBackedStore(settings.data_dir))
