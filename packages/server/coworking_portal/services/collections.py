"""
Generic record accessors for the peripheral entities (branches, rooms,
packages, complaints, bookings, time entries, inventory).

Records are plain camelCase dicts with an ``id`` key. Like the task engine,
every call reloads from the store, so writes from other requests are seen on
the next call.
"""

from __future__ import annotations

import copy
import uuid
from typing import Any, Dict, Iterable, List, Optional

import structlog

from coworking_portal.core.storage import Key, ListStore, key_name
from coworking_portal_shared.schemas.common import StorageKey
from coworking_portal_shared.schemas.tasks import utcnow

log = structlog.get_logger()

KEY_PREFIX = "coworking_portal_"


class RecordCollection:
    """Keyed list of id-bearing records with simple field filtering."""

    def __init__(self, store: ListStore, key: Key, default: Iterable[dict] = ()):
        self.store = store
        self.key = key
        self._default = [dict(r) for r in default]

    def all(self) -> List[dict]:
        return self.store.read(self.key, copy.deepcopy(self._default))

    def get(self, record_id: str) -> Optional[dict]:
        return next((r for r in self.all() if r.get("id") == record_id), None)

    def filter(self, **fields: Any) -> List[dict]:
        return [r for r in self.all() if all(r.get(k) == v for k, v in fields.items())]

    def add(self, record: dict) -> dict:
        now = utcnow().isoformat()
        new_record = {"id": uuid.uuid4().hex, "createdAt": now, "updatedAt": now, **record}
        with self.store.lock(self.key):
            records = self.all()
            records.append(new_record)
            self.store.write(self.key, records)
        log.info("record.created", key=key_name(self.key), record_id=new_record["id"])
        return new_record

    def update(self, record_id: str, fields: dict) -> Optional[dict]:
        with self.store.lock(self.key):
            records = self.all()
            index = next((i for i, r in enumerate(records) if r.get("id") == record_id), None)
            if index is None:
                return None
            changes = {k: v for k, v in fields.items() if k != "id"}
            records[index] = {**records[index], **changes, "updatedAt": utcnow().isoformat()}
            self.store.write(self.key, records)
        return records[index]


def collection_name(key: StorageKey) -> str:
    """URL-friendly name for a storage key, e.g. ``time_entries``."""
    return key.value.removeprefix(KEY_PREFIX)


def build_collections(store: ListStore) -> Dict[str, RecordCollection]:
    """One collection per peripheral storage key, keyed by collection name.

    Tasks are excluded; they are owned by the task engine.
    """
    return {
        collection_name(key): RecordCollection(store, key)
        for key in StorageKey
        if key != StorageKey.TASKS
    }
