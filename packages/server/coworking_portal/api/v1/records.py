"""
Record endpoints for the peripheral collections (branches, rooms, bookings,
complaints, inventory, ...).

Records are schemaless camelCase objects; the collection stamps ``id``,
``createdAt`` and ``updatedAt``. Unknown collections and ids map to 404.
"""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException

from coworking_portal.api.deps import get_collections
from coworking_portal.services.collections import RecordCollection

router = APIRouter()

Collections = Dict[str, RecordCollection]


def get_collection_or_404(collections: Collections, name: str) -> RecordCollection:
    collection = collections.get(name)
    if collection is None:
        raise HTTPException(status_code=404, detail="Collection not found")
    return collection


@router.get("/", response_model=List[str])
def list_collections_endpoint(collections: Collections = Depends(get_collections)):
    return sorted(collections)


@router.get("/{name}")
def list_records_endpoint(name: str, collections: Collections = Depends(get_collections)):
    return get_collection_or_404(collections, name).all()


@router.post("/{name}", status_code=201)
def add_record_endpoint(
    name: str,
    record: Dict[str, Any],
    collections: Collections = Depends(get_collections),
):
    return get_collection_or_404(collections, name).add(record)


@router.get("/{name}/{record_id}")
def get_record_endpoint(
    name: str,
    record_id: str,
    collections: Collections = Depends(get_collections),
):
    record = get_collection_or_404(collections, name).get(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return record


@router.patch("/{name}/{record_id}")
def update_record_endpoint(
    name: str,
    record_id: str,
    fields: Dict[str, Any],
    collections: Collections = Depends(get_collections),
):
    """Merge ``fields`` into the record; ``id`` cannot be changed."""
    record = get_collection_or_404(collections, name).update(record_id, fields)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return record
