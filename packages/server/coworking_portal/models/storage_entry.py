"""Keyed JSON list rows backing the database storage backend."""

from typing import Any, List

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import TimestampMixin


class StorageEntry(TimestampMixin, SQLModel, table=True):
    __tablename__ = "storage_entries"

    key: str = Field(primary_key=True, nullable=False)
    payload: List[Any] = Field(default_factory=list, sa_type=sa.JSON, nullable=False)
