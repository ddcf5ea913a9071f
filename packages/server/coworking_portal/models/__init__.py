# SQLModel definitions, imported here so metadata is populated before create_all.
from .base import TimestampMixin  # noqa: F401
from .storage_entry import StorageEntry  # noqa: F401
