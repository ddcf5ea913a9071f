from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Department(str, Enum):
    AC = "AC"
    ELECTRICIAN = "Electrician"
    IT = "IT"
    MANAGEMENT = "Management"
    OPERATIONS = "Operations"
    ACCOUNTS = "Accounts"
    CLEANING = "Cleaning"
    SECURITY = "Security"
    MAINTENANCE = "Maintenance"

class TaskPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

class TaskStatus(str, Enum):
    OPEN = "Open"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    OVERDUE = "Overdue"

# The overdue sweep never touches these
TERMINAL_STATUSES: frozenset["TaskStatus"] = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.CANCELLED}
)

class FileType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"
    OTHER = "other"

class HistoryAction(str, Enum):
    CREATED = "created"
    ASSIGNED = "assigned"
    STATUS_CHANGED = "status_changed"
    COMMENTED = "commented"
    ATTACHMENT_ADDED = "attachment_added"
    DUE_DATE_CHANGED = "due_date_changed"
    FINE_APPLIED = "fine_applied"

class RecurrenceType(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"

class StorageKey(str, Enum):
    BOOKINGS = "coworking_portal_bookings"
    TIME_ENTRIES = "coworking_portal_time_entries"
    STAFF_TIME_ENTRIES = "coworking_portal_staff_time_entries"
    COMPLAINTS = "coworking_portal_complaints"
    BRANCHES = "coworking_portal_branches"
    ROOMS = "coworking_portal_rooms"
    PACKAGES = "coworking_portal_packages"
    INVENTORY = "coworking_portal_inventory"
    INVENTORY_MOVEMENTS = "coworking_portal_inventory_movements"
    TASKS = "coworking_portal_tasks"
    ADDITIONAL_USERS = "coworking_portal_additional_users"


class CamelModel(BaseModel):
    """Base for records persisted and served with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
