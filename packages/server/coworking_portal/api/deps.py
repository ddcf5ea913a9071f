"""
Shared FastAPI dependencies: the task engine, the record collections and the
acting user.

Authentication is handled upstream; the acting user arrives in the
``X-User-Id`` / ``X-User-Name`` headers and defaults to ``anonymous``.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Header, Request

from coworking_portal.services.collections import RecordCollection
from coworking_portal.services.tasks import TaskService

ANONYMOUS = "anonymous"


@dataclass
class Actor:
    user_id: str
    user_name: str


def get_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_name: Optional[str] = Header(default=None),
) -> Actor:
    user_id = x_user_id or ANONYMOUS
    return Actor(user_id=user_id, user_name=x_user_name or user_id)


def get_task_service(request: Request) -> TaskService:
    return request.app.state.task_service


def get_collections(request: Request) -> Dict[str, RecordCollection]:
    return request.app.state.collections
