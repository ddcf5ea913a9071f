"""
Shared fixtures: an in-memory store, an unseeded task engine over it, and an
HTTP client whose task engine and record collections use that store.
"""

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from coworking_portal.api.deps import get_collections, get_task_service
from coworking_portal.core.storage import InMemoryStore
from coworking_portal.main import app
from coworking_portal.services.collections import build_collections
from coworking_portal.services.tasks import TaskService
from coworking_portal_shared.schemas.common import Department, TaskPriority
from coworking_portal_shared.schemas.tasks import TaskCreate, utcnow


@pytest.fixture
def store():
    s = InMemoryStore()
    yield s
    s.reset()


@pytest.fixture
def service(store):
    return TaskService(store, seed_tasks=[])


@pytest.fixture
def make_task_in():
    def _make(**overrides):
        fields = {
            "title": "Clean Lobby",
            "description": "Mop and dust the lobby",
            "department": Department.CLEANING,
            "priority": TaskPriority.HIGH,
            "branch_id": "1",
            "due_date": utcnow() + timedelta(hours=1),
        }
        fields.update(overrides)
        return TaskCreate(**fields)

    return _make


@pytest.fixture
async def client(service, store):
    collections = build_collections(store)
    app.dependency_overrides[get_task_service] = lambda: service
    app.dependency_overrides[get_collections] = lambda: collections
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
