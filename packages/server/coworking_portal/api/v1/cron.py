"""
Cron trigger endpoints.

Nothing inside the portal schedules these; an external cron (or the arq
worker in ``coworking_portal.tasks.task_management``) calls them.
"""

from fastapi import APIRouter, Depends

from coworking_portal.api.deps import get_task_service
from coworking_portal.services.tasks import TaskService
from coworking_portal_shared.schemas.tasks import TaskManagementRun

router = APIRouter()


@router.get("/task-management", response_model=TaskManagementRun)
def task_management_endpoint(service: TaskService = Depends(get_task_service)):
    """Run the overdue sweep, late fines and recurring-task regeneration."""
    report = service.run_maintenance()
    return TaskManagementRun.from_report(report)
