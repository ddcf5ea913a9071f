"""
ARQ background task: overdue sweep, late fines and recurring-task regeneration.

Scheduled hourly at minute 0 (UTC). Nothing runs unless the host deploys the
worker (``arq coworking_portal.tasks.task_management.WorkerSettings``).
"""

from __future__ import annotations

import structlog
from arq import cron
from arq.connections import RedisSettings

from coworking_portal.core.config import get_settings
from coworking_portal.core.logging_config import configure_logging
from coworking_portal.services.tasks import build_task_service

log = structlog.get_logger()


async def startup(ctx: dict) -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format, component="worker")
    ctx["task_service"] = build_task_service(settings)


async def run_task_management(ctx: dict) -> dict:
    """Run one maintenance pass and return the per-sweep counts."""
    service = ctx.get("task_service")
    if service is None:
        service = build_task_service(get_settings())
        ctx["task_service"] = service

    report = service.run_maintenance()
    counts = {
        "overdue_tasks": len(report.overdue_tasks),
        "applied_fines": len(report.applied_fines),
        "new_recurring_tasks": len(report.new_recurring_tasks),
    }
    log.info("task_management.run_finished", **counts)
    return counts


# ARQ worker settings
class WorkerSettings:
    """ARQ worker configuration."""

    functions = [run_task_management]
    cron_jobs = [
        # Run every hour
        cron(run_task_management, minute=0),
    ]
    on_startup = startup
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
