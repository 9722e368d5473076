"""Scheduled-run glue for stored sync configurations.

Builds one async task function per scheduled configuration. Cron parsing
and timer firing live outside the engine (APScheduler, k8s CronJob, or
scripts/run_sync.py); whoever fires the timer just awaits the callable.

Each task:
- Never raises (failures surface through the execution record and notifications)
- Logs its outcome via structlog
- Returns the terminal Execution, or None when the run could not start
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog

from src.chimera.sync.errors import ConflictError, SyncError
from src.chimera.sync.repository import ConfigurationRepository
from src.chimera.sync.schemas import Execution, SyncConfiguration
from src.chimera.sync.service import SyncService

logger = structlog.get_logger(__name__)

ScheduledTask = Callable[[], Awaitable[Execution | None]]


async def run_scheduled_sync(service: SyncService, configuration_id: int) -> Execution | None:
    """Run one configuration on behalf of the scheduler."""
    try:
        execution = await service.run_configuration(configuration_id)
    except ConflictError as exc:
        logger.warning(
            "scheduler.sync_skipped_running",
            configuration_id=configuration_id,
            execution_id=exc.execution_id,
        )
        return None
    except SyncError as exc:
        logger.error("scheduler.sync_rejected", configuration_id=configuration_id, error=str(exc))
        return None
    except Exception:
        logger.error("scheduler.sync_failed", configuration_id=configuration_id, exc_info=True)
        return None

    logger.info(
        "scheduler.sync_finished",
        configuration_id=configuration_id,
        execution_id=execution.id,
        status=execution.status.value,
    )
    return execution


def build_scheduled_task(service: SyncService, configuration: SyncConfiguration) -> ScheduledTask:
    async def scheduled_sync_task() -> Execution | None:
        return await run_scheduled_sync(service, configuration.id)

    scheduled_sync_task.__name__ = f"sync_configuration_{configuration.id}"
    return scheduled_sync_task


async def setup_sync_scheduler(
    service: SyncService,
    configurations: ConfigurationRepository,
) -> dict[str, tuple[SyncConfiguration, ScheduledTask]]:
    """Map every scheduled configuration to its task function.

    Returns:
        Dict keyed by task name, each value the configuration (for its
        schedule descriptor) and the callable to fire.
    """
    tasks: dict[str, tuple[SyncConfiguration, ScheduledTask]] = {}
    for configuration in await configurations.list_scheduled_configurations():
        task = build_scheduled_task(service, configuration)
        tasks[task.__name__] = (configuration, task)

    logger.info("scheduler.configured", tasks=len(tasks))
    return tasks
