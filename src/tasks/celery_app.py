"""
Celery App Configuration - Background task processing with Redis broker.

The only scheduled job is the role assignment expiry sweep; beat enqueues
it every ``APP_EXPIRY_SWEEP_INTERVAL_SECONDS``.

Usage:
    # Worker and beat in one process
    celery -A tasks.celery_app worker --beat --loglevel=info

    # Separate beat scheduler
    celery -A tasks.celery_app beat --loglevel=info
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, Optional

from celery import Celery, Task
from celery.signals import task_postrun, worker_ready, worker_shutdown

from config.settings import CelerySettings, RedisSettings, Settings, get_settings

logger = logging.getLogger(__name__)

EXPIRY_TASK_NAME = "tasks.role_expiry.expire_role_assignments"


def beat_schedule(settings: Settings) -> Dict[str, Dict[str, Any]]:
    return {
        "expire-role-assignments": {
            "task": EXPIRY_TASK_NAME,
            "schedule": settings.expiry_sweep_interval_seconds,
            "options": {"expires": settings.expiry_sweep_interval_seconds},
        },
    }


def create_celery_app(
    redis_settings: Optional[RedisSettings] = None,
    celery_settings: Optional[CelerySettings] = None,
    settings: Optional[Settings] = None,
) -> Celery:
    """
    Build the Celery application for the expiry sweep.

    Args:
        redis_settings: Broker and result backend connection
        celery_settings: Serialization, acknowledgement and time limits
        settings: Application settings (sweep interval)
    """
    settings = settings or get_settings()
    redis_settings = redis_settings or settings.redis
    celery_settings = celery_settings or settings.celery

    app = Celery(
        "rbac_authority",
        broker=redis_settings.url_for(celery_settings.broker_db),
        backend=redis_settings.url_for(celery_settings.result_db),
        include=["tasks.role_expiry"],
    )

    app.conf.update(
        task_serializer=celery_settings.task_serializer,
        result_serializer=celery_settings.result_serializer,
        accept_content=celery_settings.accept_content,
        result_accept_content=celery_settings.accept_content,

        # A sweep lost with its worker is re-delivered; it is idempotent
        task_acks_late=celery_settings.task_acks_late,
        task_reject_on_worker_lost=celery_settings.task_reject_on_worker_lost,
        worker_prefetch_multiplier=celery_settings.worker_prefetch_multiplier,

        task_time_limit=celery_settings.task_time_limit,
        task_soft_time_limit=celery_settings.task_soft_time_limit,
        result_expires=3600,

        timezone="UTC",
        enable_utc=True,
        beat_schedule=beat_schedule(settings),
    )
    app.Task = TaskBase
    return app


class TaskBase(Task):
    """Base task class that logs failures and retries with the task id."""

    abstract = True

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(
            f"Task {self.name}[{task_id}] failed: {exc}",
            extra={"task_id": task_id, "task_name": self.name},
            exc_info=einfo.exc_info if einfo else None,
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning(
            f"Task {self.name}[{task_id}] retrying: {exc}",
            extra={"task_id": task_id, "task_name": self.name, "retry_count": self.request.retries},
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)


# Global Celery app instance
celery_app = create_celery_app()


@lru_cache
def get_celery_app() -> Celery:
    """Get the global Celery app instance."""
    return celery_app


@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    logger.info(f"Celery worker ready: {sender}")


@worker_shutdown.connect
def on_worker_shutdown(sender, **kwargs):
    logger.info(f"Celery worker shutting down: {sender}")


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **other):
    logger.debug(
        f"Task finished: {task.name}[{task_id}] state={state}",
        extra={"task_id": task_id, "task_name": task.name, "state": state, "result": retval},
    )
