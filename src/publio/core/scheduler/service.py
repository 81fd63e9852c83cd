"""
APScheduler v4 integration for Publio's batch jobs.
"""

from __future__ import annotations

import os
import socket
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable
from uuid import uuid4

from apscheduler import AsyncScheduler, ConflictPolicy
from apscheduler.datastores.sqlalchemy import SQLAlchemyDataStore
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import create_async_engine

from publio.core.config.loader import load_app_config
from publio.core.config.models import AppConfig
from publio.core.jobs import build_alert_delivery, close_expired_tenders, send_search_alerts
from publio.core.logging import get_contextual_logger, get_logger
from publio.core.scheduler.locks import LockManager
from publio.persistence.db import Database

logger = get_logger("scheduler")

EXPIRY_JOB = "expiry-sweep"
ALERTS_JOB = "alert-sweep"


def make_holder_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"


def run_locked(
    job_name: str,
    holder_id: str,
    config: AppConfig,
    job: Callable[[Database, AppConfig], Any],
    db: Database | None = None,
) -> Any | None:
    """Run ``job`` under the job's RunLock. Returns None when the lock is held."""
    log = get_contextual_logger("scheduler", job=job_name)
    owns_db = db is None
    db = db or Database.from_config(config.database)
    lock_name = f"job:{job_name}"

    try:
        with db.session() as session:
            acquired = LockManager(session).acquire(
                lock_name,
                holder_id,
                ttl_minutes=config.scheduler.lock_ttl_minutes,
            )
        if not acquired:
            log.info("Lock held, skipping run")
            return None

        try:
            result = job(db, config)
        except Exception:
            log.exception("Scheduled job failed")
            raise
        else:
            log.info("Scheduled job completed")
            return result
        finally:
            with db.session() as session:
                LockManager(session).release(lock_name, holder_id)
    finally:
        if owns_db:
            db.dispose()


def _expiry_job(db: Database, config: AppConfig):
    return close_expired_tenders(db, config.lifecycle)


def _alerts_job(db: Database, config: AppConfig):
    delivery = build_alert_delivery(
        config.alerts.webhook_url,
        timeout=config.alerts.timeout_seconds,
        max_attempts=config.alerts.max_retries,
    )
    return send_search_alerts(db, config.alerts, delivery=delivery)


JOBS: dict[str, Callable[[Database, AppConfig], Any]] = {
    EXPIRY_JOB: _expiry_job,
    ALERTS_JOB: _alerts_job,
}


async def execute_scheduled_job(job_name: str, holder_id: str, config_path: str | None = None) -> None:
    """Entry point referenced by persisted schedules."""
    if job_name not in JOBS:
        logger.warning("Unknown scheduled job: %s", job_name)
        return

    config = load_app_config(config_path)
    run_locked(job_name, holder_id, config, JOBS[job_name])


class SchedulerService:
    """Runs the expiry and alert sweeps on their cron schedules."""

    def __init__(self, config: AppConfig, config_path: str | Path | None = None) -> None:
        self.config = config
        self.config_path = str(config_path) if config_path is not None else None
        self.db_url = config.scheduler.datastore_url
        self._scheduler: AsyncScheduler | None = None
        self._holder_id = make_holder_id()

    def _data_store(self) -> SQLAlchemyDataStore:
        if "sqlite" in self.db_url and ":///" in self.db_url:
            Path(self.db_url.split(":///", 1)[1]).parent.mkdir(parents=True, exist_ok=True)
        return SQLAlchemyDataStore(create_async_engine(self.db_url))

    def schedules(self) -> dict[str, str]:
        """Job name -> cron expression."""
        return {
            EXPIRY_JOB: self.config.scheduler.expiry_cron,
            ALERTS_JOB: self.config.scheduler.alerts_cron,
        }

    def cleanup_locks(self) -> int:
        """Drop run locks left behind by workers that died mid-run."""
        db = Database.from_config(self.config.database)
        try:
            with db.session() as session:
                removed = LockManager(session).cleanup_expired()
        finally:
            db.dispose()

        if removed:
            logger.info("Removed %d expired run lock(s)", removed)
        return removed

    async def start(self) -> None:
        """Start scheduler in foreground mode (blocking)."""
        self.cleanup_locks()
        async with AsyncScheduler(self._data_store()) as scheduler:
            self._scheduler = scheduler
            await self._add_schedules()
            await scheduler.run_until_stopped()

    async def _add_schedules(self) -> None:
        if self._scheduler is None:
            raise RuntimeError("Scheduler is not initialized")

        max_jitter = None
        if self.config.scheduler.jitter_minutes > 0:
            max_jitter = timedelta(minutes=self.config.scheduler.jitter_minutes)

        for job_name, cron in self.schedules().items():
            trigger = CronTrigger.from_crontab(cron, timezone=self.config.scheduler.timezone)
            await self._scheduler.add_schedule(
                execute_scheduled_job,
                trigger,
                id=job_name,
                args=[job_name, self._holder_id, self.config_path],
                conflict_policy=ConflictPolicy.replace,
                max_jitter=max_jitter,
            )
            logger.info("Scheduled %s (%s)", job_name, cron)

