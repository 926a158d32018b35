"""Scheduler for queue housekeeping."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import get_cleanup_config, get_queue_config
from .cleanup import cleanup_work_dirs
from .queue import TaskQueue
from .store import JobStore

logger = logging.getLogger(__name__)


class HousekeepingScheduler:
    """
    Manages periodic queue maintenance using APScheduler.

    Jobs:
    - purge_tasks (cron): drop old completed/failed task records
    - cleanup_work_dirs (cron): remove orphaned per-attempt work dirs
    - check_stalled (interval): warn about active tasks without heartbeat

    Lifecycle:
    - start(): Initialize scheduler and add jobs
    - stop(): Gracefully shutdown scheduler
    """

    def __init__(self, queue: TaskQueue, jobs: JobStore, work_dir: Path):
        self.queue = queue
        self.jobs = jobs
        self.work_dir = Path(work_dir)
        self.scheduler = AsyncIOScheduler()

    async def start(self):
        """Start the scheduler with current config."""
        queue_config = get_queue_config()
        cleanup_config = get_cleanup_config()

        try:
            purge_trigger = CronTrigger.from_crontab(queue_config["housekeeping_schedule"])
        except ValueError as e:
            logger.error(f"Invalid cron expression '{queue_config['housekeeping_schedule']}': {e}")
            return

        self.scheduler.add_job(
            self._run_purge,
            trigger=purge_trigger,
            id="purge_tasks",
            replace_existing=True,
            max_instances=1,
        )
        self.scheduler.add_job(
            self._run_stall_check,
            trigger=IntervalTrigger(seconds=queue_config["stall_check_interval"]),
            id="check_stalled",
            replace_existing=True,
            max_instances=1,
        )

        if cleanup_config["enabled"]:
            try:
                self.scheduler.add_job(
                    self._run_cleanup,
                    trigger=CronTrigger.from_crontab(cleanup_config["schedule"]),
                    id="cleanup_work_dirs",
                    replace_existing=True,
                    max_instances=1,
                )
            except ValueError as e:
                logger.error(f"Invalid cron expression '{cleanup_config['schedule']}': {e}")
        else:
            logger.info("Work dir cleanup disabled in config")

        self.scheduler.start()

        job = self.scheduler.get_job("purge_tasks")
        if job:
            logger.info(f"Housekeeping scheduler started, next purge: {job.next_run_time}")

    async def _run_purge(self):
        try:
            removed = await asyncio.to_thread(self.queue.purge)
            logger.info(
                f"Purge completed: {removed['completed']} completed, {removed['failed']} failed tasks removed"
            )
        except Exception as e:
            logger.error(f"Purge failed with exception: {e}", exc_info=True)

    async def _run_stall_check(self):
        try:
            stalled = await asyncio.to_thread(self.queue.check_stalled)
            if stalled:
                logger.warning(f"{len(stalled)} tasks have stalled")
        except Exception as e:
            logger.error(f"Stall check failed with exception: {e}", exc_info=True)

    def _job_status(self, job_id: str) -> str | None:
        job = self.jobs.get(job_id)
        return job.status.value if job else None

    async def _run_cleanup(self):
        retention_hours = get_cleanup_config()["retention_hours"]
        logger.info(f"Starting work dir cleanup (retention: {retention_hours} hours)")

        try:
            result = await asyncio.to_thread(
                cleanup_work_dirs, self.work_dir, retention_hours, self._job_status
            )
            freed_mb = result["freed_bytes"] / 1024 / 1024
            logger.info(
                f"Cleanup completed: {result['deleted_count']} folders deleted, "
                f"{freed_mb:.2f} MB freed"
            )
            if result["skipped_active"] > 0:
                logger.info(f"Skipped {result['skipped_active']} folders of running jobs")
            for error in result["errors"]:
                logger.warning(f"  - {error['folder']}: {error['error']}")
        except Exception as e:
            logger.error(f"Cleanup failed with exception: {e}", exc_info=True)

    async def stop(self):
        """Stop the scheduler gracefully."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            logger.info("Housekeeping scheduler stopped")
