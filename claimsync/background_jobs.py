"""
Background Jobs for ClaimSync
Runs the interval-driven sync triggers and queue maintenance

Jobs registered by SyncService:
- periodic_sync: request a sync pass every sync_interval_seconds
- network_probe: probe the remote health URL
- prune_completed: delete completed queue entries past retention
- report_expired: log open entries older than the expiry window
"""

import asyncio
import inspect
import logging
from datetime import datetime, UTC
from typing import Dict, Callable, Optional, List
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class JobConfig:
    """Configuration for a background job"""
    name: str
    interval_seconds: float
    task: Callable
    description: str
    enabled: bool = True
    run_on_start: bool = False
    last_run: Optional[datetime] = None
    run_count: int = 0
    error_count: int = 0


class BackgroundJobManager:
    """
    Interval scheduler for sync triggers and maintenance

    Usage:
        manager = BackgroundJobManager()
        manager.register_job(
            name="periodic_sync",
            interval_seconds=300,
            task=worker.request_sync,
            description="Request a sync pass"
        )
        await manager.start()
    """

    def __init__(self):
        self.jobs: Dict[str, JobConfig] = {}
        self.running = False
        self._tasks: List[asyncio.Task] = []

    def register_job(
        self,
        name: str,
        interval_seconds: float,
        task: Callable,
        description: str,
        enabled: bool = True,
        run_on_start: bool = False
    ):
        """Register a background job"""
        if name in self.jobs:
            logger.warning(f"Job '{name}' already registered, overwriting")

        self.jobs[name] = JobConfig(
            name=name,
            interval_seconds=interval_seconds,
            task=task,
            description=description,
            enabled=enabled,
            run_on_start=run_on_start
        )
        logger.info(f"📋 Registered background job: {name} (every {interval_seconds}s)")

    async def run_job(self, name: str) -> bool:
        """
        Run one job immediately

        Returns:
            True if the job ran without error
        """
        job_config = self.jobs[name]
        try:
            logger.debug(f"Running background job: {job_config.name}")

            if inspect.iscoroutinefunction(job_config.task):
                await job_config.task()
            else:
                job_config.task()

            job_config.last_run = datetime.now(UTC)
            job_config.run_count += 1
            logger.debug(f"✅ Completed: {job_config.name} (run #{job_config.run_count})")
            return True

        except Exception as e:
            job_config.error_count += 1
            logger.error(f"❌ Background job '{job_config.name}' failed: {e}")
            return False

    async def _run_job_loop(self, job_config: JobConfig):
        """Run a job on its scheduled interval"""
        if not job_config.run_on_start:
            await asyncio.sleep(job_config.interval_seconds)

        while self.running:
            if job_config.enabled:
                await self.run_job(job_config.name)

            await asyncio.sleep(job_config.interval_seconds)

    async def start(self):
        """Start all enabled background jobs"""
        if self.running:
            logger.warning("Background jobs already running")
            return

        self.running = True
        logger.info(f"🚀 Starting {len([j for j in self.jobs.values() if j.enabled])} background jobs")

        for job_config in self.jobs.values():
            if job_config.enabled:
                task = asyncio.create_task(self._run_job_loop(job_config))
                self._tasks.append(task)
                logger.info(f"▶️  Started: {job_config.name}")

    async def stop(self):
        """Stop all background jobs"""
        if not self.running:
            return

        self.running = False
        logger.info("⏹️  Stopping background jobs...")

        for task in self._tasks:
            task.cancel()

        await asyncio.gather(*self._tasks, return_exceptions=True)

        self._tasks.clear()
        logger.info("✅ All background jobs stopped")

    def get_status(self) -> Dict:
        """Get status of all jobs"""
        return {
            "running": self.running,
            "total_jobs": len(self.jobs),
            "enabled_jobs": len([j for j in self.jobs.values() if j.enabled]),
            "jobs": [
                {
                    "name": job.name,
                    "description": job.description,
                    "enabled": job.enabled,
                    "interval_seconds": job.interval_seconds,
                    "last_run": job.last_run.isoformat() if job.last_run else None,
                    "run_count": job.run_count,
                    "error_count": job.error_count
                }
                for job in self.jobs.values()
            ]
        }

    def enable_job(self, name: str):
        """Enable a job"""
        if name in self.jobs:
            self.jobs[name].enabled = True
            logger.info(f"Enabled job: {name}")

    def disable_job(self, name: str):
        """Disable a job"""
        if name in self.jobs:
            self.jobs[name].enabled = False
            logger.info(f"Disabled job: {name}")
