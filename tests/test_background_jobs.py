"""
Tests for claimsync/background_jobs.py
"""

import asyncio

import pytest

from claimsync.background_jobs import BackgroundJobManager


class TestBackgroundJobManager:

    @pytest.mark.asyncio
    async def test_run_job_sync_and_async(self):
        calls = []

        async def probe():
            calls.append("probe")

        manager = BackgroundJobManager()
        manager.register_job("sync", 60, lambda: calls.append("sync"), "Request a sync pass")
        manager.register_job("probe", 60, probe, "Probe remote")

        assert await manager.run_job("sync") is True
        assert await manager.run_job("probe") is True
        assert calls == ["sync", "probe"]
        assert manager.jobs["sync"].run_count == 1
        assert manager.jobs["sync"].last_run is not None

    @pytest.mark.asyncio
    async def test_failing_job_is_counted(self):
        def broken():
            raise RuntimeError("boom")

        manager = BackgroundJobManager()
        manager.register_job("broken", 60, broken, "Always fails")

        assert await manager.run_job("broken") is False
        assert manager.jobs["broken"].error_count == 1
        assert manager.jobs["broken"].run_count == 0

    @pytest.mark.asyncio
    async def test_start_runs_on_start_jobs_only(self):
        calls = []
        manager = BackgroundJobManager()
        manager.register_job("eager", 60, lambda: calls.append("eager"), "Runs at start", run_on_start=True)
        manager.register_job("lazy", 60, lambda: calls.append("lazy"), "Waits an interval")
        manager.register_job("off", 60, lambda: calls.append("off"), "Disabled", enabled=False, run_on_start=True)

        await manager.start()
        try:
            await asyncio.sleep(0.05)
        finally:
            await manager.stop()

        assert calls == ["eager"]
        assert manager.running is False

    @pytest.mark.asyncio
    async def test_short_interval_repeats(self):
        calls = []
        manager = BackgroundJobManager()
        manager.register_job("tick", 0.01, lambda: calls.append(1), "Fast job", run_on_start=True)

        await manager.start()
        try:
            for _ in range(100):
                if len(calls) >= 3:
                    break
                await asyncio.sleep(0.01)
        finally:
            await manager.stop()

        assert len(calls) >= 3

    def test_enable_disable_and_status(self):
        manager = BackgroundJobManager()
        manager.register_job("sync", 300, lambda: None, "Request a sync pass")

        manager.disable_job("sync")
        assert manager.get_status()["enabled_jobs"] == 0
        manager.enable_job("sync")

        status = manager.get_status()
        assert status["total_jobs"] == 1
        assert status["enabled_jobs"] == 1
        assert status["jobs"][0]["name"] == "sync"
        assert status["jobs"][0]["last_run"] is None
