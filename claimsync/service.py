"""
Sync Service - composition root

Builds every component from ClaimSyncSettings and owns their lifecycle:
    local database -> record store, operation queue
    remote backend -> synchronizers -> sync engine -> sync worker
    network monitor (reconnect triggers a sync request)
    realtime bridge
    data orchestrator (the application's write path)
    background jobs (periodic sync, probing, pruning, expiry report)

Nothing here is a module-level singleton; tests build a service with a fake
remote backend and a temporary data directory.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from claimsync.background_jobs import BackgroundJobManager
from claimsync.config import ClaimSyncSettings
from claimsync.data_orchestrator import DataOrchestrator
from claimsync.db import LocalDatabase
from claimsync.events import EventBus
from claimsync.network_monitor import NetworkMonitor
from claimsync.operation_queue import OperationQueue
from claimsync.realtime_bridge import RealtimeBridge
from claimsync.record_store import RecordStore
from claimsync.remote.protocol import RemoteBackend
from claimsync.remote.supabase import SupabaseBackend
from claimsync.sync_engine import SyncEngine, SyncWorker
from claimsync.synchronizers import build_synchronizers
from claimsync.utils import Clock, utc_now

logger = logging.getLogger(__name__)


class SyncService:
    """Wires and runs the offline sync core"""

    def __init__(
        self,
        settings: ClaimSyncSettings,
        remote: Optional[RemoteBackend] = None,
        network: Optional[NetworkMonitor] = None,
        clock: Clock = utc_now
    ):
        self.settings = settings
        self._clock = clock

        self.event_bus = EventBus()
        self.db = LocalDatabase(settings.database_path)
        self.store = RecordStore(self.db, clock=clock)
        self.queue = OperationQueue(
            self.db,
            device_id=settings.device_id,
            max_retries=settings.max_retries,
            expiry=timedelta(days=settings.queue_expiry_days),
            clock=clock,
        )

        self.remote = remote or SupabaseBackend(
            base_url=settings.remote_url,
            api_key=settings.remote_api_key,
            realtime_url=settings.realtime_url,
            timeout=settings.request_timeout_seconds,
        )
        self.network = network or NetworkMonitor(
            health_url=settings.health_url,
            event_bus=self.event_bus,
            offline_mode=settings.offline_mode,
            headers={"apikey": settings.remote_api_key} if settings.remote_api_key else None,
        )

        self.engine = SyncEngine(
            store=self.store,
            queue=self.queue,
            synchronizers=build_synchronizers(
                self.remote,
                self.store,
                photo_bucket=settings.photo_bucket,
                documents_bucket=settings.documents_bucket,
                owner_id=settings.owner_id,
            ),
            network=self.network,
            event_bus=self.event_bus,
            clock=clock,
        )
        self.worker = SyncWorker(self.engine)
        self.bridge = RealtimeBridge(
            store=self.store,
            queue=self.queue,
            remote=self.remote,
            owner_id=settings.owner_id,
            event_bus=self.event_bus,
            reconnect_delay=settings.realtime_reconnect_seconds,
            clock=clock,
        )
        self.orchestrator = DataOrchestrator(
            store=self.store,
            queue=self.queue,
            engine=self.engine,
            worker=self.worker,
            network=self.network,
            files_dir=settings.data_dir,
            clock=clock,
        )

        self.jobs = BackgroundJobManager()
        self._register_jobs()
        self.network.add_listener(self._on_connectivity_change)
        self.started = False

    # ===== Wiring =====

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            logger.info("Back online; requesting sync")
            self.worker.request_sync()

    def _register_jobs(self) -> None:
        settings = self.settings
        self.jobs.register_job(
            name="periodic_sync",
            interval_seconds=settings.sync_interval_seconds,
            task=self.worker.request_sync,
            description="Request a sync pass",
        )
        self.jobs.register_job(
            name="network_probe",
            interval_seconds=settings.network_probe_interval_seconds,
            task=self.network.probe,
            description="Probe remote reachability",
            enabled=not settings.offline_mode,
            run_on_start=True,
        )
        self.jobs.register_job(
            name="prune_completed",
            interval_seconds=3600,
            task=self.prune_completed,
            description=f"Delete completed queue entries older than {settings.completed_retention_days} days",
            run_on_start=True,
        )
        self.jobs.register_job(
            name="report_expired",
            interval_seconds=3600,
            task=self.report_expired,
            description="Log queue entries past the expiry window",
            run_on_start=True,
        )

    def prune_completed(self) -> int:
        cutoff = self._clock() - timedelta(days=self.settings.completed_retention_days)
        return self.queue.prune_completed(cutoff)

    def report_expired(self) -> int:
        expired = self.queue.expired_entries()
        if expired:
            logger.warning(
                f"⚠️  {len(expired)} queue entries older than {self.settings.queue_expiry_days} days "
                f"are still unsynced (oldest {expired[0].target_table}/{expired[0].record_id})"
            )
        return len(expired)

    # ===== Lifecycle =====

    async def start(self, realtime: bool = True, background_jobs: bool = True) -> None:
        if self.started:
            return

        recovered = self.queue.recover_interrupted()
        if recovered:
            logger.info(f"♻️  Recovered {recovered} entries interrupted by shutdown")

        await self.worker.start()
        if background_jobs:
            await self.jobs.start()
        if realtime and self.settings.owner_id:
            await self.bridge.start()

        self.started = True
        logger.info(f"🚀 ClaimSync started (device {self.settings.device_id})")

        if self.network.is_online:
            self.worker.request_sync()

    async def stop(self) -> None:
        if not self.started:
            self.db.close()
            return

        await self.bridge.stop()
        await self.jobs.stop()
        await self.worker.stop()
        await self.network.aclose()
        await self.remote.aclose()
        self.db.close()
        self.started = False
        logger.info("ClaimSync stopped")

    # ===== Status =====

    def get_status(self) -> Dict[str, Any]:
        status = self.orchestrator.get_status()
        status.update({
            "realtime_connected": self.bridge.is_connected,
            "expired_count": len(self.queue.expired_entries()),
            "device_id": self.settings.device_id,
        })
        return status
