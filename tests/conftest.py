"""
Shared pytest fixtures for ClaimSync tests.

Provides:
- Local database, record store and queue on a temporary SQLite file
- Fake clock and fake remote backend
- Engine, worker and orchestrator wired the way SyncService wires them
- Record factories
"""

import pytest
from datetime import timedelta

from claimsync.config import ClaimSyncSettings
from claimsync.data_orchestrator import DataOrchestrator
from claimsync.db import LocalDatabase
from claimsync.events import EventBus
from claimsync.network_monitor import NetworkMonitor
from claimsync.operation_queue import OperationQueue
from claimsync.realtime_bridge import RealtimeBridge
from claimsync.record_models import ChecklistItem, Claim, Inspection
from claimsync.record_store import RecordStore
from claimsync.sync_engine import SyncEngine, SyncWorker
from claimsync.synchronizers import build_synchronizers

from tests.fakes import FakeClock, FakeRemoteBackend

OWNER_ID = "owner-1"


# ============================================================================
# Core fixtures
# ============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path):
    database = LocalDatabase(tmp_path / "claimsync_test.db")
    yield database
    database.close()


@pytest.fixture
def store(db, clock):
    return RecordStore(db, clock=clock)


@pytest.fixture
def queue(db, clock):
    return OperationQueue(
        db,
        device_id="test-device",
        max_retries=3,
        expiry=timedelta(days=7),
        clock=clock,
    )


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def network(event_bus):
    return NetworkMonitor(health_url=None, event_bus=event_bus, initially_online=True)


@pytest.fixture
def remote():
    return FakeRemoteBackend()


@pytest.fixture
def engine(store, queue, remote, network, event_bus, clock):
    synchronizers = build_synchronizers(
        remote,
        store,
        photo_bucket="claim-photos",
        documents_bucket="documents",
        owner_id=OWNER_ID,
    )
    return SyncEngine(store, queue, synchronizers, network, event_bus=event_bus, clock=clock)


@pytest.fixture
def worker(engine):
    return SyncWorker(engine)


@pytest.fixture
def orchestrator(store, queue, engine, worker, network, tmp_path, clock):
    return DataOrchestrator(
        store=store,
        queue=queue,
        engine=engine,
        worker=worker,
        network=network,
        files_dir=tmp_path / "files",
        clock=clock,
    )


@pytest.fixture
def bridge(store, queue, remote, event_bus, clock):
    return RealtimeBridge(
        store=store,
        queue=queue,
        remote=remote,
        owner_id=OWNER_ID,
        event_bus=event_bus,
        reconnect_delay=0.01,
        clock=clock,
    )


@pytest.fixture
def settings(tmp_path):
    return ClaimSyncSettings(
        _env_file=None,
        data_dir=tmp_path / "data",
        owner_id=OWNER_ID,
        remote_url="http://remote.test",
        remote_api_key="test-key",
        device_id="test-device",
    )


# ============================================================================
# Record factories
# ============================================================================

@pytest.fixture
def make_claim():
    counter = {"n": 0}

    def factory(**overrides) -> Claim:
        counter["n"] += 1
        values = {
            "claim_number": f"CLM-2026-{counter['n']:04d}",
            "insured_name": "Dana Reyes",
            "address": "14 Harbor Lane",
            "city": "Portland",
            "state": "ME",
        }
        values.update(overrides)
        return Claim(**values)

    return factory


@pytest.fixture
def make_inspection():
    def factory(claim_id: str, **overrides) -> Inspection:
        return Inspection(claim_id=claim_id, **overrides)

    return factory


@pytest.fixture
def make_checklist_item():
    def factory(claim_id: str, **overrides) -> ChecklistItem:
        values = {"category": "exterior", "item_name": "Roof overview", "required": True}
        values.update(overrides)
        return ChecklistItem(claim_id=claim_id, **values)

    return factory
