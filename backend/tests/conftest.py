"""
Shared pytest fixtures.

Each test gets its own SQLite file under tmp_path. Async components are
driven with asyncio.run() inside plain tests; the event bus always runs in
in-memory mode.
"""

import asyncio
import os
import tempfile

# Settings are read at import time: point the app-level engine at a scratch
# database and disable Redis before anything from stockflow is imported.
_APP_DB_DIR = tempfile.mkdtemp(prefix="stockflow-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_APP_DB_DIR, 'app.db')}"
os.environ["REDIS_URL"] = ""

import pytest

import stockflow.models  # noqa: F401  (registers tables on Base.metadata)
from stockflow.agents.collaborators import Notification
from stockflow.agents.episode_store import EpisodeStore
from stockflow.agents.replenishment_engine import ReplenishmentEngine
from stockflow.database import Base, build_engine, build_session_factory
from stockflow.events.change_feed import ChangeFeed
from stockflow.events.event_bus import AsyncEventBus
from stockflow.schemas.inventory import InventoryItemCreate
from stockflow.services.inventory_store import InventoryRecordStore
from stockflow.services.ledger import StockMovementLedger
from stockflow.services.location_service import LocationService

ORG = "org-test"
ACTOR = "user-1"


def make_item(**overrides) -> InventoryItemCreate:
    data = {
        "sku": "SKU-001",
        "name": "Widget",
        "picking_bin_quantity": 5,
        "overstock_quantity": 0,
        "reorder_level": 10,
        "picking_reorder_level": 2,
        "unit_cost": 2.5,
        "retail_price": 4.0,
    }
    data.update(overrides)
    return InventoryItemCreate(**data)


class RecordingGateway:
    """Order subsystem double: records drafts, can be told to fail."""

    def __init__(self):
        self.drafts: list[dict] = []
        self.fail_next = 0

    async def create_purchase_draft(self, vendor_id, item_id, quantity, unit_cost):
        if self.fail_next:
            self.fail_next -= 1
            raise RuntimeError("order subsystem unavailable")
        draft_id = f"draft-{len(self.drafts) + 1}"
        self.drafts.append({
            "draft_id": draft_id,
            "vendor_id": vendor_id,
            "item_id": item_id,
            "quantity": quantity,
            "unit_cost": unit_cost,
        })
        return draft_id


class RecordingNotifier:
    def __init__(self):
        self.sent: list[Notification] = []

    async def dispatch(self, notification: Notification) -> None:
        self.sent.append(notification)

    def kinds(self) -> list[str]:
        return [n.kind.value for n in self.sent]


class Harness:
    """Bus + feed + store + engine wired the way main.py wires them."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self.bus = AsyncEventBus(redis_url=None)
        self.feed = ChangeFeed(self.bus)
        self.store = InventoryRecordStore(self.feed, session_factory)
        self.gateway = RecordingGateway()
        self.notifier = RecordingNotifier()
        self.engine = ReplenishmentEngine(
            self.store, self.feed, self.gateway, self.notifier,
            episodes=EpisodeStore(session_factory),
        )

    async def start(self):
        await self.feed.start()
        await self.bus.start()

    async def settle(self):
        await self.bus.wait_idle()

    async def stop(self):
        await self.engine.stop()
        await self.bus.stop()


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'stockflow.db'}")
    Base.metadata.create_all(bind=engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def ledger(session_factory):
    return StockMovementLedger(session_factory)


@pytest.fixture
def locations(session_factory):
    return LocationService(session_factory)


@pytest.fixture
def harness(session_factory):
    return Harness(session_factory)


@pytest.fixture
def run(harness):
    """run(scenario) executes `await scenario(harness)` with the bus started."""

    def _run(scenario):
        async def main():
            await harness.start()
            try:
                return await scenario(harness)
            finally:
                await harness.stop()

        return asyncio.run(main())

    return _run
