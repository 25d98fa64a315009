"""
RealtimeReconciler: subscribe-then-snapshot, version guard, reconnect.
"""

import asyncio
import threading
from datetime import datetime, timezone

from stockflow.domain.stock_rules import derive_status
from stockflow.events.change_feed import ChangeFeed
from stockflow.events.event_bus import AsyncEventBus
from stockflow.realtime.reconciler import RealtimeReconciler, ReconcilerState
from stockflow.schemas.events import ChangeEvent, ChangeKind
from stockflow.schemas.inventory import InventoryItemSnapshot
from stockflow.services.inventory_store import InventoryRecordStore

from conftest import ACTOR, ORG, make_item


def snap(item_id="item-1", quantity=5, version=1, sku=None, reorder_level=10):
    return InventoryItemSnapshot(
        id=item_id,
        organization_id=ORG,
        sku=sku or f"SKU-{item_id}",
        name="Widget",
        picking_bin_quantity=quantity,
        overstock_quantity=0,
        quantity=quantity,
        reorder_level=reorder_level,
        picking_reorder_level=0,
        committed_stock=0,
        incoming_stock=0,
        unit_cost=1.0,
        retail_price=2.0,
        status=derive_status(quantity, reorder_level),
        version=version,
    )


def change(current=None, kind=ChangeKind.UPDATE, version=None, item_id=None, organization_id=ORG):
    return ChangeEvent(
        organization_id=organization_id,
        item_id=item_id or current.id,
        kind=kind,
        version=version if version is not None else current.version,
        current=current,
        committed_at=datetime.now(timezone.utc),
    )


def make_reconciler(items=()):
    feed = ChangeFeed(AsyncEventBus(redis_url=None))
    reconciler = RealtimeReconciler(ORG, feed, lambda org: list(items), name="test")
    return feed, reconciler


class TestVersionGuard:

    def test_out_of_order_events_keep_latest_state(self):
        """v3 then v2: the later version wins and v2 is dropped."""
        async def scenario():
            _, r = make_reconciler([snap(version=1)])
            await r.connect()
            assert await r.handle_event(change(snap(quantity=2, version=3)))
            assert not await r.handle_event(change(snap(quantity=4, version=2)))
            return r

        r = asyncio.run(scenario())
        assert r.projection["item-1"].quantity == 2
        assert r.version_of("item-1") == 3
        assert r.stale_count == 1
        assert r.state == ReconcilerState.SYNCED

    def test_redelivery_is_idempotent(self):
        async def scenario():
            _, r = make_reconciler([snap(version=1)])
            await r.connect()
            event = change(snap(quantity=3, version=2))
            first = await r.handle_event(event)
            second = await r.handle_event(event)
            return r, first, second

        r, first, second = asyncio.run(scenario())
        assert (first, second) == (True, False)
        assert r.applied_count == 1
        assert r.projection["item-1"].quantity == 3

    def test_event_older_than_snapshot_is_ignored(self):
        async def scenario():
            _, r = make_reconciler([snap(quantity=9, version=4)])
            await r.connect()
            await r.handle_event(change(snap(quantity=1, version=4)))
            return r

        r = asyncio.run(scenario())
        assert r.projection["item-1"].quantity == 9

    def test_delete_leaves_tombstone(self):
        """A late UPDATE must not resurrect a deleted item."""
        async def scenario():
            _, r = make_reconciler([snap(version=2)])
            await r.connect()
            await r.handle_event(change(kind=ChangeKind.DELETE, version=3, item_id="item-1"))
            resurrected = await r.handle_event(change(snap(quantity=7, version=3)))
            return r, resurrected

        r, resurrected = asyncio.run(scenario())
        assert "item-1" not in r.projection
        assert not resurrected
        assert r.version_of("item-1") == 3

    def test_other_organization_is_ignored(self):
        async def scenario():
            _, r = make_reconciler()
            await r.connect()
            return await r.handle_event(change(snap(version=1), organization_id="org-other"))

        assert asyncio.run(scenario()) is False


class TestConnectLifecycle:

    def test_events_during_snapshot_are_buffered_then_applied(self):
        gate = threading.Event()

        def slow_loader(org):
            gate.wait(timeout=5)
            return [snap(quantity=5, version=1), snap("item-2", quantity=8, version=2)]

        async def scenario():
            feed = ChangeFeed(AsyncEventBus(redis_url=None))
            r = RealtimeReconciler(ORG, feed, slow_loader)
            task = asyncio.create_task(r.connect())
            await asyncio.sleep(0)
            assert r.state == ReconcilerState.SUBSCRIBING

            # 스냅샷보다 새로운 변경과 이미 반영된 변경이 스냅샷 읽는 도중 도착
            buffered_new = await r.handle_event(change(snap(quantity=3, version=2)))
            buffered_old = await r.handle_event(change(snap("item-2", quantity=1, version=1)))
            gate.set()
            await task
            return r, buffered_new, buffered_old

        r, buffered_new, buffered_old = asyncio.run(scenario())
        assert (buffered_new, buffered_old) == (False, False)
        assert r.state == ReconcilerState.SYNCED
        assert r.projection["item-1"].quantity == 3
        assert r.projection["item-2"].quantity == 8
        assert r.stale_count == 1

    def test_disconnect_during_snapshot_discards_partial_result(self):
        gate = threading.Event()

        def slow_loader(org):
            gate.wait(timeout=5)
            return [snap(version=1)]

        async def scenario():
            feed = ChangeFeed(AsyncEventBus(redis_url=None))
            r = RealtimeReconciler(ORG, feed, slow_loader)
            task = asyncio.create_task(r.connect())
            await asyncio.sleep(0)
            await r.disconnect()
            gate.set()
            await task
            return feed, r

        feed, r = asyncio.run(scenario())
        assert r.state == ReconcilerState.DISCONNECTED
        assert r.projection == {}
        assert feed.subscriber_count(ORG) == 0

    def test_disconnected_reconciler_ignores_events(self):
        async def scenario():
            feed, r = make_reconciler([snap(version=1)])
            await r.connect()
            await r.disconnect()
            applied = await r.handle_event(change(snap(quantity=0, version=2)))
            return feed, r, applied

        feed, r, applied = asyncio.run(scenario())
        assert not applied
        assert feed.subscriber_count(ORG) == 0
        assert r.projection["item-1"].quantity == 5

    def test_listeners_receive_previous_and_current(self):
        seen = []

        async def listener(previous, current):
            seen.append((previous and previous.quantity, current and current.quantity))

        async def scenario():
            _, r = make_reconciler([snap(version=1)])
            r.add_listener(listener)
            await r.connect()
            await r.handle_event(change(snap(quantity=2, version=2)))
            await r.handle_event(change(kind=ChangeKind.DELETE, version=3, item_id="item-1"))

        asyncio.run(scenario())
        # 스냅샷 설치 시 새 품목은 (item, item)
        assert seen == [(5, 5), (5, 2), (2, None)]

    def test_failing_listener_does_not_break_projection(self):
        async def broken(previous, current):
            raise RuntimeError("boom")

        async def scenario():
            _, r = make_reconciler([snap(version=1)])
            r.add_listener(broken)
            await r.connect()
            await r.handle_event(change(snap(quantity=2, version=2)))
            return r

        assert asyncio.run(scenario()).projection["item-1"].quantity == 2


class TestAgainstStore:

    def test_projection_follows_committed_writes(self, run):
        async def scenario(h):
            first = await h.store.create_item(ORG, make_item(), actor_id=ACTOR)
            r = RealtimeReconciler(ORG, h.feed, h.store.list_items)
            await r.connect()
            second = await h.store.create_item(ORG, make_item(sku="SKU-002"), actor_id=ACTOR)
            await h.store.apply_movement(ORG, first.id, "subtract", 4, actor_id=ACTOR)
            await h.store.delete_item(ORG, second.id, actor_id=ACTOR)
            await h.settle()
            await r.disconnect()
            return r, first, h.store.list_items(ORG)

        r, first, stored = run(scenario)
        assert [i.id for i in r.items()] == [i.id for i in stored] == [first.id]
        assert r.projection[first.id].quantity == stored[0].quantity == 1
        assert r.version_of(first.id) == stored[0].version

    def test_reconnect_resnapshots_instead_of_resuming(self, run):
        async def scenario(h):
            item = await h.store.create_item(ORG, make_item(), actor_id=ACTOR)
            r = RealtimeReconciler(ORG, h.feed, h.store.list_items)
            await r.connect()
            await r.disconnect()

            # 연결이 끊긴 동안의 변경은 이벤트로 받지 못한다
            await h.store.apply_movement(ORG, item.id, "add", 10, actor_id=ACTOR)
            await h.settle()
            missed = r.projection[item.id].quantity

            await r.connection_lost(reconnect=True)
            return r, missed, item

        r, missed, item = run(scenario)
        assert missed == 5
        assert r.state == ReconcilerState.SYNCED
        assert r.projection[item.id].quantity == 15
        assert r.version_of(item.id) == 2


class TestEventLoss:

    def test_overflow_signals_gap_before_next_event(self):
        """Oldest events are dropped and one gap precedes the survivors."""
        async def scenario():
            bus = AsyncEventBus(redis_url=None, queue_size=2)
            log = []

            async def on_event(topic, data):
                log.append(("event", data["n"]))

            async def on_gap(topic):
                log.append(("gap", topic))

            await bus.subscribe("t", on_event)
            await bus.subscribe_gaps("t", on_gap)
            await bus.start()
            try:
                for n in range(5):
                    await bus.publish("t", {"n": n})
                await bus.wait_idle()
                await bus.publish("t", {"n": 5})
                await bus.wait_idle()
            finally:
                await bus.stop()
            return log

        log = asyncio.run(scenario())
        assert log == [("gap", "t"), ("event", 3), ("event", 4), ("event", 5)]

    def test_gap_reaches_only_active_subscriptions(self):
        async def scenario():
            feed = ChangeFeed(AsyncEventBus(redis_url=None))
            calls = []

            async def ignore(event):
                pass

            async def on_gap():
                calls.append("gap")

            closed = feed.subscribe(ORG, ignore, on_gap=on_gap)
            feed.subscribe("org-other", ignore, on_gap=on_gap)
            feed.subscribe(ORG, ignore)
            closed.close()
            await feed._on_bus_gap(feed.topic)
            return calls

        assert asyncio.run(scenario()) == ["gap"]

    def test_overflow_resynchronizes_from_snapshot(self, session_factory):
        """Changes lost to a full queue are recovered by a fresh snapshot."""
        async def scenario():
            bus = AsyncEventBus(redis_url=None, queue_size=1)
            feed = ChangeFeed(bus)
            store = InventoryRecordStore(feed, session_factory)
            await feed.start()
            await bus.start()
            try:
                item = await store.create_item(ORG, make_item(), actor_id=ACTOR)
                await bus.wait_idle()
                r = RealtimeReconciler(ORG, feed, store.list_items)
                await r.connect()

                # 첫 변경을 처리하는 동안 소비자를 붙잡아 큐를 넘치게 한다
                entered = asyncio.Event()
                release = asyncio.Event()

                async def hold_first(previous, current):
                    if not entered.is_set():
                        entered.set()
                        await release.wait()

                r.add_listener(hold_first)
                await store.apply_movement(ORG, item.id, "add", 1, actor_id=ACTOR)
                await asyncio.wait_for(entered.wait(), timeout=5)
                for _ in range(3):
                    await store.apply_movement(ORG, item.id, "add", 1, actor_id=ACTOR)
                release.set()
                await bus.wait_idle()
                return r, store.get_item(ORG, item.id)
            finally:
                await bus.stop()

        r, stored = asyncio.run(scenario())
        assert stored.quantity == 9
        assert r.resync_count == 1
        assert r.state == ReconcilerState.SYNCED
        assert r.projection[stored.id].quantity == 9
        assert r.version_of(stored.id) == stored.version == 5
        assert r.stale_count == 1
