"""
ReplenishmentEngine: episode guard, vendor checks, order subsystem signals.
"""

import pytest

from stockflow.agents.collaborators import EventBusOrderGateway, PURCHASE_DRAFT_TOPIC
from stockflow.agents.replenishment_engine import DecisionOutcome
from stockflow.exceptions import EpisodeNotFoundError, VendorMissingError
from stockflow.models.replenishment_episode import EpisodeCloseReason, EpisodeStatus
from stockflow.schemas.inventory import InventoryItemUpdate

from conftest import ACTOR, ORG, make_item


def reorderable(**overrides):
    data = {
        "picking_bin_quantity": 0,
        "reorder_level": 5,
        "auto_reorder_enabled": True,
        "auto_reorder_quantity": 20,
        "vendor_id": "VND-1",
        "unit_cost": 3.0,
    }
    data.update(overrides)
    return make_item(**data)


async def touch(h, item_id, reorder_level):
    """Commit a non-quantity change so the engine sees another reconciled state."""
    await h.store.update_item(ORG, item_id, InventoryItemUpdate(reorder_level=reorder_level), actor_id=ACTOR)


class TestEpisodeGuard:

    def test_depleted_item_emits_exactly_one_draft(self, run, harness):
        """quantity 0 <= reorder level 5: one draft for 20 units, none for later states."""
        async def scenario(h):
            await h.engine.watch(ORG)
            item = await h.store.create_item(ORG, reorderable(), actor_id=ACTOR)
            await h.settle()
            for level in (6, 7, 8):
                await touch(h, item.id, level)
            await h.settle()
            return h.engine.episodes.list_episodes(ORG)

        episodes = run(scenario)
        assert len(harness.gateway.drafts) == 1
        assert len(episodes) == 1
        assert episodes[0].status == EpisodeStatus.EMITTED
        assert episodes[0].quantity == 20
        assert episodes[0].vendor_id == "VND-1"

    def test_gateway_called_once_with_episode_terms(self, run, harness):
        async def scenario(h):
            await h.engine.watch(ORG)
            item = await h.store.create_item(ORG, reorderable(), actor_id=ACTOR)
            await h.settle()
            await h.store.apply_movement(ORG, item.id, "add", 2, actor_id=ACTOR)
            await h.settle()
            decision = await h.engine.evaluate(h.store.get_item(ORG, item.id))
            return item, decision

        item, decision = run(scenario)
        assert harness.gateway.drafts == [{
            "draft_id": "draft-1",
            "vendor_id": "VND-1",
            "item_id": item.id,
            "quantity": 20,
            "unit_cost": 3.0,
        }]
        assert decision.outcome == DecisionOutcome.ALREADY_OPEN.value
        assert decision.draft_id == "draft-1"
        assert "ReplenishmentCreated" in harness.notifier.kinds()

    def test_items_are_judged_independently(self, run, harness):
        async def scenario(h):
            await h.engine.watch(ORG)
            await h.store.create_item(ORG, reorderable(sku="SKU-A"), actor_id=ACTOR)
            await h.store.create_item(ORG, reorderable(sku="SKU-B"), actor_id=ACTOR)
            await h.settle()

        run(scenario)
        assert len(harness.gateway.drafts) == 2

    def test_above_reorder_level_is_not_triggered(self, run, harness):
        async def scenario(h):
            await h.engine.watch(ORG)
            item = await h.store.create_item(ORG, reorderable(picking_bin_quantity=6), actor_id=ACTOR)
            await h.settle()
            return await h.engine.evaluate(h.store.get_item(ORG, item.id))

        decision = run(scenario)
        assert decision.outcome == DecisionOutcome.NOT_TRIGGERED.value
        assert harness.gateway.drafts == []

    def test_disabled_auto_reorder_is_not_triggered(self, run, harness):
        async def scenario(h):
            await h.engine.watch(ORG)
            await h.store.create_item(ORG, reorderable(auto_reorder_enabled=False), actor_id=ACTOR)
            await h.settle()

        run(scenario)
        assert harness.gateway.drafts == []

    def test_zero_reorder_quantity_is_skipped(self, run, harness):
        async def scenario(h):
            item = await h.store.create_item(ORG, reorderable(auto_reorder_quantity=0), actor_id=ACTOR)
            return await h.engine.evaluate(item), h.engine.episodes.list_episodes(ORG)

        decision, episodes = run(scenario)
        assert decision.outcome == DecisionOutcome.SKIPPED.value
        assert episodes == []
        assert harness.gateway.drafts == []

    def test_existing_items_are_evaluated_on_watch(self, run, harness):
        async def scenario(h):
            await h.store.create_item(ORG, reorderable(), actor_id=ACTOR)
            await h.engine.watch(ORG)
            await h.engine.watch(ORG)
            await h.settle()
            return h.engine.watched_organizations

        assert run(scenario) == [ORG]
        assert len(harness.gateway.drafts) == 1


class TestVendorMissing:

    def test_no_episode_and_one_notification(self, run, harness):
        async def scenario(h):
            await h.engine.watch(ORG)
            item = await h.store.create_item(ORG, reorderable(vendor_id=None), actor_id=ACTOR)
            await h.settle()
            await touch(h, item.id, 6)
            await h.settle()
            with pytest.raises(VendorMissingError) as exc:
                await h.engine.evaluate(h.store.get_item(ORG, item.id))
            return item, exc.value, h.engine.episodes.list_episodes(ORG)

        item, error, episodes = run(scenario)
        assert error.item_id == item.id
        assert episodes == []
        assert harness.gateway.drafts == []
        # 상태 전이 알림 1건 + 공급업체 누락 알림 1건 (반복 평가에도 중복 없음)
        assert harness.notifier.kinds() == ["OutOfStock", "OutOfStock"]
        assert "공급업체" in harness.notifier.sent[1].message

    def test_assigning_vendor_allows_next_evaluation(self, run, harness):
        async def scenario(h):
            await h.engine.watch(ORG)
            item = await h.store.create_item(ORG, reorderable(vendor_id=None), actor_id=ACTOR)
            await h.settle()
            await h.store.update_item(ORG, item.id, InventoryItemUpdate(vendor_id="VND-2"), actor_id=ACTOR)
            await h.settle()

        run(scenario)
        assert [d["vendor_id"] for d in harness.gateway.drafts] == ["VND-2"]


class TestEpisodeClosing:

    def test_receipt_closes_episode(self, run, harness):
        async def scenario(h):
            await h.engine.watch(ORG)
            item = await h.store.create_item(ORG, reorderable(), actor_id=ACTOR)
            await h.settle()
            await h.store.update_item(ORG, item.id, InventoryItemUpdate(incoming_stock=20), actor_id=ACTOR)
            await h.store.receive_stock(ORG, item.id, 20, actor_id=ACTOR)
            await h.settle()
            return h.engine.episodes.list_episodes(ORG)

        episodes = run(scenario)
        assert len(episodes) == 1
        assert episodes[0].status == EpisodeStatus.CLOSED
        assert episodes[0].close_reason == EpisodeCloseReason.RECEIVED
        assert len(harness.gateway.drafts) == 1

    def test_partial_receipt_still_low_opens_new_episode(self, run, harness):
        async def scenario(h):
            await h.engine.watch(ORG)
            item = await h.store.create_item(ORG, reorderable(), actor_id=ACTOR)
            await h.settle()
            await h.store.update_item(ORG, item.id, InventoryItemUpdate(incoming_stock=20), actor_id=ACTOR)
            await h.store.receive_stock(ORG, item.id, 3, actor_id=ACTOR)
            await h.settle()
            return h.engine.episodes.list_episodes(ORG, open_only=True)

        open_episodes = run(scenario)
        assert len(harness.gateway.drafts) == 2
        assert len(open_episodes) == 1
        assert open_episodes[0].draft_id == "draft-2"

    def test_draft_received_records_stock_and_closes(self, run, harness):
        async def scenario(h):
            await h.engine.watch(ORG)
            item = await h.store.create_item(ORG, reorderable(), actor_id=ACTOR)
            await h.settle()
            received = await h.engine.draft_received(ORG, item.id, 20)
            await h.settle()
            return received, h.store.list_movements(ORG, item.id), h.engine.episodes.list_episodes(ORG)

        received, movements, episodes = run(scenario)
        assert received.quantity == 20
        assert movements[0].reason == "Purchase draft received (draft-1)"
        assert movements[0].actor_id == "order-subsystem"
        assert [e.close_reason for e in episodes] == [EpisodeCloseReason.RECEIVED]
        assert len(harness.gateway.drafts) == 1

    def test_cancelled_draft_closes_episode_and_allows_new_one(self, run, harness):
        async def scenario(h):
            await h.engine.watch(ORG)
            item = await h.store.create_item(ORG, reorderable(), actor_id=ACTOR)
            await h.settle()
            closed = await h.engine.draft_cancelled("draft-1")
            again = await h.engine.draft_cancelled("draft-1")
            await touch(h, item.id, 6)
            await h.settle()
            return closed, again

        closed, again = run(scenario)
        assert closed.status == EpisodeStatus.CLOSED
        assert closed.close_reason == EpisodeCloseReason.CANCELLED
        assert again.id == closed.id
        assert again.close_reason == EpisodeCloseReason.CANCELLED
        assert [d["draft_id"] for d in harness.gateway.drafts] == ["draft-1", "draft-2"]

    def test_unknown_draft(self, run):
        async def scenario(h):
            with pytest.raises(EpisodeNotFoundError):
                await h.engine.draft_cancelled("draft-404")

        run(scenario)

    def test_deleting_item_cancels_open_episode(self, run):
        async def scenario(h):
            await h.engine.watch(ORG)
            item = await h.store.create_item(ORG, reorderable(), actor_id=ACTOR)
            await h.settle()
            await h.store.delete_item(ORG, item.id, actor_id=ACTOR)
            await h.settle()
            return h.engine.episodes.list_episodes(ORG)

        episodes = run(scenario)
        assert [e.close_reason for e in episodes] == [EpisodeCloseReason.CANCELLED]

    def test_deleted_item_lock_is_released(self, run, harness):
        async def scenario(h):
            await h.engine.watch(ORG)
            item = await h.store.create_item(ORG, reorderable(), actor_id=ACTOR)
            await h.settle()
            assert item.id in h.engine._item_locks
            await h.store.delete_item(ORG, item.id, actor_id=ACTOR)
            await h.settle()
            return item

        item = run(scenario)
        assert item.id not in harness.engine._item_locks


class TestEmitFailure:

    def test_open_episode_is_reemitted_on_next_evaluation(self, run, harness):
        async def scenario(h):
            h.gateway.fail_next = 1
            await h.engine.watch(ORG)
            item = await h.store.create_item(ORG, reorderable(), actor_id=ACTOR)
            await h.settle()
            pending = h.engine.episodes.list_episodes(ORG)
            await touch(h, item.id, 6)
            await h.settle()
            return pending, h.engine.episodes.list_episodes(ORG)

        pending, episodes = run(scenario)
        assert [e.status for e in pending] == [EpisodeStatus.OPEN]
        assert len(episodes) == 1
        assert episodes[0].id == pending[0].id
        assert episodes[0].status == EpisodeStatus.EMITTED
        assert len(harness.gateway.drafts) == 1

    def test_vendor_removed_before_retry_cancels_pending_episode(self, run, harness):
        """An un-emitted episode is discarded once the item loses its vendor."""
        async def scenario(h):
            h.gateway.fail_next = 1
            await h.engine.watch(ORG)
            item = await h.store.create_item(ORG, reorderable(), actor_id=ACTOR)
            await h.settle()
            await h.store.update_item(ORG, item.id, InventoryItemUpdate(vendor_id=None), actor_id=ACTOR)
            await h.settle()
            with pytest.raises(VendorMissingError):
                await h.engine.evaluate(h.store.get_item(ORG, item.id))
            return h.engine.episodes.list_episodes(ORG)

        episodes = run(scenario)
        assert harness.gateway.drafts == []
        assert len(episodes) == 1
        assert episodes[0].status == EpisodeStatus.CLOSED
        assert episodes[0].close_reason == EpisodeCloseReason.CANCELLED
        assert "공급업체" in harness.notifier.sent[-1].message

    def test_retry_uses_current_item_terms(self, run, harness):
        """Quantity, cost and vendor changed after a failed emit reach the draft."""
        async def scenario(h):
            h.gateway.fail_next = 1
            await h.engine.watch(ORG)
            item = await h.store.create_item(ORG, reorderable(), actor_id=ACTOR)
            await h.settle()
            await h.store.update_item(
                ORG, item.id,
                InventoryItemUpdate(auto_reorder_quantity=35, unit_cost=4.0, vendor_id="VND-9"),
                actor_id=ACTOR,
            )
            await h.settle()
            return h.engine.episodes.list_episodes(ORG)

        episodes = run(scenario)
        assert len(harness.gateway.drafts) == 1
        draft = harness.gateway.drafts[0]
        assert (draft["vendor_id"], draft["quantity"], draft["unit_cost"]) == ("VND-9", 35, 4.0)
        assert len(episodes) == 1
        assert episodes[0].status == EpisodeStatus.EMITTED
        assert (episodes[0].vendor_id, episodes[0].quantity, episodes[0].unit_cost) == ("VND-9", 35, 4.0)


class TestNotifications:

    def test_status_transitions_are_notified_once(self, run, harness):
        async def scenario(h):
            await h.engine.watch(ORG)
            item = await h.store.create_item(ORG, make_item(picking_bin_quantity=15), actor_id=ACTOR)
            for amount in (7, 3, 5):
                await h.store.apply_movement(ORG, item.id, "subtract", amount, actor_id=ACTOR)
            await h.settle()

        run(scenario)
        assert harness.notifier.kinds() == ["LowStock", "OutOfStock"]


class TestEventBusGateway:

    def test_publishes_draft_request(self, run):
        async def scenario(h):
            received = []

            async def on_draft(topic, data):
                received.append(data)

            await h.bus.subscribe(PURCHASE_DRAFT_TOPIC, on_draft)
            gateway = EventBusOrderGateway(h.bus)
            draft_id = await gateway.create_purchase_draft("VND-1", "item-1", 20, 3.0)
            await h.settle()
            return draft_id, received

        draft_id, received = run(scenario)
        assert draft_id.startswith("PD-") and len(draft_id) == 15
        assert len(received) == 1
        assert received[0]["draft_id"] == draft_id
        assert (received[0]["vendor_id"], received[0]["quantity"]) == ("VND-1", 20)
