"""
Replenishment Engine — 재고 변경에 반응하는 자동 발주 에이전트.

조직별 RealtimeReconciler의 프로젝션 변경을 구독하고, 품목마다 독립적으로 판단한다.

발주 조건 (모두 만족):
    auto_reorder_enabled AND quantity <= reorder_level AND 열린 에피소드 없음

- 중복 발주를 막는 유일한 기준은 "열린 에피소드 존재 여부"다. 수량 비교만으로는 부족하다.
- 에피소드를 먼저 기록(OPEN)하고 초안을 발행(EMITTED)한다.
  발행 전에 중단되면 OPEN 에피소드가 남고, 다음 평가 때 품목의 현재 공급업체/수량/단가로 재발행한다.
- 종료: 입고(입고예정 감소 + 수량 증가) 또는 주문 시스템의 취소 신호.
- 공급업체가 없으면 에피소드를 열지 않고 알림 + VendorMissingError (다음 평가에서 재시도).
"""

import asyncio
import enum
import logging
from collections import defaultdict
from datetime import datetime, timezone

from stockflow.agents.collaborators import (
    Notification, NotificationDispatcher, NotificationKind, PurchaseOrderGateway,
)
from stockflow.agents.episode_store import EpisodeStore
from stockflow.domain.stock_rules import StockStatus
from stockflow.events.change_feed import ChangeFeed
from stockflow.exceptions import EpisodeNotFoundError, VendorMissingError
from stockflow.models.replenishment_episode import EpisodeCloseReason, EpisodeStatus
from stockflow.realtime.reconciler import RealtimeReconciler
from stockflow.schemas.inventory import InventoryItemSnapshot
from stockflow.schemas.replenishment import DecisionRead, EpisodeRead
from stockflow.services.inventory_store import InventoryRecordStore

logger = logging.getLogger(__name__)


class DecisionOutcome(str, enum.Enum):
    EMITTED = "emitted"                # 초안 발행 완료
    ALREADY_OPEN = "already_open"      # 열린 에피소드 있음 → 발행 안 함
    NOT_TRIGGERED = "not_triggered"    # 조건 불충족
    SKIPPED = "skipped"                # 발주 수량 0 등
    VENDOR_MISSING = "vendor_missing"
    EMIT_FAILED = "emit_failed"        # 주문 시스템 오류 → OPEN 유지, 다음 평가 때 재시도


_STATUS_NOTIFICATION = {
    StockStatus.LOW_STOCK: NotificationKind.LOW_STOCK,
    StockStatus.OUT_OF_STOCK: NotificationKind.OUT_OF_STOCK,
}


def _as_utc(value: datetime | None) -> datetime:
    """SQLite는 tz 정보 없이 돌려주므로 UTC로 간주"""
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ReplenishmentEngine:
    """
    자동 보충 엔진.
    - watch(org): 조직 프로젝션 관찰 시작 (idempotent)
    - evaluate(item): 품목 1개 판단
    - draft_cancelled / draft_received: 주문 시스템 신호
    """

    def __init__(
        self,
        store: InventoryRecordStore,
        change_feed: ChangeFeed,
        gateway: PurchaseOrderGateway,
        notifier: NotificationDispatcher,
        episodes: EpisodeStore | None = None,
    ):
        self.store = store
        self.change_feed = change_feed
        self.gateway = gateway
        self.notifier = notifier
        self.episodes = episodes or EpisodeStore(store.session_factory)

        self._reconcilers: dict[str, RealtimeReconciler] = {}
        self._item_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._vendor_missing_reported: set[str] = set()

    # ── 수명주기 ─────────────────────────────────────────

    async def watch(self, organization_id: str) -> RealtimeReconciler:
        """조직 프로젝션 구독. 이미 관찰 중이면 기존 reconciler 반환."""
        reconciler = self._reconcilers.get(organization_id)
        if reconciler is None:
            reconciler = RealtimeReconciler(
                organization_id,
                self.change_feed,
                self.store.list_items,
                name=f"replenishment:{organization_id}",
            )
            reconciler.add_listener(self.on_item_changed)
            self._reconcilers[organization_id] = reconciler
        await reconciler.connect()
        return reconciler

    async def stop(self):
        for reconciler in self._reconcilers.values():
            await reconciler.disconnect()
        self._reconcilers = {}
        logger.info("Replenishment Engine 중지")

    @property
    def watched_organizations(self) -> list[str]:
        return sorted(self._reconcilers)

    # ── 프로젝션 변경 처리 ─────────────────────────────────

    async def on_item_changed(
        self,
        previous: InventoryItemSnapshot | None,
        current: InventoryItemSnapshot | None,
    ) -> DecisionRead | None:
        """reconciler 리스너: 입고 감지 → 에피소드 종료, 상태 전이 알림, 발주 판단"""
        if current is None:
            if previous is not None:
                await self._close_for_deleted_item(previous)
            return None

        async with self._item_locks[current.id]:
            if previous is not None and self._is_receipt(previous, current):
                loop = asyncio.get_running_loop()
                episode = await loop.run_in_executor(None, self.episodes.get_open, current.id)
                # 입고 커밋 이후에 열린 에피소드는 이번 입고와 무관
                if episode is not None and _as_utc(episode.opened_at) <= _as_utc(current.last_updated):
                    await self._close(episode, EpisodeCloseReason.RECEIVED)

            await self._notify_status_transition(previous, current)
            return await self._evaluate_reported(current)

    async def evaluate(self, item: InventoryItemSnapshot) -> DecisionRead:
        """품목 1개 발주 판단. 공급업체가 없으면 VendorMissingError."""
        async with self._item_locks[item.id]:
            return await self._evaluate_locked(item)

    async def evaluate_item(self, organization_id: str, item_id: str) -> DecisionRead:
        """저장소의 최신 상태로 판단 (운영자 수동 재평가)"""
        loop = asyncio.get_running_loop()
        item = await loop.run_in_executor(None, self.store.get_item, organization_id, item_id)
        return await self.evaluate(item)

    async def _evaluate_reported(self, item: InventoryItemSnapshot) -> DecisionRead:
        """반응형 경로용: 공급업체 누락은 이미 알림/로그로 보고되었으므로 결정으로 돌려준다."""
        try:
            return await self._evaluate_locked(item)
        except VendorMissingError as e:
            return self._decision(item, DecisionOutcome.VENDOR_MISSING, detail=e.message)

    async def _evaluate_locked(self, item: InventoryItemSnapshot) -> DecisionRead:
        if not item.auto_reorder_enabled or item.quantity > item.reorder_level:
            self._vendor_missing_reported.discard(item.id)
            return self._decision(item, DecisionOutcome.NOT_TRIGGERED)

        if item.auto_reorder_quantity <= 0:
            logger.info(f"[Replenishment] 발주 수량 0 — 건너뜀: {item.sku}")
            return self._decision(item, DecisionOutcome.SKIPPED, detail="auto_reorder_quantity is 0")

        loop = asyncio.get_running_loop()
        episode = await loop.run_in_executor(None, self.episodes.get_open, item.id)

        if episode is not None and episode.status == EpisodeStatus.EMITTED:
            logger.debug(f"[Replenishment] 열린 에피소드 있음 — 발주 안 함: {item.sku} ({episode.draft_id})")
            return self._decision(item, DecisionOutcome.ALREADY_OPEN, episode)

        if episode is None:
            if not item.vendor_id:
                await self._report_vendor_missing(item)
                raise VendorMissingError(item.id, item.sku)

            self._vendor_missing_reported.discard(item.id)
            episode, created = await loop.run_in_executor(
                None,
                self.episodes.open_episode,
                item.organization_id,
                item.id,
                item.vendor_id,
                item.auto_reorder_quantity,
                item.unit_cost,
                item.quantity,
            )
            if not created and episode.status == EpisodeStatus.EMITTED:
                return self._decision(item, DecisionOutcome.ALREADY_OPEN, episode)
            logger.info(
                f"[Replenishment] 에피소드 개설: {item.sku} 수량={item.quantity} "
                f"(재주문 수준 {item.reorder_level})"
            )
        else:
            if not item.vendor_id:
                # 발행 전에 공급업체가 빠졌으면 미발행 에피소드는 폐기
                await self._close(episode, EpisodeCloseReason.CANCELLED)
                await self._report_vendor_missing(item)
                raise VendorMissingError(item.id, item.sku)
            episode = await loop.run_in_executor(
                None,
                self.episodes.refresh_terms,
                episode.id,
                item.vendor_id,
                item.auto_reorder_quantity,
                item.unit_cost,
            )
            logger.info(f"[Replenishment] 미발행 에피소드 재시도: {item.sku} ({episode.id})")

        return await self._emit(item, episode)

    async def _emit(self, item: InventoryItemSnapshot, episode: EpisodeRead) -> DecisionRead:
        """에피소드에 기록된 공급업체/수량/단가로 초안 발행"""
        try:
            draft_id = await self.gateway.create_purchase_draft(
                episode.vendor_id, episode.item_id, episode.quantity, episode.unit_cost,
            )
        except Exception as e:
            logger.error(f"[Replenishment] 발주 초안 생성 실패 — 다음 평가 때 재시도: {item.sku}: {e}")
            return self._decision(item, DecisionOutcome.EMIT_FAILED, episode, detail=str(e))

        loop = asyncio.get_running_loop()
        episode = await loop.run_in_executor(None, self.episodes.mark_emitted, episode.id, draft_id)
        logger.info(
            f"[Replenishment] 발주 초안 발행: {item.sku} x{episode.quantity} "
            f"@ {episode.vendor_id} → {draft_id}"
        )

        await self.notifier.dispatch(Notification(
            item_id=item.id,
            organization_id=item.organization_id,
            kind=NotificationKind.REPLENISHMENT_CREATED,
            message=f"{item.name} ({item.sku}) 자동 발주 초안 생성: {episode.quantity}개 ({draft_id})",
        ))
        return self._decision(item, DecisionOutcome.EMITTED, episode)

    # ── 주문 시스템 신호 ───────────────────────────────────

    async def draft_cancelled(self, draft_id: str) -> EpisodeRead:
        """발주 초안 취소 → 에피소드 종료 (이미 닫혔으면 그대로 반환)"""
        loop = asyncio.get_running_loop()
        episode = await loop.run_in_executor(None, self.episodes.get_by_draft, draft_id)
        if episode is None:
            raise EpisodeNotFoundError(draft_id)

        async with self._item_locks[episode.item_id]:
            return await self._close(episode, EpisodeCloseReason.CANCELLED)

    async def draft_received(
        self,
        organization_id: str,
        item_id: str,
        received_quantity: int,
        actor_id: str = "order-subsystem",
    ) -> InventoryItemSnapshot:
        """
        발주분 입고. 저장소에 입고를 기록하고, 입고 전에 열려 있던 에피소드를 닫는다.
        입고예정 수량이 잡혀 있지 않아 프로젝션에서 입고로 판정되지 않는 경우도 있으므로 명시적으로 종료한다.
        종료 후에도 재주문 수준 이하이면 새 에피소드로 다시 판단한다.
        """
        loop = asyncio.get_running_loop()
        episode = await loop.run_in_executor(None, self.episodes.get_open, item_id)

        reason = "Purchase draft received"
        if episode is not None and episode.draft_id:
            reason = f"{reason} ({episode.draft_id})"
        item, _ = await self.store.receive_stock(
            organization_id, item_id, received_quantity, actor_id=actor_id, reason=reason,
        )

        if episode is not None:
            async with self._item_locks[item_id]:
                await self._close(episode, EpisodeCloseReason.RECEIVED)
                await self._evaluate_reported(item)
        return item

    # ── 내부 ────────────────────────────────────────────

    async def _close(self, episode: EpisodeRead, reason: EpisodeCloseReason) -> EpisodeRead:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.episodes.close, episode.id, reason)

    async def _close_for_deleted_item(self, previous: InventoryItemSnapshot):
        async with self._item_locks[previous.id]:
            loop = asyncio.get_running_loop()
            episode = await loop.run_in_executor(None, self.episodes.get_open, previous.id)
            if episode is not None:
                await self._close(episode, EpisodeCloseReason.CANCELLED)
        self._item_locks.pop(previous.id, None)
        self._vendor_missing_reported.discard(previous.id)

    @staticmethod
    def _is_receipt(previous: InventoryItemSnapshot, current: InventoryItemSnapshot) -> bool:
        """입고 판정: 입고예정이 줄고 수량이 늘었다"""
        return current.incoming_stock < previous.incoming_stock and current.quantity > previous.quantity

    async def _notify_status_transition(
        self,
        previous: InventoryItemSnapshot | None,
        current: InventoryItemSnapshot,
    ):
        kind = _STATUS_NOTIFICATION.get(current.status)
        if kind is None:
            return
        if previous is not None and previous.status == current.status:
            return
        await self.notifier.dispatch(Notification(
            item_id=current.id,
            organization_id=current.organization_id,
            kind=kind,
            message=f"{current.name} ({current.sku}) 재고 {current.quantity}개 — {current.status.value}",
        ))

    async def _report_vendor_missing(self, item: InventoryItemSnapshot):
        logger.warning(f"[Replenishment] 공급업체 미지정 — 자동 발주 불가: {item.sku} ({item.id})")
        if item.id in self._vendor_missing_reported:
            return
        self._vendor_missing_reported.add(item.id)
        await self.notifier.dispatch(Notification(
            item_id=item.id,
            organization_id=item.organization_id,
            kind=_STATUS_NOTIFICATION.get(item.status, NotificationKind.LOW_STOCK),
            message=f"{item.name} ({item.sku}) 자동 발주 불가: 공급업체가 지정되지 않았습니다",
        ))

    @staticmethod
    def _decision(
        item: InventoryItemSnapshot,
        outcome: DecisionOutcome,
        episode: EpisodeRead | None = None,
        detail: str = "",
    ) -> DecisionRead:
        return DecisionRead(
            item_id=item.id,
            outcome=outcome.value,
            draft_id=episode.draft_id if episode else None,
            episode_id=episode.id if episode else None,
            detail=detail,
        )
