"""
RealtimeReconciler — 조직 단위 클라이언트 로컬 프로젝션 동기화

상태 머신:
    DISCONNECTED → SUBSCRIBING → SYNCED ⇄ CHANGE_RECEIVED → DISCONNECTED

- SUBSCRIBING: 변경 피드를 먼저 구독한 뒤 전체 스냅샷을 읽는다.
  그 사이 도착한 이벤트는 버퍼에 모았다가 스냅샷 설치 후 같은 버전 가드로 적용한다.
- 이벤트는 항상 변경 후 전체 레코드를 싣고 있으므로 품목 id 기준으로 교체만 한다.
- 품목별 버전이 이미 적용된 버전 이하이면 오래된 이벤트로 보고 버린다 (예외 아님).
- 삭제된 품목은 버전을 톰스톤으로 남겨, 늦게 도착한 이전 UPDATE가 되살리지 못하게 한다.
- 연결이 끊기면 이벤트 스트림을 이어받지 않고 다시 구독 + 스냅샷부터 시작한다.
- 변경 피드가 이벤트 유실(갭)을 알려도 연결이 끊긴 것과 같이 처리한다.
"""

import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable

from stockflow.events.change_feed import ChangeFeed, Subscription
from stockflow.schemas.events import ChangeEvent, ChangeKind
from stockflow.schemas.inventory import InventoryItemSnapshot

logger = logging.getLogger(__name__)

# 스냅샷 로더: organization_id → 전체 품목 (동기, executor에서 실행)
SnapshotLoader = Callable[[str], list[InventoryItemSnapshot]]

# 프로젝션 리스너: async callable(previous, current). 없는 쪽은 None.
ProjectionListener = Callable[
    [InventoryItemSnapshot | None, InventoryItemSnapshot | None], Awaitable[Any]
]


class ReconcilerState(str, enum.Enum):
    DISCONNECTED = "DISCONNECTED"
    SUBSCRIBING = "SUBSCRIBING"
    SYNCED = "SYNCED"
    CHANGE_RECEIVED = "CHANGE_RECEIVED"


class RealtimeReconciler:
    """
    클라이언트 1개(또는 서버 측 관찰자 1개)의 조직 프로젝션.

    사용법:
        reconciler = RealtimeReconciler("org-1", change_feed, store.list_items)
        reconciler.add_listener(on_item_changed)
        await reconciler.connect()
        ...
        await reconciler.disconnect()
    """

    def __init__(
        self,
        organization_id: str,
        change_feed: ChangeFeed,
        snapshot_loader: SnapshotLoader,
        name: str = "reconciler",
    ):
        self.organization_id = organization_id
        self.change_feed = change_feed
        self.snapshot_loader = snapshot_loader
        self.name = name

        self.state = ReconcilerState.DISCONNECTED
        self.projection: dict[str, InventoryItemSnapshot] = {}
        self._versions: dict[str, int] = {}  # 적용된 최신 버전 (삭제 품목 톰스톤 포함)
        self._buffer: list[ChangeEvent] = []
        self._subscription: Subscription | None = None
        self._generation = 0  # connect/disconnect마다 증가 → 진행 중이던 스냅샷 폐기 판단
        self._listeners: list[ProjectionListener] = []

        self.applied_count = 0
        self.stale_count = 0
        self.resync_count = 0

    # ── 리스너 ───────────────────────────────────────────

    def add_listener(self, listener: ProjectionListener):
        self._listeners.append(listener)

    def remove_listener(self, listener: ProjectionListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ── 상태 전이 ─────────────────────────────────────────

    def _set_state(self, state: ReconcilerState):
        if state == self.state:
            return
        previous, self.state = self.state, state
        if ReconcilerState.CHANGE_RECEIVED in (previous, state):
            logger.debug(f"[{self.name}] {previous.value} → {state.value}")
        else:
            logger.info(f"[{self.name}] {self.organization_id}: {previous.value} → {state.value}")

    @property
    def is_synced(self) -> bool:
        return self.state in (ReconcilerState.SYNCED, ReconcilerState.CHANGE_RECEIVED)

    def version_of(self, item_id: str) -> int | None:
        return self._versions.get(item_id)

    async def connect(self):
        """구독 → 스냅샷 → 버퍼 적용 → SYNCED. 이미 연결 중이면 아무것도 하지 않는다."""
        if self.state != ReconcilerState.DISCONNECTED:
            return

        self._generation += 1
        generation = self._generation
        self._buffer = []
        self._set_state(ReconcilerState.SUBSCRIBING)
        self._subscription = self.change_feed.subscribe(
            self.organization_id, self.handle_event, on_gap=self.handle_gap,
        )

        try:
            loop = asyncio.get_running_loop()
            items = await loop.run_in_executor(None, self.snapshot_loader, self.organization_id)
        except Exception:
            if generation == self._generation:
                self._teardown()
            raise

        if generation != self._generation:
            # 스냅샷 도중 연결 해제됨 → 부분 결과 폐기
            logger.info(f"[{self.name}] 스냅샷 도중 연결 해제 — 결과 폐기")
            return

        await self._install_snapshot(items)

        # 버퍼를 비우는 동안 도착한 이벤트도 버퍼로 들어오므로 빌 때까지 반복
        while self._buffer and generation == self._generation:
            event = self._buffer.pop(0)
            await self._apply(event)

        if generation == self._generation:
            self._set_state(ReconcilerState.SYNCED)
            logger.info(
                f"[{self.name}] 동기화 완료: 품목 {len(self.projection)}개 "
                f"(스냅샷 {len(items)}개)"
            )

    async def disconnect(self):
        """구독 해제. 프로젝션은 남겨두지만 다음 connect에서 스냅샷으로 교체된다."""
        self._generation += 1
        self._teardown()

    async def connection_lost(self, reconnect: bool = True):
        """네트워크 단절 — 스트림을 이어받지 않고 재구독/재스냅샷"""
        logger.warning(f"[{self.name}] 연결 끊김: {self.organization_id} (재연결={reconnect})")
        await self.disconnect()
        if reconnect:
            await self.connect()

    async def handle_gap(self):
        """변경 피드 유실 신호: 놓친 이벤트를 알 수 없으므로 재구독/재스냅샷"""
        if self.state == ReconcilerState.DISCONNECTED:
            return
        self.resync_count += 1
        await self.connection_lost()

    def _teardown(self):
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self._buffer = []
        self._set_state(ReconcilerState.DISCONNECTED)

    # ── 이벤트 처리 ────────────────────────────────────────

    async def handle_event(self, event: ChangeEvent) -> bool:
        """
        변경 이벤트 1건 처리. 프로젝션에 반영했으면 True.
        SUBSCRIBING 중에는 버퍼에 쌓고, DISCONNECTED면 무시한다.
        """
        if event.organization_id != self.organization_id:
            return False
        if self.state == ReconcilerState.DISCONNECTED:
            logger.debug(f"[{self.name}] 연결 해제 상태 — 이벤트 무시: {event.item_id} v{event.version}")
            return False
        if self.state == ReconcilerState.SUBSCRIBING:
            self._buffer.append(event)
            return False
        return await self._apply(event)

    async def _apply(self, event: ChangeEvent) -> bool:
        known = self._versions.get(event.item_id)
        if known is not None and event.version <= known:
            self.stale_count += 1
            logger.debug(
                f"[{self.name}] 오래된 이벤트 폐기: {event.item_id} "
                f"v{event.version} (적용된 버전 v{known})"
            )
            return False

        if event.kind != ChangeKind.DELETE and event.current is None:
            logger.error(f"[{self.name}] post-image 없는 {event.kind.value} 이벤트 — 무시: {event.item_id}")
            return False

        was_synced = self.state != ReconcilerState.SUBSCRIBING
        if was_synced:
            self._set_state(ReconcilerState.CHANGE_RECEIVED)

        previous = self.projection.get(event.item_id)
        self._versions[event.item_id] = event.version
        if event.kind == ChangeKind.DELETE:
            self.projection.pop(event.item_id, None)
            current = None
        else:
            current = event.current
            self.projection[event.item_id] = current
        self.applied_count += 1

        if was_synced:
            self._set_state(ReconcilerState.SYNCED)

        await self._notify(previous, current)
        return True

    async def _install_snapshot(self, items: list[InventoryItemSnapshot]):
        """
        스냅샷으로 프로젝션 교체.
        리스너에는 새로 보이는 품목도 (current, current)로 전달해 상태 전이로 오인하지 않게 한다.
        """
        old_projection = self.projection
        tombstones = {
            item_id: version for item_id, version in self._versions.items()
            if item_id not in old_projection
        }

        self.projection = {item.id: item for item in items}
        self._versions = {**tombstones, **{item.id: item.version for item in items}}

        for item in items:
            await self._notify(old_projection.get(item.id, item), item)
        for item_id, stale in old_projection.items():
            if item_id not in self.projection:
                await self._notify(stale, None)

    async def _notify(self, previous: InventoryItemSnapshot | None, current: InventoryItemSnapshot | None):
        for listener in list(self._listeners):
            try:
                await listener(previous, current)
            except Exception as e:
                item = current or previous
                logger.error(f"[{self.name}] 프로젝션 리스너 에러 ({item.id if item else '?'}): {e}")

    def items(self) -> list[InventoryItemSnapshot]:
        """현재 프로젝션 (SKU 순)"""
        return sorted(self.projection.values(), key=lambda i: i.sku)
