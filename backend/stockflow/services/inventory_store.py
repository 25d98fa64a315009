"""
재고 레코드 저장소 (InventoryRecordStore) — 재고 품목의 단일 기록 시스템

- 수량 변경은 apply_movement 계열로만 가능하다. 품목 갱신과 원장 기록은 한 트랜잭션.
- 낙관적 잠금(version_id_col): 충돌 시 최신 상태로 재검증해 1회 재시도,
  그래도 충돌하면 ConcurrentModificationError.
- 같은 품목의 쓰기는 프로세스 안에서 직렬화되고, 변경 이벤트는 커밋 후 커밋 순서대로 발행된다.
- DB 작업은 동기 세션이므로 run_in_executor로 이벤트 루프 밖에서 실행한다.
"""

import asyncio
import functools
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockflow.config import settings
from stockflow.database import SessionLocal
from stockflow.domain import location_codec
from stockflow.domain.stock_rules import (
    MovementType, StockBucket, plan_add, plan_subtract, validate_amount,
)
from stockflow.events.change_feed import ChangeFeed
from stockflow.exceptions import (
    ConcurrentModificationError, DuplicateSkuError, InsufficientStockError, ItemNotFoundError,
    ValidationError,
)
from stockflow.models import InventoryItem, StockMovement
from stockflow.schemas.events import ChangeEvent, ChangeKind
from stockflow.schemas.inventory import (
    AuditReport, InventoryItemCreate, InventoryItemSnapshot, InventoryItemUpdate, StockMovementRead,
)
from stockflow.services.ledger import StockMovementLedger

logger = logging.getLogger(__name__)

# 품목 트랜잭션 안에서 실행되는 변경 함수. 원장 기록이 있으면 그 행을 돌려준다.
Mutation = Callable[[Session, InventoryItem], StockMovement | None]

_NULLABLE_FIELDS = {"location", "picking_bin_location", "vendor_id"}
_LOCATION_FIELDS = ("location", "picking_bin_location")


@dataclass
class WriteOutcome:
    """쓰기 1건의 결과. committed_at이 None이면 변경 없음(커밋/이벤트 없음)."""
    previous: InventoryItemSnapshot | None
    current: InventoryItemSnapshot | None
    movement: StockMovementRead | None = None
    committed_at: datetime | None = None

    @property
    def changed(self) -> bool:
        return self.committed_at is not None


def _snapshot(item: InventoryItem) -> InventoryItemSnapshot:
    return InventoryItemSnapshot.model_validate(item)


def _movement_read(movement: StockMovement | None) -> StockMovementRead | None:
    return StockMovementRead.model_validate(movement) if movement is not None else None


def _bucket_label(old_picking: int, new_picking: int, old_overstock: int, new_overstock: int) -> str:
    picking_changed = old_picking != new_picking
    overstock_changed = old_overstock != new_overstock
    if picking_changed and overstock_changed:
        return "split"
    if picking_changed:
        return StockBucket.PICKING_BIN.value
    return StockBucket.OVERSTOCK.value


def _normalize_location(value: str | None) -> str | None:
    """빈 값은 None, 그 외에는 정규 로케이션 문자열이어야 한다."""
    if value is None or value == "":
        return None
    location_codec.parse(value)
    return value


def _coerce_enum(enum_cls, value, name: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"알 수 없는 {name}: {value!r}", field=name, value=value)


class InventoryRecordStore:
    """조직별 재고 품목 저장소"""

    def __init__(
        self,
        change_feed: ChangeFeed | None = None,
        session_factory=SessionLocal,
        ledger: StockMovementLedger | None = None,
        max_retries: int = settings.CONCURRENT_WRITE_RETRIES,
        default_add_bucket: str = settings.DEFAULT_ADD_BUCKET,
    ):
        self.change_feed = change_feed
        self.session_factory = session_factory
        self.ledger = ledger or StockMovementLedger(session_factory)
        self.max_retries = max_retries
        self.default_add_bucket = StockBucket(default_add_bucket)
        self._item_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ────────────────────────────────────────────
    # 조회 (동기)
    # ────────────────────────────────────────────

    def list_items(self, organization_id: str) -> list[InventoryItemSnapshot]:
        """조직의 전체 품목 스냅샷 (SKU 순)"""
        db = self.session_factory()
        try:
            items = (
                db.query(InventoryItem)
                .filter(InventoryItem.organization_id == organization_id)
                .order_by(InventoryItem.sku)
                .all()
            )
            return [_snapshot(i) for i in items]
        finally:
            db.close()

    def get_item(self, organization_id: str, item_id: str) -> InventoryItemSnapshot:
        db = self.session_factory()
        try:
            return _snapshot(self._load(db, organization_id, item_id))
        finally:
            db.close()

    def list_movements(
        self,
        organization_id: str,
        item_id: str,
        since: datetime | None = None,
    ) -> list[StockMovementRead]:
        """품목 이동 이력 (최신순). 삭제된 품목의 원장도 조회된다."""
        return self.ledger.list_by_item(item_id, since=since, organization_id=organization_id)

    def audit_item(self, organization_id: str, item_id: str) -> AuditReport:
        """원장 재생 결과와 현재 수량 비교"""
        try:
            current = self.get_item(organization_id, item_id).quantity
        except ItemNotFoundError:
            current = None
        return self.ledger.audit_chain(item_id, current, organization_id=organization_id)

    # ────────────────────────────────────────────
    # 생성 / 수정 / 삭제
    # ────────────────────────────────────────────

    async def create_item(
        self,
        organization_id: str,
        data: InventoryItemCreate,
        *,
        actor_id: str,
    ) -> InventoryItemSnapshot:
        """품목 생성. 초기 수량이 있으면 0 → 초기 수량의 add 이동을 함께 기록한다."""
        fields = data.model_dump()
        for name in _LOCATION_FIELDS:
            fields[name] = _normalize_location(fields.get(name))

        outcome = await self._in_executor(self._transact_create, organization_id, fields, actor_id)
        logger.info(
            f"[Store] 품목 생성: {outcome.current.sku} ({outcome.current.id}) "
            f"수량={outcome.current.quantity} by {actor_id}"
        )
        await self._publish(ChangeKind.INSERT, organization_id, outcome.current.id, outcome)
        return outcome.current

    async def update_item(
        self,
        organization_id: str,
        item_id: str,
        changes: InventoryItemUpdate,
        *,
        actor_id: str,
    ) -> InventoryItemSnapshot:
        """
        수량 외 필드 수정 (재주문 수준, 약정/입고예정, 로케이션, 공급업체 등).
        원장에는 기록하지 않는다. 실제 바뀐 필드가 없으면 커밋/이벤트 없이 현재 값을 반환.
        """
        fields = changes.model_dump(exclude_unset=True)
        for name, value in fields.items():
            if value is None and name not in _NULLABLE_FIELDS:
                raise ValidationError(f"{name}은(는) 비울 수 없습니다", field=name)
        for name in _LOCATION_FIELDS:
            if name in fields:
                fields[name] = _normalize_location(fields[name])

        def mutate(db: Session, item: InventoryItem) -> None:
            new_sku = fields.get("sku")
            if new_sku is not None and new_sku != item.sku:
                clash = (
                    db.query(InventoryItem.id)
                    .filter(
                        InventoryItem.organization_id == organization_id,
                        InventoryItem.sku == new_sku,
                        InventoryItem.id != item.id,
                    )
                    .first()
                )
                if clash:
                    raise DuplicateSkuError(organization_id, new_sku)
            for name, value in fields.items():
                if getattr(item, name) != value:
                    setattr(item, name, value)
            return None

        try:
            outcome = await self._write_item(organization_id, item_id, mutate)
        except IntegrityError as e:
            raise DuplicateSkuError(organization_id, fields.get("sku", "")) from e

        if outcome.changed:
            logger.info(f"[Store] 품목 수정: {item_id} {sorted(fields)} by {actor_id}")
        return outcome.current

    async def delete_item(self, organization_id: str, item_id: str, *, actor_id: str) -> InventoryItemSnapshot:
        """품목 삭제. 원장은 남는다. 삭제 직전 스냅샷을 반환."""
        async with self._item_locks[item_id]:
            outcome = await self._with_retry(item_id, self._transact_delete, organization_id, item_id)
            await self._publish(ChangeKind.DELETE, organization_id, item_id, outcome)
        # 삭제된 품목의 잠금 제거
        self._item_locks.pop(item_id, None)
        logger.info(f"[Store] 품목 삭제: {outcome.previous.sku} ({item_id}) by {actor_id}")
        return outcome.previous

    # ────────────────────────────────────────────
    # 수량 변경 (원장 기록)
    # ────────────────────────────────────────────

    async def apply_movement(
        self,
        organization_id: str,
        item_id: str,
        movement_type: MovementType | str,
        amount: int,
        *,
        actor_id: str,
        reason: str = "",
        bucket: StockBucket | str | None = None,
    ) -> tuple[InventoryItemSnapshot, StockMovementRead]:
        """
        재고 증감 1건 적용.
        - add: bucket 미지정 시 기본 입고 버킷(오버스톡)
        - subtract: bucket 미지정 시 피킹빈 → 오버스톡 순으로 차감
        실패(검증/재고 부족/충돌) 시 품목과 원장 모두 변경 없음.
        """
        movement_type = _coerce_enum(MovementType, movement_type, "movement_type")
        bucket = _coerce_enum(StockBucket, bucket, "bucket")
        validate_amount(amount)

        mutate = self._movement_mutation(movement_type, amount, bucket, reason, actor_id)
        try:
            outcome = await self._write_item(organization_id, item_id, mutate)
        except InsufficientStockError as e:
            logger.warning(
                f"[Store] 재고 이동 거부: {item_id} {movement_type.value} {amount} "
                f"(가용 {e.available}) by {actor_id}"
            )
            raise
        self._log_movement(outcome)
        return outcome.current, outcome.movement

    async def receive_stock(
        self,
        organization_id: str,
        item_id: str,
        quantity: int,
        *,
        actor_id: str,
        bucket: StockBucket | str | None = None,
        reason: str = "",
    ) -> tuple[InventoryItemSnapshot, StockMovementRead]:
        """구매 입고: add 이동 + 입고예정(incoming_stock)을 입고량만큼 차감 (0 미만 불가)"""
        bucket = _coerce_enum(StockBucket, bucket, "bucket")
        validate_amount(quantity)

        def settle_incoming(item: InventoryItem):
            item.incoming_stock = max(0, item.incoming_stock - quantity)

        mutate = self._movement_mutation(
            MovementType.ADD, quantity, bucket, reason or "Purchase order received", actor_id,
            after=settle_incoming,
        )
        outcome = await self._write_item(organization_id, item_id, mutate)
        self._log_movement(outcome)
        return outcome.current, outcome.movement

    async def fulfill_sale(
        self,
        organization_id: str,
        item_id: str,
        quantity: int,
        *,
        actor_id: str,
        reference: str = "",
    ) -> tuple[InventoryItemSnapshot, StockMovementRead]:
        """판매 출고: subtract 이동(피킹빈 우선) + 약정(committed_stock) 차감 (0 미만 불가)"""
        validate_amount(quantity)

        def settle_committed(item: InventoryItem):
            item.committed_stock = max(0, item.committed_stock - quantity)

        reason = f"Sales order fulfilled: {reference}" if reference else "Sales order fulfilled"
        mutate = self._movement_mutation(
            MovementType.SUBTRACT, quantity, None, reason, actor_id, after=settle_committed,
        )
        outcome = await self._write_item(organization_id, item_id, mutate)
        self._log_movement(outcome)
        return outcome.current, outcome.movement

    async def record_count(
        self,
        organization_id: str,
        item_id: str,
        bucket: StockBucket | str,
        physical_count: int,
        *,
        actor_id: str,
        reason: str = "",
    ) -> tuple[InventoryItemSnapshot, StockMovementRead | None]:
        """실사(재고 조사) 결과 반영. 차이만큼 add/subtract 이동, 차이가 없으면 아무것도 하지 않는다."""
        bucket = _coerce_enum(StockBucket, bucket, "bucket")
        if bucket is None:
            raise ValidationError("실사 버킷이 필요합니다", field="bucket")
        if isinstance(physical_count, bool) or not isinstance(physical_count, int) or physical_count < 0:
            raise ValidationError(f"실사 수량이 올바르지 않습니다: {physical_count!r}", field="physical_count")

        def mutate(db: Session, item: InventoryItem) -> StockMovement | None:
            on_hand = item.picking_bin_quantity if bucket == StockBucket.PICKING_BIN else item.overstock_quantity
            delta = physical_count - on_hand
            if delta == 0:
                return None
            movement_type = MovementType.ADD if delta > 0 else MovementType.SUBTRACT
            apply = self._movement_mutation(
                movement_type, abs(delta), bucket,
                reason or f"Cycle count adjustment ({bucket.value}: {on_hand} → {physical_count})",
                actor_id,
            )
            return apply(db, item)

        outcome = await self._write_item(organization_id, item_id, mutate)
        if outcome.movement is not None:
            self._log_movement(outcome)
        return outcome.current, outcome.movement

    # ────────────────────────────────────────────
    # 내부: 트랜잭션 / 재시도 / 발행
    # ────────────────────────────────────────────

    def _movement_mutation(
        self,
        movement_type: MovementType,
        amount: int,
        bucket: StockBucket | None,
        reason: str,
        actor_id: str,
        after: Callable[[InventoryItem], None] | None = None,
    ) -> Mutation:
        def mutate(db: Session, item: InventoryItem) -> StockMovement:
            old_quantity = item.quantity
            old_picking, old_overstock = item.picking_bin_quantity, item.overstock_quantity

            if movement_type == MovementType.ADD:
                picking, overstock = plan_add(old_picking, old_overstock, amount, bucket or self.default_add_bucket)
            else:
                picking, overstock = plan_subtract(item.id, old_picking, old_overstock, amount, bucket)

            item.picking_bin_quantity = picking
            item.overstock_quantity = overstock
            if after is not None:
                after(item)

            return self.ledger.append(
                db,
                organization_id=item.organization_id,
                item_id=item.id,
                item_name=item.name,
                movement_type=movement_type,
                amount=amount,
                old_quantity=old_quantity,
                new_quantity=item.quantity,
                reason=reason,
                actor_id=actor_id,
                bucket=_bucket_label(old_picking, picking, old_overstock, overstock),
            )

        return mutate

    @staticmethod
    def _load(db: Session, organization_id: str, item_id: str) -> InventoryItem:
        item = (
            db.query(InventoryItem)
            .filter(InventoryItem.id == item_id, InventoryItem.organization_id == organization_id)
            .first()
        )
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    async def _in_executor(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    async def _with_retry(self, item_id: str, fn, *args) -> WriteOutcome:
        """버전 충돌(StaleDataError) 시 최신 상태로 다시 실행. max_retries 초과 시 ConcurrentModificationError."""
        attempts = 0
        while True:
            attempts += 1
            try:
                return await self._in_executor(fn, *args)
            except StaleDataError:
                if attempts > self.max_retries:
                    logger.warning(f"[Store] 동시 수정 충돌 — 포기: {item_id} ({attempts}회)")
                    raise ConcurrentModificationError(item_id, attempts)
                logger.warning(f"[Store] 버전 충돌 — 재시도 {attempts}/{self.max_retries}: {item_id}")

    async def _write_item(self, organization_id: str, item_id: str, mutate: Mutation) -> WriteOutcome:
        async with self._item_locks[item_id]:
            outcome = await self._with_retry(item_id, self._transact_update, organization_id, item_id, mutate)
            if outcome.changed:
                await self._publish(ChangeKind.UPDATE, organization_id, item_id, outcome)
        return outcome

    def _transact_update(self, organization_id: str, item_id: str, mutate: Mutation) -> WriteOutcome:
        db = self.session_factory()
        try:
            item = self._load(db, organization_id, item_id)
            previous = _snapshot(item)
            movement = mutate(db, item)

            if movement is None and not db.is_modified(item):
                db.rollback()
                return WriteOutcome(previous=previous, current=previous)

            committed_at = datetime.now(timezone.utc)
            item.last_updated = committed_at
            db.commit()
            return WriteOutcome(
                previous=previous,
                current=_snapshot(item),
                movement=_movement_read(movement),
                committed_at=committed_at,
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _transact_create(self, organization_id: str, fields: dict, actor_id: str) -> WriteOutcome:
        db = self.session_factory()
        try:
            exists = (
                db.query(InventoryItem.id)
                .filter(InventoryItem.organization_id == organization_id, InventoryItem.sku == fields["sku"])
                .first()
            )
            if exists:
                raise DuplicateSkuError(organization_id, fields["sku"])

            committed_at = datetime.now(timezone.utc)
            item = InventoryItem(
                organization_id=organization_id,
                committed_stock=0,
                incoming_stock=0,
                last_updated=committed_at,
                created_at=committed_at,
                **fields,
            )
            db.add(item)
            db.flush()

            movement = None
            if item.quantity > 0:
                movement = self.ledger.append(
                    db,
                    organization_id=organization_id,
                    item_id=item.id,
                    item_name=item.name,
                    movement_type=MovementType.ADD,
                    amount=item.quantity,
                    old_quantity=0,
                    new_quantity=item.quantity,
                    reason="Initial stock",
                    actor_id=actor_id,
                    bucket=_bucket_label(0, item.picking_bin_quantity, 0, item.overstock_quantity),
                )
            db.commit()
            return WriteOutcome(
                previous=None,
                current=_snapshot(item),
                movement=_movement_read(movement),
                committed_at=committed_at,
            )
        except IntegrityError as e:
            db.rollback()
            raise DuplicateSkuError(organization_id, fields["sku"]) from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _transact_delete(self, organization_id: str, item_id: str) -> WriteOutcome:
        db = self.session_factory()
        try:
            item = self._load(db, organization_id, item_id)
            previous = _snapshot(item)
            db.delete(item)
            db.commit()
            return WriteOutcome(previous=previous, current=None, committed_at=datetime.now(timezone.utc))
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def _publish(self, kind: ChangeKind, organization_id: str, item_id: str, outcome: WriteOutcome):
        """커밋된 변경만 발행. DELETE의 버전은 마지막 버전 + 1."""
        if self.change_feed is None:
            return
        version = outcome.current.version if outcome.current is not None else outcome.previous.version + 1
        event = ChangeEvent(
            organization_id=organization_id,
            item_id=item_id,
            kind=kind,
            version=version,
            previous=outcome.previous,
            current=outcome.current,
            committed_at=outcome.committed_at,
        )
        await self.change_feed.publish(event)

    @staticmethod
    def _log_movement(outcome: WriteOutcome):
        m = outcome.movement
        logger.info(
            f"[Store] 재고 이동: {m.item_name} {m.type.value} {m.amount} "
            f"({m.old_quantity} → {m.new_quantity}, {m.bucket}) v{outcome.current.version} by {m.actor_id}"
        )
