"""
재고 이동 원장 (StockMovementLedger)
- append-only: 추가만 가능, 수정/삭제 불가 (ORM 리스너가 차단)
- 기록은 InventoryRecordStore의 트랜잭션 안에서만 이루어진다 (같은 세션으로 append).
- 조회: 품목별 최신순 목록, 재생(replay)으로 수량 재계산, 체인 감사.
"""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import asc, desc
from sqlalchemy.orm import Session

from stockflow.database import SessionLocal
from stockflow.domain.stock_rules import MovementType
from stockflow.exceptions import ValidationError
from stockflow.models import StockMovement
from stockflow.schemas.inventory import AuditReport, LedgerBreak, StockMovementRead

logger = logging.getLogger(__name__)


def _to_utc(value: datetime) -> datetime:
    """기록 시각은 UTC로 저장된다. tz 없는 값은 UTC로 간주."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class StockMovementLedger:
    """재고 이동 원장"""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def append(
        self,
        session: Session,
        *,
        organization_id: str,
        item_id: str,
        item_name: str,
        movement_type: MovementType,
        amount: int,
        old_quantity: int,
        new_quantity: int,
        reason: str,
        actor_id: str,
        bucket: str | None = None,
    ) -> StockMovement:
        """
        호출자 트랜잭션에 이동 1건을 추가한다. 커밋은 호출자 몫.
        old/new 스냅샷이 type/amount와 맞지 않으면 ValidationError.
        """
        expected = old_quantity + amount if movement_type == MovementType.ADD else old_quantity - amount
        if amount <= 0 or new_quantity != expected:
            raise ValidationError(
                f"원장 정합성 위반: {movement_type.value} {amount}, {old_quantity} → {new_quantity}",
                item_id=item_id,
            )

        movement = StockMovement(
            movement_id=str(uuid.uuid4()),
            organization_id=organization_id,
            item_id=item_id,
            item_name=item_name,
            type=movement_type,
            amount=amount,
            old_quantity=old_quantity,
            new_quantity=new_quantity,
            bucket=bucket,
            reason=reason,
            actor_id=actor_id,
            timestamp=datetime.now(timezone.utc),
        )
        session.add(movement)
        return movement

    def _query(self, session: Session, item_id: str, organization_id: str | None):
        query = session.query(StockMovement).filter(StockMovement.item_id == item_id)
        if organization_id is not None:
            query = query.filter(StockMovement.organization_id == organization_id)
        return query

    def list_by_item(
        self,
        item_id: str,
        since: datetime | None = None,
        organization_id: str | None = None,
    ) -> list[StockMovementRead]:
        """품목의 이동 내역 (최신순). since가 있으면 그 시각 이후만."""
        db = self.session_factory()
        try:
            query = self._query(db, item_id, organization_id)
            if since is not None:
                query = query.filter(StockMovement.timestamp >= _to_utc(since))
            rows = query.order_by(desc(StockMovement.id)).all()
            return [StockMovementRead.model_validate(r) for r in rows]
        finally:
            db.close()

    def replay_quantity(
        self,
        item_id: str,
        organization_id: str | None = None,
        starting_quantity: int = 0,
        after_id: int | None = None,
    ) -> int:
        """체크포인트(after_id 시점의 수량 starting_quantity)부터 이동을 재생해 현재 수량을 계산"""
        db = self.session_factory()
        try:
            query = self._query(db, item_id, organization_id)
            if after_id is not None:
                query = query.filter(StockMovement.id > after_id)
            quantity = starting_quantity
            for m in query.order_by(asc(StockMovement.id)).all():
                quantity = quantity + m.amount if m.type == MovementType.ADD else quantity - m.amount
            return quantity
        finally:
            db.close()

    def audit_chain(
        self,
        item_id: str,
        current_quantity: int | None,
        organization_id: str | None = None,
    ) -> AuditReport:
        """
        원장 체인 감사.
        각 이동의 old_quantity가 직전 이동의 new_quantity와 같은지,
        마지막 new_quantity가 현재 품목 수량과 같은지 확인한다.
        """
        db = self.session_factory()
        try:
            rows = self._query(db, item_id, organization_id).order_by(asc(StockMovement.id)).all()
        finally:
            db.close()

        breaks: list[LedgerBreak] = []
        running = 0
        for m in rows:
            if m.old_quantity != running:
                breaks.append(LedgerBreak(
                    movement_id=m.movement_id,
                    expected_old_quantity=running,
                    actual_old_quantity=m.old_quantity,
                ))
            running = m.new_quantity

        consistent = not breaks and (current_quantity is None or running == current_quantity)
        if not consistent:
            logger.warning(
                f"[Ledger] 원장 불일치: item={item_id} 재생={running} 현재={current_quantity} "
                f"끊김 {len(breaks)}건"
            )

        return AuditReport(
            item_id=item_id,
            current_quantity=current_quantity,
            replayed_quantity=running,
            movement_count=len(rows),
            breaks=breaks,
            consistent=consistent,
        )
