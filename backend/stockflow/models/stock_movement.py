"""
stock_movements 테이블 — 재고 이동 원장 (append-only)
- 모든 수량 변경마다 정확히 1건 기록된다.
- old_quantity/new_quantity는 이동 시점의 총수량 스냅샷.
- ORM 수준에서 UPDATE/DELETE를 차단한다.
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, Enum, CheckConstraint, Index, event

from stockflow.database import Base
from stockflow.domain.stock_rules import MovementType
from stockflow.exceptions import LedgerImmutableError


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, autoincrement=True)  # 원장 순서
    movement_id = Column(String(36), unique=True, nullable=False)  # UUID
    organization_id = Column(String(64), nullable=False)
    item_id = Column(String(36), nullable=False)  # 품목 삭제 후에도 이력 보존 (FK 없음)
    item_name = Column(String(200), nullable=False, default="")
    type = Column(
        Enum(MovementType, name="movement_type", values_callable=_enum_values),
        nullable=False,
    )
    amount = Column(Integer, nullable=False)
    old_quantity = Column(Integer, nullable=False)
    new_quantity = Column(Integer, nullable=False)
    bucket = Column(String(20), nullable=True)  # 증감된 버킷 (picking_bin / overstock / split)
    reason = Column(Text, nullable=False, default="")
    actor_id = Column(String(64), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_movement_amount_positive"),
        CheckConstraint(
            "(type = 'add' AND new_quantity = old_quantity + amount) OR "
            "(type = 'subtract' AND new_quantity = old_quantity - amount)",
            name="ck_movement_quantity_bracket",
        ),
        Index("ix_movements_item_order", "item_id", "id"),
    )


@event.listens_for(StockMovement, "before_update")
def _block_movement_update(mapper, connection, target):
    raise LedgerImmutableError(target.movement_id, "update")


@event.listens_for(StockMovement, "before_delete")
def _block_movement_delete(mapper, connection, target):
    raise LedgerImmutableError(target.movement_id, "delete")
