"""
inventory_items 테이블 — 조직별 SKU 재고 레코드
- 피킹빈/오버스톡 수량만 저장하고, 총수량(quantity)과 상태(status)는 읽을 때마다 계산한다.
- version 컬럼은 낙관적 동시성 제어(version_id_col)와 실시간 동기화 버전으로 함께 쓰인다.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, Text, DateTime,
    UniqueConstraint, CheckConstraint, case,
)
from sqlalchemy.ext.hybrid import hybrid_property

from stockflow.database import Base
from stockflow.domain.stock_rules import StockStatus, derive_status


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(64), nullable=False, index=True)
    sku = Column(String(64), nullable=False)  # 조직 내 고유
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(100), nullable=False, default="")

    picking_bin_quantity = Column(Integer, nullable=False, default=0)  # 출고용 피킹빈 수량
    overstock_quantity = Column(Integer, nullable=False, default=0)  # 벌크 보관 수량

    reorder_level = Column(Integer, nullable=False, default=0)  # 총수량 기준 재주문 수준
    picking_reorder_level = Column(Integer, nullable=False, default=0)  # 피킹빈 보충 기준

    committed_stock = Column(Integer, nullable=False, default=0)  # 미출하 판매주문 약정분
    incoming_stock = Column(Integer, nullable=False, default=0)  # 미입고 구매주문 예정분

    unit_cost = Column(Float, nullable=False, default=0.0)
    retail_price = Column(Float, nullable=False, default=0.0)

    location = Column(String(64), nullable=True)  # 정규 로케이션 문자열
    picking_bin_location = Column(String(64), nullable=True)

    vendor_id = Column(String(64), nullable=True)
    auto_reorder_enabled = Column(Boolean, nullable=False, default=False)
    auto_reorder_quantity = Column(Integer, nullable=False, default=0)

    version = Column(Integer, nullable=False)
    last_updated = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("organization_id", "sku", name="uq_inventory_org_sku"),
        CheckConstraint("picking_bin_quantity >= 0", name="ck_inventory_picking_non_negative"),
        CheckConstraint("overstock_quantity >= 0", name="ck_inventory_overstock_non_negative"),
        CheckConstraint("committed_stock >= 0", name="ck_inventory_committed_non_negative"),
        CheckConstraint("incoming_stock >= 0", name="ck_inventory_incoming_non_negative"),
        CheckConstraint("unit_cost >= 0", name="ck_inventory_unit_cost_non_negative"),
        CheckConstraint("retail_price >= 0", name="ck_inventory_retail_price_non_negative"),
        CheckConstraint("auto_reorder_quantity >= 0", name="ck_inventory_auto_reorder_qty_non_negative"),
    )

    @hybrid_property
    def quantity(self) -> int:
        return self.picking_bin_quantity + self.overstock_quantity

    @hybrid_property
    def status(self) -> StockStatus:
        return derive_status(self.quantity, self.reorder_level)

    @status.expression
    def status(cls):
        total = cls.picking_bin_quantity + cls.overstock_quantity
        return case(
            (total == 0, StockStatus.OUT_OF_STOCK.value),
            (total <= cls.reorder_level, StockStatus.LOW_STOCK.value),
            else_=StockStatus.IN_STOCK.value,
        )
