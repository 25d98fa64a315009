"""
재고 품목 / 재고 이동 관련 Pydantic 스키마
- InventoryItemSnapshot은 API 응답과 실시간 변경 이벤트의 post-image로 함께 쓰인다.
"""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from stockflow.domain.stock_rules import MovementType, StockBucket, StockStatus, derive_status


class InventoryItemSnapshot(BaseModel):
    """품목 레코드의 불변 스냅샷 (수량/상태 정합성은 생성 시 검증)"""
    id: str
    organization_id: str
    sku: str
    name: str
    description: str = ""
    category: str = ""
    picking_bin_quantity: int = Field(ge=0)
    overstock_quantity: int = Field(ge=0)
    quantity: int
    reorder_level: int
    picking_reorder_level: int
    committed_stock: int = Field(ge=0)
    incoming_stock: int = Field(ge=0)
    unit_cost: float = Field(ge=0)
    retail_price: float = Field(ge=0)
    location: str | None = None
    picking_bin_location: str | None = None
    vendor_id: str | None = None
    auto_reorder_enabled: bool = False
    auto_reorder_quantity: int = Field(0, ge=0)
    status: StockStatus
    version: int
    last_updated: datetime | None = None

    model_config = {"from_attributes": True, "frozen": True}

    @model_validator(mode="after")
    def _check_derived_fields(self):
        if self.quantity != self.picking_bin_quantity + self.overstock_quantity:
            raise ValueError(
                f"quantity({self.quantity}) != picking_bin_quantity + overstock_quantity "
                f"({self.picking_bin_quantity} + {self.overstock_quantity})"
            )
        expected = derive_status(self.quantity, self.reorder_level)
        if self.status != expected:
            raise ValueError(f"status({self.status.value})가 수량 기준 상태({expected.value})와 다릅니다")
        return self


class InventoryItemCreate(BaseModel):
    sku: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    category: str = ""
    picking_bin_quantity: int = Field(0, ge=0)
    overstock_quantity: int = Field(0, ge=0)
    reorder_level: int = Field(0, ge=0)
    picking_reorder_level: int = Field(0, ge=0)
    unit_cost: float = Field(0.0, ge=0)
    retail_price: float = Field(0.0, ge=0)
    location: str | None = None
    picking_bin_location: str | None = None
    vendor_id: str | None = None
    auto_reorder_enabled: bool = False
    auto_reorder_quantity: int = Field(0, ge=0)

    model_config = {"extra": "forbid"}


class InventoryItemUpdate(BaseModel):
    """수량 외 필드만 수정 가능. 버킷 수량/총수량/상태는 받지 않는다."""
    sku: str | None = Field(None, min_length=1, max_length=64)
    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    category: str | None = None
    reorder_level: int | None = Field(None, ge=0)
    picking_reorder_level: int | None = Field(None, ge=0)
    committed_stock: int | None = Field(None, ge=0)
    incoming_stock: int | None = Field(None, ge=0)
    unit_cost: float | None = Field(None, ge=0)
    retail_price: float | None = Field(None, ge=0)
    location: str | None = None
    picking_bin_location: str | None = None
    vendor_id: str | None = None
    auto_reorder_enabled: bool | None = None
    auto_reorder_quantity: int | None = Field(None, ge=0)

    model_config = {"extra": "forbid"}


class MovementCreate(BaseModel):
    # amount 검증은 저장소에서 (ValidationError로 통일)
    type: MovementType
    amount: int
    reason: str = ""
    bucket: StockBucket | None = None


class ReceiveRequest(BaseModel):
    quantity: int
    bucket: StockBucket | None = None
    reason: str = ""


class FulfillRequest(BaseModel):
    quantity: int
    reference: str = ""


class CountRequest(BaseModel):
    bucket: StockBucket
    physical_count: int = Field(ge=0)
    reason: str = ""


class StockMovementRead(BaseModel):
    id: int
    movement_id: str
    organization_id: str
    item_id: str
    item_name: str
    type: MovementType
    amount: int
    old_quantity: int
    new_quantity: int
    bucket: str | None = None
    reason: str
    actor_id: str
    timestamp: datetime

    model_config = {"from_attributes": True, "frozen": True}


class MovementResult(BaseModel):
    item: InventoryItemSnapshot
    movement: StockMovementRead | None = None


class LedgerBreak(BaseModel):
    movement_id: str
    expected_old_quantity: int
    actual_old_quantity: int


class AuditReport(BaseModel):
    item_id: str
    current_quantity: int | None
    replayed_quantity: int
    movement_count: int
    breaks: list[LedgerBreak] = []
    consistent: bool
