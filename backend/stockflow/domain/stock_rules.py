"""
재고 수량 규칙 — 파생 수량/상태 계산과 버킷(피킹빈/오버스톡) 증감 정책.

- quantity = picking_bin_quantity + overstock_quantity (저장하지 않고 항상 재계산)
- status: quantity == 0 → OutOfStock, 0 < quantity <= reorder_level → LowStock, 그 외 InStock
- subtract 버킷 미지정 시 피킹빈부터 차감하고 나머지를 오버스톡에서 차감한다.
"""

import enum

from stockflow.exceptions import InsufficientStockError, ValidationError


class StockStatus(str, enum.Enum):
    IN_STOCK = "InStock"
    LOW_STOCK = "LowStock"
    OUT_OF_STOCK = "OutOfStock"


class MovementType(str, enum.Enum):
    ADD = "add"
    SUBTRACT = "subtract"


class StockBucket(str, enum.Enum):
    PICKING_BIN = "picking_bin"
    OVERSTOCK = "overstock"


def derive_status(quantity: int, reorder_level: int) -> StockStatus:
    """총수량과 재주문 수준으로 상태 결정"""
    if quantity == 0:
        return StockStatus.OUT_OF_STOCK
    if quantity <= reorder_level:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


def validate_amount(amount) -> int:
    """이동 수량은 양의 정수여야 한다."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError(f"이동 수량은 정수여야 합니다: {amount!r}", amount=amount)
    if amount <= 0:
        raise ValidationError(f"이동 수량은 0보다 커야 합니다: {amount}", amount=amount)
    return amount


def plan_add(
    picking_bin_quantity: int,
    overstock_quantity: int,
    amount: int,
    bucket: StockBucket,
) -> tuple[int, int]:
    """입고 후 (피킹빈, 오버스톡) 수량"""
    if bucket == StockBucket.PICKING_BIN:
        return picking_bin_quantity + amount, overstock_quantity
    return picking_bin_quantity, overstock_quantity + amount


def plan_subtract(
    item_id: str,
    picking_bin_quantity: int,
    overstock_quantity: int,
    amount: int,
    bucket: StockBucket | None = None,
) -> tuple[int, int]:
    """
    출고 후 (피킹빈, 오버스톡) 수량.
    어느 버킷이든 음수가 되면 InsufficientStockError — 음수 값을 만들지 않는다.
    """
    if bucket == StockBucket.PICKING_BIN:
        if amount > picking_bin_quantity:
            raise InsufficientStockError(item_id, amount, picking_bin_quantity)
        return picking_bin_quantity - amount, overstock_quantity

    if bucket == StockBucket.OVERSTOCK:
        if amount > overstock_quantity:
            raise InsufficientStockError(item_id, amount, overstock_quantity)
        return picking_bin_quantity, overstock_quantity - amount

    available = picking_bin_quantity + overstock_quantity
    if amount > available:
        raise InsufficientStockError(item_id, amount, available)

    from_picking = min(picking_bin_quantity, amount)
    remainder = amount - from_picking
    return picking_bin_quantity - from_picking, overstock_quantity - remainder
