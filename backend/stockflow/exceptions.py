"""
재고 코어 예외 계층

모든 예외는 StockflowError를 상속하며, 기계 판독용 code와 구조화된 속성을 가진다.
호출자는 메시지 문자열이 아니라 타입으로 분기한다.

    StockflowError
    +-- ValidationError            (VALIDATION_ERROR)      잘못된 입력, 부분 적용 없음
    |   +-- LocationFormatError    (INVALID_LOCATION)
    |   +-- DuplicateSkuError      (DUPLICATE_SKU)
    +-- ItemNotFoundError          (ITEM_NOT_FOUND)
    +-- InsufficientStockError     (INSUFFICIENT_STOCK)    원장 기록 없음
    +-- ConcurrentModificationError (CONCURRENT_MODIFICATION) 1회 재시도 후에도 충돌
    +-- VendorMissingError         (VENDOR_MISSING)        에피소드 미개설
    +-- LedgerImmutableError       (LEDGER_IMMUTABLE)      원장 수정/삭제 시도
    +-- EpisodeNotFoundError       (EPISODE_NOT_FOUND)

오래된 실시간 이벤트(ReconciliationStale)는 예외가 아니라 로그만 남기는 no-op이다.
"""


class StockflowError(Exception):
    """재고 코어 예외 베이스"""

    code: str = "STOCKFLOW_ERROR"
    http_status: int = 400

    def __init__(self, message: str, **detail):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "detail": self.detail}


class ValidationError(StockflowError):
    code = "VALIDATION_ERROR"
    http_status = 422


class LocationFormatError(ValidationError):
    code = "INVALID_LOCATION"

    def __init__(self, message: str, value: str | None = None):
        super().__init__(message, value=value)
        self.value = value


class DuplicateSkuError(ValidationError):
    code = "DUPLICATE_SKU"
    http_status = 409

    def __init__(self, organization_id: str, sku: str):
        super().__init__(f"SKU '{sku}'가 이미 존재합니다", organization_id=organization_id, sku=sku)
        self.organization_id = organization_id
        self.sku = sku


class ItemNotFoundError(StockflowError):
    code = "ITEM_NOT_FOUND"
    http_status = 404

    def __init__(self, item_id: str):
        super().__init__(f"재고 품목을 찾을 수 없습니다: {item_id}", item_id=item_id)
        self.item_id = item_id


class InsufficientStockError(StockflowError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(self, item_id: str, requested: int, available: int):
        super().__init__(
            f"재고 부족: 요청 {requested}, 가용 {available}",
            item_id=item_id, requested=requested, available=available,
        )
        self.item_id = item_id
        self.requested = requested
        self.available = available


class ConcurrentModificationError(StockflowError):
    code = "CONCURRENT_MODIFICATION"
    http_status = 409

    def __init__(self, item_id: str, attempts: int):
        super().__init__(
            f"동시 수정 충돌: {item_id} ({attempts}회 시도)",
            item_id=item_id, attempts=attempts,
        )
        self.item_id = item_id
        self.attempts = attempts


class VendorMissingError(StockflowError):
    code = "VENDOR_MISSING"
    http_status = 409

    def __init__(self, item_id: str, sku: str | None = None):
        super().__init__(f"자동 발주 대상 품목에 공급업체가 없습니다: {sku or item_id}", item_id=item_id, sku=sku)
        self.item_id = item_id
        self.sku = sku


class LedgerImmutableError(StockflowError):
    code = "LEDGER_IMMUTABLE"
    http_status = 409

    def __init__(self, movement_id: str | None, operation: str):
        super().__init__(
            f"재고 이동 원장은 수정/삭제할 수 없습니다 ({operation})",
            movement_id=movement_id, operation=operation,
        )
        self.movement_id = movement_id
        self.operation = operation


class EpisodeNotFoundError(StockflowError):
    code = "EPISODE_NOT_FOUND"
    http_status = 404

    def __init__(self, draft_id: str):
        super().__init__(f"발주 초안에 해당하는 보충 에피소드가 없습니다: {draft_id}", draft_id=draft_id)
        self.draft_id = draft_id
