"""
도메인 규칙 패키지 (DB/네트워크 의존 없음)
- 로케이션 코덱
- 재고 수량/상태 규칙
"""

from stockflow.domain.location_codec import LocationParts, build, parse
from stockflow.domain.stock_rules import MovementType, StockBucket, StockStatus, derive_status

__all__ = [
    "LocationParts",
    "build",
    "parse",
    "MovementType",
    "StockBucket",
    "StockStatus",
    "derive_status",
]
