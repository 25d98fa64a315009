"""
재고 서비스 패키지
- InventoryRecordStore: 재고 품목 기록 시스템 (수량 변경은 여기로만)
- StockMovementLedger: append-only 재고 이동 원장
- LocationService: 로케이션 마스터
"""

from stockflow.services.inventory_store import InventoryRecordStore
from stockflow.services.ledger import StockMovementLedger
from stockflow.services.location_service import LocationService

__all__ = ["InventoryRecordStore", "StockMovementLedger", "LocationService"]
