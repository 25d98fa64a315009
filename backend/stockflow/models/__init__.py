"""
SQLAlchemy ORM 모델 패키지
- 모든 모델을 여기서 import하여 Base.metadata에 등록한다.
"""

from stockflow.models.inventory_item import InventoryItem
from stockflow.models.stock_movement import StockMovement
from stockflow.models.location import Location
from stockflow.models.replenishment_episode import ReplenishmentEpisode

__all__ = [
    "InventoryItem",
    "StockMovement",
    "Location",
    "ReplenishmentEpisode",
]
