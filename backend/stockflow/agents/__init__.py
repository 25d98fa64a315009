"""
에이전트 패키지
- Replenishment Engine: 재고 변경 반응형 자동 발주 (에피소드 가드)
- Episode Store: 보충 에피소드 영속화
- 외부 협력 시스템 계약 (발주 게이트웨이, 알림)
"""

from stockflow.agents.collaborators import (
    EventBusNotificationDispatcher,
    EventBusOrderGateway,
    Notification,
    NotificationDispatcher,
    NotificationKind,
    PurchaseOrderGateway,
)
from stockflow.agents.episode_store import EpisodeStore
from stockflow.agents.replenishment_engine import DecisionOutcome, ReplenishmentEngine

__all__ = [
    "ReplenishmentEngine",
    "DecisionOutcome",
    "EpisodeStore",
    "PurchaseOrderGateway",
    "NotificationDispatcher",
    "Notification",
    "NotificationKind",
    "EventBusOrderGateway",
    "EventBusNotificationDispatcher",
]
