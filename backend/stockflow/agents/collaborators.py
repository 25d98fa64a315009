"""
외부 협력 시스템 계약 — 주문(발주) 시스템, 알림 시스템.
기본 구현은 AsyncEventBus로 요청을 발행하고, 실제 처리는 구독하는 쪽이 맡는다.
"""

import enum
import logging
import uuid
from datetime import datetime, timezone
from typing import Protocol

from pydantic import BaseModel

from stockflow.events.event_bus import AsyncEventBus

logger = logging.getLogger(__name__)

PURCHASE_DRAFT_TOPIC = "purchase.draft_requested"
NOTIFICATION_TOPIC = "notifications.dispatched"


class NotificationKind(str, enum.Enum):
    LOW_STOCK = "LowStock"
    OUT_OF_STOCK = "OutOfStock"
    REPLENISHMENT_CREATED = "ReplenishmentCreated"


class Notification(BaseModel):
    item_id: str
    kind: NotificationKind
    message: str
    organization_id: str | None = None

    model_config = {"frozen": True}


class PurchaseOrderGateway(Protocol):
    async def create_purchase_draft(
        self, vendor_id: str, item_id: str, quantity: int, unit_cost: float
    ) -> str:
        """발주 초안 생성 → draft_id"""
        ...


class NotificationDispatcher(Protocol):
    async def dispatch(self, notification: Notification) -> None:
        ...


class EventBusOrderGateway:
    """발주 초안 요청을 purchase.draft_requested 토픽에 발행하고 초안 ID를 발급한다."""

    def __init__(self, event_bus: AsyncEventBus):
        self.event_bus = event_bus

    async def create_purchase_draft(
        self, vendor_id: str, item_id: str, quantity: int, unit_cost: float
    ) -> str:
        draft_id = f"PD-{uuid.uuid4().hex[:12].upper()}"
        await self.event_bus.publish(PURCHASE_DRAFT_TOPIC, {
            "draft_id": draft_id,
            "vendor_id": vendor_id,
            "item_id": item_id,
            "quantity": quantity,
            "unit_cost": unit_cost,
            "requested_at": datetime.now(timezone.utc).isoformat(),
        })
        logger.info(f"[OrderGateway] 발주 초안 요청: {draft_id} ({item_id} x{quantity} @ {vendor_id})")
        return draft_id


class EventBusNotificationDispatcher:
    """알림을 notifications.dispatched 토픽에 발행한다."""

    def __init__(self, event_bus: AsyncEventBus):
        self.event_bus = event_bus

    async def dispatch(self, notification: Notification) -> None:
        await self.event_bus.publish(NOTIFICATION_TOPIC, notification.model_dump(mode="json"))
        logger.info(f"[Notify] {notification.kind.value}: {notification.message}")
