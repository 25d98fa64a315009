"""
자동 보충(발주) 관련 Pydantic 스키마
"""

from datetime import datetime

from pydantic import BaseModel

from stockflow.models.replenishment_episode import EpisodeCloseReason, EpisodeStatus


class EpisodeRead(BaseModel):
    id: str
    organization_id: str
    item_id: str
    status: EpisodeStatus
    vendor_id: str
    quantity: int
    unit_cost: float
    draft_id: str | None = None
    trigger_quantity: int
    opened_at: datetime | None = None
    emitted_at: datetime | None = None
    closed_at: datetime | None = None
    close_reason: EpisodeCloseReason | None = None

    model_config = {"from_attributes": True}


class DraftReceivedRequest(BaseModel):
    received_quantity: int


class DecisionRead(BaseModel):
    item_id: str
    outcome: str
    draft_id: str | None = None
    episode_id: str | None = None
    detail: str = ""
