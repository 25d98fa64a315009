"""
replenishment_episodes 테이블 — 자동 발주 중복 방지 가드
- 품목당 열린(closed_at IS NULL) 에피소드는 최대 1개 (부분 유니크 인덱스).
- OPEN: 가드 기록됨, 초안 미확정 → 다음 평가 때 재발행
- EMITTED: 발주 초안 ID 기록됨
- CLOSED: 입고(RECEIVED) 또는 취소(CANCELLED)로 종료
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Float, DateTime, Enum, Index, text

from stockflow.database import Base


class EpisodeStatus(str, enum.Enum):
    OPEN = "OPEN"
    EMITTED = "EMITTED"
    CLOSED = "CLOSED"


class EpisodeCloseReason(str, enum.Enum):
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class ReplenishmentEpisode(Base):
    __tablename__ = "replenishment_episodes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(64), nullable=False, index=True)
    item_id = Column(String(36), nullable=False)
    status = Column(Enum(EpisodeStatus), nullable=False, default=EpisodeStatus.OPEN)
    vendor_id = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)  # 발주 수량 (auto_reorder_quantity)
    unit_cost = Column(Float, nullable=False)
    draft_id = Column(String(64), nullable=True, unique=True)  # 주문 시스템이 돌려준 초안 ID
    trigger_quantity = Column(Integer, nullable=False)  # 개설 시점 총수량
    opened_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    emitted_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    close_reason = Column(Enum(EpisodeCloseReason), nullable=True)

    __table_args__ = (
        Index(
            "uq_episode_open_per_item",
            "item_id",
            unique=True,
            sqlite_where=text("closed_at IS NULL"),
            postgresql_where=text("closed_at IS NULL"),
        ),
    )
