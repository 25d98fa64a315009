"""
locations 테이블 — 창고 보관 위치
- 조직 내에서 정규 문자열(canonical)이 같으면 같은 위치다 (upsert 키).
- color는 라벨 출력용 태그.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, UniqueConstraint

from stockflow.database import Base


class Location(Base):
    __tablename__ = "locations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(64), nullable=False, index=True)
    canonical = Column(String(64), nullable=False)  # 예: "A-01-01-1-A"
    area = Column(String(10), nullable=False)
    row = Column(String(10), nullable=False)
    bay = Column(String(10), nullable=False)
    level = Column(String(10), nullable=False)
    pos = Column(String(10), nullable=False)
    display_name = Column(String(100), nullable=True)
    color = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("organization_id", "canonical", name="uq_location_org_canonical"),
    )
