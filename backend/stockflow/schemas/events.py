"""
실시간 변경 이벤트 스키마
- 항상 변경 후 전체 레코드(post-image)를 싣는다 → 수신 측은 교체만 하면 되므로 멱등.
- version은 품목별로 단조 증가한다 (DELETE는 마지막 버전 + 1).
"""

import enum
import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from stockflow.schemas.inventory import InventoryItemSnapshot


class ChangeKind(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    organization_id: str
    item_id: str
    kind: ChangeKind
    version: int
    previous: InventoryItemSnapshot | None = None
    current: InventoryItemSnapshot | None = None
    committed_at: datetime

    model_config = {"frozen": True}

    def to_payload(self) -> dict:
        """이벤트 버스/WebSocket 전송용 dict"""
        return self.model_dump(mode="json")

    @classmethod
    def from_payload(cls, payload: dict) -> "ChangeEvent":
        return cls.model_validate(payload)
