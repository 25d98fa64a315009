"""
로케이션 관련 Pydantic 스키마
"""

from datetime import datetime

from pydantic import BaseModel


class LocationPartsIn(BaseModel):
    area: str
    row: str
    bay: str
    level: str
    pos: str


class LocationUpsert(LocationPartsIn):
    display_name: str | None = None
    color: str | None = None


class LocationRead(BaseModel):
    id: str
    organization_id: str
    canonical: str
    area: str
    row: str
    bay: str
    level: str
    pos: str
    display_name: str | None = None
    color: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class CanonicalResponse(BaseModel):
    canonical: str
