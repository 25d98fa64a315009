"""
공통 Pydantic 스키마
"""

from datetime import datetime
from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    db_connected: bool
    redis_connected: bool
    realtime_subscribers: int
    timestamp: datetime


class MessageResponse(BaseModel):
    message: str
    detail: str | None = None
