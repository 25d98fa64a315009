"""
이벤트 시스템 패키지
- 비동기 pub/sub 이벤트 버스 (Redis Streams 기반, 인메모리 fallback)
- 조직별 재고 변경 피드
"""

from stockflow.events.event_bus import AsyncEventBus
from stockflow.events.change_feed import ChangeFeed, Subscription

__all__ = ["AsyncEventBus", "ChangeFeed", "Subscription"]
