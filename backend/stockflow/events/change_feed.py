"""
재고 변경 피드 — 저장소가 커밋 후 발행한 ChangeEvent를 조직별 구독자에게 팬아웃한다.
- 전송은 AsyncEventBus (Redis Streams / 인메모리) 위에서 이루어진다.
- 토픽당 소비자가 하나이므로 구독자는 발행 순서대로 이벤트를 받는다.
- 전달 보장은 at-least-once: 수신 측은 버전 비교로 멱등 처리해야 한다.
- 버스가 유실을 알리면(갭) 모든 구독의 on_gap을 호출한다. 구독자는 스냅샷부터 다시 읽는다.
"""

import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable

from pydantic import ValidationError as PydanticValidationError

from stockflow.config import settings
from stockflow.events.event_bus import AsyncEventBus
from stockflow.schemas.events import ChangeEvent

logger = logging.getLogger(__name__)

# 구독 콜백 타입: async callable(event)
ChangeHandler = Callable[[ChangeEvent], Awaitable[Any]]

# 갭 콜백 타입: async callable()
GapCallback = Callable[[], Awaitable[Any]]


class Subscription:
    """subscribe()가 돌려주는 구독 핸들"""

    def __init__(
        self,
        feed: "ChangeFeed",
        organization_id: str,
        on_change: ChangeHandler,
        on_gap: GapCallback | None = None,
    ):
        self._feed = feed
        self.organization_id = organization_id
        self.on_change = on_change
        self.on_gap = on_gap
        self.active = True

    def close(self):
        if self.active:
            self._feed._remove(self)
            self.active = False


class ChangeFeed:
    """조직 단위 재고 변경 이벤트 구독/발행"""

    def __init__(self, event_bus: AsyncEventBus, topic: str = settings.CHANGE_FEED_TOPIC):
        self.event_bus = event_bus
        self.topic = topic
        self._subscribers: dict[str, list[Subscription]] = defaultdict(list)
        self._started = False

    async def start(self):
        """이벤트 버스 토픽 구독 등록"""
        if self._started:
            return
        await self.event_bus.subscribe(self.topic, self._on_bus_event)
        await self.event_bus.subscribe_gaps(self.topic, self._on_bus_gap)
        self._started = True
        logger.info(f"ChangeFeed 시작 — {self.topic} 구독 등록")

    def subscribe(
        self,
        organization_id: str,
        on_change: ChangeHandler,
        on_gap: GapCallback | None = None,
    ) -> Subscription:
        """조직의 변경 이벤트 구독. 반환된 Subscription.close()로 해제한다."""
        subscription = Subscription(self, organization_id, on_change, on_gap)
        self._subscribers[organization_id].append(subscription)
        logger.debug(f"변경 피드 구독: org={organization_id} ({len(self._subscribers[organization_id])}개)")
        return subscription

    def _remove(self, subscription: Subscription):
        subscribers = self._subscribers.get(subscription.organization_id, [])
        if subscription in subscribers:
            subscribers.remove(subscription)
        logger.debug(f"변경 피드 구독 해제: org={subscription.organization_id}")

    def subscriber_count(self, organization_id: str | None = None) -> int:
        if organization_id is not None:
            return len(self._subscribers.get(organization_id, []))
        return sum(len(subs) for subs in self._subscribers.values())

    async def publish(self, event: ChangeEvent):
        """커밋이 끝난 변경을 발행한다 (저장소만 호출)."""
        await self.event_bus.publish(self.topic, event.to_payload())

    async def _on_bus_event(self, topic: str, data: dict):
        try:
            event = ChangeEvent.from_payload(data)
        except PydanticValidationError as e:
            logger.error(f"잘못된 변경 이벤트 수신 — 무시: {e}")
            return

        for subscription in list(self._subscribers.get(event.organization_id, [])):
            if not subscription.active:
                continue
            try:
                await subscription.on_change(event)
            except Exception as e:
                logger.error(
                    f"변경 이벤트 구독자 에러 (org={event.organization_id}, "
                    f"item={event.item_id}, v{event.version}): {e}"
                )

    async def _on_bus_gap(self, topic: str):
        subscriptions = [s for subs in self._subscribers.values() for s in subs]
        logger.warning(f"변경 이벤트 유실 — 구독 {len(subscriptions)}개에 재동기화 요청")
        for subscription in subscriptions:
            if not subscription.active or subscription.on_gap is None:
                continue
            try:
                await subscription.on_gap()
            except Exception as e:
                logger.error(f"갭 처리 에러 (org={subscription.organization_id}): {e}")
