"""
비동기 이벤트 버스 — pub/sub 패턴
- Redis Streams 사용 시도, 실패 시 인메모리 asyncio.Queue로 fallback
- 토픽 기반 구독/발행, 토픽당 소비자 1개 (토픽 내 발행 순서 유지)
- 이벤트가 유실될 수 있는 지점(큐 포화, Redis 읽기 실패)에서는 갭 신호를 보낸다.
  갭 핸들러는 이어받기를 포기하고 상태를 다시 읽어야 한다.
"""

import asyncio
import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

# 지원하는 토픽 목록
TOPICS = [
    "inventory.changed",            # 재고 레코드 INSERT/UPDATE/DELETE
    "notifications.dispatched",     # 저재고/품절/보충 알림
    "purchase.draft_requested",     # 자동 발주 초안 생성 요청
]

# 핸들러 타입: async callable(topic, data)
Handler = Callable[[str, dict], Coroutine[Any, Any, None]]

# 갭 핸들러 타입: async callable(topic)
GapHandler = Callable[[str], Coroutine[Any, Any, None]]


class AsyncEventBus:
    """
    비동기 이벤트 버스 — Redis Streams 기반, 인메모리 fallback.

    사용법:
        bus = AsyncEventBus(redis_url="redis://localhost:6379")
        await bus.subscribe("inventory.changed", my_handler)
        await bus.subscribe_gaps("inventory.changed", on_gap)  # 유실 감지 시 호출
        await bus.start()  # 구독자 루프 시작
        await bus.publish("inventory.changed", {"item_id": "..."})
    """

    def __init__(self, redis_url: str | None = "redis://localhost:6379", queue_size: int = 10000):
        self._redis_url = redis_url
        self._redis = None
        self._use_redis = False

        # 토픽별 핸들러 목록
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._gap_handlers: dict[str, list[GapHandler]] = defaultdict(list)

        # 인메모리 큐 (fallback)
        self._queues: dict[str, asyncio.Queue] = {}
        self._queue_size = queue_size
        self._gaps: set[str] = set()  # 유실이 생겨 다음 이벤트 전에 갭 신호를 보낼 토픽

        # 상태
        self._running = False
        self._consumer_tasks: dict[str, asyncio.Task] = {}

    @property
    def is_redis(self) -> bool:
        return self._use_redis

    async def _try_connect_redis(self):
        """Redis 연결 시도 (URL이 없으면 인메모리 모드)"""
        if not self._redis_url:
            logger.info("AsyncEventBus: Redis URL 미설정 — 인메모리 모드")
            return
        try:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
            await self._redis.ping()
            self._use_redis = True
            logger.info("AsyncEventBus: Redis 연결 성공")
        except Exception as e:
            logger.warning(f"AsyncEventBus: Redis 연결 실패 ({e}) — 인메모리 모드")
            if self._redis is not None:
                await self._redis.aclose()
            self._redis = None
            self._use_redis = False

    def _ensure_queue(self, topic: str) -> asyncio.Queue:
        if topic not in self._queues:
            self._queues[topic] = asyncio.Queue(maxsize=self._queue_size)
        return self._queues[topic]

    async def subscribe(self, topic: str, handler: Handler):
        """토픽에 핸들러를 구독 등록한다. 이미 실행 중이면 소비자도 바로 띄운다."""
        self._handlers[topic].append(handler)
        self._ensure_queue(topic)
        if self._running and topic not in self._consumer_tasks:
            self._start_consumer(topic)
        logger.debug(f"구독 등록: {topic} → {handler.__qualname__}")

    async def subscribe_gaps(self, topic: str, handler: GapHandler):
        """토픽에서 이벤트가 유실됐을 때 호출될 핸들러 등록"""
        self._gap_handlers[topic].append(handler)

    async def publish(self, topic: str, data: dict) -> dict:
        """이벤트를 토픽에 발행한다."""
        event = {
            "topic": topic,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        if self._use_redis and self._redis:
            try:
                await self._redis.xadd(
                    topic,
                    {"payload": json.dumps(data, default=str), "_timestamp": event["timestamp"]},
                    maxlen=1000,
                )
            except Exception as e:
                logger.error(f"Redis publish 실패 ({topic}): {e} — 로컬 핸들러에 직접 전달")
                # Redis 모드에서는 인메모리 소비자가 없으므로 바로 디스패치
                await self._dispatch(topic, data)
        elif self._handlers.get(topic):
            await self._enqueue_inmemory(topic, event)

        return event

    async def _enqueue_inmemory(self, topic: str, event: dict):
        """인메모리 큐에 이벤트를 넣는다."""
        queue = self._ensure_queue(topic)
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            # 오래된 이벤트 버리고 새 이벤트 추가
            try:
                queue.get_nowait()
                queue.task_done()
            except asyncio.QueueEmpty:
                pass
            self._gaps.add(topic)
            logger.warning(f"인메모리 큐 포화 ({topic}) — 가장 오래된 이벤트 폐기, 갭 신호 예약")
            queue.put_nowait(event)

    async def _inmemory_consumer(self, topic: str):
        """인메모리 큐 소비자 루프"""
        queue = self._ensure_queue(topic)

        while self._running:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break
            try:
                if topic in self._gaps:
                    self._gaps.discard(topic)
                    await self._dispatch_gap(topic)
                await self._dispatch(topic, event["data"])
            except asyncio.CancelledError:
                queue.task_done()
                break
            except Exception as e:
                logger.error(f"인메모리 소비자 에러 ({topic}): {e}")
            queue.task_done()

    async def _redis_consumer(self, topic: str):
        """Redis Streams 소비자 루프"""
        last_id = "$"  # 새 메시지만 구독
        while self._running:
            try:
                results = await self._redis.xread(
                    {topic: last_id}, count=10, block=1000
                )
                for stream_name, messages in results:
                    for msg_id, msg_data in messages:
                        last_id = msg_id
                        try:
                            data = json.loads(msg_data.get("payload", "{}"))
                        except json.JSONDecodeError as e:
                            logger.error(f"Redis 메시지 디코딩 실패 ({topic}, {msg_id}): {e}")
                            continue
                        await self._dispatch(topic, data)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Redis 소비자 에러 ({topic}): {e}")
                await asyncio.sleep(1.0)
                # 끊긴 동안 스트림이 maxlen으로 잘렸을 수 있음
                await self._dispatch_gap(topic)

    async def _dispatch(self, topic: str, data: dict):
        """핸들러들에게 이벤트를 전달한다."""
        handlers = list(self._handlers.get(topic, []))
        for handler in handlers:
            try:
                await handler(topic, data)
            except Exception as e:
                logger.error(f"핸들러 에러 ({topic}, {handler.__qualname__}): {e}")

    async def _dispatch_gap(self, topic: str):
        """갭 핸들러 호출"""
        logger.warning(f"이벤트 유실 가능 ({topic}) — 갭 신호 전달")
        for handler in list(self._gap_handlers.get(topic, [])):
            try:
                await handler(topic)
            except Exception as e:
                logger.error(f"갭 핸들러 에러 ({topic}, {handler.__qualname__}): {e}")

    def _start_consumer(self, topic: str):
        if self._use_redis:
            task = asyncio.create_task(
                self._redis_consumer(topic),
                name=f"redis-consumer-{topic}",
            )
        else:
            self._ensure_queue(topic)
            task = asyncio.create_task(
                self._inmemory_consumer(topic),
                name=f"inmemory-consumer-{topic}",
            )
        self._consumer_tasks[topic] = task

    async def start(self):
        """이벤트 버스 시작 — 구독자 루프를 생성한다."""
        await self._try_connect_redis()
        self._running = True

        # 구독이 등록된 토픽마다 소비자 태스크 생성
        for topic in list(self._handlers):
            self._start_consumer(topic)

        logger.info(
            f"AsyncEventBus 시작: {len(self._consumer_tasks)}개 소비자 "
            f"({'Redis' if self._use_redis else '인메모리'})"
        )

    async def wait_idle(self):
        """인메모리 큐에 쌓인 이벤트가 모두 처리될 때까지 대기 (Redis 모드에서는 즉시 반환)"""
        if self._use_redis:
            return
        # 핸들러가 다른 토픽에 재발행할 수 있으므로 모든 큐가 빌 때까지 반복
        while True:
            await asyncio.gather(*(queue.join() for queue in list(self._queues.values())))
            if all(queue.empty() for queue in self._queues.values()):
                return

    async def stop(self):
        """이벤트 버스 중지"""
        self._running = False
        tasks = list(self._consumer_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._consumer_tasks = {}

        if self._redis:
            await self._redis.aclose()
            self._redis = None
            self._use_redis = False

        logger.info("AsyncEventBus 중지 완료")
