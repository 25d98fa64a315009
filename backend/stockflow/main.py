"""
FastAPI 앱 엔트리포인트
- CORS 설정
- 라우터 등록 (재고, 로케이션, 자동 보충, WebSocket)
- AsyncEventBus + ChangeFeed + Replenishment Engine 백그라운드 시작
- 헬스체크 엔드포인트
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import distinct, text

from stockflow.config import settings
from stockflow.database import engine, Base, SessionLocal
from stockflow.api import deps, inventory, locations, replenishment
from stockflow.api.errors import setup_exception_handlers
from stockflow.api.websocket import router as ws_router
from stockflow.schemas.common import HealthResponse
from stockflow.events import AsyncEventBus, ChangeFeed
from stockflow.agents import (
    EventBusNotificationDispatcher, EventBusOrderGateway, ReplenishmentEngine,
)
from stockflow.models import InventoryItem
from stockflow.services import InventoryRecordStore, LocationService

# 로깅 설정
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# 모듈 수준 참조 (lifespan 내에서 생성되어 shutdown에서 정리)
_async_event_bus: AsyncEventBus | None = None
_change_feed: ChangeFeed | None = None
_replenishment: ReplenishmentEngine | None = None


def _known_organizations() -> list[str]:
    db = SessionLocal()
    try:
        return [row[0] for row in db.query(distinct(InventoryItem.organization_id)).all()]
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """앱 시작/종료 시 전체 백그라운드 컴포넌트 관리"""
    global _async_event_bus, _change_feed, _replenishment

    # ── 1. DB 테이블 확인 ──
    Base.metadata.create_all(bind=engine)
    logger.info("데이터베이스 테이블 확인 완료")

    # ── 2. AsyncEventBus + ChangeFeed 생성 ──
    _async_event_bus = AsyncEventBus(settings.REDIS_URL, queue_size=settings.EVENT_QUEUE_SIZE)
    _change_feed = ChangeFeed(_async_event_bus)
    await _change_feed.start()

    # ── 3. 저장소 / 자동 보충 엔진 생성 ──
    store = InventoryRecordStore(_change_feed)
    _replenishment = ReplenishmentEngine(
        store,
        _change_feed,
        gateway=EventBusOrderGateway(_async_event_bus),
        notifier=EventBusNotificationDispatcher(_async_event_bus),
    )
    deps.set_services(store, LocationService(), _replenishment, _change_feed)

    # ── 4. AsyncEventBus 시작 (구독자 루프) ──
    await _async_event_bus.start()
    logger.info("AsyncEventBus 시작 완료")

    # ── 5. 기존 조직 관찰 시작 ──
    organizations = _known_organizations()
    for organization_id in organizations:
        await _replenishment.watch(organization_id)
    logger.info(f"Replenishment Engine 시작 완료 ({len(organizations)}개 조직)")

    yield

    # ── 종료 ──
    if _replenishment:
        await _replenishment.stop()

    if _async_event_bus:
        await _async_event_bus.stop()
        logger.info("AsyncEventBus 중지 완료")


app = FastAPI(
    title="Stockflow 재고 코어",
    description="SKU 재고 기록, 재고 이동 원장, 실시간 동기화, 자동 보충",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS 설정
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)

# 라우터 등록
app.include_router(inventory.router)
app.include_router(locations.router)
app.include_router(replenishment.router)
app.include_router(ws_router)


@app.get("/api/health", response_model=HealthResponse)
def health_check():
    """시스템 상태 확인"""
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except Exception as e:
        logger.warning(f"헬스체크 DB 연결 실패: {e}")
    finally:
        db.close()

    redis_ok = _async_event_bus.is_redis if _async_event_bus else False

    return HealthResponse(
        status="ok" if db_ok else "degraded",
        db_connected=db_ok,
        redis_connected=redis_ok,
        realtime_subscribers=_change_feed.subscriber_count() if _change_feed else 0,
        timestamp=datetime.now(timezone.utc),
    )
