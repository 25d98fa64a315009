"""
API 공통 의존성
- 서비스 싱글턴 (main.py lifespan에서 설정)
- 인증 프로바이더가 넣어주는 행위자/조직 헤더
"""

from dataclasses import dataclass

from fastapi import Header

from stockflow.agents.replenishment_engine import ReplenishmentEngine
from stockflow.events.change_feed import ChangeFeed
from stockflow.services.inventory_store import InventoryRecordStore
from stockflow.services.location_service import LocationService

_store: InventoryRecordStore | None = None
_locations: LocationService | None = None
_engine: ReplenishmentEngine | None = None
_change_feed: ChangeFeed | None = None


def set_services(
    store: InventoryRecordStore,
    locations: LocationService,
    engine: ReplenishmentEngine | None,
    change_feed: ChangeFeed,
):
    """main.py에서 호출하여 서비스 참조 설정"""
    global _store, _locations, _engine, _change_feed
    _store = store
    _locations = locations
    _engine = engine
    _change_feed = change_feed


def _require(service, name: str):
    if service is None:
        raise RuntimeError(f"{name}가 초기화되지 않았습니다 (lifespan 미실행)")
    return service


def get_store() -> InventoryRecordStore:
    return _require(_store, "InventoryRecordStore")


def get_locations() -> LocationService:
    return _require(_locations, "LocationService")


def get_engine() -> ReplenishmentEngine:
    return _require(_engine, "ReplenishmentEngine")


def get_change_feed() -> ChangeFeed:
    return _require(_change_feed, "ChangeFeed")


def get_optional_engine() -> ReplenishmentEngine | None:
    return _engine


@dataclass(frozen=True)
class ActorContext:
    actor_id: str
    organization_id: str


def get_organization_id(x_organization_id: str = Header(..., min_length=1)) -> str:
    return x_organization_id


def get_actor(
    x_actor_id: str = Header(..., min_length=1),
    x_organization_id: str = Header(..., min_length=1),
) -> ActorContext:
    """변경 요청의 (행위자, 조직). 인증 계층이 검증한 값을 그대로 신뢰한다."""
    return ActorContext(actor_id=x_actor_id, organization_id=x_organization_id)
