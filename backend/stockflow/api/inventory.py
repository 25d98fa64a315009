"""
재고 API — 품목 CRUD, 재고 이동, 입고/출고/실사, 원장 조회
- 수량은 movements/receive/fulfill/count로만 바뀐다 (PATCH는 수량 외 필드).
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from stockflow.agents.replenishment_engine import ReplenishmentEngine
from stockflow.api.deps import (
    ActorContext, get_actor, get_optional_engine, get_organization_id, get_store,
)
from stockflow.schemas.inventory import (
    AuditReport, CountRequest, FulfillRequest, InventoryItemCreate, InventoryItemSnapshot,
    InventoryItemUpdate, MovementCreate, MovementResult, ReceiveRequest, StockMovementRead,
)
from stockflow.services.inventory_store import InventoryRecordStore

router = APIRouter(prefix="/api/inventory", tags=["inventory"])


@router.get("", response_model=list[InventoryItemSnapshot])
def list_items(
    organization_id: str = Depends(get_organization_id),
    store: InventoryRecordStore = Depends(get_store),
):
    """조직 전체 품목 스냅샷"""
    return store.list_items(organization_id)


@router.post("", response_model=InventoryItemSnapshot, status_code=201)
async def create_item(
    body: InventoryItemCreate,
    actor: ActorContext = Depends(get_actor),
    store: InventoryRecordStore = Depends(get_store),
    engine: ReplenishmentEngine | None = Depends(get_optional_engine),
):
    # 새 조직이면 자동 보충 관찰부터 시작 (INSERT 이벤트를 놓치지 않도록)
    if engine is not None:
        await engine.watch(actor.organization_id)
    return await store.create_item(actor.organization_id, body, actor_id=actor.actor_id)


@router.get("/{item_id}", response_model=InventoryItemSnapshot)
def get_item(
    item_id: str,
    organization_id: str = Depends(get_organization_id),
    store: InventoryRecordStore = Depends(get_store),
):
    return store.get_item(organization_id, item_id)


@router.patch("/{item_id}", response_model=InventoryItemSnapshot)
async def update_item(
    item_id: str,
    body: InventoryItemUpdate,
    actor: ActorContext = Depends(get_actor),
    store: InventoryRecordStore = Depends(get_store),
):
    return await store.update_item(actor.organization_id, item_id, body, actor_id=actor.actor_id)


@router.delete("/{item_id}", response_model=InventoryItemSnapshot)
async def delete_item(
    item_id: str,
    actor: ActorContext = Depends(get_actor),
    store: InventoryRecordStore = Depends(get_store),
):
    """품목 삭제 — 삭제 직전 스냅샷 반환. 원장은 유지된다."""
    return await store.delete_item(actor.organization_id, item_id, actor_id=actor.actor_id)


# ── 재고 이동 ─────────────────────────────────────────────

@router.post("/{item_id}/movements", response_model=MovementResult, status_code=201)
async def apply_movement(
    item_id: str,
    body: MovementCreate,
    actor: ActorContext = Depends(get_actor),
    store: InventoryRecordStore = Depends(get_store),
):
    item, movement = await store.apply_movement(
        actor.organization_id, item_id, body.type, body.amount,
        actor_id=actor.actor_id, reason=body.reason, bucket=body.bucket,
    )
    return MovementResult(item=item, movement=movement)


@router.get("/{item_id}/movements", response_model=list[StockMovementRead])
def list_movements(
    item_id: str,
    since: datetime | None = Query(None, description="이 시각 이후 이동만"),
    organization_id: str = Depends(get_organization_id),
    store: InventoryRecordStore = Depends(get_store),
):
    """이동 이력 (최신순)"""
    return store.list_movements(organization_id, item_id, since=since)


@router.post("/{item_id}/receive", response_model=MovementResult, status_code=201)
async def receive_stock(
    item_id: str,
    body: ReceiveRequest,
    actor: ActorContext = Depends(get_actor),
    store: InventoryRecordStore = Depends(get_store),
):
    item, movement = await store.receive_stock(
        actor.organization_id, item_id, body.quantity,
        actor_id=actor.actor_id, bucket=body.bucket, reason=body.reason,
    )
    return MovementResult(item=item, movement=movement)


@router.post("/{item_id}/fulfill", response_model=MovementResult, status_code=201)
async def fulfill_sale(
    item_id: str,
    body: FulfillRequest,
    actor: ActorContext = Depends(get_actor),
    store: InventoryRecordStore = Depends(get_store),
):
    item, movement = await store.fulfill_sale(
        actor.organization_id, item_id, body.quantity,
        actor_id=actor.actor_id, reference=body.reference,
    )
    return MovementResult(item=item, movement=movement)


@router.post("/{item_id}/count", response_model=MovementResult)
async def record_count(
    item_id: str,
    body: CountRequest,
    actor: ActorContext = Depends(get_actor),
    store: InventoryRecordStore = Depends(get_store),
):
    """실사 결과 반영 — 차이가 없으면 movement는 null"""
    item, movement = await store.record_count(
        actor.organization_id, item_id, body.bucket, body.physical_count,
        actor_id=actor.actor_id, reason=body.reason,
    )
    return MovementResult(item=item, movement=movement)


@router.get("/{item_id}/audit", response_model=AuditReport)
def audit_item(
    item_id: str,
    organization_id: str = Depends(get_organization_id),
    store: InventoryRecordStore = Depends(get_store),
):
    """원장 재생 결과와 현재 수량 비교"""
    return store.audit_item(organization_id, item_id)
