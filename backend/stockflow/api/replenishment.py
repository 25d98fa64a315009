"""
자동 보충 API — 에피소드 조회, 주문 시스템 신호(취소/입고), 수동 재평가
"""

from fastapi import APIRouter, Depends, Query

from stockflow.agents.replenishment_engine import ReplenishmentEngine
from stockflow.api.deps import ActorContext, get_actor, get_engine, get_organization_id
from stockflow.schemas.inventory import InventoryItemSnapshot
from stockflow.schemas.replenishment import DecisionRead, DraftReceivedRequest, EpisodeRead

router = APIRouter(prefix="/api/replenishment", tags=["replenishment"])


@router.get("/episodes", response_model=list[EpisodeRead])
def list_episodes(
    open_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=1000),
    organization_id: str = Depends(get_organization_id),
    engine: ReplenishmentEngine = Depends(get_engine),
):
    return engine.episodes.list_episodes(organization_id, open_only=open_only, limit=limit)


@router.post("/drafts/{draft_id}/cancel", response_model=EpisodeRead)
async def cancel_draft(draft_id: str, engine: ReplenishmentEngine = Depends(get_engine)):
    """주문 시스템의 초안 취소 신호"""
    return await engine.draft_cancelled(draft_id)


@router.post("/items/{item_id}/received", response_model=InventoryItemSnapshot)
async def draft_received(
    item_id: str,
    body: DraftReceivedRequest,
    actor: ActorContext = Depends(get_actor),
    engine: ReplenishmentEngine = Depends(get_engine),
):
    """주문 시스템의 발주분 입고 신호"""
    return await engine.draft_received(
        actor.organization_id, item_id, body.received_quantity, actor_id=actor.actor_id,
    )


@router.post("/items/{item_id}/evaluate", response_model=DecisionRead)
async def evaluate_item(
    item_id: str,
    organization_id: str = Depends(get_organization_id),
    engine: ReplenishmentEngine = Depends(get_engine),
):
    """운영자 수동 재평가 — 공급업체가 없으면 409 VENDOR_MISSING"""
    return await engine.evaluate_item(organization_id, item_id)
