"""
로케이션 API — 로케이션 마스터 upsert/조회/삭제, 코드 변환
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from stockflow.api.deps import get_locations, get_organization_id
from stockflow.domain import location_codec
from stockflow.domain.location_codec import LocationParts
from stockflow.schemas.common import MessageResponse
from stockflow.schemas.locations import (
    CanonicalResponse, LocationPartsIn, LocationRead, LocationUpsert,
)
from stockflow.services.location_service import LocationService

router = APIRouter(prefix="/api/locations", tags=["locations"])


@router.get("", response_model=list[LocationRead])
def list_locations(
    organization_id: str = Depends(get_organization_id),
    locations: LocationService = Depends(get_locations),
):
    return locations.list_locations(organization_id)


@router.post("", response_model=LocationRead)
def upsert_location(
    body: LocationUpsert,
    organization_id: str = Depends(get_organization_id),
    locations: LocationService = Depends(get_locations),
):
    """같은 5개 파트면 기존 로케이션을 갱신한다."""
    parts = LocationParts(body.area, body.row, body.bay, body.level, body.pos)
    return locations.upsert_location(
        organization_id, parts, display_name=body.display_name, color=body.color,
    )


@router.get("/parse", response_model=LocationPartsIn)
def parse_location(canonical: str = Query(..., description="예: A-01-01-1-A")):
    return LocationPartsIn(**location_codec.parse(canonical).as_dict())


@router.post("/build", response_model=CanonicalResponse)
def build_location(body: LocationPartsIn):
    parts = LocationParts(body.area, body.row, body.bay, body.level, body.pos)
    return CanonicalResponse(canonical=location_codec.build(parts))


@router.get("/parts/{part}", response_model=list[str])
def location_parts(
    part: str,
    organization_id: str = Depends(get_organization_id),
    locations: LocationService = Depends(get_locations),
):
    """특정 파트(area/row/bay/level/pos)의 고유값 — 필터 드롭다운용"""
    return locations.location_parts(organization_id, part)


@router.delete("/{location_id}", response_model=MessageResponse)
def delete_location(
    location_id: str,
    organization_id: str = Depends(get_organization_id),
    locations: LocationService = Depends(get_locations),
):
    if not locations.delete_location(organization_id, location_id):
        raise HTTPException(status_code=404, detail="로케이션을 찾을 수 없습니다")
    return MessageResponse(message="deleted", detail=location_id)
