"""
로케이션 마스터 관리
- 조직 + 정규 문자열 기준 upsert (같은 위치를 두 번 등록해도 행은 하나)
- 파트별 고유값 조회 (필터 드롭다운용)
"""

import logging

from sqlalchemy.exc import IntegrityError

from stockflow.database import SessionLocal
from stockflow.domain import location_codec
from stockflow.domain.location_codec import LocationParts
from stockflow.models import Location
from stockflow.schemas.locations import LocationRead

logger = logging.getLogger(__name__)


class LocationService:
    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def upsert_location(
        self,
        organization_id: str,
        parts: LocationParts,
        display_name: str | None = None,
        color: str | None = None,
    ) -> LocationRead:
        """정규 문자열로 조회해서 있으면 표시 정보만 갱신, 없으면 생성"""
        canonical = location_codec.build(parts)

        db = self.session_factory()
        try:
            location = self._find(db, organization_id, canonical)
            if location is None:
                location = Location(
                    organization_id=organization_id,
                    canonical=canonical,
                    **parts.as_dict(),
                    display_name=display_name,
                    color=color,
                )
                db.add(location)
                try:
                    db.commit()
                    logger.info(f"[Location] 생성: {organization_id}/{canonical}")
                except IntegrityError:
                    # 동시에 같은 위치가 등록됨 → 기존 행 사용
                    db.rollback()
                    location = self._find(db, organization_id, canonical)
                    self._apply_labels(location, display_name, color)
                    db.commit()
            else:
                if self._apply_labels(location, display_name, color):
                    db.commit()
                    logger.info(f"[Location] 갱신: {organization_id}/{canonical}")
            return LocationRead.model_validate(location)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def list_locations(self, organization_id: str) -> list[LocationRead]:
        db = self.session_factory()
        try:
            rows = (
                db.query(Location)
                .filter(Location.organization_id == organization_id)
                .order_by(Location.canonical)
                .all()
            )
            return [LocationRead.model_validate(r) for r in rows]
        finally:
            db.close()

    def delete_location(self, organization_id: str, location_id: str) -> bool:
        db = self.session_factory()
        try:
            deleted = (
                db.query(Location)
                .filter(Location.organization_id == organization_id, Location.id == location_id)
                .delete()
            )
            db.commit()
            return deleted > 0
        finally:
            db.close()

    def location_parts(self, organization_id: str, part: str) -> list[str]:
        """등록된 로케이션에서 특정 파트(area/row/bay/level/pos)의 고유값"""
        canonicals = [loc.canonical for loc in self.list_locations(organization_id)]
        return location_codec.unique_parts(canonicals, part)

    @staticmethod
    def _find(db, organization_id: str, canonical: str) -> Location | None:
        return (
            db.query(Location)
            .filter(Location.organization_id == organization_id, Location.canonical == canonical)
            .first()
        )

    @staticmethod
    def _apply_labels(location: Location, display_name: str | None, color: str | None) -> bool:
        changed = False
        if display_name is not None and location.display_name != display_name:
            location.display_name = display_name
            changed = True
        if color is not None and location.color != color:
            location.color = color
            changed = True
        return changed
