"""
보충 에피소드 영속화 — 자동 발주 중복 방지 가드의 DB 접근.
열린 에피소드(closed_at IS NULL)는 품목당 하나뿐이다 (부분 유니크 인덱스).
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from stockflow.database import SessionLocal
from stockflow.models import ReplenishmentEpisode
from stockflow.models.replenishment_episode import EpisodeCloseReason, EpisodeStatus
from stockflow.schemas.replenishment import EpisodeRead

logger = logging.getLogger(__name__)


class EpisodeStore:
    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def get_open(self, item_id: str) -> EpisodeRead | None:
        db = self.session_factory()
        try:
            episode = self._open_query(db, item_id).first()
            return EpisodeRead.model_validate(episode) if episode else None
        finally:
            db.close()

    def get_by_draft(self, draft_id: str) -> EpisodeRead | None:
        db = self.session_factory()
        try:
            episode = db.query(ReplenishmentEpisode).filter(ReplenishmentEpisode.draft_id == draft_id).first()
            return EpisodeRead.model_validate(episode) if episode else None
        finally:
            db.close()

    def list_episodes(self, organization_id: str, open_only: bool = False, limit: int = 100) -> list[EpisodeRead]:
        db = self.session_factory()
        try:
            query = db.query(ReplenishmentEpisode).filter(ReplenishmentEpisode.organization_id == organization_id)
            if open_only:
                query = query.filter(ReplenishmentEpisode.closed_at.is_(None))
            rows = query.order_by(ReplenishmentEpisode.opened_at.desc()).limit(limit).all()
            return [EpisodeRead.model_validate(r) for r in rows]
        finally:
            db.close()

    def open_episode(
        self,
        organization_id: str,
        item_id: str,
        vendor_id: str,
        quantity: int,
        unit_cost: float,
        trigger_quantity: int,
    ) -> tuple[EpisodeRead, bool]:
        """
        에피소드 개설 (초안 발행 전에 먼저 기록).
        이미 열린 에피소드가 있으면 그것을 돌려준다 → (episode, created)
        """
        db = self.session_factory()
        try:
            existing = self._open_query(db, item_id).first()
            if existing:
                return EpisodeRead.model_validate(existing), False

            episode = ReplenishmentEpisode(
                organization_id=organization_id,
                item_id=item_id,
                status=EpisodeStatus.OPEN,
                vendor_id=vendor_id,
                quantity=quantity,
                unit_cost=unit_cost,
                trigger_quantity=trigger_quantity,
                opened_at=datetime.now(timezone.utc),
            )
            db.add(episode)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                existing = self._open_query(db, item_id).first()
                if existing is None:
                    raise
                return EpisodeRead.model_validate(existing), False
            return EpisodeRead.model_validate(episode), True
        finally:
            db.close()

    def refresh_terms(self, episode_id: str, vendor_id: str, quantity: int, unit_cost: float) -> EpisodeRead:
        """미발행(OPEN) 에피소드의 발주 조건을 품목 현재 값으로 갱신"""
        db = self.session_factory()
        try:
            episode = db.get(ReplenishmentEpisode, episode_id)
            if episode.status == EpisodeStatus.OPEN:
                episode.vendor_id = vendor_id
                episode.quantity = quantity
                episode.unit_cost = unit_cost
                db.commit()
            return EpisodeRead.model_validate(episode)
        finally:
            db.close()

    def mark_emitted(self, episode_id: str, draft_id: str) -> EpisodeRead:
        db = self.session_factory()
        try:
            episode = db.get(ReplenishmentEpisode, episode_id)
            episode.status = EpisodeStatus.EMITTED
            episode.draft_id = draft_id
            episode.emitted_at = datetime.now(timezone.utc)
            db.commit()
            return EpisodeRead.model_validate(episode)
        finally:
            db.close()

    def close(self, episode_id: str, reason: EpisodeCloseReason) -> EpisodeRead | None:
        """에피소드 종료. 이미 닫혀 있으면 변경 없이 그대로 반환."""
        db = self.session_factory()
        try:
            episode = db.get(ReplenishmentEpisode, episode_id)
            if episode is None:
                return None
            if episode.closed_at is None:
                episode.status = EpisodeStatus.CLOSED
                episode.close_reason = reason
                episode.closed_at = datetime.now(timezone.utc)
                db.commit()
                logger.info(
                    f"[Replenishment] 에피소드 종료 ({reason.value}): "
                    f"item={episode.item_id} draft={episode.draft_id}"
                )
            return EpisodeRead.model_validate(episode)
        finally:
            db.close()

    @staticmethod
    def _open_query(db, item_id: str):
        return db.query(ReplenishmentEpisode).filter(
            ReplenishmentEpisode.item_id == item_id,
            ReplenishmentEpisode.closed_at.is_(None),
        )
