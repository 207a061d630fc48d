import uuid
from typing import List, Optional, Set

from sqlalchemy.orm import Session

from userapi.models.points import MilestoneKind, MilestoneThreshold, UserMilestone
from userapi.repositories.base import BaseRepository
from userapi.schemas.points import MilestoneThresholdSchema, UserMilestoneSchema


class MilestoneThresholdRepository(
    BaseRepository[MilestoneThreshold, MilestoneThresholdSchema]
):
    """지표 종류별 마일스톤 임계값 설정"""

    def __init__(self, db: Session):
        super().__init__(MilestoneThreshold, MilestoneThresholdSchema, db)

    def list_active(self, kind: MilestoneKind) -> List[MilestoneThreshold]:
        """활성 임계값 (오름차순)"""
        return (
            self.db.query(MilestoneThreshold)
            .filter(
                MilestoneThreshold.kind == kind.value,
                MilestoneThreshold.is_active.is_(True),
            )
            .order_by(MilestoneThreshold.threshold.asc())
            .all()
        )

    def list_thresholds(
        self, kind: Optional[MilestoneKind] = None
    ) -> List[MilestoneThresholdSchema]:
        self._ensure_clean_session()
        query = self.db.query(MilestoneThreshold)
        if kind is not None:
            query = query.filter(MilestoneThreshold.kind == kind.value)
        return self._to_schemas(
            query.order_by(
                MilestoneThreshold.kind.asc(), MilestoneThreshold.threshold.asc()
            ).all()
        )

    def get_by_kind_and_threshold(
        self, kind: MilestoneKind, threshold: int
    ) -> Optional[MilestoneThreshold]:
        return (
            self.db.query(MilestoneThreshold)
            .filter(
                MilestoneThreshold.kind == kind.value,
                MilestoneThreshold.threshold == threshold,
            )
            .first()
        )


class UserMilestoneRepository(BaseRepository[UserMilestone, UserMilestoneSchema]):
    """사용자 마일스톤 달성 기록 - (user, kind, threshold) 유니크"""

    def __init__(self, db: Session):
        super().__init__(UserMilestone, UserMilestoneSchema, db)

    def get_achieved_thresholds(
        self, user_id: uuid.UUID, kind: MilestoneKind
    ) -> Set[int]:
        rows = (
            self.db.query(UserMilestone.threshold)
            .filter(UserMilestone.user_id == user_id, UserMilestone.kind == kind.value)
            .all()
        )
        return {row[0] for row in rows}

    def list_for_user(self, user_id: uuid.UUID) -> List[UserMilestoneSchema]:
        self._ensure_clean_session()
        rows = (
            self.db.query(UserMilestone)
            .filter(UserMilestone.user_id == user_id)
            .order_by(UserMilestone.achieved_at.asc(), UserMilestone.id.asc())
            .all()
        )
        return self._to_schemas(rows)
