from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from userapi.models.points import PointMultiplier
from userapi.repositories.base import BaseRepository
from userapi.schemas.points import PointMultiplierSchema


def applies_to(multiplier: PointMultiplier, action_type: str) -> bool:
    """action_types가 비어 있으면 모든 액션에 적용"""
    return not multiplier.action_types or action_type in multiplier.action_types


class PointMultiplierRepository(
    BaseRepository[PointMultiplier, PointMultiplierSchema]
):
    def __init__(self, db: Session):
        super().__init__(PointMultiplier, PointMultiplierSchema, db)

    def list_all(self) -> List[PointMultiplier]:
        self._ensure_clean_session()
        return (
            self.db.query(PointMultiplier)
            .order_by(PointMultiplier.starts_at.desc(), PointMultiplier.id.desc())
            .all()
        )

    def list_active(self, now: datetime) -> List[PointMultiplier]:
        """is_active 이고 now ∈ [starts_at, ends_at] 인 배수"""
        self._ensure_clean_session()
        return (
            self.db.query(PointMultiplier)
            .filter(
                PointMultiplier.is_active.is_(True),
                PointMultiplier.starts_at <= now,
                PointMultiplier.ends_at >= now,
            )
            .order_by(PointMultiplier.multiplier.desc(), PointMultiplier.id.asc())
            .all()
        )

    def get_highest_applicable(
        self, action_type: str, now: datetime
    ) -> Optional[PointMultiplier]:
        """현재 활성 배수 중 액션에 적용되는 가장 큰 값 하나 (합산하지 않음)

        action_types는 JSON 컬럼이라 DB별 포함 연산자가 달라 메모리에서 필터링합니다.
        """
        for multiplier in self.list_active(now):
            if applies_to(multiplier, action_type):
                return multiplier
        return None
