import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from userapi.models.points import UserDailyPoints
from userapi.repositories.base import BaseRepository
from userapi.schemas.points import UserDailyPointsSchema


class UserDailyPointsRepository(BaseRepository[UserDailyPoints, UserDailyPointsSchema]):
    """(사용자, 액션, 날짜)별 발생 카운터 - 일일 한도/쿨다운 판정 전용"""

    def __init__(self, db: Session):
        super().__init__(UserDailyPoints, UserDailyPointsSchema, db)

    def get_for_date(
        self, user_id: uuid.UUID, action_type: str, occurrence_date: date
    ) -> Optional[UserDailyPoints]:
        return (
            self.db.query(UserDailyPoints)
            .filter(
                UserDailyPoints.user_id == user_id,
                UserDailyPoints.action_type == action_type,
                UserDailyPoints.occurrence_date == occurrence_date,
            )
            .first()
        )

    def get_latest(
        self, user_id: uuid.UUID, action_type: str
    ) -> Optional[UserDailyPoints]:
        """가장 최근 카운터 - 자정을 넘는 쿨다운도 판정할 수 있도록 날짜 무관"""
        return (
            self.db.query(UserDailyPoints)
            .filter(
                UserDailyPoints.user_id == user_id,
                UserDailyPoints.action_type == action_type,
            )
            .order_by(UserDailyPoints.occurrence_date.desc())
            .first()
        )

    def record_occurrence(
        self, user_id: uuid.UUID, action_type: str, occurred_at: datetime
    ) -> UserDailyPoints:
        """오늘 카운터를 증가시키거나 새로 생성"""
        occurrence_date = occurred_at.date()
        row = self.get_for_date(user_id, action_type, occurrence_date)
        if row is None:
            row = UserDailyPoints(
                user_id=user_id,
                action_type=action_type,
                occurrence_date=occurrence_date,
                occurrence_count=0,
                last_occurrence_at=occurred_at,
            )
            self.db.add(row)

        row.occurrence_count = (row.occurrence_count or 0) + 1
        row.last_occurrence_at = occurred_at
        self.db.flush()
        return row

    def purge_before(self, cutoff: date) -> int:
        """cutoff 이전 날짜의 카운터 삭제, 삭제 건수 반환"""
        return (
            self.db.query(UserDailyPoints)
            .filter(UserDailyPoints.occurrence_date < cutoff)
            .delete(synchronize_session=False)
        )
