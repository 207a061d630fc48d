import uuid
from typing import List, Tuple

from sqlalchemy.orm import Session

from userapi.models.points import PointRedemption
from userapi.repositories.base import BaseRepository
from userapi.schemas.points import PointRedemptionSchema


class PointRedemptionRepository(BaseRepository[PointRedemption, PointRedemptionSchema]):
    def __init__(self, db: Session):
        super().__init__(PointRedemption, PointRedemptionSchema, db)

    def get_user_redemptions(
        self, user_id: uuid.UUID, limit: int, offset: int = 0
    ) -> Tuple[List[PointRedemptionSchema], int]:
        """최신순 교환 내역과 전체 건수"""
        self._ensure_clean_session()
        query = self.db.query(PointRedemption).filter(
            PointRedemption.user_id == user_id
        )
        total_count = query.count()
        rows = (
            query.order_by(PointRedemption.id.desc()).offset(offset).limit(limit).all()
        )
        return self._to_schemas(rows), total_count
