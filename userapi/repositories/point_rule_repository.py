from typing import List, Optional

from sqlalchemy.orm import Session

from userapi.models.points import PointRule
from userapi.repositories.base import BaseRepository
from userapi.schemas.points import PointRuleSchema


class PointRuleRepository(BaseRepository[PointRule, PointRuleSchema]):
    """액션별 적립 규칙 카탈로그"""

    def __init__(self, db: Session):
        super().__init__(PointRule, PointRuleSchema, db)

    def get_by_action_type(self, action_type: str) -> Optional[PointRule]:
        return (
            self.db.query(PointRule).filter(PointRule.action_type == action_type).first()
        )

    def get_active_rule(self, action_type: str) -> Optional[PointRule]:
        return (
            self.db.query(PointRule)
            .filter(PointRule.action_type == action_type, PointRule.is_active.is_(True))
            .first()
        )

    def list_rules(self, include_inactive: bool = False) -> List[PointRuleSchema]:
        self._ensure_clean_session()
        query = self.db.query(PointRule)
        if not include_inactive:
            query = query.filter(PointRule.is_active.is_(True))
        return self._to_schemas(query.order_by(PointRule.action_type.asc()).all())
