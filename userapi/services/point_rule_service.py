import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from userapi.core.exceptions import ConflictError, PointRuleNotFoundError
from userapi.models.points import MilestoneKind
from userapi.repositories.milestone_repository import MilestoneThresholdRepository
from userapi.repositories.point_rule_repository import PointRuleRepository
from userapi.schemas.points import (
    MilestoneThresholdCreateRequest,
    MilestoneThresholdSchema,
    PointRuleCreateRequest,
    PointRuleSchema,
    PointRuleUpdateRequest,
)

logger = logging.getLogger(__name__)


class PointRuleService:
    """적립 규칙 카탈로그 및 마일스톤 임계값 관리 (운영자 전용)

    규칙 비활성화/변경은 이후 적립에만 영향을 주며 기존 거래는 그대로 남습니다.
    """

    def __init__(self, db: Session):
        self.db = db
        self.rule_repo = PointRuleRepository(db)
        self.threshold_repo = MilestoneThresholdRepository(db)

    def list_rules(self, include_inactive: bool = False) -> List[PointRuleSchema]:
        return self.rule_repo.list_rules(include_inactive=include_inactive)

    def get_rule(self, action_type: str) -> PointRuleSchema:
        rule = self.rule_repo.get_by_action_type(action_type)
        if rule is None:
            raise PointRuleNotFoundError(action_type)
        return PointRuleSchema.model_validate(rule)

    def create_rule(self, request: PointRuleCreateRequest) -> PointRuleSchema:
        if self.rule_repo.get_by_action_type(request.action_type) is not None:
            raise ConflictError(
                f"Point rule for action '{request.action_type}' already exists",
                details={"action_type": request.action_type},
            )
        try:
            rule = self.rule_repo.create(**request.model_dump(), is_active=True)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Point rule created: {rule.action_type}={rule.points_value}")
        return rule

    def update_rule(
        self, action_type: str, request: PointRuleUpdateRequest
    ) -> PointRuleSchema:
        rule = self.rule_repo.get_by_action_type(action_type)
        if rule is None:
            raise PointRuleNotFoundError(action_type)

        changes = request.model_dump(exclude_unset=True)
        try:
            for key, value in changes.items():
                setattr(rule, key, value)
            self.db.flush()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Point rule updated: {action_type} {changes}")
        return PointRuleSchema.model_validate(rule)

    # ------------------------------------------------------------------
    # 마일스톤 임계값
    # ------------------------------------------------------------------

    def list_milestone_thresholds(
        self, kind: Optional[MilestoneKind] = None
    ) -> List[MilestoneThresholdSchema]:
        return self.threshold_repo.list_thresholds(kind)

    def create_milestone_threshold(
        self, request: MilestoneThresholdCreateRequest
    ) -> MilestoneThresholdSchema:
        if (
            self.threshold_repo.get_by_kind_and_threshold(request.kind, request.threshold)
            is not None
        ):
            raise ConflictError(
                "Milestone threshold already exists",
                details={"kind": request.kind.value, "threshold": request.threshold},
            )
        try:
            threshold = self.threshold_repo.create(
                kind=request.kind.value,
                threshold=request.threshold,
                points_value=request.points_value,
                is_active=True,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(
            f"Milestone threshold created: {request.kind.value}>={request.threshold} "
            f"-> {request.points_value} points"
        )
        return threshold
