"""
포인트 카탈로그 API - 적립 규칙, 기간 한정 배수, 마일스톤 임계값

조회는 인증된 사용자, 생성/수정은 관리자 전용입니다.
"""

from typing import List, Optional

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Path, Query, status

from userapi.containers import Container
from userapi.core.auth_middleware import get_current_user, require_admin
from userapi.models.points import MilestoneKind
from userapi.schemas.points import (
    MilestoneThresholdCreateRequest,
    MilestoneThresholdSchema,
    PointMultiplierCreateRequest,
    PointMultiplierSchema,
    PointMultiplierUpdateRequest,
    PointRuleCreateRequest,
    PointRuleSchema,
    PointRuleUpdateRequest,
)
from userapi.schemas.user import CurrentUser
from userapi.services.point_multiplier_service import PointMultiplierService
from userapi.services.point_rule_service import PointRuleService

router = APIRouter(prefix="/points", tags=["point-catalog"])


# ============================================================================
# 적립 규칙
# ============================================================================


@router.get("/rules", response_model=List[PointRuleSchema])
@inject
async def list_rules(
    include_inactive: bool = Query(False, description="비활성 규칙 포함"),
    current_user: CurrentUser = Depends(get_current_user),
    rule_service: PointRuleService = Depends(
        Provide[Container.services.point_rule_service]
    ),
) -> List[PointRuleSchema]:
    return rule_service.list_rules(include_inactive=include_inactive)


@router.get("/rules/{action_type}", response_model=PointRuleSchema)
@inject
async def get_rule(
    action_type: str = Path(..., description="액션 유형"),
    current_user: CurrentUser = Depends(get_current_user),
    rule_service: PointRuleService = Depends(
        Provide[Container.services.point_rule_service]
    ),
) -> PointRuleSchema:
    return rule_service.get_rule(action_type)


@router.post(
    "/rules", response_model=PointRuleSchema, status_code=status.HTTP_201_CREATED
)
@inject
async def create_rule(
    request: PointRuleCreateRequest,
    current_user: CurrentUser = Depends(require_admin),
    rule_service: PointRuleService = Depends(
        Provide[Container.services.point_rule_service]
    ),
) -> PointRuleSchema:
    return rule_service.create_rule(request)


@router.patch("/rules/{action_type}", response_model=PointRuleSchema)
@inject
async def update_rule(
    request: PointRuleUpdateRequest,
    action_type: str = Path(..., description="액션 유형"),
    current_user: CurrentUser = Depends(require_admin),
    rule_service: PointRuleService = Depends(
        Provide[Container.services.point_rule_service]
    ),
) -> PointRuleSchema:
    """규칙 변경/비활성화 - 기존 거래에는 영향 없음"""
    return rule_service.update_rule(action_type, request)


# ============================================================================
# 배수
# ============================================================================


@router.get("/multipliers", response_model=List[PointMultiplierSchema])
@inject
async def list_multipliers(
    current_user: CurrentUser = Depends(require_admin),
    multiplier_service: PointMultiplierService = Depends(
        Provide[Container.services.point_multiplier_service]
    ),
) -> List[PointMultiplierSchema]:
    return multiplier_service.list_multipliers()


@router.get("/multipliers/active", response_model=List[PointMultiplierSchema])
@inject
async def list_active_multipliers(
    current_user: CurrentUser = Depends(get_current_user),
    multiplier_service: PointMultiplierService = Depends(
        Provide[Container.services.point_multiplier_service]
    ),
) -> List[PointMultiplierSchema]:
    """현재 진행 중인 배수 이벤트 (배수 내림차순)"""
    return multiplier_service.list_active_multipliers()


@router.post(
    "/multipliers",
    response_model=PointMultiplierSchema,
    status_code=status.HTTP_201_CREATED,
)
@inject
async def create_multiplier(
    request: PointMultiplierCreateRequest,
    current_user: CurrentUser = Depends(require_admin),
    multiplier_service: PointMultiplierService = Depends(
        Provide[Container.services.point_multiplier_service]
    ),
) -> PointMultiplierSchema:
    return multiplier_service.create_multiplier(request)


@router.patch("/multipliers/{multiplier_id}", response_model=PointMultiplierSchema)
@inject
async def update_multiplier(
    request: PointMultiplierUpdateRequest,
    multiplier_id: int = Path(..., ge=1),
    current_user: CurrentUser = Depends(require_admin),
    multiplier_service: PointMultiplierService = Depends(
        Provide[Container.services.point_multiplier_service]
    ),
) -> PointMultiplierSchema:
    return multiplier_service.update_multiplier(multiplier_id, request)


@router.delete("/multipliers/{multiplier_id}", response_model=PointMultiplierSchema)
@inject
async def deactivate_multiplier(
    multiplier_id: int = Path(..., ge=1),
    current_user: CurrentUser = Depends(require_admin),
    multiplier_service: PointMultiplierService = Depends(
        Provide[Container.services.point_multiplier_service]
    ),
) -> PointMultiplierSchema:
    """배수 비활성화 (기록은 유지)"""
    return multiplier_service.deactivate_multiplier(multiplier_id)


# ============================================================================
# 마일스톤 임계값
# ============================================================================


@router.get("/milestones/thresholds", response_model=List[MilestoneThresholdSchema])
@inject
async def list_milestone_thresholds(
    kind: Optional[MilestoneKind] = Query(None, description="마일스톤 종류"),
    current_user: CurrentUser = Depends(get_current_user),
    rule_service: PointRuleService = Depends(
        Provide[Container.services.point_rule_service]
    ),
) -> List[MilestoneThresholdSchema]:
    return rule_service.list_milestone_thresholds(kind)


@router.post(
    "/milestones/thresholds",
    response_model=MilestoneThresholdSchema,
    status_code=status.HTTP_201_CREATED,
)
@inject
async def create_milestone_threshold(
    request: MilestoneThresholdCreateRequest,
    current_user: CurrentUser = Depends(require_admin),
    rule_service: PointRuleService = Depends(
        Provide[Container.services.point_rule_service]
    ),
) -> MilestoneThresholdSchema:
    return rule_service.create_milestone_threshold(request)
