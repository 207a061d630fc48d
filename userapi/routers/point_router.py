"""
포인트 시스템 API 라우터

사용자용 엔드포인트:
- GET /points/me: 내 포인트 (등급, 순위 포함)
- GET /points/me/history: 내 거래 내역 (유형 필터, 페이징)
- GET /points/me/summary: 포인트 요약
- GET /points/me/transactions/date-range: 기간별 거래
- GET /points/me/tier, /points/me/milestones
- POST /points/me/streak: 로그인 스트릭 갱신
- POST/GET /points/me/redemptions: 포인트 교환 요청/내역
- GET /points/users/{user_id}[/history|/tier]: 본인 또는 지원/관리자
- GET /points/leaderboard, /points/leaderboard/location/{state}
- POST /points/reviews/calculate: 리뷰 포인트 미리보기

내부 서비스/관리자용 엔드포인트:
- POST /points/award, /points/redeem, /points/reviews/award
- POST /points/users/{user_id}/initialize, /streak, /milestones/{kind}
- POST /points/admin/adjust, /expire, /expire/sweep, /bonus, /daily-counters/purge
- GET /points/admin/integrity/{user_id}
- PATCH /points/admin/redemptions/{redemption_id}

인증 및 권한:
- 모든 엔드포인트는 Bearer 토큰 인증 필요
- 캡/쿨다운/중복은 오류가 아니며 200 응답의 status 필드로 구분됩니다
"""

import logging
import uuid
from datetime import date
from typing import List, Optional

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Path, Query, status

from userapi.containers import Container
from userapi.core.auth_middleware import (
    ensure_self_or_staff,
    get_current_user,
    require_admin,
    require_service_or_admin,
    require_staff,
)
from userapi.models.points import MilestoneKind, TransactionType
from userapi.schemas.points import (
    AdjustPointsRequest,
    AwardPointsRequest,
    AwardPointsResult,
    BonusPointsRequest,
    CalculateReviewPointsRequest,
    ExpirePointsRequest,
    ExpireSweepRequest,
    ExpireSweepResponse,
    LeaderboardResponse,
    MilestoneCheckRequest,
    MilestoneCheckResponse,
    PointRedemptionSchema,
    PointsHistoryResponse,
    PointsIntegrityCheckResponse,
    PointTransactionSchema,
    PointTransactionsByDateRangeResponse,
    PurgeDailyCountersResponse,
    RedeemPointsRequest,
    RedemptionHistoryResponse,
    RedemptionRequest,
    RedemptionStatusUpdateRequest,
    ReviewPointsResult,
    StreakUpdateRequest,
    UserMilestoneSchema,
    UserPointsAccountSchema,
    UserPointsResponse,
    UserPointsSummaryResponse,
    UserTierResponse,
)
from userapi.schemas.user import CurrentUser
from userapi.services.leaderboard_service import LeaderboardService
from userapi.services.point_service import PointService
from userapi.services.points_ledger import PointsLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/points", tags=["points"])


# ============================================================================
# 내 포인트
# ============================================================================


@router.get("/me", response_model=UserPointsResponse)
@inject
async def get_my_points(
    current_user: CurrentUser = Depends(get_current_user),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> UserPointsResponse:
    """
    내 포인트 조회

    계정이 아직 없으면 0 잔액, bronze 등급, 순위 null을 반환합니다 (계정은 생성하지 않음).
    """
    return point_service.get_user_points(current_user.user_id)


@router.get("/me/history", response_model=PointsHistoryResponse)
@inject
async def get_my_history(
    limit: int = Query(20, ge=1, le=100, description="페이지 크기"),
    offset: int = Query(0, ge=0, description="오프셋"),
    transaction_type: Optional[TransactionType] = Query(None, description="거래 유형 필터"),
    current_user: CurrentUser = Depends(get_current_user),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> PointsHistoryResponse:
    """
    내 거래 내역 (최신순)

    사용 예시:
        GET /points/me/history?limit=20&offset=0
        GET /points/me/history?transaction_type=redeem
    """
    return point_service.get_points_history(
        current_user.user_id, limit=limit, offset=offset, transaction_type=transaction_type
    )


@router.get("/me/summary", response_model=UserPointsSummaryResponse)
@inject
async def get_my_summary(
    transaction_limit: int = Query(10, ge=1, le=100),
    current_user: CurrentUser = Depends(get_current_user),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> UserPointsSummaryResponse:
    return point_service.get_user_points_summary(
        current_user.user_id, transaction_limit=transaction_limit
    )


@router.get(
    "/me/transactions/date-range", response_model=PointTransactionsByDateRangeResponse
)
@inject
async def get_my_transactions_by_date_range(
    start_date: date = Query(..., description="시작일 (UTC, 포함)"),
    end_date: date = Query(..., description="종료일 (UTC, 포함)"),
    current_user: CurrentUser = Depends(get_current_user),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> PointTransactionsByDateRangeResponse:
    return point_service.get_transactions_by_date_range(
        current_user.user_id, start_date, end_date
    )


@router.get("/me/tier", response_model=UserTierResponse)
@inject
async def get_my_tier(
    current_user: CurrentUser = Depends(get_current_user),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> UserTierResponse:
    return point_service.get_user_tier(current_user.user_id)


@router.get("/me/milestones", response_model=List[UserMilestoneSchema])
@inject
async def get_my_milestones(
    current_user: CurrentUser = Depends(get_current_user),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> List[UserMilestoneSchema]:
    return point_service.get_user_milestones(current_user.user_id)


@router.post("/me/streak", response_model=UserPointsAccountSchema)
@inject
async def update_my_streak(
    current_user: CurrentUser = Depends(get_current_user),
    ledger: PointsLedger = Depends(Provide[Container.services.points_ledger]),
) -> UserPointsAccountSchema:
    """로그인 시 호출 - 오늘(UTC) 기준으로 스트릭 갱신"""
    return ledger.update_login_streak(current_user.user_id)


@router.post(
    "/me/redemptions",
    response_model=PointRedemptionSchema,
    status_code=status.HTTP_201_CREATED,
)
@inject
async def request_my_redemption(
    request: RedemptionRequest,
    current_user: CurrentUser = Depends(get_current_user),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> PointRedemptionSchema:
    """
    포인트 교환 요청 (에어타임 등)

    HTTP Status:
        201: 교환 요청 생성 (status=pending), 포인트 차감 완료
        400: 잔액 부족 (BALANCE_001, details.required / details.available)
        404: 포인트 계정 없음
    """
    return point_service.request_redemption(current_user.user_id, request)


@router.get("/me/redemptions", response_model=RedemptionHistoryResponse)
@inject
async def get_my_redemptions(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: CurrentUser = Depends(get_current_user),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> RedemptionHistoryResponse:
    return point_service.get_redemption_history(
        current_user.user_id, limit=limit, offset=offset
    )


# ============================================================================
# 다른 사용자 조회 (본인 또는 지원/관리자)
# ============================================================================


@router.get("/users/{user_id}", response_model=UserPointsResponse)
@inject
async def get_user_points(
    user_id: uuid.UUID = Path(..., description="사용자 ID"),
    current_user: CurrentUser = Depends(get_current_user),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> UserPointsResponse:
    ensure_self_or_staff(current_user, user_id)
    return point_service.get_user_points(user_id)


@router.get("/users/{user_id}/history", response_model=PointsHistoryResponse)
@inject
async def get_user_history(
    user_id: uuid.UUID = Path(..., description="사용자 ID"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    transaction_type: Optional[TransactionType] = Query(None),
    current_user: CurrentUser = Depends(get_current_user),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> PointsHistoryResponse:
    ensure_self_or_staff(current_user, user_id)
    return point_service.get_points_history(
        user_id, limit=limit, offset=offset, transaction_type=transaction_type
    )


@router.get("/users/{user_id}/tier", response_model=UserTierResponse)
@inject
async def get_user_tier(
    user_id: uuid.UUID = Path(..., description="사용자 ID"),
    current_user: CurrentUser = Depends(get_current_user),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> UserTierResponse:
    ensure_self_or_staff(current_user, user_id)
    return point_service.get_user_tier(user_id)


# ============================================================================
# 리더보드
# ============================================================================


@router.get("/leaderboard", response_model=LeaderboardResponse)
@inject
async def get_leaderboard(
    limit: int = Query(10, ge=1, le=100, description="조회 인원"),
    current_user: CurrentUser = Depends(get_current_user),
    leaderboard_service: LeaderboardService = Depends(
        Provide[Container.services.leaderboard_service]
    ),
) -> LeaderboardResponse:
    """전체 리더보드 - total 내림차순, 동점은 lifetime 내림차순, 가입 순"""
    return leaderboard_service.get_leaderboard(limit)


@router.get("/leaderboard/location/{state}", response_model=LeaderboardResponse)
@inject
async def get_location_leaderboard(
    state: str = Path(..., min_length=1, max_length=100, description="지역(state)"),
    limit: int = Query(10, ge=1, le=100),
    current_user: CurrentUser = Depends(get_current_user),
    leaderboard_service: LeaderboardService = Depends(
        Provide[Container.services.leaderboard_service]
    ),
) -> LeaderboardResponse:
    """지역 리더보드 - 위치 기록이 없는 사용자는 제외"""
    return await leaderboard_service.get_location_leaderboard(state, limit)


# ============================================================================
# 리뷰 포인트
# ============================================================================


@router.post("/reviews/calculate", response_model=ReviewPointsResult)
@inject
async def calculate_review_points(
    request: CalculateReviewPointsRequest,
    current_user: CurrentUser = Depends(get_current_user),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> ReviewPointsResult:
    """리뷰 포인트 미리보기 (잔액 변경 없음)"""
    return point_service.calculate_review_points(request)


@router.post("/reviews/award", response_model=AwardPointsResult)
@inject
async def award_review_points(
    request: CalculateReviewPointsRequest,
    current_user: CurrentUser = Depends(require_service_or_admin),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> AwardPointsResult:
    """리뷰 승인 시 포인트 지급 - 리뷰당 1회 (재호출 시 status=duplicate)"""
    return point_service.award_review_points(request)


# ============================================================================
# 원장 연산 (내부 서비스 / 관리자)
# ============================================================================


@router.post("/award", response_model=AwardPointsResult)
@inject
async def award_points(
    request: AwardPointsRequest,
    current_user: CurrentUser = Depends(require_service_or_admin),
    ledger: PointsLedger = Depends(Provide[Container.services.points_ledger]),
) -> AwardPointsResult:
    """
    규칙 기반 포인트 적립

    Returns:
        AwardPointsResult: status = awarded | capped | cooldown | duplicate | rejected

    HTTP Status:
        200: 처리 완료 (no-op 결과 포함)
        404: 규칙 없음 또는 비활성
        409: 동시성 충돌 (재시도 가능)
    """
    return ledger.award_points(
        request.user_id,
        request.action_type,
        reference_type=request.reference_type,
        reference_id=request.reference_id,
        description=request.description,
    )


@router.post("/redeem", response_model=PointTransactionSchema)
@inject
async def redeem_points(
    request: RedeemPointsRequest,
    current_user: CurrentUser = Depends(require_service_or_admin),
    ledger: PointsLedger = Depends(Provide[Container.services.points_ledger]),
) -> PointTransactionSchema:
    return ledger.redeem_points(
        request.user_id,
        request.points,
        description=request.description,
        reference_type=request.reference_type,
        reference_id=request.reference_id,
    )


@router.post("/users/{user_id}/initialize", response_model=UserPointsAccountSchema)
@inject
async def initialize_user_points(
    user_id: uuid.UUID = Path(..., description="사용자 ID"),
    current_user: CurrentUser = Depends(require_service_or_admin),
    ledger: PointsLedger = Depends(Provide[Container.services.points_ledger]),
) -> UserPointsAccountSchema:
    """0 잔액 계정 생성 (멱등)"""
    return ledger.initialize_user_points(user_id)


@router.post("/users/{user_id}/streak", response_model=UserPointsAccountSchema)
@inject
async def update_user_streak(
    user_id: uuid.UUID = Path(..., description="사용자 ID"),
    request: StreakUpdateRequest = StreakUpdateRequest(),
    current_user: CurrentUser = Depends(require_service_or_admin),
    ledger: PointsLedger = Depends(Provide[Container.services.points_ledger]),
) -> UserPointsAccountSchema:
    return ledger.update_login_streak(user_id, request.activity_date)


@router.post(
    "/users/{user_id}/milestones/{kind}", response_model=MilestoneCheckResponse
)
@inject
async def check_milestone(
    user_id: uuid.UUID = Path(..., description="사용자 ID"),
    kind: MilestoneKind = Path(..., description="마일스톤 종류"),
    request: MilestoneCheckRequest = MilestoneCheckRequest(),
    current_user: CurrentUser = Depends(require_service_or_admin),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> MilestoneCheckResponse:
    """
    마일스톤 확인 및 지급 (멱등, 호출당 최대 1개)

    metric_value를 생략하면 streak는 저장된 현재 스트릭, review_count /
    helpful_votes는 리뷰 서비스에서 조회한 값을 사용합니다.
    """
    if kind == MilestoneKind.STREAK:
        return point_service.check_streak_milestone(user_id, request.metric_value)
    if kind == MilestoneKind.REVIEW_COUNT:
        return await point_service.check_review_milestone(user_id, request.metric_value)
    return await point_service.check_helpful_vote_milestone(user_id, request.metric_value)


# ============================================================================
# 관리자
# ============================================================================


@router.post("/admin/adjust", response_model=PointTransactionSchema)
@inject
async def adjust_points(
    request: AdjustPointsRequest,
    current_user: CurrentUser = Depends(require_admin),
    ledger: PointsLedger = Depends(Provide[Container.services.points_ledger]),
) -> PointTransactionSchema:
    logger.info(
        f"Admin {current_user.user_id} adjusting user {request.user_id} by {request.amount}"
    )
    return ledger.adjust_points(request.user_id, request.amount, request.reason)


@router.post("/admin/expire", response_model=Optional[PointTransactionSchema])
@inject
async def expire_points(
    request: ExpirePointsRequest,
    current_user: CurrentUser = Depends(require_admin),
    ledger: PointsLedger = Depends(Provide[Container.services.points_ledger]),
) -> Optional[PointTransactionSchema]:
    """min(points, available) 만큼 만료 - 만료할 잔액이 없으면 null"""
    return ledger.expire_points(
        request.user_id,
        request.points,
        request.reason,
        reference_type=request.reference_type,
        reference_id=request.reference_id,
    )


@router.post("/admin/expire/sweep", response_model=ExpireSweepResponse)
@inject
async def expire_due_points(
    request: ExpireSweepRequest = ExpireSweepRequest(),
    current_user: CurrentUser = Depends(require_service_or_admin),
    ledger: PointsLedger = Depends(Provide[Container.services.points_ledger]),
) -> ExpireSweepResponse:
    """스케줄러용 만료 스윕 - 재실행해도 이중 차감 없음"""
    return ledger.expire_due_points(as_of=request.as_of, limit=request.limit)


@router.post("/admin/bonus", response_model=PointTransactionSchema)
@inject
async def award_bonus(
    request: BonusPointsRequest,
    current_user: CurrentUser = Depends(require_service_or_admin),
    ledger: PointsLedger = Depends(Provide[Container.services.points_ledger]),
) -> PointTransactionSchema:
    return ledger.award_bonus(
        request.user_id,
        request.points,
        request.description,
        reference_type=request.reference_type,
        reference_id=request.reference_id,
    )


@router.post("/admin/daily-counters/purge", response_model=PurgeDailyCountersResponse)
@inject
async def purge_daily_counters(
    retention_days: Optional[int] = Query(None, ge=1, le=365),
    current_user: CurrentUser = Depends(require_service_or_admin),
    ledger: PointsLedger = Depends(Provide[Container.services.points_ledger]),
) -> PurgeDailyCountersResponse:
    return ledger.purge_daily_counters(retention_days)


@router.get(
    "/admin/integrity/{user_id}", response_model=PointsIntegrityCheckResponse
)
@inject
async def verify_user_integrity(
    user_id: uuid.UUID = Path(..., description="사용자 ID"),
    current_user: CurrentUser = Depends(require_staff),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> PointsIntegrityCheckResponse:
    return point_service.verify_user_integrity(user_id)


@router.patch(
    "/admin/redemptions/{redemption_id}", response_model=PointRedemptionSchema
)
@inject
async def update_redemption_status(
    request: RedemptionStatusUpdateRequest,
    redemption_id: int = Path(..., ge=1),
    current_user: CurrentUser = Depends(require_service_or_admin),
    point_service: PointService = Depends(Provide[Container.services.point_service]),
) -> PointRedemptionSchema:
    """외부 지급 공급자의 결과 반영"""
    return point_service.update_redemption_status(redemption_id, request)
