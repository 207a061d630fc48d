import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from userapi.models.points import (
    MilestoneKind,
    PointTier,
    RedemptionStatus,
    TransactionType,
)

ACTION_TYPE_PATTERN = r"^[a-z][a-z0-9_]{1,63}$"


# ============================================================================
# 원장 / 계정
# ============================================================================


class PointTransactionSchema(BaseModel):
    """포인트 거래 원장 항목"""

    id: int = Field(..., description="거래 ID")
    user_id: UUID = Field(..., description="사용자 ID")
    transaction_type: TransactionType = Field(..., description="거래 유형")
    points: int = Field(..., description="적용된 변동량 (차감은 음수)")
    balance_after: int = Field(..., description="거래 후 가용 잔액")
    description: Optional[str] = Field(None, description="거래 설명")
    rule_id: Optional[int] = Field(None, description="적립 규칙 ID (earn 전용)")
    action_type: Optional[str] = Field(None, description="액션 유형")
    reference_type: Optional[str] = Field(None, description="참조 유형")
    reference_id: Optional[str] = Field(None, description="참조 ID")
    multiplier: Decimal = Field(Decimal("1.00"), description="적용 배수")
    expires_at: Optional[datetime] = Field(None, description="만료 시각")
    created_at: datetime = Field(..., description="생성 시각")

    class Config:
        from_attributes = True


class UserPointsAccountSchema(BaseModel):
    """사용자 포인트 계정 스냅샷"""

    id: int
    user_id: UUID
    total_points: int
    available_points: int
    lifetime_points: int
    redeemed_points: int
    expired_points: int
    pending_points: int
    current_streak: int
    longest_streak: int
    last_activity_date: Optional[date] = None
    last_earned_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserDailyPointsSchema(BaseModel):
    id: int
    user_id: UUID
    action_type: str
    occurrence_date: date
    occurrence_count: int
    last_occurrence_at: datetime

    class Config:
        from_attributes = True


class UserPointsResponse(BaseModel):
    """사용자 포인트 조회 응답"""

    user_id: UUID = Field(..., description="사용자 ID")
    total_points: int = Field(0, description="총 포인트")
    available_points: int = Field(0, description="사용 가능 포인트")
    lifetime_points: int = Field(0, description="누적 적립 포인트")
    redeemed_points: int = Field(0, description="누적 교환 포인트")
    expired_points: int = Field(0, description="누적 만료 포인트")
    pending_points: int = Field(0, description="승인 대기 포인트")
    tier: PointTier = Field(PointTier.BRONZE, description="등급")
    rank: Optional[int] = Field(None, description="전체 순위 (계정 없으면 null)")
    current_streak: int = Field(0, description="현재 연속 활동 일수")
    longest_streak: int = Field(0, description="최장 연속 활동 일수")
    last_activity_date: Optional[date] = Field(None, description="마지막 활동일")
    last_earned_at: Optional[datetime] = Field(None, description="마지막 적립 시각")


class PointsHistoryResponse(BaseModel):
    """포인트 거래 내역 응답 (최신순 페이징)"""

    user_id: UUID
    available_points: int = Field(..., description="현재 가용 잔액")
    transactions: List[PointTransactionSchema] = Field(..., description="거래 내역")
    total_count: int = Field(..., description="전체 항목 수")
    has_next: bool = Field(..., description="다음 페이지 존재 여부")


class UserPointsSummaryResponse(BaseModel):
    """포인트 요약 (계정 + 최근 거래)"""

    points: UserPointsResponse
    recent_transactions: List[PointTransactionSchema]


class PointTransactionsByDateRangeResponse(BaseModel):
    user_id: UUID
    start_date: date
    end_date: date
    transactions: List[PointTransactionSchema]
    total_points_earned: int = Field(..., description="기간 내 증가분 합계")
    total_points_spent: int = Field(..., description="기간 내 감소분 합계 (양수)")
    count: int


class UserTierResponse(BaseModel):
    user_id: UUID
    tier: PointTier
    total_points: int


# ============================================================================
# 적립 / 차감 요청
# ============================================================================


class AwardStatus(str, Enum):
    """적립 결과 - 캡/쿨다운/중복/거절은 오류가 아닌 정상 결과"""

    AWARDED = "awarded"
    CAPPED = "capped"  # 일일 발생 한도 도달
    COOLDOWN = "cooldown"  # 쿨다운 진행 중
    DUPLICATE = "duplicate"  # 동일 참조로 이미 처리됨
    REJECTED = "rejected"  # 누적 발생 한도 초과


class AwardPointsRequest(BaseModel):
    """규칙 기반 포인트 적립 요청"""

    user_id: UUID = Field(..., description="사용자 ID")
    action_type: str = Field(..., pattern=ACTION_TYPE_PATTERN, description="액션 유형")
    reference_type: Optional[str] = Field(None, max_length=50, description="참조 유형")
    reference_id: Optional[str] = Field(None, max_length=100, description="참조 ID")
    description: Optional[str] = Field(None, max_length=255, description="설명")


class AwardPointsResult(BaseModel):
    status: AwardStatus = Field(..., description="적립 결과")
    transaction: Optional[PointTransactionSchema] = Field(
        None, description="생성(또는 기존) 거래"
    )
    message: str = Field(..., description="결과 메시지")
    retry_after_seconds: Optional[int] = Field(
        None, description="쿨다운 잔여 시간 (초)"
    )

    @property
    def awarded(self) -> bool:
        return self.status == AwardStatus.AWARDED


class RedeemPointsRequest(BaseModel):
    user_id: UUID
    points: int = Field(..., gt=0, description="차감할 포인트")
    description: Optional[str] = Field(None, max_length=255)
    reference_type: Optional[str] = Field(None, max_length=50)
    reference_id: Optional[str] = Field(None, max_length=100)


class AdjustPointsRequest(BaseModel):
    """관리자 포인트 보정 요청"""

    user_id: UUID = Field(..., description="사용자 ID")
    amount: int = Field(..., description="보정 포인트 (양수: 추가, 음수: 차감)")
    reason: str = Field(..., min_length=1, max_length=255, description="보정 사유")

    @field_validator("amount")
    @classmethod
    def amount_must_not_be_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("Adjustment amount cannot be zero")
        return v


class ExpirePointsRequest(BaseModel):
    user_id: UUID
    points: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1, max_length=255)
    reference_type: Optional[str] = Field(None, max_length=50)
    reference_id: Optional[str] = Field(None, max_length=100)


class ExpireSweepRequest(BaseModel):
    as_of: Optional[datetime] = Field(None, description="기준 시각 (기본: 현재)")
    limit: int = Field(100, ge=1, le=1000, description="한 번에 처리할 최대 건수")


class ExpireSweepResponse(BaseModel):
    processed: int = Field(..., description="검사한 만료 대상 거래 수")
    expired_points: int = Field(..., description="실제 만료 처리된 포인트 합계")
    transactions: List[PointTransactionSchema]


class BonusPointsRequest(BaseModel):
    """보너스 지급 요청 (추천 보상 등)"""

    user_id: UUID
    points: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=255)
    reference_type: Optional[str] = Field(None, max_length=50)
    reference_id: Optional[str] = Field(None, max_length=100)


class PurgeDailyCountersResponse(BaseModel):
    deleted_count: int
    cutoff_date: date


# ============================================================================
# 리뷰 포인트
# ============================================================================


class CalculateReviewPointsRequest(BaseModel):
    user_id: UUID = Field(..., description="작성자 ID")
    review_id: UUID = Field(..., description="리뷰 ID")
    has_stars: bool = Field(True, description="별점 포함 여부")
    has_header: bool = Field(False, description="제목 포함 여부")
    body_length: int = Field(0, ge=0, description="본문 길이")
    image_count: int = Field(0, ge=0, description="이미지 수")
    is_verified_user: bool = Field(False, description="인증 사용자 여부")


class ReviewPointsResult(BaseModel):
    """리뷰 포인트 계산 결과 (미리보기, 변경 없음)"""

    total_points: int = Field(..., description="지급될 포인트 (반올림)")
    raw_points: Decimal = Field(..., description="반올림 전 포인트")
    body_points: Decimal
    image_points: Decimal
    verified_bonus: bool
    breakdown: str


# ============================================================================
# 마일스톤 / 연속 활동
# ============================================================================


class MilestoneCheckRequest(BaseModel):
    """지표 값을 생략하면 스트릭은 저장값, 리뷰/투표는 리뷰 서비스에서 조회"""

    metric_value: Optional[int] = Field(None, ge=0, description="현재 지표 값")


class MilestoneCheckResponse(BaseModel):
    user_id: UUID
    kind: MilestoneKind
    awarded: bool
    threshold: Optional[int] = None
    transaction: Optional[PointTransactionSchema] = None


class StreakUpdateRequest(BaseModel):
    activity_date: Optional[date] = Field(None, description="활동일 (기본: 오늘 UTC)")


# ============================================================================
# 규칙 / 배수 / 마일스톤 설정
# ============================================================================


class PointRuleSchema(BaseModel):
    id: int
    action_type: str
    points_value: int
    description: Optional[str] = None
    max_daily_occurrences: Optional[int] = None
    max_total_occurrences: Optional[int] = None
    cooldown_minutes: Optional[int] = None
    multiplier_eligible: bool = True
    is_active: bool = True

    class Config:
        from_attributes = True


class PointRuleCreateRequest(BaseModel):
    action_type: str = Field(..., pattern=ACTION_TYPE_PATTERN)
    points_value: int = Field(..., ge=0)
    description: Optional[str] = Field(None, max_length=255)
    max_daily_occurrences: Optional[int] = Field(None, gt=0)
    max_total_occurrences: Optional[int] = Field(None, gt=0)
    cooldown_minutes: Optional[int] = Field(None, gt=0)
    multiplier_eligible: bool = True


class PointRuleUpdateRequest(BaseModel):
    """None인 필드는 변경하지 않음"""

    points_value: Optional[int] = Field(None, ge=0)
    description: Optional[str] = Field(None, max_length=255)
    max_daily_occurrences: Optional[int] = Field(None, gt=0)
    max_total_occurrences: Optional[int] = Field(None, gt=0)
    cooldown_minutes: Optional[int] = Field(None, gt=0)
    multiplier_eligible: Optional[bool] = None
    is_active: Optional[bool] = None


class PointMultiplierSchema(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    multiplier: Decimal
    action_types: Optional[List[str]] = None
    starts_at: datetime
    ends_at: datetime
    is_active: bool
    is_currently_active: bool = False

    class Config:
        from_attributes = True


class PointMultiplierCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=255)
    multiplier: Decimal = Field(..., gt=0, max_digits=6, decimal_places=2)
    action_types: Optional[List[str]] = Field(None, description="비우면 전체 액션 적용")
    starts_at: datetime
    ends_at: datetime

    @model_validator(mode="after")
    def window_must_be_ordered(self):
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class PointMultiplierUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=255)
    multiplier: Optional[Decimal] = Field(None, gt=0, max_digits=6, decimal_places=2)
    action_types: Optional[List[str]] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_active: Optional[bool] = None


class MilestoneThresholdSchema(BaseModel):
    id: int
    kind: MilestoneKind
    threshold: int
    points_value: int
    is_active: bool

    class Config:
        from_attributes = True


class MilestoneThresholdCreateRequest(BaseModel):
    kind: MilestoneKind
    threshold: int = Field(..., gt=0)
    points_value: int = Field(..., ge=0)


class UserMilestoneSchema(BaseModel):
    id: int
    user_id: UUID
    kind: MilestoneKind
    threshold: int
    transaction_id: int
    achieved_at: datetime

    class Config:
        from_attributes = True


# ============================================================================
# 리더보드
# ============================================================================


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: UUID
    total_points: int
    lifetime_points: int
    tier: PointTier


class LeaderboardResponse(BaseModel):
    entries: List[LeaderboardEntry]
    location: Optional[str] = None
    total_users: int


# ============================================================================
# 교환
# ============================================================================

_NG_PHONE = re.compile(r"^(\+234\d{10}|234\d{10}|0\d{10})$")


class RedemptionRequest(BaseModel):
    """포인트 교환 요청 (에어타임 등)"""

    points: int = Field(..., gt=0, description="교환할 포인트")
    phone_number: str = Field(..., description="수령 전화번호")
    reward_reference: Optional[str] = Field(None, max_length=100)

    @field_validator("phone_number")
    @classmethod
    def phone_number_must_be_valid(cls, v: str) -> str:
        normalized = v.replace(" ", "").replace("-", "")
        if not _NG_PHONE.match(normalized):
            raise ValueError("Invalid phone number")
        return normalized


class PointRedemptionSchema(BaseModel):
    id: int
    user_id: UUID
    points_redeemed: int
    phone_number: str
    reward_reference: Optional[str] = None
    status: RedemptionStatus
    provider_reference: Optional[str] = None
    status_message: Optional[str] = None
    transaction_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RedemptionStatusUpdateRequest(BaseModel):
    status: RedemptionStatus
    provider_reference: Optional[str] = Field(None, max_length=100)
    message: Optional[str] = Field(None, max_length=255)


class RedemptionHistoryResponse(BaseModel):
    user_id: UUID
    redemptions: List[PointRedemptionSchema]
    total_count: int


# ============================================================================
# 정합성 검증
# ============================================================================


class PointsIntegrityCheckResponse(BaseModel):
    """포인트 정합성 검증 응답"""

    status: str = Field(..., description="검증 상태 (OK, MISMATCH)")
    user_id: UUID
    account_available: int = Field(..., description="계정 가용 잔액")
    ledger_sum: int = Field(..., description="원장 변동량 합계")
    last_balance_after: Optional[int] = Field(None, description="최신 거래 후 잔액")
    entry_count: int = Field(..., description="거래 수")
    mismatches: List[str] = Field(default_factory=list, description="불일치 항목")
    verified_at: datetime
