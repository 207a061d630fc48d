import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from userapi.config import Settings
from userapi.core.exceptions import ValidationError
from userapi.models.points import RedemptionStatus, TransactionType
from userapi.providers.review_service import ReviewServiceClient
from userapi.repositories.milestone_repository import UserMilestoneRepository
from userapi.repositories.point_redemption_repository import PointRedemptionRepository
from userapi.repositories.point_transaction_repository import (
    PointTransactionRepository,
)
from userapi.repositories.points_repository import PointsAccountRepository
from userapi.schemas.points import (
    AwardPointsResult,
    CalculateReviewPointsRequest,
    MilestoneCheckResponse,
    PointRedemptionSchema,
    PointsHistoryResponse,
    PointsIntegrityCheckResponse,
    PointTransactionsByDateRangeResponse,
    RedemptionHistoryResponse,
    RedemptionRequest,
    RedemptionStatusUpdateRequest,
    ReviewPointsResult,
    UserMilestoneSchema,
    UserPointsResponse,
    UserPointsSummaryResponse,
    UserTierResponse,
)
from userapi.services.points_ledger import PointsLedger
from userapi.utils.points_utils import resolve_tier, round_points
from userapi.utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)

REVIEW_REFERENCE_TYPE = "review"
REVIEW_ACTION_TYPE = "review_published"

MAX_COUNTED_IMAGES = 3
IMAGE_POINTS = Decimal("3.0")
IMAGE_POINTS_VERIFIED = Decimal("4.5")

# (최대 본문 길이, 일반, 인증 사용자) - 마지막 구간은 상한 없음
BODY_POINT_BANDS = (
    (50, Decimal("2.0"), Decimal("3.0")),
    (150, Decimal("3.0"), Decimal("4.5")),
    (500, Decimal("5.0"), Decimal("6.5")),
    (None, Decimal("6.0"), Decimal("7.5")),
)


def calculate_body_points(body_length: int, verified: bool) -> Decimal:
    if body_length <= 0:
        return Decimal("0")
    for max_length, regular, verified_points in BODY_POINT_BANDS:
        if max_length is None or body_length <= max_length:
            return verified_points if verified else regular
    return Decimal("0")


class PointService:
    """포인트 조회/리포팅 및 리뷰 포인트, 교환, 마일스톤 흐름을 묶는 서비스

    잔액 변경은 모두 PointsLedger에 위임합니다.
    """

    def __init__(
        self,
        db: Session,
        settings: Settings,
        ledger: PointsLedger,
        review_client: ReviewServiceClient,
    ):
        self.db = db
        self.settings = settings
        self.ledger = ledger
        self.review_client = review_client
        self.account_repo = PointsAccountRepository(db)
        self.transaction_repo = PointTransactionRepository(db)
        self.redemption_repo = PointRedemptionRepository(db)
        self.milestone_repo = UserMilestoneRepository(db)

    def _clamp_limit(self, limit: int) -> int:
        if limit < 1:
            raise ValidationError("limit must be at least 1", details={"limit": limit})
        return min(limit, self.settings.POINTS_HISTORY_MAX_LIMIT)

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------

    def get_user_points(self, user_id: uuid.UUID) -> UserPointsResponse:
        """사용자 포인트 조회 - 계정이 없으면 저장하지 않고 0 스냅샷 반환"""
        account = self.account_repo.get_by_user_id(user_id)
        if account is None:
            return UserPointsResponse(user_id=user_id)

        return UserPointsResponse(
            user_id=user_id,
            total_points=account.total_points,
            available_points=account.available_points,
            lifetime_points=account.lifetime_points,
            redeemed_points=account.redeemed_points,
            expired_points=account.expired_points,
            pending_points=account.pending_points,
            tier=resolve_tier(account.total_points, self.settings),
            rank=self.account_repo.get_rank(user_id),
            current_streak=account.current_streak,
            longest_streak=account.longest_streak,
            last_activity_date=account.last_activity_date,
            last_earned_at=account.last_earned_at,
        )

    def get_user_tier(self, user_id: uuid.UUID) -> UserTierResponse:
        account = self.account_repo.get_by_user_id(user_id)
        total = account.total_points if account else 0
        return UserTierResponse(
            user_id=user_id, tier=resolve_tier(total, self.settings), total_points=total
        )

    def get_points_history(
        self,
        user_id: uuid.UUID,
        limit: int = 20,
        offset: int = 0,
        transaction_type: Optional[TransactionType] = None,
    ) -> PointsHistoryResponse:
        """거래 내역 (최신순, limit은 POINTS_HISTORY_MAX_LIMIT로 제한)"""
        limit = self._clamp_limit(limit)
        if offset < 0:
            raise ValidationError("offset must not be negative", details={"offset": offset})

        entries, total_count = self.transaction_repo.get_user_history(
            user_id, limit=limit, offset=offset, transaction_type=transaction_type
        )
        account = self.account_repo.get_by_user_id(user_id)
        logger.info(f"Retrieved history for user {user_id}: {total_count} entries")
        return PointsHistoryResponse(
            user_id=user_id,
            available_points=account.available_points if account else 0,
            transactions=entries,
            total_count=total_count,
            has_next=offset + len(entries) < total_count,
        )

    def get_user_points_summary(
        self, user_id: uuid.UUID, transaction_limit: int = 10
    ) -> UserPointsSummaryResponse:
        entries, _ = self.transaction_repo.get_user_history(
            user_id, limit=self._clamp_limit(transaction_limit)
        )
        return UserPointsSummaryResponse(
            points=self.get_user_points(user_id), recent_transactions=entries
        )

    def get_transactions_by_date_range(
        self, user_id: uuid.UUID, start_date: date, end_date: date
    ) -> PointTransactionsByDateRangeResponse:
        """[start_date, end_date] 구간 (UTC 날짜 기준, 양 끝 포함)"""
        if end_date < start_date:
            raise ValidationError(
                "end_date must not be before start_date",
                details={"start_date": str(start_date), "end_date": str(end_date)},
            )

        start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
        end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
        entries = self.transaction_repo.get_by_date_range(user_id, start, end)
        return PointTransactionsByDateRangeResponse(
            user_id=user_id,
            start_date=start_date,
            end_date=end_date,
            transactions=entries,
            total_points_earned=sum(tx.points for tx in entries if tx.points > 0),
            total_points_spent=-sum(tx.points for tx in entries if tx.points < 0),
            count=len(entries),
        )

    def get_user_milestones(self, user_id: uuid.UUID) -> List[UserMilestoneSchema]:
        return self.milestone_repo.list_for_user(user_id)

    # ------------------------------------------------------------------
    # 리뷰 포인트
    # ------------------------------------------------------------------

    def calculate_review_points(
        self, request: CalculateReviewPointsRequest
    ) -> ReviewPointsResult:
        """리뷰 포인트 미리보기 (잔액 변경 없음)"""
        verified = request.is_verified_user
        body_points = calculate_body_points(request.body_length, verified)
        image_points = min(request.image_count, MAX_COUNTED_IMAGES) * (
            IMAGE_POINTS_VERIFIED if verified else IMAGE_POINTS
        )
        raw_points = body_points + image_points

        breakdown = f"Body: {body_points}, Images: {image_points}"
        if verified:
            breakdown += " (Verified bonus applied)"

        return ReviewPointsResult(
            total_points=round_points(raw_points),
            raw_points=raw_points,
            body_points=body_points,
            image_points=image_points,
            verified_bonus=verified,
            breakdown=breakdown,
        )

    def award_review_points(
        self, request: CalculateReviewPointsRequest
    ) -> AwardPointsResult:
        """계산 + 적립 - 리뷰당 1회"""
        result = self.calculate_review_points(request)
        return self.ledger.award_calculated_points(
            request.user_id,
            REVIEW_ACTION_TYPE,
            result.total_points,
            reference_type=REVIEW_REFERENCE_TYPE,
            reference_id=str(request.review_id),
            description=f"Review points: {result.breakdown}",
        )

    # ------------------------------------------------------------------
    # 마일스톤 (외부 지표는 원장 트랜잭션 전에 조회)
    # ------------------------------------------------------------------

    async def check_review_milestone(
        self, user_id: uuid.UUID, review_count: Optional[int] = None
    ) -> MilestoneCheckResponse:
        if review_count is None:
            review_count = await self.review_client.get_approved_review_count(user_id)
        return self.ledger.check_and_award_review_milestone(user_id, review_count)

    async def check_helpful_vote_milestone(
        self, user_id: uuid.UUID, helpful_votes: Optional[int] = None
    ) -> MilestoneCheckResponse:
        if helpful_votes is None:
            helpful_votes = await self.review_client.get_total_helpful_votes(user_id)
        return self.ledger.check_and_award_helpful_vote_milestone(user_id, helpful_votes)

    def check_streak_milestone(
        self, user_id: uuid.UUID, current_streak: Optional[int] = None
    ) -> MilestoneCheckResponse:
        return self.ledger.check_and_award_streak_milestone(user_id, current_streak)

    # ------------------------------------------------------------------
    # 교환
    # ------------------------------------------------------------------

    def request_redemption(
        self, user_id: uuid.UUID, request: RedemptionRequest
    ) -> PointRedemptionSchema:
        return self.ledger.create_redemption(
            user_id,
            request.points,
            request.phone_number,
            reward_reference=request.reward_reference,
        )

    def update_redemption_status(
        self, redemption_id: int, request: RedemptionStatusUpdateRequest
    ) -> PointRedemptionSchema:
        return self.ledger.update_redemption_status(
            redemption_id,
            RedemptionStatus(request.status),
            provider_reference=request.provider_reference,
            message=request.message,
        )

    def get_redemption_history(
        self, user_id: uuid.UUID, limit: int = 20, offset: int = 0
    ) -> RedemptionHistoryResponse:
        redemptions, total_count = self.redemption_repo.get_user_redemptions(
            user_id, limit=self._clamp_limit(limit), offset=max(offset, 0)
        )
        return RedemptionHistoryResponse(
            user_id=user_id, redemptions=redemptions, total_count=total_count
        )

    # ------------------------------------------------------------------
    # 정합성 검증
    # ------------------------------------------------------------------

    def verify_user_integrity(self, user_id: uuid.UUID) -> PointsIntegrityCheckResponse:
        """원장과 계정 스냅샷 대조

        - 원장 변동량 합계 == available
        - 최신 거래의 balance_after == available
        - 양수 변동 합계 == lifetime, redeem/expire 합계 == redeemed/expired
        """
        account = self.account_repo.get_by_user_id(user_id)
        totals = self.transaction_repo.get_ledger_totals(user_id)
        latest = self.transaction_repo.get_latest(user_id)
        last_balance = latest.balance_after if latest else None

        available = account.available_points if account else 0
        mismatches: List[str] = []
        if totals["sum"] != available:
            mismatches.append(f"ledger sum {totals['sum']} != available {available}")
        if last_balance is not None and last_balance != available:
            mismatches.append(
                f"last balance_after {last_balance} != available {available}"
            )
        if account is not None:
            for field, ledger_value in (
                ("lifetime_points", totals["credited"]),
                ("redeemed_points", totals["redeemed"]),
                ("expired_points", totals["expired"]),
            ):
                account_value = getattr(account, field)
                if account_value != ledger_value:
                    mismatches.append(f"{field} {account_value} != ledger {ledger_value}")
            if account.total_points != account.available_points + account.pending_points:
                mismatches.append(
                    f"total_points {account.total_points} != available + pending"
                )

        status = "OK" if not mismatches else "MISMATCH"
        if mismatches:
            logger.warning(f"Points integrity mismatch for user {user_id}: {mismatches}")

        return PointsIntegrityCheckResponse(
            status=status,
            user_id=user_id,
            account_available=available,
            ledger_sum=totals["sum"],
            last_balance_after=last_balance,
            entry_count=totals["count"],
            mismatches=mismatches,
            verified_at=utc_now(),
        )
