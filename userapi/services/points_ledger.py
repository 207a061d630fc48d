"""
포인트 원장 (PointsLedger) - 모든 잔액 변경의 단일 진입점

적립(earn) / 교환(redeem) / 보정(adjust) / 만료(expire) / 보너스(bonus) 연산과
마일스톤 지급, 연속 활동(streak) 갱신을 담당합니다.

원자성:
- 각 연산은 하나의 DB 트랜잭션(_run_atomic)으로 실행됩니다
- 계정 행을 먼저 잠근 뒤(SELECT ... FOR UPDATE) 일별 카운터/원장을 읽고 씁니다
- 계정 갱신 + 원장 추가 + 일별 카운터 갱신은 함께 커밋되거나 함께 롤백됩니다
- 유니크 충돌(동시 계정 생성, 중복 참조 키, 마일스톤 마커)과 직렬화 실패/데드락은
  처음부터 재실행하며, 재시도 한도를 넘으면 ConcurrencyConflictError를 발생시킵니다

캡 도달 / 쿨다운 / 중복 요청 / 누적 한도 초과는 예외가 아니라
AwardPointsResult.status 로 반환되는 정상 결과입니다.

원장은 접근 제어를 하지 않으며(라우터 책임), 외부 서비스도 호출하지 않습니다.
마일스톤 지표(리뷰 수, 도움돼요 수)는 호출자가 미리 조회해 넘겨야 합니다.
"""

import logging
import re
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from userapi.config import Settings
from userapi.core.exceptions import (
    ConcurrencyConflictError,
    InsufficientPointsError,
    InvalidPointsAmountError,
    PointRuleNotFoundError,
    RedemptionNotFoundError,
    UserPointsNotFoundError,
)
from userapi.models.points import (
    MilestoneKind,
    PointRedemption,
    PointTransaction,
    RedemptionStatus,
    TransactionType,
    UserMilestone,
    UserPointsAccount,
)
from userapi.repositories.milestone_repository import (
    MilestoneThresholdRepository,
    UserMilestoneRepository,
)
from userapi.repositories.point_multiplier_repository import PointMultiplierRepository
from userapi.repositories.point_redemption_repository import PointRedemptionRepository
from userapi.repositories.point_rule_repository import PointRuleRepository
from userapi.repositories.point_transaction_repository import (
    EXPIRY_SOURCE_REFERENCE,
    PointTransactionRepository,
)
from userapi.repositories.points_repository import PointsAccountRepository
from userapi.repositories.user_daily_points_repository import (
    UserDailyPointsRepository,
)
from userapi.schemas.points import (
    ACTION_TYPE_PATTERN,
    AwardPointsResult,
    AwardStatus,
    ExpireSweepResponse,
    MilestoneCheckResponse,
    PointRedemptionSchema,
    PointTransactionSchema,
    PurgeDailyCountersResponse,
    UserPointsAccountSchema,
)
from userapi.utils.points_utils import apply_multiplier
from userapi.utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL serialization_failure / deadlock_detected
RETRYABLE_PGCODES = {"40001", "40P01"}
# PostgreSQL unique_violation
UNIQUE_VIOLATION_PGCODE = "23505"
UNIQUE_VIOLATION_MESSAGES = (
    "UNIQUE constraint failed",  # SQLite
    "duplicate key value violates unique constraint",
)
DEFAULT_MULTIPLIER = Decimal("1.00")
_ACTION_TYPE_RE = re.compile(ACTION_TYPE_PATTERN)


def _is_unique_violation(exc: IntegrityError) -> bool:
    if getattr(exc.orig, "pgcode", None) == UNIQUE_VIOLATION_PGCODE:
        return True
    message = str(exc.orig)
    return any(marker in message for marker in UNIQUE_VIOLATION_MESSAGES)


def _is_retryable(exc: Exception) -> bool:
    """유니크 충돌과 직렬화 실패/데드락만 재시도 - CHECK/NOT NULL 위반은 그대로 전파"""
    if isinstance(exc, IntegrityError):
        return _is_unique_violation(exc)
    if isinstance(exc, OperationalError):
        return getattr(exc.orig, "pgcode", None) in RETRYABLE_PGCODES
    return False


def build_ref_key(
    user_id: uuid.UUID,
    transaction_type: TransactionType,
    scope: Optional[str],
    reference_type: Optional[str],
    reference_id: Optional[str],
) -> Optional[str]:
    """멱등성 키 - 참조(reference_id)가 있는 거래에만 부여"""
    if reference_id is None:
        return None
    return (
        f"{user_id}:{transaction_type.value}:{scope or '-'}:"
        f"{reference_type or '-'}:{reference_id}"
    )


class PointsLedger:
    def __init__(
        self,
        db: Session,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.settings = settings
        self.clock = clock
        self.accounts = PointsAccountRepository(db)
        self.transactions = PointTransactionRepository(db)
        self.daily_points = UserDailyPointsRepository(db)
        self.rules = PointRuleRepository(db)
        self.multipliers = PointMultiplierRepository(db)
        self.milestone_thresholds = MilestoneThresholdRepository(db)
        self.user_milestones = UserMilestoneRepository(db)
        self.redemptions = PointRedemptionRepository(db)

    # ------------------------------------------------------------------
    # 원자 단위 실행
    # ------------------------------------------------------------------

    def _run_atomic(self, operation: str, work: Callable[[], T]) -> T:
        """work()를 하나의 트랜잭션으로 실행, 충돌 시 처음부터 재실행"""
        max_attempts = max(1, self.settings.LEDGER_MAX_RETRIES)
        if not self.db.is_active:
            self.db.rollback()

        for attempt in range(1, max_attempts + 1):
            try:
                result = work()
                self.db.commit()
                return result
            except (IntegrityError, OperationalError) as e:
                self.db.rollback()
                if not _is_retryable(e):
                    raise
                logger.warning(
                    f"Ledger conflict during {operation} "
                    f"(attempt {attempt}/{max_attempts}): {e.__class__.__name__}"
                )
            except Exception:
                self.db.rollback()
                raise

        logger.error(f"Ledger retry budget exhausted for {operation}")
        raise ConcurrencyConflictError(operation, max_attempts)

    def _lock_account(self, user_id: uuid.UUID, now: datetime) -> UserPointsAccount:
        account = self.accounts.get_account_for_update(user_id)
        if account is None:
            account = self.accounts.create_account(user_id, now)
            logger.info(f"Created points account for user {user_id}")
        return account

    def _lock_existing_account(self, user_id: uuid.UUID) -> UserPointsAccount:
        account = self.accounts.get_account_for_update(user_id)
        if account is None:
            raise UserPointsNotFoundError(user_id)
        return account

    def _append(
        self,
        account: UserPointsAccount,
        transaction_type: TransactionType,
        points: int,
        now: datetime,
        description: Optional[str] = None,
        rule_id: Optional[int] = None,
        action_type: Optional[str] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        ref_key: Optional[str] = None,
        multiplier: Decimal = DEFAULT_MULTIPLIER,
        expires_at: Optional[datetime] = None,
    ) -> PointTransaction:
        """잔액 변경 직후 호출 - balance_after는 갱신된 available_points"""
        account.updated_at = now
        return self.transactions.add(
            PointTransaction(
                user_id=account.user_id,
                transaction_type=transaction_type.value,
                points=points,
                balance_after=account.available_points,
                description=description,
                rule_id=rule_id,
                action_type=action_type,
                reference_type=reference_type,
                reference_id=reference_id,
                ref_key=ref_key,
                multiplier=multiplier,
                expires_at=expires_at,
                created_at=now,
            )
        )

    def _credit(self, account: UserPointsAccount, points: int, now: datetime) -> None:
        account.total_points += points
        account.available_points += points
        account.lifetime_points += points
        if points > 0:
            account.last_earned_at = now

    def _earn_expiry(self, now: datetime, points: int) -> Optional[datetime]:
        if self.settings.POINTS_EXPIRY_DAYS and points > 0:
            return now + timedelta(days=self.settings.POINTS_EXPIRY_DAYS)
        return None

    def _to_tx(self, transaction: PointTransaction) -> PointTransactionSchema:
        return PointTransactionSchema.model_validate(transaction)

    @staticmethod
    def _validate_action_type(action_type: str) -> None:
        if not action_type or not _ACTION_TYPE_RE.match(action_type):
            raise InvalidPointsAmountError(
                f"Malformed action type: '{action_type}'",
                details={"action_type": action_type},
            )

    @staticmethod
    def _validate_positive(points: int, field: str = "points") -> None:
        if points is None or points <= 0:
            raise InvalidPointsAmountError(
                f"{field} must be greater than 0", details={field: points}
            )

    # ------------------------------------------------------------------
    # 적립 (earn)
    # ------------------------------------------------------------------

    def award_points(
        self,
        user_id: uuid.UUID,
        action_type: str,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> AwardPointsResult:
        """규칙 기반 포인트 적립

        Returns:
            AwardPointsResult: awarded / capped / cooldown / duplicate / rejected

        Raises:
            InvalidPointsAmountError: action_type 형식 오류
            PointRuleNotFoundError: 규칙이 없거나 비활성
        """
        self._validate_action_type(action_type)

        def work() -> AwardPointsResult:
            rule = self.rules.get_active_rule(action_type)
            if rule is None:
                raise PointRuleNotFoundError(action_type)

            now = self.clock()
            account = self._lock_account(user_id, now)

            ref_key = build_ref_key(
                user_id, TransactionType.EARN, action_type, reference_type, reference_id
            )
            if ref_key:
                existing = self.transactions.get_by_ref_key(ref_key)
                if existing is not None:
                    logger.info(
                        f"Duplicate award ignored: user={user_id} action={action_type} "
                        f"ref={reference_type}:{reference_id}"
                    )
                    return AwardPointsResult(
                        status=AwardStatus.DUPLICATE,
                        transaction=self._to_tx(existing),
                        message="Already awarded for this reference",
                    )

            if rule.max_daily_occurrences is not None:
                today = self.daily_points.get_for_date(user_id, action_type, now.date())
                if today is not None and today.occurrence_count >= rule.max_daily_occurrences:
                    logger.info(
                        f"Daily cap reached: user={user_id} action={action_type} "
                        f"({today.occurrence_count}/{rule.max_daily_occurrences})"
                    )
                    return AwardPointsResult(
                        status=AwardStatus.CAPPED,
                        message=f"Daily limit of {rule.max_daily_occurrences} reached",
                    )

            if rule.cooldown_minutes:
                latest = self.daily_points.get_latest(user_id, action_type)
                if latest is not None:
                    available_at = ensure_utc(latest.last_occurrence_at) + timedelta(
                        minutes=rule.cooldown_minutes
                    )
                    if now < available_at:
                        remaining = int((available_at - now).total_seconds()) + 1
                        logger.info(
                            f"Cooldown active: user={user_id} action={action_type} "
                            f"({remaining}s remaining)"
                        )
                        return AwardPointsResult(
                            status=AwardStatus.COOLDOWN,
                            message="Cooldown active",
                            retry_after_seconds=remaining,
                        )

            if rule.max_total_occurrences is not None:
                occurrences = self.transactions.count_rule_occurrences(user_id, rule.id)
                if occurrences >= rule.max_total_occurrences:
                    logger.info(
                        f"Lifetime cap reached: user={user_id} action={action_type} "
                        f"({occurrences}/{rule.max_total_occurrences})"
                    )
                    return AwardPointsResult(
                        status=AwardStatus.REJECTED,
                        message=f"Lifetime limit of {rule.max_total_occurrences} reached",
                    )

            multiplier = DEFAULT_MULTIPLIER
            if rule.multiplier_eligible:
                active = self.multipliers.get_highest_applicable(action_type, now)
                if active is not None:
                    multiplier = Decimal(active.multiplier)

            points = apply_multiplier(rule.points_value, multiplier)
            self._credit(account, points, now)
            transaction = self._append(
                account,
                TransactionType.EARN,
                points,
                now,
                description=description or rule.description,
                rule_id=rule.id,
                action_type=action_type,
                reference_type=reference_type,
                reference_id=reference_id,
                ref_key=ref_key,
                multiplier=multiplier,
                expires_at=self._earn_expiry(now, points),
            )
            self.daily_points.record_occurrence(user_id, action_type, now)

            logger.info(
                f"Awarded {points} points to user {user_id} for {action_type} "
                f"(x{multiplier}, balance={account.available_points})"
            )
            return AwardPointsResult(
                status=AwardStatus.AWARDED,
                transaction=self._to_tx(transaction),
                message=f"Awarded {points} points",
            )

        return self._run_atomic("award_points", work)

    def award_calculated_points(
        self,
        user_id: uuid.UUID,
        action_type: str,
        points: int,
        reference_type: str,
        reference_id: str,
        description: Optional[str] = None,
    ) -> AwardPointsResult:
        """미리 계산된 기본 포인트 적립 (리뷰 포인트 등) - 참조당 1회

        일일 한도/쿨다운은 적용하지 않고 활성 배수만 적용합니다.
        같은 action_type의 활성 규칙이 있으면 그 multiplier_eligible 설정을 따르고,
        규칙이 없으면 배수 적용 대상으로 봅니다.
        """
        self._validate_action_type(action_type)
        if points < 0:
            raise InvalidPointsAmountError(
                "points must not be negative", details={"points": points}
            )

        def work() -> AwardPointsResult:
            now = self.clock()
            account = self._lock_account(user_id, now)
            ref_key = build_ref_key(
                user_id, TransactionType.EARN, action_type, reference_type, reference_id
            )
            existing = self.transactions.get_by_ref_key(ref_key)
            if existing is not None:
                logger.info(
                    f"Duplicate award ignored: user={user_id} "
                    f"ref={reference_type}:{reference_id}"
                )
                return AwardPointsResult(
                    status=AwardStatus.DUPLICATE,
                    transaction=self._to_tx(existing),
                    message="Already awarded for this reference",
                )

            rule = self.rules.get_active_rule(action_type)
            eligible = rule is None or rule.multiplier_eligible

            multiplier = DEFAULT_MULTIPLIER
            active = (
                self.multipliers.get_highest_applicable(action_type, now)
                if eligible
                else None
            )
            if active is not None:
                multiplier = Decimal(active.multiplier)

            awarded = apply_multiplier(points, multiplier)
            self._credit(account, awarded, now)
            transaction = self._append(
                account,
                TransactionType.EARN,
                awarded,
                now,
                description=description,
                rule_id=rule.id if rule is not None else None,
                action_type=action_type,
                reference_type=reference_type,
                reference_id=reference_id,
                ref_key=ref_key,
                multiplier=multiplier,
                expires_at=self._earn_expiry(now, awarded),
            )
            logger.info(
                f"Awarded {awarded} points to user {user_id} for "
                f"{reference_type}:{reference_id} (x{multiplier})"
            )
            return AwardPointsResult(
                status=AwardStatus.AWARDED,
                transaction=self._to_tx(transaction),
                message=f"Awarded {awarded} points",
            )

        return self._run_atomic("award_calculated_points", work)

    def award_bonus(
        self,
        user_id: uuid.UUID,
        points: int,
        description: str,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> PointTransactionSchema:
        """보너스 지급 (추천 보상 등) - 참조가 있으면 참조당 1회"""
        self._validate_positive(points)

        def work() -> PointTransactionSchema:
            now = self.clock()
            account = self._lock_account(user_id, now)
            ref_key = build_ref_key(
                user_id, TransactionType.BONUS, None, reference_type, reference_id
            )
            if ref_key:
                existing = self.transactions.get_by_ref_key(ref_key)
                if existing is not None:
                    logger.info(f"Duplicate bonus ignored: {ref_key}")
                    return self._to_tx(existing)

            self._credit(account, points, now)
            transaction = self._append(
                account,
                TransactionType.BONUS,
                points,
                now,
                description=description,
                reference_type=reference_type,
                reference_id=reference_id,
                ref_key=ref_key,
                expires_at=self._earn_expiry(now, points),
            )
            logger.info(f"Bonus {points} points to user {user_id}: {description}")
            return self._to_tx(transaction)

        return self._run_atomic("award_bonus", work)

    # ------------------------------------------------------------------
    # 교환 (redeem)
    # ------------------------------------------------------------------

    def _apply_redeem(
        self,
        account: UserPointsAccount,
        points: int,
        now: datetime,
        description: Optional[str],
        reference_type: Optional[str],
        reference_id: Optional[str],
        ref_key: Optional[str],
    ) -> PointTransaction:
        if points > account.available_points:
            logger.warning(
                f"Insufficient points for user {account.user_id}: "
                f"required={points}, available={account.available_points}"
            )
            raise InsufficientPointsError(
                required=points, available=account.available_points
            )

        account.available_points -= points
        account.total_points -= points
        account.redeemed_points += points
        return self._append(
            account,
            TransactionType.REDEEM,
            -points,
            now,
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
            ref_key=ref_key,
        )

    def redeem_points(
        self,
        user_id: uuid.UUID,
        points: int,
        description: Optional[str] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> PointTransactionSchema:
        """포인트 차감

        Raises:
            InvalidPointsAmountError: points <= 0
            UserPointsNotFoundError: 계정 없음
            InsufficientPointsError: 가용 잔액 부족 (잔액 변화 없음)
        """
        self._validate_positive(points)

        def work() -> PointTransactionSchema:
            now = self.clock()
            account = self._lock_existing_account(user_id)
            ref_key = build_ref_key(
                user_id, TransactionType.REDEEM, None, reference_type, reference_id
            )
            if ref_key:
                existing = self.transactions.get_by_ref_key(ref_key)
                if existing is not None:
                    logger.info(f"Duplicate redemption ignored: {ref_key}")
                    return self._to_tx(existing)

            transaction = self._apply_redeem(
                account, points, now, description, reference_type, reference_id, ref_key
            )
            logger.info(
                f"Redeemed {points} points from user {user_id} "
                f"(balance={account.available_points})"
            )
            return self._to_tx(transaction)

        return self._run_atomic("redeem_points", work)

    def create_redemption(
        self,
        user_id: uuid.UUID,
        points: int,
        phone_number: str,
        reward_reference: Optional[str] = None,
    ) -> PointRedemptionSchema:
        """교환 요청 기록 + 차감 거래를 하나의 단위로 생성 (상태: pending)"""
        self._validate_positive(points)

        def work() -> PointRedemptionSchema:
            now = self.clock()
            account = self._lock_existing_account(user_id)
            redemption = self.redemptions.add(
                PointRedemption(
                    user_id=user_id,
                    points_redeemed=points,
                    phone_number=phone_number,
                    reward_reference=reward_reference,
                    status=RedemptionStatus.PENDING.value,
                    created_at=now,
                    updated_at=now,
                )
            )
            transaction = self._apply_redeem(
                account,
                points,
                now,
                description=f"Redemption to {phone_number}",
                reference_type="redemption",
                reference_id=str(redemption.id),
                ref_key=build_ref_key(
                    user_id, TransactionType.REDEEM, None, "redemption", str(redemption.id)
                ),
            )
            redemption.transaction_id = transaction.id
            self.db.flush()
            logger.info(
                f"Redemption {redemption.id} created for user {user_id}: {points} points"
            )
            return PointRedemptionSchema.model_validate(redemption)

        return self._run_atomic("create_redemption", work)

    def update_redemption_status(
        self,
        redemption_id: int,
        status: RedemptionStatus,
        provider_reference: Optional[str] = None,
        message: Optional[str] = None,
    ) -> PointRedemptionSchema:
        """외부 지급 결과 반영 - 잔액은 변경하지 않음 (실패 시 환불은 adjust로 처리)"""

        def work() -> PointRedemptionSchema:
            redemption = self.redemptions.get_model_by_id(redemption_id)
            if redemption is None:
                raise RedemptionNotFoundError(redemption_id)
            redemption.status = status.value
            if provider_reference is not None:
                redemption.provider_reference = provider_reference
            if message is not None:
                redemption.status_message = message
            redemption.updated_at = self.clock()
            self.db.flush()
            logger.info(f"Redemption {redemption_id} status -> {status.value}")
            return PointRedemptionSchema.model_validate(redemption)

        return self._run_atomic("update_redemption_status", work)

    # ------------------------------------------------------------------
    # 보정 / 만료
    # ------------------------------------------------------------------

    def adjust_points(
        self, user_id: uuid.UUID, amount: int, reason: str
    ) -> PointTransactionSchema:
        """관리자 보정 - 양수는 lifetime에도 반영, 음수는 가용 잔액을 넘을 수 없음"""
        if not amount:
            raise InvalidPointsAmountError(
                "Adjustment amount cannot be zero", details={"amount": amount}
            )

        def work() -> PointTransactionSchema:
            now = self.clock()
            account = self._lock_account(user_id, now)
            if amount > 0:
                self._credit(account, amount, now)
            else:
                deduction = -amount
                if deduction > account.available_points:
                    logger.warning(
                        f"Negative adjustment exceeds balance for user {user_id}: "
                        f"required={deduction}, available={account.available_points}"
                    )
                    raise InsufficientPointsError(
                        required=deduction, available=account.available_points
                    )
                account.available_points -= deduction
                account.total_points -= deduction

            transaction = self._append(
                account, TransactionType.ADJUST, amount, now, description=reason
            )
            logger.info(
                f"Adjusted user {user_id} by {amount} points: {reason} "
                f"(balance={account.available_points})"
            )
            return self._to_tx(transaction)

        return self._run_atomic("adjust_points", work)

    def expire_points(
        self,
        user_id: uuid.UUID,
        points: int,
        reason: str,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> Optional[PointTransactionSchema]:
        """min(points, available) 만큼 만료 처리, 만료할 잔액이 없으면 None"""
        self._validate_positive(points)

        def work() -> Optional[PointTransactionSchema]:
            now = self.clock()
            account = self._lock_existing_account(user_id)
            ref_key = build_ref_key(
                user_id, TransactionType.EXPIRE, None, reference_type, reference_id
            )
            if ref_key:
                existing = self.transactions.get_by_ref_key(ref_key)
                if existing is not None:
                    logger.info(f"Duplicate expiry ignored: {ref_key}")
                    return self._to_tx(existing)

            expirable = min(points, account.available_points)
            if expirable <= 0:
                logger.info(f"Nothing to expire for user {user_id}")
                return None

            account.available_points -= expirable
            account.total_points -= expirable
            account.expired_points += expirable
            transaction = self._append(
                account,
                TransactionType.EXPIRE,
                -expirable,
                now,
                description=reason,
                reference_type=reference_type,
                reference_id=reference_id,
                ref_key=ref_key,
            )
            logger.info(
                f"Expired {expirable} points from user {user_id} "
                f"(requested={points}, balance={account.available_points})"
            )
            return self._to_tx(transaction)

        return self._run_atomic("expire_points", work)

    def expire_due_points(
        self, as_of: Optional[datetime] = None, limit: Optional[int] = None
    ) -> ExpireSweepResponse:
        """만료 시각이 지난 적립 거래를 찾아 거래별로 expire_points 실행

        각 만료는 원본 거래를 참조하므로 실패 후 재실행해도 이중 차감되지 않습니다.
        """
        as_of = as_of or self.clock()
        limit = limit or self.settings.EXPIRE_SWEEP_BATCH_SIZE
        sources = [
            (source.id, source.user_id, source.points)
            for source in self.transactions.find_expirable(as_of, limit)
        ]
        self.db.commit()

        expired: List[PointTransactionSchema] = []
        for source_id, user_id, points in sources:
            transaction = self.expire_points(
                user_id,
                points,
                reason=f"Points from transaction {source_id} expired",
                reference_type=EXPIRY_SOURCE_REFERENCE,
                reference_id=str(source_id),
            )
            if transaction is not None:
                expired.append(transaction)

        total = -sum(tx.points for tx in expired)
        logger.info(
            f"Expiry sweep as of {as_of.isoformat()}: "
            f"{len(sources)} candidates, {total} points expired"
        )
        return ExpireSweepResponse(
            processed=len(sources), expired_points=total, transactions=expired
        )

    # ------------------------------------------------------------------
    # 마일스톤
    # ------------------------------------------------------------------

    def _check_and_award_milestone(
        self, user_id: uuid.UUID, kind: MilestoneKind, metric_value: int
    ) -> Optional[PointTransactionSchema]:
        """아직 달성하지 않은 임계값 중 metric 이하인 가장 낮은 것 하나만 지급"""
        if metric_value is None or metric_value < 0:
            raise InvalidPointsAmountError(
                "Metric value must not be negative", details={"metric_value": metric_value}
            )

        def next_threshold(achieved):
            for threshold in self.milestone_thresholds.list_active(kind):
                if threshold.threshold > metric_value:
                    return None
                if threshold.threshold not in achieved:
                    return threshold
            return None

        def work() -> Optional[PointTransactionSchema]:
            if next_threshold(self.user_milestones.get_achieved_thresholds(user_id, kind)) is None:
                return None

            now = self.clock()
            account = self._lock_account(user_id, now)
            # 잠금 이후 다시 판정
            threshold = next_threshold(
                self.user_milestones.get_achieved_thresholds(user_id, kind)
            )
            if threshold is None:
                return None

            reference_id = str(threshold.threshold)
            self._credit(account, threshold.points_value, now)
            transaction = self._append(
                account,
                TransactionType.BONUS,
                threshold.points_value,
                now,
                description=f"{kind.value} milestone reached: {threshold.threshold}",
                reference_type=kind.reference_type,
                reference_id=reference_id,
                ref_key=build_ref_key(
                    user_id, TransactionType.BONUS, None, kind.reference_type, reference_id
                ),
                expires_at=self._earn_expiry(now, threshold.points_value),
            )
            self.user_milestones.add(
                UserMilestone(
                    user_id=user_id,
                    kind=kind.value,
                    threshold=threshold.threshold,
                    transaction_id=transaction.id,
                    achieved_at=now,
                )
            )
            logger.info(
                f"Milestone {kind.value}={threshold.threshold} awarded to user {user_id}: "
                f"{threshold.points_value} points"
            )
            return self._to_tx(transaction)

        return self._run_atomic(f"milestone_{kind.value}", work)

    def check_and_award_streak_milestone(
        self, user_id: uuid.UUID, current_streak: Optional[int] = None
    ) -> MilestoneCheckResponse:
        """스트릭 마일스톤 - current_streak 생략 시 저장된 값 사용"""
        if current_streak is None:
            account = self.accounts.get_by_user_id(user_id)
            current_streak = account.current_streak if account else 0
        return self._milestone_response(
            user_id,
            MilestoneKind.STREAK,
            self._check_and_award_milestone(user_id, MilestoneKind.STREAK, current_streak),
        )

    def check_and_award_review_milestone(
        self, user_id: uuid.UUID, review_count: int
    ) -> MilestoneCheckResponse:
        return self._milestone_response(
            user_id,
            MilestoneKind.REVIEW_COUNT,
            self._check_and_award_milestone(
                user_id, MilestoneKind.REVIEW_COUNT, review_count
            ),
        )

    def check_and_award_helpful_vote_milestone(
        self, user_id: uuid.UUID, helpful_votes: int
    ) -> MilestoneCheckResponse:
        return self._milestone_response(
            user_id,
            MilestoneKind.HELPFUL_VOTES,
            self._check_and_award_milestone(
                user_id, MilestoneKind.HELPFUL_VOTES, helpful_votes
            ),
        )

    @staticmethod
    def _milestone_response(
        user_id: uuid.UUID,
        kind: MilestoneKind,
        transaction: Optional[PointTransactionSchema],
    ) -> MilestoneCheckResponse:
        return MilestoneCheckResponse(
            user_id=user_id,
            kind=kind,
            awarded=transaction is not None,
            threshold=int(transaction.reference_id) if transaction else None,
            transaction=transaction,
        )

    # ------------------------------------------------------------------
    # 계정 / 스트릭 / 정리
    # ------------------------------------------------------------------

    def initialize_user_points(self, user_id: uuid.UUID) -> UserPointsAccountSchema:
        """0 잔액 계정 생성 (이미 있으면 그대로 반환)"""

        def work() -> UserPointsAccountSchema:
            account = self._lock_account(user_id, self.clock())
            return UserPointsAccountSchema.model_validate(account)

        return self._run_atomic("initialize_user_points", work)

    def update_login_streak(
        self, user_id: uuid.UUID, activity_date: Optional[date] = None
    ) -> UserPointsAccountSchema:
        """연속 활동 갱신

        - 다음 날: +1
        - 같은 날 또는 과거 날짜: 변화 없음
        - 하루 이상 공백: 1로 초기화
        """

        def work() -> UserPointsAccountSchema:
            now = self.clock()
            day = activity_date or now.date()
            account = self._lock_account(user_id, now)
            last = account.last_activity_date

            if last is None or day > last + timedelta(days=1):
                account.current_streak = 1
            elif day == last + timedelta(days=1):
                account.current_streak += 1

            if last is None or day > last:
                account.last_activity_date = day
                account.updated_at = now
            account.longest_streak = max(account.longest_streak, account.current_streak)
            self.db.flush()
            logger.info(
                f"Streak for user {user_id}: current={account.current_streak}, "
                f"longest={account.longest_streak}"
            )
            return UserPointsAccountSchema.model_validate(account)

        return self._run_atomic("update_login_streak", work)

    def purge_daily_counters(
        self, retention_days: Optional[int] = None
    ) -> PurgeDailyCountersResponse:
        """보존 기간보다 오래된 일별 카운터 삭제"""
        days = (
            retention_days
            if retention_days is not None
            else self.settings.DAILY_POINTS_RETENTION_DAYS
        )
        if days < 1:
            raise InvalidPointsAmountError(
                "Retention must be at least 1 day", details={"retention_days": days}
            )
        cutoff = self.clock().date() - timedelta(days=days)

        deleted = self._run_atomic(
            "purge_daily_counters", lambda: self.daily_points.purge_before(cutoff)
        )
        logger.info(f"Purged {deleted} daily point counters before {cutoff}")
        return PurgeDailyCountersResponse(deleted_count=deleted, cutoff_date=cutoff)
