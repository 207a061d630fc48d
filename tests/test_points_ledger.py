from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

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
    PointTransaction,
    RedemptionStatus,
    TransactionType,
)
from userapi.repositories.point_transaction_repository import (
    EXPIRY_SOURCE_REFERENCE,
    PointTransactionRepository,
)
from userapi.repositories.points_repository import PointsAccountRepository
from userapi.schemas.points import AwardStatus, PointTransactionSchema
from userapi.services.points_ledger import PointsLedger, build_ref_key


def _account(db, user_id):
    return PointsAccountRepository(db).get_by_user_id(user_id)


def _history(db, user_id):
    entries, _ = PointTransactionRepository(db).get_user_history(user_id, limit=50)
    return entries


class TestBasicFlow:
    """적립 -> 차감 기본 흐름"""

    def test_initialize_award_redeem(self, db, ledger, make_rule, user_id):
        # Arrange
        make_rule("review_submitted", 10)

        # Act
        account = ledger.initialize_user_points(user_id)
        result = ledger.award_points(
            user_id, "review_submitted", reference_type="review", reference_id="r-1"
        )
        redeemed = ledger.redeem_points(user_id, 5, description="Coffee voucher")

        # Assert
        assert account.available_points == 0
        assert account.lifetime_points == 0
        assert result.status == AwardStatus.AWARDED
        assert result.transaction.points == 10
        assert result.transaction.balance_after == 10
        assert redeemed.points == -5
        assert redeemed.balance_after == 5

        history = _history(db, user_id)
        assert [tx.transaction_type for tx in history] == [
            TransactionType.REDEEM,
            TransactionType.EARN,
        ]
        assert [tx.balance_after for tx in history] == [5, 10]

        snapshot = _account(db, user_id)
        assert snapshot.available_points == 5
        assert snapshot.total_points == 5
        assert snapshot.lifetime_points == 10
        assert snapshot.redeemed_points == 5

    def test_initialize_is_idempotent(self, db, ledger, make_rule, user_id):
        make_rule("daily_login", 3)
        ledger.initialize_user_points(user_id)
        ledger.award_points(user_id, "daily_login")

        account = ledger.initialize_user_points(user_id)

        assert account.available_points == 3

    def test_first_award_creates_account(self, db, ledger, make_rule, user_id):
        make_rule("photo_uploaded", 2)

        ledger.award_points(user_id, "photo_uploaded")

        assert _account(db, user_id).available_points == 2


class TestAwardRules:
    """일일 한도 / 쿨다운 / 중복 / 누적 한도"""

    def test_daily_cap(self, db, ledger, clock, make_rule, user_id):
        make_rule("helpful_vote", 5, max_daily_occurrences=3)

        results = [ledger.award_points(user_id, "helpful_vote") for _ in range(4)]

        assert [r.status for r in results] == [
            AwardStatus.AWARDED,
            AwardStatus.AWARDED,
            AwardStatus.AWARDED,
            AwardStatus.CAPPED,
        ]
        assert results[3].transaction is None
        assert _account(db, user_id).available_points == 15

        # 다음 날(UTC)에는 다시 적립 가능
        clock.advance(days=1)
        assert ledger.award_points(user_id, "helpful_vote").status == AwardStatus.AWARDED

    def test_cooldown(self, db, ledger, clock, make_rule, user_id):
        make_rule("business_check_in", 5, cooldown_minutes=60)
        assert ledger.award_points(user_id, "business_check_in").awarded

        clock.advance(minutes=10)
        blocked = ledger.award_points(user_id, "business_check_in")

        assert blocked.status == AwardStatus.COOLDOWN
        assert blocked.retry_after_seconds == 50 * 60 + 1
        assert _account(db, user_id).available_points == 5

        clock.advance(minutes=51)
        assert ledger.award_points(user_id, "business_check_in").awarded
        assert _account(db, user_id).available_points == 10

    def test_cooldown_spans_midnight(self, ledger, clock, make_rule, user_id):
        make_rule("business_check_in", 5, cooldown_minutes=60)
        clock.advance(hours=11, minutes=50)  # 23:50 UTC
        ledger.award_points(user_id, "business_check_in")

        clock.advance(minutes=20)  # 다음 날 00:10
        result = ledger.award_points(user_id, "business_check_in")

        assert result.status == AwardStatus.COOLDOWN

    def test_duplicate_reference(self, db, ledger, make_rule, user_id):
        make_rule("review_submitted", 10)

        first = ledger.award_points(
            user_id, "review_submitted", reference_type="review", reference_id="r-1"
        )
        second = ledger.award_points(
            user_id, "review_submitted", reference_type="review", reference_id="r-1"
        )

        assert first.status == AwardStatus.AWARDED
        assert second.status == AwardStatus.DUPLICATE
        assert second.transaction.id == first.transaction.id
        assert _account(db, user_id).available_points == 10
        assert len(_history(db, user_id)) == 1

    def test_lifetime_cap_rejected(self, db, ledger, make_rule, user_id):
        make_rule("profile_completed", 50, max_total_occurrences=1)

        first = ledger.award_points(user_id, "profile_completed")
        second = ledger.award_points(user_id, "profile_completed")

        assert first.awarded
        assert second.status == AwardStatus.REJECTED
        assert _account(db, user_id).available_points == 50

    def test_unknown_rule(self, ledger, user_id):
        with pytest.raises(PointRuleNotFoundError):
            ledger.award_points(user_id, "unknown_action")

    def test_inactive_rule(self, ledger, make_rule, user_id):
        make_rule("retired_action", 10, is_active=False)

        with pytest.raises(PointRuleNotFoundError):
            ledger.award_points(user_id, "retired_action")

    def test_malformed_action_type(self, ledger, user_id):
        with pytest.raises(InvalidPointsAmountError):
            ledger.award_points(user_id, "Review Submitted")


class TestMultipliers:
    def test_highest_multiplier_wins(self, ledger, make_rule, make_multiplier, user_id):
        make_rule("review_submitted", 10)
        make_multiplier("2.0")
        make_multiplier("1.5")

        result = ledger.award_points(user_id, "review_submitted")

        assert result.transaction.points == 20
        assert result.transaction.multiplier == Decimal("2.00")

    def test_round_half_up(self, ledger, make_rule, make_multiplier, user_id):
        make_rule("photo_uploaded", 5)
        make_multiplier("1.5")

        result = ledger.award_points(user_id, "photo_uploaded")

        assert result.transaction.points == 8

    def test_ineligible_rule_ignores_multiplier(
        self, ledger, make_rule, make_multiplier, user_id
    ):
        make_rule("daily_login", 10, multiplier_eligible=False)
        make_multiplier("3.0")

        result = ledger.award_points(user_id, "daily_login")

        assert result.transaction.points == 10
        assert result.transaction.multiplier == Decimal("1.00")

    def test_action_scoped_multiplier(self, ledger, make_rule, make_multiplier, user_id):
        make_rule("review_submitted", 10)
        make_rule("photo_uploaded", 10)
        make_multiplier("3.0", action_types=["photo_uploaded"])

        review = ledger.award_points(user_id, "review_submitted")
        photo = ledger.award_points(user_id, "photo_uploaded")

        assert review.transaction.points == 10
        assert photo.transaction.points == 30

    def test_expired_window_not_applied(
        self, ledger, clock, make_rule, make_multiplier, user_id
    ):
        make_rule("review_submitted", 10)
        make_multiplier("2.0")

        clock.advance(days=2)
        result = ledger.award_points(user_id, "review_submitted")

        assert result.transaction.points == 10


class TestRedeemAndAdjust:
    def test_insufficient_points(self, db, ledger, user_id):
        ledger.award_bonus(user_id, 50, "Welcome bonus")

        with pytest.raises(InsufficientPointsError) as exc_info:
            ledger.redeem_points(user_id, 100)

        assert exc_info.value.required == 100
        assert exc_info.value.available == 50
        assert _account(db, user_id).available_points == 50
        assert len(_history(db, user_id)) == 1

    def test_redeem_without_account(self, ledger, user_id):
        with pytest.raises(UserPointsNotFoundError):
            ledger.redeem_points(user_id, 10)

    def test_redeem_requires_positive_amount(self, ledger, user_id):
        with pytest.raises(InvalidPointsAmountError):
            ledger.redeem_points(user_id, 0)

    def test_duplicate_redeem_reference(self, db, ledger, user_id):
        ledger.award_bonus(user_id, 50, "Welcome bonus")

        first = ledger.redeem_points(user_id, 20, reference_type="order", reference_id="o-1")
        second = ledger.redeem_points(user_id, 20, reference_type="order", reference_id="o-1")

        assert second.id == first.id
        assert _account(db, user_id).available_points == 30

    def test_adjust(self, db, ledger, user_id):
        ledger.award_bonus(user_id, 20, "Welcome bonus")

        with pytest.raises(InsufficientPointsError):
            ledger.adjust_points(user_id, -30, "Fraud reversal")
        assert _account(db, user_id).available_points == 20

        negative = ledger.adjust_points(user_id, -5, "Correction")
        positive = ledger.adjust_points(user_id, 10, "Goodwill")

        assert negative.points == -5
        assert positive.balance_after == 25
        snapshot = _account(db, user_id)
        assert snapshot.available_points == 25
        assert snapshot.total_points == 25
        assert snapshot.lifetime_points == 30

    def test_adjust_zero(self, ledger, user_id):
        with pytest.raises(InvalidPointsAmountError):
            ledger.adjust_points(user_id, 0, "No-op")


class TestExpiry:
    def test_expire_clamps_to_available(self, db, ledger, user_id):
        ledger.award_bonus(user_id, 30, "Promo")

        expired = ledger.expire_points(user_id, 50, "Yearly expiry")
        nothing = ledger.expire_points(user_id, 10, "Yearly expiry")

        assert expired.points == -30
        assert expired.balance_after == 0
        assert nothing is None
        snapshot = _account(db, user_id)
        assert snapshot.available_points == 0
        assert snapshot.expired_points == 30

    def test_expire_without_account(self, ledger, user_id):
        with pytest.raises(UserPointsNotFoundError):
            ledger.expire_points(user_id, 10, "Yearly expiry")

    def test_sweep_expires_each_source_once(self, db, clock, user_id):
        settings = Settings(DATABASE_URL="sqlite+pysqlite:///:memory:", POINTS_EXPIRY_DAYS=30)
        ledger = PointsLedger(db, settings, clock=clock)
        source = ledger.award_bonus(user_id, 40, "Promo")
        assert source.expires_at is not None

        clock.advance(days=31)
        ledger.award_bonus(user_id, 5, "Later promo")
        first = ledger.expire_due_points()
        second = ledger.expire_due_points()

        assert first.processed == 1
        assert first.expired_points == 40
        assert first.transactions[0].reference_type == EXPIRY_SOURCE_REFERENCE
        assert first.transactions[0].reference_id == str(source.id)
        assert second.processed == 0
        snapshot = _account(db, user_id)
        assert snapshot.available_points == 5
        assert snapshot.expired_points == 40


class TestMilestones:
    def test_awarded_once(self, db, ledger, make_threshold, user_id):
        make_threshold(MilestoneKind.REVIEW_COUNT, 25, 20)

        first = ledger.check_and_award_review_milestone(user_id, 30)
        second = ledger.check_and_award_review_milestone(user_id, 30)

        assert first.awarded
        assert first.threshold == 25
        assert first.transaction.transaction_type == TransactionType.BONUS
        assert first.transaction.reference_type == "milestone_review_count"
        assert not second.awarded
        assert _account(db, user_id).available_points == 20

    def test_one_threshold_per_call(self, db, ledger, make_threshold, user_id):
        make_threshold(MilestoneKind.REVIEW_COUNT, 25, 20)
        make_threshold(MilestoneKind.REVIEW_COUNT, 50, 50)

        results = [ledger.check_and_award_review_milestone(user_id, 60) for _ in range(3)]

        assert [r.threshold for r in results] == [25, 50, None]
        assert _account(db, user_id).available_points == 70

    def test_below_threshold(self, db, ledger, make_threshold, user_id):
        make_threshold(MilestoneKind.HELPFUL_VOTES, 100, 50)

        result = ledger.check_and_award_helpful_vote_milestone(user_id, 99)

        assert not result.awarded
        assert _account(db, user_id) is None

    def test_negative_metric(self, ledger, user_id):
        with pytest.raises(InvalidPointsAmountError):
            ledger.check_and_award_review_milestone(user_id, -1)

    def test_streak_milestone_uses_stored_streak(self, ledger, make_threshold, user_id):
        make_threshold(MilestoneKind.STREAK, 3, 100)
        for day in (15, 16, 17):
            ledger.update_login_streak(user_id, date(2024, 1, day))

        result = ledger.check_and_award_streak_milestone(user_id)

        assert result.awarded
        assert result.threshold == 3
        assert result.transaction.points == 100


class TestStreak:
    def test_streak_progression(self, ledger, user_id):
        assert ledger.update_login_streak(user_id, date(2024, 1, 15)).current_streak == 1
        assert ledger.update_login_streak(user_id, date(2024, 1, 16)).current_streak == 2
        # 같은 날 / 과거 날짜는 변화 없음
        assert ledger.update_login_streak(user_id, date(2024, 1, 16)).current_streak == 2
        same = ledger.update_login_streak(user_id, date(2024, 1, 14))
        assert same.current_streak == 2
        assert same.last_activity_date == date(2024, 1, 16)

        reset = ledger.update_login_streak(user_id, date(2024, 1, 20))

        assert reset.current_streak == 1
        assert reset.longest_streak == 2

    def test_defaults_to_clock_date(self, ledger, clock, user_id):
        account = ledger.update_login_streak(user_id)

        assert account.last_activity_date == clock.now.date()


class TestRedemptions:
    def test_create_and_complete(self, db, ledger, user_id):
        ledger.award_bonus(user_id, 100, "Welcome bonus")

        redemption = ledger.create_redemption(user_id, 40, "+2348012345678", "airtime-100")
        completed = ledger.update_redemption_status(
            redemption.id, RedemptionStatus.COMPLETED, provider_reference="prov-1"
        )

        assert redemption.status == RedemptionStatus.PENDING
        assert redemption.transaction_id is not None
        assert completed.status == RedemptionStatus.COMPLETED
        assert completed.provider_reference == "prov-1"
        assert _account(db, user_id).available_points == 60
        assert _history(db, user_id)[0].reference_id == str(redemption.id)

    def test_insufficient_points_leaves_no_record(self, db, ledger, user_id):
        ledger.award_bonus(user_id, 10, "Welcome bonus")

        with pytest.raises(InsufficientPointsError):
            ledger.create_redemption(user_id, 40, "08012345678")

        assert ledger.redemptions.get_user_redemptions(user_id, limit=10)[1] == 0

    def test_unknown_redemption(self, ledger):
        with pytest.raises(RedemptionNotFoundError):
            ledger.update_redemption_status(999, RedemptionStatus.FAILED)


class TestMaintenance:
    def test_purge_daily_counters(self, ledger, clock, make_rule, user_id):
        make_rule("daily_login", 1, max_daily_occurrences=1)
        ledger.award_points(user_id, "daily_login")

        clock.advance(days=10)
        result = ledger.purge_daily_counters()

        assert result.deleted_count == 1
        assert result.cutoff_date == date(2024, 1, 18)

    def test_purge_requires_positive_retention(self, ledger):
        with pytest.raises(InvalidPointsAmountError):
            ledger.purge_daily_counters(retention_days=0)


class _PgError(Exception):
    def __init__(self, message: str, pgcode: str):
        super().__init__(message)
        self.pgcode = pgcode


def _unique_violation():
    return IntegrityError(
        "INSERT", {}, Exception("UNIQUE constraint failed: point_transactions.ref_key")
    )


class TestAtomicity:
    def test_retries_integrity_conflicts(self, ledger):
        attempts = []

        def work():
            attempts.append(1)
            if len(attempts) < 3:
                raise _unique_violation()
            return "done"

        assert ledger._run_atomic("test_op", work) == "done"
        assert len(attempts) == 3

    def test_retries_postgres_unique_violation(self, ledger):
        attempts = []

        def work():
            attempts.append(1)
            if len(attempts) == 1:
                raise IntegrityError(
                    "INSERT", {}, _PgError("duplicate key value", pgcode="23505")
                )
            return "done"

        assert ledger._run_atomic("test_op", work) == "done"
        assert len(attempts) == 2

    def test_retry_budget_exhausted(self, ledger):
        def work():
            raise _unique_violation()

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            ledger._run_atomic("test_op", work)

        assert exc_info.value.status_code == 409
        assert exc_info.value.details["attempts"] == 3

    @pytest.mark.parametrize(
        "orig",
        [
            Exception("CHECK constraint failed: ck_user_points_available"),
            Exception("NOT NULL constraint failed: point_transactions.balance_after"),
            _PgError("new row violates check constraint", pgcode="23514"),
        ],
    )
    def test_constraint_violation_is_not_retried(self, ledger, orig):
        attempts = []

        def work():
            attempts.append(1)
            raise IntegrityError("UPDATE", {}, orig)

        with pytest.raises(IntegrityError) as exc_info:
            ledger._run_atomic("test_op", work)

        assert exc_info.value.orig is orig
        assert len(attempts) == 1

    def test_non_retryable_operational_error(self, ledger):
        def work():
            raise OperationalError("SELECT", {}, Exception("connection lost"))

        with pytest.raises(OperationalError):
            ledger._run_atomic("test_op", work)


class TestTransactionSerialization:
    """거래 항목 JSON 직렬화 후 복원 시 모든 필드 보존"""

    def test_earn_redeem_expire_survive_json(
        self, db, clock, make_rule, make_multiplier, user_id
    ):
        settings = Settings(DATABASE_URL="sqlite+pysqlite:///:memory:", POINTS_EXPIRY_DAYS=30)
        ledger = PointsLedger(db, settings, clock=clock)
        make_rule("review_submitted", 10)
        make_multiplier("1.25")

        earned = ledger.award_points(
            user_id, "review_submitted", reference_type="review", reference_id="r-1"
        ).transaction
        redeemed = ledger.redeem_points(user_id, 4, "Airtime")
        expired = ledger.expire_points(user_id, 3, "Yearly expiry")

        for tx in (earned, redeemed, expired):
            restored = PointTransactionSchema.model_validate_json(tx.model_dump_json())
            assert restored == tx
            assert restored.created_at.tzinfo is not None

        assert earned.points == 13
        assert earned.multiplier == Decimal("1.25")
        assert earned.expires_at is not None
        assert earned.expires_at.tzinfo is not None
        assert redeemed.points == -4
        assert expired.points == -3
        assert expired.balance_after == 6


def test_build_ref_key(user_id):
    assert build_ref_key(user_id, TransactionType.EARN, "review_submitted", None, None) is None
    assert (
        build_ref_key(user_id, TransactionType.EARN, "review_submitted", "review", "r-1")
        == f"{user_id}:earn:review_submitted:review:r-1"
    )
    assert build_ref_key(user_id, TransactionType.BONUS, None, None, "7") == (
        f"{user_id}:bonus:-:-:7"
    )


def test_ref_key_fits_column_at_max_field_lengths(db, ledger, make_rule, user_id):
    action_type = "a" + "b" * 63
    reference_type = "r" * 50
    reference_id = "x" * 100
    make_rule(action_type, 1)

    result = ledger.award_points(
        user_id, action_type, reference_type=reference_type, reference_id=reference_id
    )

    assert result.status == AwardStatus.AWARDED
    stored = db.get(PointTransaction, result.transaction.id)
    assert len(stored.ref_key) <= PointTransaction.__table__.c.ref_key.type.length
    for tx_type in TransactionType:
        key = build_ref_key(user_id, tx_type, action_type, reference_type, reference_id)
        assert len(key) <= PointTransaction.__table__.c.ref_key.type.length
