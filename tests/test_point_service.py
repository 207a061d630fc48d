import asyncio
import uuid
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest

from userapi.core.exceptions import ValidationError
from userapi.models.points import MilestoneKind, PointTier, TransactionType
from userapi.schemas.points import AwardStatus, CalculateReviewPointsRequest
from userapi.services.point_service import (
    REVIEW_ACTION_TYPE,
    PointService,
    calculate_body_points,
)


@pytest.fixture
def review_client():
    client = Mock()
    client.get_approved_review_count = AsyncMock(return_value=0)
    client.get_total_helpful_votes = AsyncMock(return_value=0)
    return client


@pytest.fixture
def point_service(db, settings, ledger, review_client):
    return PointService(db, settings, ledger, review_client)


def _review_request(user_id, **kwargs):
    return CalculateReviewPointsRequest(
        user_id=user_id, review_id=kwargs.pop("review_id", uuid.uuid4()), **kwargs
    )


class TestReviewPoints:
    """리뷰 포인트 계산"""

    @pytest.mark.parametrize(
        "length,verified,expected",
        [
            (0, False, Decimal("0")),
            (50, False, Decimal("2.0")),
            (51, False, Decimal("3.0")),
            (150, True, Decimal("4.5")),
            (500, False, Decimal("5.0")),
            (501, True, Decimal("7.5")),
        ],
    )
    def test_body_point_bands(self, length, verified, expected):
        assert calculate_body_points(length, verified) == expected

    def test_regular_user(self, point_service, user_id):
        result = point_service.calculate_review_points(
            _review_request(user_id, body_length=100, image_count=2)
        )

        assert result.total_points == 9
        assert result.breakdown == "Body: 3.0, Images: 6.0"
        assert result.verified_bonus is False

    def test_verified_user_caps_images(self, point_service, user_id):
        result = point_service.calculate_review_points(
            _review_request(user_id, body_length=600, image_count=5, is_verified_user=True)
        )

        assert result.image_points == Decimal("13.5")
        assert result.total_points == 21
        assert result.breakdown.endswith("(Verified bonus applied)")

    def test_rounds_half_up(self, point_service, user_id):
        result = point_service.calculate_review_points(
            _review_request(user_id, body_length=40, image_count=1, is_verified_user=True)
        )

        assert result.raw_points == Decimal("7.5")
        assert result.total_points == 8

    def test_award_once_per_review(self, db, point_service, user_id):
        request = _review_request(user_id, body_length=100, image_count=2)

        first = point_service.award_review_points(request)
        second = point_service.award_review_points(request)

        assert first.status == AwardStatus.AWARDED
        assert first.transaction.action_type == REVIEW_ACTION_TYPE
        assert first.transaction.reference_id == str(request.review_id)
        assert second.status == AwardStatus.DUPLICATE
        assert point_service.get_user_points(user_id).available_points == 9

    def test_award_applies_active_multiplier(self, point_service, make_multiplier, user_id):
        make_multiplier("2.0")

        result = point_service.award_review_points(
            _review_request(user_id, body_length=100, image_count=2)
        )

        assert result.transaction.points == 18
        assert result.transaction.multiplier == Decimal("2.00")

    def test_award_honours_ineligible_review_rule(
        self, point_service, make_rule, make_multiplier, user_id
    ):
        rule = make_rule(REVIEW_ACTION_TYPE, 0, multiplier_eligible=False)
        make_multiplier("2.0")

        result = point_service.award_review_points(
            _review_request(user_id, body_length=100, image_count=2)
        )

        assert result.transaction.points == 9
        assert result.transaction.multiplier == Decimal("1.00")
        assert result.transaction.rule_id == rule.id


class TestQueries:
    def test_points_for_unknown_user(self, db, point_service, user_id):
        points = point_service.get_user_points(user_id)

        assert points.total_points == 0
        assert points.tier == PointTier.BRONZE
        assert points.rank is None
        assert point_service.account_repo.get_by_user_id(user_id) is None

    def test_points_with_rank_and_tier(self, settings, ledger, point_service, user_id):
        ledger.award_bonus(uuid.uuid4(), 5000, "Top user")
        ledger.award_bonus(user_id, settings.TIER_SILVER_MIN, "Promo")

        points = point_service.get_user_points(user_id)

        assert points.rank == 2
        assert points.tier == PointTier.SILVER

    def test_history_pagination_and_filter(self, ledger, point_service, user_id):
        for _ in range(3):
            ledger.award_bonus(user_id, 10, "Promo")
        ledger.redeem_points(user_id, 5)

        page = point_service.get_points_history(user_id, limit=2, offset=0)
        redeems = point_service.get_points_history(
            user_id, limit=10, transaction_type=TransactionType.REDEEM
        )

        assert page.total_count == 4
        assert page.has_next is True
        assert page.available_points == 25
        assert page.transactions[0].transaction_type == TransactionType.REDEEM
        assert redeems.total_count == 1

    def test_history_limit_is_clamped(self, settings, point_service, user_id):
        point_service.transaction_repo = Mock()
        point_service.transaction_repo.get_user_history.return_value = ([], 0)

        point_service.get_points_history(user_id, limit=1000)

        point_service.transaction_repo.get_user_history.assert_called_once_with(
            user_id,
            limit=settings.POINTS_HISTORY_MAX_LIMIT,
            offset=0,
            transaction_type=None,
        )

    def test_history_rejects_bad_paging(self, point_service, user_id):
        with pytest.raises(ValidationError):
            point_service.get_points_history(user_id, limit=0)
        with pytest.raises(ValidationError):
            point_service.get_points_history(user_id, offset=-1)

    def test_date_range_is_inclusive(self, ledger, clock, point_service, user_id):
        ledger.award_bonus(user_id, 30, "Day one")  # 2024-01-15
        clock.advance(days=1)
        ledger.redeem_points(user_id, 10)  # 2024-01-16
        clock.advance(days=1)
        ledger.award_bonus(user_id, 7, "Day three")  # 2024-01-17

        result = point_service.get_transactions_by_date_range(
            user_id, date(2024, 1, 15), date(2024, 1, 16)
        )

        assert result.count == 2
        assert result.total_points_earned == 30
        assert result.total_points_spent == 10

    def test_date_range_rejects_reversed_dates(self, point_service, user_id):
        with pytest.raises(ValidationError):
            point_service.get_transactions_by_date_range(
                user_id, date(2024, 1, 16), date(2024, 1, 15)
            )


class TestMilestoneFlows:
    def test_review_milestone_fetches_count(
        self, point_service, review_client, make_threshold, user_id
    ):
        make_threshold(MilestoneKind.REVIEW_COUNT, 25, 20)
        review_client.get_approved_review_count.return_value = 26

        result = asyncio.run(point_service.check_review_milestone(user_id))

        assert result.awarded
        review_client.get_approved_review_count.assert_awaited_once_with(user_id)
        assert [m.threshold for m in point_service.get_user_milestones(user_id)] == [25]

    def test_explicit_metric_skips_review_service(
        self, point_service, review_client, make_threshold, user_id
    ):
        make_threshold(MilestoneKind.HELPFUL_VOTES, 100, 50)

        result = asyncio.run(point_service.check_helpful_vote_milestone(user_id, 150))

        assert result.awarded
        review_client.get_total_helpful_votes.assert_not_awaited()


class TestIntegrity:
    def test_consistent_ledger(self, ledger, make_rule, point_service, user_id):
        make_rule("review_submitted", 10)
        ledger.award_points(user_id, "review_submitted")
        ledger.award_bonus(user_id, 20, "Promo")
        ledger.redeem_points(user_id, 5)
        ledger.adjust_points(user_id, -3, "Correction")
        ledger.adjust_points(user_id, 4, "Goodwill")
        ledger.expire_points(user_id, 2, "Expiry")

        report = point_service.verify_user_integrity(user_id)

        assert report.status == "OK"
        assert report.ledger_sum == 24
        assert report.account_available == 24
        assert report.last_balance_after == 24
        assert report.entry_count == 6
        assert report.mismatches == []

    def test_detects_tampered_snapshot(self, db, ledger, point_service, user_id):
        ledger.award_bonus(user_id, 20, "Promo")
        account = ledger.accounts.get_account_for_update(user_id)
        account.available_points = 99
        account.total_points = 99
        db.commit()

        report = point_service.verify_user_integrity(user_id)

        assert report.status == "MISMATCH"
        assert any("ledger sum" in m for m in report.mismatches)
