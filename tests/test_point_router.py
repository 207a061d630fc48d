import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from userapi.config import settings
from userapi.core.auth_middleware import get_current_user
from userapi.core.exceptions import InsufficientPointsError
from userapi.main import create_app
from userapi.models.points import MilestoneKind, TransactionType
from userapi.schemas.points import (
    AwardPointsResult,
    AwardStatus,
    MilestoneCheckResponse,
    PointRuleSchema,
    PointTransactionSchema,
    UserPointsResponse,
)
from userapi.schemas.user import CurrentUser, UserRole


@pytest.fixture
def app():
    app = create_app()
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """테스트 클라이언트 픽스처"""
    return TestClient(app)


@pytest.fixture
def login(app):
    """get_current_user를 주어진 역할의 사용자로 대체"""

    def _login(*roles: UserRole) -> CurrentUser:
        current = CurrentUser(
            user_id=uuid.uuid4(),
            email="test@example.com",
            roles=list(roles) or [UserRole.USER],
        )
        app.dependency_overrides[get_current_user] = lambda: current
        return current

    return _login


@pytest.fixture
def point_service(app):
    service = Mock()
    with app.container.services.point_service.override(service):
        yield service


@pytest.fixture
def ledger(app):
    ledger = Mock()
    with app.container.services.points_ledger.override(ledger):
        yield ledger


@pytest.fixture
def rule_service(app):
    service = Mock()
    with app.container.services.point_rule_service.override(service):
        yield service


def _transaction(user_id, points, balance_after, tx_type=TransactionType.EARN):
    return PointTransactionSchema(
        id=1,
        user_id=user_id,
        transaction_type=tx_type,
        points=points,
        balance_after=balance_after,
        created_at=datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc),
    )


class TestAuthentication:
    def test_missing_token(self, client):
        response = client.get("/api/v1/points/me")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_001"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_invalid_token(self, client):
        response = client.get(
            "/api/v1/points/me", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401

    def test_valid_token(self, client, point_service):
        user_id = uuid.uuid4()
        token = jwt.encode(
            {"sub": str(user_id), "roles": ["user"]},
            settings.JWT_SECRET_KEY,
            algorithm=settings.JWT_ALGORITHM,
        )
        point_service.get_user_points.return_value = UserPointsResponse(
            user_id=user_id, total_points=10, available_points=10, rank=1
        )

        response = client.get(
            "/api/v1/points/me", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 200
        assert response.json()["available_points"] == 10
        point_service.get_user_points.assert_called_once_with(user_id)


class TestUserRoutes:
    def test_my_points_for_new_user(self, client, login, point_service):
        current = login()
        point_service.get_user_points.return_value = UserPointsResponse(
            user_id=current.user_id
        )

        response = client.get("/api/v1/points/me")

        assert response.status_code == 200
        data = response.json()
        assert data["total_points"] == 0
        assert data["tier"] == "bronze"
        assert data["rank"] is None

    def test_history_limit_validation(self, client, login, point_service):
        login()

        response = client.get("/api/v1/points/me/history?limit=1000")

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_001"

    def test_other_user_forbidden(self, client, login, point_service):
        login()

        response = client.get(f"/api/v1/points/users/{uuid.uuid4()}")

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "AUTH_002"
        point_service.get_user_points.assert_not_called()

    def test_support_can_read_other_user(self, client, login, point_service):
        login(UserRole.SUPPORT)
        other = uuid.uuid4()
        point_service.get_user_points.return_value = UserPointsResponse(user_id=other)

        response = client.get(f"/api/v1/points/users/{other}")

        assert response.status_code == 200
        assert response.json()["user_id"] == str(other)

    def test_redemption_phone_validation(self, client, login, point_service):
        login()

        response = client.post(
            "/api/v1/points/me/redemptions",
            json={"points": 100, "phone_number": "12345"},
        )

        assert response.status_code == 422
        point_service.request_redemption.assert_not_called()


class TestLedgerRoutes:
    def test_award_requires_service_role(self, client, login, ledger):
        login()

        response = client.post(
            "/api/v1/points/award",
            json={"user_id": str(uuid.uuid4()), "action_type": "daily_login"},
        )

        assert response.status_code == 403
        ledger.award_points.assert_not_called()

    def test_capped_award_is_not_an_error(self, client, login, ledger):
        login(UserRole.SERVICE)
        ledger.award_points.return_value = AwardPointsResult(
            status=AwardStatus.CAPPED, message="Daily limit of 1 reached"
        )

        response = client.post(
            "/api/v1/points/award",
            json={"user_id": str(uuid.uuid4()), "action_type": "daily_login"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "capped"
        assert response.json()["transaction"] is None

    def test_insufficient_points(self, client, login, ledger):
        login(UserRole.SERVICE)
        ledger.redeem_points.side_effect = InsufficientPointsError(required=100, available=50)

        response = client.post(
            "/api/v1/points/redeem",
            json={"user_id": str(uuid.uuid4()), "points": 100},
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "BALANCE_001"
        assert error["details"] == {"required": 100, "available": 50}

    def test_adjust_rejects_zero(self, client, login, ledger):
        login(UserRole.ADMIN)

        response = client.post(
            "/api/v1/points/admin/adjust",
            json={"user_id": str(uuid.uuid4()), "amount": 0, "reason": "noop"},
        )

        assert response.status_code == 422
        ledger.adjust_points.assert_not_called()

    def test_adjust_is_admin_only(self, client, login, ledger):
        login(UserRole.SERVICE)

        response = client.post(
            "/api/v1/points/admin/adjust",
            json={"user_id": str(uuid.uuid4()), "amount": -5, "reason": "fraud"},
        )

        assert response.status_code == 403

    def test_adjust(self, client, login, ledger):
        login(UserRole.ADMIN)
        target = uuid.uuid4()
        ledger.adjust_points.return_value = _transaction(
            target, -5, 15, TransactionType.ADJUST
        )

        response = client.post(
            "/api/v1/points/admin/adjust",
            json={"user_id": str(target), "amount": -5, "reason": "fraud"},
        )

        assert response.status_code == 200
        assert response.json()["points"] == -5
        ledger.adjust_points.assert_called_once_with(target, -5, "fraud")

    def test_review_milestone_uses_review_service(self, client, login, point_service):
        login(UserRole.SERVICE)
        target = uuid.uuid4()
        point_service.check_review_milestone = AsyncMock(
            return_value=MilestoneCheckResponse(
                user_id=target, kind=MilestoneKind.REVIEW_COUNT, awarded=False
            )
        )

        response = client.post(
            f"/api/v1/points/users/{target}/milestones/review_count", json={}
        )

        assert response.status_code == 200
        assert response.json()["awarded"] is False
        point_service.check_review_milestone.assert_awaited_once_with(target, None)


class TestCatalogRoutes:
    def test_list_rules(self, client, login, rule_service):
        login()
        rule_service.list_rules.return_value = [
            PointRuleSchema(id=1, action_type="daily_login", points_value=1)
        ]

        response = client.get("/api/v1/points/rules")

        assert response.status_code == 200
        assert response.json()[0]["action_type"] == "daily_login"
        rule_service.list_rules.assert_called_once_with(include_inactive=False)

    def test_create_rule_is_admin_only(self, client, login, rule_service):
        login()

        response = client.post(
            "/api/v1/points/rules", json={"action_type": "daily_login", "points_value": 1}
        )

        assert response.status_code == 403
        rule_service.create_rule.assert_not_called()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["database_connected"] is True
