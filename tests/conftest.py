import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import uuid  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from userapi.config import Settings  # noqa: E402
from userapi.models import points  # noqa: E402,F401
from userapi.models.base import Base  # noqa: E402
from userapi.models.points import MilestoneThreshold, PointMultiplier, PointRule  # noqa: E402
from userapi.services.points_ledger import PointsLedger  # noqa: E402


class FrozenClock:
    """테스트용 시계 - 호출 시 고정 시각 반환, advance()로 이동"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite+pysqlite:///:memory:",
        LEDGER_MAX_RETRIES=3,
        POINTS_EXPIRY_DAYS=None,
        DAILY_POINTS_RETENTION_DAYS=7,
    )


@pytest.fixture
def ledger(db, settings, clock):
    return PointsLedger(db, settings, clock=clock)


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def make_rule(db):
    def _make_rule(action_type: str, points_value: int, **kwargs) -> PointRule:
        rule = PointRule(
            action_type=action_type,
            points_value=points_value,
            description=kwargs.pop("description", action_type.replace("_", " ")),
            is_active=kwargs.pop("is_active", True),
            multiplier_eligible=kwargs.pop("multiplier_eligible", True),
            **kwargs,
        )
        db.add(rule)
        db.commit()
        return rule

    return _make_rule


@pytest.fixture
def make_multiplier(db, clock):
    def _make_multiplier(value: str, action_types=None, **kwargs) -> PointMultiplier:
        multiplier = PointMultiplier(
            name=kwargs.pop("name", f"x{value} event"),
            multiplier=Decimal(value),
            action_types=action_types,
            starts_at=kwargs.pop("starts_at", clock.now - timedelta(days=1)),
            ends_at=kwargs.pop("ends_at", clock.now + timedelta(days=1)),
            is_active=kwargs.pop("is_active", True),
        )
        db.add(multiplier)
        db.commit()
        return multiplier

    return _make_multiplier


@pytest.fixture
def make_threshold(db):
    def _make_threshold(kind, threshold: int, points_value: int) -> MilestoneThreshold:
        row = MilestoneThreshold(
            kind=kind.value, threshold=threshold, points_value=points_value, is_active=True
        )
        db.add(row)
        db.commit()
        return row

    return _make_threshold
