import pytest
from sqlalchemy.orm import sessionmaker

from userapi.database import session as session_module
from userapi.database.session import get_db_context
from userapi.logging_config import LEDGER_LOGGERS, build_logging_config
from userapi.models.points import PointRule


class TestLoggingConfig:
    def test_ledger_level_independent_of_root(self):
        config = build_logging_config("warning", ledger_log_level="info")

        assert config["loggers"][""]["level"] == "WARNING"
        assert config["loggers"]["userapi"]["level"] == "WARNING"
        for name in LEDGER_LOGGERS:
            assert config["loggers"][name]["level"] == "INFO"
            assert config["loggers"][name]["propagate"] is False
            assert "ledger_console" in config["loggers"][name]["handlers"]

    def test_ledger_level_defaults_to_log_level(self):
        config = build_logging_config("DEBUG")

        assert config["loggers"]["userapi.services.points_ledger"]["level"] == "DEBUG"

    def test_noisy_libraries_quieted(self):
        config = build_logging_config("DEBUG")

        assert config["loggers"]["httpx"]["level"] == "WARNING"
        assert config["loggers"]["sqlalchemy.engine"]["level"] == "WARNING"


@pytest.fixture
def bound_session_local(engine, monkeypatch):
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    monkeypatch.setattr(session_module, "SessionLocal", factory)
    return factory


class TestDbContext:
    def test_commits_on_exit(self, bound_session_local, db):
        with get_db_context() as session:
            session.add(PointRule(action_type="daily_login", points_value=1))

        assert db.query(PointRule).count() == 1

    def test_dry_run_rolls_back(self, bound_session_local, db):
        with get_db_context(commit=False) as session:
            session.add(PointRule(action_type="daily_login", points_value=1))
            session.flush()

        assert db.query(PointRule).count() == 0

    def test_rolls_back_on_error(self, bound_session_local, db):
        with pytest.raises(RuntimeError):
            with get_db_context() as session:
                session.add(PointRule(action_type="daily_login", points_value=1))
                session.flush()
                raise RuntimeError("boom")

        assert db.query(PointRule).count() == 0
