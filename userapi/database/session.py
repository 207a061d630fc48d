import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session

from userapi.database.connection import SessionLocal

logger = logging.getLogger(__name__)


def get_db() -> Iterator[Session]:
    """요청 단위 세션

    원장 연산은 _run_atomic 안에서 직접 커밋/롤백합니다.
    요청이 예외로 끝났는데 트랜잭션이 열려 있으면 여기서 롤백합니다.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        if db.in_transaction():
            logger.warning("Rolling back open transaction after request failure")
            db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def get_db_context(commit: bool = True) -> Iterator[Session]:
    """스크립트용 세션 - commit=False 이면 블록 종료 시 롤백 (dry run)"""
    db = SessionLocal()
    try:
        yield db
        if commit:
            db.commit()
        else:
            db.rollback()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
