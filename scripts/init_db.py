import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text

from userapi.config import settings
from userapi.database.connection import engine
from userapi.models import points  # noqa: F401  테이블 등록
from userapi.models.base import Base


def init_db():
    """데이터베이스 초기화 - 스키마(PostgreSQL)와 포인트 테이블 생성"""
    try:
        if engine.dialect.name == "postgresql":
            with engine.connect() as conn:
                conn.execute(
                    text(f"CREATE SCHEMA IF NOT EXISTS {settings.POSTGRES_SCHEMA}")
                )
                conn.commit()

        Base.metadata.create_all(bind=engine)
        print(
            f"Database initialized successfully ({engine.dialect.name}, "
            f"schema: {settings.POSTGRES_SCHEMA})"
        )

    except Exception as e:
        print(f"Database initialization failed: {str(e)}")
        raise


if __name__ == "__main__":
    init_db()
