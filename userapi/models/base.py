from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Integer, func
from sqlalchemy.orm import Mapped, declarative_base, declared_attr, mapped_column

Base = declarative_base()

# sqlite는 INTEGER PRIMARY KEY만 autoincrement 지원
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


class TimestampMixin:
    """생성/수정 시각 컬럼 믹스인 (UTC, timezone-aware)"""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True), server_default=func.now(), nullable=False
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            server_default=func.now(),
            onupdate=func.now(),
            nullable=False,
        )


class BaseModel(Base, TimestampMixin):
    """카탈로그/계정 모델의 베이스 클래스"""

    __abstract__ = True
