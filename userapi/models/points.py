"""
포인트 시스템 데이터 모델

사용자 포인트 계정(잔액 스냅샷), 불변 거래 원장, 적립 규칙 카탈로그,
기간 한정 배수(multiplier), 일별 발생 카운터, 마일스톤 설정/달성 기록,
교환(redemption) 요청을 정의합니다.

계정 잔액은 원장(PointsLedger 서비스)을 통해서만 변경되며,
모든 변경은 point_transactions 테이블에 기록되어 감사 추적이 가능합니다.
"""

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import UniqueConstraint

from userapi.models.base import Base, BaseModel, BigIntPK


class TransactionType(str, enum.Enum):
    """원장 거래 유형"""

    EARN = "earn"  # 규칙 기반 적립
    REDEEM = "redeem"  # 교환 차감
    EXPIRE = "expire"  # 만료 차감
    ADJUST = "adjust"  # 관리자 보정
    BONUS = "bonus"  # 마일스톤/추천 보너스


class MilestoneKind(str, enum.Enum):
    STREAK = "streak"
    REVIEW_COUNT = "review_count"
    HELPFUL_VOTES = "helpful_votes"

    @property
    def reference_type(self) -> str:
        """마일스톤 보너스 거래의 reference_type 값"""
        return f"milestone_{self.value}"


class RedemptionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PointTier(str, enum.Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class UserPointsAccount(BaseModel):
    """
    사용자별 포인트 계정 - 잔액 집계 스냅샷

    - 첫 적립 또는 초기화 호출 시 0으로 생성됨
    - available_points는 절대 음수가 될 수 없음
    - lifetime/redeemed/expired는 단조 증가
    """

    __tablename__ = "user_points"
    __table_args__ = (
        CheckConstraint("available_points >= 0", name="ck_user_points_available"),
        CheckConstraint("total_points >= 0", name="ck_user_points_total"),
        CheckConstraint("pending_points >= 0", name="ck_user_points_pending"),
        Index("idx_user_points_ranking", "total_points", "lifetime_points"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    # 외부 IdP에서 인증된 사용자 ID (users 테이블은 이 모듈 소유가 아님)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False)

    total_points: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    available_points: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    lifetime_points: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    redeemed_points: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    expired_points: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    # 승인 대기 포인트 (예: 리뷰 승인 전) - total = available + pending
    pending_points: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    current_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_activity_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    last_earned_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self):
        return (
            f"<UserPointsAccount(user_id={self.user_id}, "
            f"available={self.available_points}, lifetime={self.lifetime_points})>"
        )


class PointTransaction(Base):
    """
    포인트 거래 원장 - 불변(append-only)

    - points: 실제 적용된 부호 있는 변동량 (redeem/expire는 음수)
    - balance_after: 거래 직후 available_points 스냅샷
    - ref_key: 멱등성 키 (참조가 있는 거래만, 사용자+유형+참조로 구성)
    """

    __tablename__ = "point_transactions"
    __table_args__ = (
        UniqueConstraint("ref_key", name="uq_point_transactions_ref_key"),
        Index("idx_point_transactions_user", "user_id", "id"),
        Index("idx_point_transactions_expiry", "expires_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    points: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    rule_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK, ForeignKey("point_rules.id"), nullable=True
    )
    action_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    reference_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    ref_key: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)

    multiplier: Mapped[Decimal] = mapped_column(
        Numeric(6, 2), default=Decimal("1.00"), nullable=False
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class PointRule(BaseModel):
    """액션별 적립 규칙 - 운영자가 관리, 비활성화는 과거 이력에 영향 없음"""

    __tablename__ = "point_rules"
    __table_args__ = (
        CheckConstraint("points_value >= 0", name="ck_point_rules_points_value"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    action_type: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    points_value: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    max_daily_occurrences: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_total_occurrences: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cooldown_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    multiplier_eligible: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class UserDailyPoints(Base):
    """
    (사용자, 액션, 날짜)별 발생 카운터

    max_daily_occurrences / cooldown_minutes 판정에만 사용되며
    보존 기간(기본 7일)이 지나면 정리됩니다.
    """

    __tablename__ = "user_daily_points"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "action_type", "occurrence_date", name="uq_user_daily_points"
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    occurrence_date: Mapped[date] = mapped_column(Date, nullable=False)
    occurrence_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_occurrence_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


class PointMultiplier(BaseModel):
    """기간 한정 배수 - action_types가 비어 있으면 모든 액션에 적용"""

    __tablename__ = "point_multipliers"
    __table_args__ = (
        CheckConstraint("multiplier > 0", name="ck_point_multipliers_positive"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    multiplier: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    action_types: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class MilestoneThreshold(BaseModel):
    """마일스톤 설정 - 지표 종류별 임계값과 보상 포인트"""

    __tablename__ = "milestone_thresholds"
    __table_args__ = (
        UniqueConstraint("kind", "threshold", name="uq_milestone_thresholds"),
        CheckConstraint("threshold > 0", name="ck_milestone_thresholds_threshold"),
        CheckConstraint("points_value >= 0", name="ck_milestone_thresholds_points"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    points_value: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class UserMilestone(Base):
    """
    사용자 마일스톤 달성 기록 - (사용자, 종류, 임계값)당 1회

    유니크 제약이 동시 호출 시에도 중복 지급을 막는 최종 방어선입니다.
    """

    __tablename__ = "user_milestones"
    __table_args__ = (
        UniqueConstraint("user_id", "kind", "threshold", name="uq_user_milestones"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("point_transactions.id"), nullable=False
    )
    achieved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


class PointRedemption(BaseModel):
    """포인트 교환 요청 - 실제 지급(에어타임 등)은 외부 공급자가 처리"""

    __tablename__ = "point_redemptions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    points_redeemed: Mapped[int] = mapped_column(BigInteger, nullable=False)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    reward_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=RedemptionStatus.PENDING.value, nullable=False
    )
    provider_reference: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )
    status_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    transaction_id: Mapped[Optional[int]] = mapped_column(
        BigIntPK, ForeignKey("point_transactions.id"), nullable=True
    )
