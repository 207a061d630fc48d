"""
포인트 거래 원장 리포지토리 - append-only

거래는 추가(add)만 가능하며 수정/삭제 메서드를 제공하지 않습니다.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import String, cast, func, select
from sqlalchemy.orm import Session, aliased

from userapi.models.points import PointTransaction, TransactionType, UserPointsAccount
from userapi.repositories.base import BaseRepository
from userapi.schemas.points import PointTransactionSchema

# 만료 거래가 원본 적립 거래를 가리킬 때 사용하는 reference_type
EXPIRY_SOURCE_REFERENCE = "point_transaction"


class PointTransactionRepository(
    BaseRepository[PointTransaction, PointTransactionSchema]
):
    def __init__(self, db: Session):
        super().__init__(PointTransaction, PointTransactionSchema, db)

    def get_by_ref_key(self, ref_key: str) -> Optional[PointTransaction]:
        return (
            self.db.query(PointTransaction)
            .filter(PointTransaction.ref_key == ref_key)
            .first()
        )

    def count_rule_occurrences(self, user_id: uuid.UUID, rule_id: int) -> int:
        """규칙별 누적 적립 횟수 (max_total_occurrences 판정용)"""
        return (
            self.db.query(func.count(PointTransaction.id))
            .filter(
                PointTransaction.user_id == user_id,
                PointTransaction.rule_id == rule_id,
                PointTransaction.transaction_type == TransactionType.EARN.value,
            )
            .scalar()
            or 0
        )

    def get_user_history(
        self,
        user_id: uuid.UUID,
        limit: int,
        offset: int = 0,
        transaction_type: Optional[TransactionType] = None,
    ) -> Tuple[List[PointTransactionSchema], int]:
        """최신순 거래 내역과 전체 건수"""
        self._ensure_clean_session()
        query = self.db.query(PointTransaction).filter(
            PointTransaction.user_id == user_id
        )
        if transaction_type is not None:
            query = query.filter(
                PointTransaction.transaction_type == transaction_type.value
            )

        total_count = query.count()
        entries = (
            query.order_by(PointTransaction.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return self._to_schemas(entries), total_count

    def get_by_date_range(
        self, user_id: uuid.UUID, start: datetime, end: datetime
    ) -> List[PointTransactionSchema]:
        """[start, end) 구간의 거래 (생성 순)"""
        self._ensure_clean_session()
        entries = (
            self.db.query(PointTransaction)
            .filter(
                PointTransaction.user_id == user_id,
                PointTransaction.created_at >= start,
                PointTransaction.created_at < end,
            )
            .order_by(PointTransaction.id.asc())
            .all()
        )
        return self._to_schemas(entries)

    def get_latest(self, user_id: uuid.UUID) -> Optional[PointTransaction]:
        return (
            self.db.query(PointTransaction)
            .filter(PointTransaction.user_id == user_id)
            .order_by(PointTransaction.id.desc())
            .first()
        )

    def get_ledger_totals(self, user_id: uuid.UUID) -> Dict[str, int]:
        """정합성 검증용 원장 집계

        Returns:
            dict: sum(전체 변동량), count, credited(양수 변동 합계),
                  redeemed / expired (해당 유형 차감량, 양수)
        """
        self._ensure_clean_session()
        rows = (
            self.db.query(
                PointTransaction.transaction_type,
                func.coalesce(func.sum(PointTransaction.points), 0),
                func.count(PointTransaction.id),
            )
            .filter(PointTransaction.user_id == user_id)
            .group_by(PointTransaction.transaction_type)
            .all()
        )
        credited = (
            self.db.query(func.coalesce(func.sum(PointTransaction.points), 0))
            .filter(PointTransaction.user_id == user_id, PointTransaction.points > 0)
            .scalar()
        )

        by_type = {tx_type: int(total) for tx_type, total, _ in rows}
        return {
            "sum": sum(by_type.values()),
            "count": sum(int(count) for _, _, count in rows),
            "credited": int(credited or 0),
            "redeemed": -by_type.get(TransactionType.REDEEM.value, 0),
            "expired": -by_type.get(TransactionType.EXPIRE.value, 0),
        }

    def find_expirable(self, as_of: datetime, limit: int) -> List[PointTransaction]:
        """만료 시각이 지났고 아직 만료 처리되지 않은 적립/보너스 거래"""
        expired_marker = aliased(PointTransaction)
        already_expired = (
            select(expired_marker.id)
            .where(
                expired_marker.transaction_type == TransactionType.EXPIRE.value,
                expired_marker.reference_type == EXPIRY_SOURCE_REFERENCE,
                expired_marker.reference_id == cast(PointTransaction.id, String),
            )
            .correlate(PointTransaction)
            .exists()
        )
        # 가용 잔액이 0인 계정은 제외
        return (
            self.db.query(PointTransaction)
            .join(
                UserPointsAccount,
                UserPointsAccount.user_id == PointTransaction.user_id,
            )
            .filter(
                UserPointsAccount.available_points > 0,
                PointTransaction.transaction_type.in_(
                    [TransactionType.EARN.value, TransactionType.BONUS.value]
                ),
                PointTransaction.expires_at.isnot(None),
                PointTransaction.expires_at <= as_of,
                PointTransaction.points > 0,
                ~already_expired,
            )
            .order_by(PointTransaction.expires_at.asc(), PointTransaction.id.asc())
            .limit(limit)
            .all()
        )
