"""
포인트 계정 리포지토리

사용자별 잔액 스냅샷(user_points) 접근을 담당합니다.

핵심 특징:
- 원장 연산은 get_account_for_update()로 계정 행을 잠근 뒤(SELECT ... FOR UPDATE)
  읽기-수정-쓰기를 수행하므로 같은 사용자에 대한 동시 연산은 직렬화됩니다
- 다른 사용자의 행은 잠기지 않으므로 서로 블록되지 않습니다
- 랭킹 순서는 total 내림차순, lifetime 내림차순, 생성 시각 오름차순, id 오름차순
"""

import uuid
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from userapi.models.points import UserPointsAccount
from userapi.repositories.base import BaseRepository
from userapi.schemas.points import UserPointsAccountSchema


class PointsAccountRepository(
    BaseRepository[UserPointsAccount, UserPointsAccountSchema]
):
    def __init__(self, db: Session):
        super().__init__(UserPointsAccount, UserPointsAccountSchema, db)

    def get_by_user_id(self, user_id: uuid.UUID) -> Optional[UserPointsAccountSchema]:
        self._ensure_clean_session()
        account = (
            self.db.query(UserPointsAccount)
            .filter(UserPointsAccount.user_id == user_id)
            .first()
        )
        return self._to_schema(account)

    def get_account_for_update(
        self, user_id: uuid.UUID
    ) -> Optional[UserPointsAccount]:
        """계정 행을 잠그고 ORM 인스턴스를 반환 (원장 내부 전용)"""
        return (
            self.db.query(UserPointsAccount)
            .filter(UserPointsAccount.user_id == user_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def create_account(self, user_id: uuid.UUID, now: datetime) -> UserPointsAccount:
        """0 잔액 계정 생성

        동시 생성 경쟁 시 user_id 유니크 제약으로 IntegrityError가 발생하며,
        원장의 재시도 루프가 처음부터 다시 실행합니다.
        """
        account = UserPointsAccount(
            user_id=user_id,
            total_points=0,
            available_points=0,
            lifetime_points=0,
            redeemed_points=0,
            expired_points=0,
            pending_points=0,
            current_streak=0,
            longest_streak=0,
            created_at=now,
            updated_at=now,
        )
        return self.add(account)

    def _ranking_order(self):
        return (
            UserPointsAccount.total_points.desc(),
            UserPointsAccount.lifetime_points.desc(),
            UserPointsAccount.created_at.asc(),
            UserPointsAccount.id.asc(),
        )

    def get_top_accounts(
        self,
        limit: int,
        offset: int = 0,
        user_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> List[UserPointsAccountSchema]:
        """랭킹 순서로 계정 조회 (user_ids가 주어지면 해당 사용자만)"""
        self._ensure_clean_session()
        query = self.db.query(UserPointsAccount)
        if user_ids is not None:
            if not user_ids:
                return []
            query = query.filter(UserPointsAccount.user_id.in_(list(user_ids)))

        accounts = (
            query.order_by(*self._ranking_order()).offset(offset).limit(limit).all()
        )
        return self._to_schemas(accounts)

    def get_rank(self, user_id: uuid.UUID) -> Optional[int]:
        """랭킹 순서 기준 1부터 시작하는 순위 (계정이 없으면 None)"""
        self._ensure_clean_session()
        me = (
            self.db.query(UserPointsAccount)
            .filter(UserPointsAccount.user_id == user_id)
            .first()
        )
        if me is None:
            return None

        ahead = (
            self.db.query(UserPointsAccount)
            .filter(
                or_(
                    UserPointsAccount.total_points > me.total_points,
                    and_(
                        UserPointsAccount.total_points == me.total_points,
                        UserPointsAccount.lifetime_points > me.lifetime_points,
                    ),
                    and_(
                        UserPointsAccount.total_points == me.total_points,
                        UserPointsAccount.lifetime_points == me.lifetime_points,
                        UserPointsAccount.created_at < me.created_at,
                    ),
                    and_(
                        UserPointsAccount.total_points == me.total_points,
                        UserPointsAccount.lifetime_points == me.lifetime_points,
                        UserPointsAccount.created_at == me.created_at,
                        UserPointsAccount.id < me.id,
                    ),
                )
            )
            .count()
        )
        return ahead + 1
