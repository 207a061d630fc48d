import logging
from typing import List

from sqlalchemy.orm import Session

from userapi.config import Settings
from userapi.providers.geolocation import GeolocationClient
from userapi.repositories.points_repository import PointsAccountRepository
from userapi.schemas.points import (
    LeaderboardEntry,
    LeaderboardResponse,
    UserPointsAccountSchema,
)
from userapi.utils.points_utils import resolve_tier

logger = logging.getLogger(__name__)


class LeaderboardService:
    """포인트 랭킹 (읽기 전용)

    순서: total 내림차순 -> lifetime 내림차순 -> 계정 생성 순
    """

    def __init__(
        self, db: Session, settings: Settings, geolocation_client: GeolocationClient
    ):
        self.db = db
        self.settings = settings
        self.account_repo = PointsAccountRepository(db)
        self.geolocation_client = geolocation_client

    def _clamp_limit(self, limit: int) -> int:
        return max(1, min(limit, self.settings.LEADERBOARD_MAX_LIMIT))

    def _entries(self, accounts: List[UserPointsAccountSchema]) -> List[LeaderboardEntry]:
        return [
            LeaderboardEntry(
                rank=position,
                user_id=account.user_id,
                total_points=account.total_points,
                lifetime_points=account.lifetime_points,
                tier=resolve_tier(account.total_points, self.settings),
            )
            for position, account in enumerate(accounts, start=1)
        ]

    def get_leaderboard(self, limit: int = 10) -> LeaderboardResponse:
        accounts = self.account_repo.get_top_accounts(self._clamp_limit(limit))
        entries = self._entries(accounts)
        return LeaderboardResponse(entries=entries, total_users=len(entries))

    async def get_location_leaderboard(
        self, state: str, limit: int = 10
    ) -> LeaderboardResponse:
        """지역 리더보드 - 위치 기록이 없는 사용자는 제외"""
        # 외부 호출은 DB 조회 전에 완료
        user_ids = await self.geolocation_client.get_user_ids_by_state(state)
        accounts = self.account_repo.get_top_accounts(
            self._clamp_limit(limit), user_ids=user_ids
        )
        entries = self._entries(accounts)
        logger.info(
            f"Location leaderboard for {state}: {len(entries)} of {len(user_ids)} users"
        )
        return LeaderboardResponse(
            entries=entries, location=state, total_users=len(entries)
        )
