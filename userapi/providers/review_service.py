import logging
import uuid
from typing import Any, Dict, Optional

import httpx

from userapi.config import Settings
from userapi.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

SERVICE_NAME = "review-service"


class ReviewServiceClient:
    """리뷰 서비스 클라이언트 - 마일스톤 지표(승인 리뷰 수, 도움돼요 수) 조회

    원장 트랜잭션 밖에서 미리 호출해 값을 넘겨야 합니다.
    """

    _APPROVED_COUNT_PATH = "/api/reviews/user/{user_id}/approved-count"
    _HELPFUL_VOTES_PATH = "/api/reviews/user/{user_id}/helpful-votes"

    def __init__(
        self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._base_url = settings.REVIEW_SERVICE_BASE_URL.rstrip("/")
        self._timeout = httpx.Timeout(settings.INTERNAL_HTTP_TIMEOUT_SECONDS, connect=5.0)
        self._token = settings.INTERNAL_AUTH_TOKEN
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _get_json(self, path: str) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.get(path, headers=self._headers())
        except httpx.TimeoutException as exc:
            logger.error(f"Review service timeout: {path}")
            raise ExternalServiceError(SERVICE_NAME, "request timed out") from exc
        except httpx.RequestError as exc:
            logger.error(f"Review service request error: {exc}")
            raise ExternalServiceError(SERVICE_NAME, "service unavailable") from exc

        if response.status_code != 200:
            logger.error(
                f"Review service returned {response.status_code} for {path}: {response.text}"
            )
            raise ExternalServiceError(
                SERVICE_NAME,
                f"unexpected status {response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ExternalServiceError(SERVICE_NAME, "invalid JSON response") from exc

    @staticmethod
    def _extract_count(payload: Any, *keys: str) -> int:
        """정수 본문 또는 {"count": n} 형태 모두 허용"""
        if isinstance(payload, bool):
            raise ExternalServiceError(SERVICE_NAME, "malformed count response")
        if isinstance(payload, int):
            return payload
        if isinstance(payload, dict):
            for key in keys:
                value = payload.get(key)
                if isinstance(value, int) and not isinstance(value, bool):
                    return value
        raise ExternalServiceError(SERVICE_NAME, "malformed count response")

    async def get_approved_review_count(self, user_id: uuid.UUID) -> int:
        payload = await self._get_json(self._APPROVED_COUNT_PATH.format(user_id=user_id))
        return self._extract_count(payload, "count", "approvedCount")

    async def get_total_helpful_votes(self, user_id: uuid.UUID) -> int:
        payload = await self._get_json(self._HELPFUL_VOTES_PATH.format(user_id=user_id))
        return self._extract_count(payload, "count", "totalHelpfulVotes")
