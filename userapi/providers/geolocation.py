import logging
import uuid
from typing import List, Optional, Set

import httpx

from userapi.config import Settings
from userapi.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

SERVICE_NAME = "geolocation-service"


class GeolocationClient:
    """지오로케이션 서비스 클라이언트 - 지역(state)별 사용자 조회

    지오로케이션 기록이 없는 사용자는 결과에 포함되지 않습니다.
    """

    _STATE_USERS_PATH = "/api/geolocation/state/{state}/users"
    _PAGE_SIZE = 500

    def __init__(
        self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._base_url = settings.GEOLOCATION_SERVICE_BASE_URL.rstrip("/")
        self._timeout = httpx.Timeout(settings.INTERNAL_HTTP_TIMEOUT_SECONDS, connect=5.0)
        self._token = settings.INTERNAL_AUTH_TOKEN
        self._transport = transport

    async def get_user_ids_by_state(self, state: str) -> List[uuid.UUID]:
        """state의 마지막 위치로 기록된 사용자 ID 목록 (페이지를 끝까지 순회)"""
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        path = self._STATE_USERS_PATH.format(state=state)
        user_ids: List[uuid.UUID] = []
        seen: Set[uuid.UUID] = set()
        page = 1
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport
            ) as client:
                while True:
                    response = await client.get(
                        path,
                        params={"page": page, "pageSize": self._PAGE_SIZE},
                        headers=headers,
                    )
                    if response.status_code == 404:
                        return []
                    if response.status_code != 200:
                        logger.error(
                            f"Geolocation service returned {response.status_code}: "
                            f"{response.text}"
                        )
                        raise ExternalServiceError(
                            SERVICE_NAME,
                            f"unexpected status {response.status_code}",
                            details={"status_code": response.status_code},
                        )

                    batch = self._parse_user_ids(response)
                    for user_id in batch:
                        if user_id not in seen:
                            seen.add(user_id)
                            user_ids.append(user_id)
                    if len(batch) < self._PAGE_SIZE:
                        break
                    page += 1
        except httpx.TimeoutException as exc:
            logger.error(f"Geolocation service timeout for state {state}")
            raise ExternalServiceError(SERVICE_NAME, "request timed out") from exc
        except httpx.RequestError as exc:
            logger.error(f"Geolocation service request error: {exc}")
            raise ExternalServiceError(SERVICE_NAME, "service unavailable") from exc

        logger.info(f"Geolocation: {len(user_ids)} users in state {state}")
        return user_ids

    @staticmethod
    def _parse_user_ids(response: httpx.Response) -> List[uuid.UUID]:
        """["uuid", ...] 또는 {"items": [{"userId": "uuid"}, ...]} 형태"""
        try:
            payload = response.json()
            items = payload.get("items", []) if isinstance(payload, dict) else payload
            return [
                uuid.UUID(str(item["userId"] if isinstance(item, dict) else item))
                for item in items
            ]
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise ExternalServiceError(SERVICE_NAME, "malformed user list") from exc
