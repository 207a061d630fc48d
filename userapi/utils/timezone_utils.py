"""
타임존 유틸리티

포인트 원장은 모든 시각을 UTC 기준으로 저장/비교합니다.
일별 카운터의 '하루' 역시 UTC 날짜 기준입니다.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """현재 UTC 시간을 반환합니다 (timezone-aware)."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """DB에서 읽은 값이 naive인 경우(sqlite 등) UTC로 간주합니다."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
