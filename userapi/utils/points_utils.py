from decimal import ROUND_HALF_UP, Decimal
from typing import Union

from userapi.config import Settings
from userapi.models.points import PointTier


def round_points(value: Union[Decimal, int, str]) -> int:
    """정수 포인트로 반올림 (round-half-up, 2.5 -> 3)"""
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_multiplier(points_value: int, multiplier: Union[Decimal, str]) -> int:
    """기본 포인트 x 배수, 반올림 결과는 음수가 될 수 없음"""
    awarded = round_points(Decimal(points_value) * Decimal(multiplier))
    if awarded < 0:
        raise ValueError(f"Computed points must be >= 0, got {awarded}")
    return awarded


def resolve_tier(total_points: int, settings: Settings) -> PointTier:
    if total_points >= settings.TIER_PLATINUM_MIN:
        return PointTier.PLATINUM
    if total_points >= settings.TIER_GOLD_MIN:
        return PointTier.GOLD
    if total_points >= settings.TIER_SILVER_MIN:
        return PointTier.SILVER
    return PointTier.BRONZE
