# Repository layer - Data access with Pydantic responses

from .base import BaseRepository
from .milestone_repository import MilestoneThresholdRepository, UserMilestoneRepository
from .point_multiplier_repository import PointMultiplierRepository
from .point_redemption_repository import PointRedemptionRepository
from .point_rule_repository import PointRuleRepository
from .point_transaction_repository import PointTransactionRepository
from .points_repository import PointsAccountRepository
from .user_daily_points_repository import UserDailyPointsRepository

__all__ = [
    "BaseRepository",
    "MilestoneThresholdRepository",
    "UserMilestoneRepository",
    "PointMultiplierRepository",
    "PointRedemptionRepository",
    "PointRuleRepository",
    "PointTransactionRepository",
    "PointsAccountRepository",
    "UserDailyPointsRepository",
]
