from .user import CurrentUser, UserRole
from .health import HealthCheckResponse
from .points import AwardPointsResult, AwardStatus, PointTransactionSchema
