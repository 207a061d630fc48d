import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from userapi.core.exceptions import PointMultiplierNotFoundError, ValidationError
from userapi.models.points import PointMultiplier
from userapi.repositories.point_multiplier_repository import PointMultiplierRepository
from userapi.schemas.points import (
    PointMultiplierCreateRequest,
    PointMultiplierSchema,
    PointMultiplierUpdateRequest,
)
from userapi.utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class PointMultiplierService:
    """기간 한정 배수 관리

    동시에 여러 배수가 활성이어도 적립에는 가장 큰 값 하나만 적용됩니다.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock
        self.multiplier_repo = PointMultiplierRepository(db)

    def _to_schema(self, multiplier: PointMultiplier, now: datetime) -> PointMultiplierSchema:
        schema = PointMultiplierSchema.model_validate(multiplier)
        schema.is_currently_active = bool(
            multiplier.is_active
            and ensure_utc(multiplier.starts_at) <= now <= ensure_utc(multiplier.ends_at)
        )
        return schema

    def list_multipliers(self) -> List[PointMultiplierSchema]:
        now = self.clock()
        return [self._to_schema(m, now) for m in self.multiplier_repo.list_all()]

    def list_active_multipliers(self) -> List[PointMultiplierSchema]:
        now = self.clock()
        return [self._to_schema(m, now) for m in self.multiplier_repo.list_active(now)]

    def get_highest_applicable(self, action_type: str) -> Optional[PointMultiplierSchema]:
        now = self.clock()
        multiplier = self.multiplier_repo.get_highest_applicable(action_type, now)
        return self._to_schema(multiplier, now) if multiplier else None

    def create_multiplier(
        self, request: PointMultiplierCreateRequest
    ) -> PointMultiplierSchema:
        try:
            multiplier = self.multiplier_repo.add(
                PointMultiplier(
                    name=request.name,
                    description=request.description,
                    multiplier=request.multiplier,
                    action_types=request.action_types or None,
                    starts_at=ensure_utc(request.starts_at),
                    ends_at=ensure_utc(request.ends_at),
                    is_active=True,
                )
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(
            f"Point multiplier created: {request.name} x{request.multiplier} "
            f"{request.starts_at.isoformat()}~{request.ends_at.isoformat()}"
        )
        return self._to_schema(multiplier, self.clock())

    def update_multiplier(
        self, multiplier_id: int, request: PointMultiplierUpdateRequest
    ) -> PointMultiplierSchema:
        multiplier = self.multiplier_repo.get_model_by_id(multiplier_id)
        if multiplier is None:
            raise PointMultiplierNotFoundError(multiplier_id)

        changes = request.model_dump(exclude_unset=True)
        for key in ("starts_at", "ends_at"):
            if changes.get(key) is not None:
                changes[key] = ensure_utc(changes[key])

        starts_at = changes.get("starts_at") or ensure_utc(multiplier.starts_at)
        ends_at = changes.get("ends_at") or ensure_utc(multiplier.ends_at)
        if ends_at <= starts_at:
            raise ValidationError(
                "ends_at must be after starts_at",
                details={"starts_at": starts_at.isoformat(), "ends_at": ends_at.isoformat()},
            )

        try:
            for key, value in changes.items():
                setattr(multiplier, key, value)
            self.db.flush()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Point multiplier {multiplier_id} updated: {sorted(changes)}")
        return self._to_schema(multiplier, self.clock())

    def deactivate_multiplier(self, multiplier_id: int) -> PointMultiplierSchema:
        return self.update_multiplier(
            multiplier_id, PointMultiplierUpdateRequest(is_active=False)
        )
