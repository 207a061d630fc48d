import uuid
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field


class UserRole(str, Enum):
    """사용자 역할 정의 (IdP 토큰의 roles 클레임)"""

    USER = "user"  # 일반 사용자
    BUSINESS = "business"  # 비즈니스 대표
    SUPPORT = "support"  # 고객 지원
    ADMIN = "admin"  # 관리자
    SERVICE = "service"  # 내부 서비스 (스케줄러, 리뷰 서비스 웹훅 등)

    @classmethod
    def is_staff(cls, role: Union[str, "UserRole"]) -> bool:
        """지원/관리자 권한 확인"""
        if isinstance(role, cls):
            role = role.value
        return role in (cls.SUPPORT.value, cls.ADMIN.value)


class CurrentUser(BaseModel):
    """인증된 호출자 - 외부 IdP가 발급한 토큰에서 추출"""

    user_id: uuid.UUID = Field(..., description="사용자 ID (토큰 sub)")
    email: Optional[str] = None
    roles: List[UserRole] = Field(default_factory=lambda: [UserRole.USER])

    @property
    def is_admin(self) -> bool:
        return UserRole.ADMIN in self.roles

    @property
    def is_staff(self) -> bool:
        return any(UserRole.is_staff(role) for role in self.roles)

    @property
    def is_service(self) -> bool:
        return UserRole.SERVICE in self.roles
