"""
인증/권한 의존성

토큰 발급은 외부 IdP가 담당하며, 여기서는 Bearer JWT 서명/만료/audience만
검증하고 sub(사용자 UUID)와 roles 클레임으로 CurrentUser를 구성합니다.
"""

import logging
import uuid
from typing import List, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from userapi.config import settings
from userapi.core.exceptions import AuthenticationError, AuthorizationError
from userapi.schemas.user import CurrentUser, UserRole

logger = logging.getLogger(__name__)

# JWT Bearer 토큰 스킴
security = HTTPBearer(auto_error=False)

_BEARER_HEADERS = {"WWW-Authenticate": "Bearer"}


def _unauthorized(message: str) -> AuthenticationError:
    error = AuthenticationError(message)
    error.headers = _BEARER_HEADERS
    return error


def _parse_roles(raw_roles) -> List[UserRole]:
    if isinstance(raw_roles, str):
        raw_roles = [raw_roles]
    roles = []
    for value in raw_roles or []:
        try:
            roles.append(UserRole(str(value).lower()))
        except ValueError:
            continue
    return roles or [UserRole.USER]


def decode_access_token(token: str) -> CurrentUser:
    """IdP 토큰 검증 후 CurrentUser 반환

    Raises:
        AuthenticationError: 서명/만료/클레임 오류
    """
    options = {"verify_aud": settings.JWT_AUDIENCE is not None}
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
            options=options,
        )
    except JWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        raise _unauthorized("Invalid or expired token")

    subject = payload.get("sub")
    try:
        user_id = uuid.UUID(str(subject))
    except (TypeError, ValueError):
        raise _unauthorized("Token subject is not a valid user id")

    return CurrentUser(
        user_id=user_id,
        email=payload.get("email"),
        roles=_parse_roles(payload.get(settings.JWT_ROLES_CLAIM)),
    )


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """필수 사용자 인증 - 유효한 토큰이 필요함"""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Authentication required")
    return decode_access_token(credentials.credentials)


def require_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """관리자 권한이 필요한 엔드포인트용 의존성"""
    if not current_user.is_admin:
        raise AuthorizationError("Admin access required")
    return current_user


def require_staff(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """지원/관리자 권한"""
    if not current_user.is_staff:
        raise AuthorizationError("Support or admin access required")
    return current_user


def require_service_or_admin(
    current_user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """내부 서비스(웹훅, 스케줄러) 또는 관리자"""
    if not (current_user.is_service or current_user.is_admin):
        raise AuthorizationError("Service or admin access required")
    return current_user


def ensure_self_or_staff(current_user: CurrentUser, user_id: uuid.UUID) -> None:
    """본인, 지원/관리자, 내부 서비스만 다른 사용자의 포인트 정보에 접근 가능"""
    if current_user.user_id == user_id or current_user.is_staff or current_user.is_service:
        return
    raise AuthorizationError(
        "Not allowed to access another user's points",
        details={"user_id": str(user_id)},
    )
