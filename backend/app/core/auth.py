"""JWT identity utilities.

Users are authenticated elsewhere; this service only verifies the bearer
token the identity provider issued and resolves it into a Principal.
"""
import enum
import jwt
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from app.core.config import settings


class UserRole(str, enum.Enum):
    """Platform roles, lowest privilege first."""
    USER = "user"
    COMMUNITY_LEADER = "community_leader"
    MODERATOR = "moderator"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def parse(cls, value: Optional[str]) -> "UserRole":
        """Unknown or missing roles fall back to USER."""
        try:
            return cls(value)
        except ValueError:
            return cls.USER


ADMIN_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})
LEADER_ROLES = frozenset({UserRole.COMMUNITY_LEADER, UserRole.MODERATOR})


def is_admin_role(role: UserRole) -> bool:
    return role in ADMIN_ROLES


def is_elevated_role(role: UserRole) -> bool:
    """Admins, community leaders and moderators."""
    return role in ADMIN_ROLES or role in LEADER_ROLES


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as resolved from the identity token."""
    id: str
    role: UserRole = UserRole.USER
    display_name: Optional[str] = None
    is_anonymous: bool = False

    @property
    def is_admin(self) -> bool:
        return is_admin_role(self.role)

    @classmethod
    def from_claims(cls, claims: Dict) -> "Principal":
        user_id = claims.get("user_id") or claims.get("sub")
        if not user_id:
            raise jwt.InvalidTokenError("Token has no user_id")
        return cls(
            id=str(user_id),
            role=UserRole.parse(claims.get("role")),
            display_name=claims.get("name") or None,
            is_anonymous=bool(claims.get("is_anonymous", False)),
        )


def create_access_token(principal: Principal, expires_minutes: Optional[int] = None) -> str:
    """
    Create a JWT access token for a principal.

    Args:
        principal: Identity to encode
        expires_minutes: Override for settings.JWT_EXPIRE_MINUTES

    Returns:
        JWT token string
    """
    if not settings.JWT_SECRET_KEY:
        raise ValueError("JWT_SECRET_KEY not configured")

    now = datetime.now(timezone.utc)
    payload = {
        "user_id": principal.id,
        "role": principal.role.value,
        "name": principal.display_name,
        "is_anonymous": principal.is_anonymous,
        "jti": str(uuid.uuid4()),
        "iat": int(now.timestamp()),
        "exp": now + timedelta(minutes=expires_minutes or settings.JWT_EXPIRE_MINUTES),
    }

    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> Dict:
    """
    Verify and decode JWT token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload

    Raises:
        jwt.ExpiredSignatureError: Token has expired
        jwt.InvalidTokenError: Token is invalid
    """
    if not settings.JWT_SECRET_KEY:
        raise ValueError("JWT_SECRET_KEY not configured")

    return jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM]
    )


def principal_from_token(token: str) -> Principal:
    return Principal.from_claims(verify_access_token(token))
