"""Creation policy for support circles: role-bound durations, limits and code generation."""
import re
import secrets
import string
from typing import Optional

from app.core.auth import UserRole, is_admin_role, is_elevated_role
from app.core.clock import Clock, utcnow
from app.core.exceptions import ValidationFailedError

TOPIC_MIN_LENGTH = 3
TOPIC_MAX_LENGTH = 100

MIN_PARTICIPANTS = 3
MAX_PARTICIPANTS = 30
DEFAULT_MAX_PARTICIPANTS = 15

REGULAR_DURATION_MINUTES = 20
LEADER_MAX_DURATION_MINUTES = 45
ADMIN_MAX_DURATION_MINUTES = 120
MIN_DURATION_MINUTES = 5

JOIN_CODE_MIN = 100000
JOIN_CODE_MAX = 999999

_JOIN_CODE_PATTERN = re.compile(r"^\d{6}$")
_BASE36 = string.digits + string.ascii_lowercase


def default_duration(role: UserRole) -> int:
    """Duration used when the creator does not pick one."""
    if is_admin_role(role):
        return 60
    if is_elevated_role(role):
        return LEADER_MAX_DURATION_MINUTES
    return REGULAR_DURATION_MINUTES


def validate_duration(role: UserRole, duration: Optional[int]) -> int:
    """Return the effective duration for a role, or raise ValidationFailedError."""
    if duration is None:
        return default_duration(role)

    if is_admin_role(role):
        if not MIN_DURATION_MINUTES <= duration <= ADMIN_MAX_DURATION_MINUTES:
            raise ValidationFailedError(
                "Duration must be between 5 and 120 minutes for admins", field="duration"
            )
    elif is_elevated_role(role):
        if not MIN_DURATION_MINUTES <= duration <= LEADER_MAX_DURATION_MINUTES:
            raise ValidationFailedError(
                "Duration must be between 5 and 45 minutes for community leaders/moderators",
                field="duration",
            )
    elif duration != REGULAR_DURATION_MINUTES:
        raise ValidationFailedError(
            "Duration must be 20 minutes for regular users", field="duration"
        )
    return duration


def validate_topic(topic: Optional[str]) -> str:
    topic = (topic or "").strip()
    if not TOPIC_MIN_LENGTH <= len(topic) <= TOPIC_MAX_LENGTH:
        raise ValidationFailedError(
            "Topic must be between 3 and 100 characters", field="topic"
        )
    return topic


def validate_max_participants(value: Optional[int]) -> int:
    if value is None:
        return DEFAULT_MAX_PARTICIPANTS
    if not MIN_PARTICIPANTS <= value <= MAX_PARTICIPANTS:
        raise ValidationFailedError(
            "Max participants must be between 3 and 30", field="maxParticipants"
        )
    return value


def normalize_join_code(raw: Optional[str]) -> str:
    """Trim and check the six-digit shape before any lookup."""
    code = (raw or "").strip()
    if not _JOIN_CODE_PATTERN.match(code):
        raise ValidationFailedError("Join code must be 6 digits", field="joinCode")
    return code


def generate_join_code() -> str:
    return str(JOIN_CODE_MIN + secrets.randbelow(JOIN_CODE_MAX - JOIN_CODE_MIN + 1))


def generate_channel_name(clock: Clock = utcnow) -> str:
    """`circle-<epoch ms>-<9 base36 chars>`; uniqueness is enforced by the table."""
    millis = int(clock().timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"circle-{millis}-{suffix}"


def mask_join_code(code: Optional[str]) -> str:
    """Log-safe form of a join code."""
    if not code:
        return "-"
    return f"****{code[-2:]}"
