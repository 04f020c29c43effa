"""Support circle, participant and flag models."""
from sqlalchemy import Column, String, Integer, DateTime, Enum as SQLEnum, Boolean, UniqueConstraint, ForeignKey, Index, Text
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum

from .base import Base


class CircleStatus(str, enum.Enum):
    """Circle lifecycle states. ENDED and CANCELLED are terminal."""
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


OPEN_CIRCLE_STATUSES = (CircleStatus.ACTIVE, CircleStatus.SCHEDULED)


class GameType(str, enum.Enum):
    """Mini-games a circle can host."""
    NONE = "none"
    IMPOSTER = "imposter"
    MAFIA = "mafia"
    SPYFALL = "spyfall"
    SCRIBBLE_WORDS = "scribble-words"
    FASTEST_FIRST = "fastest-first"
    MEMORY_REPEAT = "memory-repeat"
    FIVE_SECONDS = "five-seconds"
    TRUTH_OR_LIE = "truth-or-lie"
    RED_FLAG_GREEN_FLAG = "red-flag-green-flag"
    EMOJI_SOUND_GUESS = "emoji-sound-guess"
    GUARD_THE_LEADER = "guard-the-leader"
    RAPID_QUIZ = "rapid-quiz"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class SupportCircle(Base):
    """Time-boxed voice room with a join code."""
    __tablename__ = "support_circles"

    __table_args__ = (
        Index("idx_circles_status_start", "status", "scheduled_start"),
    )

    id = Column(String(36), primary_key=True)
    topic = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    host_id = Column(String(64), nullable=False, index=True)
    host_name = Column(String(100), nullable=False)  # snapshot at creation
    channel_name = Column(String(64), unique=True, nullable=False)
    join_code = Column(String(6), unique=True, nullable=False)
    duration = Column(Integer, nullable=False)  # minutes
    max_participants = Column(Integer, default=15, nullable=False)
    current_participants = Column(Integer, default=0, nullable=False)
    is_private = Column(Boolean, default=False, nullable=False)
    anonymous_mode = Column(Boolean, default=True, nullable=False)
    ai_moderation = Column(Boolean, default=True, nullable=False)
    game_type = Column(
        SQLEnum(GameType, values_callable=_enum_values, native_enum=False, length=32),
        default=GameType.NONE,
        nullable=False,
    )
    status = Column(
        SQLEnum(CircleStatus, values_callable=_enum_values, native_enum=False, length=16),
        default=CircleStatus.SCHEDULED,
        nullable=False,
        index=True,
    )
    scheduled_start = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)

    # Relationships
    participants = relationship(
        "CircleParticipant",
        back_populates="circle",
        cascade="all, delete-orphan",
        order_by="CircleParticipant.id",
        lazy="selectin",
    )
    flags = relationship(
        "CircleFlag",
        back_populates="circle",
        cascade="all, delete-orphan",
        order_by="CircleFlag.id",
        lazy="selectin",
    )

    def is_host(self, user_id: str) -> bool:
        return self.host_id == user_id

    def find_participant(self, user_id: str):
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def is_member(self, user_id: str) -> bool:
        """Host or current participant."""
        return self.is_host(user_id) or self.find_participant(user_id) is not None


class CircleParticipant(Base):
    """Membership row; insertion order is join order."""
    __tablename__ = "circle_participants"

    __table_args__ = (
        UniqueConstraint("circle_id", "user_id", name="uq_circle_participant"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    circle_id = Column(String(36), ForeignKey("support_circles.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    display_name = Column(String(100), nullable=False)  # "User N" in anonymous circles
    is_muted = Column(Boolean, default=False, nullable=False)
    joined_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    circle = relationship("SupportCircle", back_populates="participants")


class CircleFlag(Base):
    """Append-only moderation signal."""
    __tablename__ = "circle_flags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    circle_id = Column(String(36), ForeignKey("support_circles.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    reason = Column(String(500), nullable=True)
    timestamp = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    circle = relationship("SupportCircle", back_populates="flags")
