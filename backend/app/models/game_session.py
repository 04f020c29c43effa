"""Game session models - one live session per circle."""
from sqlalchemy import Column, String, Integer, DateTime, Enum as SQLEnum, Boolean, UniqueConstraint, ForeignKey, Index, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.ext.mutable import MutableDict
from datetime import datetime, timezone
import enum

from .base import Base
from .circle import GameType, _enum_values


class GameSessionStatus(str, enum.Enum):
    """Session lifecycle; PAUSED is reachable but unused by the current games."""
    WAITING = "waiting"
    STARTING = "starting"
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


class GameSession(Base):
    """Game state machine scoped to exactly one circle."""
    __tablename__ = "game_sessions"

    __table_args__ = (
        Index("idx_game_sessions_circle_status", "circle_id", "status"),
        Index("idx_game_sessions_type_status", "game_type", "status"),
    )

    id = Column(String(36), primary_key=True)
    circle_id = Column(String(36), ForeignKey("support_circles.id", ondelete="CASCADE"), nullable=False, index=True)
    game_type = Column(
        SQLEnum(GameType, values_callable=_enum_values, native_enum=False, length=32),
        nullable=False,
    )
    status = Column(
        SQLEnum(GameSessionStatus, values_callable=_enum_values, native_enum=False, length=16),
        default=GameSessionStatus.WAITING,
        nullable=False,
    )
    round = Column(Integer, default=1, nullable=False)
    phase = Column(String(50), default="setup", nullable=False)  # game-defined tag
    game_data = Column(MutableDict.as_mutable(JSON), nullable=False, default=dict)
    votes = Column(MutableDict.as_mutable(JSON), nullable=False, default=dict)  # voter -> target
    results = Column(JSON, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    players = relationship(
        "GamePlayer",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="GamePlayer.id",
        lazy="selectin",
    )
    circle = relationship("SupportCircle", lazy="selectin")

    def find_player(self, user_id: str):
        for player in self.players:
            if player.user_id == user_id:
                return player
        return None


class GamePlayer(Base):
    """Per-player game state; role is a game-specific secret label."""
    __tablename__ = "game_players"

    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_game_player"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(36), ForeignKey("game_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    role = Column(String(32), nullable=True)
    score = Column(Integer, default=0, nullable=False)
    is_alive = Column(Boolean, default=True, nullable=False)
    joined_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    session = relationship("GameSession", back_populates="players")
