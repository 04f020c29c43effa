# Models package
from .base import Base
from .circle import SupportCircle, CircleParticipant, CircleFlag, CircleStatus, GameType, OPEN_CIRCLE_STATUSES
from .game_session import GameSession, GamePlayer, GameSessionStatus
