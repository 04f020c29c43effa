"""Game session service - one live session per circle.

The manager is game-agnostic: phases, roles, gameData and results are
stored as given. Game-specific checks live in app.games.
Signaling happens only after a successful commit.
"""
import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Principal
from app.core.clock import Clock, utcnow
from app.core.exceptions import (
    AuthorizationError,
    CircleNotFoundError,
    GameSessionEndedError,
    GameSessionNotFoundError,
    GameTypeMismatchError,
    NotGameHostError,
    NotGamePlayerError,
    PlayerCountError,
    StorageBusyError,
    ValidationFailedError,
)
from app.games.catalog import get_game_info
from app.games.imposter import ImposterRules, imposter_rules
from app.models.circle import GameType, SupportCircle
from app.models.game_session import GamePlayer, GameSession, GameSessionStatus
from app.services.signaling import SignalingHub, signaling_hub
from app.storage import LockManager, create_lock_manager

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 5
RETRY_DELAY = 0.2
MAX_PHASE_LENGTH = 50


class GameSessionManager:
    """Creates, advances and ends game sessions scoped to a circle."""

    def __init__(
        self,
        lock_manager: LockManager,
        signaling: Optional[SignalingHub] = None,
        clock: Clock = utcnow,
        rules: ImposterRules = imposter_rules,
    ):
        self._locks = lock_manager
        self._signaling = signaling
        self._clock = clock
        self._imposter_rules = rules

    # ==================== Helpers ====================

    async def _run_with_retry(
        self,
        db: AsyncSession,
        operation: str,
        work: Callable[[], Awaitable[T]],
    ) -> T:
        for attempt in range(MAX_RETRIES):
            try:
                return await work()
            except OperationalError:
                await db.rollback()
                if attempt < MAX_RETRIES - 1:
                    wait_time = RETRY_DELAY * (2 ** attempt)
                    logger.warning(
                        f"Database locked on {operation} attempt {attempt + 1}/{MAX_RETRIES}, "
                        f"retrying in {wait_time:.2f}s..."
                    )
                    await asyncio.sleep(wait_time)
                    continue
                raise StorageBusyError(operation)
        raise StorageBusyError(operation)

    async def _load_session(self, db: AsyncSession, session_id: str) -> Optional[GameSession]:
        result = await db.execute(
            select(GameSession)
            .where(GameSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _require_session(self, db: AsyncSession, session_id: str) -> GameSession:
        session = await self._load_session(db, session_id)
        if session is None:
            raise GameSessionNotFoundError(session_id)
        return session

    @staticmethod
    def _require_host(session: GameSession, principal: Principal, action: str) -> None:
        if session.circle is None or not session.circle.is_host(principal.id):
            raise NotGameHostError(f"Only the host can {action}")

    @staticmethod
    def _require_open(session: GameSession) -> None:
        if session.status == GameSessionStatus.ENDED:
            raise GameSessionEndedError(session.id)

    @staticmethod
    def _merge_game_data(session: GameSession, game_data: Optional[Dict[str, Any]]) -> None:
        if not game_data:
            return
        if not isinstance(game_data, dict):
            raise ValidationFailedError("gameData must be an object", field="gameData")
        # Shallow merge; MutableDict tracks the in-place update
        session.game_data.update(game_data)

    async def _broadcast(self, session: GameSession, message_type: str, payload: dict) -> None:
        if self._signaling is None or session.circle is None:
            return
        await self._signaling.broadcast(session.circle.channel_name, message_type, payload)

    @staticmethod
    def _state_payload(session: GameSession) -> dict:
        return {
            "sessionId": session.id,
            "status": session.status.value,
            "round": session.round,
            "phase": session.phase,
            "gameData": dict(session.game_data or {}),
            "results": session.results,
        }

    # ==================== Lookup / create ====================

    async def get_or_create(
        self,
        db: AsyncSession,
        principal: Principal,
        circle_id: str,
        game_type,
    ) -> Tuple[GameSession, bool]:
        """Return the circle's non-ended session, creating it if there is none.

        Returns:
            (session, created)
        """
        async with self._locks.get_lock(f"circle-session:{circle_id}"):
            return await self._run_with_retry(
                db, "get_or_create_session",
                lambda: self._get_or_create(db, principal, circle_id, game_type),
            )

    async def _get_or_create(
        self,
        db: AsyncSession,
        principal: Principal,
        circle_id: str,
        game_type,
    ) -> Tuple[GameSession, bool]:
        circle = await self._require_member_circle(db, principal, circle_id)

        requested = getattr(game_type, "value", game_type)
        if requested != circle.game_type.value:
            raise GameTypeMismatchError(str(requested), circle.game_type.value)

        existing = await self._find_open_session(db, circle_id)
        if existing is not None:
            logger.info(f"Reusing game session {existing.id} for circle {circle_id}")
            return existing, False

        now = self._clock()
        session_id = str(uuid.uuid4())
        session = GameSession(
            id=session_id,
            circle_id=circle_id,
            game_type=circle.game_type,
            status=GameSessionStatus.WAITING,
            round=1,
            phase="setup",
            game_data={},
            votes={},
            created_at=now,
        )
        session.players = [
            GamePlayer(
                user_id=participant.user_id,
                role=None,
                score=0,
                is_alive=True,
                joined_at=now,
            )
            for participant in circle.participants
        ]
        db.add(session)
        await db.commit()

        logger.info(
            f"Game session {session_id} created for circle {circle_id} "
            f"({circle.game_type.value}, {len(circle.participants)} players)"
        )
        return await self._require_session(db, session_id), True

    async def _require_member_circle(
        self,
        db: AsyncSession,
        principal: Principal,
        circle_id: str,
    ) -> SupportCircle:
        result = await db.execute(
            select(SupportCircle)
            .where(SupportCircle.id == circle_id)
            .execution_options(populate_existing=True)
        )
        circle = result.scalar_one_or_none()
        if circle is None:
            raise CircleNotFoundError(circle_id)
        if not circle.is_member(principal.id):
            raise AuthorizationError(
                "You must be a participant to access game sessions", code="NOT_CIRCLE_MEMBER"
            )
        return circle

    async def _find_open_session(self, db: AsyncSession, circle_id: str) -> Optional[GameSession]:
        result = await db.execute(
            select(GameSession)
            .where(
                GameSession.circle_id == circle_id,
                GameSession.status != GameSessionStatus.ENDED,
            )
            .order_by(GameSession.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active_for_circle(
        self,
        db: AsyncSession,
        principal: Principal,
        circle_id: str,
    ) -> GameSession:
        await self._require_member_circle(db, principal, circle_id)
        session = await self._find_open_session(db, circle_id)
        if session is None:
            raise GameSessionNotFoundError(message="No active game session found")
        return session

    # ==================== Transitions ====================

    async def start(
        self,
        db: AsyncSession,
        principal: Principal,
        session_id: str,
        game_data: Optional[Dict[str, Any]] = None,
    ) -> GameSession:
        async with self._locks.get_lock(f"session:{session_id}"):
            session = await self._run_with_retry(
                db, "start_session", lambda: self._start(db, principal, session_id, game_data)
            )
        await self._broadcast(session, "game_state_update", self._state_payload(session))
        return session

    async def _start(self, db, principal, session_id, game_data):
        session = await self._require_session(db, session_id)
        self._require_host(session, principal, "start the game")
        self._require_open(session)

        info = get_game_info(session.game_type)
        if info is not None and not info.min_players <= len(session.players) <= info.max_players:
            raise PlayerCountError(
                session.game_type.value, len(session.players), info.min_players, info.max_players
            )

        session.status = GameSessionStatus.ACTIVE
        session.started_at = self._clock()
        session.round = 1
        session.phase = "setup"
        if session.game_type == GameType.IMPOSTER:
            session.game_data["discussionSeconds"] = self._imposter_rules.discussion_seconds
        self._merge_game_data(session, game_data)
        await db.commit()

        logger.info(f"Game session {session_id} started by {principal.id}")
        return await self._require_session(db, session_id)

    async def assign_roles(
        self,
        db: AsyncSession,
        principal: Principal,
        session_id: str,
        roles: Optional[Dict[str, str]] = None,
    ) -> GameSession:
        """Set roles for the players named in the map; others keep theirs.

        Completeness is not checked here; game rules decide what a valid
        assignment is. Without a map, imposter sessions get a random deal
        with exactly one imposter.
        """
        if roles is not None and not isinstance(roles, dict):
            raise ValidationFailedError("roles must be an object", field="roles")

        async with self._locks.get_lock(f"session:{session_id}"):
            session, assigned = await self._run_with_retry(
                db, "assign_roles", lambda: self._assign_roles(db, principal, session_id, roles)
            )

        if self._signaling is not None and session.circle is not None:
            for user_id, role in assigned.items():
                await self._signaling.send_direct(
                    session.circle.channel_name, user_id, "assign_role",
                    {"sessionId": session.id, "role": role},
                )
        return session

    async def _assign_roles(self, db, principal, session_id, roles):
        session = await self._require_session(db, session_id)
        self._require_host(session, principal, "assign roles")
        self._require_open(session)

        if roles is None:
            if session.game_type != GameType.IMPOSTER:
                raise ValidationFailedError("roles must be an object", field="roles")
            roles = self._imposter_rules.assign_roles(p.user_id for p in session.players)

        assigned: Dict[str, str] = {}
        for player in session.players:
            # Empty roles leave the player's current one in place
            if roles.get(player.user_id):
                player.role = roles[player.user_id]
                assigned[player.user_id] = player.role
        await db.commit()

        ignored = set(roles) - set(assigned)
        if ignored:
            logger.debug(f"Ignored roles for non-players in session {session_id}: {sorted(ignored)}")
        logger.info(f"Roles assigned for {len(assigned)} players in session {session_id}")
        return await self._require_session(db, session_id), assigned

    async def vote(
        self,
        db: AsyncSession,
        principal: Principal,
        session_id: str,
        target_user_id: str,
    ) -> GameSession:
        """Record the caller's vote; a later vote replaces an earlier one."""
        if not target_user_id:
            raise ValidationFailedError("Target user ID is required", field="targetUserId")

        async with self._locks.get_lock(f"session:{session_id}"):
            session = await self._run_with_retry(
                db, "vote", lambda: self._vote(db, principal, session_id, target_user_id)
            )
        await self._broadcast(session, "vote_update", {
            "sessionId": session.id,
            "voterId": principal.id,
            "votes": dict(session.votes or {}),
        })
        return session

    async def _vote(self, db, principal, session_id, target_user_id):
        session = await self._require_session(db, session_id)
        if session.find_player(principal.id) is None:
            raise NotGamePlayerError()
        self._require_open(session)
        if session.find_player(target_user_id) is None:
            raise ValidationFailedError("Vote target is not a player in this game", field="targetUserId")

        session.votes[principal.id] = target_user_id
        await db.commit()

        logger.debug(f"Vote recorded in session {session_id}: {principal.id} -> {target_user_id}")
        return await self._require_session(db, session_id)

    async def update_phase(
        self,
        db: AsyncSession,
        principal: Principal,
        session_id: str,
        phase: str,
        game_data: Optional[Dict[str, Any]] = None,
    ) -> GameSession:
        """Store a game-defined phase tag verbatim and merge gameData."""
        if not isinstance(phase, str) or not phase or len(phase) > MAX_PHASE_LENGTH:
            raise ValidationFailedError("Phase is required", field="phase")

        async with self._locks.get_lock(f"session:{session_id}"):
            session = await self._run_with_retry(
                db, "update_phase",
                lambda: self._update_phase(db, principal, session_id, phase, game_data),
            )
        await self._broadcast(session, "game_phase_change", {
            "sessionId": session.id,
            "phase": session.phase,
            "round": session.round,
            "gameData": dict(session.game_data or {}),
        })
        return session

    async def _update_phase(self, db, principal, session_id, phase, game_data):
        session = await self._require_session(db, session_id)
        self._require_host(session, principal, "update game phase")
        self._require_open(session)
        if session.game_type == GameType.IMPOSTER:
            self._imposter_rules.validate_phase(phase)

        session.phase = phase
        self._merge_game_data(session, game_data)
        await db.commit()

        logger.info(f"Session {session_id} phase -> {phase}")
        return await self._require_session(db, session_id)

    async def next_round(
        self,
        db: AsyncSession,
        principal: Principal,
        session_id: str,
    ) -> GameSession:
        """Replay within the same session: bump the round and reset roles and votes."""
        async with self._locks.get_lock(f"session:{session_id}"):
            session = await self._run_with_retry(
                db, "next_round", lambda: self._next_round(db, principal, session_id)
            )
        await self._broadcast(session, "game_state_update", self._state_payload(session))
        return session

    async def _next_round(self, db, principal, session_id):
        session = await self._require_session(db, session_id)
        self._require_host(session, principal, "start a new round")
        self._require_open(session)

        session.round += 1
        session.phase = "setup"
        session.votes.clear()
        for player in session.players:
            player.role = None
            player.is_alive = True
        await db.commit()

        logger.info(f"Session {session_id} moved to round {session.round}")
        return await self._require_session(db, session_id)

    async def end(
        self,
        db: AsyncSession,
        principal: Principal,
        session_id: str,
        results: Optional[Dict[str, Any]] = None,
    ) -> GameSession:
        """End a session; ending an ended session changes nothing."""
        async with self._locks.get_lock(f"session:{session_id}"):
            session, changed = await self._run_with_retry(
                db, "end_session", lambda: self._end(db, principal, session_id, results)
            )
        if changed:
            await self._broadcast(session, "game_state_update", self._state_payload(session))
        return session

    async def _end(self, db, principal, session_id, results, phase=None, eliminated=None):
        session = await self._require_session(db, session_id)
        self._require_host(session, principal, "end the game")

        if session.status == GameSessionStatus.ENDED:
            logger.info(f"Game session {session_id} already ended, end is a no-op")
            return session, False

        session.status = GameSessionStatus.ENDED
        session.ended_at = self._clock()
        if results is not None:
            session.results = results
        if phase is not None:
            session.phase = phase
        if eliminated is not None:
            player = session.find_player(eliminated)
            if player is not None:
                player.is_alive = False
        await db.commit()

        logger.info(f"Game session {session_id} ended by {principal.id}")
        return await self._require_session(db, session_id), True

    async def resolve_imposter_round(
        self,
        db: AsyncSession,
        principal: Principal,
        session_id: str,
    ) -> GameSession:
        """Tally votes against the assigned roles and end the session with the outcome."""
        async with self._locks.get_lock(f"session:{session_id}"):
            session, changed = await self._run_with_retry(
                db, "resolve_session", lambda: self._resolve(db, principal, session_id)
            )
        if changed:
            await self._broadcast(session, "game_state_update", self._state_payload(session))
        return session

    async def _resolve(self, db, principal, session_id):
        session = await self._require_session(db, session_id)
        self._require_host(session, principal, "end the game")
        self._require_open(session)
        if session.game_type != GameType.IMPOSTER:
            raise GameTypeMismatchError(GameType.IMPOSTER.value, session.game_type.value)

        roles = {player.user_id: player.role for player in session.players}
        outcome = self._imposter_rules.resolve_round(dict(session.votes or {}), roles)
        logger.info(
            f"Session {session_id} resolved: winner={outcome['winner']} "
            f"eliminated={outcome['eliminated']} tie={outcome['tie']}"
        )
        return await self._end(
            db, principal, session_id, outcome,
            phase="results", eliminated=outcome["eliminated"],
        )


# Global instance
game_session_manager = GameSessionManager(lock_manager=create_lock_manager(), signaling=signaling_hub)
