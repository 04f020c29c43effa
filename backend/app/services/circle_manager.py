"""Support circle lifecycle - create, list, join, leave, end and expiry.

Async implementation using SQLAlchemy 2.0 async API.

Capacity and status transitions are written as conditional UPDATEs so the
database stays the authoritative guard; per-record locks on top of that keep
read-then-write sequences (quota check, display-name numbering) consistent.
"""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, TypeVar

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Principal, UserRole
from app.core.clock import Clock, ensure_utc, utcnow
from app.core.config import settings
from app.core.exceptions import (
    AuthorizationError,
    CircleFullError,
    CircleNotActiveError,
    CircleNotFoundError,
    CircleQuotaExceededError,
    InvalidJoinCodeError,
    JoinCodeExhaustedError,
    NotCircleHostError,
    StorageBusyError,
    ValidationFailedError,
)
from app.models.circle import (
    OPEN_CIRCLE_STATUSES,
    CircleParticipant,
    CircleStatus,
    GameType,
    SupportCircle,
)
from app.services import circle_policy
from app.services.signaling import SignalingHub, signaling_hub
from app.storage import LockManager, create_lock_manager

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 5
RETRY_DELAY = 0.2


class CircleManager:
    """Support circle service - owns every status and membership transition."""

    def __init__(
        self,
        lock_manager: LockManager,
        signaling: Optional[SignalingHub] = None,
        clock: Clock = utcnow,
        join_code_attempts: Optional[int] = None,
        list_limit: Optional[int] = None,
        admin_list_limit: Optional[int] = None,
    ):
        self._locks = lock_manager
        self._signaling = signaling
        self._clock = clock
        self._join_code_attempts = join_code_attempts or settings.JOIN_CODE_MAX_ATTEMPTS
        self._list_limit = list_limit or settings.CIRCLE_LIST_LIMIT
        self._admin_list_limit = admin_list_limit or settings.CIRCLE_ADMIN_LIST_LIMIT

    # ==================== Helpers ====================

    async def _run_with_retry(
        self,
        db: AsyncSession,
        operation: str,
        work: Callable[[], Awaitable[T]],
    ) -> T:
        """Run work, retrying when SQLite reports the database as locked."""
        for attempt in range(MAX_RETRIES):
            try:
                return await work()
            except OperationalError:
                await db.rollback()
                if attempt < MAX_RETRIES - 1:
                    # Exponential backoff: 0.2s, 0.4s, 0.8s, 1.6s
                    wait_time = RETRY_DELAY * (2 ** attempt)
                    logger.warning(
                        f"Database locked on {operation} attempt {attempt + 1}/{MAX_RETRIES}, "
                        f"retrying in {wait_time:.2f}s..."
                    )
                    await asyncio.sleep(wait_time)
                    continue
                raise StorageBusyError(operation)
        raise StorageBusyError(operation)

    async def _load_circle(self, db: AsyncSession, circle_id: str) -> Optional[SupportCircle]:
        """Fetch a circle, overwriting any stale state held by the session."""
        result = await db.execute(
            select(SupportCircle)
            .where(SupportCircle.id == circle_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _require_circle(self, db: AsyncSession, circle_id: str) -> SupportCircle:
        circle = await self._load_circle(db, circle_id)
        if circle is None:
            raise CircleNotFoundError(circle_id)
        return circle

    async def _signal(self, channel_name: str, message_type: str, payload: dict) -> None:
        if self._signaling is None:
            return
        await self._signaling.broadcast(channel_name, message_type, payload)

    @staticmethod
    def _parse_game_type(game_type) -> GameType:
        if game_type is None:
            return GameType.NONE
        try:
            return GameType(game_type)
        except ValueError:
            raise ValidationFailedError(f"Unsupported game type: {game_type}", field="gameType")

    # ==================== Create ====================

    async def create_circle(
        self,
        db: AsyncSession,
        principal: Principal,
        topic: str,
        description: Optional[str] = None,
        duration: Optional[int] = None,
        max_participants: Optional[int] = None,
        is_private: bool = False,
        anonymous_mode: bool = True,
        ai_moderation: bool = True,
        game_type=GameType.NONE,
        scheduled_start: Optional[datetime] = None,
    ) -> SupportCircle:
        """Create an active circle with a fresh channel name and join code.

        Raises:
            ValidationFailedError: topic, duration or capacity outside policy
            CircleQuotaExceededError: regular user already hosts an open circle
            JoinCodeExhaustedError: no unique join code within the retry budget
        """
        fields = dict(
            topic=circle_policy.validate_topic(topic),
            description=description,
            duration=circle_policy.validate_duration(principal.role, duration),
            max_participants=circle_policy.validate_max_participants(max_participants),
            is_private=bool(is_private),
            anonymous_mode=bool(anonymous_mode),
            ai_moderation=bool(ai_moderation),
            game_type=self._parse_game_type(game_type),
            scheduled_start=scheduled_start,
        )

        if principal.role == UserRole.USER:
            # Serialize creations by the same host so the quota check holds
            async with self._locks.get_lock(f"host:{principal.id}"):
                return await self._run_with_retry(
                    db, "create_circle", lambda: self._insert_circle(db, principal, fields, True)
                )
        return await self._run_with_retry(
            db, "create_circle", lambda: self._insert_circle(db, principal, fields, False)
        )

    async def _insert_circle(
        self,
        db: AsyncSession,
        principal: Principal,
        fields: dict,
        enforce_quota: bool,
    ) -> SupportCircle:
        if enforce_quota:
            result = await db.execute(
                select(SupportCircle.id).where(
                    SupportCircle.host_id == principal.id,
                    SupportCircle.status.in_(OPEN_CIRCLE_STATUSES),
                ).limit(1)
            )
            existing_id = result.scalar_one_or_none()
            if existing_id:
                logger.info(f"Circle quota reached for user {principal.id} (open circle {existing_id})")
                raise CircleQuotaExceededError(existing_id)

        if principal.display_name:
            host_name = principal.display_name
        elif fields["anonymous_mode"]:
            host_name = "Anonymous"
        else:
            host_name = "User"

        for attempt in range(self._join_code_attempts):
            join_code = circle_policy.generate_join_code()
            taken = await db.execute(
                select(SupportCircle.id).where(SupportCircle.join_code == join_code)
            )
            if taken.scalar_one_or_none():
                logger.debug(f"Join code collision on attempt {attempt + 1}")
                continue

            now = self._clock()
            circle_id = str(uuid.uuid4())
            circle = SupportCircle(
                id=circle_id,
                host_id=principal.id,
                host_name=host_name,
                channel_name=circle_policy.generate_channel_name(self._clock),
                join_code=join_code,
                current_participants=0,
                status=CircleStatus.ACTIVE,
                started_at=now,
                created_at=now,
                **fields,
            )
            db.add(circle)
            try:
                await db.commit()
            except IntegrityError:
                # Another creator took the same code (or channel) first
                await db.rollback()
                logger.info(f"Unique collision inserting circle on attempt {attempt + 1}, regenerating")
                continue

            logger.info(
                f"Circle created: {circle_id} by {principal.id} "
                f"(duration={fields['duration']}m, private={fields['is_private']}, "
                f"code={circle_policy.mask_join_code(join_code)})"
            )
            return await self._require_circle(db, circle_id)

        logger.error(f"Join code allocation exhausted after {self._join_code_attempts} attempts")
        raise JoinCodeExhaustedError(self._join_code_attempts)

    # ==================== Read ====================

    async def list_circles(
        self,
        db: AsyncSession,
        principal: Principal,
        status: Optional[CircleStatus] = None,
    ) -> List[SupportCircle]:
        """Circles visible to the caller, newest first.

        Admins see every circle. Everyone else sees public circles plus the
        private ones they host or participate in.
        """
        statuses = [status] if status else list(OPEN_CIRCLE_STATUSES)
        base = (
            select(SupportCircle)
            .where(SupportCircle.status.in_(statuses))
            .order_by(SupportCircle.created_at.desc())
        )

        if principal.is_admin:
            result = await db.execute(base.limit(self._admin_list_limit))
            return list(result.scalars().all())

        public = await db.execute(
            base.where(SupportCircle.is_private.is_(False)).limit(self._list_limit)
        )
        circles = list(public.scalars().all())

        member_of = select(CircleParticipant.circle_id).where(
            CircleParticipant.user_id == principal.id
        )
        private = await db.execute(
            base.where(
                SupportCircle.is_private.is_(True),
                or_(SupportCircle.host_id == principal.id, SupportCircle.id.in_(member_of)),
            )
        )

        seen = {circle.id for circle in circles}
        for circle in private.scalars().all():
            if circle.id not in seen:
                seen.add(circle.id)
                circles.append(circle)

        circles.sort(key=lambda c: ensure_utc(c.created_at), reverse=True)
        return circles

    async def get_circle(self, db: AsyncSession, principal: Principal, circle_id: str) -> SupportCircle:
        """Fetch one circle; private circles look missing to outsiders."""
        circle = await self._require_circle(db, circle_id)
        if circle.is_private and not (principal.is_admin or circle.is_member(principal.id)):
            raise CircleNotFoundError(circle_id)
        return circle

    async def authorize_channel_member(
        self,
        db: AsyncSession,
        principal: Principal,
        channel_name: str,
    ) -> SupportCircle:
        """Resolve a channel name to a circle the caller hosts or participates in."""
        result = await db.execute(
            select(SupportCircle).where(SupportCircle.channel_name == channel_name)
        )
        circle = result.scalar_one_or_none()
        if circle is None:
            raise CircleNotFoundError()
        if not circle.is_member(principal.id):
            raise AuthorizationError("You are not a participant in this circle", code="NOT_CIRCLE_MEMBER")
        return circle

    # ==================== Membership ====================

    async def join_circle(
        self,
        db: AsyncSession,
        principal: Principal,
        circle_id: str,
        join_code: Optional[str] = None,
    ) -> SupportCircle:
        """Join a circle; rejoining is an idempotent success.

        Raises:
            CircleNotFoundError, CircleNotActiveError, InvalidJoinCodeError, CircleFullError
        """
        async with self._locks.get_lock(f"circle:{circle_id}"):
            circle, joined = await self._run_with_retry(
                db, "join_circle", lambda: self._join(db, principal, circle_id, join_code)
            )

        if joined is not None:
            await self._signal(circle.channel_name, "participant_joined", {
                "circleId": circle.id,
                "userId": joined.user_id,
                "displayName": joined.display_name,
                "currentParticipants": circle.current_participants,
            })
        return circle

    async def _join(
        self,
        db: AsyncSession,
        principal: Principal,
        circle_id: str,
        join_code: Optional[str],
    ):
        circle = await self._require_circle(db, circle_id)
        existing = circle.find_participant(principal.id)

        # Outsiders learn nothing about a private circle without its code
        if existing is None and circle.is_private and not circle.is_host(principal.id):
            if join_code is None or join_code.strip() != circle.join_code:
                raise InvalidJoinCodeError("Invalid join code")

        if circle.status not in OPEN_CIRCLE_STATUSES:
            raise CircleNotActiveError(circle_id)

        # Reconnects return the existing membership without a capacity check
        if existing is not None:
            logger.info(f"User {principal.id} re-joined circle {circle_id}")
            return circle, None

        if circle.anonymous_mode:
            display_name = f"User {circle.current_participants + 1}"
        else:
            display_name = principal.display_name or "User"

        # Claim a seat only if one is free; zero rows means the circle filled up or closed
        claimed = await db.execute(
            update(SupportCircle)
            .where(
                SupportCircle.id == circle_id,
                SupportCircle.current_participants < SupportCircle.max_participants,
                SupportCircle.status.in_(OPEN_CIRCLE_STATUSES),
            )
            .values(current_participants=SupportCircle.current_participants + 1)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            await db.rollback()
            circle = await self._require_circle(db, circle_id)
            if circle.status not in OPEN_CIRCLE_STATUSES:
                raise CircleNotActiveError(circle_id)
            logger.info(f"Circle {circle_id} is full, rejecting {principal.id}")
            raise CircleFullError(circle_id)

        participant = CircleParticipant(
            circle_id=circle_id,
            user_id=principal.id,
            display_name=display_name,
            joined_at=self._clock(),
        )
        db.add(participant)
        try:
            await db.commit()
        except IntegrityError:
            # Same user joined concurrently; the seat claim rolls back with it
            await db.rollback()
            circle = await self._require_circle(db, circle_id)
            if circle.find_participant(principal.id) is not None:
                logger.info(f"User {principal.id} joined circle {circle_id} (race resolved)")
                return circle, None
            raise

        logger.info(f"User {principal.id} joined circle {circle_id} as {display_name}")
        return await self._require_circle(db, circle_id), participant

    async def join_by_code(self, db: AsyncSession, principal: Principal, join_code: str) -> SupportCircle:
        """Join the circle whose join code matches exactly."""
        code = circle_policy.normalize_join_code(join_code)
        result = await db.execute(
            select(SupportCircle.id).where(SupportCircle.join_code == code)
        )
        circle_id = result.scalar_one_or_none()
        if circle_id is None:
            logger.info(f"Join code not found: {circle_policy.mask_join_code(code)}")
            raise InvalidJoinCodeError()
        return await self.join_circle(db, principal, circle_id, join_code=code)

    async def leave_circle(self, db: AsyncSession, principal: Principal, circle_id: str) -> SupportCircle:
        """Remove the caller from a circle; absent callers are a no-op."""
        async with self._locks.get_lock(f"circle:{circle_id}"):
            circle, left = await self._run_with_retry(
                db, "leave_circle", lambda: self._leave(db, principal, circle_id)
            )

        if left:
            await self._signal(circle.channel_name, "participant_left", {
                "circleId": circle.id,
                "userId": principal.id,
                "currentParticipants": circle.current_participants,
            })
        return circle

    async def _leave(self, db: AsyncSession, principal: Principal, circle_id: str):
        circle = await self._require_circle(db, circle_id)
        participant = circle.find_participant(principal.id)
        if participant is None:
            logger.info(f"User {principal.id} not in circle {circle_id}, leave is a no-op")
            return circle, False

        await db.delete(participant)
        await db.execute(
            update(SupportCircle)
            .where(SupportCircle.id == circle_id, SupportCircle.current_participants > 0)
            .values(current_participants=SupportCircle.current_participants - 1)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

        logger.info(f"User {principal.id} left circle {circle_id}")
        return await self._require_circle(db, circle_id), True

    # ==================== Status transitions ====================

    async def _mark_ended(
        self,
        db: AsyncSession,
        circle_id: str,
        from_statuses,
    ) -> bool:
        """Move a circle to ENDED only from the given statuses. Returns whether it changed."""
        result = await db.execute(
            update(SupportCircle)
            .where(SupportCircle.id == circle_id, SupportCircle.status.in_(from_statuses))
            .values(status=CircleStatus.ENDED, ended_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount > 0

    async def end_circle(self, db: AsyncSession, principal: Principal, circle_id: str) -> SupportCircle:
        """End a circle as its host or an admin.

        Ending a circle that is already ended or cancelled is a no-op and
        keeps the original endedAt.
        """
        async with self._locks.get_lock(f"circle:{circle_id}"):
            circle = await self._require_circle(db, circle_id)
            if not (circle.is_host(principal.id) or principal.is_admin):
                raise NotCircleHostError("Only the host or an admin can end this circle")

            if circle.status not in OPEN_CIRCLE_STATUSES:
                logger.info(f"Circle {circle_id} already {circle.status.value}, end is a no-op")
                return circle

            changed = await self._run_with_retry(
                db, "end_circle", lambda: self._mark_ended(db, circle_id, OPEN_CIRCLE_STATUSES)
            )
            circle = await self._require_circle(db, circle_id)

        if changed:
            logger.info(f"Circle {circle_id} ended by {principal.id}")
            await self._signal(circle.channel_name, "circle_ended", {
                "circleId": circle.id,
                "reason": "ended",
            })
        else:
            logger.info(f"Circle {circle_id} was closed concurrently, end is a no-op")
        return circle

    async def close_expired_circles(self, db: AsyncSession) -> List[str]:
        """End every ACTIVE circle whose elapsed time reached its duration.

        A failure on one circle is logged and does not stop the others.
        Failures roll back the given session, which expires every instance
        loaded in it; callers should hold ids rather than ORM objects.

        Returns:
            Ids of the circles this call closed
        """
        now = self._clock()
        result = await db.execute(
            select(
                SupportCircle.id,
                SupportCircle.channel_name,
                SupportCircle.started_at,
                SupportCircle.duration,
            ).where(
                SupportCircle.status == CircleStatus.ACTIVE,
                SupportCircle.started_at.is_not(None),
            )
        )
        candidates = result.all()

        closed: List[str] = []
        for circle_id, channel_name, started_at, duration in candidates:
            elapsed_minutes = (now - ensure_utc(started_at)).total_seconds() / 60
            if elapsed_minutes < duration:
                continue
            try:
                async with self._locks.get_lock(f"circle:{circle_id}"):
                    changed = await self._run_with_retry(
                        db,
                        "close_expired_circle",
                        lambda cid=circle_id: self._mark_ended(db, cid, (CircleStatus.ACTIVE,)),
                    )
            except Exception as e:
                await db.rollback()
                logger.error(f"Failed to auto-close circle {circle_id}: {e}", exc_info=True)
                continue

            if changed:
                closed.append(circle_id)
                logger.info(f"Auto-closed expired circle {circle_id} after {elapsed_minutes:.1f} minutes")
                await self._signal(channel_name, "circle_ended", {
                    "circleId": circle_id,
                    "reason": "expired",
                })
        return closed


# Global instance
circle_manager = CircleManager(lock_manager=create_lock_manager(), signaling=signaling_hub)
