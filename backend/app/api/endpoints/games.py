"""Game session API endpoints."""
import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_current_principal, get_game_session_manager
from app.core.auth import Principal
from app.core.database_async import get_async_db
from app.games.catalog import GAME_CATALOG
from app.schemas.game import (
    AssignRolesRequest,
    CreateSessionRequest,
    EndSessionRequest,
    GameInfoResponse,
    GameSessionEnvelope,
    GameSessionResponse,
    StartSessionRequest,
    UpdatePhaseRequest,
    VoteRequest,
)
from app.services.game_session_manager import GameSessionManager

router = APIRouter(prefix="/games", tags=["games"])
logger = logging.getLogger(__name__)


@router.get("/catalog", response_model=List[GameInfoResponse])
async def get_catalog():
    """Games a circle can be configured with."""
    return [GameInfoResponse(**game.to_dict()) for game in GAME_CATALOG.values()]


@router.post("/sessions", response_model=GameSessionEnvelope)
async def get_or_create_session(
    request: CreateSessionRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: GameSessionManager = Depends(get_game_session_manager),
):
    """Return the circle's live session, creating one if none exists."""
    session, created = await manager.get_or_create(db, principal, request.circle_id, request.game_type)
    return GameSessionEnvelope(
        session=GameSessionResponse.for_viewer(session, principal.id),
        created=created,
    )


@router.get("/sessions/by-circle/{circle_id}", response_model=GameSessionResponse)
async def get_active_session(
    circle_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: GameSessionManager = Depends(get_game_session_manager),
):
    session = await manager.get_active_for_circle(db, principal, circle_id)
    return GameSessionResponse.for_viewer(session, principal.id)


@router.post("/sessions/{session_id}/start", response_model=GameSessionResponse)
async def start_session(
    session_id: str,
    request: StartSessionRequest = StartSessionRequest(),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: GameSessionManager = Depends(get_game_session_manager),
):
    session = await manager.start(db, principal, session_id, game_data=request.game_data)
    return GameSessionResponse.for_viewer(session, principal.id)


@router.post("/sessions/{session_id}/assign-roles", response_model=GameSessionResponse)
async def assign_roles(
    session_id: str,
    request: AssignRolesRequest = AssignRolesRequest(),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: GameSessionManager = Depends(get_game_session_manager),
):
    """Host sets secret roles; each player is told theirs directly.

    Imposter sessions may omit the map to have roles dealt at random.
    """
    session = await manager.assign_roles(db, principal, session_id, request.roles)
    return GameSessionResponse.for_viewer(session, principal.id)


@router.post("/sessions/{session_id}/vote", response_model=GameSessionResponse)
async def vote(
    session_id: str,
    request: VoteRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: GameSessionManager = Depends(get_game_session_manager),
):
    session = await manager.vote(db, principal, session_id, request.target_user_id)
    return GameSessionResponse.for_viewer(session, principal.id)


@router.post("/sessions/{session_id}/update-phase", response_model=GameSessionResponse)
async def update_phase(
    session_id: str,
    request: UpdatePhaseRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: GameSessionManager = Depends(get_game_session_manager),
):
    session = await manager.update_phase(
        db, principal, session_id, request.phase, game_data=request.game_data
    )
    return GameSessionResponse.for_viewer(session, principal.id)


@router.post("/sessions/{session_id}/end", response_model=GameSessionResponse)
async def end_session(
    session_id: str,
    request: EndSessionRequest = EndSessionRequest(),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: GameSessionManager = Depends(get_game_session_manager),
):
    session = await manager.end(db, principal, session_id, results=request.results)
    return GameSessionResponse.for_viewer(session, principal.id)


@router.post("/sessions/{session_id}/resolve", response_model=GameSessionResponse)
async def resolve_session(
    session_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: GameSessionManager = Depends(get_game_session_manager),
):
    """Tally imposter votes, end the session and store the outcome in results."""
    session = await manager.resolve_imposter_round(db, principal, session_id)
    return GameSessionResponse.for_viewer(session, principal.id)


@router.post("/sessions/{session_id}/next-round", response_model=GameSessionResponse)
async def next_round(
    session_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: GameSessionManager = Depends(get_game_session_manager),
):
    """Play again: next round number, phase back to setup, roles and votes cleared."""
    session = await manager.next_round(db, principal, session_id)
    return GameSessionResponse.for_viewer(session, principal.id)
