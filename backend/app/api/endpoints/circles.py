"""Support circle API endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_circle_manager, get_current_principal
from app.core.auth import Principal
from app.core.database_async import get_async_db
from app.models.circle import CircleStatus
from app.schemas.circle import (
    CircleListResponse,
    CircleResponse,
    CreateCircleRequest,
    JoinByCodeRequest,
    JoinCircleRequest,
)
from app.services.circle_manager import CircleManager

router = APIRouter(prefix="/support-circles", tags=["support-circles"])
logger = logging.getLogger(__name__)


@router.get("", response_model=CircleListResponse)
async def list_circles(
    status: Optional[CircleStatus] = None,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: CircleManager = Depends(get_circle_manager),
):
    """List circles visible to the caller (open circles unless status is given)."""
    circles = await manager.list_circles(db, principal, status=status)
    return CircleListResponse(
        circles=[CircleResponse.model_validate(c) for c in circles],
        total=len(circles),
    )


@router.post("", response_model=CircleResponse, status_code=201)
async def create_circle(
    request: CreateCircleRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: CircleManager = Depends(get_circle_manager),
):
    """Create a circle hosted by the caller. It is active immediately."""
    circle = await manager.create_circle(
        db,
        principal,
        topic=request.topic,
        description=request.description,
        duration=request.duration,
        max_participants=request.max_participants,
        is_private=request.is_private,
        anonymous_mode=request.anonymous_mode,
        ai_moderation=request.ai_moderation,
        game_type=request.game_type,
        scheduled_start=request.scheduled_start,
    )
    return CircleResponse.model_validate(circle)


@router.post("/join-by-code", response_model=CircleResponse)
async def join_by_code(
    request: JoinByCodeRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: CircleManager = Depends(get_circle_manager),
):
    circle = await manager.join_by_code(db, principal, request.join_code)
    return CircleResponse.model_validate(circle)


@router.get("/{circle_id}", response_model=CircleResponse)
async def get_circle(
    circle_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: CircleManager = Depends(get_circle_manager),
):
    circle = await manager.get_circle(db, principal, circle_id)
    return CircleResponse.model_validate(circle)


@router.post("/{circle_id}/join", response_model=CircleResponse)
async def join_circle(
    circle_id: str,
    request: Optional[JoinCircleRequest] = None,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: CircleManager = Depends(get_circle_manager),
):
    """Join a circle. Rejoining returns the circle unchanged."""
    join_code = request.join_code if request else None
    circle = await manager.join_circle(db, principal, circle_id, join_code=join_code)
    return CircleResponse.model_validate(circle)


@router.post("/{circle_id}/leave", response_model=CircleResponse)
async def leave_circle(
    circle_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: CircleManager = Depends(get_circle_manager),
):
    circle = await manager.leave_circle(db, principal, circle_id)
    return CircleResponse.model_validate(circle)


@router.post("/{circle_id}/end", response_model=CircleResponse)
async def end_circle(
    circle_id: str,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_async_db),
    manager: CircleManager = Depends(get_circle_manager),
):
    """End a circle (host or admin). Ending an ended circle is a no-op."""
    circle = await manager.end_circle(db, principal, circle_id)
    return CircleResponse.model_validate(circle)
