"""API router aggregation."""
from fastapi import APIRouter

from app.api.endpoints import audio, circles, games, websocket

api_router = APIRouter(prefix="/api")
api_router.include_router(circles.router)
api_router.include_router(games.router)
api_router.include_router(audio.router)

# WebSocket routes live outside the /api prefix
ws_router = APIRouter()
ws_router.include_router(websocket.router)
