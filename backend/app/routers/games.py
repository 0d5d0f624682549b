from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.models.game import GameResponse, GameStatus
from app.services.auth_service import get_current_user
from app.services.game_service import get_game, list_games, serialize_game
from app.workers._state import get_state

router = APIRouter(prefix="/api/games", tags=["games"])


@router.get("/", response_model=list[GameResponse])
async def games(
    competition_id: Optional[str] = Query(None),
    status: Optional[GameStatus] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    user=Depends(get_current_user),
):
    docs = await list_games(competition_id, status.value if status else None, limit)
    return [serialize_game(g) for g in docs]


@router.get("/live")
async def live_games(user=Depends(get_current_user)):
    """LIVE games with their live scores; polled by clients during matches."""
    docs = await list_games(game_status=GameStatus.LIVE.value)
    football = await get_state("live_sync:football")
    rugby = await get_state("live_sync:rugby")
    return {
        "games": [serialize_game(g) for g in docs],
        "last_sync": {
            "football": (football or {}).get("synced_at"),
            "rugby": (rugby or {}).get("synced_at"),
        },
    }


@router.get("/{game_id}", response_model=GameResponse)
async def game(game_id: str, user=Depends(get_current_user)):
    return serialize_game(await get_game(game_id))
