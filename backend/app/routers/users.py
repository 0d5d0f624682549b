from fastapi import APIRouter, Depends

from app.services.auth_service import get_current_user
from app.services.dashboard_service import get_dashboard, get_games_of_day

router = APIRouter(prefix="/api/user", tags=["user"])


@router.get("/dashboard")
async def dashboard(user=Depends(get_current_user)):
    return await get_dashboard(user)


@router.get("/games-of-day")
async def games_of_day(user=Depends(get_current_user)):
    """Today's games (UTC) with the caller's bet and everyone's bets."""
    return await get_games_of_day(user)
