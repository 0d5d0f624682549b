from fastapi import APIRouter, Depends

from app.services.auth_service import get_current_user
from app.services.stats_service import (
    get_current_user_stats,
    get_leaderboard,
    get_points_breakdown,
    get_user_stats,
)

router = APIRouter(prefix="/api/stats", tags=["stats"])


@router.get("/leaderboard")
async def leaderboard(user=Depends(get_current_user)):
    return await get_leaderboard()


@router.get("/me")
async def my_stats(user=Depends(get_current_user)):
    return await get_current_user_stats(user)


@router.get("/users/{user_id}")
async def user_stats(user_id: str, user=Depends(get_current_user)):
    return await get_user_stats(user_id)


@router.get("/users/{user_id}/points-breakdown")
async def points_breakdown(user_id: str, user=Depends(get_current_user)):
    """Total points per competition, latest first."""
    return await get_points_breakdown(user_id)
