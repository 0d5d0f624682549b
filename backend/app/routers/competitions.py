from fastapi import APIRouter, Depends

from app.models.competition import (
    EvolutionPoint,
    FinalWinnerPick,
    FinalWinnerPrediction,
    JoinResponse,
    RankingEntry,
)
from app.services.auth_service import get_current_user
from app.services import competition_service

router = APIRouter(prefix="/api/competitions", tags=["competitions"])


@router.post("/{competition_id}/join", response_model=JoinResponse)
async def join(competition_id: str, user=Depends(get_current_user)):
    return await competition_service.join_competition(competition_id, str(user["_id"]))


@router.get("/{competition_id}/ranking", response_model=list[RankingEntry])
async def live_ranking(competition_id: str, user=Depends(get_current_user)):
    return await competition_service.get_live_ranking(competition_id)


@router.get("/{competition_id}/ranking-evolution", response_model=list[EvolutionPoint])
async def ranking_evolution(competition_id: str, user=Depends(get_current_user)):
    """Cumulative ranking per matchday; members only."""
    return await competition_service.get_ranking_evolution(competition_id, str(user["_id"]))


@router.get("/{competition_id}/players-performance")
async def players_performance(competition_id: str, user=Depends(get_current_user)):
    return await competition_service.get_players_performance(competition_id)


@router.get("/{competition_id}/calendar")
async def calendar(competition_id: str, user=Depends(get_current_user)):
    return await competition_service.get_calendar(competition_id, str(user["_id"]))


@router.get("/{competition_id}/final-winner-prediction", response_model=FinalWinnerPrediction)
async def get_final_winner(competition_id: str, user=Depends(get_current_user)):
    return await competition_service.get_final_winner_prediction(competition_id, str(user["_id"]))


@router.post("/{competition_id}/final-winner-prediction")
async def set_final_winner(
    competition_id: str, body: FinalWinnerPick, user=Depends(get_current_user),
):
    """Pick the competition winner before the next game kicks off."""
    return await competition_service.set_final_winner_prediction(
        competition_id, str(user["_id"]), body.team_id,
    )
