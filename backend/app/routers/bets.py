from fastapi import APIRouter, Depends, status

from app.models.bet import BetCreate, BetResponse, GameBetResponse
from app.services.auth_service import get_current_user
from app.services.bet_service import list_game_bets, place_bet

router = APIRouter(prefix="/api/bets", tags=["bets"])


@router.post("/", status_code=status.HTTP_201_CREATED, response_model=BetResponse)
async def submit_bet(body: BetCreate, user=Depends(get_current_user)):
    """Place or update a score prediction before kickoff."""
    bet = await place_bet(
        user_id=str(user["_id"]),
        game_id=body.game_id,
        score1=body.score1,
        score2=body.score2,
    )
    return BetResponse(
        id=str(bet["_id"]),
        game_id=bet["game_id"],
        user_id=bet["user_id"],
        score1=bet["score1"],
        score2=bet["score2"],
        points=bet.get("points"),
        created_at=bet.get("created_at"),
        updated_at=bet.get("updated_at"),
    )


@router.get("/game/{game_id}", response_model=list[GameBetResponse])
async def game_bets(game_id: str, user=Depends(get_current_user)):
    """Bets of a game; others' bets stay hidden until kickoff."""
    return [GameBetResponse(**b) for b in await list_game_bets(game_id, str(user["_id"]))]
