"""Recompute bet points of finished games and refresh shooters counts.

Usage:
    python -m tools.recompute_points
    python -m tools.recompute_points --competition-id 665f1c...
    python -m tools.recompute_points --dry-run
"""

import argparse
import asyncio
import os
import sys

sys.path.insert(0, "backend")

if "MONGO_URI" not in os.environ:
    os.environ["MONGO_URI"] = "mongodb://localhost:27017/pronofoot"
if "JWT_SECRET" not in os.environ:
    os.environ["JWT_SECRET"] = "recompute-tool-unused-secret"

from app.models.game import GameStatus
from app.services.bet_service import rescore_game_bets
from app.services.competition_service import refresh_shooters


async def run(competition_id: str | None, dry_run: bool, verbose: bool) -> int:
    import app.database as _db

    await _db.connect_db()
    db = _db.db

    if competition_id:
        competition_ids = [competition_id]
    else:
        competitions = await db.competitions.find({}, {"_id": 1}).to_list(length=10_000)
        competition_ids = [str(c["_id"]) for c in competitions]

    rescored = 0
    for cid in competition_ids:
        games = await db.games.find(
            {"competition_id": cid, "status": GameStatus.FINISHED.value}
        ).to_list(length=10_000)
        if dry_run:
            print(f"[dry-run] competition {cid}: {len(games)} finished games")
            continue

        bets = 0
        for game in games:
            bets += await rescore_game_bets(game)
        members = await refresh_shooters(cid)
        rescored += bets
        if verbose:
            print(f"competition {cid}: {len(games)} games, {bets} bets, {members} members")

    print(
        f"{'planned' if dry_run else 'completed'} recompute: {rescored} bets "
        f"(competitions={len(competition_ids)})"
    )
    await _db.close_db()
    return rescored


def main() -> None:
    parser = argparse.ArgumentParser(description="Recompute bet points of finished games.")
    parser.add_argument("--competition-id", type=str, default=None, help="Optional competition filter.")
    parser.add_argument("--dry-run", action="store_true", help="Preview without DB writes.")
    parser.add_argument("--verbose", action="store_true", help="Print each competition.")
    args = parser.parse_args()
    asyncio.run(run(args.competition_id, args.dry_run, args.verbose))


if __name__ == "__main__":
    main()
