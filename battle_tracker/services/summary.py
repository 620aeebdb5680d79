from __future__ import annotations

from typing import Iterable, List

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from battle_tracker.database import unit_of_work
from battle_tracker.models import Side
from battle_tracker.repositories.hits import HitRepository
from battle_tracker.schemas import FighterSummary

log = structlog.get_logger(__name__)

UNKNOWN_LABEL = "unknown"


async def summarize(db: AsyncSession, battle_ids: Iterable[int]) -> List[FighterSummary]:
    """Per-fighter damage across ``battle_ids``, heaviest hitters first.

    A fighter's side is the one recorded at their earliest appearance
    (lowest battle id, then oldest hit). Hits without a known side still
    count towards damage but never decide the side.
    """
    ids = sorted(set(battle_ids))
    if not ids:
        return []

    repo = HitRepository(db)
    async with unit_of_work(db, "summary"):
        totals = await repo.fighter_totals(ids)
        sides = await repo.first_known_sides(ids) if totals else {}

    log.info("summary.computed", battles=len(ids), fighters=len(totals))
    return [
        FighterSummary(
            fighter_id=row["fighter_id"],
            name=row["name"] or UNKNOWN_LABEL,
            avatar=row["avatar"] or UNKNOWN_LABEL,
            total_damage=int(row["total_damage"] or 0),
            hit_count=row["hit_count"],
            side=sides.get(row["fighter_id"], Side.UNKNOWN.value),
        )
        for row in totals
    ]
