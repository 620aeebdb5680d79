from __future__ import annotations

from typing import List

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from battle_tracker.database import unit_of_work
from battle_tracker.repositories.battles import BattleRepository
from battle_tracker.schemas import BattleListItem

log = structlog.get_logger(__name__)


async def list_battles(db: AsyncSession) -> List[BattleListItem]:
    async with unit_of_work(db, "battles.list"):
        rows = await BattleRepository(db).list_with_counts()
    return [
        BattleListItem.model_validate(battle).model_copy(
            update={"rounds_count": rounds_count, "hits_count": hits_count}
        )
        for battle, rounds_count, hits_count in rows
    ]


async def delete_battle(db: AsyncSession, battle_id: int) -> bool:
    """Deleting an id that was never stored is not an error."""
    async with unit_of_work(db, "battle.delete"):
        existed = await BattleRepository(db).delete(battle_id)
    log.info("battle.deleted", battle_id=battle_id, existed=existed)
    return existed
