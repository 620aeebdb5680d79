from __future__ import annotations

from typing import Dict, List, Sequence

from sqlalchemy import delete, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from battle_tracker.models import Hit, Player, Round, Side
from battle_tracker.schemas import HitPayload


class HitRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def replace_for_round(self, round_id: int, hits: Sequence[HitPayload]) -> int:
        """Drop whatever the round had and store exactly ``hits``."""
        await self.db.execute(delete(Hit).where(Hit.round_id == round_id))
        if hits:
            await self.db.execute(
                insert(Hit),
                [
                    {
                        "round_id": round_id,
                        "fighter_id": h.fighter_id,
                        "fighter_type": h.fighter_type.value,
                        "damage": h.damage,
                        "side": h.side.value,
                        "item_id": h.item_id,
                        "created_at": h.created_at,
                    }
                    for h in hits
                ],
            )
        return len(hits)

    async def fighter_totals(self, battle_ids: Sequence[int]) -> List[dict]:
        total_damage = func.sum(Hit.damage).label("total_damage")
        rows = await self.db.execute(
            select(
                Hit.fighter_id,
                Player.name,
                Player.avatar,
                total_damage,
                func.count(Hit.id).label("hit_count"),
            )
            .join(Round, Hit.round_id == Round.id)
            .outerjoin(Player, Player.id == Hit.fighter_id)
            .where(Round.battle_id.in_(battle_ids))
            .group_by(Hit.fighter_id, Player.name, Player.avatar)
            .order_by(total_damage.desc())
        )
        return [r._asdict() for r in rows.all()]

    async def first_known_sides(self, battle_ids: Sequence[int]) -> Dict[int, str]:
        """
        Side of each fighter's earliest attributed hit: lowest battle id first,
        then oldest hit (undated hits count as oldest), then insertion order.
        """
        ranked = (
            select(
                Hit.fighter_id,
                Hit.side,
                func.row_number()
                .over(
                    partition_by=Hit.fighter_id,
                    order_by=(
                        Round.battle_id.asc(),
                        Hit.created_at.asc().nulls_first(),
                        Hit.id.asc(),
                    ),
                )
                .label("rn"),
            )
            .join(Round, Hit.round_id == Round.id)
            .where(
                Round.battle_id.in_(battle_ids),
                Hit.side != Side.UNKNOWN.value,
            )
            .subquery()
        )
        rows = await self.db.execute(
            select(ranked.c.fighter_id, ranked.c.side).where(ranked.c.rn == 1)
        )
        return {fighter_id: side for fighter_id, side in rows.all()}
