from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Tuple

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from battle_tracker.models import Battle, Hit, Round
from battle_tracker.schemas import WarPayload


class BattleRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def upsert(self, war: WarPayload) -> Battle:
        """
        Insert the battle, or refresh names, avatars, scores and fetched_at of
        the existing row. Identity, region and revolution flag stay as first seen.
        """
        now = datetime.now(timezone.utc)
        battle = await self.db.get(Battle, war.id)

        if battle is None:
            battle = Battle(
                id=war.id,
                attacker_id=war.attackers.id,
                defender_id=war.defenders.id,
                region_id=war.region.id if war.region else None,
                region_name=war.region.name if war.region else None,
                is_revolution=war.is_revolution,
            )
            self.db.add(battle)

        battle.attacker_name = war.attackers.name
        battle.attacker_avatar = war.attackers.avatar
        battle.defender_name = war.defenders.name
        battle.defender_avatar = war.defenders.avatar
        battle.attackers_score = war.attackers_score
        battle.defenders_score = war.defenders_score
        battle.fetched_at = now

        await self.db.flush()
        return battle

    async def list_with_counts(self) -> List[Tuple[Battle, int, int]]:
        rounds_count = (
            select(func.count(Round.id))
            .where(Round.battle_id == Battle.id)
            .correlate(Battle)
            .scalar_subquery()
        )
        hits_count = (
            select(func.count(Hit.id))
            .join(Round, Hit.round_id == Round.id)
            .where(Round.battle_id == Battle.id)
            .correlate(Battle)
            .scalar_subquery()
        )
        rows = await self.db.execute(
            select(
                Battle,
                rounds_count.label("rounds_count"),
                hits_count.label("hits_count"),
            ).order_by(Battle.fetched_at.desc())
        )
        return [(b, rc or 0, hc or 0) for b, rc, hc in rows.all()]

    async def delete(self, battle_id: int) -> bool:
        """Rounds and hits go with it through ON DELETE CASCADE."""
        result = await self.db.execute(delete(Battle).where(Battle.id == battle_id))
        # Cascaded rows vanish behind the identity map's back.
        self.db.expunge_all()
        return bool(result.rowcount)
