from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from battle_tracker.models import Round
from battle_tracker.schemas import RoundPayload


class RoundRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def upsert(self, battle_id: int, payload: RoundPayload) -> Round:
        now = datetime.now(timezone.utc)
        rnd = await self.db.get(Round, payload.id)

        if rnd is None:
            rnd = Round(id=payload.id, battle_id=battle_id, end_date=payload.end_date)
            self.db.add(rnd)

        rnd.attackers_score = payload.attackers_score
        rnd.defenders_score = payload.defenders_score
        rnd.attackers_points = payload.attackers_points
        rnd.defenders_points = payload.defenders_points
        rnd.fetched_at = now

        await self.db.flush()
        return rnd
