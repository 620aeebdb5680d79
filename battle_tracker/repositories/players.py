from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterable, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from battle_tracker.models import Player
from battle_tracker.schemas import AccountPayload


class PlayerRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def needing_refresh(self, player_ids: Iterable[int], ttl: timedelta) -> List[int]:
        """Ids with no cached row, or a row older than ``ttl``. Input order kept."""
        wanted = list(dict.fromkeys(player_ids))
        if not wanted:
            return []
        cutoff = datetime.now(timezone.utc) - ttl
        fresh = set(
            (
                await self.db.execute(
                    select(Player.id).where(
                        Player.id.in_(wanted),
                        Player.updated_at > cutoff,
                    )
                )
            ).scalars().all()
        )
        return [pid for pid in wanted if pid not in fresh]

    async def upsert(self, account: AccountPayload) -> Player:
        player = await self.db.get(Player, account.id)
        if player is None:
            player = Player(id=account.id)
            self.db.add(player)
        player.name = account.username
        player.avatar = account.avatar
        player.updated_at = datetime.now(timezone.utc)
        await self.db.flush()
        return player
