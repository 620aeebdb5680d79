from __future__ import annotations

from datetime import timedelta
from typing import Any, Iterable, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from battle_tracker.config import settings
from battle_tracker.database import unit_of_work
from battle_tracker.exceptions import ApiError, NotFoundError, StorageError, ValidationError
from battle_tracker.models import Battle
from battle_tracker.repositories.battles import BattleRepository
from battle_tracker.repositories.hits import HitRepository
from battle_tracker.repositories.players import PlayerRepository
from battle_tracker.repositories.rounds import RoundRepository
from battle_tracker.schemas import AccountPayload, RoundPayload, WarPayload
from battle_tracker.services.client import EclesiarClient
from battle_tracker.services.paginator import fetch_all_hits

log = structlog.get_logger(__name__)


def unwrap_war(battle_id: int, raw: Any) -> WarPayload:
    """/wars answers with either one object or a list holding it."""
    if isinstance(raw, list):
        if not raw:
            raise NotFoundError(f"Battle {battle_id} not found", {"battle_id": battle_id})
        raw = raw[0]
    if not raw:
        raise NotFoundError(f"Battle {battle_id} not found", {"battle_id": battle_id})
    if not isinstance(raw, dict):
        raise ValidationError(
            f"Battle {battle_id}: unexpected war payload type {type(raw).__name__}",
            {"battle_id": battle_id},
        )

    try:
        return WarPayload.model_validate(raw)
    except PydanticValidationError as exc:
        missing = sorted({".".join(str(p) for p in e["loc"]) for e in exc.errors()})
        raise ValidationError(
            f"Battle {battle_id}: war payload is missing required fields ({', '.join(missing)})",
            {"battle_id": battle_id, "fields": missing},
        ) from exc


def _parse_rounds(battle_id: int, raw: Any) -> List[RoundPayload]:
    if not raw:
        return []
    if not isinstance(raw, list):
        raw = [raw]
    rounds = []
    for item in raw:
        try:
            rounds.append(RoundPayload.model_validate(item))
        except PydanticValidationError as exc:
            log.warning("ingest.round.skipped", battle_id=battle_id, error=str(exc.errors()[:1]))
    return rounds


async def refresh_players(
    db: AsyncSession,
    client: EclesiarClient,
    fighter_ids: Iterable[int],
    credential: str,
    ttl: Optional[timedelta] = None,
) -> int:
    """Best-effort: look up fighters whose cached row is missing or stale."""
    ttl = ttl or timedelta(hours=settings.PLAYER_CACHE_TTL_HOURS)
    repo = PlayerRepository(db)
    try:
        async with unit_of_work(db, "players.lookup"):
            stale = await repo.needing_refresh(sorted(set(fighter_ids)), ttl)
    except StorageError as exc:
        log.warning("players.lookup.failed", error=exc.detail)
        return 0

    refreshed = 0
    for player_id in stale:
        try:
            raw = await client.fetch_account(player_id, credential)
            if isinstance(raw, list):
                raw = raw[0] if raw else {}
            if raw is None:
                raw = {}
            if not isinstance(raw, dict):
                log.warning(
                    "players.refresh.failed",
                    player_id=player_id,
                    error=f"unexpected account payload type {type(raw).__name__}",
                )
                continue
            data = dict(raw)
            if not data.get("id"):
                data["id"] = player_id
            account = AccountPayload.model_validate(data)
            async with unit_of_work(db, "player.upsert"):
                await repo.upsert(account)
            refreshed += 1
        except (ApiError, StorageError) as exc:
            log.warning("players.refresh.failed", player_id=player_id, error=exc.detail)
        except PydanticValidationError as exc:
            log.warning("players.refresh.failed", player_id=player_id, error=str(exc.errors()[:1]))

    if stale:
        log.info("players.refreshed", requested=len(stale), refreshed=refreshed)
    return refreshed


async def ingest_round(
    db: AsyncSession,
    client: EclesiarClient,
    battle_id: int,
    payload: RoundPayload,
    credential: str,
) -> int:
    """One round is its own unit of work; earlier rounds stay saved if this one fails."""
    async with unit_of_work(db, "round.upsert"):
        await RoundRepository(db).upsert(battle_id, payload)

    hits = await fetch_all_hits(client, payload.id, credential)

    async with unit_of_work(db, "round.hits.replace"):
        stored = await HitRepository(db).replace_for_round(payload.id, hits)

    log.info("ingest.round.saved", battle_id=battle_id, round_id=payload.id, hits=stored)
    await refresh_players(db, client, (h.fighter_id for h in hits), credential)
    return stored


async def ingest_battle(
    db: AsyncSession,
    client: EclesiarClient,
    battle_id: int,
    credential: str,
) -> Battle:
    raw_war = await client.fetch_wars(battle_id, credential)
    log.debug("ingest.war.payload", battle_id=battle_id, payload=raw_war)
    war = unwrap_war(battle_id, raw_war)

    async with unit_of_work(db, "battle.upsert"):
        battle = await BattleRepository(db).upsert(war)

    rounds = _parse_rounds(war.id, await client.fetch_war_rounds(war.id, credential))
    log.info("ingest.rounds.fetched", battle_id=war.id, rounds=len(rounds))

    total_hits = 0
    for payload in rounds:
        total_hits += await ingest_round(db, client, war.id, payload, credential)

    # A failed player upsert rolls back and expires everything loaded.
    async with unit_of_work(db, "battle.reload"):
        await db.refresh(battle)

    log.info("ingest.battle.saved", battle_id=war.id, rounds=len(rounds), hits=total_hits)
    return battle
