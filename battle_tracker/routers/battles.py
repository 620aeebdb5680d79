from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from battle_tracker.auth import header_credential, resolve_credential
from battle_tracker.database import get_db
from battle_tracker.schemas import (
    BattleListItem, BattleOut, Envelope, FetchBattleRequest,
    FetchRangeRequest, FighterSummary, RangeProgressOut, SummaryRequest,
)
from battle_tracker.services.battles import delete_battle, list_battles
from battle_tracker.services.client import EclesiarClient, get_client
from battle_tracker.services.ingestor import ingest_battle
from battle_tracker.services.range_fetch import RangeFetcher, get_range_fetcher
from battle_tracker.services.summary import summarize

router = APIRouter(prefix="/api/battles", tags=["battles"])


@router.get("", response_model=Envelope[List[BattleListItem]])
async def get_battles(db: AsyncSession = Depends(get_db)):
    return Envelope(data=await list_battles(db))


@router.post("/fetch", response_model=Envelope[BattleOut])
async def fetch_battle(
    body: FetchBattleRequest,
    header_key: Optional[str] = Depends(header_credential),
    db: AsyncSession = Depends(get_db),
    client: EclesiarClient = Depends(get_client),
):
    credential = resolve_credential(body.api_key, header_key)
    battle = await ingest_battle(db, client, body.battle_id, credential)
    return Envelope(
        data=BattleOut.model_validate(battle),
        message="Battle fetched and saved successfully",
    )


@router.post("/fetch-range", response_model=Envelope[RangeProgressOut], status_code=202)
async def fetch_range(
    body: FetchRangeRequest,
    header_key: Optional[str] = Depends(header_credential),
    fetcher: RangeFetcher = Depends(get_range_fetcher),
):
    credential = resolve_credential(body.api_key, header_key)
    progress = fetcher.start(body.from_id, body.to_id, credential)
    return Envelope(
        data=progress,
        message=(
            f"Started fetching battles from {body.from_id} to {body.to_id} "
            f"({progress.total} battles)"
        ),
    )


@router.get("/fetch-progress", response_model=Envelope[RangeProgressOut])
async def fetch_progress(fetcher: RangeFetcher = Depends(get_range_fetcher)):
    return Envelope(data=fetcher.progress())


@router.post("/summary", response_model=Envelope[List[FighterSummary]])
async def battle_summary(body: SummaryRequest, db: AsyncSession = Depends(get_db)):
    return Envelope(data=await summarize(db, body.battle_ids))


@router.delete("/{battle_id}", response_model=Envelope[dict])
async def remove_battle(battle_id: int, db: AsyncSession = Depends(get_db)):
    await delete_battle(db, battle_id)
    return Envelope(message="Battle deleted successfully")
