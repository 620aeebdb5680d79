from __future__ import annotations
import math
from datetime import datetime, timezone
from typing import Any, Generic, List, Optional, TypeVar
from pydantic import AliasChoices, AliasPath, BaseModel, Field, field_validator

from battle_tracker.models import FighterType, Side


# ── Upstream normalisation ────────────────────────────────────────────────────
#
# Eclesiar is loose about types: sides arrive as 0/1, booleans or words,
# fighter types as free text. Everything is pinned to one shape here so
# nothing downstream has to guess.

_ATTACKER_TOKENS = {"1", "A"}
_DEFENDER_TOKENS = {"0", "D"}


def normalize_side(raw: Any) -> Side:
    if raw is None:
        return Side.UNKNOWN
    if isinstance(raw, Side):
        return raw
    if isinstance(raw, bool):
        return Side.ATTACKER if raw else Side.DEFENDER
    if isinstance(raw, (int, float)):
        if raw == 1:
            return Side.ATTACKER
        if raw == 0:
            return Side.DEFENDER
        return Side.UNKNOWN

    text = str(raw).strip().upper()
    if not text:
        return Side.UNKNOWN
    if text in _ATTACKER_TOKENS or text.startswith("ATTACK"):
        return Side.ATTACKER
    if text in _DEFENDER_TOKENS or text.startswith("DEFEND"):
        return Side.DEFENDER
    return Side.UNKNOWN


def normalize_fighter_type(raw: Any) -> FighterType:
    if isinstance(raw, FighterType):
        return raw
    text = str(raw or "").strip().lower()
    if "air" in text or "plane" in text:
        return FighterType.AIRCRAFT
    return FighterType.PLAYER


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class FactionPayload(BaseModel):
    id: int = Field(gt=0)
    name: Optional[str] = None
    avatar: Optional[str] = None


class RegionPayload(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None


class WarPayload(BaseModel):
    id: int = Field(gt=0)
    attackers: FactionPayload
    defenders: FactionPayload
    region: Optional[RegionPayload] = None
    attackers_score: Optional[int] = None
    defenders_score: Optional[int] = None
    is_revolution: bool = Field(
        False,
        validation_alias=AliasChoices(AliasPath("flags", "is_revolution"), "is_revolution"),
    )

    @field_validator("is_revolution", mode="before")
    @classmethod
    def _revolution_flag(cls, v: Any) -> bool:
        return bool(v)


class RoundPayload(BaseModel):
    id: int
    end_date: Optional[datetime] = None
    attackers_score: Optional[int] = None
    defenders_score: Optional[int] = None
    attackers_points: Optional[int] = None
    defenders_points: Optional[int] = None

    @field_validator("end_date")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


class HitPayload(BaseModel):
    fighter_id: int = Field(
        validation_alias=AliasChoices(AliasPath("fighter", "id"), "fighter_id"),
    )
    fighter_type: FighterType = Field(
        FighterType.PLAYER,
        validation_alias=AliasChoices(AliasPath("fighter", "type"), "fighter_type"),
    )
    damage: int = 0
    side: Side = Side.UNKNOWN
    item_id: Optional[int] = None
    created_at: Optional[datetime] = None

    @field_validator("side", mode="before")
    @classmethod
    def _side(cls, v: Any) -> Side:
        return normalize_side(v)

    @field_validator("fighter_type", mode="before")
    @classmethod
    def _fighter_type(cls, v: Any) -> FighterType:
        return normalize_fighter_type(v)

    @field_validator("damage", mode="before")
    @classmethod
    def _damage(cls, v: Any) -> Any:
        if v is None:
            return 0
        if isinstance(v, str):
            try:
                v = float(v)
            except ValueError:
                return v
        if isinstance(v, float) and math.isfinite(v):
            return round(v)
        return v

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)


class AccountPayload(BaseModel):
    id: int
    username: Optional[str] = None
    avatar: Optional[str] = None


# ── API output ────────────────────────────────────────────────────────────────

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None


class BattleOut(BaseModel):
    id: int
    attacker_id: int
    attacker_name: Optional[str]
    attacker_avatar: Optional[str]
    defender_id: int
    defender_name: Optional[str]
    defender_avatar: Optional[str]
    region_id: Optional[int]
    region_name: Optional[str]
    attackers_score: Optional[int]
    defenders_score: Optional[int]
    is_revolution: bool
    fetched_at: Optional[datetime]
    model_config = {"from_attributes": True}


class BattleListItem(BattleOut):
    rounds_count: int = 0
    hits_count: int = 0


class FighterSummary(BaseModel):
    fighter_id: int
    name: str
    avatar: str
    total_damage: int
    hit_count: int
    side: Side


class FailedEntry(BaseModel):
    id: int
    error: str


class RangeProgressOut(BaseModel):
    status: str
    running: bool
    from_id: Optional[int] = None
    to_id: Optional[int] = None
    current: int = 0
    total: int = 0
    completed_ids: List[int] = []
    failed: List[FailedEntry] = []
    last_error: Optional[str] = None


# ── API input ─────────────────────────────────────────────────────────────────

class FetchBattleRequest(BaseModel):
    battle_id: int = Field(gt=0)
    api_key: Optional[str] = None


class FetchRangeRequest(BaseModel):
    from_id: int = Field(gt=0)
    to_id: int = Field(gt=0)
    api_key: Optional[str] = None


class SummaryRequest(BaseModel):
    battle_ids: List[int] = Field(min_length=1)
