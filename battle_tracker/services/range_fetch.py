from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

import structlog

from battle_tracker.database import SessionLocal
from battle_tracker.exceptions import ConflictError, ValidationError
from battle_tracker.schemas import FailedEntry, RangeProgressOut
from battle_tracker.services.client import get_client
from battle_tracker.services.ingestor import ingest_battle

log = structlog.get_logger(__name__)

IngestFn = Callable[[int, str], Awaitable[Any]]


class RangeStatus(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"


@dataclass
class RangeRun:
    from_id: int
    to_id: int
    status: RangeStatus = RangeStatus.RUNNING
    current: int = 0
    completed_ids: List[int] = field(default_factory=list)
    failed: List[FailedEntry] = field(default_factory=list)
    last_error: Optional[str] = None

    @property
    def total(self) -> int:
        return self.to_id - self.from_id + 1


async def ingest_in_own_session(battle_id: int, credential: str) -> None:
    async with SessionLocal() as db:
        await ingest_battle(db, get_client(), battle_id, credential)


class RangeFetcher:
    """Walks an inclusive id range one battle at a time, in the background.

    Only one range may run at once. Progress lives in memory and is replaced
    when the next range is accepted.
    """

    def __init__(self, ingest: IngestFn = ingest_in_own_session):
        self._ingest = ingest
        self._run: Optional[RangeRun] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._run is not None and self._run.status is RangeStatus.RUNNING

    def start(self, from_id: int, to_id: int, credential: str) -> RangeProgressOut:
        if from_id > to_id:
            raise ValidationError(
                "from_id must be less than or equal to to_id",
                {"from_id": from_id, "to_id": to_id},
            )
        if self.running:
            raise ConflictError(
                "A range fetch is already in progress",
                {"from_id": self._run.from_id, "to_id": self._run.to_id},
            )

        # Checked and claimed without yielding to the loop.
        self._run = RangeRun(from_id=from_id, to_id=to_id)
        self._task = asyncio.create_task(self._drive(self._run, credential))
        log.info("range.started", from_id=from_id, to_id=to_id, total=self._run.total)
        return self.progress()

    async def _drive(self, run: RangeRun, credential: str) -> None:
        try:
            for battle_id in range(run.from_id, run.to_id + 1):
                run.current = battle_id - run.from_id + 1
                try:
                    await self._ingest(battle_id, credential)
                    run.completed_ids.append(battle_id)
                except Exception as exc:
                    message = getattr(exc, "detail", None) or str(exc) or exc.__class__.__name__
                    run.failed.append(FailedEntry(id=battle_id, error=message))
                    run.last_error = message
                    log.warning("range.battle.failed", battle_id=battle_id, error=message)
        finally:
            run.status = RangeStatus.COMPLETED
            log.info(
                "range.completed",
                from_id=run.from_id, to_id=run.to_id,
                succeeded=len(run.completed_ids), failed=len(run.failed),
            )

    def progress(self) -> RangeProgressOut:
        run = self._run
        if run is None:
            return RangeProgressOut(status=RangeStatus.IDLE.value, running=False)
        return RangeProgressOut(
            status=run.status.value,
            running=run.status is RangeStatus.RUNNING,
            from_id=run.from_id,
            to_id=run.to_id,
            current=run.current,
            total=run.total,
            completed_ids=list(run.completed_ids),
            failed=list(run.failed),
            last_error=run.last_error,
        )

    async def join(self) -> None:
        """Wait for the current range, if any, to finish."""
        if self._task is not None:
            await asyncio.shield(self._task)


range_fetcher = RangeFetcher()


def get_range_fetcher() -> RangeFetcher:
    return range_fetcher
