from __future__ import annotations

from typing import List

import structlog
from pydantic import ValidationError as PydanticValidationError

from battle_tracker.config import settings
from battle_tracker.exceptions import ApiError
from battle_tracker.schemas import HitPayload
from battle_tracker.services.client import EclesiarClient

log = structlog.get_logger(__name__)


async def fetch_all_hits(
    client: EclesiarClient,
    round_id: int,
    credential: str,
    max_pages: int | None = None,
) -> List[HitPayload]:
    """Drain every page of hits for one round.

    Stops at the first empty page. Any upstream failure on a page, including
    an exhausted rate limit or a dropped connection, ends the walk with
    whatever was collected so far.
    """
    max_pages = max_pages or settings.HITS_MAX_PAGES
    hits: List[HitPayload] = []
    page = 1

    while page <= max_pages:
        try:
            rows = await client.fetch_round_hits(round_id, page, credential)
        except ApiError as exc:
            log.warning(
                "hits.page.error",
                round_id=round_id, page=page,
                error_code=exc.error_code, status=exc.status, error=exc.detail,
            )
            break

        if not rows:
            break
        if not isinstance(rows, list):
            rows = [rows]

        for raw in rows:
            try:
                hits.append(HitPayload.model_validate(raw))
            except PydanticValidationError as exc:
                log.warning(
                    "hits.row.skipped",
                    round_id=round_id, page=page, error=str(exc.errors()[:1]),
                )
        page += 1
    else:
        log.warning("hits.page_cap.reached", round_id=round_id, max_pages=max_pages)

    log.info("hits.fetched", round_id=round_id, pages=page - 1, hits=len(hits))
    return hits
