from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying, RetryCallState, stop_after_attempt,
    wait_exponential, retry_if_exception_type,
)

from battle_tracker.config import settings
from battle_tracker.exceptions import (
    NetworkError, RateLimitError, RateLimitExhausted, UpstreamError,
)

log = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

WARS = "/wars"
WAR_ROUNDS = "/war/rounds"
ROUND_HITS = "/war/round/hits"
ACCOUNT = "/account"


class EclesiarClient:
    """Eclesiar API client with fixed request spacing and 429 backoff.

    Every request first waits ``request_delay`` seconds. A throttled response
    is retried until ``max_attempts`` requests have been made, waiting
    ``backoff_base * 2 ** (attempt - 1)`` between them. Anything else fails
    on the spot.
    """

    def __init__(
        self,
        base_url: str,
        *,
        request_delay: float = 0.05,
        max_attempts: int = 5,
        backoff_base: float = 1.0,
        timeout: float = 8.0,
        include_event_wars: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.request_delay = request_delay
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.include_event_wars = include_event_wars
        self._sleep = sleep
        self._http = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, transport=transport
        )

    @classmethod
    def from_settings(cls, **overrides: Any) -> "EclesiarClient":
        options: Dict[str, Any] = dict(
            request_delay=settings.REQUEST_DELAY_SECONDS,
            max_attempts=settings.MAX_RETRIES,
            backoff_base=settings.RETRY_BASE_DELAY_SECONDS,
            timeout=settings.HTTP_TIMEOUT,
            include_event_wars=settings.INCLUDE_EVENT_WARS,
        )
        options.update(overrides)
        return cls(settings.ECLESIAR_API_URL, **options)

    @property
    def is_closed(self) -> bool:
        return self._http.is_closed

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Core call ─────────────────────────────────────────────────────────────

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(RateLimitError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base, exp_base=2, min=0),
            sleep=self._sleep,
            before_sleep=self._log_throttled,
            reraise=True,
        )

    def _log_throttled(self, retry_state: RetryCallState) -> None:
        log.warning(
            "client.throttled",
            attempt=retry_state.attempt_number,
            max_attempts=self.max_attempts,
            retry_in=retry_state.next_action.sleep if retry_state.next_action else None,
        )

    async def call(
        self, endpoint: str, params: Dict[str, Any], credential: str
    ) -> Any:
        """Returns the envelope's ``data`` member."""
        try:
            async for attempt in self._retrying():
                with attempt:
                    return await self._send(endpoint, params, credential)
        except RateLimitError as exc:
            log.error("client.rate_limit.exhausted", endpoint=endpoint, attempts=self.max_attempts)
            raise RateLimitExhausted(
                f"{endpoint}: still throttled after {self.max_attempts} attempts ({exc.detail})",
                status=exc.status,
                context={"endpoint": endpoint, "attempts": self.max_attempts},
            ) from exc

    async def _send(
        self, endpoint: str, params: Dict[str, Any], credential: str
    ) -> Any:
        await self._sleep(self.request_delay)
        try:
            resp = await self._http.get(
                endpoint,
                params=params,
                headers={"Authorization": f"Bearer {credential}"},
            )
        except httpx.TransportError as exc:
            raise NetworkError(
                f"{endpoint}: {exc.__class__.__name__}: {exc}",
                context={"endpoint": endpoint},
            ) from exc

        if resp.status_code == 429:
            raise RateLimitError(f"{endpoint}: too many requests", status=429)
        if resp.is_error:
            raise UpstreamError(
                _error_message(resp) or f"{endpoint}: HTTP {resp.status_code}",
                status=resp.status_code,
                context={"endpoint": endpoint},
            )

        try:
            body = resp.json()
        except ValueError as exc:
            raise UpstreamError(
                f"{endpoint}: response is not JSON",
                status=resp.status_code,
                context={"endpoint": endpoint},
            ) from exc
        if not isinstance(body, dict):
            raise UpstreamError(
                f"{endpoint}: unexpected response envelope",
                status=resp.status_code,
                context={"endpoint": endpoint},
            )

        code = body.get("code")
        if code == 429:
            raise RateLimitError(f"{endpoint}: too many requests", status=429)
        if code != 200:
            raise UpstreamError(
                body.get("message") or body.get("description") or f"{endpoint}: request failed",
                status=code if isinstance(code, int) else 0,
                context={"endpoint": endpoint},
            )
        return body.get("data")

    # ── Endpoints ─────────────────────────────────────────────────────────────

    async def fetch_wars(self, war_id: int, credential: str) -> Any:
        params: Dict[str, Any] = {"war_id": war_id}
        if not self.include_event_wars:
            params["event_wars"] = 0
        return await self.call(WARS, params, credential)

    async def fetch_war_rounds(self, war_id: int, credential: str) -> Any:
        return await self.call(WAR_ROUNDS, {"war_id": war_id}, credential)

    async def fetch_round_hits(self, round_id: int, page: int, credential: str) -> Any:
        return await self.call(ROUND_HITS, {"war_round_id": round_id, "page": page}, credential)

    async def fetch_account(self, account_id: int, credential: str) -> Any:
        return await self.call(ACCOUNT, {"account_id": account_id}, credential)


def _error_message(resp: httpx.Response) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("message") or body.get("description")
    return None


# ── Process-wide instance ─────────────────────────────────────────────────────

_client: Optional[EclesiarClient] = None


def init_client() -> None:
    global _client
    _client = EclesiarClient.from_settings()
    log.info(
        "client.initialized",
        base_url=settings.ECLESIAR_API_URL,
        request_delay=settings.REQUEST_DELAY_SECONDS,
        max_attempts=settings.MAX_RETRIES,
    )


async def close_client() -> None:
    global _client
    if _client:
        await _client.aclose()
        _client = None
        log.info("client.closed")


def get_client() -> EclesiarClient:
    if _client is None or _client.is_closed:
        init_client()
    return _client
