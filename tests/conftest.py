import os

# Set required env vars BEFORE any app imports trigger Settings()
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("ECLESIAR_API_URL", "https://eclesiar.test/api")
os.environ.setdefault("ECLESIAR_API_KEY", "test-eclesiar-key")

from collections import defaultdict

import httpx
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from battle_tracker.main import app
from battle_tracker.database import Base, enable_sqlite_foreign_keys, get_db
from battle_tracker.services.client import EclesiarClient, get_client
from battle_tracker.services.range_fetch import RangeFetcher, get_range_fetcher

TEST_DB = "sqlite+aiosqlite:///:memory:"
BASE_URL = "https://eclesiar.test/api"


# ── Upstream payload builders ─────────────────────────────────────────────────

def war(war_id, attackers_score=10, defenders_score=5, attacker_name="Red", defender_name="Blue"):
    return {
        "id": war_id,
        "attackers": {"id": 100, "name": attacker_name, "avatar": "red.png"},
        "defenders": {"id": 200, "name": defender_name, "avatar": "blue.png"},
        "region": {"id": 7, "name": "Northlands"},
        "attackers_score": attackers_score,
        "defenders_score": defenders_score,
        "flags": {"is_revolution": 0},
    }


def round_(round_id, **overrides):
    payload = {
        "id": round_id,
        "end_date": "2026-01-01T12:00:00Z",
        "attackers_score": 1,
        "defenders_score": 0,
        "attackers_points": 1000,
        "defenders_points": 800,
    }
    payload.update(overrides)
    return payload


def hit(fighter_id, damage, side=1, created_at="2026-01-01T10:00:00Z", fighter_type="account", item_id=None):
    return {
        "fighter": {"id": fighter_id, "type": fighter_type},
        "damage": damage,
        "side": side,
        "item_id": item_id,
        "created_at": created_at,
    }


class FakeEclesiar:
    """In-memory stand-in for the four Eclesiar endpoints."""

    def __init__(self):
        self.wars = {}
        self.rounds = {}
        self.hit_pages = {}
        self.accounts = {}
        self.failures = {}        # (endpoint, key) -> httpx.Response | Exception
        self.calls = []
        self.auth_headers = []
        self.counts = defaultdict(int)

    def _envelope(self, data, code=200, message=None):
        body = {"code": code, "data": data}
        if message:
            body["message"] = message
        return httpx.Response(200, json=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path[len("/api"):]
        params = dict(request.url.params)
        self.calls.append((endpoint, params))
        self.auth_headers.append(request.headers.get("Authorization"))
        self.counts[endpoint] += 1

        if endpoint == "/war/round/hits":
            key = (int(params["war_round_id"]), int(params["page"]))
        else:
            key = int(next(v for k, v in params.items() if k.endswith("_id")))

        failure = self.failures.get((endpoint, key))
        if isinstance(failure, Exception):
            raise failure
        if failure is not None:
            return failure

        if endpoint == "/wars":
            return self._envelope(self.wars.get(key, []))
        if endpoint == "/war/rounds":
            return self._envelope(self.rounds.get(key, []))
        if endpoint == "/war/round/hits":
            round_id, page = key
            pages = self.hit_pages.get(round_id, [])
            return self._envelope(pages[page - 1] if page <= len(pages) else [])
        if endpoint == "/account":
            account = self.accounts.get(key)
            if account is None:
                return self._envelope(None, code=404, message="Account not found")
            return self._envelope(account)
        return httpx.Response(404, json={"message": "no such endpoint"})

    def hit_page_calls(self, round_id):
        return [
            int(p["page"]) for e, p in self.calls
            if e == "/war/round/hits" and int(p["war_round_id"]) == round_id
        ]


async def no_sleep(_seconds):
    return None


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(TEST_DB, poolclass=StaticPool)
    enable_sqlite_foreign_keys(engine.sync_engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(db_engine):
    Session = async_sessionmaker(db_engine, expire_on_commit=False)
    async with Session() as session:
        yield session


@pytest.fixture
def upstream():
    return FakeEclesiar()


@pytest_asyncio.fixture
async def eclesiar(upstream):
    client = EclesiarClient(
        BASE_URL,
        request_delay=0,
        transport=httpx.MockTransport(upstream.handler),
        sleep=no_sleep,
    )
    yield client
    await client.aclose()


@pytest.fixture
def range_fetcher():
    return RangeFetcher(ingest=AsyncMock(return_value=None))


@pytest_asyncio.fixture
async def client(db, eclesiar, range_fetcher):
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_client] = lambda: eclesiar
    app.dependency_overrides[get_range_fetcher] = lambda: range_fetcher

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()
