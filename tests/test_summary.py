from datetime import datetime, timedelta, timezone

import pytest

from battle_tracker.models import Battle, Hit, Player, Round
from battle_tracker.services.summary import summarize

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


async def _seed_battle(db, battle_id, hits):
    """``hits``: (fighter_id, damage, side, minutes after T0 or None)."""
    db.add(Battle(id=battle_id, attacker_id=100, defender_id=200))
    db.add(Round(id=battle_id * 10, battle_id=battle_id))
    await db.flush()
    for fighter_id, damage, side, minutes in hits:
        db.add(Hit(
            round_id=battle_id * 10,
            fighter_id=fighter_id,
            damage=damage,
            side=side,
            created_at=None if minutes is None else T0 + timedelta(minutes=minutes),
        ))
    await db.commit()


def _by_fighter(rows):
    return {r.fighter_id: r for r in rows}


@pytest.mark.asyncio
async def test_empty_input_returns_empty(db):
    assert await summarize(db, []) == []


@pytest.mark.asyncio
async def test_battles_without_hits_return_empty(db):
    await _seed_battle(db, 1, [])
    assert await summarize(db, [1, 2]) == []


@pytest.mark.asyncio
async def test_totals_and_ordering(db):
    await _seed_battle(db, 1, [
        (7, 100, "ATTACKER", 0),
        (8, 500, "DEFENDER", 1),
        (7, 150, "ATTACKER", 2),
    ])
    await _seed_battle(db, 2, [(7, 400, "ATTACKER", 0)])
    db.add(Player(id=7, name="alice", avatar="a.png"))
    await db.commit()

    rows = await summarize(db, [1, 2])

    assert [r.fighter_id for r in rows] == [7, 8]
    alice = rows[0]
    assert (alice.total_damage, alice.hit_count, alice.name, alice.avatar) == (650, 3, "alice", "a.png")
    assert (rows[1].name, rows[1].avatar) == ("unknown", "unknown")


@pytest.mark.asyncio
async def test_only_selected_battles_count(db):
    await _seed_battle(db, 1, [(7, 100, "ATTACKER", 0)])
    await _seed_battle(db, 2, [(7, 900, "ATTACKER", 0)])

    [row] = await summarize(db, [2])

    assert row.total_damage == 900


@pytest.mark.asyncio
async def test_side_comes_from_lowest_battle_id_first(db):
    # Battle 3 is stored first and its hit is older, but battle 1 has the lower id.
    await _seed_battle(db, 3, [(7, 10, "ATTACKER", -600)])
    await _seed_battle(db, 1, [(7, 10, "DEFENDER", 600)])

    [row] = await summarize(db, [3, 1])

    assert row.side == "DEFENDER"


@pytest.mark.asyncio
async def test_side_within_a_battle_comes_from_earliest_hit(db):
    await _seed_battle(db, 5, [
        (7, 10, "DEFENDER", 30),
        (7, 10, "ATTACKER", 5),
    ])
    await _seed_battle(db, 9, [(7, 10, "DEFENDER", 0)])

    [row] = await summarize(db, [5, 9])

    assert row.side == "ATTACKER"


@pytest.mark.asyncio
async def test_unknown_side_counts_damage_but_not_side(db):
    await _seed_battle(db, 1, [
        (7, 10, "UNKNOWN", 0),
        (7, 20, "DEFENDER", 10),
        (8, 5, "UNKNOWN", 0),
    ])

    rows = _by_fighter(await summarize(db, [1]))

    assert rows[7].side == "DEFENDER"
    assert (rows[7].total_damage, rows[7].hit_count) == (30, 2)
    assert rows[8].side == "UNKNOWN"
    assert rows[8].total_damage == 5


@pytest.mark.asyncio
async def test_undated_hits_count_as_earliest(db):
    await _seed_battle(db, 1, [
        (7, 10, "ATTACKER", 0),
        (7, 10, "DEFENDER", None),
    ])

    [row] = await summarize(db, [1])

    assert row.side == "DEFENDER"
