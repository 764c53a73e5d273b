"""
Unit tests for the player news change detector.

Run: pytest backend/tests/test_news_detector.py -v
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from conftest import InMemoryStore, make_catalog, make_player
from detector.news import ChangeDetector, classify, extract_snapshot
from shared.config import Settings
from shared.models.domain import PlayerSnapshotRecord
from shared.models.enums import ChangeType
from shared.utils.http_client import UpstreamUnavailable
from shared.utils.redis_manager import NEWS_EVENTS_KEY, NEWS_LAST_CHECKED_KEY, NEWS_SNAPSHOT_KEY

T0 = datetime(2025, 9, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def detector(store: InMemoryStore, api_client: MagicMock, clock: Clock) -> ChangeDetector:
    return ChangeDetector(store, api_client, Settings(detector_retention_days=7), clock=clock)


def _catalog(*players: dict) -> dict:
    return make_catalog(list(players))


# ── Snapshot extraction ─────────────────────────────────────────────────

def test_snapshot_keeps_only_players_with_news_or_chance() -> None:
    snapshot = extract_snapshot([
        make_player(1),
        make_player(2, news="Knock", news_added="2025-09-01T10:00:00Z", status="d", chance_next=75),
        make_player(3, chance_next=100),
        make_player(4, news=""),
    ])
    assert set(snapshot) == {2, 3}
    assert snapshot[2].news == "Knock"
    assert snapshot[2].chance_of_playing_next_round == 75
    assert snapshot[3].has_news is False


# ── Classification table ────────────────────────────────────────────────

def _rec(news: str = "", added: str | None = None) -> PlayerSnapshotRecord:
    return PlayerSnapshotRecord(news=news, news_added=added)


@pytest.mark.parametrize(
    "prev, curr, expected",
    [
        (None, _rec("Hamstring", "t1"), ChangeType.NEW),
        (_rec(""), _rec("Hamstring", "t1"), ChangeType.NEW),
        (_rec("Hamstring", "t1"), _rec("Hamstring - 75%", "t1"), ChangeType.UPDATED),
        (_rec("Hamstring", "t1"), _rec("Hamstring", "t2"), ChangeType.UPDATED),
        (_rec("Hamstring", "t1"), _rec("Hamstring", "t1"), None),
        (_rec("Hamstring", "t1"), _rec(""), ChangeType.CLEARED),
        (_rec("Hamstring", "t1"), None, ChangeType.CLEARED),
        (None, _rec(""), None),
        (_rec(""), None, None),
        (None, None, None),
    ],
)
def test_classification_table(prev, curr, expected) -> None:
    assert classify(prev, curr) is expected


# ── Cycles ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cold_start_emits_nothing(detector, store, api_client) -> None:
    api_client.fetch_catalog.return_value = _catalog(
        make_player(1, news="Ankle", news_added="t1"),
        make_player(2, news="Suspended", news_added="t1"),
    )

    result = await detector.run_cycle()

    assert result.is_initial_run is True
    assert result.changes_detected == 0
    assert await detector.get_events() == []
    assert set(json.loads(await store.get(NEWS_SNAPSHOT_KEY))) == {"1", "2"}
    assert await detector.get_last_checked() == T0


@pytest.mark.asyncio
async def test_unchanged_data_is_idempotent(detector, api_client) -> None:
    api_client.fetch_catalog.return_value = _catalog(make_player(1, news="Ankle", news_added="t1"))

    await detector.run_cycle()
    second = await detector.run_cycle()
    third = await detector.run_cycle()

    assert second.changes_detected == 0
    assert third.changes_detected == 0
    assert second.is_initial_run is False


@pytest.mark.asyncio
async def test_cycle_emits_new_updated_and_cleared(detector, api_client, clock) -> None:
    api_client.fetch_catalog.return_value = _catalog(
        make_player(1, news="Ankle", news_added="t1", status="d", chance_next=50),
        make_player(2, news="Ill", news_added="t1", status="d", chance_next=75),
        make_player(3),
        make_player(4, news="Knee", news_added="t1", status="i", chance_next=0),
    )
    await detector.run_cycle()

    clock.advance(minutes=15)
    api_client.fetch_catalog.return_value = _catalog(
        make_player(1, news="Ankle - 75% chance", news_added="t2", status="d", chance_next=75),
        make_player(2, status="a"),
        make_player(3, team=2, news="Groin", news_added="t2", status="d", chance_next=25),
        make_player(4, news="Knee", news_added="t1", status="i", chance_next=0),
    )
    result = await detector.run_cycle()

    assert result.changes_detected == 3
    events = {e.player_id: e for e in await detector.get_events()}
    assert set(events) == {1, 2, 3}
    assert events[1].change_type is ChangeType.UPDATED
    assert events[1].old_news == "Ankle"
    assert events[1].new_news == "Ankle - 75% chance"
    assert events[2].change_type is ChangeType.CLEARED
    assert events[2].new_status == "a"
    assert events[3].change_type is ChangeType.NEW
    assert events[3].team_short == "CHE"
    assert events[3].web_name == "Player3"
    assert events[3].timestamp == clock.now


@pytest.mark.asyncio
async def test_player_removed_from_catalog_is_cleared(detector, api_client) -> None:
    api_client.fetch_catalog.return_value = _catalog(
        make_player(1, news="Loan move", news_added="t1", status="u"),
        make_player(2),
    )
    await detector.run_cycle()

    api_client.fetch_catalog.return_value = _catalog(make_player(2))
    result = await detector.run_cycle()

    assert result.changes_detected == 1
    (event,) = await detector.get_events()
    assert event.player_id == 1
    assert event.change_type is ChangeType.CLEARED
    assert event.old_news == "Loan move"
    assert event.web_name == "Unknown"
    assert event.team_short == "N/A"


@pytest.mark.asyncio
async def test_event_ids_are_unique(detector, api_client) -> None:
    api_client.fetch_catalog.return_value = _catalog(make_player(1), make_player(2))
    await detector.run_cycle()
    api_client.fetch_catalog.return_value = _catalog(
        make_player(1, news="A", news_added="t"), make_player(2, news="B", news_added="t")
    )
    await detector.run_cycle()

    ids = [e.id for e in await detector.get_events()]
    assert len(ids) == 2
    assert len(set(ids)) == 2


# ── Failure handling ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_upstream_failure_is_reported_not_raised(detector, store, api_client, clock) -> None:
    api_client.fetch_catalog.return_value = _catalog(make_player(1, news="Ankle", news_added="t1"))
    await detector.run_cycle()
    baseline = await store.get(NEWS_SNAPSHOT_KEY)

    clock.advance(minutes=15)
    api_client.fetch_catalog.side_effect = UpstreamUnavailable("/bootstrap-static/", "timed out")
    result = await detector.run_cycle()

    assert result.error is not None
    assert "timed out" in result.error
    assert result.changes_detected == 0
    assert await store.get(NEWS_SNAPSHOT_KEY) == baseline
    assert await detector.get_last_checked() == clock.now
    assert detector.in_flight is False


@pytest.mark.asyncio
async def test_recovery_diffs_against_last_good_snapshot(detector, api_client, clock) -> None:
    api_client.fetch_catalog.return_value = _catalog(make_player(1))
    await detector.run_cycle()

    api_client.fetch_catalog.side_effect = UpstreamUnavailable("/bootstrap-static/", "down", 503)
    await detector.run_cycle()

    api_client.fetch_catalog.side_effect = None
    api_client.fetch_catalog.return_value = _catalog(make_player(1, news="Back", news_added="t"))
    result = await detector.run_cycle()

    assert result.changes_detected == 1


@pytest.mark.asyncio
async def test_corrupt_snapshot_reseeds(detector, store, api_client) -> None:
    await store.set(NEWS_SNAPSHOT_KEY, "{broken")
    api_client.fetch_catalog.return_value = _catalog(make_player(1, news="Ankle", news_added="t1"))

    result = await detector.run_cycle()

    assert result.is_initial_run is True
    assert await detector.get_events() == []


# ── Single flight ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_overlapping_cycle_is_skipped(detector, store, api_client) -> None:
    api_client.fetch_catalog.return_value = _catalog(make_player(1))
    await detector.run_cycle()
    baseline = await store.get(NEWS_SNAPSHOT_KEY)

    release = asyncio.Event()

    async def slow_catalog() -> dict:
        await release.wait()
        return _catalog(make_player(1, news="Ankle", news_added="t1"))

    api_client.fetch_catalog.side_effect = slow_catalog
    first = asyncio.create_task(detector.run_cycle())
    await asyncio.sleep(0)
    assert detector.in_flight is True

    second = await detector.run_cycle()

    assert second.skipped is True
    assert second.changes_detected == 0
    assert await store.get(NEWS_SNAPSHOT_KEY) == baseline

    release.set()
    assert (await first).changes_detected == 1
    assert detector.in_flight is False


@pytest.mark.asyncio
async def test_lease_held_elsewhere_skips(store, api_client, clock) -> None:
    settings = Settings(detector_lease_enabled=True, instance_id="me")
    await store.try_acquire_lease("fl:news:lease", "someone-else", 120)
    detector = ChangeDetector(store, api_client, settings, clock=clock)

    result = await detector.run_cycle()

    assert result.skipped is True
    api_client.fetch_catalog.assert_not_awaited()


@pytest.mark.asyncio
async def test_lease_is_released_after_cycle(store, api_client, clock) -> None:
    settings = Settings(detector_lease_enabled=True, instance_id="me")
    api_client.fetch_catalog.return_value = _catalog(make_player(1))
    detector = ChangeDetector(store, api_client, settings, clock=clock)

    assert (await detector.run_cycle()).is_initial_run is True
    assert await store.get("fl:news:lease") is None


# ── Retention & reads ───────────────────────────────────────────────────

async def _emit(detector: ChangeDetector, api_client: MagicMock, player_id: int, news: str) -> None:
    api_client.fetch_catalog.return_value = _catalog(
        make_player(player_id, news=news, news_added=news)
    )
    await detector.run_cycle()


@pytest.mark.asyncio
async def test_events_older_than_retention_are_pruned(detector, store, api_client, clock) -> None:
    api_client.fetch_catalog.return_value = _catalog(make_player(1))
    await detector.run_cycle()

    await _emit(detector, api_client, 1, "old")
    clock.advance(days=8)
    await _emit(detector, api_client, 1, "fresh")

    events = await detector.get_events()
    assert [e.new_news for e in events] == ["fresh"]
    assert len(store.zsets[NEWS_EVENTS_KEY]) == 1


@pytest.mark.asyncio
async def test_events_are_newest_first_and_filterable(detector, api_client, clock) -> None:
    api_client.fetch_catalog.return_value = _catalog(make_player(1), make_player(2))
    await detector.run_cycle()

    clock.advance(minutes=15)
    await _emit(detector, api_client, 1, "first")
    checkpoint = clock.now
    clock.advance(minutes=15)
    await _emit(detector, api_client, 1, "second")
    clock.advance(minutes=15)
    await _emit(detector, api_client, 2, "third")

    # The last cycle emits two events at the same instant; their relative order is unspecified.
    events = await detector.get_events()
    assert {e.new_news for e in events[:2]} == {"third", ""}
    assert [e.new_news for e in events[2:]] == ["second", "first"]

    since = await detector.get_events(since=checkpoint)
    assert {e.new_news for e in since[:2]} == {"third", ""}
    assert [e.new_news for e in since[2:]] == ["second"]

    for_player = await detector.get_events_for_players({1}, since=checkpoint)
    assert [(e.new_news, e.change_type) for e in for_player] == [
        ("", ChangeType.CLEARED),
        ("second", ChangeType.UPDATED),
    ]


@pytest.mark.asyncio
async def test_last_checked_absent_before_first_cycle(detector, store) -> None:
    assert await detector.get_last_checked() is None
    await store.set(NEWS_LAST_CHECKED_KEY, "not-a-date")
    assert await detector.get_last_checked() is None


@pytest.mark.asyncio
async def test_naive_since_is_rejected(detector) -> None:
    with pytest.raises(ValueError):
        await detector.get_events(since=datetime(2025, 9, 1, 12, 0))
    with pytest.raises(ValueError):
        await detector.get_events_for_players({1}, since=datetime(2025, 9, 1, 12, 0))


@pytest.mark.asyncio
async def test_since_in_other_offset_matches_same_instant(detector, api_client, clock) -> None:
    api_client.fetch_catalog.return_value = _catalog(make_player(1))
    await detector.run_cycle()
    await _emit(detector, api_client, 1, "Ankle")

    plus_two = timezone(timedelta(hours=2))
    just_before = (clock.now - timedelta(seconds=1)).astimezone(plus_two)
    assert [e.new_news for e in await detector.get_events(since=just_before)] == ["Ankle"]
    assert await detector.get_events(since=clock.now.astimezone(plus_two)) == []


def test_empty_news_added_is_stored_as_absent() -> None:
    snapshot = extract_snapshot([make_player(1, news="Ankle", news_added="")])
    assert snapshot[1].news_added is None


@pytest.mark.asyncio
async def test_news_added_empty_to_null_is_not_an_update(detector, api_client) -> None:
    api_client.fetch_catalog.return_value = _catalog(make_player(1, news="Ankle", news_added=""))
    await detector.run_cycle()

    api_client.fetch_catalog.return_value = _catalog(make_player(1, news="Ankle", news_added=None))
    result = await detector.run_cycle()

    assert result.changes_detected == 0
