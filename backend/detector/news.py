"""
Player news change detection.

Each cycle polls the reference catalog straight from the upstream (never
through the cache, so the diff is against fresh data), reduces it to a sparse
snapshot of watched news fields, diffs that against the previous snapshot and
appends the resulting events to a retained, time-ordered log.

Classification per player, from (previous, current) news:

    absent/empty -> non-empty           NEW
    non-empty    -> non-empty, changed  UPDATED   (text or added-timestamp)
    non-empty    -> non-empty, same     -
    non-empty    -> empty/absent        CLEARED   (also when the player left the catalog)
    absent/empty -> empty/absent        -
"""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Protocol

from ingest.catalog import CatalogIndex
from ingest.providers.fantasy import FantasyApiClient
from shared.config import Settings, get_settings
from shared.models.domain import ChangeEvent, CycleResult, PlayerSnapshotRecord
from shared.models.enums import ChangeType
from shared.utils.logging import bind_context, get_logger, unbind_context
from shared.utils.metrics import (
    DETECTOR_CYCLES,
    DETECTOR_LAST_CHECKED,
    NEWS_EVENTS,
    TRACKED_PLAYERS,
)
from shared.utils.redis_manager import (
    NEWS_EVENTS_KEY,
    NEWS_LAST_CHECKED_KEY,
    NEWS_LEASE_KEY,
    NEWS_SNAPSHOT_KEY,
    ScoreBound,
)

logger = get_logger(__name__)

Snapshot = dict[int, PlayerSnapshotRecord]


class NewsStore(Protocol):
    """The store operations the detector needs; RedisManager satisfies it."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_s: int | None = None) -> None: ...

    async def zadd(self, key: str, members: dict[str, float]) -> int: ...

    async def zrangebyscore(self, key: str, min_score: ScoreBound, max_score: ScoreBound) -> list[str]: ...

    async def zremrangebyscore(self, key: str, min_score: ScoreBound, max_score: ScoreBound) -> int: ...

    async def try_acquire_lease(self, key: str, holder: str, ttl_s: int) -> bool: ...

    async def release_lease(self, key: str, holder: str) -> bool: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


# ── Snapshot & diff ─────────────────────────────────────────────────────

def extract_snapshot(players: Iterable[dict[str, Any]]) -> Snapshot:
    """Keep only players with news text or a known next-round playing chance."""
    snapshot: Snapshot = {}
    for player in players:
        if player.get("news") or player.get("chance_of_playing_next_round") is not None:
            snapshot[player["id"]] = PlayerSnapshotRecord(
                news=player.get("news") or "",
                news_added=player.get("news_added") or None,
                status=player.get("status"),
                chance_of_playing_next_round=player.get("chance_of_playing_next_round"),
                chance_of_playing_this_round=player.get("chance_of_playing_this_round"),
            )
    return snapshot


def classify(
    previous: Optional[PlayerSnapshotRecord], current: Optional[PlayerSnapshotRecord]
) -> Optional[ChangeType]:
    had_news = previous is not None and previous.has_news
    has_news = current is not None and current.has_news

    if has_news and not had_news:
        return ChangeType.NEW
    if had_news and has_news:
        if previous.news != current.news or previous.news_added != current.news_added:
            return ChangeType.UPDATED
        return None
    if had_news:
        return ChangeType.CLEARED
    return None


def _event(
    player_id: int,
    change_type: ChangeType,
    previous: Optional[PlayerSnapshotRecord],
    current: Optional[PlayerSnapshotRecord],
    catalog: CatalogIndex,
    now: datetime,
) -> ChangeEvent:
    team_id = catalog.team_of(player_id)
    player = catalog.player(player_id) or {}
    if current is not None:
        new_status = current.status
        chance_next = current.chance_of_playing_next_round
        chance_this = current.chance_of_playing_this_round
    else:
        new_status = player.get("status")
        chance_next = player.get("chance_of_playing_next_round")
        chance_this = player.get("chance_of_playing_this_round")

    return ChangeEvent(
        id=str(uuid.uuid4()),
        player_id=player_id,
        player_name=catalog.full_name(player_id),
        web_name=catalog.web_name(player_id),
        team_id=team_id,
        team_short=catalog.team_short(team_id),
        change_type=change_type,
        old_news=previous.news if previous else "",
        new_news=current.news if current else "",
        old_status=previous.status if previous else None,
        new_status=new_status,
        chance_of_playing_next_round=chance_next,
        chance_of_playing_this_round=chance_this,
        timestamp=now,
    )


def detect_changes(
    previous: Snapshot, current: Snapshot, catalog: CatalogIndex, now: datetime
) -> list[ChangeEvent]:
    events: list[ChangeEvent] = []
    for player_id, record in current.items():
        prev = previous.get(player_id)
        change_type = classify(prev, record)
        if change_type:
            events.append(_event(player_id, change_type, prev, record, catalog, now))

    # Dropped out of the snapshot (or out of the catalog) while carrying news.
    for player_id, prev in previous.items():
        if player_id in current:
            continue
        change_type = classify(prev, None)
        if change_type:
            events.append(_event(player_id, change_type, prev, None, catalog, now))
    return events


def dump_snapshot(snapshot: Snapshot) -> str:
    return json.dumps({str(pid): record.model_dump() for pid, record in snapshot.items()})


def load_snapshot(raw: str) -> Snapshot:
    """Raises ValueError when ``raw`` is not a valid serialized snapshot."""
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("snapshot is not a JSON object")
    return {int(pid): PlayerSnapshotRecord.model_validate(rec) for pid, rec in data.items()}


# ── Detector ────────────────────────────────────────────────────────────

class ChangeDetector:
    """
    Snapshot-diff detector over the upstream catalog.

    Only one cycle runs at a time per instance: the in-flight flag is tested
    and set with no await in between. With ``detector_lease_enabled`` a store
    lease additionally keeps separate processes from polling together.
    """

    def __init__(
        self,
        store: NewsStore,
        client: FantasyApiClient,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._client = client
        self._settings = settings or get_settings()
        self._clock = clock
        self._holder = self._settings.instance_id or uuid.uuid4().hex[:8]
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def run_cycle(self) -> CycleResult:
        if self._in_flight:
            return self._skipped("in_flight")
        self._in_flight = True

        lease_held = False
        cycle_id = uuid.uuid4().hex[:12]
        bind_context(news_cycle=cycle_id)
        try:
            if self._settings.detector_lease_enabled:
                lease_held = await self._store.try_acquire_lease(
                    NEWS_LEASE_KEY, self._holder, self._settings.detector_lease_ttl_s
                )
                if not lease_held:
                    return self._skipped("lease_held_elsewhere")
            return await self._process()
        except Exception as exc:
            DETECTOR_CYCLES.labels(outcome="error").inc()
            logger.error("news_cycle_failed", error=str(exc), exc_info=True)
            await self._touch_last_checked_quietly()
            return CycleResult(error=str(exc))
        finally:
            if lease_held:
                await self._release_lease()
            self._in_flight = False
            unbind_context("news_cycle")

    def _skipped(self, reason: str) -> CycleResult:
        DETECTOR_CYCLES.labels(outcome="skipped").inc()
        logger.info("news_cycle_skipped", reason=reason)
        return CycleResult(skipped=True)

    async def _process(self) -> CycleResult:
        catalog = await self._client.fetch_catalog()
        index = CatalogIndex(catalog)
        current = extract_snapshot(catalog.get("elements") or ())
        TRACKED_PLAYERS.set(len(current))

        previous = await self._load_previous()
        if previous is None:
            await self._store.set(NEWS_SNAPSHOT_KEY, dump_snapshot(current))
            await self._touch_last_checked()
            DETECTOR_CYCLES.labels(outcome="initial").inc()
            logger.info("news_snapshot_seeded", tracked=len(current))
            return CycleResult(is_initial_run=True)

        now = self._clock()
        now_ms = _epoch_ms(now)
        events = detect_changes(previous, current, index, now)

        if events:
            await self._store.zadd(
                NEWS_EVENTS_KEY, {event.model_dump_json(): now_ms for event in events}
            )
            for event in events:
                NEWS_EVENTS.labels(change_type=event.change_type.value).inc()

        cutoff_ms = now_ms - self._settings.detector_retention_ms
        pruned = await self._store.zremrangebyscore(NEWS_EVENTS_KEY, "-inf", f"({cutoff_ms}")

        await self._store.set(NEWS_SNAPSHOT_KEY, dump_snapshot(current))
        await self._touch_last_checked()

        DETECTOR_CYCLES.labels(outcome="completed").inc()
        logger.info(
            "news_cycle_completed",
            changes=len(events),
            pruned=pruned,
            tracked=len(current),
        )
        return CycleResult(changes_detected=len(events))

    async def _load_previous(self) -> Optional[Snapshot]:
        raw = await self._store.get(NEWS_SNAPSHOT_KEY)
        if raw is None:
            return None
        try:
            return load_snapshot(raw)
        except ValueError as exc:
            # Reseed rather than diff against garbage.
            logger.warning("news_snapshot_corrupt", error=str(exc))
            return None

    async def _touch_last_checked(self) -> None:
        now = self._clock()
        await self._store.set(NEWS_LAST_CHECKED_KEY, now.isoformat())
        DETECTOR_LAST_CHECKED.set(now.timestamp())

    async def _touch_last_checked_quietly(self) -> None:
        try:
            await self._touch_last_checked()
        except Exception as exc:
            logger.warning("news_last_checked_write_failed", error=str(exc))

    async def _release_lease(self) -> None:
        try:
            await self._store.release_lease(NEWS_LEASE_KEY, self._holder)
        except Exception as exc:
            # The lease TTL will expire it.
            logger.warning("news_lease_release_failed", error=str(exc))

    # ── Reads ───────────────────────────────────────────────────────────
    async def get_events(self, since: datetime | None = None) -> list[ChangeEvent]:
        """
        Retained events strictly newer than ``since``, newest first.

        Raises:
            ValueError: ``since`` is a naive datetime.
        """
        if since is not None and since.tzinfo is None:
            raise ValueError("since must be timezone-aware")
        cutoff_ms = _epoch_ms(self._clock()) - self._settings.detector_retention_ms
        min_score: ScoreBound = cutoff_ms
        if since is not None and _epoch_ms(since) >= cutoff_ms:
            min_score = f"({_epoch_ms(since)}"

        raw = await self._store.zrangebyscore(NEWS_EVENTS_KEY, min_score, "+inf")
        events: list[ChangeEvent] = []
        for member in reversed(raw):
            try:
                events.append(ChangeEvent.model_validate_json(member))
            except ValueError as exc:
                logger.warning("news_event_corrupt", error=str(exc))
        return events

    async def get_events_for_players(
        self, player_ids: Iterable[int], since: datetime | None = None
    ) -> list[ChangeEvent]:
        wanted = set(player_ids)
        return [e for e in await self.get_events(since) if e.player_id in wanted]

    async def get_last_checked(self) -> Optional[datetime]:
        raw = await self._store.get(NEWS_LAST_CHECKED_KEY)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("news_last_checked_corrupt", value=raw)
            return None
