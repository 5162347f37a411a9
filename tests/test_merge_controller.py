"""End-to-end tests for the baseline/incremental merge controller."""

from __future__ import annotations

import copy
from datetime import UTC, date, datetime

import pytest

from records_engine.errors import ConcurrentRunConflict, WriteBatchFailure
from records_engine.schemas.control import BaselineMetadata, BaselineState, RecordTarget
from records_engine.services.merge_controller import (
    METADATA_COLLECTION,
    MergeController,
    resolve_state,
)
from records_engine.services.run_lock import InMemoryRunLock, hold_run_lock
from records_engine.settings import AppSettings
from tests.support.in_memory import InMemoryDocumentStore, InMemoryEventSource, result

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def _seed(source: InMemoryEventSource) -> None:
    source.add_event(
        "e1",
        date(2022, 3, 1),
        [result("a", gym="Club X", outcome="W"), result("b", gym="Club Y", outcome="L")],
        city="Austin",
    )
    source.add_event(
        "e2",
        date(2023, 5, 1),
        [result("a", gym="Club X", outcome="L"), result("c", gym="Club X", outcome="W")],
        city="Dallas",
    )
    source.add_event(
        "e3",
        date(2024, 2, 1),
        [result("a", gym="Club X", outcome="W"), result("b", gym="Club Y", outcome="W")],
        city="Austin",
    )


def _controller(
    source: InMemoryEventSource,
    store: InMemoryDocumentStore,
    settings: AppSettings,
    *,
    lock: InMemoryRunLock | None = None,
    messages: list[str] | None = None,
) -> MergeController:
    return MergeController(
        source,
        store,
        lock or InMemoryRunLock(),
        settings=settings,
        progress=messages.append if messages is not None else None,
    )


def test_resolve_state_transitions() -> None:
    rebuilt_this_year = BaselineMetadata(target=RecordTarget.CLUBS, rebuilt_at=NOW)
    rebuilt_last_year = BaselineMetadata(
        target=RecordTarget.CLUBS, rebuilt_at=datetime(2023, 12, 31, tzinfo=UTC)
    )
    flagged = BaselineMetadata(target=RecordTarget.CLUBS, rebuilt_at=NOW, stale=True)

    assert resolve_state(None, NOW) is BaselineState.NO_BASELINE
    assert resolve_state(rebuilt_this_year, NOW) is BaselineState.BASELINE_CURRENT
    assert resolve_state(rebuilt_last_year, NOW) is BaselineState.BASELINE_STALE
    assert resolve_state(flagged, NOW) is BaselineState.BASELINE_STALE


@pytest.mark.asyncio
async def test_first_run_rebuilds_baseline_and_merges_current_year(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    _seed(source)
    controller = _controller(source, store, engine_settings)

    report = await controller.run(RecordTarget.FIGHTERS, now=NOW)

    assert report.mode == "baseline_rebuild"
    assert report.years == ["2022", "2023", "2024"]
    assert report.events_processed == 3

    baseline = store.collection("fighter_records_baseline")
    current = store.collection("fighter_records")
    assert (baseline["a"]["wins"], baseline["a"]["losses"]) == (1, 1)
    assert (current["a"]["wins"], current["a"]["losses"]) == (2, 1)
    assert current["a"]["events"] == ["e1", "e2", "e3"]
    assert current["c"]["wins"] == 1

    metadata = await controller.load_metadata(RecordTarget.FIGHTERS)
    assert metadata is not None
    assert metadata.years == ["2022", "2023"]
    assert metadata.record_count == 3
    assert metadata.fighter_count == 3
    assert metadata.rebuilt_at == NOW
    assert metadata.current_year_merged == "2024"
    assert sorted(store.collection("processed_events_fighters")) == ["e1", "e2", "e3"]


@pytest.mark.asyncio
async def test_club_run_populates_nested_views(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    _seed(source)
    controller = _controller(source, store, engine_settings)

    await controller.run("clubs", now=NOW)

    club = store.collection("club_records")["CLUB_X"]
    assert (club["wins"], club["losses"]) == (3, 1)
    assert club["total_fighters"] == 2
    assert club["yearly_stats"]["2024"]["wins"] == 1
    assert club["location_stats"]["Austin, TX"]["fights"] == 2
    assert sorted(store.collection(METADATA_COLLECTION)) == ["clubs"]


@pytest.mark.asyncio
async def test_rerun_in_same_year_is_idempotent(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    _seed(source)
    controller = _controller(source, store, engine_settings)
    await controller.run(RecordTarget.CLUBS, now=NOW)
    snapshot = copy.deepcopy(store.collection("club_records"))

    report = await controller.run(RecordTarget.CLUBS, now=NOW)

    assert report.mode == "current_merge"
    assert store.collection("club_records") == snapshot


@pytest.mark.asyncio
async def test_new_calendar_year_triggers_rebuild(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    _seed(source)
    controller = _controller(source, store, engine_settings)
    await controller.run(RecordTarget.FIGHTERS, now=NOW)
    source.add_event("e4", date(2025, 1, 10), [result("a", outcome="W")])

    later = datetime(2025, 2, 1, tzinfo=UTC)
    state, _ = await controller.describe(RecordTarget.FIGHTERS, now=later)
    report = await controller.run(RecordTarget.FIGHTERS, now=later)

    assert state is BaselineState.BASELINE_STALE
    assert report.mode == "baseline_rebuild"
    metadata = await controller.load_metadata(RecordTarget.FIGHTERS)
    assert metadata is not None
    assert metadata.years == ["2022", "2023", "2024"]
    assert store.collection("fighter_records")["a"]["wins"] == 3


@pytest.mark.asyncio
async def test_baseline_start_year_bounds_the_rebuild(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    _seed(source)
    settings = engine_settings.model_copy(update={"baseline_start_year": 2023})
    controller = _controller(source, store, settings)

    await controller.run(RecordTarget.FIGHTERS, now=NOW)

    metadata = await controller.load_metadata(RecordTarget.FIGHTERS)
    assert metadata is not None
    assert metadata.years == ["2023"]
    assert "b" not in store.collection("fighter_records_baseline")


@pytest.mark.asyncio
async def test_process_event_skips_ledgered_events(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    _seed(source)
    controller = _controller(source, store, engine_settings)
    await controller.run(RecordTarget.FIGHTERS, now=NOW)
    snapshot = copy.deepcopy(store.collection("fighter_records"))

    report = await controller.process_event(RecordTarget.FIGHTERS, "e3", now=NOW)

    assert report.events_skipped == 1
    assert report.events_processed == 0
    assert store.collection("fighter_records") == snapshot


@pytest.mark.asyncio
async def test_process_event_applies_new_current_year_event(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    _seed(source)
    controller = _controller(source, store, engine_settings)
    await controller.run(RecordTarget.FIGHTERS, now=NOW)
    source.add_event("e5", date(2024, 5, 1), [result("a", outcome="L"), result("d", outcome="W")])

    report = await controller.process_event(RecordTarget.FIGHTERS, "e5", now=NOW)
    again = await controller.process_event(RecordTarget.FIGHTERS, "e5", now=NOW)

    current = store.collection("fighter_records")
    assert report.events_processed == 1
    assert again.events_skipped == 1
    assert (current["a"]["wins"], current["a"]["losses"]) == (2, 2)
    assert current["d"]["wins"] == 1
    metadata = await controller.load_metadata(RecordTarget.FIGHTERS)
    assert metadata is not None and metadata.stale is False


@pytest.mark.asyncio
async def test_process_event_for_baselined_year_marks_baseline_stale(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    _seed(source)
    controller = _controller(source, store, engine_settings)
    await controller.run(RecordTarget.FIGHTERS, now=NOW)
    source.add_event("late", date(2023, 12, 1), [result("d", outcome="W")])

    report = await controller.process_event(RecordTarget.FIGHTERS, "late", now=NOW)

    assert store.collection("fighter_records")["d"]["wins"] == 1
    assert any("marked stale" in message for message in report.messages)
    state, metadata = await controller.describe(RecordTarget.FIGHTERS, now=NOW)
    assert state is BaselineState.BASELINE_STALE
    assert metadata is not None and metadata.stale is True

    rebuild = await controller.run(RecordTarget.FIGHTERS, now=NOW)

    assert rebuild.mode == "baseline_rebuild"
    assert store.collection("fighter_records_baseline")["d"]["wins"] == 1
    assert store.collection("fighter_records")["d"]["wins"] == 1


@pytest.mark.asyncio
async def test_process_pending_applies_only_unledgered_events(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    _seed(source)
    controller = _controller(source, store, engine_settings)
    await controller.run(RecordTarget.FIGHTERS, now=NOW)
    source.add_event("e6", date(2024, 3, 1), [result("a", outcome="W")])

    report = await controller.process_pending(RecordTarget.FIGHTERS, now=NOW)

    assert report.mode == "pending_scan"
    assert report.events_processed == 1
    assert report.events_skipped == 1
    assert store.collection("fighter_records")["a"]["wins"] == 3
    assert "e6" in store.collection("processed_events_fighters")


@pytest.mark.asyncio
async def test_concurrent_run_is_rejected(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    _seed(source)
    lock = InMemoryRunLock()
    messages: list[str] = []
    controller = _controller(source, store, engine_settings, lock=lock, messages=messages)

    async with hold_run_lock(lock, "clubs", ttl_seconds=60):
        with pytest.raises(ConcurrentRunConflict):
            await controller.run(RecordTarget.CLUBS, now=NOW)
        # Other targets are not blocked.
        await controller.run(RecordTarget.FIGHTERS, now=NOW)

    assert any("already active" in message for message in messages)
    assert store.collection("club_records") == {}


@pytest.mark.asyncio
async def test_run_all_covers_every_target(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    _seed(source)
    controller = _controller(source, store, engine_settings)

    reports = await controller.run_all(now=NOW)

    assert set(reports) == {RecordTarget.FIGHTERS, RecordTarget.CLUBS}
    assert sorted(store.collection(METADATA_COLLECTION)) == ["clubs", "fighters"]


@pytest.mark.asyncio
async def test_unnormalizable_clubs_are_reported(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    source.add_event("e1", date(2024, 1, 5), [result("a", gym="&&&"), result("b", gym="Club X")])
    messages: list[str] = []
    controller = _controller(source, store, engine_settings, messages=messages)

    report = await controller.run(RecordTarget.CLUBS, now=NOW)

    assert report.skipped_clubs == 1
    assert any(message.startswith("Warning: skipped 1 club names") for message in report.messages)
    assert list(store.collection("club_records")) == ["CLUB_X"]


@pytest.mark.asyncio
async def test_write_failure_aborts_before_metadata_is_stamped(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    _seed(source)
    store.fail_on_merge_call = 0
    messages: list[str] = []
    controller = _controller(source, store, engine_settings, messages=messages)

    with pytest.raises(WriteBatchFailure) as excinfo:
        await controller.run(RecordTarget.FIGHTERS, now=NOW)

    assert excinfo.value.collection == "fighter_records_baseline"
    assert await controller.load_metadata(RecordTarget.FIGHTERS) is None
    assert any("run aborted" in message for message in messages)

    # The lock was released, so a retry can proceed.
    store.fail_on_merge_call = None
    report = await controller.run(RecordTarget.FIGHTERS, now=NOW)
    assert report.mode == "baseline_rebuild"


@pytest.mark.asyncio
async def test_events_awaiting_results_are_applied_once_results_arrive(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    _seed(source)
    source.add_event("late-results", date(2024, 4, 1), None)
    controller = _controller(source, store, engine_settings)

    await controller.run(RecordTarget.FIGHTERS, now=NOW)
    waiting = await controller.process_pending(RecordTarget.FIGHTERS, now=NOW)

    ledger = store.collection("processed_events_fighters")
    assert "late-results" not in ledger
    assert set(ledger) == {"e1", "e2", "e3"}
    assert waiting.events_processed == 0

    source.results["late-results"] = [result("z", outcome="W"), result("a", outcome="L")]
    applied = await controller.process_pending(RecordTarget.FIGHTERS, now=NOW)

    current = store.collection("fighter_records")
    assert applied.events_processed == 1
    assert current["z"]["wins"] == 1
    assert (current["a"]["wins"], current["a"]["losses"]) == (2, 2)
    assert "late-results" in store.collection("processed_events_fighters")


@pytest.mark.asyncio
async def test_process_event_without_results_leaves_the_ledger_alone(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    _seed(source)
    controller = _controller(source, store, engine_settings)
    await controller.run(RecordTarget.CLUBS, now=NOW)
    source.add_event("awaiting", date(2024, 5, 1), None)
    snapshot = copy.deepcopy(store.collection("club_records"))

    report = await controller.process_event(RecordTarget.CLUBS, "awaiting", now=NOW)

    assert report.events_processed == 0
    assert report.messages == ["No results found for event awaiting; nothing to apply"]
    assert "awaiting" not in store.collection("processed_events_clubs")
    assert store.collection("club_records") == snapshot

    source.results["awaiting"] = [result("n", gym="Club X", outcome="W")]
    applied = await controller.process_event(RecordTarget.CLUBS, "awaiting", now=NOW)

    assert applied.events_processed == 1
    assert "awaiting" in store.collection("processed_events_clubs")


@pytest.mark.asyncio
async def test_event_status_classifies_recent_events(
    source: InMemoryEventSource, store: InMemoryDocumentStore, engine_settings: AppSettings
) -> None:
    _seed(source)
    controller = _controller(source, store, engine_settings)
    await controller.run(RecordTarget.FIGHTERS, now=NOW)
    source.add_event("ready", date(2024, 5, 1), [result("a", outcome="W")])
    source.add_event("empty", date(2024, 5, 2), [])
    source.add_event("awaiting", date(2024, 6, 1), None, name="Summer Open")
    source.completed_fetches.clear()

    status = await controller.event_status(RecordTarget.FIGHTERS)

    assert [event.event_id for event in status.events] == [
        "awaiting",
        "empty",
        "ready",
        "e3",
        "e2",
        "e1",
    ]
    assert (status.total, status.processed) == (6, 3)
    assert [event.event_id for event in status.unprocessed_with_results] == ["empty", "ready"]
    assert [event.event_id for event in status.needs_results] == ["awaiting"]
    assert status.needs_results[0].name == "Summer Open"
    # Ledgered events are not re-fetched.
    assert sorted(source.completed_fetches) == ["awaiting", "empty", "ready"]

    recent = await controller.event_status(RecordTarget.CLUBS, limit=2)

    assert recent.total == 2
    assert recent.processed == 0
    assert [event.event_id for event in recent.needs_results] == ["awaiting"]
