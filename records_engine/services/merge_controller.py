"""Baseline/incremental merge controller.

Each target (``fighters``, ``clubs``) keeps three collections in the aggregate
store:

* ``<name>_records_baseline``: every year before the current one, rebuilt from
  scratch at most once per calendar year.
* ``<name>_records``: the served records, always baseline plus the full
  current year.
* ``processed_events_<target>``: the processed-event ledger.

A metadata document per target in ``records_metadata`` drives the state
machine resolved by :func:`resolve_state`.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from operator import attrgetter
from typing import Any, Final

from records_engine.db.repositories.document_store import DocumentStore
from records_engine.db.repositories.event_source import EventSource
from records_engine.errors import ConcurrentRunConflict, RecordsEngineError
from records_engine.schemas.control import (
    BaselineMetadata,
    BaselineState,
    EventStatus,
    EventStatusReport,
    RecordTarget,
    RunMode,
    RunReport,
)
from records_engine.schemas.records import ClubRecord, FighterRecord
from records_engine.schemas.results import EventMeta, RawResultRecord
from records_engine.services.aggregation.club_aggregator import ClubAccumulator, ClubAggregator
from records_engine.services.aggregation.fighter_aggregator import (
    FighterAccumulator,
    FighterAggregator,
)
from records_engine.services.aggregation.merge import (
    merge_accumulators,
    merge_club_records,
    merge_fighter_records,
)
from records_engine.services.ledger import ProcessedEventLedger
from records_engine.services.persistence import BatchedPersistenceWriter
from records_engine.services.progress import ProgressCallback, ProgressReporter, as_reporter
from records_engine.services.result_reader import EventBatch, RawResultReader
from records_engine.services.run_lock import RunLock, hold_run_lock
from records_engine.settings import AppSettings, get_settings

logger = logging.getLogger(__name__)

METADATA_COLLECTION: Final[str] = "records_metadata"

Clock = Callable[[], datetime]
Accumulator = FighterAccumulator | ClubAccumulator
AggregateRecord = FighterRecord | ClubRecord


def utcnow() -> datetime:
    return datetime.now(UTC)


def resolve_state(metadata: BaselineMetadata | None, now: datetime) -> BaselineState:
    """Decide whether the stored baseline can be reused at ``now``."""
    if metadata is None:
        return BaselineState.NO_BASELINE
    if metadata.rebuilt_at.year < now.year or metadata.stale:
        return BaselineState.BASELINE_STALE
    return BaselineState.BASELINE_CURRENT


@dataclass(frozen=True, slots=True)
class _TargetAdapter:
    model: type[FighterRecord] | type[ClubRecord]
    new_accumulator: Callable[[], Accumulator]
    merge: Callable[[Any, Any], AggregateRecord]
    key: Callable[[Any], str]


_ADAPTERS: Final[dict[RecordTarget, _TargetAdapter]] = {
    RecordTarget.FIGHTERS: _TargetAdapter(
        model=FighterRecord,
        new_accumulator=FighterAccumulator,
        merge=merge_fighter_records,
        key=attrgetter("fighter_id"),
    ),
    RecordTarget.CLUBS: _TargetAdapter(
        model=ClubRecord,
        new_accumulator=ClubAccumulator,
        merge=merge_club_records,
        key=attrgetter("club_id"),
    ),
}


async def _replay(batches: Iterable[EventBatch]) -> AsyncIterator[EventBatch]:
    for batch in batches:
        yield batch


@dataclass(slots=True)
class MergeController:
    """Orchestrate reads, folds and writes for both record targets.

    Every public operation holds the target's run lock for its whole duration
    and returns a :class:`RunReport`.
    """

    source: EventSource
    store: DocumentStore
    run_lock: RunLock
    settings: AppSettings = field(default_factory=get_settings)
    clock: Clock = utcnow
    progress: ProgressReporter | ProgressCallback | None = None
    writer: BatchedPersistenceWriter = field(init=False)
    _reporter: ProgressReporter = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._reporter = as_reporter(self.progress)
        self.writer = BatchedPersistenceWriter(
            self.store, batch_size=self.settings.write_batch_size, progress=self._reporter
        )

    # -- public operations ---------------------------------------------------------

    async def run(self, target: RecordTarget | str, *, now: datetime | None = None) -> RunReport:
        """Rebuild the baseline when needed, then merge the current year."""
        target = RecordTarget(target)
        moment = now or self.clock()

        async with self._locked(target):
            metadata = await self.load_metadata(target)
            state = resolve_state(metadata, moment)
            self._reporter(f"{target.value}: baseline state is {state.value}")

            if state is BaselineState.BASELINE_CURRENT:
                return await self._merge_current_year(target, moment, metadata)

            rebuild = await self._rebuild_baseline(target, moment)
            metadata = await self.load_metadata(target)
            current = await self._merge_current_year(target, moment, metadata)
            return RunReport(
                target=target,
                mode="baseline_rebuild",
                events_processed=rebuild.events_processed + current.events_processed,
                records_written=rebuild.records_written + current.records_written,
                skipped_records=rebuild.skipped_records + current.skipped_records,
                skipped_clubs=rebuild.skipped_clubs + current.skipped_clubs,
                years=rebuild.years + current.years,
                messages=rebuild.messages + current.messages,
            )

    async def run_all(self, *, now: datetime | None = None) -> dict[RecordTarget, RunReport]:
        """Run every target in turn against the same instant."""
        moment = now or self.clock()
        reports: dict[RecordTarget, RunReport] = {}
        for target in RecordTarget:
            reports[target] = await self.run(target, now=moment)
        return reports

    async def process_event(
        self, target: RecordTarget | str, event_id: str, *, now: datetime | None = None
    ) -> RunReport:
        """Fold one event onto the current records unless the ledger has it."""
        target = RecordTarget(target)
        moment = now or self.clock()

        async with self._locked(target):
            ledger = self.ledger(target)
            if await ledger.contains(event_id):
                message = f"Event {event_id} already processed for {target.value}; skipping"
                self._reporter(message)
                return RunReport(
                    target=target, mode="single_event", events_skipped=1, messages=[message]
                )

            reader = self._reader()
            meta, results = await reader.load_event(event_id)
            if not meta.has_results:
                message = f"No results found for event {event_id}; nothing to apply"
                self._reporter.warning(message)
                return RunReport(target=target, mode="single_event", messages=[message])

            report = await self._apply_onto_current(
                target, [(meta, results)], moment, mode="single_event", reader=reader
            )

            metadata = await self.load_metadata(target)
            if metadata is not None and meta.year in metadata.years and not metadata.stale:
                metadata.stale = True
                await self.writer.overwrite(METADATA_COLLECTION, target.value, metadata)
                message = (
                    f"Event {event_id} belongs to baselined year {meta.year}; "
                    "baseline marked stale and will be rebuilt on the next run"
                )
                self._reporter.warning(message)
                report.messages.append(message)
            return report

    async def process_pending(
        self, target: RecordTarget | str, *, now: datetime | None = None
    ) -> RunReport:
        """Fold current-year events that are not yet in the ledger."""
        target = RecordTarget(target)
        moment = now or self.clock()

        async with self._locked(target):
            reader = self._reader()
            batches = [batch async for batch in reader.iter_year(moment.year)]
            pending_ids = set(
                await self.ledger(target).filter_unprocessed(meta.event_id for meta, _ in batches)
            )
            pending = [batch for batch in batches if batch[0].event_id in pending_ids]
            skipped = len(batches) - len(pending)
            self._reporter(
                f"{target.value}: {len(pending)} pending events in {moment.year} "
                f"({skipped} already processed)"
            )

            report = await self._apply_onto_current(
                target, pending, moment, mode="pending_scan", reader=reader
            )
            report.events_skipped = skipped
            return report

    async def event_status(
        self, target: RecordTarget | str, *, limit: int = 100
    ) -> EventStatusReport:
        """Classify the ``limit`` most recent events against the target's ledger.

        Events in the ledger are processed. The rest either have a result set
        waiting to be applied or still need one uploaded.
        """
        target = RecordTarget(target)
        events = await self.source.fetch_event_page(limit=limit)
        unprocessed = set(
            await self.ledger(target).filter_unprocessed(meta.event_id for meta in events)
        )
        presence = await self._reader().results_present(
            [meta for meta in events if meta.event_id in unprocessed]
        )
        report = EventStatusReport(
            target=target,
            events=[
                EventStatus(
                    event_id=meta.event_id,
                    name=meta.name,
                    date=meta.date,
                    has_results=presence.get(meta.event_id, True),
                    is_processed=meta.event_id not in unprocessed,
                )
                for meta in events
            ],
        )
        self._reporter(
            f"{target.value}: {report.processed} of {report.total} recent events processed, "
            f"{len(report.unprocessed_with_results)} ready, "
            f"{len(report.needs_results)} awaiting results"
        )
        return report

    async def load_metadata(self, target: RecordTarget) -> BaselineMetadata | None:
        document = await self.store.get(METADATA_COLLECTION, target.value)
        if document is None:
            return None
        return BaselineMetadata.model_validate(document)

    async def describe(
        self, target: RecordTarget | str, *, now: datetime | None = None
    ) -> tuple[BaselineState, BaselineMetadata | None]:
        target = RecordTarget(target)
        metadata = await self.load_metadata(target)
        return resolve_state(metadata, now or self.clock()), metadata

    def ledger(self, target: RecordTarget) -> ProcessedEventLedger:
        return ProcessedEventLedger(self.store, self.writer, target)

    # -- internals -----------------------------------------------------------------

    @asynccontextmanager
    async def _locked(self, target: RecordTarget) -> AsyncIterator[None]:
        try:
            async with hold_run_lock(
                self.run_lock, target.value, ttl_seconds=self.settings.run_lock_ttl_seconds
            ):
                yield
        except ConcurrentRunConflict as exc:
            self._reporter.error(str(exc))
            raise
        except RecordsEngineError as exc:
            self._reporter.error(f"{target.value} run aborted: {exc}")
            raise

    def _reader(self) -> RawResultReader:
        return RawResultReader(
            self.source,
            page_size=self.settings.read_page_size,
            fetch_concurrency=self.settings.fetch_concurrency,
            progress=self._reporter,
        )

    def _aggregator(self, target: RecordTarget) -> FighterAggregator | ClubAggregator:
        if target is RecordTarget.CLUBS:
            return ClubAggregator(self.settings.club_id_max_length)
        return FighterAggregator()

    async def _baseline_years(self, moment: datetime) -> list[int]:
        start = self.settings.baseline_start_year
        if start is None:
            earliest = await self.source.earliest_event_date()
            start = earliest.year if earliest is not None else moment.year
        return list(range(start, moment.year))

    async def _rebuild_baseline(self, target: RecordTarget, moment: datetime) -> RunReport:
        adapter = _ADAPTERS[target]
        aggregator = self._aggregator(target)
        reader = self._reader()
        years = await self._baseline_years(moment)
        accumulator = adapter.new_accumulator()

        self._reporter(
            f"{target.value}: rebuilding baseline from {len(years)} years "
            f"({years[0] if years else '-'}..{years[-1] if years else '-'})"
        )
        for year in years:
            self._reporter(f"{target.value}: aggregating {year}")
            year_accumulator = await aggregator.aggregate(reader.iter_year(year))
            merge_accumulators(accumulator, year_accumulator)

        records = accumulator.finalize(updated_at=moment)
        messages = self._skipped_club_messages(accumulator)

        written = await self.writer.commit(
            target.baseline_collection, records.values(), key=adapter.key
        )
        # Records with no current-year activity are served straight from the baseline.
        await self.writer.commit(target.current_collection, records.values(), key=adapter.key)
        await self.ledger(target).record(accumulator.contributions.to_processed_events(moment))

        fighter_ids: set[str] = set()
        for contributed in accumulator.contributions.fighters.values():
            fighter_ids.update(contributed)
        metadata = BaselineMetadata(
            target=target,
            years=[str(year) for year in years],
            record_count=len(records),
            fighter_count=len(fighter_ids),
            rebuilt_at=moment,
        )
        await self.writer.overwrite(METADATA_COLLECTION, target.value, metadata)
        self._reporter(
            f"{target.value}: baseline rebuilt with {len(records)} records from {len(years)} years"
        )

        return RunReport(
            target=target,
            mode="baseline_rebuild",
            events_processed=len(accumulator.contributions.events),
            records_written=written,
            skipped_records=accumulator.skipped_records + reader.stats.skipped_records,
            skipped_clubs=len(getattr(accumulator, "skipped_clubs", ())),
            years=metadata.years,
            messages=messages,
        )

    async def _merge_current_year(
        self,
        target: RecordTarget,
        moment: datetime,
        metadata: BaselineMetadata | None,
    ) -> RunReport:
        adapter = _ADAPTERS[target]
        reader = self._reader()
        year = moment.year

        self._reporter(f"{target.value}: merging current year {year}")
        delta = await self._aggregator(target).aggregate(reader.iter_year(year))
        delta_records = delta.finalize(updated_at=moment)

        merged = await self._merge_onto(target.baseline_collection, adapter, delta_records)
        written = await self.writer.commit(target.current_collection, merged, key=adapter.key)
        await self.ledger(target).record(delta.contributions.to_processed_events(moment))

        if metadata is not None:
            metadata.current_merged_at = moment
            metadata.current_year_merged = str(year)
            await self.writer.overwrite(METADATA_COLLECTION, target.value, metadata)

        return RunReport(
            target=target,
            mode="current_merge",
            events_processed=len(delta.contributions.events),
            records_written=written,
            skipped_records=delta.skipped_records + reader.stats.skipped_records,
            skipped_clubs=len(getattr(delta, "skipped_clubs", ())),
            years=[str(year)],
            messages=self._skipped_club_messages(delta),
        )

    async def _apply_onto_current(
        self,
        target: RecordTarget,
        batches: list[EventBatch],
        moment: datetime,
        *,
        mode: RunMode,
        reader: RawResultReader,
    ) -> RunReport:
        adapter = _ADAPTERS[target]
        delta = await self._aggregator(target).aggregate(_replay(batches))
        delta_records = delta.finalize(updated_at=moment)

        merged = await self._merge_onto(target.current_collection, adapter, delta_records)
        written = await self.writer.commit(target.current_collection, merged, key=adapter.key)
        await self.ledger(target).record(delta.contributions.to_processed_events(moment))

        return RunReport(
            target=target,
            mode=mode,
            events_processed=len(delta.contributions.events),
            records_written=written,
            skipped_records=delta.skipped_records + reader.stats.skipped_records,
            skipped_clubs=len(getattr(delta, "skipped_clubs", ())),
            years=sorted({meta.year for meta, _ in batches}),
            messages=self._skipped_club_messages(delta),
        )

    async def _merge_onto(
        self,
        collection: str,
        adapter: _TargetAdapter,
        delta_records: dict[str, Any],
    ) -> list[AggregateRecord]:
        """Merge each delta record onto its stored counterpart in ``collection``.

        Stored records are fetched in chunks of the write batch size. Ids with
        no stored record keep the delta as a first-appearance record.
        """
        keys = list(delta_records)
        merged: list[AggregateRecord] = []
        step = self.writer.batch_size
        for start in range(0, len(keys), step):
            chunk = keys[start : start + step]
            stored = await self.store.get_many(collection, chunk)
            for key in chunk:
                delta_record = delta_records[key]
                document = stored.get(key)
                if document is None:
                    merged.append(delta_record)
                else:
                    merged.append(adapter.merge(adapter.model.model_validate(document), delta_record))
        return merged

    def _skipped_club_messages(self, accumulator: Accumulator) -> list[str]:
        if not isinstance(accumulator, ClubAccumulator):
            return []
        warning = accumulator.skipped_club_warning()
        if warning is None:
            return []
        self._reporter.warning(warning)
        return [warning]


__all__ = ["METADATA_COLLECTION", "MergeController", "resolve_state", "utcnow"]
