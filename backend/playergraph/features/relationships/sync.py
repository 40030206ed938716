"""
Incremental relationship sync driver.

State machine: ``Idle -> Paging -> Flushing -> Paging ... -> Idle``.

Rounds of a half-open window ``[from, to)`` are read page by page (keyset
paging on ``(start_time, round_id)``), extracted with bounded concurrency and
folded into a run-local ``RelationshipTally``. The tally is flushed to the
graph whenever the round or relationship threshold is reached, so memory is
bounded by the thresholds rather than by the window size.

Edges accumulate, so replaying rounds would double count. A durable
high-watermark (``SyncCheckpointORM``) makes every round reach the graph at
most once: windows are clamped to start at the watermark, and inside a
window the keyset cursor of the last flushed round lets an interrupted run
resume where it stopped.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple, Union

import structlog

from playergraph.core.config import Settings, get_global_settings
from playergraph.core.enums import SyncState
from playergraph.core.exceptions import (
    ExternalStoreError,
    ExternalStoreUnreachableError,
    InvalidInputError,
    SyncAlreadyRunningError,
)
from playergraph.features.sessions.repository import SessionStoreInterface
from playergraph.features.sessions.schemas import RoundRef
from .aggregation import RelationshipTally, metrics_for_round
from .checkpoints import (
    PLAYED_WITH_SYNC,
    PLAYS_ON_SYNC,
    CheckpointStoreInterface,
    reached,
)
from .extractor import CoPlayExtractor
from .graph_repository import GraphStoreInterface
from .schemas import CoPlayPair, SyncCheckpointResponse, SyncResult

logger = structlog.get_logger(__name__)

# One sync per process; windows must never be synced concurrently.
_sync_lock = asyncio.Lock()


class RelationshipSyncService:
    """Builds the PLAYED_WITH / PLAYS_ON graph from closed rounds and sessions."""

    def __init__(
        self,
        session_store: SessionStoreInterface,
        graph_store: GraphStoreInterface,
        checkpoint_store: CheckpointStoreInterface,
        settings: Optional[Settings] = None,
        extractor: Optional[CoPlayExtractor] = None,
    ):
        settings = settings or get_global_settings()
        self.session_store = session_store
        self.graph_store = graph_store
        self.checkpoint_store = checkpoint_store
        self.extractor = extractor or CoPlayExtractor(session_store)

        self.page_size = settings.sync_round_page_size
        self.flush_round_threshold = settings.sync_flush_round_threshold
        self.flush_relationship_threshold = settings.sync_flush_relationship_threshold
        self.max_parallel_rounds = settings.sync_max_parallel_rounds
        self.observation_interval_seconds = settings.observation_interval_seconds
        self.default_lookback_days = settings.sync_lookback_days

        self.state = SyncState.IDLE

    @staticmethod
    def is_running() -> bool:
        return _sync_lock.locked()

    async def sync_recent(self, days: Optional[int] = None) -> SyncResult:
        """Sync the trailing ``days`` window ending now."""
        window_to = datetime.now(timezone.utc)
        window_from = window_to - timedelta(days=days or self.default_lookback_days)
        return await self.sync_window(window_from, window_to)

    async def sync_window(self, window_from: datetime, window_to: datetime) -> SyncResult:
        """
        Sync every closed round starting in ``[window_from, window_to)``.

        :raises InvalidInputError: If the window is empty or inverted
        :raises SyncAlreadyRunningError: If another sync is in progress
        :raises ExternalStoreUnreachableError: If a whole flush failed; the
            watermark is left where it was
        """
        if window_from.tzinfo is None or window_to.tzinfo is None:
            raise InvalidInputError(
                "sync window bounds must be timezone-aware", field="window_from"
            )
        if window_from >= window_to:
            raise InvalidInputError(
                "window_from must be before window_to",
                operation="sync_window",
                field="window_from",
                value=window_from.isoformat(),
            )

        if _sync_lock.locked():
            raise SyncAlreadyRunningError(
                "a relationship sync is already running",
                service="RelationshipSyncService",
                operation="sync_window",
            )

        async with _sync_lock:
            try:
                result = await self._sync_co_play(window_from, window_to)
                player_server_rows = await self._sync_player_servers(
                    window_from, window_to
                )
            finally:
                self.state = SyncState.IDLE

        result.player_server_rows = player_server_rows
        result.state = self.state
        logger.info(
            "Relationship sync finished",
            window_from=window_from.isoformat(),
            window_to=window_to.isoformat(),
            effective_from=result.effective_from.isoformat(),
            rounds_expected=result.rounds_expected,
            rounds_processed=result.rounds_processed,
            rounds_failed=result.rounds_failed,
            rounds_already_synced=result.rounds_already_synced,
            relationships_written=result.relationships_written,
            flushes=result.flushes,
            player_server_rows=player_server_rows,
            skipped=result.skipped_already_synced,
        )
        return result

    async def _sync_co_play(self, window_from: datetime, window_to: datetime) -> SyncResult:
        checkpoint = await self.checkpoint_store.get(PLAYED_WITH_SYNC)
        effective_from = window_from
        if checkpoint and checkpoint.last_synced_to:
            if window_to <= checkpoint.last_synced_to:
                logger.info(
                    "Window already synced, skipping",
                    window_to=window_to.isoformat(),
                    watermark=checkpoint.last_synced_to.isoformat(),
                )
                return SyncResult(
                    window_from=window_from,
                    window_to=window_to,
                    effective_from=checkpoint.last_synced_to,
                    effective_to=checkpoint.last_synced_to,
                    skipped_already_synced=True,
                )
            effective_from = max(window_from, checkpoint.last_synced_to)

        checkpoint, effective_from = await self._settle_interrupted_window(
            checkpoint, effective_from
        )

        effective_to = window_to
        if effective_from < window_to:
            open_start = await self.session_store.get_earliest_open_round_start(
                effective_from, window_to
            )
            if open_start is not None:
                # Rounds from the oldest open round on wait for the next run.
                effective_to = max(effective_from, min(window_to, open_start))
                logger.info(
                    "Clamping sync window at oldest open round",
                    open_round_start=open_start.isoformat(),
                    effective_to=effective_to.isoformat(),
                )

        cursor = self._resume_cursor(checkpoint, effective_from)
        covered = self._covered_range(checkpoint, effective_from, cursor)
        result = SyncResult(
            window_from=window_from,
            window_to=window_to,
            effective_from=effective_from,
            effective_to=effective_to,
        )
        if effective_from >= effective_to:
            return result

        result.rounds_expected = await self.session_store.count_rounds_in_window(
            effective_from, effective_to, after=cursor
        )
        if covered is not None:
            covered_from, covered_end = covered
            lower = max(covered_from, effective_from)
            after_cursor = await self.session_store.count_rounds_in_window(
                lower, effective_to, after=cursor
            )
            after_covered = await self.session_store.count_rounds_in_window(
                lower, effective_to, after=covered_end
            )
            result.rounds_expected -= after_cursor - after_covered
        logger.info(
            "Starting co-play sync",
            effective_from=effective_from.isoformat(),
            effective_to=effective_to.isoformat(),
            rounds_expected=result.rounds_expected,
            resumed_after=cursor.round_id if cursor else None,
            skipping_through=covered[1].round_id if covered else None,
        )

        tally = RelationshipTally()
        pending_refs: Dict[str, RoundRef] = {}
        position = cursor
        self.state = SyncState.PAGING

        while True:
            page = await self.session_store.get_rounds_in_window(
                effective_from, effective_to, self.page_size, after=position
            )
            if not page:
                break

            todo = page
            if covered is not None:
                todo = [r for r in page if not self._is_covered(r, covered)]
                result.rounds_already_synced += len(page) - len(todo)

            outcomes = await self._extract_page(todo)
            for round_ref, outcome in zip(todo, outcomes):
                if isinstance(outcome, Exception):
                    logger.warning(
                        "Round extraction failed, skipping",
                        round_id=round_ref.round_id,
                        error=str(outcome),
                        error_type=type(outcome).__name__,
                    )
                    result.rounds_failed += 1
                    result.failed_round_ids.append(round_ref.round_id)
                    continue

                tally.add_round(
                    round_ref.round_id,
                    metrics_for_round(outcome, self.observation_interval_seconds),
                )
                pending_refs[round_ref.round_id] = round_ref
                if (
                    tally.round_count >= self.flush_round_threshold
                    or tally.relationship_count >= self.flush_relationship_threshold
                ):
                    await self._flush(
                        tally, pending_refs, result, round_ref, effective_from, effective_to
                    )

            position = page[-1]
            if len(page) < self.page_size:
                break

        if not tally.is_empty():
            await self._flush(
                tally, pending_refs, result, position, effective_from, effective_to
            )

        await self.checkpoint_store.complete_window(PLAYED_WITH_SYNC, effective_to)
        return result

    async def _settle_interrupted_window(
        self, checkpoint: Optional[SyncCheckpointResponse], effective_from: datetime
    ) -> Tuple[Optional[SyncCheckpointResponse], datetime]:
        """Park an interrupted window that starts after ``effective_from``.

        Its flushed rounds are then skipped by keyset while the earlier rounds
        are synced. Only one window can be parked; with one already parked
        the run starts at the interrupted window instead.
        """
        if (
            checkpoint is None
            or checkpoint.last_round_id is None
            or checkpoint.last_round_start is None
            or checkpoint.window_from is None
            or checkpoint.window_from <= effective_from
        ):
            return checkpoint, effective_from

        if checkpoint.covered_round_id is not None:
            logger.warning(
                "Interrupted window pending behind a parked one, starting there",
                requested_from=effective_from.isoformat(),
                effective_from=checkpoint.window_from.isoformat(),
            )
            return checkpoint, checkpoint.window_from

        await self.checkpoint_store.park_cursor(PLAYED_WITH_SYNC)
        return await self.checkpoint_store.get(PLAYED_WITH_SYNC), effective_from

    @staticmethod
    def _resume_cursor(checkpoint, effective_from: datetime) -> Optional[RoundRef]:
        if (
            checkpoint is None
            or checkpoint.last_round_id is None
            or checkpoint.last_round_start is None
            or checkpoint.window_from is None
        ):
            return None
        if checkpoint.window_from > effective_from:
            return None
        if checkpoint.last_round_start < effective_from:
            return None
        return RoundRef(
            round_id=checkpoint.last_round_id,
            server_guid="",
            start_time=checkpoint.last_round_start,
        )

    @staticmethod
    def _covered_range(
        checkpoint, effective_from: datetime, cursor: Optional[RoundRef]
    ) -> Optional[Tuple[datetime, RoundRef]]:
        if (
            checkpoint is None
            or checkpoint.covered_round_id is None
            or checkpoint.covered_round_start is None
            or checkpoint.covered_from is None
        ):
            return None
        if checkpoint.covered_round_start < effective_from:
            return None
        if cursor is not None and reached(
            cursor, checkpoint.covered_round_start, checkpoint.covered_round_id
        ):
            return None
        return checkpoint.covered_from, RoundRef(
            round_id=checkpoint.covered_round_id,
            server_guid="",
            start_time=checkpoint.covered_round_start,
        )

    @staticmethod
    def _is_covered(round_ref: RoundRef, covered: Tuple[datetime, RoundRef]) -> bool:
        covered_from, covered_end = covered
        return round_ref.start_time >= covered_from and reached(
            covered_end, round_ref.start_time, round_ref.round_id
        )

    async def _extract_page(
        self, page: Sequence[RoundRef]
    ) -> List[Union[List[CoPlayPair], BaseException]]:
        semaphore = asyncio.Semaphore(self.max_parallel_rounds)

        async def _extract(round_ref: RoundRef) -> List[CoPlayPair]:
            async with semaphore:
                return await self.extractor.extract(round_ref.round_id)

        outcomes = await asyncio.gather(
            *(_extract(round_ref) for round_ref in page), return_exceptions=True
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
        return outcomes

    async def _flush(
        self,
        tally: RelationshipTally,
        pending_refs: Dict[str, RoundRef],
        result: SyncResult,
        last_round: Optional[RoundRef],
        window_from: datetime,
        window_to: datetime,
    ) -> None:
        """Write the tally, then persist the cursor of its last round.

        The whole tally is tried as one transaction first. If the graph
        rejects it, every round is retried as its own transaction so one bad
        round cannot take the others down. A timeout or lost connection is
        never retried: the write may have committed, so the error propagates
        with the cursor left after the last round known to be written.
        """
        self.state = SyncState.FLUSHING
        round_ids = tally.round_ids
        written = 0
        rounds_ok = len(round_ids)

        try:
            written = await self.graph_store.upsert_relationships(tally.merged())
        except ExternalStoreUnreachableError:
            logger.error(
                "Batch flush outcome unknown, stopping",
                rounds=len(round_ids),
                first_round_id=round_ids[0] if round_ids else None,
            )
            raise
        except ExternalStoreError as batch_error:
            logger.warning(
                "Batch flush failed, retrying round by round",
                rounds=len(round_ids),
                error=str(batch_error),
            )
            rounds_ok = 0
            settled: Optional[RoundRef] = None
            for round_id in round_ids:
                try:
                    written += await self.graph_store.upsert_relationships(
                        tally.round_metrics(round_id)
                    )
                    rounds_ok += 1
                except ExternalStoreUnreachableError:
                    if settled is not None:
                        await self._record_flush(
                            tally, result, settled, rounds_ok, written, window_from, window_to
                        )
                    raise
                except ExternalStoreError as round_error:
                    logger.error(
                        "Round write failed, skipping",
                        round_id=round_id,
                        error=str(round_error),
                    )
                    result.rounds_failed += 1
                    result.failed_round_ids.append(round_id)
                settled = pending_refs[round_id]

            if round_ids and rounds_ok == 0:
                raise ExternalStoreUnreachableError(
                    message="every round of the flush failed to write",
                    store="graph",
                    service="RelationshipSyncService",
                    operation="flush",
                    context={"rounds": len(round_ids)},
                    original_error=batch_error,
                ) from batch_error

        await self._record_flush(
            tally, result, last_round, rounds_ok, written, window_from, window_to
        )
        pending_refs.clear()
        self.state = SyncState.PAGING

    async def _record_flush(
        self,
        tally: RelationshipTally,
        result: SyncResult,
        last_round: Optional[RoundRef],
        rounds_ok: int,
        written: int,
        window_from: datetime,
        window_to: datetime,
    ) -> None:
        await self.checkpoint_store.save_progress(
            PLAYED_WITH_SYNC,
            window_from,
            window_to,
            last_round,
            rounds_delta=rounds_ok,
            relationships_delta=written,
        )

        result.rounds_processed += rounds_ok
        result.relationships_written += written
        result.flushes += 1
        logger.info(
            "Flushed relationship tally",
            rounds=rounds_ok,
            relationships=written,
            last_round_id=last_round.round_id if last_round else None,
        )
        tally.clear()

    async def _sync_player_servers(self, window_from: datetime, window_to: datetime) -> int:
        """Grouped player->server activity for sessions closed in the window."""
        checkpoint = await self.checkpoint_store.get(PLAYS_ON_SYNC)
        effective_from = window_from
        if checkpoint and checkpoint.last_synced_to:
            if window_to <= checkpoint.last_synced_to:
                return 0
            effective_from = max(window_from, checkpoint.last_synced_to)

        effective_to = window_to
        open_start = await self.session_store.get_earliest_open_session_start(
            effective_from, window_to
        )
        if open_start is not None:
            effective_to = max(effective_from, min(window_to, open_start))
        if effective_from >= effective_to:
            return 0

        activity = await self.session_store.get_player_server_activity(
            effective_from, effective_to
        )
        servers = await self.session_store.get_servers(a.server_guid for a in activity)
        written = await self.graph_store.upsert_player_server_activity(activity, servers)
        await self.checkpoint_store.complete_window(
            PLAYS_ON_SYNC, effective_to, relationships_delta=written
        )

        logger.info(
            "Synced player-server activity",
            effective_from=effective_from.isoformat(),
            effective_to=effective_to.isoformat(),
            rows=len(activity),
            written=written,
        )
        return len(activity)
