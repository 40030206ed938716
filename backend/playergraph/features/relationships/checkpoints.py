"""Repository for the durable sync high-watermark."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from playergraph.core.decorators import store_query
from playergraph.core.models import as_utc
from playergraph.features.sessions.schemas import RoundRef
from .orm_models import SyncCheckpointORM
from .schemas import SyncCheckpointResponse

logger = structlog.get_logger(__name__)

PLAYED_WITH_SYNC = "played_with"
PLAYS_ON_SYNC = "plays_on"


def reached(last_round: RoundRef, round_start: datetime, round_id: str) -> bool:
    """Whether ``last_round`` is at or past the keyset position ``(start, id)``."""
    return (last_round.start_time, last_round.round_id) >= (round_start, round_id)


class CheckpointStoreInterface(ABC):
    @abstractmethod
    async def get(self, sync_kind: str) -> Optional[SyncCheckpointResponse]:
        pass

    @abstractmethod
    async def save_progress(
        self,
        sync_kind: str,
        window_from: datetime,
        window_to: datetime,
        last_round: Optional[RoundRef],
        rounds_delta: int,
        relationships_delta: int,
    ) -> None:
        """Record the keyset position of the last flushed round.

        A parked covered range is dropped once ``last_round`` reaches its end.
        """

    @abstractmethod
    async def park_cursor(self, sync_kind: str) -> None:
        """Move the in-progress window and cursor into the covered range."""

    @abstractmethod
    async def complete_window(
        self,
        sync_kind: str,
        window_to: datetime,
        relationships_delta: int = 0,
    ) -> None:
        """Advance the watermark to ``window_to``."""


class SQLAlchemyCheckpointRepository(CheckpointStoreInterface):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        query_timeout: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.query_timeout = query_timeout

    @staticmethod
    async def _load(session: AsyncSession, sync_kind: str) -> SyncCheckpointORM:
        result = await session.execute(
            select(SyncCheckpointORM).where(SyncCheckpointORM.sync_kind == sync_kind)
        )
        checkpoint = result.scalar_one_or_none()
        if checkpoint is None:
            checkpoint = SyncCheckpointORM(
                sync_kind=sync_kind, rounds_synced=0, relationships_written=0
            )
            session.add(checkpoint)
        return checkpoint

    @staticmethod
    def _clear_covered(checkpoint: SyncCheckpointORM) -> None:
        checkpoint.covered_from = None
        checkpoint.covered_round_start = None
        checkpoint.covered_round_id = None

    @store_query("session")
    async def get(self, sync_kind: str) -> Optional[SyncCheckpointResponse]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncCheckpointORM).where(SyncCheckpointORM.sync_kind == sync_kind)
            )
            checkpoint = result.scalar_one_or_none()
            if checkpoint is None:
                return None
            return SyncCheckpointResponse(
                sync_kind=checkpoint.sync_kind,
                last_synced_to=as_utc(checkpoint.last_synced_to),
                window_from=as_utc(checkpoint.window_from),
                last_round_start=as_utc(checkpoint.last_round_start),
                last_round_id=checkpoint.last_round_id,
                covered_from=as_utc(checkpoint.covered_from),
                covered_round_start=as_utc(checkpoint.covered_round_start),
                covered_round_id=checkpoint.covered_round_id,
                rounds_synced=checkpoint.rounds_synced,
                relationships_written=checkpoint.relationships_written,
                updated_at=as_utc(checkpoint.updated_at),
            )

    @store_query("session")
    async def save_progress(
        self,
        sync_kind: str,
        window_from: datetime,
        window_to: datetime,
        last_round: Optional[RoundRef],
        rounds_delta: int,
        relationships_delta: int,
    ) -> None:
        async with self.session_factory() as session:
            checkpoint = await self._load(session, sync_kind)
            checkpoint.window_from = window_from
            checkpoint.window_to = window_to
            if last_round is not None:
                checkpoint.last_round_start = last_round.start_time
                checkpoint.last_round_id = last_round.round_id
                if checkpoint.covered_round_id is not None and reached(
                    last_round,
                    as_utc(checkpoint.covered_round_start),
                    checkpoint.covered_round_id,
                ):
                    self._clear_covered(checkpoint)
            checkpoint.rounds_synced = (checkpoint.rounds_synced or 0) + rounds_delta
            checkpoint.relationships_written = (
                checkpoint.relationships_written or 0
            ) + relationships_delta
            await session.commit()

        logger.debug(
            "Saved sync progress",
            sync_kind=sync_kind,
            last_round_id=last_round.round_id if last_round else None,
            rounds_delta=rounds_delta,
        )

    @store_query("session")
    async def park_cursor(self, sync_kind: str) -> None:
        async with self.session_factory() as session:
            checkpoint = await self._load(session, sync_kind)
            covered_round_id = checkpoint.last_round_id
            if covered_round_id is None:
                return
            checkpoint.covered_from = checkpoint.window_from
            checkpoint.covered_round_start = checkpoint.last_round_start
            checkpoint.covered_round_id = covered_round_id
            checkpoint.window_from = None
            checkpoint.window_to = None
            checkpoint.last_round_start = None
            checkpoint.last_round_id = None
            await session.commit()

        logger.info(
            "Parked interrupted sync window",
            sync_kind=sync_kind,
            covered_round_id=covered_round_id,
        )

    @store_query("session")
    async def complete_window(
        self,
        sync_kind: str,
        window_to: datetime,
        relationships_delta: int = 0,
    ) -> None:
        async with self.session_factory() as session:
            checkpoint = await self._load(session, sync_kind)
            checkpoint.last_synced_to = window_to
            cursor_start = as_utc(checkpoint.last_round_start)
            if cursor_start is None or cursor_start < window_to:
                checkpoint.window_from = None
                checkpoint.window_to = None
                checkpoint.last_round_start = None
                checkpoint.last_round_id = None
            else:
                # Rounds up to the cursor are already in the graph; keep it
                # for the window that starts at the new watermark.
                checkpoint.window_from = window_to
            covered_start = as_utc(checkpoint.covered_round_start)
            if covered_start is None or covered_start < window_to:
                self._clear_covered(checkpoint)
            else:
                checkpoint.covered_from = max(as_utc(checkpoint.covered_from), window_to)
            checkpoint.relationships_written = (
                checkpoint.relationships_written or 0
            ) + relationships_delta
            await session.commit()

        logger.info("Advanced sync watermark", sync_kind=sync_kind, window_to=window_to)
