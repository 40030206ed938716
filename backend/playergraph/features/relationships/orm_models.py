"""Durable sync high-watermark."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from playergraph.core.models import Base


class SyncCheckpointORM(Base):
    """Progress of one kind of graph sync (co-play pairs, player-server activity).

    ``last_synced_to`` is the exclusive end of the last fully flushed window.
    While a window is in progress, ``(last_round_start, last_round_id)`` is
    the keyset position of the last flushed round so an interrupted run can
    resume without re-adding rounds that already reached the graph.

    When a later run starts before an interrupted window, that window's
    flushed range ``[covered_from, (covered_round_start, covered_round_id)]``
    is parked in the ``covered_*`` columns and skipped until the new cursor
    passes it.
    """

    __tablename__ = "sync_checkpoints"

    sync_kind: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_synced_to: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    window_from: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Start of the window the keyset cursor belongs to",
    )
    window_to: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="End of the window the keyset cursor belongs to",
    )
    last_round_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_round_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    covered_from: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Start of an interrupted window parked behind a wider one",
    )
    covered_round_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    covered_round_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    rounds_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    relationships_written: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<SyncCheckpointORM(kind='{self.sync_kind}', "
            f"last_synced_to={self.last_synced_to}, last_round='{self.last_round_id}')>"
        )
