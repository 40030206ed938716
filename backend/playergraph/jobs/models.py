"""Job tracking models for scheduled graph maintenance runs."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from playergraph.core.enums import JobStatus, JobType
from playergraph.core.models import Base, as_utc


class JobConfiguration(Base):
    """Scheduling and settings for one job."""

    __tablename__ = "job_configurations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_type: Mapped[JobType] = mapped_column(
        Enum(JobType, name="job_type_enum"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    schedule: Mapped[str] = mapped_column(
        String(256),
        nullable=False,
        comment="cron:<expr>, interval:<seconds>, <n>s or plain seconds",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    config_json: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    executions: Mapped[List["JobExecution"]] = relationship(
        back_populates="job_config",
        cascade="all, delete-orphan",
        order_by="JobExecution.started_at.desc()",
    )

    def __repr__(self) -> str:
        return (
            f"<JobConfiguration(id={self.id}, name='{self.name}', "
            f"type='{self.job_type.value}', active={self.is_active})>"
        )


class JobExecution(Base):
    """One run of a configured job, with its metrics and captured logs."""

    __tablename__ = "job_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_config_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("job_configurations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status_enum"),
        nullable=False,
        default=JobStatus.PENDING,
        index=True,
    )

    rounds_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rounds_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    relationships_written: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    records_updated: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Rows touched outside the edge tally (player-server rows, purged nodes)",
    )

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    execution_log: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    detailed_logs: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    job_config: Mapped[JobConfiguration] = relationship(back_populates="executions")

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None or self.started_at is None:
            return None
        return (as_utc(self.completed_at) - as_utc(self.started_at)).total_seconds()

    def __repr__(self) -> str:
        return (
            f"<JobExecution(id={self.id}, job_config_id={self.job_config_id}, "
            f"status='{self.status.value}')>"
        )
