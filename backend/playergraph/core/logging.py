"""Structlog setup for the API process and the scheduled jobs."""

import logging
from typing import Any

import structlog

from playergraph.jobs.log_capture import job_log_capture


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured logging.

    Job executions bind their id through ``structlog.contextvars``; the
    ``job_log_capture`` processor keeps a copy of every event so a job can
    persist its own log lines with the execution record.

    :param log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _capture_job_events,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _capture_job_events(logger: Any, method_name: str, event_dict: dict) -> dict:
    # LogCapture raises DropEvent, so feed it a copy and keep the original.
    if "job_execution_id" in event_dict:
        try:
            job_log_capture(logger, method_name, dict(event_dict))
        except structlog.DropEvent:
            pass
    return event_dict
