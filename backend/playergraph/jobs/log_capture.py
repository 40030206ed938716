"""Process-wide capture of job log events.

Kept apart from ``base`` so ``core.logging`` can import it without pulling in
the ORM models.
"""

from collections import deque

from structlog.testing import LogCapture


class BoundedLogCapture(LogCapture):
    """``LogCapture`` that only keeps the newest ``maxlen`` events."""

    def __init__(self, maxlen: int = 1000):
        super().__init__()
        self.entries = deque(maxlen=maxlen)

    def clear(self) -> None:
        self.entries.clear()


job_log_capture = BoundedLogCapture(maxlen=1000)
