# trace.py
# Append-only reasoning trace for one run.
#
# One TraceRecorder per run; instances are never shared between runs.
# Entries keep call order, and timestamps never go backwards even if the
# wall clock does.

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from self_calling_agent.models import AgentLogEntry, LogType

logger = logging.getLogger(__name__)

Listener = Callable[[AgentLogEntry], None]
Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TraceRecorder:
    def __init__(
        self,
        run_id: Optional[str] = None,
        listener: Optional[Listener] = None,
        clock: Clock = _utc_now,
    ) -> None:
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self._listener = listener
        self._clock = clock
        self._entries: list[AgentLogEntry] = []
        self._last: Optional[datetime] = None

    def record(self, type: LogType, message: str, depth: int) -> AgentLogEntry:
        timestamp = self._clock()
        if self._last is not None and timestamp < self._last:
            timestamp = self._last
        self._last = timestamp

        entry = AgentLogEntry(
            id=f"{self.run_id}-{len(self._entries) + 1:04d}",
            type=type,
            message=message,
            depth=depth,
            timestamp=timestamp,
        )
        self._entries.append(entry)
        logger.debug("[%s] depth=%d %s: %s", self.run_id, depth, entry.type.value, message)

        if self._listener is not None:
            self._listener(entry)
        return entry

    @property
    def entries(self) -> tuple[AgentLogEntry, ...]:
        return tuple(self._entries)

    def last(self, type: LogType) -> Optional[AgentLogEntry]:
        for entry in reversed(self._entries):
            if entry.type == type:
                return entry
        return None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[AgentLogEntry]:
        return iter(tuple(self._entries))
