"""
Generation Streaming
====================

Poll-and-diff relay of one session's journal to a live client.

Each poll reads the status snapshot first and then the log rows newer than
the last id sent. Status and its final log rows are committed together, so
a terminal snapshot guarantees those rows are already visible: every log
is delivered before the single closing ``complete`` event.

Event types: log, status, complete, error.
"""

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ideaforge.core.config import settings
from ideaforge.core.generation.journal import GenerationJournal

logger = structlog.get_logger()


@dataclass(frozen=True)
class StreamEvent:
    event: str  # log | status | complete | error
    data: dict[str, Any]

    def to_message(self) -> dict[str, Any]:
        return {"type": self.event, "data": self.data}


def format_sse(event: StreamEvent) -> str:
    """Encode an event as a text/event-stream frame."""
    return f"event: {event.event}\ndata: {json.dumps(event.data, default=str)}\n\n"


SSE_CONNECTED = ": connected\n\n"


class GenerationStream:
    """Produces the event sequence for one session."""

    def __init__(
        self,
        journal: GenerationJournal,
        poll_interval: Optional[float] = None,
        wait_seconds: Optional[float] = None,
    ):
        self.journal = journal
        self.poll_interval = poll_interval or settings.STREAM_POLL_INTERVAL_SECONDS
        self.wait_seconds = wait_seconds if wait_seconds is not None else settings.STREAM_SESSION_WAIT_SECONDS

    async def events(self, session_id: str, after_id: int = 0) -> AsyncIterator[StreamEvent]:
        """
        Yield events until the session reaches a terminal status.

        A session that does not exist yet is waited for up to
        ``wait_seconds``; clients may connect before the run is claimed.
        """
        last_id = after_id
        waited = 0.0

        while True:
            try:
                snapshot = await self.journal.get_status(session_id)
                logs = await self.journal.get_logs(session_id, after_id=last_id) if snapshot else []
            except SQLAlchemyError as e:
                logger.error("Stream poll failed", session_id=session_id, error=str(e))
                yield StreamEvent("error", {"sessionId": session_id, "message": "Failed to read generation logs"})
                return

            if snapshot is None:
                if waited >= self.wait_seconds:
                    yield StreamEvent("error", {"sessionId": session_id, "message": f"Session not found: {session_id}"})
                    return
                await asyncio.sleep(self.poll_interval)
                waited += self.poll_interval
                continue

            for entry in logs:
                last_id = entry.id
                yield StreamEvent("log", entry.to_dict())

            status = snapshot.to_dict()
            yield StreamEvent("status", status)

            if snapshot.is_terminal:
                yield StreamEvent("complete", status)
                return

            await asyncio.sleep(self.poll_interval)
