"""
Progress Streamer.

Ordered, append-only event channel between a sync run and its listener.
The run pushes events as rows finish; the listener iterates them, usually
as newline-delimited JSON. Result events are only pushed after the row's
new status is committed, which the batch runner guarantees.

Events that were emitted while nobody listened are not replayed; the
session detail endpoint is the recovery path.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class StreamAbortedError(Exception):
    """Raised to the listener after the run ended with an internal error."""


@dataclass
class MatchedCompany:
    id: str
    name: Optional[str] = None
    domain: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "domain": self.domain}


@dataclass
class RowOutcome:
    """What happened to one row during a sync pass."""
    row_index: int
    contact_id: Optional[str] = None
    contact_email: str = ""
    matched_company: Optional[MatchedCompany] = None
    match_confidence: float = 0.0
    match_type: str = "no_match"
    task_created: bool = False
    company_created: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "rowIndex": self.row_index,
            "contactIdentifier": self.contact_id,
            "contact": {"id": self.contact_id, "email": self.contact_email},
            "matchedCompany": self.matched_company.to_dict() if self.matched_company else None,
            "matchConfidence": self.match_confidence,
            "matchType": self.match_type,
            "taskCreated": self.task_created,
            "companyCreated": self.company_created,
        }
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def failed(cls, row_index: int, error: str, contact_email: str = "") -> "RowOutcome":
        return cls(row_index=row_index, contact_email=contact_email, error=error)


@dataclass
class ProgressEvent:
    completed: int
    total: int
    type: str = field(default="progress", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "completed": self.completed, "total": self.total}


@dataclass
class ResultEvent:
    result: RowOutcome
    type: str = field(default="result", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "result": self.result.to_dict()}


@dataclass
class ErrorEvent:
    error: str
    type: str = field(default="error", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "error": self.error}


StreamEvent = Union[ProgressEvent, ResultEvent, ErrorEvent]

_END = object()


class ProgressStreamer:
    """
    Single-producer, single-consumer event stream.

    The queue is unbounded so a slow listener never blocks the run. Once
    the listener goes away the streamer is detached and further events are
    dropped; the run itself continues.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._detached = False
        self._error: Optional[str] = None
        self.emitted: List[StreamEvent] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, event: StreamEvent) -> None:
        if self._closed:
            raise RuntimeError("Progress stream is already closed")
        self.emitted.append(event)
        if not self._detached:
            self._queue.put_nowait(event)

    def progress(self, completed: int, total: int) -> None:
        self._push(ProgressEvent(completed=completed, total=total))

    def result(self, outcome: RowOutcome) -> None:
        self._push(ResultEvent(result=outcome))

    def close(self, error: Optional[str] = None) -> None:
        """End the stream; with `error` the listener sees an error event and an abort."""
        if self._closed:
            return
        self._closed = True
        self._error = error
        self._queue.put_nowait(_END)

    def detach(self) -> None:
        self._detached = True

    async def events(self) -> AsyncIterator[StreamEvent]:
        try:
            while True:
                item = await self._queue.get()
                if item is _END:
                    break
                yield item

            if self._error is not None:
                yield ErrorEvent(error=self._error)
                raise StreamAbortedError(self._error)
        finally:
            if not self._closed:
                logger.info("ℹ️ Progress listener disconnected, sync continues in background")
            self.detach()

    async def ndjson(self) -> AsyncIterator[str]:
        """Events encoded as newline-delimited JSON."""
        async for event in self.events():
            yield json.dumps(event.to_dict()) + "\n"
