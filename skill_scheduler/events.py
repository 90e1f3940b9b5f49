"""
Event Emitter - 运行事件通道

每次运行持有一个由调用方注入的 sink，事件按产生顺序投递：
- start 先于该 span 的任何产出
- end 在该 span 的所有产出之后，无论成功或失败
"""

import asyncio
import json
import uuid
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, Field

from .models import CapabilityMeta

logger = structlog.get_logger()


class EventKind(str, Enum):
    START = "start"
    LOG = "log"
    ERROR = "error"
    STRUCTURED_DATA = "structured_data"
    END = "end"


class SkillEvent(BaseModel):
    """A single lifecycle notification."""

    event: EventKind
    content: str = ""
    structured_data_key: str | None = None
    run_id: str | None = None
    span_id: str | None = None
    skill_meta: CapabilityMeta | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    def json_content(self) -> Any:
        """Decode a structured_data payload."""
        return json.loads(self.content) if self.content else None


class EventSink(Protocol):
    """Caller-supplied consumer. Must not block indefinitely."""

    def emit(self, event: SkillEvent) -> None: ...


class ListEventSink:
    """Collects events in memory (tests, non-streaming callers)."""

    def __init__(self):
        self.events: list[SkillEvent] = []

    def emit(self, event: SkillEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[EventKind]:
        return [e.event for e in self.events]

    def by_key(self, key: str) -> list[SkillEvent]:
        return [e for e in self.events if e.structured_data_key == key]


class CallbackEventSink:
    """Forwards every event to a plain callable."""

    def __init__(self, callback: Callable[[SkillEvent], None]):
        self._callback = callback

    def emit(self, event: SkillEvent) -> None:
        self._callback(event)


class QueueEventSink:
    """
    Bridges events into an asyncio.Queue for SSE streaming.

    close() 之后 stream() 在队列排空时结束。
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def emit(self, event: SkillEvent) -> None:
        self._queue.put_nowait(event)

    def close(self) -> None:
        self._queue.put_nowait(self._CLOSED)

    async def stream(self) -> AsyncIterator[SkillEvent]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item


class EventEmitter:
    """
    Emits events for one span of one run.

    child() 为嵌套工作（例如一次 capability 调用）创建带新 span_id 的 emitter。
    """

    def __init__(
        self,
        sink: EventSink,
        run_id: str | None = None,
        span_id: str | None = None,
        skill_meta: CapabilityMeta | None = None,
    ):
        self.sink = sink
        self.run_id = run_id or str(uuid.uuid4())
        self.span_id = span_id or self.run_id
        self.skill_meta = skill_meta

    def child(
        self,
        span_id: str | None = None,
        skill_meta: CapabilityMeta | None = None,
    ) -> "EventEmitter":
        return EventEmitter(
            self.sink,
            run_id=self.run_id,
            span_id=span_id or str(uuid.uuid4()),
            skill_meta=skill_meta or self.skill_meta,
        )

    def emit(
        self,
        kind: EventKind,
        content: str = "",
        structured_data_key: str | None = None,
    ) -> None:
        self.sink.emit(
            SkillEvent(
                event=kind,
                content=content,
                structured_data_key=structured_data_key,
                run_id=self.run_id,
                span_id=self.span_id,
                skill_meta=self.skill_meta,
            )
        )

    def start(self) -> None:
        self.emit(EventKind.START)

    def end(self) -> None:
        self.emit(EventKind.END)

    def log(self, content: str) -> None:
        logger.debug("event.log", span_id=self.span_id, content=content)
        self.emit(EventKind.LOG, content)

    def error(self, content: str) -> None:
        self.emit(EventKind.ERROR, content)

    def report(self, exc: Exception, message: str | None = None) -> None:
        """Emit an error event for exc once; the enclosing span will not repeat it."""
        if getattr(exc, "reported", False):
            return
        self.error(message or str(exc))
        exc.reported = True

    def structured_data(self, key: str, data: Any) -> None:
        self.emit(
            EventKind.STRUCTURED_DATA,
            json.dumps(data, ensure_ascii=False, default=str),
            structured_data_key=key,
        )

    def emit_large_data(
        self,
        key: str,
        items: Sequence[Any],
        chunk_size: int = 5,
    ) -> None:
        """
        Split a long list into several structured_data events.

        每块载荷: {key: [...], isPartial, chunkIndex, totalChunks}
        """
        if not items:
            return
        chunk_size = max(1, chunk_size)
        total = (len(items) + chunk_size - 1) // chunk_size
        for index in range(total):
            chunk = list(items[index * chunk_size:(index + 1) * chunk_size])
            self.structured_data(
                key,
                {
                    key: chunk,
                    "isPartial": index < total - 1,
                    "chunkIndex": index,
                    "totalChunks": total,
                },
            )

    @asynccontextmanager
    async def span(self) -> AsyncIterator["EventEmitter"]:
        """
        start/end pairing for this emitter's span.

        end 在所有退出路径上发送（包括异常与取消）；未上报的异常先发 error 再继续传播。
        """
        self.start()
        try:
            yield self
        except Exception as exc:
            self.report(exc)
            raise
        finally:
            self.end()
