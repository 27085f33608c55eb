# src/citrace/tracers/memory.py
"""In-memory tracer that records spans instead of shipping them.

Primarily used for testing and local debugging. Spans are kept in creation
order in ``InMemoryTracer.spans``; ``flush()`` moves finished spans to
``InMemoryTracer.flushed`` the way a real transport would hand them off.
"""

import contextvars
import functools
import time
import traceback
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from citrace.ids import RandomIdSource
from citrace.tags import ERROR_MESSAGE, ERROR_STACK, ERROR_TYPE, ORIGIN, RESOURCE_NAME, SPAN_TYPE

logger = structlog.get_logger(__name__)

TRACE_ID_HEADER = "x-datadog-trace-id"
PARENT_ID_HEADER = "x-datadog-parent-id"
SAMPLING_PRIORITY_HEADER = "x-datadog-sampling-priority"
ORIGIN_HEADER = "x-datadog-origin"


@dataclass(frozen=True, slots=True)
class SpanContext:
    """Parent context extracted from propagation headers."""

    trace_id: int
    span_id: int
    sampling_priority: int | None = None
    origin: str | None = None


@dataclass(eq=False)
class RecordedSpan:
    """A span recorded by InMemoryTracer.

    Attributes:
        finish_count: Number of ``finish()`` calls. Only the first one ends
            the span; the count lets tests assert the one-finish guarantee.
        error: Last exception attached with ``set_error``
    """

    name: str
    trace_id: int
    span_id: int
    parent_id: int | None = None
    tags: dict[str, Any] = field(default_factory=dict)
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None
    finish_count: int = 0
    error: BaseException | None = None

    @property
    def resource(self) -> str | None:
        return self.tags.get(RESOURCE_NAME)

    @property
    def span_type(self) -> str | None:
        return self.tags.get(SPAN_TYPE)

    @property
    def finished(self) -> bool:
        return self.end_time is not None

    def set_tag(self, key: str, value: Any) -> None:
        self.tags[key] = value

    def get_tag(self, key: str) -> Any:
        return self.tags.get(key)

    def set_error(self, error: BaseException) -> None:
        self.error = error
        self.tags[ERROR_TYPE] = type(error).__name__
        self.tags[ERROR_MESSAGE] = str(error)
        self.tags[ERROR_STACK] = "".join(traceback.format_exception(type(error), error, error.__traceback__))

    def finish(self) -> None:
        self.finish_count += 1
        if self.end_time is None:
            self.end_time = time.time()


class InMemoryTracer:
    """Tracer implementation that records spans in memory.

    The active span is tracked in a context variable, so concurrently running
    asyncio tasks each see their own active span.

    Example:
        tracer = InMemoryTracer()
        span = tracer.start_span("citrace.test", tags={"test.name": "adds"})
        span.finish()
        tracer.flush()
        assert tracer.flushed == [span]
    """

    _name = "memory"

    def __init__(self, id_source: RandomIdSource | None = None) -> None:
        self._ids = id_source or RandomIdSource()
        self._active: contextvars.ContextVar[RecordedSpan | None] = contextvars.ContextVar(
            f"citrace_active_span_{id(self)}", default=None
        )
        self.spans: list[RecordedSpan] = []
        self.flushed: list[RecordedSpan] = []
        self.flush_count = 0

    @property
    def name(self) -> str:
        return self._name

    def extract(self, fmt: str, carrier: Mapping[str, str]) -> SpanContext | None:
        """Build a SpanContext from Datadog propagation headers.

        Raises:
            ValueError: If ``fmt`` is not ``"text_map"``
        """
        if fmt != "text_map":
            raise ValueError(f"Unsupported propagation format: {fmt!r}")
        if TRACE_ID_HEADER not in carrier:
            return None
        priority = carrier.get(SAMPLING_PRIORITY_HEADER)
        return SpanContext(
            trace_id=int(carrier[TRACE_ID_HEADER]),
            span_id=int(carrier.get(PARENT_ID_HEADER, "0")),
            sampling_priority=int(priority) if priority is not None else None,
            origin=carrier.get(ORIGIN_HEADER),
        )

    def start_span(
        self,
        name: str,
        *,
        child_of: Any = None,
        tags: Mapping[str, Any] | None = None,
        resource: str | None = None,
        span_type: str | None = None,
        activate: bool = False,
    ) -> RecordedSpan:
        if child_of is None:
            child_of = self._active.get()

        if child_of is None:
            trace_id = self._ids.next_id()
            parent_id = None
        else:
            trace_id = child_of.trace_id
            parent_id = child_of.span_id or None

        span = RecordedSpan(name=name, trace_id=trace_id, span_id=self._ids.next_id(), parent_id=parent_id)
        if isinstance(child_of, SpanContext) and child_of.origin:
            span.set_tag(ORIGIN, child_of.origin)
        if tags:
            span.tags.update(tags)
        if resource is not None:
            span.set_tag(RESOURCE_NAME, resource)
        if span_type is not None:
            span.set_tag(SPAN_TYPE, span_type)

        self.spans.append(span)
        if activate:
            self._active.set(span)
        return span

    def wrap(
        self,
        name: str,
        fn: Callable[[], Awaitable[Any]],
        *,
        span_type: str | None = None,
        child_of: Any = None,
        resource: str | None = None,
        tags: Mapping[str, Any] | None = None,
    ) -> Callable[[], Awaitable[Any]]:
        @functools.wraps(fn)
        async def traced() -> Any:
            span = self.start_span(name, child_of=child_of, tags=tags, resource=resource, span_type=span_type)
            token = self._active.set(span)
            try:
                return await fn()
            finally:
                self._active.reset(token)
                if not span.finished:
                    span.finish()

        return traced

    def active_span(self) -> RecordedSpan | None:
        return self._active.get()

    def trace_spans(self, span: Any) -> list[RecordedSpan]:
        return [s for s in self.spans if s.trace_id == span.trace_id]

    def flush(self) -> None:
        """Hand finished spans off to ``flushed``; open spans stay buffered."""
        self.flush_count += 1
        pending = [s for s in self.spans if s.finished and s not in self.flushed]
        self.flushed.extend(pending)
        logger.debug("memory_tracer_flushed", spans=len(pending))

    def find(self, **tags: Any) -> list[RecordedSpan]:
        """Return recorded spans whose tags match every given ``tag=value``.

        Dots in tag names are written as double underscores:
        ``find(test__name="adds")`` matches ``test.name == "adds"``.
        """
        wanted = {key.replace("__", "."): value for key, value in tags.items()}
        return [s for s in self.spans if all(s.tags.get(k) == v for k, v in wanted.items())]
