# src/citrace/tracers/datadog.py
"""Datadog tracer adapter.

Creates real Datadog spans through the ddtrace library; ddtrace batches and
ships them to the Datadog agent. ddtrace is imported lazily so that the rest
of citrace works without it installed.

A few test tags map onto ddtrace span attributes instead of tags:

- ``resource.name``     -> ``span.resource``
- ``span.type``         -> ``span.span_type``
- ``sampling.priority`` -> ``span.context.sampling_priority``
"""

from __future__ import annotations

import functools
import os
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any

import structlog

from citrace.errors import TracerConfigurationError
from citrace.tags import ERROR_MESSAGE, ERROR_TYPE, RESOURCE_NAME, SAMPLING_PRIORITY, SPAN_TYPE

if TYPE_CHECKING:
    from ddtrace._trace.span import Span
    from ddtrace._trace.tracer import Tracer

    from citrace.config import TracingSettings

logger = structlog.get_logger(__name__)


class DatadogSpan:
    """SpanProtocol view of a ddtrace span."""

    def __init__(self, span: Span, on_finish: Callable[[DatadogSpan], None] | None = None) -> None:
        self._span = span
        self._on_finish = on_finish

    @property
    def trace_id(self) -> int:
        return self._span.trace_id

    @property
    def span_id(self) -> int:
        return self._span.span_id

    @property
    def finished(self) -> bool:
        return self._span.finished

    @property
    def raw(self) -> Span:
        """The underlying ddtrace span."""
        return self._span

    def set_tag(self, key: str, value: Any) -> None:
        if key == RESOURCE_NAME:
            self._span.resource = str(value)
        elif key == SPAN_TYPE:
            self._span.span_type = str(value)
        elif key == SAMPLING_PRIORITY:
            self._span.context.sampling_priority = int(value)
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            self._span.set_metric(key, value)
        else:
            self._span.set_tag(key, value)
        if key in (ERROR_TYPE, ERROR_MESSAGE):
            self._span.error = 1

    def get_tag(self, key: str) -> Any:
        if key == RESOURCE_NAME:
            return self._span.resource
        if key == SPAN_TYPE:
            return self._span.span_type
        value = self._span.get_tag(key)
        if value is None:
            return self._span.get_metric(key)
        return value

    def set_error(self, error: BaseException) -> None:
        self._span.set_exc_info(type(error), error, error.__traceback__)

    def finish(self) -> None:
        # ddtrace ignores finish() on an already finished span
        self._span.finish()
        if self._on_finish is not None:
            self._on_finish(self)


class DatadogTracer:
    """TracerProtocol implementation backed by the global ddtrace tracer.

    Spans started through this adapter are tracked until they finish, so
    ``trace_spans()`` can close children a test left open. Spans created by
    test code directly through ddtrace are not tracked.

    Example:
        tracer = DatadogTracer.from_settings(settings)
        span = tracer.start_span("citrace.test", resource="tests/test_math.py.adds")
        span.finish()
        tracer.flush()
    """

    _name = "datadog"

    def __init__(self, tracer: Tracer, *, service_name: str = "citrace", env: str | None = None) -> None:
        self._tracer = tracer
        self._service_name = service_name
        self._env = env
        self._open: dict[int, DatadogSpan] = {}

    @property
    def name(self) -> str:
        return self._name

    @classmethod
    def from_settings(cls, settings: TracingSettings) -> DatadogTracer:
        """Create the adapter around the global ddtrace tracer.

        Raises:
            TracerConfigurationError: If ddtrace is not installed
        """
        try:
            from ddtrace import tracer  # type: ignore[attr-defined]
        except ImportError as e:
            raise TracerConfigurationError(
                cls._name,
                f"ddtrace not installed: {e}. Install with: pip install ddtrace",
            ) from e

        # ddtrace reads agent connection settings from the environment
        os.environ["DD_AGENT_HOST"] = settings.agent_host
        os.environ["DD_TRACE_AGENT_PORT"] = str(settings.agent_port)

        logger.debug(
            "Datadog tracer configured",
            service_name=settings.service_name,
            env=settings.env,
            agent_host=settings.agent_host,
            agent_port=settings.agent_port,
        )
        return cls(tracer, service_name=settings.service_name, env=settings.env)

    def _forget(self, span: DatadogSpan) -> None:
        self._open.pop(span.span_id, None)

    def extract(self, fmt: str, carrier: Mapping[str, str]) -> Any:
        if fmt != "text_map":
            raise ValueError(f"Unsupported propagation format: {fmt!r}")
        from ddtrace.propagation.http import HTTPPropagator

        return HTTPPropagator.extract(dict(carrier))

    def start_span(
        self,
        name: str,
        *,
        child_of: Any = None,
        tags: Mapping[str, Any] | None = None,
        resource: str | None = None,
        span_type: str | None = None,
        activate: bool = False,
    ) -> DatadogSpan:
        if isinstance(child_of, DatadogSpan):
            child_of = child_of.raw
        raw = self._tracer.start_span(
            name,
            child_of=child_of,
            service=self._service_name,
            resource=resource,
            span_type=span_type,
            activate=activate,
        )
        span = DatadogSpan(raw, on_finish=self._forget)
        self._open[span.span_id] = span
        if self._env:
            span.set_tag("env", self._env)
        for key, value in (tags or {}).items():
            span.set_tag(key, value)
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
            span = self.start_span(
                name,
                child_of=child_of,
                tags=tags,
                resource=resource,
                span_type=span_type,
                activate=True,
            )
            try:
                return await fn()
            finally:
                if not span.finished:
                    span.finish()

        return traced

    def active_span(self) -> DatadogSpan | None:
        current = self._tracer.current_span()
        if current is None:
            return None
        return self._open.get(current.span_id) or DatadogSpan(current)

    def trace_spans(self, span: Any) -> list[DatadogSpan]:
        return [s for s in self._open.values() if s.trace_id == span.trace_id]

    def flush(self) -> None:
        self._tracer.flush()  # type: ignore[no-untyped-call]
