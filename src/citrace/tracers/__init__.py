# src/citrace/tracers/__init__.py
"""Built-in tracer backends.

Available tracers:
- DatadogTracer: Real spans shipped to the Datadog agent via ddtrace
- InMemoryTracer: Spans recorded in-process, for testing and debugging

Usage:
    from citrace.tracers import create_tracer

    tracer = create_tracer(settings)
"""

from citrace.config import TracingSettings
from citrace.protocols import TracerProtocol
from citrace.tracers.datadog import DatadogSpan, DatadogTracer
from citrace.tracers.memory import InMemoryTracer, RecordedSpan, SpanContext


def create_tracer(settings: TracingSettings) -> TracerProtocol:
    """Create the tracer backend selected by ``settings.tracer``.

    Raises:
        TracerConfigurationError: If the selected backend cannot be created
    """
    if settings.tracer == "memory":
        return InMemoryTracer()
    return DatadogTracer.from_settings(settings)


__all__ = [
    "DatadogSpan",
    "DatadogTracer",
    "InMemoryTracer",
    "RecordedSpan",
    "SpanContext",
    "create_tracer",
]
