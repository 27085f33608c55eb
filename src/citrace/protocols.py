# src/citrace/protocols.py
"""Protocol definitions for the collaborators the core depends on.

The core never imports a concrete tracer or runner. It talks to:

- TracerProtocol / SpanProtocol: the tracing backend (ddtrace, in-memory)
- InstrumenterProtocol: reversible patching of runner internals
- TestDescriptor: the runner's mutable per-test record
- ExecutionContext: model-specific view of live runner state
"""

from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class SpanProtocol(Protocol):
    """A span handle obtained from a tracer.

    ``finish()`` may be called more than once; only the first call ends the
    span. Callers check ``finished`` before finishing to keep the one-finish
    guarantee observable.
    """

    def set_tag(self, key: str, value: Any) -> None: ...

    def get_tag(self, key: str) -> Any: ...

    def set_error(self, error: BaseException) -> None:
        """Attach an exception (type, message, traceback) to the span."""
        ...

    def finish(self) -> None: ...

    @property
    def finished(self) -> bool: ...


@runtime_checkable
class TracerProtocol(Protocol):
    """Tracing backend used to create, activate and flush spans."""

    def start_span(
        self,
        name: str,
        *,
        child_of: Any = None,
        tags: Mapping[str, Any] | None = None,
        resource: str | None = None,
        span_type: str | None = None,
        activate: bool = False,
    ) -> SpanProtocol: ...

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
        """Return an async function running ``fn`` inside a new active span.

        The span is finished when ``fn`` completes unless ``fn`` finished it.
        """
        ...

    def extract(self, fmt: str, carrier: Mapping[str, str]) -> Any:
        """Build a parent span context from propagation headers."""
        ...

    def active_span(self) -> SpanProtocol | None: ...

    def trace_spans(self, span: SpanProtocol) -> Iterable[SpanProtocol]:
        """Spans known to the tracer that belong to the same trace as ``span``."""
        ...

    def flush(self) -> None:
        """Hand all buffered spans to the transport. May block."""
        ...


@runtime_checkable
class InstrumenterProtocol(Protocol):
    """Reversible replacement of a named attribute on an object."""

    def wrap(
        self,
        target: Any,
        name: str,
        wrapper_factory: Callable[[Callable[..., Any]], Callable[..., Any]],
    ) -> Callable[..., Any]: ...

    def unwrap(self, target: Any, name: str) -> None: ...

    def is_wrapped(self, target: Any, name: str) -> bool: ...


class TestDescriptor(Protocol):
    """The runner's record of one declared test.

    Attributes:
        name: Declared test name
        fn: Test body; replaced by the dispatcher with a traced body
        invocations: Number of times the runner has started this test
        errors: Errors the runner recorded for the test (hooks included).
            Entries are exceptions or ``(error, origin)`` pairs.
    """

    name: str
    fn: Callable[..., Any]
    invocations: int
    errors: Sequence[Any]


class ExecutionContext(Protocol):
    """Model-specific view of live runner state.

    Each execution model provides one implementation; the dispatcher only
    sees this interface.
    """

    def current_test_name(self) -> str | None:
        """Name of the test currently executing, if the model exposes it."""
        ...

    def suppressed_errors(self) -> Sequence[BaseException]:
        """Assertion failures recorded for the current test without raising."""
        ...

    def each_target(self) -> Any | None:
        """Object whose ``each`` attribute registers parameterized tests."""
        ...
