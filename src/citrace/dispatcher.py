# src/citrace/dispatcher.py
"""Event Dispatcher: turns test lifecycle events into test spans.

The dispatcher is the event-to-span correlation state machine. It owns no
runner knowledge: model adapters (citrace.integrations) translate native
runner events into ``TestEvent`` and provide an ``ExecutionContext`` for live
runner state. One dispatcher serves one suite run.

Span closing strategies:
- skip / todo / hook failure: span started and finished on the event itself
- test start: the test body is replaced by a traced body; the span closes
  when the body settles (pass, suppressed assertion failure, or raised error)
- timeout report: the open span is found in the correlation store and tagged
  ``fail`` / ``Timeout``, since a hung body never settles
- spec tree exception hook: see citrace.fallback

Status Rules:
    ``test.status`` is written at most once. Whichever channel reports first
    wins; later channels leave it alone. Test errors are always re-raised -
    the dispatcher annotates outcomes, it never changes them.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

import structlog

from citrace.config import RuntimeTracingConfig
from citrace.errors import CallbackError, HookFailure
from citrace.events import EventKind, TestEvent, is_timeout_failure
from citrace.ids import RandomIdSource, generate_trace_id
from citrace.identity import TestIdentity, resolve_test_name
from citrace.parameters import install_each_capture
from citrace.protocols import (
    ExecutionContext,
    InstrumenterProtocol,
    SpanProtocol,
    TestDescriptor,
    TracerProtocol,
)
from citrace.suite import SuiteRun
from citrace.tags import (
    AUTO_KEEP,
    CI_APP_ORIGIN,
    ERROR_MESSAGE,
    ERROR_TYPE,
    ORIGIN,
    RESOURCE_NAME,
    SAMPLING_PRIORITY,
    SAMPLING_RULE_DECISION,
    SPAN_TYPE,
    TEST_NAME,
    TEST_PARAMETERS,
    TEST_SPAN_TYPE,
    TEST_STATUS,
    TEST_SUITE,
    TEST_TYPE,
    TIMEOUT_ERROR_TYPE,
    SpanStatus,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# Span status helpers
# =============================================================================


def mark_status(span: SpanProtocol, status: SpanStatus) -> bool:
    """Set ``test.status`` unless a status is already recorded.

    Returns:
        True if this call set the status
    """
    if span.get_tag(TEST_STATUS):
        return False
    span.set_tag(TEST_STATUS, str(status))
    return True


def mark_failed(span: SpanProtocol, error: BaseException) -> bool:
    """Mark the span ``fail`` and attach ``error``, unless a status is already recorded."""
    if not mark_status(span, SpanStatus.FAIL):
        return False
    span.set_error(error)
    return True


def finish_trace(tracer: TracerProtocol, span: SpanProtocol) -> None:
    """Finish ``span`` and any span of its trace the test left open.

    Best effort and bounded: spans are finished as they are, nothing waits
    for the work they describe.
    """
    for other in list(tracer.trace_spans(span)):
        if other is not span and not other.finished:
            other.finish()
    if not span.finished:
        span.finish()


def first_recorded_error(errors: Sequence[Any] | None) -> BaseException | None:
    """Return the first error a runner recorded for a test, as an exception.

    Entries are exceptions or ``(error, origin)`` pairs. When ``error`` is only
    a message, a HookFailure carrying it is built, with the traceback of
    ``origin`` when that is an exception.
    """
    if not errors:
        return None
    entry = errors[0]
    origin: Any = None
    if isinstance(entry, tuple):
        entry, origin = entry[0], entry[1] if len(entry) > 1 else None
    if isinstance(entry, BaseException):
        return entry
    error = HookFailure(str(entry))
    if isinstance(origin, BaseException) and origin.__traceback__ is not None:
        error = error.with_traceback(origin.__traceback__)
    return error


def _as_exception(value: Any) -> BaseException:
    if isinstance(value, BaseException):
        return value
    return AssertionError(str(value))


# =============================================================================
# Test body invocation
# =============================================================================


def expects_done_callback(fn: Callable[..., Any]) -> bool:
    """Return True if ``fn`` declares a required positional parameter.

    Such a body is completion-callback style: it receives ``done`` and
    signals completion by calling it.
    """
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError):
        return False
    return any(
        p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD) and p.default is p.empty
        for p in signature.parameters.values()
    )


async def _call_with_done(fn: Callable[..., Any]) -> Any:
    settled: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

    def done(error: Any = None) -> None:
        if settled.done():
            return
        if error is None:
            settled.set_result(None)
        elif isinstance(error, BaseException):
            settled.set_exception(error)
        else:
            settled.set_exception(CallbackError(str(error)))

    result = fn(done)
    if inspect.isawaitable(result):
        await result
    return await settled


async def invoke_test_fn(fn: Callable[..., Any]) -> Any:
    """Run a test body the way its signature asks for.

    Callback-style bodies are awaited until ``done`` is called. Other bodies
    are called directly; their result is awaited only if it is awaitable.
    """
    if expects_done_callback(fn):
        return await _call_with_done(fn)
    result = fn()
    if inspect.isawaitable(result):
        return await result
    return result


def _invocations(test: TestDescriptor) -> int:
    return max(1, int(getattr(test, "invocations", 1) or 1))


# =============================================================================
# Dispatcher
# =============================================================================


class TestEventDispatcher:
    """Consumes lifecycle events of one suite run and produces test spans.

    Events must be delivered serially. ``handle()`` never blocks or awaits;
    the traced test bodies it installs do the asynchronous work.

    Example:
        suite = SuiteRun("tests/test_math.py")
        dispatcher = TestEventDispatcher(tracer, suite, context, instrumenter=Instrumenter())
        dispatcher.handle(TestEvent(EventKind.SETUP))
        dispatcher.handle(TestEvent(EventKind.TEST_START, test=descriptor))
        await descriptor.fn()   # runs the traced body
    """

    __test__ = False

    def __init__(
        self,
        tracer: TracerProtocol,
        suite: SuiteRun,
        context: ExecutionContext,
        *,
        instrumenter: InstrumenterProtocol,
        config: RuntimeTracingConfig | None = None,
        environment_metadata: Mapping[str, Any] | None = None,
        id_source: RandomIdSource | None = None,
    ) -> None:
        self._tracer = tracer
        self._suite = suite
        self._context = context
        self._instrumenter = instrumenter
        self._config = config or RuntimeTracingConfig.default()
        self._environment_metadata = dict(environment_metadata or {})
        self._next_trace_id = id_source.next_id if id_source is not None else generate_trace_id
        self._handlers: dict[EventKind, Callable[[TestEvent], None]] = {
            EventKind.SETUP: self._on_setup,
            EventKind.TEST_RETRY: self._on_test_retry,
            EventKind.TEST_FN_FAILURE: self._on_test_fn_failure,
            EventKind.TEST_START: self._on_test_event,
            EventKind.TEST_SKIP: self._on_test_event,
            EventKind.TEST_TODO: self._on_test_event,
            EventKind.HOOK_FAILURE: self._on_test_event,
        }

    @property
    def suite(self) -> SuiteRun:
        return self._suite

    def handle(self, event: TestEvent) -> None:
        """Process one lifecycle event."""
        self._handlers[event.kind](event)

    # -------------------------------------------------------------------------
    # Tagging helpers shared by all execution models
    # -------------------------------------------------------------------------

    def root_context(self) -> Any:
        """Synthesize a sampled root trace context; every test is its own trace."""
        return self._tracer.extract(
            "text_map",
            {
                "x-datadog-trace-id": str(self._next_trace_id()),
                "x-datadog-parent-id": "0",
                "x-datadog-sampling-priority": str(AUTO_KEEP),
                "x-datadog-origin": CI_APP_ORIGIN,
            },
        )

    def common_tags(self) -> dict[str, Any]:
        """Tags carried by every test span regardless of identity."""
        return {
            TEST_TYPE: TEST_SPAN_TYPE,
            SAMPLING_RULE_DECISION: 1,
            SAMPLING_PRIORITY: AUTO_KEEP,
            SPAN_TYPE: TEST_SPAN_TYPE,
            TEST_SUITE: self._suite.suite_name,
            **self._environment_metadata,
        }

    def span_tags(self, identity: TestIdentity, parameters: str | None = None) -> dict[str, Any]:
        tags = self.common_tags()
        tags[TEST_NAME] = identity.test_name
        if parameters:
            tags[TEST_PARAMETERS] = parameters
        return tags

    def identify(self, declared_name: str, invocation_ordinal: int) -> TestIdentity:
        """Apply the identity resolution policy to a declared test."""
        return TestIdentity(
            suite_name=self._suite.suite_name,
            test_name=resolve_test_name(declared_name, self._context.current_test_name()),
            invocation_ordinal=invocation_ordinal,
        )

    def identify_next(self, declared_name: str) -> TestIdentity:
        """Identify a test whose runner keeps no invocation count.

        The ordinal is the next free one for the resolved name in this suite run.
        """
        test_name = resolve_test_name(declared_name, self._context.current_test_name())
        return TestIdentity(
            suite_name=self._suite.suite_name,
            test_name=test_name,
            invocation_ordinal=self._suite.spans.next_ordinal(test_name),
        )

    def record_instant_span(
        self,
        identity: TestIdentity,
        tags: Mapping[str, Any],
        status: SpanStatus,
        error: BaseException | None = None,
    ) -> SpanProtocol:
        """Start and immediately finish a span for a test that did not run."""
        span = self._tracer.start_span(
            self._config.span_name,
            child_of=self.root_context(),
            tags={**tags, RESOURCE_NAME: identity.resource, TEST_STATUS: str(status)},
        )
        span.set_tag(ORIGIN, CI_APP_ORIGIN)
        if error is not None:
            span.set_error(error)
        span.finish()
        logger.debug("test_span_recorded", test_name=identity.test_name, status=str(status))
        return span

    def traced_body(
        self,
        fn: Callable[..., Any],
        *,
        identify: Callable[[], TestIdentity],
        tags: Mapping[str, Any],
        resource: str | None = None,
    ) -> Callable[[], Awaitable[Any]]:
        """Wrap a test body so that running it produces one test span.

        Args:
            fn: The undecorated test body
            identify: Returns the test identity. Called when the body starts,
                so models that only learn the name at run time can resolve it.
            tags: Span tags known when the body is wrapped
            resource: Resource identifier, if known when the body is wrapped

        Returns:
            Async function to install in place of ``fn``
        """
        tracer = self._tracer
        suite = self._suite
        context = self._context

        async def run_test() -> Any:
            span = tracer.active_span()
            if span is None:
                logger.warning("No active span for traced test body, running untraced")
                return await invoke_test_fn(fn)

            identity = identify()
            span.set_tag(TEST_NAME, identity.test_name)
            span.set_tag(RESOURCE_NAME, identity.resource)
            span.set_tag(ORIGIN, CI_APP_ORIGIN)
            suite.spans.put(identity, span)

            try:
                result = await invoke_test_fn(fn)
                suppressed = context.suppressed_errors()
                if suppressed:
                    mark_failed(span, _as_exception(suppressed[0]))
                mark_status(span, SpanStatus.PASS)
            except Exception as error:
                mark_failed(span, error)
                raise
            finally:
                finish_trace(tracer, span)
            return result

        return tracer.wrap(
            self._config.span_name,
            run_test,
            span_type=TEST_SPAN_TYPE,
            child_of=self.root_context(),
            resource=resource,
            tags=tags,
        )

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    def _on_setup(self, event: TestEvent) -> None:
        self._suite.parameters.clear()
        target = self._context.each_target()
        if target is None:
            logger.debug("No parameterized test registration to capture", suite=self._suite.suite_name)
            return
        if install_each_capture(self._instrumenter, target, self._suite.parameters):
            logger.debug("each_capture_installed", suite=self._suite.suite_name)

    def _on_test_retry(self, event: TestEvent) -> None:
        test = event.test
        if test is None:
            return
        test_name = resolve_test_name(test.name, self._context.current_test_name())
        original = self._suite.original_fns.get(test_name)
        if original is not None:
            test.fn = original

    def _on_test_fn_failure(self, event: TestEvent) -> None:
        if not is_timeout_failure(event, self._config.timeout_error_prefix):
            return
        test = event.test
        if test is None:
            return
        test_name = resolve_test_name(test.name, self._context.current_test_name())
        span = self._suite.spans.get(test_name, _invocations(test))
        if span is None:
            logger.debug("Timeout reported for test without open span", test_name=test_name)
            return
        span.set_tag(ERROR_TYPE, TIMEOUT_ERROR_TYPE)
        span.set_tag(ERROR_MESSAGE, event.error)
        mark_status(span, SpanStatus.FAIL)
        logger.debug("test_span_timed_out", test_name=test_name, invocation=_invocations(test))

    def _on_test_event(self, event: TestEvent) -> None:
        test = event.test
        # Suite-level hooks have no associated test
        if test is None:
            return

        skipped = event.kind in (EventKind.TEST_SKIP, EventKind.TEST_TODO)
        if skipped:
            # Never started, so the runner's current name belongs to another test
            identity = TestIdentity(self._suite.suite_name, test.name, _invocations(test))
        else:
            identity = self.identify(test.name, _invocations(test))
        parameters = self._suite.parameters.consume(test.name, identity.invocation_ordinal)
        tags = self.span_tags(identity, parameters)

        if skipped:
            self.record_instant_span(identity, tags, SpanStatus.SKIP)
            return

        if event.kind == EventKind.HOOK_FAILURE:
            self.record_instant_span(
                identity,
                tags,
                SpanStatus.FAIL,
                error=first_recorded_error(getattr(test, "errors", None)),
            )
            return

        self._suite.original_fns[identity.test_name] = test.fn
        test.fn = self.traced_body(
            test.fn,
            identify=lambda: identity,
            tags=tags,
            resource=identity.resource,
        )
