# src/citrace/fallback.py
"""Fallback Failure Observer for the spec tree execution model.

In the spec tree model a failing assertion is reported to the spec's global
exception handler (``Spec.on_exception``). When the test body never calls its
completion callback, the traced body never settles and its own failure path
cannot run. The observer hooks the exception handler and closes the test span
from there.
"""

import functools
import types
from collections.abc import Callable
from pathlib import Path
from typing import Any

import structlog

from citrace.correlation import SpanCorrelationStore
from citrace.dispatcher import mark_failed
from citrace.protocols import SpanProtocol, TracerProtocol
from citrace.tags import TEST_NAME, TEST_STATUS, TEST_SUITE

logger = structlog.get_logger(__name__)

_PACKAGE_ROOT = Path(__file__).resolve().parent


def _is_instrumentation_frame(tb: types.TracebackType, root: Path) -> bool:
    filename = tb.tb_frame.f_code.co_filename
    try:
        return Path(filename).resolve().is_relative_to(root)
    except (OSError, ValueError):
        return False


def strip_instrumentation_frames(error: BaseException, root: Path = _PACKAGE_ROOT) -> BaseException:
    """Remove traceback frames that originate from files under ``root``.

    The backend reports the innermost remaining frame as the failure site; it
    must point at the test, not at the instrumentation. The exception is
    modified in place and returned.
    """
    kept: list[types.TracebackType] = []
    tb = error.__traceback__
    while tb is not None:
        if not _is_instrumentation_frame(tb, root):
            kept.append(tb)
        tb = tb.tb_next

    rebuilt: types.TracebackType | None = None
    for frame_tb in reversed(kept):
        rebuilt = types.TracebackType(rebuilt, frame_tb.tb_frame, frame_tb.tb_lasti, frame_tb.tb_lineno)
    return error.with_traceback(rebuilt)


class FallbackFailureObserver:
    """Closes failing spec spans from the global exception handler.

    The active span is the tracer's currently active span, else the store
    entry for the spec's full name. A failure is applied only when the span
    belongs to the failing spec (same full name, suite path matches) and no
    status is recorded yet, so a span the normal path already closed is never
    reported twice.
    """

    def __init__(self, tracer: TracerProtocol, spans: SpanCorrelationStore) -> None:
        self._tracer = tracer
        self._spans = spans

    def _active_span(self, full_name: str) -> SpanProtocol | None:
        span = self._tracer.active_span()
        if span is None:
            span = self._spans.get(full_name)
        return span

    def observe(self, spec: Any, error: BaseException) -> bool:
        """Handle an exception reported for ``spec``.

        Args:
            spec: The runner's spec object (``get_full_name()``, ``result.test_path``)
            error: The exception the runner reports

        Returns:
            True if the observer failed and finished a span
        """
        full_name = spec.get_full_name()
        span = self._active_span(full_name)
        if span is None:
            return False

        suite_name = span.get_tag(TEST_SUITE)
        test_path = str(getattr(spec.result, "test_path", ""))
        owns_span = span.get_tag(TEST_NAME) == full_name and bool(suite_name) and test_path.endswith(suite_name)
        if not owns_span or span.get_tag(TEST_STATUS):
            return False

        mark_failed(span, strip_instrumentation_frames(error))
        span.finish()
        logger.debug("test_span_failed_from_exception_hook", test_name=full_name)
        return True

    def wrap_on_exception(self, on_exception: Callable[..., Any]) -> Callable[..., Any]:
        """Wrapper factory for ``Spec.on_exception``; the original always runs."""
        observer = self

        @functools.wraps(on_exception)
        def on_exception_with_trace(spec: Any, error: BaseException, *args: Any, **kwargs: Any) -> Any:
            observer.observe(spec, error)
            return on_exception(spec, error, *args, **kwargs)

        return on_exception_with_trace
