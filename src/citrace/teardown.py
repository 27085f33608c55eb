# src/citrace/teardown.py
"""Teardown Flush: unhook and flush spans before a suite finishes.

The host process may exit as soon as suite teardown returns, so buffered
spans must reach the transport first.
"""

import asyncio
from collections.abc import Iterable
from typing import Any

import structlog

from citrace.protocols import InstrumenterProtocol, TracerProtocol
from citrace.suite import SuiteRun

logger = structlog.get_logger(__name__)

SPEC_TREE_HOOKS: tuple[str, ...] = ("it", "fit", "xit")


def remove_suite_hooks(instrumenter: InstrumenterProtocol, global_scope: Any) -> None:
    """Remove every hook citrace installs on a suite's global scope.

    Covers the ``test.each`` parameter capture and, when the scope carries a
    spec tree (``jasmine``), the exception hook and the declaration hooks.
    """
    test_fn = getattr(global_scope, "test", None)
    if test_fn is not None:
        instrumenter.unwrap(test_fn, "each")

    jasmine = getattr(global_scope, "jasmine", None)
    if jasmine is not None:
        instrumenter.unwrap(jasmine.Spec, "on_exception")
        for name in SPEC_TREE_HOOKS:
            instrumenter.unwrap(global_scope, name)


async def flush_spans(tracer: TracerProtocol, timeout: float) -> bool:
    """Wait until the tracer has handed buffered spans to the transport.

    The tracer's flush may block on I/O, so it runs in a worker thread while
    the event loop keeps serving other suites.

    Returns:
        True if the flush completed within ``timeout`` seconds
    """
    try:
        await asyncio.wait_for(asyncio.to_thread(tracer.flush), timeout)
    except TimeoutError:
        logger.warning("Span flush did not complete before teardown deadline", timeout_seconds=timeout)
        return False
    except Exception as e:
        # Tracing must not fail the suite
        logger.warning("Span flush failed", error=str(e))
        return False
    return True


async def teardown_suite(
    tracer: TracerProtocol,
    instrumenter: InstrumenterProtocol,
    global_scope: Any,
    suites: Iterable[SuiteRun | None],
    *,
    timeout: float,
) -> None:
    """Unhook, close the suite runs and flush, in that order."""
    remove_suite_hooks(instrumenter, global_scope)
    for suite in suites:
        if suite is not None:
            suite.close()
    await flush_spans(tracer, timeout)
