# src/citrace/integrations/spec_tree.py
"""Integration for the spec tree execution model.

Tests are declared into a tree with ``it`` / ``fit`` (focused) / ``xit``
(skipped) on the suite's global input. Assertion state is global
(``global_input.expect.get_state()``), and failures are reported to
``Spec.on_exception``. A failing assertion may never let the test body
settle, so this model relies on the Fallback Failure Observer.

The runner installs the tree into a suite through
``async_install(global_config, global_input)``; patching wraps that function
so every suite gets its own suite run and hooks.
"""

import functools
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import structlog

from citrace.config import RuntimeTracingConfig
from citrace.dispatcher import TestEventDispatcher
from citrace.fallback import FallbackFailureObserver
from citrace.identity import TestIdentity, relativize_suite_path
from citrace.metadata import collect_environment_metadata
from citrace.protocols import InstrumenterProtocol, TracerProtocol
from citrace.suite import SuiteRun, attach_suite
from citrace.tags import SpanStatus

logger = structlog.get_logger(__name__)

ASYNC_INSTALL_ATTR = "async_install"


class SpecTreeContext:
    """ExecutionContext reading the spec tree's global assertion state."""

    def __init__(self, global_input: Any) -> None:
        self._global_input = global_input

    def _assertion_state(self) -> Mapping[str, Any] | None:
        expect = getattr(self._global_input, "expect", None)
        if expect is None:
            return None
        state: Mapping[str, Any] = expect.get_state()
        return state

    def current_test_name(self) -> str | None:
        state = self._assertion_state()
        if state is None:
            return None
        return state.get("current_test_name")

    def suppressed_errors(self) -> Sequence[BaseException]:
        state = self._assertion_state()
        if state is None:
            return ()
        return list(state.get("suppressed_errors") or ())

    def each_target(self) -> Any | None:
        return None


def _wrap_it(dispatcher: TestEventDispatcher) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def wrap_it(it: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(it)
        def it_with_trace(description: str, spec_fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
            # The full name is only known once the spec runs
            traced = dispatcher.traced_body(
                spec_fn,
                identify=lambda: dispatcher.identify_next(description),
                tags=dispatcher.common_tags(),
            )
            return it(description, traced, *args, **kwargs)

        return it_with_trace

    return wrap_it


def _wrap_it_skip(dispatcher: TestEventDispatcher) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def wrap_it_skip(xit: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(xit)
        def it_skip_with_trace(*args: Any, **kwargs: Any) -> Any:
            spec = xit(*args, **kwargs)
            identity = TestIdentity(dispatcher.suite.suite_name, spec.get_full_name())
            dispatcher.record_instant_span(identity, dispatcher.span_tags(identity), SpanStatus.SKIP)
            return spec

        return it_skip_with_trace

    return wrap_it_skip


def install_spec_tree_hooks(
    tracer: TracerProtocol,
    instrumenter: InstrumenterProtocol,
    config: RuntimeTracingConfig,
    environment_metadata: Mapping[str, Any],
    global_config: Any,
    global_input: Any,
) -> TestEventDispatcher | None:
    """Install the exception hook and the declaration hooks on one suite.

    Returns:
        The suite's dispatcher, or None if the suite was already instrumented
    """
    if instrumenter.is_wrapped(global_input, "it"):
        logger.debug("Spec tree already instrumented for this suite")
        return None

    jasmine = global_input.jasmine
    suite = SuiteRun(relativize_suite_path(str(jasmine.test_path), str(global_config.root_dir)))
    attach_suite(jasmine, suite)
    dispatcher = TestEventDispatcher(
        tracer,
        suite,
        SpecTreeContext(global_input),
        instrumenter=instrumenter,
        config=config,
        environment_metadata=environment_metadata,
    )
    observer = FallbackFailureObserver(tracer, suite.spans)

    instrumenter.wrap(jasmine.Spec, "on_exception", observer.wrap_on_exception)
    instrumenter.wrap(global_input, "it", _wrap_it(dispatcher))
    instrumenter.wrap(global_input, "fit", _wrap_it(dispatcher))
    instrumenter.wrap(global_input, "xit", _wrap_it_skip(dispatcher))
    return dispatcher


def patch_spec_tree(
    module: Any,
    tracer: TracerProtocol,
    instrumenter: InstrumenterProtocol,
    config: RuntimeTracingConfig,
) -> Any:
    """Instrument the module providing ``async_install``.

    Returns:
        The patched module

    Raises:
        InstrumentationError: If the module has no ``async_install``
    """
    metadata = collect_environment_metadata(config.framework)

    def wrap_async_install(async_install: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(async_install)
        def async_install_with_trace(global_config: Any, global_input: Any, *args: Any, **kwargs: Any) -> Any:
            install_spec_tree_hooks(tracer, instrumenter, config, metadata, global_config, global_input)
            return async_install(global_config, global_input, *args, **kwargs)

        return async_install_with_trace

    instrumenter.wrap(module, ASYNC_INSTALL_ATTR, wrap_async_install)
    logger.debug("spec_tree_patched", module=getattr(module, "__name__", type(module).__name__))
    return module


def unpatch_spec_tree(module: Any, instrumenter: InstrumenterProtocol) -> None:
    instrumenter.unwrap(module, ASYNC_INSTALL_ATTR)
