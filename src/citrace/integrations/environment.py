# src/citrace/integrations/environment.py
"""Integration for the event environment execution model.

In this model every suite runs in its own environment object. The runner
creates it with ``Environment(project_config, context)``, calls
``handle_test_event(event, state)`` for every lifecycle event, and awaits
``teardown()`` at the end of the suite. The environment exposes:

- ``global_scope``: the suite's globals (``test`` with its ``each``, and a
  ``jasmine`` namespace when the suite uses the spec tree model)
- ``get_vm_context()``: live context whose ``expect.get_state()`` mapping
  carries ``current_test_name`` and ``suppressed_errors``

Patching wraps ``handle_test_event`` and ``teardown`` on the environment
class and returns a subclass that gives each instance its own suite run.
"""

import functools
import inspect
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import structlog

from citrace.config import RuntimeTracingConfig
from citrace.dispatcher import TestEventDispatcher
from citrace.events import EventKind, TestEvent
from citrace.identity import relativize_suite_path
from citrace.metadata import collect_environment_metadata
from citrace.protocols import InstrumenterProtocol, TracerProtocol
from citrace.suite import SuiteRun, attach_suite, attached_suite
from citrace.teardown import teardown_suite

logger = structlog.get_logger(__name__)

_DISPATCHER_ATTR = "_citrace_dispatcher"


class EnvironmentContext:
    """ExecutionContext reading live state from an environment instance."""

    def __init__(self, environment: Any) -> None:
        self._environment = environment

    def _assertion_state(self) -> Mapping[str, Any] | None:
        vm_context = self._environment.get_vm_context()
        if vm_context is None:
            return None
        state: Mapping[str, Any] = vm_context.expect.get_state()
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
        return getattr(self._environment.global_scope, "test", None)


def _dispatcher_for(environment: Any) -> TestEventDispatcher | None:
    dispatcher = getattr(environment, _DISPATCHER_ATTR, None)
    return dispatcher if isinstance(dispatcher, TestEventDispatcher) else None


def _wrap_handle_test_event() -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def wrap_handle_test_event(handle_test_event: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(handle_test_event)
        async def handle_test_event_with_trace(self: Any, event: Any, *args: Any, **kwargs: Any) -> Any:
            dispatcher = _dispatcher_for(self)
            kind = EventKind.parse(getattr(event, "name", ""))
            if dispatcher is not None and kind is not None:
                dispatcher.handle(TestEvent(kind=kind, test=getattr(event, "test", None), error=getattr(event, "error", None)))
            elif dispatcher is None:
                logger.debug("Environment instance has no suite run, event not traced", event=getattr(event, "name", None))

            result = handle_test_event(self, event, *args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result

        return handle_test_event_with_trace

    return wrap_handle_test_event


def _wrap_teardown(
    tracer: TracerProtocol,
    instrumenter: InstrumenterProtocol,
    config: RuntimeTracingConfig,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def wrap_teardown(teardown: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(teardown)
        async def teardown_with_trace(self: Any, *args: Any, **kwargs: Any) -> Any:
            global_scope = self.global_scope
            jasmine = getattr(global_scope, "jasmine", None)
            await teardown_suite(
                tracer,
                instrumenter,
                global_scope,
                [attached_suite(self), attached_suite(jasmine) if jasmine is not None else None],
                timeout=config.flush_timeout_seconds,
            )
            result = teardown(self, *args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result

        return teardown_with_trace

    return wrap_teardown


def _traced_environment_class(
    base: type,
    tracer: TracerProtocol,
    instrumenter: InstrumenterProtocol,
    config: RuntimeTracingConfig,
    environment_metadata: Mapping[str, Any],
) -> type:
    class TracedEnvironment(base):  # type: ignore[misc,valid-type]
        def __init__(self, project_config: Any, context: Any, *args: Any, **kwargs: Any) -> None:
            super().__init__(project_config, context, *args, **kwargs)
            suite = SuiteRun(relativize_suite_path(str(context.test_path), str(project_config.root_dir)))
            attach_suite(self, suite)
            setattr(
                self,
                _DISPATCHER_ATTR,
                TestEventDispatcher(
                    tracer,
                    suite,
                    EnvironmentContext(self),
                    instrumenter=instrumenter,
                    config=config,
                    environment_metadata=environment_metadata,
                ),
            )

    TracedEnvironment.__name__ = f"Traced{base.__name__}"
    TracedEnvironment.__qualname__ = TracedEnvironment.__name__
    return TracedEnvironment


def patch_environment(
    environment_cls: type,
    tracer: TracerProtocol,
    instrumenter: InstrumenterProtocol,
    config: RuntimeTracingConfig,
) -> type:
    """Instrument an environment class.

    Returns:
        Subclass of ``environment_cls`` to use in its place

    Raises:
        InstrumentationError: If the class lacks ``teardown`` or ``handle_test_event``
    """
    metadata = collect_environment_metadata(config.framework)
    instrumenter.wrap(environment_cls, "teardown", _wrap_teardown(tracer, instrumenter, config))
    instrumenter.wrap(environment_cls, "handle_test_event", _wrap_handle_test_event())
    logger.debug("environment_patched", environment=environment_cls.__qualname__)
    return _traced_environment_class(environment_cls, tracer, instrumenter, config, metadata)


def unpatch_environment(environment_cls: type, instrumenter: InstrumenterProtocol) -> None:
    instrumenter.unwrap(environment_cls, "teardown")
    instrumenter.unwrap(environment_cls, "handle_test_event")
