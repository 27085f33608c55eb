# src/citrace/instrumentation.py
"""Reversible patching of runner internals.

The Instrumenter replaces a named attribute on an object with a wrapper built
from the original, and can restore the original later. The original is kept
on the wrapper itself, so unwrapping works on any object the wrapper was
installed on, with no registry to leak.

Usage:
    instrumenter = Instrumenter()

    def wrap_it(it):
        @functools.wraps(it)
        def it_with_trace(description, fn, timeout=None):
            ...
        return it_with_trace

    instrumenter.wrap(global_scope, "it", wrap_it)
    ...
    instrumenter.unwrap(global_scope, "it")
"""

from collections.abc import Callable
from typing import Any

import structlog

from citrace.errors import InstrumentationError

logger = structlog.get_logger(__name__)

_ORIGINAL_ATTR = "__citrace_original__"


def _describe(target: Any) -> str:
    if isinstance(target, type):
        return target.__qualname__
    return type(target).__qualname__


class Instrumenter:
    """Installs and removes wrappers on named attributes.

    Wrapping an attribute that is already wrapped stacks a second wrapper;
    callers that need idempotence check ``is_wrapped`` first.
    Unwrapping an attribute that is not wrapped is a no-op.
    """

    def wrap(
        self,
        target: Any,
        name: str,
        wrapper_factory: Callable[[Callable[..., Any]], Callable[..., Any]],
    ) -> Callable[..., Any]:
        """Replace ``target.name`` with ``wrapper_factory(original)``.

        Returns:
            The installed wrapper

        Raises:
            InstrumentationError: If the attribute is missing, not callable,
                or cannot be replaced
        """
        description = f"{_describe(target)}.{name}"
        try:
            original = getattr(target, name)
        except AttributeError as e:
            raise InstrumentationError(description, "attribute does not exist") from e
        if not callable(original):
            raise InstrumentationError(description, f"attribute is not callable ({type(original).__name__})")

        wrapper = wrapper_factory(original)
        try:
            setattr(wrapper, _ORIGINAL_ATTR, original)
            setattr(target, name, wrapper)
        except (AttributeError, TypeError) as e:
            raise InstrumentationError(description, f"attribute cannot be replaced: {e}") from e

        logger.debug("instrumentation_wrapped", target=description)
        return wrapper

    def unwrap(self, target: Any, name: str) -> None:
        """Restore the original of ``target.name`` if it is wrapped."""
        current = getattr(target, name, None)
        original = getattr(current, _ORIGINAL_ATTR, None)
        if original is None:
            return
        try:
            setattr(target, name, original)
        except (AttributeError, TypeError) as e:
            raise InstrumentationError(f"{_describe(target)}.{name}", f"original cannot be restored: {e}") from e
        logger.debug("instrumentation_unwrapped", target=f"{_describe(target)}.{name}")

    def is_wrapped(self, target: Any, name: str) -> bool:
        """Return True if ``target.name`` is a wrapper installed by an Instrumenter."""
        current = getattr(target, name, None)
        return getattr(current, _ORIGINAL_ATTR, None) is not None
