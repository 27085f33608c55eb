# src/citrace/parameters.py
"""Parameter Capture for tests declared with ``each``.

A parameterized declaration looks like::

    test.each([(1, 2), (3, 4)])("adds %s + %s", body)

The runner turns it into one test per row, all sharing the declared name.
The capture hook stringifies every row at registration time (before any test
body can mutate the values) and queues the strings under the declared name.
Each test start then consumes the next row, so rows reach spans in
declaration order.
"""

import functools
import itertools
import json
from collections import deque
from collections.abc import Callable, Iterable
from typing import Any

import structlog

from citrace.protocols import InstrumenterProtocol

logger = structlog.get_logger(__name__)


def _row_arguments(row: Any) -> list[Any]:
    if isinstance(row, (list, tuple)):
        return list(row)
    return [row]


def format_test_parameters(row: Any) -> str | None:
    """Stringify one input row as the ``test.parameters`` tag value.

    Values without a JSON representation are rendered with ``repr``.

    Returns:
        JSON document ``{"arguments": [...], "metadata": {}}``, or None when
        the row cannot be encoded (e.g. it contains a reference cycle)
    """
    try:
        return json.dumps({"arguments": _row_arguments(row), "metadata": {}}, default=repr)
    except (TypeError, ValueError) as e:
        logger.debug("test_parameters_not_serializable", error=str(e))
        return None


class ParameterRecord:
    """Stringified input rows per declared test name, for one suite run.

    Registering a name again replaces its pending rows (last registration
    wins). A retry of a test reuses the row its first invocation consumed.
    """

    def __init__(self) -> None:
        self._pending: dict[str, deque[str | None]] = {}
        self._consumed: dict[str, str | None] = {}

    def register(self, test_name: str, rows: Iterable[str | None]) -> None:
        self._pending[test_name] = deque(rows)
        self._consumed.pop(test_name, None)

    def consume(self, test_name: str, invocation_ordinal: int = 1) -> str | None:
        """Return the parameter string for a starting test, if any.

        Args:
            test_name: Declared test name
            invocation_ordinal: Runner invocation count. Above 1 the test is a
                retry and receives the row of its first invocation.
        """
        if invocation_ordinal > 1 and test_name in self._consumed:
            return self._consumed[test_name]
        pending = self._pending.get(test_name)
        if not pending:
            return None
        value = pending.popleft()
        self._consumed[test_name] = value
        return value

    def clear(self) -> None:
        self._pending.clear()
        self._consumed.clear()

    def __contains__(self, test_name: object) -> bool:
        return test_name in self._pending


def install_each_capture(
    instrumenter: InstrumenterProtocol,
    target: Any,
    record: ParameterRecord,
) -> bool:
    """Intercept ``target.each`` so its rows are recorded in ``record``.

    Args:
        instrumenter: Hook installer
        target: Object exposing the ``each`` registration function
        record: Per-suite parameter record to fill

    Returns:
        True if the hook was installed, False if ``each`` was already wrapped

    Raises:
        InstrumentationError: If ``target.each`` cannot be wrapped
    """
    if instrumenter.is_wrapped(target, "each"):
        return False

    def wrap_each(each: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(each)
        def each_with_parameters(table: Iterable[Any], *args: Any, **kwargs: Any) -> Any:
            rows: Iterable[Any] = table
            if iter(table) is table:
                # One-shot iterator: read one copy, hand the other to the runner
                table, rows = itertools.tee(table)
            formatted = [format_test_parameters(row) for row in rows]
            bind = each(table, *args, **kwargs)

            @functools.wraps(bind)
            def bind_with_parameters(test_name: str, *bind_args: Any, **bind_kwargs: Any) -> Any:
                record.register(test_name, formatted)
                return bind(test_name, *bind_args, **bind_kwargs)

            return bind_with_parameters

        return each_with_parameters

    instrumenter.wrap(target, "each", wrap_each)
    return True
