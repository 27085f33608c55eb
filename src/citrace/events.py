# src/citrace/events.py
"""Lifecycle event vocabulary shared by all execution models.

Model adapters translate their runner's native events into ``TestEvent``
instances before handing them to the dispatcher.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from citrace.protocols import TestDescriptor

# Prefix of the failure reason the runner reports when a test exceeds its
# time limit. Matching on runner wording is fragile; keep it isolated here.
TIMEOUT_ERROR_PREFIX = "Exceeded timeout"


class EventKind(StrEnum):
    """Lifecycle events the dispatcher reacts to."""

    SETUP = "setup"
    TEST_START = "test_start"
    TEST_RETRY = "test_retry"
    TEST_FN_FAILURE = "test_fn_failure"
    TEST_SKIP = "test_skip"
    TEST_TODO = "test_todo"
    HOOK_FAILURE = "hook_failure"

    @classmethod
    def parse(cls, name: str) -> "EventKind | None":
        """Return the kind for a runner event name, or None if it is not tracked."""
        try:
            return cls(name)
        except ValueError:
            return None


@dataclass(slots=True)
class TestEvent:
    """A lifecycle notification in the common vocabulary.

    Attributes:
        kind: What happened
        test: Runner test descriptor, if the event is test-scoped. The
            dispatcher may replace ``test.fn`` in place.
        error: Failure reason carried by failure events (usually a string)
    """

    __test__ = False

    kind: EventKind
    test: "TestDescriptor | None" = None
    error: Any = None


def is_timeout_failure(event: TestEvent, prefix: str = TIMEOUT_ERROR_PREFIX) -> bool:
    """Return True when a failure event reports a timeout.

    Only a string reason starting with ``prefix`` counts. Timeouts cannot be
    told apart from other failures by any other signal.
    """
    return isinstance(event.error, str) and event.error.startswith(prefix)
