# src/citrace/suite.py
"""Per-suite-run state shared by the dispatcher and its side channels."""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from citrace.correlation import SpanCorrelationStore
from citrace.parameters import ParameterRecord

logger = structlog.get_logger(__name__)


@dataclass
class SuiteRun:
    """State scoped to one suite execution.

    Every suite instance owns its own SuiteRun, so suites running
    concurrently in one process never see each other's spans or parameters.

    Attributes:
        suite_name: Suite file path relative to the run root
        spans: Open spans by test identity
        parameters: Parameter rows registered via ``each``
        original_fns: Undecorated test bodies by resolved test name, restored
            on retry so wrappers never nest
    """

    suite_name: str
    spans: SpanCorrelationStore = field(default_factory=SpanCorrelationStore)
    parameters: ParameterRecord = field(default_factory=ParameterRecord)
    original_fns: dict[str, Callable[..., Any]] = field(default_factory=dict)

    def close(self) -> None:
        """Finish abandoned spans and drop all per-suite state."""
        abandoned = self.spans.finish_open()
        if abandoned:
            logger.info("Suite closed with open test spans", suite=self.suite_name, abandoned=abandoned)
        self.spans.clear()
        self.parameters.clear()
        self.original_fns.clear()


SUITE_ATTR = "_citrace_suite"


def attach_suite(owner: Any, suite: SuiteRun) -> None:
    """Remember the suite run on a runner object (environment or spec tree)."""
    setattr(owner, SUITE_ATTR, suite)


def attached_suite(owner: Any) -> SuiteRun | None:
    """Return the suite run remembered on a runner object, if any."""
    suite = getattr(owner, SUITE_ATTR, None)
    return suite if isinstance(suite, SuiteRun) else None
