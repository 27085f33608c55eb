# src/citrace/correlation.py
"""Span Correlation Store: maps test identities to their open spans.

Spans are stored when a test body starts executing and looked up later by
events that carry less information than the start event did:

- the timeout report knows the name and the runner's invocation count
- the spec tree exception hook knows only the spec's full name

Lookups without an ordinal resolve to the most recently stored ordinal for
the name.

Thread Safety:
    NOT thread-safe. One store belongs to one suite run, whose events are
    delivered serially on a single event loop.
"""

import structlog

from citrace.identity import TestIdentity
from citrace.protocols import SpanProtocol

logger = structlog.get_logger(__name__)


class SpanCorrelationStore:
    """Open spans of one suite run, keyed by ``(test_name, invocation_ordinal)``.

    Example:
        store = SpanCorrelationStore()
        store.put(TestIdentity("suite.py", "adds", 1), span)
        store.get("adds", 1)   # exact lookup
        store.get("adds")      # latest ordinal for "adds"
    """

    def __init__(self) -> None:
        self._spans: dict[tuple[str, int], SpanProtocol] = {}
        self._latest_ordinal: dict[str, int] = {}

    def put(self, identity: TestIdentity, span: SpanProtocol) -> None:
        """Store the span for an identity.

        A still-open span under the same key means two concurrent invocations
        share an identity. The newer span replaces the older one.
        """
        existing = self._spans.get(identity.key)
        if existing is not None and existing is not span and not existing.finished:
            logger.warning(
                "Replacing open span with duplicate identity",
                test_name=identity.test_name,
                invocation_ordinal=identity.invocation_ordinal,
                suite=identity.suite_name,
            )
        self._spans[identity.key] = span
        self._latest_ordinal[identity.test_name] = max(
            identity.invocation_ordinal,
            self._latest_ordinal.get(identity.test_name, 0),
        )

    def get(self, test_name: str, invocation_ordinal: int | None = None) -> SpanProtocol | None:
        """Look up a span by full or partial identity.

        Args:
            test_name: Resolved test name
            invocation_ordinal: Ordinal to match exactly. None selects the
                most recently stored ordinal for the name.

        Returns:
            The stored span, or None if nothing matches
        """
        if invocation_ordinal is None:
            latest = self._latest_ordinal.get(test_name)
            if latest is None:
                return None
            invocation_ordinal = latest
        return self._spans.get((test_name, invocation_ordinal))

    def next_ordinal(self, test_name: str) -> int:
        """Ordinal for the next invocation of a name, for models without an invocation count."""
        return self._latest_ordinal.get(test_name, 0) + 1

    def finish_open(self) -> int:
        """Finish every stored span that is still open.

        Returns:
            Number of spans finished
        """
        finished = 0
        for (test_name, ordinal), span in self._spans.items():
            if span.finished:
                continue
            logger.warning(
                "Finishing test span left open at suite teardown",
                test_name=test_name,
                invocation_ordinal=ordinal,
            )
            span.finish()
            finished += 1
        return finished

    def clear(self) -> None:
        self._spans.clear()
        self._latest_ordinal.clear()

    def __len__(self) -> int:
        return len(self._spans)

    def __contains__(self, key: object) -> bool:
        return key in self._spans
