# tests/unit/test_correlation.py
"""Tests for SpanCorrelationStore.

Tests cover:
- Exact and latest-ordinal lookups
- Duplicate identity replacement
- Finishing spans left open at teardown
- Property-based tests for lookup invariants
"""

from unittest.mock import patch

from hypothesis import given
from hypothesis import strategies as st

from citrace.correlation import SpanCorrelationStore
from citrace.identity import TestIdentity
from citrace.tracers.memory import RecordedSpan

SUITE = "tests/test_math.py"


def make_span(span_id: int = 1) -> RecordedSpan:
    return RecordedSpan(name="citrace.test", trace_id=span_id, span_id=span_id)


class TestSpanCorrelationStoreLookups:
    def test_empty_store_returns_none(self) -> None:
        store = SpanCorrelationStore()
        assert store.get("adds") is None
        assert store.get("adds", 1) is None
        assert len(store) == 0

    def test_exact_lookup(self) -> None:
        store = SpanCorrelationStore()
        first, second = make_span(1), make_span(2)
        store.put(TestIdentity(SUITE, "adds", 1), first)
        store.put(TestIdentity(SUITE, "adds", 2), second)

        assert store.get("adds", 1) is first
        assert store.get("adds", 2) is second
        assert store.get("adds", 3) is None

    def test_lookup_without_ordinal_returns_latest(self) -> None:
        store = SpanCorrelationStore()
        first, second = make_span(1), make_span(2)
        store.put(TestIdentity(SUITE, "adds", 2), second)
        store.put(TestIdentity(SUITE, "adds", 1), first)

        assert store.get("adds") is second

    def test_names_are_independent(self) -> None:
        store = SpanCorrelationStore()
        adds, subtracts = make_span(1), make_span(2)
        store.put(TestIdentity(SUITE, "adds"), adds)
        store.put(TestIdentity(SUITE, "subtracts"), subtracts)

        assert store.get("adds") is adds
        assert store.get("subtracts") is subtracts

    def test_contains_checks_key(self) -> None:
        store = SpanCorrelationStore()
        store.put(TestIdentity(SUITE, "adds", 1), make_span())
        assert ("adds", 1) in store
        assert ("adds", 2) not in store

    def test_next_ordinal(self) -> None:
        store = SpanCorrelationStore()
        assert store.next_ordinal("adds") == 1
        store.put(TestIdentity(SUITE, "adds", 1), make_span())
        assert store.next_ordinal("adds") == 2
        assert store.next_ordinal("subtracts") == 1


class TestSpanCorrelationStoreDuplicates:
    def test_duplicate_open_identity_replaces_and_warns(self) -> None:
        store = SpanCorrelationStore()
        first, second = make_span(1), make_span(2)
        store.put(TestIdentity(SUITE, "adds"), first)

        with patch("citrace.correlation.logger") as mock_logger:
            store.put(TestIdentity(SUITE, "adds"), second)

        assert store.get("adds", 1) is second
        mock_logger.warning.assert_called_once()

    def test_duplicate_of_finished_span_does_not_warn(self) -> None:
        store = SpanCorrelationStore()
        first = make_span(1)
        first.finish()
        store.put(TestIdentity(SUITE, "adds"), first)

        with patch("citrace.correlation.logger") as mock_logger:
            store.put(TestIdentity(SUITE, "adds"), make_span(2))

        mock_logger.warning.assert_not_called()


class TestSpanCorrelationStoreTeardown:
    def test_finish_open_finishes_only_open_spans(self) -> None:
        store = SpanCorrelationStore()
        done, hung = make_span(1), make_span(2)
        done.finish()
        store.put(TestIdentity(SUITE, "done"), done)
        store.put(TestIdentity(SUITE, "hung"), hung)

        assert store.finish_open() == 1
        assert hung.finished
        assert done.finish_count == 1

    def test_clear_drops_everything(self) -> None:
        store = SpanCorrelationStore()
        store.put(TestIdentity(SUITE, "adds"), make_span())
        store.clear()
        assert len(store) == 0
        assert store.get("adds") is None
        assert store.next_ordinal("adds") == 1


class TestSpanCorrelationStoreProperties:
    @given(ordinals=st.lists(st.integers(min_value=1, max_value=50), min_size=1, max_size=30))
    def test_latest_lookup_is_highest_stored_ordinal(self, ordinals: list[int]) -> None:
        store = SpanCorrelationStore()
        spans = {}
        for ordinal in ordinals:
            span = make_span(ordinal)
            spans[ordinal] = span
            store.put(TestIdentity(SUITE, "adds", ordinal), span)

        assert store.get("adds") is spans[max(ordinals)]
        for ordinal, span in spans.items():
            assert store.get("adds", ordinal) is span

    @given(names=st.lists(st.text(min_size=1, max_size=10), min_size=1, max_size=20))
    def test_next_ordinal_follows_puts(self, names: list[str]) -> None:
        store = SpanCorrelationStore()
        counts: dict[str, int] = {}
        for name in names:
            ordinal = store.next_ordinal(name)
            assert ordinal == counts.get(name, 0) + 1
            store.put(TestIdentity(SUITE, name, ordinal), make_span())
            counts[name] = ordinal
        assert len(store) == len(names)
