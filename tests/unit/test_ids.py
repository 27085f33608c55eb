# tests/unit/test_ids.py
"""Tests for the batched random identifier source."""

import threading

import pytest

from citrace.ids import RandomIdSource, generate_trace_id


class TestRandomIdSource:
    def test_ids_are_nonzero_64_bit(self) -> None:
        source = RandomIdSource(batch_size=2)
        for _ in range(100):
            value = source.next_id()
            assert 0 < value < 2**64

    def test_ids_are_distinct(self) -> None:
        source = RandomIdSource(batch_size=4)
        values = {source.next_id() for _ in range(1000)}
        assert len(values) == 1000

    def test_zero_bytes_are_skipped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        chunks = iter([bytes(8), (1).to_bytes(8, "big")])
        monkeypatch.setattr("citrace.ids.os.urandom", lambda size: next(chunks) * (size // 8))
        source = RandomIdSource(batch_size=1)
        assert source.next_id() == 1

    def test_invalid_batch_size(self) -> None:
        with pytest.raises(ValueError, match="batch_size"):
            RandomIdSource(batch_size=0)

    def test_concurrent_draws_are_distinct(self) -> None:
        source = RandomIdSource(batch_size=3)
        results: list[int] = []
        lock = threading.Lock()

        def draw() -> None:
            values = [source.next_id() for _ in range(200)]
            with lock:
                results.extend(values)

        threads = [threading.Thread(target=draw) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(set(results)) == 800


def test_generate_trace_id() -> None:
    assert generate_trace_id() != generate_trace_id()
