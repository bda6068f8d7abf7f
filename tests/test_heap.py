"""Tests for eikmark.heap: ordering and reducing times."""

import numpy as np
import pytest

from eikmark.heap import HeapType, TimeHeap


def fill(heap, times):
    for index in np.ndindex(*times.shape):
        heap.insert(index, float(times[index]), mark=index[0])


@pytest.fixture
def times():
    return np.random.default_rng(42).random((5, 6))


class TestOrdering:
    def test_min_heap_removes_in_increasing_order(self, times):
        heap = TimeHeap(HeapType.MIN, times.shape)
        fill(heap, times)
        removed = [heap.remove().time for _ in range(times.size)]
        assert removed == sorted(times.ravel().tolist())
        assert heap.is_empty()

    def test_max_heap_removes_in_decreasing_order(self, times):
        heap = TimeHeap(HeapType.MAX, times.shape)
        fill(heap, times)
        removed = [heap.remove().time for _ in range(times.size)]
        assert removed == sorted(times.ravel().tolist(), reverse=True)

    def test_heap_type_from_value(self):
        assert TimeHeap("max", (2, 2)).heap_type == HeapType.MAX

    def test_entries_keep_indices_and_marks(self):
        heap = TimeHeap(HeapType.MIN, (3, 4, 5))
        heap.insert((2, 3, 4), 1.5, mark=7)
        heap.insert((0, 1, 2), 0.5, mark=3)
        e = heap.remove()
        assert e.index == (0, 1, 2)
        assert e.mark == 3
        e = heap.remove()
        assert e.index == (2, 3, 4)
        assert e.time == 1.5
        assert e.mark == 7


class TestReduce:
    def test_reduce_moves_entry_to_top_of_min_heap(self, times):
        heap = TimeHeap(HeapType.MIN, times.shape)
        fill(heap, times)
        heap.reduce((4, 5), -1.0)
        assert heap.top().index == (4, 5)
        assert heap.time_of((4, 5)) == -1.0

    def test_reduce_moves_entry_down_max_heap(self, times):
        heap = TimeHeap(HeapType.MAX, times.shape)
        fill(heap, times)
        top = heap.top().index
        heap.reduce(top, -1.0)
        assert heap.top().index != top
        removed = [heap.remove() for _ in range(times.size)]
        assert removed[-1].index == top
        assert [e.time for e in removed] == sorted((e.time for e in removed), reverse=True)

    def test_contains_and_time_of(self):
        heap = TimeHeap(HeapType.MIN, (4, 4))
        heap.insert((1, 2), 3.0)
        assert heap.contains((1, 2))
        assert not heap.contains((2, 1))
        assert heap.time_of((1, 2)) == 3.0
        heap.remove()
        assert not heap.contains((1, 2))


class TestLifecycle:
    def test_size_and_len(self, times):
        heap = TimeHeap(HeapType.MIN, times.shape)
        fill(heap, times)
        assert heap.size() == times.size
        assert len(heap) == times.size
        heap.remove()
        assert heap.size() == times.size - 1

    def test_clear_and_reuse(self, times):
        heap = TimeHeap(HeapType.MIN, times.shape)
        fill(heap, times)
        heap.clear()
        assert heap.is_empty()
        assert not heap.contains((0, 0))
        heap.insert((0, 0), 2.0)
        heap.insert((1, 1), 1.0)
        assert heap.remove().index == (1, 1)
        assert heap.remove().index == (0, 0)

    def test_dump_prints_entries(self, capsys):
        heap = TimeHeap(HeapType.MIN, (2, 2))
        heap.insert((0, 1), 1.0)
        heap.insert((1, 0), 2.0)
        heap.dump()
        out = capsys.readouterr().out
        assert "(0, 1) 1.0" in out
        assert "(1, 0) 2.0" in out


class TestMisuse:
    def test_insert_duplicate_raises(self):
        heap = TimeHeap(HeapType.MIN, (3, 3))
        heap.insert((1, 1), 1.0)
        with pytest.raises(AssertionError):
            heap.insert((1, 1), 2.0)

    def test_reduce_missing_raises(self):
        heap = TimeHeap(HeapType.MIN, (3, 3))
        with pytest.raises(AssertionError):
            heap.reduce((1, 1), 0.0)

    def test_reduce_to_larger_time_raises(self):
        heap = TimeHeap(HeapType.MIN, (3, 3))
        heap.insert((1, 1), 1.0)
        with pytest.raises(AssertionError):
            heap.reduce((1, 1), 2.0)

    def test_remove_from_empty_raises(self):
        heap = TimeHeap(HeapType.MAX, (3, 3))
        with pytest.raises(AssertionError):
            heap.remove()
