"""
    heap
    ====

    Provides `TimeHeap`, a min- or max-heap of times sampled on a 2D or 3D
    grid. Such a heap is typically used in fast marching methods. It enhances
    a conventional binary heap by maintaining a map from grid indices to heap
    entries, which gives O(1) access to the entry for any sample. Such fast
    access is required as times in the heap are reduced while marching.

    Depending on the type of heap, min or max, the entry with either the
    smallest or the largest time is at the top of the heap. That entry can be
    accessed in O(1) and removed in O(log N), where N is the number of entries.
    Inserting entries and reducing times of existing entries are O(log N).
"""

from enum import Enum
import numpy as np


class HeapType(Enum):
    """Whether the entry at the top of the heap has the minimum or maximum time."""
    MIN = "min"
    MAX = "max"


class Entry():
    """
    An entry in the heap has sample indices `index` and a time `time`. The
    `mark` is for external use and is not used by the heap.
    """

    __slots__ = ("index", "time", "mark")

    def __init__(self, index, time, mark=0):
        self.index = index
        self.time = time
        self.mark = mark

    def __repr__(self):
        return f"Entry(index={self.index}, time={self.time}, mark={self.mark})"


class TimeHeap():
    """
    Min- or max-heap of times for samples on a grid.

    Args:
        `heap_type`: `HeapType.MIN` or `HeapType.MAX`.
        `shape`: Tuple[int] of numbers of samples in each dimension.
    """

    def __init__(self, heap_type, shape):
        self.heap_type = HeapType(heap_type)
        self.shape = tuple(shape)
        self._min = self.heap_type == HeapType.MIN
        self._imap = np.full(self.shape, -1, dtype=np.int64) # maps indices to heap index
        self._e = [] # entries; only the first _n are in the heap
        self._n = 0

    def insert(self, index, time, mark=0):
        """
        Insert a new entry with sample indices `index`, time `time`, and mark
        `mark`. The heap must not already contain an entry with those indices.
        """
        index = tuple(index)
        assert self._index_of(index) < 0, f"Entry with indices {index} is already in the heap!"
        i = self._n
        if i < len(self._e): # reuse an unused entry
            ei = self._e[i]
            ei.index = index
            ei.time = time
            ei.mark = mark
        else:
            ei = Entry(index, time, mark)
            self._e.append(ei)
        self._set(i, ei)
        self._n += 1
        self._sift_up(i)

    def reduce(self, index, time):
        """
        Reduce the time of the entry with sample indices `index` to `time`.
        The heap must already contain an entry with those indices, and `time`
        must be less than the time of that entry.
        """
        index = tuple(index)
        i = self._index_of(index)
        assert i >= 0, f"Entry with indices {index} is not in the heap!"
        assert time < self._e[i].time, f"Time {time} is not less than time {self._e[i].time} in the heap!"
        self._e[i].time = time
        if self._min: # for a min-heap the entry may need to move up,
            self._sift_up(i)
        else: # but for a max-heap it may need to move down
            self._sift_down(i)

    def remove(self):
        """Remove and return the entry with the smallest/largest time."""
        assert self._n > 0, "Cannot remove an entry from an empty heap!"
        e0 = self._e[0]
        self._n -= 1
        if self._n > 0:
            self._set(0, self._e[self._n])
            self._set(self._n, e0)
            self._sift_down(0)
        return e0

    def top(self):
        """The entry with the smallest/largest time, without removing it."""
        assert self._n > 0, "An empty heap has no top entry!"
        return self._e[0]

    def contains(self, index):
        """Whether this heap contains an entry with sample indices `index`."""
        return self._index_of(tuple(index)) >= 0

    def time_of(self, index):
        """Time of the entry with sample indices `index`."""
        i = self._index_of(tuple(index))
        assert i >= 0, f"Entry with indices {index} is not in the heap!"
        return self._e[i].time

    def clear(self):
        self._n = 0

    def size(self):
        return self._n

    def __len__(self):
        return self._n

    def is_empty(self):
        return self._n == 0

    def dump(self):
        """Print the entries of this heap; leading spaces show level in tree."""
        self._dump("", 0)

    def _index_of(self, index):
        """
        Heap index of the entry with sample indices `index`, or -1 if there
        is no such entry in the heap.
        """
        i = self._imap[index]
        if i < 0 or i >= self._n:
            return -1
        if self._e[i].index != index:
            return -1
        return int(i)

    def _set(self, i, ei):
        """Set the i'th entry, and update the index map accordingly."""
        self._e[i] = ei
        self._imap[ei.index] = i

    def _sift_down(self, i):
        """If necessary, move entry i down so not greater/less than children."""
        e = self._e
        n = self._n
        ei = e[i]
        eit = ei.time
        m = n >> 1 # number of entries with at least one child
        while i < m:
            c = 2 * i + 1 # left child
            r = c + 1     # right child
            ec = e[c]
            if self._min:
                if r < n and e[r].time < ec.time:
                    c = r
                    ec = e[c]
                if eit <= ec.time:
                    break
            else:
                if r < n and e[r].time > ec.time:
                    c = r
                    ec = e[c]
                if eit >= ec.time:
                    break
            self._set(i, ec) # move smaller/larger child up
            i = c
        if ei is not e[i]:
            self._set(i, ei)

    def _sift_up(self, i):
        """If necessary, move entry i up so not less/greater than parent."""
        e = self._e
        ei = e[i]
        eit = ei.time
        while i > 0:
            p = (i - 1) >> 1
            ep = e[p]
            if self._min:
                if eit >= ep.time:
                    break
            else:
                if eit <= ep.time:
                    break
            self._set(i, ep) # move parent down
            i = p
        if ei is not e[i]:
            self._set(i, ei)

    def _dump(self, s, i):
        if i < self._n:
            s = s + "  "
            e = self._e[i]
            print(f"{s}{e.index} {e.time}")
            self._dump(s, 2 * i + 1)
            self._dump(s, 2 * i + 2)
