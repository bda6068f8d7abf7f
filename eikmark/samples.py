"""
    samples
    =======

    Provides the bookkeeping for samples visited while solving for times:
      1. `SampleGrid`: indices of all samples on a grid, with an activation
      generation per sample, so that we can tell in O(1) which samples have
      been activated while solving for the current known sample.
      2. `ActiveList`: a growable list of samples, the sweep frontier.

    Samples are referred to by their flat (C-order) index into the grid.
"""

import numpy as np

GENERATION_MAX = int(np.iinfo(np.int32).max)


class SampleGrid():
    """
    Samples on a 2D or 3D grid.

    For efficiency, activated flags are not cleared by looping over all
    samples before each solve. Instead, the value that represents activated
    samples is incremented; only when that value would overflow are all
    flags reset.

    Attributes:
        `shape`: Tuple[int] of numbers of samples in each dimension.
        `size`: total number of samples.
        `strides`: Tuple[int] of flat index increments along each axis.
        `coords`: np.ndarray(shape=(size, ndim)) of sample indices.
        `activated`: np.ndarray(shape=(size,)) of activation generations.
        `absent`: np.ndarray(shape=(size,)) of flags used to merge lists.
        `generation`: value in `activated` of samples activated since the
          last call to `clear_activated`.
    """

    def __init__(self, shape):
        self.shape = tuple(shape)
        self.ndim = len(self.shape)
        self.size = int(np.prod(self.shape))
        strides = []
        stride = 1
        for n in reversed(self.shape):
            strides.append(stride)
            stride *= n
        self.strides = tuple(reversed(strides))
        self.coords = np.stack(np.unravel_index(np.arange(self.size), self.shape), axis=-1).astype(np.int32)
        self.activated = np.zeros(self.size, dtype=np.int32)
        self.absent = np.zeros(self.size, dtype=bool)
        self.generation = 1

    def clear_activated(self):
        """Start a new generation, so that no sample is activated."""
        if self.generation == GENERATION_MAX: # rarely!
            self.generation = 1
            self.activated[:] = 0
        else: # typically
            self.generation += 1

    def set_activated(self, s):
        self.activated[s] = self.generation

    def clear_activated_sample(self, s):
        self.activated[s] = 0

    def was_activated(self, s):
        return self.activated[s] == self.generation

    def index(self, s):
        """Grid indices of the sample with flat index `s`."""
        return tuple(int(i) for i in self.coords[s])

    def flat(self, index):
        """Flat index of the sample with grid indices `index`."""
        return int(sum(i * stride for i, stride in zip(index, self.strides)))

    def neighbor(self, s, axis, step):
        """
        Flat index of the neighbour of sample `s` displaced by `step` (-1 or 1)
        along `axis`, or -1 if that neighbour is out of bounds.
        """
        j = self.coords[s, axis] + step
        if j < 0 or j >= self.shape[axis]:
            return -1
        return s + step * self.strides[axis]


class ActiveList():
    """
    A list of active samples. Appending a sample activates it in `grid`.
    Within a single list samples may be duplicated; `append_if_absent` merges
    lists without duplicates by way of the absent flags of `grid`.
    """

    def __init__(self, grid):
        self.grid = grid
        self._a = []

    def append(self, s):
        self.grid.activated[s] = self.grid.generation
        self._a.append(s)

    def is_empty(self):
        return len(self._a) == 0

    def size(self):
        return len(self._a)

    def __len__(self):
        return len(self._a)

    def __iter__(self):
        return iter(self._a)

    def get(self, i):
        return self._a[i]

    def clear(self):
        self._a.clear()

    def set_all_absent(self):
        self.grid.absent[self._a] = True

    def append_if_absent(self, other):
        """
        Append the samples of `other` that are flagged absent, clearing each
        flag as it is appended, so that no sample is appended twice.
        """
        absent = self.grid.absent
        for s in other._a:
            if absent[s]:
                self._a.append(s)
                absent[s] = False

    def shuffle(self, rng=None):
        """Randomise the order of samples in this list; for experiments only."""
        if rng is None:
            rng = np.random.default_rng()
        rng.shuffle(self._a)

    def to_array(self):
        return np.array(self._a, dtype=np.int32)

    def dump(self):
        """Print the indices of samples in this list."""
        print(f"ActiveList.dump: n={len(self._a)}")
        for i, s in enumerate(self._a):
            print(f" s[{i}] = {self.grid.index(s)}")
