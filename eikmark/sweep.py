"""
    sweep
    =====

    Provides the active-list sweeps that solve for times from one known
    sample, following the iterative method of Jeong and Whitaker[1]. Samples
    in the active (A) list are processed in passes. Each pass reads samples
    from the A list and appends samples not yet converged, or newly activated,
    to separate (B) lists; the B lists are then merged, without duplicates,
    into the A list for the next pass. Passes repeat until the A list is empty.

    The primary objects are:
      1. `MarkerContext`: the state of one transform of times and marks.
      2. `solve_one`: process one sample from the A list.
      3. `SerialSweep`: process the A list sequentially.
      4. `ThreadPoolSweep`: process blocks of the A list on a fixed pool of
      threads, which take blocks from a shared counter.
      5. `reached_samples`: known samples reached by a sweep, used to reorder
      the heap of known samples.

    The data-parallel sweep that uses Taichi is in the module `parallel`.

    References:
      [1]: W.-K. Jeong and R. T. Whitaker. "A fast iterative method for a
      class of Hamilton-Jacobi equations on parallel systems". University of
      Utah Technical Report UUCS-07-010 (2007).
"""

import itertools
import os
from concurrent.futures import ThreadPoolExecutor
import numpy as np
from eikmark.kernel import (
    compute_time,
    current_time
)
from eikmark.samples import (
    SampleGrid,
    ActiveList
)
from eikmark.utils import (
    EPSILON,
    NABOR_FACTOR
)


class SweepError(RuntimeError):
    """A sweep failed in one of its worker threads."""


class MarkerContext():
    """
    State of one transform of times and marks. A new context is made for
    every call to `apply`, so that time markers themselves hold no state
    that changes while solving.

    Attributes:
        `grid`: `SampleGrid` with activation generations and absent flags.
        `stencil`: `Stencil` with neighbour offsets for the grid.
        `tensors`: tensor field accessor.
        `t`: np.ndarray(shape=(size,), dtype=np.float32) of times for the
          known sample currently being solved for.
        `times`: flat view of the output array of minimum times.
        `marks`: flat view of the output array of marks.
        `one_minus_epsilon`: times are converged when they do not decrease
          below this fraction of their previous value.
        `nabor_factor`: neighbours of a converged sample are checked only if
          its time is at most this factor times the minimum time so far.
        `visits`: number of samples processed so far.
        `pending`: np.ndarray(shape=(size,), dtype=bool) flagging known
          samples not yet solved for, or `None` if known samples are not
          processed in the order of a heap.
    """

    def __init__(self, stencil, tensors, times, marks, epsilon=EPSILON, nabor_factor=NABOR_FACTOR):
        self.grid = SampleGrid(times.shape)
        self.stencil = stencil
        self.tensors = tensors
        self.t = np.zeros(self.grid.size, dtype=np.float32)
        self.times = times.reshape(-1)
        self.marks = marks.reshape(-1)
        self.one_minus_epsilon = 1.0 - epsilon
        self.nabor_factor = nabor_factor
        self.visits = 0
        self.pending = None

    def scratch(self):
        """A buffer for the tensor components of one sample."""
        return np.empty(self.tensors.n_components, dtype=np.float32)


def solve_one(ctx, s, m, bl, d):
    """
    Process sample `s` from the A list, appending samples not yet converged
    to the B list `bl`.

    The time of `s` is recomputed from all of its neighbours. If it has
    converged, the minimum time and mark of `s` are updated, and neighbours
    whose times are significantly reduced by `s` are activated. Otherwise,
    `s` itself stays active.

    Args:
        `ctx`: `MarkerContext` of the transform.
        `s`: flat index of the sample.
        `m`: mark of the known sample currently being solved for.
        `bl`: `ActiveList` to which samples are appended.
        `d`: scratch buffer for tensor components.
    """
    grid = ctx.grid
    stencil = ctx.stencil
    t = ctx.t
    times = ctx.times

    # Current time and new time computed from all neighbours.
    ti = current_time(t, grid, s)
    t[s] = compute_time(t, grid, ctx.tensors, s, stencil.all_set, d)
    ci = float(t[s])

    # If new and current times are close enough (converged), then ...
    if ci >= ti * ctx.one_minus_epsilon:

        # Neighbours may need to be activated if the computed time is small
        # relative to the minimum time computed so far. The default factor
        # 1.5 improves accuracy for large anisotropy. Cost increases as the
        # square of this factor.
        check_nabors = ci <= ctx.nabor_factor * times[s]

        # If computed time less than minimum time, mark this sample.
        if ci < times[s]:
            times[s] = ci
            ctx.marks[s] = m

        if check_nabors:
            for k, (axis, step) in enumerate(stencil.steps):
                j = grid.neighbor(s, axis, step)
                if j < 0:
                    continue

                # Current and computed times for the neighbour.
                tj = current_time(t, grid, j)
                cj = compute_time(t, grid, ctx.tensors, j, stencil.nabor_sets[k], d)

                # If computed time is significantly less than current time,
                # replace it and activate the neighbour.
                if cj < tj * ctx.one_minus_epsilon:
                    t[j] = cj
                    bl.append(j)

    # Else, if not converged, keep this sample active.
    else:
        bl.append(s)


def reached_samples(ctx, s, m):
    """
    Pending known samples with mark `m` that were activated while solving for
    times from the known sample `s`, as a list of (flat index, time).
    Activated samples are connected, so they are found with a depth-first
    search from `s`; each is cleared as it is found.
    """
    grid = ctx.grid
    reached = []
    stack = []
    if grid.was_activated(s):
        grid.clear_activated_sample(s)
        stack.append(s)
    while stack:
        i = stack.pop()
        if ctx.pending[i] and ctx.marks[i] == m:
            reached.append((i, float(ctx.times[i])))
        for axis, step in ctx.stencil.steps:
            j = grid.neighbor(i, axis, step)
            if j >= 0 and grid.was_activated(j):
                grid.clear_activated_sample(j)
                stack.append(j)
    return reached


class SerialSweep():
    """Sweep the A list sequentially, with a single B list and scratch buffer."""

    def begin(self, ctx):
        self._bl = ActiveList(ctx.grid)
        self._d = ctx.scratch()

    def solve(self, ctx, al, m):
        """Process the A list `al` until empty, for the known sample with mark `m`."""
        while not al.is_empty():
            ctx.visits += al.size()
            self.sweep_pass(ctx, al, m)

    def sweep_pass(self, ctx, al, m):
        """Process every sample in `al` once, then replace `al` by the B list."""
        bl = self._bl
        for s in al:
            solve_one(ctx, s, m, bl, self._d)
        bl.set_all_absent()
        al.clear()
        al.append_if_absent(bl)
        bl.clear()

    def sync(self, ctx):
        pass

    def reached(self, ctx, s, m):
        return reached_samples(ctx, s, m)

    def end(self, ctx):
        self._bl = None
        self._d = None


class ThreadPoolSweep():
    """
    Sweep the A list in blocks on a fixed pool of threads. The block index
    is taken from a shared counter, so that threads that finish early take
    further blocks. Each thread appends to its own B list; the B lists are
    merged by the calling thread after all blocks of a pass are done.

    Args:
      Optional:
        `n_threads`: number of threads. Defaults to the number of CPUs.
        `block_size`: number of samples in each block. Defaults to 32.
    """

    def __init__(self, n_threads=None, block_size=32):
        if n_threads is None:
            n_threads = os.cpu_count() or 1
        self.n_threads = n_threads
        self.block_size = block_size
        self._executor = None

    def begin(self, ctx):
        self._executor = ThreadPoolExecutor(max_workers=self.n_threads)
        self._bl = [ActiveList(ctx.grid) for _ in range(self.n_threads)]
        self._d = [ctx.scratch() for _ in range(self.n_threads)]

    def solve(self, ctx, al, m):
        while not al.is_empty():
            ctx.visits += al.size()
            self.sweep_pass(ctx, al, m)

    def sweep_pass(self, ctx, al, m):
        n = al.size() # number of samples in A list
        mb = self.block_size
        nb = 1 + (n - 1) // mb # number of blocks of samples
        n_tasks = min(nb, self.n_threads)
        counter = itertools.count() # shared block index

        def task(bl, d):
            ib = next(counter)
            while ib < nb:
                i = ib * mb # beginning of block
                j = min(i + mb, n) # beginning of next block (or end)
                for k in range(i, j):
                    solve_one(ctx, al.get(k), m, bl, d)
                ib = next(counter)
            bl.set_all_absent() # needed when merging B lists below

        futures = [self._executor.submit(task, self._bl[i], self._d[i]) for i in range(n_tasks)]
        for future in futures:
            try:
                future.result()
            except Exception as e:
                raise SweepError(f"Sweep failed in worker thread: {e!r}") from e

        # Merge samples from all B lists into a new A list. As samples are
        # appended, their absent flags are cleared, so that each sample is
        # appended at most once.
        al.clear()
        for bl in self._bl[:n_tasks]:
            al.append_if_absent(bl)
            bl.clear()

    def sync(self, ctx):
        pass

    def reached(self, ctx, s, m):
        return reached_samples(ctx, s, m)

    def end(self, ctx):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        self._executor = None
        self._bl = None
        self._d = None
