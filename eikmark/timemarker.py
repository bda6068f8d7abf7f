"""
    timemarker
    ==========

    Provides time markers, which compute times and marks on 2D and 3D grids.
    Times are zero for known samples and unknown elsewhere. Each known sample
    has a mark, an integer. For each unknown sample, a time marker computes
    the least time to any known sample, and the mark of the known sample with
    that least time: a sampled, time-generalised Voronoi diagram.

    Times are computed by solving the anisotropic eikonal equation
      grad(t) . D grad(t) = 1,
    where D is a (velocity-squared) tensor field, with the iterative method of
    Jeong and Whitaker[1]. Times are solved for separately from each known
    sample, and the minimum is kept.

    The primary objects are:
      1. `TimeMarker`: process known samples in a random but reproducible
      order.
      2. `TimeMarkerX`: process known samples in an order given by a heap,
      such that known samples whose times have already been reduced by
      other known samples with the same mark are processed last.
      3. `TimeMarker2`, `TimeMarker3`, `TimeMarker2X`, and `TimeMarker3X`:
      the same with constructors for particular dimensions.

    References:
      [1]: W.-K. Jeong and R. T. Whitaker. "A fast iterative method for a
      class of Hamilton-Jacobi equations on parallel systems". University of
      Utah Technical Report UUCS-07-010 (2007).
"""

import time
from enum import Enum
import numpy as np
from tqdm import tqdm
from eikmark.heap import (
    HeapType,
    TimeHeap
)
from eikmark.parallel import TaichiSweep
from eikmark.samples import ActiveList
from eikmark.stencils import Stencil
from eikmark.sweep import (
    MarkerContext,
    SerialSweep,
    ThreadPoolSweep
)
from eikmark.tensors import ConstantTensors
from eikmark.utils import (
    INFINITY,
    EPSILON,
    NABOR_FACTOR,
    FLOAT_MAX,
    check_shape,
    check_arrays,
    index_known_samples,
    shuffle_known_samples,
    nearest_to_centre
)


class Concurrency(Enum):
    """How samples in the active list are processed."""
    PARALLELX = "parallelx" # thread pool
    PARALLEL = "parallel"   # data-parallel Taichi loop
    SERIAL = "serial"


class MarkerStats():
    """
    Statistics of the last call to `apply`.

    Attributes:
        `sources`: number of known samples solved for.
        `visits`: total number of samples processed.
        `ratio`: number of samples processed per sample in the grid.
        `elapsed`: wall-clock time in seconds.
    """

    def __init__(self, sources, visits, size, elapsed):
        self.sources = sources
        self.visits = visits
        self.ratio = visits / size
        self.elapsed = elapsed

    def print(self):
        """Print attributes."""
        print(f"sources => {self.sources}")
        print(f"visits => {self.visits}")
        print(f"ratio => {self.ratio:.2f}")
        print(f"elapsed => {self.elapsed:.3f}")


class TimeMarker():
    """
    Compute times and marks, processing known samples in a random order.
    Only known samples adjacent to unknown samples are processed. Their
    order is shuffled with a constant seed, so that repeated transforms of
    the same times and marks give identical results with the serial sweep.

    Args:
        `shape`: Tuple[int] of numbers of samples in each dimension.
      Optional:
        `tensors`: tensor field with the same shape. Defaults to identity
          tensors, for which times approximate Euclidean distances.
        `concurrency`: `Concurrency` or its value. Defaults to `SERIAL`.
        `epsilon`: times have converged when they decrease by less than this
          fraction. Defaults to 0.001.
        `nabor_factor`: neighbours of a converged sample are checked only if
          its time is at most this factor times the least time so far.
          Defaults to 1.5.
        `verbose`: whether to print progress. Defaults to `False`.

    Attributes:
        `last_stats`: `MarkerStats` of the last call to `apply`, or `None`.
    """

    def __init__(self, shape, tensors=None, concurrency=Concurrency.SERIAL, epsilon=EPSILON,
                 nabor_factor=NABOR_FACTOR, verbose=False):
        self.shape = check_shape(shape)
        self.ndim = len(self.shape)
        self.size = 1
        for n in self.shape:
            self.size *= n
        self.stencil = Stencil(self.ndim)
        self.set_tensors(tensors)
        self.set_concurrency(concurrency)
        self.epsilon = epsilon
        self.nabor_factor = nabor_factor
        self.verbose = verbose
        self.last_stats = None
        self._taichi_sweep = None

    def set_tensors(self, tensors):
        """Set the tensor field; `None` for identity tensors."""
        if tensors is None:
            tensors = ConstantTensors(self.shape)
        if tuple(tensors.shape) != self.shape:
            raise ValueError(f"Tensors have shape {tuple(tensors.shape)}, but the grid has shape {self.shape}!")
        if tensors.n_components != self.ndim * (self.ndim + 1) // 2:
            raise ValueError(f"Tensors have {tensors.n_components} components, which is wrong for a {self.ndim}D grid!")
        self.tensors = tensors

    def set_concurrency(self, concurrency):
        """Set the `Concurrency`, given as a member or its value."""
        try:
            self.concurrency = Concurrency(concurrency)
        except ValueError:
            choices = ", ".join(f'"{c.value}"' for c in Concurrency)
            raise ValueError(f"Unknown concurrency {concurrency!r}; choose from {choices}.") from None

    def apply(self, times, marks):
        """
        Compute times and marks, in place.

        Args:
          Mutated:
            `times`: np.ndarray(shape=shape, dtype=[float]) of times, zero for
              known samples. Non-zero times are replaced by computed times;
              samples not reachable from any known sample are infinite.
            `marks`: np.ndarray(shape=shape, dtype=[int]) of marks of known
              samples. Marks of unknown samples are replaced by the mark of
              the known sample with the least time.
        """
        check_arrays(self.shape, times, marks)
        start = time.perf_counter()

        # Initially, the times of unknown samples are infinite.
        times[times != 0.0] = INFINITY

        # Indices of known samples, in random order.
        k = shuffle_known_samples(index_known_samples(times))
        if self.verbose:
            print(f"Marking times from {len(k)} known samples.")

        ctx = self._make_context(times, marks)
        sweep = self._make_sweep()
        al = ActiveList(ctx.grid)
        sweep.begin(ctx)
        try:
            # For all known samples, solve for times from that sample and
            # update the minimum times and marks.
            for s in tqdm(k, disable=not self.verbose):
                s = int(s)
                ctx.grid.clear_activated()
                ctx.t[s] = 0.0
                al.append(s)
                sweep.solve(ctx, al, int(ctx.marks[s]))
            sweep.sync(ctx)
        finally:
            sweep.end(ctx)
        self._finish(ctx, len(k), start)

    def _make_context(self, times, marks):
        return MarkerContext(self.stencil, self.tensors, times, marks, epsilon=self.epsilon,
                             nabor_factor=self.nabor_factor)

    def _make_sweep(self):
        if self.concurrency == Concurrency.SERIAL:
            return SerialSweep()
        if self.concurrency == Concurrency.PARALLELX:
            return ThreadPoolSweep()
        if self._taichi_sweep is None: # allocate fields once
            self._taichi_sweep = TaichiSweep(self.shape, self.stencil)
        return self._taichi_sweep

    def _finish(self, ctx, sources, start):
        self.last_stats = MarkerStats(sources, ctx.visits, self.size, time.perf_counter() - start)
        if self.verbose:
            print(f"Visited {ctx.visits} samples, {self.last_stats.ratio:.2f} per sample, "
                  f"in {self.last_stats.elapsed:.3f} seconds.")


class TimeMarkerX(TimeMarker):
    """
    Compute times and marks, processing known samples in an order given by a
    heap of all known samples. The known sample nearest to the middle of the
    grid gets the largest initial key, and all others half that. After
    solving for times from a known sample, the keys of known samples still in
    the heap, that were reached by that solve and have the same mark, are
    reduced to their current times.

    With the default max-heap, the known sample nearest the middle is
    processed first, and known samples that have been reduced are processed
    after those that have not.

    Args:
        `shape`: Tuple[int] of numbers of samples in each dimension.
      Optional:
        `tensors`: tensor field with the same shape.
        `heap_type`: `HeapType` of the heap of known samples. Defaults to
          `HeapType.MAX`.
        Other keyword arguments are as for `TimeMarker`.
    """

    def __init__(self, shape, tensors=None, heap_type=HeapType.MAX, **kwargs):
        super().__init__(shape, tensors, **kwargs)
        self.heap_type = HeapType(heap_type)

    def apply(self, times, marks):
        check_arrays(self.shape, times, marks)
        start = time.perf_counter()

        # Heap of all known samples, after which all times are unknown.
        ctx = self._make_context(times, marks)
        theap = self._make_time_heap(ctx)
        sources = theap.size()
        times[...] = INFINITY
        if self.verbose:
            print(f"Marking times from {sources} known samples.")

        sweep = self._make_sweep()
        al = ActiveList(ctx.grid)
        sweep.begin(ctx)
        try:
            with tqdm(total=sources, disable=not self.verbose) as progress:
                while not theap.is_empty():
                    ek = theap.remove()
                    s = ctx.grid.flat(ek.index)
                    m = int(ek.mark)
                    ctx.pending[s] = False
                    ctx.times[s] = 0.0
                    ctx.marks[s] = m
                    ctx.grid.clear_activated()
                    ctx.t[s] = 0.0
                    al.append(s)
                    sweep.solve(ctx, al, m)
                    self._update_time_heap(ctx, sweep, s, m, theap)
                    progress.update()
            sweep.sync(ctx)
        finally:
            sweep.end(ctx)
        self._finish(ctx, sources, start)

    def _make_time_heap(self, ctx):
        """
        Make a heap of all known samples, and flag them as pending in `ctx`.
        The known sample nearest the middle of the grid gets the largest
        time, so that it is at the top of a max-heap.
        """
        theap = TimeHeap(self.heap_type, self.shape)
        k = (ctx.times == 0.0).nonzero()[0]
        ctx.pending = np.zeros(ctx.grid.size, dtype=bool)
        ctx.pending[k] = True
        if len(k) == 0:
            return theap
        middle = nearest_to_centre(k, self.shape)
        for i, s in enumerate(k):
            t = FLOAT_MAX if i == middle else 0.5 * FLOAT_MAX
            theap.insert(ctx.grid.index(s), t, int(ctx.marks[s]))
        return theap

    def _update_time_heap(self, ctx, sweep, s, m, theap):
        """
        Reduce the keys of pending known samples with mark `m`, that were
        activated while solving for times from the known sample `s`, to
        their times. Keys are reduced in order of flat index, so that the
        heap is the same for every concurrency.
        """
        for i, ti in sorted(sweep.reached(ctx, s, m)):
            index = ctx.grid.index(i)
            if ti < theap.time_of(index):
                theap.reduce(index, ti)


class TimeMarker2(TimeMarker):
    """`TimeMarker` for a 2D grid of `n1` x `n2` samples."""

    def __init__(self, n1, n2, tensors=None, **kwargs):
        super().__init__((n1, n2), tensors, **kwargs)


class TimeMarker3(TimeMarker):
    """`TimeMarker` for a 3D grid of `n1` x `n2` x `n3` samples."""

    def __init__(self, n1, n2, n3, tensors=None, **kwargs):
        super().__init__((n1, n2, n3), tensors, **kwargs)


class TimeMarker2X(TimeMarkerX):
    """`TimeMarkerX` for a 2D grid of `n1` x `n2` samples."""

    def __init__(self, n1, n2, tensors=None, **kwargs):
        super().__init__((n1, n2), tensors, **kwargs)


class TimeMarker3X(TimeMarkerX):
    """`TimeMarkerX` for a 3D grid of `n1` x `n2` x `n3` samples."""

    def __init__(self, n1, n2, n3, tensors=None, **kwargs):
        super().__init__((n1, n2, n3), tensors, **kwargs)
