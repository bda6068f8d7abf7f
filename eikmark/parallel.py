"""
    parallel
    ========

    Provides `TaichiSweep`, which sweeps the active list with a data-parallel
    Taichi loop over blocks of samples. Each block processes its samples
    sequentially, with the same local update as in `kernel`, and appends
    samples to its own slots of the next list. The per-block lists are then
    merged, in block order and without duplicates, into the active list for
    the next pass. The active list stays on the device between passes.

    Times, marks, activation generations and tensors are copied to Taichi
    fields once per call to `apply`, and copied back once at its end. Fields
    are allocated once per grid shape, and reused. Marks are held on the
    device as indices into the sorted distinct marks, so marks of any integer
    type are restored exactly. Taichi must be initialised, e.g. with
    `ti.init(arch=ti.cpu)`, before the first sweep.

    As blocks run concurrently, they may read times being written by other
    blocks. The sweep then takes a different path to (nearly) the same times,
    within the convergence tolerance.
"""

import numpy as np
import taichi as ti

# Minimum number of samples per block, and maximum number of blocks.
MBMIN = 64
NBMAX = 256


def block_sizes(n, mbmin=MBMIN, nbmax=NBMAX):
    """
    Number of blocks and number of samples per block for `n` active samples:
    at least `mbmin` samples per block, at most `nbmax` blocks, with samples
    spread evenly over the blocks.
    """
    mbmax = max(mbmin, 1 + (n - 1) // nbmax) # max number of samples per block
    nb = 1 + (n - 1) // mbmax # number of blocks <= nbmax
    mb = 1 + (n - 1) // nb # evenly distribute samples among blocks
    return nb, mb

# Quadratic Solves

@ti.func
def solve_quadratic2(
    d11: ti.f64,
    d12: ti.f64,
    d22: ti.f64,
    s1: ti.f64,
    s2: ti.f64,
    t1: ti.f64,
    t2: ti.f64
) -> ti.f64:
    """
    @taichi.func

    Solve a 2D anisotropic eikonal equation for a positive time t0, as in
    `kernel.solve_quadratic2`.
    """
    ds11 = d11 * s1 * s1
    ds12 = d12 * s1 * s2
    ds22 = d22 * s2 * s2
    t12 = t1 - t2
    a = ds11 + 2.0 * ds12 + ds22
    b = 2.0 * (ds12 + ds22) * t12
    c = ds22 * t12 * t12 - 1.0
    d = b * b - 4.0 * a * c
    t0 = ti.cast(ti.math.inf, ti.f64)
    if d >= 0.0 and a != 0.0:
        u1 = (-b + ti.math.sqrt(d)) / (2.0 * a) # t0-t1
        u2 = u1 + t12                           # t0-t2
        if ds11 * u1 + ds12 * u2 >= 0.0 and ds12 * u1 + ds22 * u2 >= 0.0:
            t0 = t1 + u1
    return t0

@ti.func
def solve_quadratic3(
    d11: ti.f64,
    d12: ti.f64,
    d13: ti.f64,
    d22: ti.f64,
    d23: ti.f64,
    d33: ti.f64,
    s1: ti.f64,
    s2: ti.f64,
    s3: ti.f64,
    t1: ti.f64,
    t2: ti.f64,
    t3: ti.f64
) -> ti.f64:
    """
    @taichi.func

    Solve a 3D anisotropic eikonal equation for a positive time t0, as in
    `kernel.solve_quadratic3`.
    """
    ds11 = d11 * s1 * s1
    ds22 = d22 * s2 * s2
    ds33 = d33 * s3 * s3
    ds12 = d12 * s1 * s2
    ds13 = d13 * s1 * s3
    ds23 = d23 * s2 * s3
    t12 = t1 - t2
    t13 = t1 - t3
    a = ds11 + ds22 + ds33 + 2.0 * (ds12 + ds13 + ds23)
    b = 2.0 * ((ds22 + ds12 + ds23) * t12 + (ds33 + ds13 + ds23) * t13)
    c = ds22 * t12 * t12 + ds33 * t13 * t13 + 2.0 * ds23 * t12 * t13 - 1.0
    d = b * b - 4.0 * a * c
    t0 = ti.cast(ti.math.inf, ti.f64)
    if d >= 0.0 and a != 0.0:
        u1 = (-b + ti.math.sqrt(d)) / (2.0 * a)
        u2 = u1 + t12
        u3 = u1 + t13
        if (ds11 * u1 + ds12 * u2 + ds13 * u3 >= 0.0 and
            ds12 * u1 + ds22 * u2 + ds23 * u3 >= 0.0 and
            ds13 * u1 + ds23 * u2 + ds33 * u3 >= 0.0):
            t0 = t1 + u1
    return t0


@ti.data_oriented
class TaichiSweep():
    """
    Sweep the active list with a data-parallel Taichi loop over blocks.

    Args:
        `shape`: Tuple[int] of numbers of samples in each dimension.
        `stencil`: `Stencil` for grids with `len(shape)` dimensions.
      Optional:
        `mbmin`: minimum number of samples per block. Defaults to 64.
        `nbmax`: maximum number of blocks. Defaults to 256.

    Notes:
        All per-sample fields are flat, indexed like the flat views in
        `MarkerContext`. Times are stored as 32-bit floats. Marks are stored
        as 32-bit indices into `_labels`, the sorted distinct marks of the
        transform. Samples activated while solving for times from one known
        sample are recorded in `visited`. A sweep holds the state of one
        transform at a time, so one instance must not be used by concurrent
        calls to `apply`.
    """

    def __init__(self, shape, stencil, mbmin=MBMIN, nbmax=NBMAX):
        self.shape = tuple(int(n) for n in shape)
        self.ndim = len(self.shape)
        self.size = int(np.prod(self.shape))
        strides = []
        stride = 1
        for n in reversed(self.shape):
            strides.append(stride)
            stride *= n
        self.strides = tuple(reversed(strides))
        self.n_components = self.ndim * (self.ndim + 1) // 2
        self.width = 2 * self.ndim # max samples appended per sample processed
        self.mbmin = mbmin
        self.nbmax = nbmax

        # Position of the coefficients for each set of axes in the vector
        # computed by `reduced_tensors`.
        if self.ndim == 2:
            offsets = {(0, 1): 0, (0,): 3, (1,): 4}
            self.n_coefficients = 5
        else:
            offsets = {(0, 1, 2): 0, (0, 1): 6, (0, 2): 9, (1, 2): 12, (0,): 15, (1,): 16, (2,): 17}
            self.n_coefficients = 18

        def compile_combos(combos):
            # (number of axes, neighbour time positions, signs, coefficient position)
            return tuple(
                (len(axes), tuple(2 * a + (k > 0) for a, k in zip(axes, signs)), signs, offsets[axes])
                for axes, signs in combos
            )

        self.steps = stencil.steps
        self.all_combos = compile_combos(stencil.all_set)
        self.nabor_combos = tuple(compile_combos(cs) for cs in stencil.nabor_sets)

        self.t = ti.field(dtype=ti.f32, shape=self.size)
        self.times = ti.field(dtype=ti.f32, shape=self.size)
        self.marks = ti.field(dtype=ti.i32, shape=self.size)
        self.activated = ti.field(dtype=ti.i32, shape=self.size)
        self.absent = ti.field(dtype=ti.i32, shape=self.size)
        self.tensors = ti.Vector.field(n=self.n_components, dtype=ti.f32, shape=self.size)
        self.alist = ti.field(dtype=ti.i32, shape=self.size)
        self.blist = ti.field(dtype=ti.i32, shape=self.size * self.width)
        self.bcount = ti.field(dtype=ti.i32, shape=self.nbmax)
        self.count = ti.field(dtype=ti.i32, shape=())
        self.pending = ti.field(dtype=ti.i32, shape=self.size)
        self.visited = ti.field(dtype=ti.i32, shape=self.size)
        self.nvisited = ti.field(dtype=ti.i32, shape=())
        self.rlist = ti.field(dtype=ti.i32, shape=self.size)
        self.nreached = ti.field(dtype=ti.i32, shape=())
        self._labels = None
        self._generation = 0

    # Host

    def begin(self, ctx):
        """
        Copy tensors, times, marks and pending known samples of the transform
        in `ctx` to fields.
        """
        self.tensors.from_numpy(ctx.tensors.to_array().reshape(self.size, self.n_components))
        self.times.from_numpy(ctx.times.astype(np.float32))
        self._labels, labels = np.unique(ctx.marks, return_inverse=True)
        self.marks.from_numpy(labels.reshape(-1).astype(np.int32))
        if ctx.pending is None:
            self.pending.fill(0)
        else:
            self.pending.from_numpy(ctx.pending.astype(np.int32))
        self.t.fill(0.)
        self.activated.fill(0)
        self.absent.fill(0)
        self._generation = ctx.grid.generation

    def solve(self, ctx, al, m):
        """
        Process the active list `al` until empty, for the known sample with
        mark `m`. Samples in `al` must have been activated in `ctx.grid`,
        with their times in `ctx.t`; on return, `al` is empty.
        """
        generation = ctx.grid.generation
        if generation < self._generation: # generations wrapped around
            self.activated.fill(0)
        self._generation = generation

        n = al.size()
        for i, s in enumerate(al):
            s = int(s)
            self.t[s] = float(ctx.t[s])
            self.times[s] = float(ctx.times[s])
            self.marks[s] = self._label(ctx.marks[s])
            if ctx.pending is not None:
                self.pending[s] = int(ctx.pending[s])
            self.activated[s] = generation
            self.alist[i] = s
            self.visited[i] = s
        self.nvisited[None] = n
        al.clear()

        while n > 0:
            ctx.visits += n
            nb, mb = block_sizes(n, self.mbmin, self.nbmax)
            self.sweep_pass(n, nb, mb, generation, self._label(m), ctx.one_minus_epsilon, ctx.nabor_factor)
            self.merge(nb, mb)
            n = int(self.count[None])

    def sync(self, ctx):
        """Copy times, marks and activation generations back to `ctx`."""
        ctx.t[:] = self.t.to_numpy()
        ctx.times[:] = self.times.to_numpy()
        ctx.marks[:] = self._labels[self.marks.to_numpy()]
        ctx.grid.activated[:] = self.activated.to_numpy()

    def reached(self, ctx, s, m):
        """
        Pending known samples with mark `m` that were activated while solving
        for times from the known sample `s`, as a list of (flat index, time).
        Only these samples are copied from the device.
        """
        self.collect(self._label(m))
        n = int(self.nreached[None])
        samples = [int(self.rlist[k]) for k in range(n)]
        return [(i, float(self.times[i])) for i in samples]

    def end(self, ctx):
        pass

    def _label(self, m):
        """Index of mark `m` in the sorted distinct marks."""
        return int(np.searchsorted(self._labels, m))

    # Device

    @ti.kernel
    def sweep_pass(
        self,
        n: ti.i32,
        nb: ti.i32,
        mb: ti.i32,
        generation: ti.i32,
        m: ti.i32,
        one_minus_ε: ti.f32,
        nabor_factor: ti.f32
    ):
        """
        @taichi.kernel

        Process the first `n` samples of `alist` in `nb` blocks of at most
        `mb` samples. Block `ib` appends samples to `blist` from index
        `ib * mb * width`, and records how many in `bcount[ib]`.
        """
        for ib in range(nb):
            i = ib * mb # beginning of block
            j = ti.min(i + mb, n) # beginning of next block (or end)
            base = i * self.width
            count = 0
            for k in range(i, j):
                count = self.solve_one(self.alist[k], generation, m, one_minus_ε, nabor_factor, base, count)
            self.bcount[ib] = count

    @ti.kernel
    def merge(self, nb: ti.i32, mb: ti.i32):
        """
        @taichi.kernel

        Merge the per-block lists into `alist`, in block order, keeping the
        first occurrence of each sample. The length of the new list is put
        in `count`.
        """
        for ib in range(nb):
            base = ib * mb * self.width
            for k in range(self.bcount[ib]):
                self.absent[self.blist[base + k]] = 1
        self.count[None] = 0
        ti.loop_config(serialize=True)
        for ib in range(nb):
            base = ib * mb * self.width
            for k in range(self.bcount[ib]):
                s = self.blist[base + k]
                if self.absent[s] == 1:
                    self.alist[self.count[None]] = s
                    self.count[None] += 1
                    self.absent[s] = 0

    @ti.kernel
    def collect(self, m: ti.i32):
        """
        @taichi.kernel

        Put the visited samples that are pending known samples with mark
        index `m` in `rlist`, and their number in `nreached`.
        """
        self.nreached[None] = 0
        for k in range(self.nvisited[None]):
            s = self.visited[k]
            if self.pending[s] == 1 and self.marks[s] == m:
                self.rlist[ti.atomic_add(self.nreached[None], 1)] = s

    @ti.func
    def solve_one(self, s, generation, m, one_minus_ε, nabor_factor, base, count):
        """
        @taichi.func

        Process sample `s`, as in `sweep.solve_one`, appending samples to
        `blist` from index `base + count`.

        Returns:
            The number of samples appended by this block so far.
        """
        n_appended = count
        ti_ = self.current_time(s, generation)
        ci = self.compute_time(s, generation, self.all_combos)
        self.t[s] = ci
        if ci >= ti_ * one_minus_ε:
            check_nabors = ci <= nabor_factor * self.times[s]
            if ci < self.times[s]:
                self.times[s] = ci
                self.marks[s] = m
            if check_nabors:
                for k in ti.static(range(2 * self.ndim)):
                    axis = ti.static(self.steps[k][0])
                    step = ti.static(self.steps[k][1])
                    i = (s // self.strides[axis]) % self.shape[axis] + step
                    if i >= 0 and i < self.shape[axis]:
                        j = s + step * self.strides[axis]
                        tj = self.current_time(j, generation)
                        cj = self.compute_time(j, generation, self.nabor_combos[k])
                        if cj < tj * one_minus_ε:
                            self.t[j] = cj
                            # Generations never exceed the current one, so
                            # only the first activation records j.
                            if ti.atomic_max(self.activated[j], generation) < generation:
                                self.visited[ti.atomic_add(self.nvisited[None], 1)] = j
                            self.blist[base + n_appended] = j
                            n_appended += 1
        else:
            self.blist[base + n_appended] = s
            n_appended += 1
        return n_appended

    @ti.func
    def current_time(self, s, generation):
        tc = ti.math.inf
        if self.activated[s] == generation:
            tc = self.t[s]
        return tc

    @ti.func
    def nabor_time(self, s, generation, axis: ti.template(), step: ti.template()):
        """
        @taichi.func

        Current time of the neighbour of `s` displaced by `step` along `axis`;
        infinite if out of bounds or not activated.
        """
        tn = ti.math.inf
        i = (s // self.strides[axis]) % self.shape[axis] + step
        if i >= 0 and i < self.shape[axis]:
            tn = self.current_time(s + step * self.strides[axis], generation)
        return tn

    @ti.func
    def reduced_tensors(self, d):
        """
        @taichi.func

        Coefficients of tensor components `d` for each set of axes, as in
        `kernel.reduced_tensors`, packed in one vector. Division by zero gives
        infinite or NaN coefficients, and hence no valid time.
        """
        coefficients = ti.Vector.zero(ti.f32, self.n_coefficients)
        if ti.static(self.ndim == 2):
            d11 = d[0]
            d12 = d[1]
            d22 = d[2]
            e12 = 1. / (d11 * d22 - d12 * d12)
            coefficients = ti.Vector([
                d11, d12, d22,
                ti.math.sqrt(d22 * e12),
                ti.math.sqrt(d11 * e12)
            ], dt=ti.f32)
        else:
            d11 = d[0]
            d12 = d[1]
            d13 = d[2]
            d22 = d[3]
            d23 = d[4]
            d33 = d[5]
            o11 = 1. / d11
            o22 = 1. / d22
            o33 = 1. / d33
            a11 = d11 - d13 * d13 * o33
            a12 = d12 - d13 * d23 * o33
            a22 = d22 - d23 * d23 * o33
            b11 = d11 - d12 * d12 * o22
            b13 = d13 - d12 * d23 * o22
            b33 = d33 - d23 * d23 * o22
            c22 = d22 - d12 * d12 * o11
            c23 = d23 - d12 * d13 * o11
            c33 = d33 - d13 * d13 * o11
            e12 = 1. / (a11 * a22 - a12 * a12)
            e13 = 1. / (b11 * b33 - b13 * b13)
            coefficients = ti.Vector([
                d11, d12, d13, d22, d23, d33,
                a11, a12, a22,
                b11, b13, b33,
                c22, c23, c33,
                ti.math.sqrt(a22 * e12),
                ti.math.sqrt(a11 * e12),
                ti.math.sqrt(b11 * e13)
            ], dt=ti.f32)
        return coefficients

    @ti.func
    def compute_time(self, s, generation, combos: ti.template()):
        """
        @taichi.func

        Compute a time not greater than the current time of `s`, as in
        `kernel.compute_time`, trying the unrolled `combos` in order.
        """
        coefficients = self.reduced_tensors(self.tensors[s])
        tc = self.current_time(s, generation)
        tn = ti.Vector.zero(ti.f32, 2 * self.ndim)
        for a in ti.static(range(self.ndim)):
            tn[2 * a] = self.nabor_time(s, generation, a, -1)
            tn[2 * a + 1] = self.nabor_time(s, generation, a, 1)

        result = tc
        done = 0
        for c in ti.static(range(len(combos))):
            n_axes = ti.static(combos[c][0])
            nabors = ti.static(combos[c][1])
            signs = ti.static(combos[c][2])
            k = ti.static(combos[c][3])
            if done == 0:
                t0 = ti.math.inf
                if ti.static(n_axes == 1):
                    t1 = tn[nabors[0]]
                    if t1 < ti.math.inf:
                        t0 = t1 + coefficients[k]
                elif ti.static(n_axes == 2):
                    t1 = tn[nabors[0]]
                    t2 = tn[nabors[1]]
                    if t1 < ti.math.inf and t2 < ti.math.inf:
                        t0 = ti.cast(solve_quadratic2(
                            coefficients[k], coefficients[k + 1], coefficients[k + 2],
                            signs[0], signs[1], t1, t2
                        ), ti.f32)
                else:
                    t1 = tn[nabors[0]]
                    t2 = tn[nabors[1]]
                    t3 = tn[nabors[2]]
                    if t1 < ti.math.inf and t2 < ti.math.inf and t3 < ti.math.inf:
                        t0 = ti.cast(solve_quadratic3(
                            coefficients[k], coefficients[k + 1], coefficients[k + 2],
                            coefficients[k + 3], coefficients[k + 4], coefficients[k + 5],
                            signs[0], signs[1], signs[2], t1, t2, t3
                        ), ti.f32)
                if t0 < tc:
                    result = t0
                    done = 1
        return result
