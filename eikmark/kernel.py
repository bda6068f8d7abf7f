"""
    kernel
    ======

    Provides the local update used to solve the anisotropic eikonal equation
      grad(t) . D grad(t) = 1,
    where D is a positive-definite (velocity-squared) metric tensor, on 2D and
    3D grids. The primary methods are:
      1. `compute_time`: compute a time for one sample from the times of its
      activated neighbours, trying combinations of neighbour offsets in order
      and accepting the first that gives a smaller time.
      2. `solve_quadratic2` and `solve_quadratic3`: solve the discretised
      eikonal equation for a tri (two neighbours) or a tet (three neighbours).

    Accepting the first combination that reduces the time, rather than the
    smallest over all combinations, follows Jeong and Whitaker[1].

    References:
      [1]: W.-K. Jeong and R. T. Whitaker. "A fast iterative method for a
      class of Hamilton-Jacobi equations on parallel systems". University of
      Utah Technical Report UUCS-07-010 (2007).
"""

import math
from eikmark.utils import INFINITY

# Quadratic Solves

def solve_quadratic2(d11, d12, d22, s1, s2, t1, t2):
    """
    Solve a 2D anisotropic eikonal equation for a positive time t0.

    The equation is:
        d11*s1*s1*(t1-t0)*(t1-t0) +
      2*d12*s1*s2*(t1-t0)*(t2-t0) +
        d22*s2*s2*(t2-t0)*(t2-t0) = 1
    To reduce rounding errors, this method actually solves for u = t0-t1,
    via the following equation:
        ds11*(u    )*(u    ) +
        ds22*(u+t12)*(u+t12) +
      2*ds12*(u    )*(u+t12) = 1

    Args:
        `d11`, `d12`, `d22`: tensor components.
        `s1`, `s2`: signs of the offsets to the two neighbours, -1 or 1.
        `t1`, `t2`: times of the two neighbours.

    Returns:
        The time t0 = t1+u if a valid u can be computed; otherwise INFINITY.
        A solution is invalid if the discriminant is negative, or if the
        implied gradient points back against either neighbour.
    """
    ds11 = d11 * s1 * s1
    ds12 = d12 * s1 * s2
    ds22 = d22 * s2 * s2
    t12 = t1 - t2
    a = ds11 + 2.0 * ds12 + ds22
    b = 2.0 * (ds12 + ds22) * t12
    c = ds22 * t12 * t12 - 1.0
    d = b * b - 4.0 * a * c
    if d < 0.0 or a == 0.0:
        return INFINITY
    u1 = (-b + math.sqrt(d)) / (2.0 * a) # t0-t1
    u2 = u1 + t12                        # t0-t2
    if (ds11 * u1 + ds12 * u2 < 0.0 or
        ds12 * u1 + ds22 * u2 < 0.0):
        return INFINITY
    return t1 + u1

def solve_quadratic3(d11, d12, d13, d22, d23, d33, s1, s2, s3, t1, t2, t3):
    """
    Solve a 3D anisotropic eikonal equation for a positive time t0.

    The equation is:
        d11*s1*s1*(t0-t1)*(t0-t1) +
        d22*s2*s2*(t0-t2)*(t0-t2) +
        d33*s3*s3*(t0-t3)*(t0-t3) +
      2*d12*s1*s2*(t0-t1)*(t0-t2) +
      2*d13*s1*s3*(t0-t1)*(t0-t3) +
      2*d23*s2*s3*(t0-t2)*(t0-t3) = 1
    which, as in `solve_quadratic2`, is solved for u = t0-t1.

    Returns:
        The time t0 = t1+u if a valid u can be computed; otherwise INFINITY.
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
    if d < 0.0 or a == 0.0:
        return INFINITY
    u1 = (-b + math.sqrt(d)) / (2.0 * a)
    u2 = u1 + t12
    u3 = u1 + t13
    if (ds11 * u1 + ds12 * u2 + ds13 * u3 < 0.0 or
        ds12 * u1 + ds22 * u2 + ds23 * u3 < 0.0 or
        ds13 * u1 + ds23 * u2 + ds33 * u3 < 0.0):
        return INFINITY
    return t1 + u1

# Tensor Coefficients

def _reciprocal(x):
    return 1.0 / x if x != 0.0 else INFINITY

def _slowness(x):
    # NaN and negative arguments have no real root.
    return math.sqrt(x) if x >= 0.0 else INFINITY

def reduced_tensors(d):
    """
    Compute the tensor coefficients used by each kind of combination of
    neighbour offsets, from the tensor components `d` of one sample.

    Args:
        `d`: sequence of 3 tensor components {d11, d12, d22} in 2D, or 6
          components {d11, d12, d13, d22, d23, d33} in 3D.

    Returns:
        dict mapping the tuple of axes with non-zero offsets to either the
          (reduced) tensor components for that plane or volume, or, for a
          single axis, the slowness along that axis.

    Notes:
        In 3D the tensor for a tri is the Schur complement that eliminates
          the third axis, e.g. a11 = d11 - d13*d13/d33. The slowness along
          an axis is the square root of the corresponding diagonal element
          of the inverse tensor.
    """
    if len(d) == 3:
        d11, d12, d22 = (float(x) for x in d)
        e12 = _reciprocal(d11 * d22 - d12 * d12)
        return {
            (0, 1): (d11, d12, d22),
            (0,): _slowness(d22 * e12),
            (1,): _slowness(d11 * e12),
        }
    d11, d12, d13, d22, d23, d33 = (float(x) for x in d)
    o11 = _reciprocal(d11)
    o22 = _reciprocal(d22)
    o33 = _reciprocal(d33)
    a11 = d11 - d13 * d13 * o33
    a12 = d12 - d13 * d23 * o33
    a22 = d22 - d23 * d23 * o33
    b11 = d11 - d12 * d12 * o22
    b13 = d13 - d12 * d23 * o22
    b33 = d33 - d23 * d23 * o22
    c22 = d22 - d12 * d12 * o11
    c23 = d23 - d12 * d13 * o11
    c33 = d33 - d13 * d13 * o11
    e12 = _reciprocal(a11 * a22 - a12 * a12)
    e13 = _reciprocal(b11 * b33 - b13 * b13)
    return {
        (0, 1, 2): (d11, d12, d13, d22, d23, d33),
        (0, 1): (a11, a12, a22),
        (0, 2): (b11, b13, b33),
        (1, 2): (c22, c23, c33),
        (0,): _slowness(a22 * e12),
        (1,): _slowness(a11 * e12),
        (2,): _slowness(b11 * e13),
    }

# Local Update

def nabor_times(t, grid, s):
    """
    Get the current times of the neighbours of sample `s`, as two lists
    indexed by axis: times of the neighbours at offsets -1 and at offsets +1.
    Times for neighbours that are out of bounds or not yet activated are
    infinite.
    """
    activated = grid.activated
    generation = grid.generation
    coords = grid.coords[s]
    tm = []
    tp = []
    for axis, stride in enumerate(grid.strides):
        i = coords[axis]
        j = s - stride
        tm.append(float(t[j]) if i > 0 and activated[j] == generation else INFINITY)
        j = s + stride
        tp.append(float(t[j]) if i < grid.shape[axis] - 1 and activated[j] == generation else INFINITY)
    return tm, tp

def current_time(t, grid, s):
    """Current time of sample `s`; infinite if not yet activated."""
    return float(t[s]) if grid.activated[s] == grid.generation else INFINITY

def compute_time(t, grid, tensors, s, combos, d):
    """
    Compute a time not greater than the current time of sample `s`, using
    only the neighbour offset combinations in `combos`.

    Args:
        `t`: np.ndarray(shape=(size,)) of times of the current solution.
        `grid`: `SampleGrid` that records which samples are activated.
        `tensors`: tensor field accessor with method `get_tensor`.
        `s`: flat index of the sample.
        `combos`: sequence of (axes, signs) combinations, in priority order.
        `d`: scratch buffer for the tensor components of sample `s`.

    Returns:
        The first time computed from `combos` that is less than the current
          time, or the current time if there is none.
    """
    tensors.get_tensor(grid.index(s), d)
    coefficients = reduced_tensors(d)
    tc = current_time(t, grid, s)
    tm, tp = nabor_times(t, grid, s)
    for axes, signs in combos:
        ts = [tm[a] if k < 0 else tp[a] for a, k in zip(axes, signs)]
        if INFINITY in ts:
            continue
        c = coefficients[axes]
        if len(axes) == 3:
            t0 = solve_quadratic3(*c, *signs, *ts)
        elif len(axes) == 2:
            t0 = solve_quadratic2(*c, *signs, *ts)
        else:
            t0 = ts[0] + c
        if t0 < tc:
            return t0
    return tc
