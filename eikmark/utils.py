"""
    utils
    =====

    Provides miscellaneous utilities shared by the time markers in 2D and 3D.
    The primary methods are:
      1. `check_shape`: validate the dimensions of a sampling grid.
      2. `index_known_samples`: find the known samples that border at least
      one unknown sample.
      3. `shuffle_known_samples`: randomise the order in which known samples
      are processed, reproducibly.
"""

import numpy as np

# Default time for samples not yet computed.
INFINITY = np.inf

# Times are converged when the fractional change is less than this value.
EPSILON = 0.001

# Neighbours of a converged sample are checked only if its time is at most
# this factor times the minimum time computed so far.
NABOR_FACTOR = 1.5

# Constant seed for the order of known samples.
SHUFFLE_SEED = 314159

# Largest finite time stored in float32 arrays.
FLOAT_MAX = float(np.finfo(np.float32).max)

# Validation

def check_shape(shape):
    """
    Validate the `shape` of a 2D or 3D sampling grid, returning it as a tuple
    of ints.
    """
    shape = tuple(int(n) for n in shape)
    if len(shape) not in (2, 3):
        raise ValueError(f"Sampling grids must be 2D or 3D, not {len(shape)}D!")
    if any(n <= 0 for n in shape):
        raise ValueError(f"Numbers of samples must be positive, but got shape {shape}!")
    return shape

def check_arrays(shape, times, marks):
    """Check that `times` and `marks` are arrays sampled on a grid of `shape`."""
    if not isinstance(times, np.ndarray) or not isinstance(marks, np.ndarray):
        raise ValueError("Times and marks must be numpy arrays!")
    if times.shape != shape or marks.shape != shape:
        raise ValueError(f"Times {times.shape} and marks {marks.shape} must have shape {shape}!")
    if not np.issubdtype(times.dtype, np.floating):
        raise ValueError(f"Times must be floating point, not {times.dtype}!")
    if not np.issubdtype(marks.dtype, np.integer):
        raise ValueError(f"Marks must be integers, not {marks.dtype}!")
    if not times.flags.c_contiguous or not marks.flags.c_contiguous:
        raise ValueError("Times and marks must be C-contiguous, so they can be modified in place!")

# Known Samples

def has_unknown_nabor(times):
    """
    Flag the samples in `times` that have at least one unknown sample among
    their axis-aligned neighbours. Unknown samples have non-zero times.
    """
    unknown = times != 0.0
    flags = np.zeros(times.shape, dtype=bool)
    for axis in range(times.ndim):
        lo = [slice(None)] * times.ndim
        hi = [slice(None)] * times.ndim
        lo[axis] = slice(0, -1)
        hi[axis] = slice(1, None)
        lo = tuple(lo)
        hi = tuple(hi)
        flags[lo] |= unknown[hi]
        flags[hi] |= unknown[lo]
    return flags

def index_known_samples(times):
    """
    Return the flat indices of known samples, those with times zero, that are
    adjacent to at least one unknown sample. Known samples surrounded by other
    known samples cannot change any time, and are left out.
    """
    boundary = (times == 0.0) & has_unknown_nabor(times)
    return np.flatnonzero(boundary)

def shuffle_known_samples(k, seed=SHUFFLE_SEED):
    """
    Return the flat indices `k` in a random order. The order only depends on
    `seed`, so repeated transforms of the same input give identical output.
    """
    rng = np.random.default_rng(seed)
    return k[rng.permutation(len(k))]

def nearest_to_centre(k, shape):
    """
    Return the position in `k` of the flat index nearest to the middle of a
    grid with `shape`. Ties go to the first such index.
    """
    coords = np.stack(np.unravel_index(k, shape), axis=-1)
    middle = np.array([n // 2 for n in shape])
    distances = ((coords - middle) ** 2).sum(axis=-1)
    return int(np.argmin(distances))
