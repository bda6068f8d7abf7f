"""
    EikMark
    =======

    The Python package *eikmark* contains methods to compute times and marks
    on 2D and 3D grids, by solving the anisotropic eikonal equation
    grad(t) . D grad(t) = 1 for a (velocity-squared) tensor field D, with the
    iterative method described in Jeong and Whitaker "A fast iterative method
    for a class of Hamilton-Jacobi equations on parallel systems" (2007).

    Given times that are zero at known samples, and marks (integer labels) of
    those known samples, a time marker computes for every unknown sample the
    least time to any known sample, and the mark of that known sample. Such
    times and marks are used for blended neighbour gridding, which requires
    a sampled, time-generalised Voronoi diagram.

    Summary: compute anisotropic time and closest-point transforms on 2D and
    3D grids.
"""

import numpy as np

# Access entire backend
import eikmark.utils
import eikmark.tensors
import eikmark.stencils
import eikmark.samples
import eikmark.kernel
import eikmark.heap
import eikmark.sweep
import eikmark.parallel
import eikmark.timemarker

# Most important functions are available at top level
from eikmark.tensors import (
    ConstantTensors,
    ArrayTensors,
    EigenTensors2
)
from eikmark.heap import (
    HeapType,
    TimeHeap
)
from eikmark.sweep import SweepError
from eikmark.timemarker import (
    Concurrency,
    TimeMarker,
    TimeMarkerX,
    TimeMarker2,
    TimeMarker3,
    TimeMarker2X,
    TimeMarker3X
)

VARIANTS = ("shuffle", "heap")

### Single top level function to select any variant
def time_marker(times, marks, tensors=None, variant="shuffle", concurrency="serial", verbose=False, **kwargs):
    """
    Compute times and marks in place, for known samples with zero `times`.

    Args:
        `times`: np.ndarray(shape=[n1, n2] or [n1, n2, n3], dtype=[float]) of
          times, zero for known samples and non-zero elsewhere. Updated in
          place with the least times to known samples.
        `marks`: np.ndarray(shape=times.shape, dtype=[int]) of marks of known
          samples. Updated in place with the marks of the known samples with
          least times.
      Optional:
        `tensors`: tensor field with the shape of `times`. Defaults to `None`,
          for identity tensors.
        `variant`: Order in which known samples are processed. Can choose
          between "shuffle", for a random but reproducible order of the known
          samples adjacent to unknown samples, and "heap", for an order given
          by a heap of all known samples. Defaults to "shuffle".
        `concurrency`: How active samples are processed. Can choose between
          "serial", "parallelx" (thread pool), and "parallel" (data-parallel
          Taichi loop, which requires Taichi to be initialised). Defaults to
          "serial".
        `verbose`: whether to print progress. Defaults to `False`.
        Other keyword arguments are passed to the time marker, e.g. `epsilon`,
          `nabor_factor`, or, for the "heap" variant, `heap_type`.

    Returns:
        `TimeMarker` or `TimeMarkerX` used, with statistics in `last_stats`.
    """
    if variant == "shuffle":
        marker = TimeMarker(np.shape(times), tensors, concurrency=concurrency, verbose=verbose, **kwargs)
    elif variant == "heap":
        marker = TimeMarkerX(np.shape(times), tensors, concurrency=concurrency, verbose=verbose, **kwargs)
    else:
        raise ValueError(f"Unknown variant {variant!r}; choose from {', '.join(VARIANTS)}.")
    marker.apply(times, marks)
    return marker
