"""
    stencils
    ========

    Sample offsets used to update times on 2D and 3D grids. For each sample
    there are 2 * ndim axis-aligned neighbours. A time is computed from a set
    of neighbour offset combinations, tried in order until one of them gives
    a smaller time. Combinations are ordered so that those with the most
    non-zero offsets come first: in 3D tets (three non-zero offsets), then
    tris (two), then edges (one); in 2D tris, then edges.

    When a sample is recomputed from all of its neighbours, the full set
    `all_set` is used. When a neighbour of a converged sample is recomputed,
    only the combinations that include the converged sample are used: these
    are the sets in `nabor_sets`, one per neighbour offset.
"""

# Offsets of the four neighbours in 2D. Must be consistent with the sets
# below: the set with index k includes the offset opposite to offset k.
OFFSETS_2D = (
    (-1, 0), (1, 0), (0, -1), (0, 1)
)

NABOR_SETS_2D = (
    ((1, -1), (1, 1), (1, 0)),
    ((-1, -1), (-1, 1), (-1, 0)),
    ((-1, 1), (1, 1), (0, 1)),
    ((-1, -1), (1, -1), (0, -1)),
)

ALL_SET_2D = (
    (-1, -1), (1, -1), (-1, 1), (1, 1), # 4 tris
    (-1, 0), (1, 0), (0, -1), (0, 1)    # + 4 edges = 8 cases
)

# Offsets of the six neighbours in 3D.
OFFSETS_3D = (
    (-1, 0, 0), (1, 0, 0), (0, -1, 0), (0, 1, 0), (0, 0, -1), (0, 0, 1)
)

NABOR_SETS_3D = (
    ((1, -1, -1), (1, -1, 1), (1, 1, -1), (1, 1, 1),
     (1, 0, -1), (1, 0, 1), (1, -1, 0), (1, 1, 0), (1, 0, 0)),
    ((-1, -1, -1), (-1, -1, 1), (-1, 1, -1), (-1, 1, 1),
     (-1, 0, -1), (-1, 0, 1), (-1, -1, 0), (-1, 1, 0), (-1, 0, 0)),
    ((-1, 1, -1), (1, 1, -1), (-1, 1, 1), (1, 1, 1),
     (-1, 1, 0), (1, 1, 0), (0, 1, -1), (0, 1, 1), (0, 1, 0)),
    ((-1, -1, -1), (1, -1, -1), (-1, -1, 1), (1, -1, 1),
     (-1, -1, 0), (1, -1, 0), (0, -1, -1), (0, -1, 1), (0, -1, 0)),
    ((-1, -1, 1), (-1, 1, 1), (1, -1, 1), (1, 1, 1),
     (0, -1, 1), (0, 1, 1), (-1, 0, 1), (1, 0, 1), (0, 0, 1)),
    ((-1, -1, -1), (-1, 1, -1), (1, -1, -1), (1, 1, -1),
     (0, -1, -1), (0, 1, -1), (-1, 0, -1), (1, 0, -1), (0, 0, -1)),
)

ALL_SET_3D = (
    (-1, -1, -1), (1, -1, -1), (-1, 1, -1), (1, 1, -1),  #    8 tets
    (-1, -1, 1), (1, -1, 1), (-1, 1, 1), (1, 1, 1),
    (-1, -1, 0), (1, -1, 0), (-1, 1, 0), (1, 1, 0),      # + 12 tris
    (-1, 0, -1), (1, 0, -1), (-1, 0, 1), (1, 0, 1),
    (0, -1, -1), (0, 1, -1), (0, -1, 1), (0, 1, 1),
    (-1, 0, 0), (1, 0, 0), (0, -1, 0), (0, 1, 0),        # +  6 edges
    (0, 0, -1), (0, 0, 1)                                # = 26 cases
)


def split_combination(offsets):
    """
    Split a combination of neighbour `offsets` into the axes with non-zero
    offsets and the signs of those offsets, e.g. (1, 0, -1) -> ((0, 2), (1, -1)).
    """
    axes = tuple(a for a, k in enumerate(offsets) if k != 0)
    signs = tuple(offsets[a] for a in axes)
    return axes, signs


class Stencil():
    """
    Neighbour offsets and offset combinations for a grid of `ndim` dimensions.

    Attributes:
        `ndim`: number of dimensions, 2 or 3.
        `offsets`: tuple of the 2 * ndim neighbour offsets.
        `nabor_sets`: tuple of split combinations used to update neighbour k
          from a converged sample, one tuple per neighbour offset.
        `all_set`: tuple of split combinations used to update a sample from
          all of its neighbours.
    """

    def __init__(self, ndim):
        if ndim == 2:
            offsets, nabor_sets, all_set = OFFSETS_2D, NABOR_SETS_2D, ALL_SET_2D
        elif ndim == 3:
            offsets, nabor_sets, all_set = OFFSETS_3D, NABOR_SETS_3D, ALL_SET_3D
        else:
            raise ValueError(f"Stencils are defined for 2D and 3D grids, not {ndim}D!")
        self.ndim = ndim
        self.offsets = offsets
        # (axis, step) of each neighbour offset.
        self.steps = tuple((a, k[a]) for k in offsets for a in range(ndim) if k[a] != 0)
        self.nabor_sets = tuple(tuple(split_combination(c) for c in cs) for cs in nabor_sets)
        self.all_set = tuple(split_combination(c) for c in all_set)

    def __repr__(self):
        return f"Stencil(ndim={self.ndim})"
