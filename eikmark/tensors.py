"""
    tensors
    =======

    Provides tensor fields that can be used as the (velocity-squared) metric
    in the anisotropic eikonal equation solved by the time markers. Each
    tensor is a symmetric positive-definite matrix, stored as 3 components
    {d11, d12, d22} in 2D or 6 components {d11, d12, d13, d22, d23, d33} in 3D.

    Any object with attributes `shape` and `n_components`, and with methods
    `get_tensor(index, d)` and `to_array()`, can be used as a tensor field;
    `get_tensor` must be safe to call concurrently with distinct buffers `d`.
    The classes provided are:
      1. `ConstantTensors`: the same tensor everywhere, by default the
      identity (isotropic and homogeneous).
      2. `ArrayTensors`: tensors given by an array of components.
      3. `EigenTensors2`: 2D tensors given by their eigen-decompositions.
"""

import numpy as np


def n_components(ndim):
    """Number of independent components of a symmetric `ndim` x `ndim` tensor."""
    return ndim * (ndim + 1) // 2

def identity_components(ndim):
    """Components of the identity tensor in `ndim` dimensions."""
    if ndim == 2:
        return np.array([1., 0., 1.], dtype=np.float32)
    return np.array([1., 0., 0., 1., 0., 1.], dtype=np.float32)

def components_to_matrices(d):
    """
    Convert an array `d` of tensor components, with the components along the
    last axis, to an array of symmetric matrices.
    """
    if d.shape[-1] == 3:
        d11, d12, d22 = np.moveaxis(d, -1, 0)
        rows = [[d11, d12], [d12, d22]]
    else:
        d11, d12, d13, d22, d23, d33 = np.moveaxis(d, -1, 0)
        rows = [[d11, d12, d13], [d12, d22, d23], [d13, d23, d33]]
    return np.stack([np.stack(row, axis=-1) for row in rows], axis=-2)


class Tensors():
    """
    Base class of tensor fields sampled on a grid.

    Attributes:
        `shape`: Tuple[int] of numbers of samples in each dimension.
        `ndim`: number of dimensions, 2 or 3.
        `n_components`: number of tensor components, 3 or 6.
    """

    def __init__(self, shape):
        self.shape = tuple(int(n) for n in shape)
        self.ndim = len(self.shape)
        if self.ndim not in (2, 3):
            raise ValueError(f"Tensor fields must be 2D or 3D, not {self.ndim}D!")
        self.n_components = n_components(self.ndim)

    def get_tensor(self, index, d):
        """
        Get the tensor components at grid indices `index` and put them in
        the buffer `d`.
        """
        raise NotImplementedError

    def to_array(self):
        """
        Get all tensor components as np.ndarray(shape=(*shape, n_components),
        dtype=np.float32).
        """
        a = np.empty(self.shape + (self.n_components,), dtype=np.float32)
        d = np.empty(self.n_components, dtype=np.float32)
        for index in np.ndindex(*self.shape):
            self.get_tensor(index, d)
            a[index] = d
        return a


class ConstantTensors(Tensors):
    """
    Homogeneous tensor field, with the same tensor at all samples.

    Args:
        `shape`: Tuple[int] of numbers of samples in each dimension.
      Optional:
        `d`: sequence of tensor components. Defaults to the identity, which
          gives times equal to (approximate) Euclidean distances.
    """

    def __init__(self, shape, d=None):
        super().__init__(shape)
        if d is None:
            d = identity_components(self.ndim)
        self.d = np.array(d, dtype=np.float32)
        if self.d.shape != (self.n_components,):
            raise ValueError(f"A {self.ndim}D tensor has {self.n_components} components, not {self.d.size}!")

    def get_tensor(self, index, d):
        d[:] = self.d

    def to_array(self):
        return np.broadcast_to(self.d, self.shape + (self.n_components,)).copy()


class ArrayTensors(Tensors):
    """
    Tensor field given by an array of components.

    Args:
        `d`: np.ndarray(shape=(*shape, n_components)) of tensor components,
          where `n_components` is 3 for 2D fields and 6 for 3D fields.
    """

    def __init__(self, d):
        d = np.ascontiguousarray(d, dtype=np.float32)
        super().__init__(d.shape[:-1])
        if d.shape[-1] != self.n_components:
            raise ValueError(f"A {self.ndim}D tensor has {self.n_components} components, not {d.shape[-1]}!")
        self.d = d

    def get_tensor(self, index, d):
        d[:] = self.d[index]

    def set_tensor(self, index, d):
        self.d[index] = d

    def to_array(self):
        return self.d.copy()


class EigenTensors2(Tensors):
    """
    2D tensor field given by eigen-decompositions. Each tensor is
        D = au u u' + av v v' = (au - av) u u' + av I,
    where u and v are orthogonal unit eigenvectors, and au and av are the
    corresponding non-negative eigenvalues.

    Args:
        `u1`: np.ndarray of 1st components of eigenvectors u.
        `u2`: np.ndarray of 2nd components of eigenvectors u.
        `au`: np.ndarray of eigenvalues corresponding to u.
        `av`: np.ndarray of eigenvalues corresponding to v.
    """

    def __init__(self, u1, u2, au, av):
        self.u1 = np.array(u1, dtype=np.float32)
        self.u2 = np.array(u2, dtype=np.float32)
        self.au = np.array(au, dtype=np.float32)
        self.av = np.array(av, dtype=np.float32)
        super().__init__(self.u1.shape)
        if self.ndim != 2:
            raise ValueError(f"Eigen-tensors must be 2D, not {self.ndim}D!")
        for a in (self.u2, self.au, self.av):
            if a.shape != self.shape:
                raise ValueError(f"Eigenvector and eigenvalue arrays must all have shape {self.shape}!")

    @classmethod
    def from_angles(cls, angles, au, av):
        """
        Make tensors whose eigenvectors u make `angles` (in radians) with the
        1st axis.
        """
        angles = np.asarray(angles)
        return cls(np.cos(angles), np.sin(angles), au, av)

    def get_tensor(self, index, d):
        au = self.au[index]
        av = self.av[index]
        u1 = self.u1[index]
        u2 = self.u2[index]
        au -= av
        d[0] = au * u1 * u1 + av # d11
        d[1] = au * u1 * u2      # d12
        d[2] = au * u2 * u2 + av # d22

    def to_array(self):
        au = self.au - self.av
        return np.stack([
            au * self.u1 * self.u1 + self.av,
            au * self.u1 * self.u2,
            au * self.u2 * self.u2 + self.av
        ], axis=-1).astype(np.float32)

    def get_eigenvalues(self, index):
        return self.au[index], self.av[index]

    def get_eigenvector_u(self, index):
        return self.u1[index], self.u2[index]

    def get_eigenvector_v(self, index):
        return -self.u2[index], self.u1[index]

    def set_eigenvalues(self, index, au, av):
        self.au[index] = au
        self.av[index] = av

    def set_eigenvector_u(self, index, u1, u2):
        norm = np.hypot(u1, u2)
        self.u1[index] = u1 / norm
        self.u2[index] = u2 / norm

    def set_tensor(self, index, d):
        """
        Set the tensor at grid indices `index` from components `d`, by
        computing its eigen-decomposition. Eigenvalues are ordered such that
        au >= av >= 0; negative eigenvalues are clipped to zero.
        """
        matrix = components_to_matrices(np.asarray(d, dtype=np.float64))
        eigenvalues, eigenvectors = np.linalg.eigh(matrix)
        self.u1[index] = eigenvectors[0, 1]
        self.u2[index] = eigenvectors[1, 1]
        self.au[index] = max(eigenvalues[1], 0.)
        self.av[index] = max(eigenvalues[0], 0.)

    def scale(self, s):
        """Scale the eigenvalues of all tensors by the array `s`."""
        self.au *= s
        self.av *= s

    def invert(self):
        """Invert all tensors, by inverting their eigenvalues."""
        self.au = 1 / self.au
        self.av = 1 / self.av
