"""
The tensor module contains the cell-wise second order tensor, used for intrinsic
permeability and for dispersion.
"""

from __future__ import annotations

from typing import Optional

import numpy as np


class SecondOrderTensor:
    """Cell-wise second order tensor.

    The tensor is always 3-dimensional (since the geometry is always 3D), however,
    1D and 2D problems are accommodated by assigning unit values to kzz and kyy, and no
    cross terms.

    Parameters:
        kxx: ``shape=(num_cells,)``

            Cell-wise values of the xx-component. Scalars are broadcast to
            ``num_cells`` if that is given.
        kyy: ``default=None``

            Values of yy. Default equal to kxx.
        kzz: ``default=None``

            Values of zz. Default equal to kxx.
        kxy: ``default=None``

            Values of xy. Defaults to zero.
        kxz: ``default=None``

            Values of xz. Defaults to zero.
        kyz: ``default=None``

            Values of yz. Defaults to zero.
        num_cells: ``default=None``

            Number of cells, used to broadcast scalar values.

    Raises:
        ValueError: If the tensor is not positive definite.

    """

    def __init__(
        self,
        kxx,
        kyy=None,
        kzz=None,
        kxy=None,
        kxz=None,
        kyz=None,
        num_cells: Optional[int] = None,
    ) -> None:
        def _expand(v):
            v = np.asarray(v, dtype=float)
            if num_cells is not None and v.ndim == 0:
                v = np.full(num_cells, float(v))
            return np.atleast_1d(v)

        kxx = _expand(kxx)
        kyy = kxx if kyy is None else _expand(kyy)
        kzz = kxx if kzz is None else _expand(kzz)
        kxy = 0 * kxx if kxy is None else _expand(kxy)
        kxz = 0 * kxx if kxz is None else _expand(kxz)
        kyz = 0 * kxx if kyz is None else _expand(kyz)

        if np.any(kxx <= 0):
            raise ValueError(
                "Tensor is not positive definite because of components in x-direction"
            )
        # Onsager's principle - tensor should be positive definite
        if np.any((kxx * kyy - kxy * kxy) <= 0):
            raise ValueError(
                "Tensor is not positive definite because of components in y-direction"
            )
        if np.any(
            (
                kxx * (kyy * kzz - kyz * kyz)
                - kxy * (kxy * kzz - kxz * kyz)
                + kxz * (kxy * kyz - kxz * kyy)
            )
            <= 0
        ):
            raise ValueError(
                "Tensor is not positive definite because of components in z-direction"
            )

        nc = kxx.size
        values = np.zeros((3, 3, nc))
        values[0, 0] = kxx
        values[1, 1] = kyy
        values[2, 2] = kzz
        values[0, 1] = values[1, 0] = kxy
        values[0, 2] = values[2, 0] = kxz
        values[1, 2] = values[2, 1] = kyz

        self.values: np.ndarray = values
        """Tensor values, ``shape=(3, 3, num_cells)``."""

    @property
    def num_cells(self) -> int:
        return self.values.shape[2]

    def cell_tensor(self, cell: int) -> np.ndarray:
        """The 3x3 tensor of a single cell."""
        return self.values[:, :, cell]

    def copy(self) -> SecondOrderTensor:
        """Define a deep copy of the tensor."""
        v = self.values
        return SecondOrderTensor(
            v[0, 0].copy(),
            kyy=v[1, 1].copy(),
            kzz=v[2, 2].copy(),
            kxy=v[0, 1].copy(),
            kxz=v[0, 2].copy(),
            kyz=v[1, 2].copy(),
        )

    def restrict_to_cells(self, cells: np.ndarray) -> None:
        """Restrict the tensor to a subset of the cells."""
        self.values = self.values[:, :, cells]

    def __str__(self) -> str:
        return f"Second order tensor defined on {self.num_cells} cells"

    def __repr__(self) -> str:
        return self.__str__()
