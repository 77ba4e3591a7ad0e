"""Module containing classes for structured grids.

Besides the general topology of :class:`~porefv.grids.grid.Grid`, structured grids
store the Cartesian layout of their cells. This is used by the vertex-centered (box)
discretization, which needs the nodes of each cell in lexicographic order and the cell
extent along each axis.

Numbering conventions, with the x-index running fastest:

- nodes and cells are numbered lexicographically;
- faces are numbered axis by axis: first all faces normal to the x-axis, then those
  normal to the y-axis, and so on;
- local node ``k`` of a cell sits at the offset ``(k >> a) & 1`` along axis ``a``.

"""

from __future__ import annotations

from typing import Optional

import numpy as np
import scipy.sparse as sps

from porefv.grids.grid import Grid


class TensorGrid(Grid):
    """Representation of grid formed by a tensor product of line point
    distributions.

    The resulting grid is 1D, 2D or 3D, depending on the number of coordinate lines
    that are provided.

    Parameters:
        x: Node coordinates in x-direction.
        y: ``default=None``

            Node coordinates in y-direction. If None, the grid is 1D.
        z: ``default=None``

            Node coordinates in z-direction. If None, the grid is at most 2D.
        name: ``default=None``

            Name of grid, defaults to ``"TensorGrid"``.

    """

    def __init__(
        self,
        x: np.ndarray,
        y: Optional[np.ndarray] = None,
        z: Optional[np.ndarray] = None,
        name: Optional[str] = None,
    ) -> None:
        if name is None:
            name = "TensorGrid"

        coords = [np.asarray(x, dtype=float)]
        if y is not None:
            coords.append(np.asarray(y, dtype=float))
            if z is not None:
                coords.append(np.asarray(z, dtype=float))
        elif z is not None:
            raise ValueError("z-coordinates given without y-coordinates")

        for c in coords:
            if c.ndim != 1 or c.size < 2 or np.any(np.diff(c) <= 0):
                raise ValueError("Coordinate lines must be strictly increasing")

        self.coordinate_lines: list[np.ndarray] = coords
        """Node coordinates along each axis."""
        self.cart_dims: np.ndarray = np.array([c.size - 1 for c in coords])
        """Number of cells along each axis."""

        nodes, face_nodes, cell_faces = self._create_topology()
        super().__init__(len(coords), nodes, face_nodes, cell_faces, name)

        self.cell_node_array: np.ndarray = self._create_cell_node_array()
        """Nodes of each cell in lexicographic local order,
        ``shape=(num_cells, 2**dim)``."""
        self.cell_extents: np.ndarray = self._create_cell_extents()
        """Size of each cell along each axis, ``shape=(dim, num_cells)``."""

    def _node_array(self) -> np.ndarray:
        shape = tuple(self.cart_dims + 1)
        return np.arange(np.prod(shape)).reshape(shape, order="F")

    def _create_topology(self) -> tuple[np.ndarray, sps.csc_matrix, sps.csc_matrix]:
        dim = len(self.coordinate_lines)
        dims = self.cart_dims
        num_cells = int(np.prod(dims))

        mesh = np.meshgrid(*self.coordinate_lines, indexing="ij")
        nodes = np.zeros((3, mesh[0].size))
        for d in range(dim):
            nodes[d] = mesh[d].ravel(order="F")
        num_nodes = nodes.shape[1]

        node_array = self._node_array()

        # Face-node relation. For a face normal to axis a, the corners are visited in
        # cyclic order in the plane of the remaining axes.
        if dim == 1:
            corners = [()]
        elif dim == 2:
            corners = [(0,), (1,)]
        else:
            corners = [(0, 0), (1, 0), (1, 1), (0, 1)]

        face_nodes_list = []
        face_index = []
        offset = 0
        for a in range(dim):
            face_shape = dims.copy()
            face_shape[a] += 1
            others = [e for e in range(dim) if e != a]
            cols = []
            for corner in corners:
                slices = [slice(None)] * dim
                for e, b in zip(others, corner):
                    slices[e] = slice(b, b + face_shape[e])
                cols.append(node_array[tuple(slices)].ravel(order="F"))
            face_nodes_list.append(np.vstack(cols).ravel(order="F"))
            num_faces_axis = int(np.prod(face_shape))
            face_index.append(
                offset + np.arange(num_faces_axis).reshape(face_shape, order="F")
            )
            offset += num_faces_axis
        num_faces = offset

        num_nodes_per_face = len(corners)
        indptr = np.arange(0, num_nodes_per_face * num_faces + 1, num_nodes_per_face)
        indices = np.hstack(face_nodes_list)
        face_nodes = sps.csc_matrix(
            (np.ones(indices.size, dtype=bool), indices, indptr),
            shape=(num_nodes, num_faces),
        )

        # Cell-face relation: lower face gets -1, upper face +1.
        cf_cols = []
        cf_data = []
        for a in range(dim):
            lower = [slice(None)] * dim
            upper = [slice(None)] * dim
            lower[a] = slice(0, dims[a])
            upper[a] = slice(1, dims[a] + 1)
            cf_cols.append(face_index[a][tuple(lower)].ravel(order="F"))
            cf_cols.append(face_index[a][tuple(upper)].ravel(order="F"))
            cf_data.append(-np.ones(num_cells))
            cf_data.append(np.ones(num_cells))

        num_faces_per_cell = 2 * dim
        indptr = np.arange(0, num_faces_per_cell * num_cells + 1, num_faces_per_cell)
        cell_faces = sps.csc_matrix(
            (
                np.vstack(cf_data).ravel(order="F"),
                np.vstack(cf_cols).ravel(order="F"),
                indptr,
            ),
            shape=(num_faces, num_cells),
        )
        return nodes, face_nodes, cell_faces

    def _create_cell_node_array(self) -> np.ndarray:
        dim = self.dim
        node_array = self._node_array()
        cols = []
        for k in range(2**dim):
            slices = []
            for a in range(dim):
                b = (k >> a) & 1
                slices.append(slice(b, b + self.cart_dims[a]))
            cols.append(node_array[tuple(slices)].ravel(order="F"))
        return np.vstack(cols).T

    def _create_cell_extents(self) -> np.ndarray:
        widths = [np.diff(c) for c in self.coordinate_lines]
        mesh = np.meshgrid(*widths, indexing="ij")
        return np.vstack([m.ravel(order="F") for m in mesh])

    def cell_index(self, ijk: tuple[int, ...]) -> int:
        """Global index of the cell with Cartesian index ``ijk``."""
        return int(np.ravel_multi_index(tuple(ijk), tuple(self.cart_dims), order="F"))

    def cartesian_index(self, cell: int) -> tuple[int, ...]:
        """Cartesian index of a cell."""
        return tuple(
            int(i) for i in np.unravel_index(cell, tuple(self.cart_dims), order="F")
        )


class CartGrid(TensorGrid):
    """Representation of a 1D, 2D or 3D Cartesian grid.

    Parameters:
        nx: Number of cells in each direction.
        physdims: ``default=None``

            Physical dimensions in each direction. Defaults to ``nx``, that is, cells
            of unit size.

    """

    def __init__(self, nx, physdims=None) -> None:
        nx = np.atleast_1d(np.asarray(nx, dtype=int))
        if physdims is None:
            physdims = nx
        physdims = np.atleast_1d(np.asarray(physdims, dtype=float))

        if nx.shape != physdims.shape:
            raise ValueError("nx and physdims must have the same shape")
        if nx.size > 3:
            raise ValueError(
                "Cartesian grid only implemented for up to three dimensions"
            )

        lines = [np.linspace(0, physdims[d], nx[d] + 1) for d in range(nx.size)]
        super().__init__(*lines, name="CartGrid")
