"""Module containing the parent class for all grids.

The grid is the concrete reference implementation of the mesh interface consumed by the
assembly: it provides elements (cells), their faces and nodes, neighbor relations via
faces, and the geometric quantities (centers, volumes, area-weighted normals) needed to
construct control volumes.

See documentation of class :class:`Grid` for further details.

"""

from __future__ import annotations

import copy
from itertools import count
from typing import Any, Optional, Union

import numpy as np
from scipy import sparse as sps


class Grid:
    """Parent class for all grids.

    The grid stores topological information, as well as geometric information. Geometric
    information requires calling :meth:`compute_geometry` to be initialized.

    Parameters:
        dim: Grid dimension.
        nodes: ``shape=(3, num_nodes)``

            Node coordinates.
        face_nodes: ``shape=(num_nodes, num_faces)``

            A map from faces to respective nodes spanning the face. For 2d and 3d grids,
            the nodes of each face must be stored in cyclic order.
        cell_faces: ``shape=(num_faces, num_cells)``

            A map from cells to faces bordering the respective cell. Matrix elements
            have value +-1, where + means that the face normal vector points outwards.
        name: Name of grid.
        history: ``default=None``

            Information on the formation of the grid.

    """

    _counter = count(0)
    """Counter of instantiated grids. See :meth:`__new__` and :meth:`id`."""
    __id: int

    def __new__(cls, *args, **kwargs) -> Grid:
        """Make object and set ID by forwarding :attr:`_counter`."""
        obj = object.__new__(cls)
        obj.__id = next(cls._counter)
        return obj

    def __init__(
        self,
        dim: int,
        nodes: np.ndarray[Any, np.dtype[np.float64]],
        face_nodes: sps.csc_matrix,
        cell_faces: sps.csc_matrix,
        name: str,
        history: Optional[Union[str, list[str]]] = None,
    ) -> None:
        if not (dim >= 1 and dim <= 3):
            raise ValueError("A grid has to be of dimension 1, 2, or 3.")

        self.dim: int = dim
        """Grid dimension."""

        self.nodes: np.ndarray = nodes
        """Node coordinates, ``shape=(3, num_nodes)``."""

        cell_faces.data = cell_faces.data.astype(int)
        face_nodes.data = face_nodes.data.astype(int)

        self.cell_faces: sps.csc_matrix = cell_faces
        """Signed map from cells to faces, ``shape=(num_faces, num_cells)``."""
        self.face_nodes: sps.csc_matrix = face_nodes
        """Map from faces to nodes, ``shape=(num_nodes, num_faces)``."""

        self.name: str = name

        if history is None:
            self.history: list[str] = []
        elif isinstance(history, list):
            self.history = history
        else:
            self.history = [history]

        self.num_nodes: int = nodes.shape[1]
        self.num_faces: int = face_nodes.shape[1]
        self.num_cells: int = cell_faces.shape[1]

        self.tags: dict[str, np.ndarray] = {}
        """Boolean tags of faces and nodes. The standard tags are
        ``domain_boundary_faces`` and ``domain_boundary_nodes``."""
        self.update_boundary_face_tag()
        self.update_boundary_node_tag()

        # Set by compute_geometry
        self.face_areas: np.ndarray
        self.face_centers: np.ndarray
        self.face_normals: np.ndarray
        self.cell_volumes: np.ndarray
        self.cell_centers: np.ndarray

    @property
    def id(self) -> int:
        """Grid ID, set in :meth:`__new__`. Must not be changed."""
        return self.__id

    def copy(self) -> Grid:
        """Create a new instance with some attributes deep-copied from the grid.

        Returns:
            A deep copy of ``self``, with a new id.

        """
        h = Grid(
            self.dim,
            self.nodes.copy(),
            self.face_nodes.copy(),
            self.cell_faces.copy(),
            name=self.name,
            history=list(self.history),
        )
        for attr in [
            "cell_volumes",
            "cell_centers",
            "face_centers",
            "face_normals",
            "face_areas",
            "tags",
        ]:
            if hasattr(self, attr):
                setattr(h, attr, copy.deepcopy(getattr(self, attr)))
        return h

    def __repr__(self) -> str:
        s = f"Grid with name {self.name} and id {self.id}\n"
        s += "Grid history: " + ", ".join(self.history) + "\n"
        s += f"Number of cells {self.num_cells}\n"
        s += f"Number of faces {self.num_faces}\n"
        s += f"Number of nodes {self.num_nodes}\n"
        s += f"Dimension {self.dim}"
        return s

    def __str__(self) -> str:
        if "CartGrid" in self.name:
            s = f"Cartesian grid in {self.dim} dimensions.\n"
        elif "TensorGrid" in self.name:
            s = f"Tensor grid in {self.dim} dimensions.\n"
        else:
            s = f"{self.name}\n"
        s += f"Number of cells {self.num_cells}\n"
        s += f"Number of faces {self.num_faces}\n"
        s += f"Number of nodes {self.num_nodes}\n"
        return s

    def compute_geometry(self) -> None:
        """Compute geometric quantities for the grid.

        Computes the face areas, face centers, face normals, cell volumes and cell
        centers. Face normals are area weighted, and oriented such that they point out
        of the cells with a positive sign in :attr:`cell_faces`.

        Cells are assumed to be convex, with planar faces.

        """
        self.history.append("Compute geometry")
        self._compute_face_geometry()
        self._compute_cell_geometry()

    def _compute_face_geometry(self) -> None:
        fn = self.face_nodes
        num_nodes_per_face = np.diff(fn.indptr)
        face_ind = np.repeat(np.arange(self.num_faces), num_nodes_per_face)

        # Temporary face center, mean of face nodes.
        node_sum = np.vstack(
            [
                np.bincount(face_ind, weights=self.nodes[d, fn.indices])
                for d in range(3)
            ]
        )
        center = node_sum / num_nodes_per_face

        if self.dim == 1:
            tangent = self.nodes[:, -1] - self.nodes[:, 0]
            tangent = tangent / np.linalg.norm(tangent)
            normals = np.tile(tangent, (self.num_faces, 1)).T
            areas = np.ones(self.num_faces)
        elif self.dim == 2:
            start = fn.indices[fn.indptr[:-1]]
            end = fn.indices[fn.indptr[:-1] + 1]
            tangent = self.nodes[:, end] - self.nodes[:, start]
            # Rotate the tangent 90 degrees clockwise in the xy-plane.
            normals = np.vstack((tangent[1], -tangent[0], np.zeros(self.num_faces)))
            areas = np.linalg.norm(tangent, axis=0)
        else:
            # Fan triangulation of each face from the temporary center.
            next_node = np.arange(fn.indices.size) + 1
            next_node[fn.indptr[1:] - 1] = fn.indptr[:-1]
            a = self.nodes[:, fn.indices] - center[:, face_ind]
            b = self.nodes[:, fn.indices[next_node]] - center[:, face_ind]
            sub_normals = 0.5 * np.cross(a, b, axis=0)
            sub_areas = np.linalg.norm(sub_normals, axis=0)
            sub_centroids = (
                center[:, face_ind]
                + self.nodes[:, fn.indices]
                + self.nodes[:, fn.indices[next_node]]
            ) / 3
            normals = np.vstack(
                [np.bincount(face_ind, weights=sub_normals[d]) for d in range(3)]
            )
            areas = np.bincount(face_ind, weights=sub_areas)
            center = (
                np.vstack(
                    [
                        np.bincount(face_ind, weights=sub_areas * sub_centroids[d])
                        for d in range(3)
                    ]
                )
                / areas
            )

        self.face_centers = center
        self.face_areas = areas
        self.face_normals = normals

    def _compute_cell_geometry(self) -> None:
        cf = self.cell_faces.tocoo()
        faces, cells, sgn = cf.row, cf.col, cf.data

        num_faces_per_cell = np.bincount(cells, minlength=self.num_cells)
        tmp_center = (
            np.vstack(
                [
                    np.bincount(
                        cells,
                        weights=self.face_centers[d, faces],
                        minlength=self.num_cells,
                    )
                    for d in range(3)
                ]
            )
            / num_faces_per_cell
        )

        # Orient the normals according to the sign convention of cell_faces. Use the
        # first occurrence of each face.
        _, first = np.unique(faces, return_index=True)
        height = self.face_centers[:, faces[first]] - tmp_center[:, cells[first]]
        proj = np.sum(height * self.face_normals[:, faces[first]], axis=0)
        flip = sgn[first] * proj < 0
        self.face_normals[:, faces[first][flip]] *= -1

        # Sub-simplices (pyramids) formed by each face and the temporary cell center.
        height = self.face_centers[:, faces] - tmp_center[:, cells]
        outer_normals = self.face_normals[:, faces] * sgn
        sub_volumes = np.sum(height * outer_normals, axis=0) / self.dim
        if not np.all(sub_volumes > -1e-12):
            raise ValueError("Some sub-simplices have negative volume")

        volumes = np.bincount(cells, weights=sub_volumes, minlength=self.num_cells)
        sub_centroids = tmp_center[:, cells] + self.dim / (self.dim + 1) * height
        centers = (
            np.vstack(
                [
                    np.bincount(
                        cells,
                        weights=sub_volumes * sub_centroids[d],
                        minlength=self.num_cells,
                    )
                    for d in range(3)
                ]
            )
            / volumes
        )
        self.cell_volumes = volumes
        self.cell_centers = centers

    def cell_nodes(self) -> sps.csc_matrix:
        """Obtain mapping between cells and nodes.

        Returns:
            Boolean array with ``shape=(num_nodes, num_cells)``.

        """
        return (self.face_nodes * np.abs(self.cell_faces)) > 0

    def num_cell_nodes(self) -> np.ndarray:
        """Number of nodes per cell, ``shape=(num_cells,)``."""
        return np.asarray(self.cell_nodes().sum(axis=0)).ravel("F")

    def get_all_boundary_faces(self) -> np.ndarray:
        """Indices of all faces on the domain boundary."""
        return self._indices(self.tags["domain_boundary_faces"])

    def get_internal_faces(self) -> np.ndarray:
        """Indices of all faces shared by two cells."""
        return np.setdiff1d(
            np.arange(self.num_faces), self.get_all_boundary_faces(), assume_unique=True
        )

    def get_boundary_nodes(self) -> np.ndarray:
        """Indices of all nodes on the domain boundary."""
        return self._indices(self.tags["domain_boundary_nodes"])

    def update_boundary_face_tag(self) -> None:
        """Tags faces with a single neighboring cell as domain boundary."""
        self.tags["domain_boundary_faces"] = (
            np.diff(self.cell_faces.tocsr().indptr) == 1
        )

    def update_boundary_node_tag(self) -> None:
        """Tags nodes of domain boundary faces as domain boundary."""
        tag = np.zeros(self.num_nodes, dtype=bool)
        faces = self.get_all_boundary_faces()
        if faces.size > 0:
            nodes = self.face_nodes[:, faces].indices
            tag[nodes] = True
        self.tags["domain_boundary_nodes"] = tag

    def cell_face_as_dense(self) -> np.ndarray:
        """Obtain the cell-face relation in the form of two rows.

        Each column corresponds to a face. The normal vector of the face points from the
        cell in the first row to the cell in the second row. The value -1 signifies a
        boundary.

        Returns:
            Array with ``shape=(2, num_faces)``.

        """
        neighs = -np.ones((2, self.num_faces), dtype=int)
        cf = self.cell_faces.tocoo()
        outward = cf.data > 0
        neighs[0, cf.row[outward]] = cf.col[outward]
        neighs[1, cf.row[~outward]] = cf.col[~outward]
        return neighs

    def cell_connection_map(self) -> sps.csr_matrix:
        """Boolean matrix of cell-cell connections via shared faces,
        ``shape=(num_cells, num_cells)``. The matrix is symmetric and includes the
        diagonal."""
        cell_faces = self.cell_faces.copy()
        cell_faces.data = np.abs(cell_faces.data)
        c2c = (cell_faces.transpose() * cell_faces).tocsr()
        c2c.data = np.clip(c2c.data, 0, 1).astype(bool)
        return c2c

    def signs_and_cells_of_boundary_faces(
        self, faces: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray]:
        """Get the direction of the normal vector and the cell neighbor of boundary
        faces.

        Parameters:
            faces: ``shape=(n,)``

                Indices of boundary faces.

        Raises:
            ValueError: If a target face is internal.

        Returns:
            The sign of the faces (+1 if the normal points out of the cell) and the
            index of the cell next to each face.

        """
        sub = self.cell_faces.tocsr()[faces]
        if np.any(np.diff(sub.indptr) != 1):
            raise ValueError("sign of internal faces does not make sense")
        return sub.data, sub.indices

    @staticmethod
    def _indices(true_false: np.ndarray) -> np.ndarray:
        return np.argwhere(true_false).ravel("F")
