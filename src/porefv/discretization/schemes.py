"""Discretization schemes.

A scheme declares the structural properties which the assembly depends on, and which
are fixed per scheme rather than per run:

- ``dof_entity``: The grid entity carrying the degrees of freedom.
- ``shared_row_writes``: Whether several elements contribute to the same row of the
  global system. If False, each row is written by exactly one element, and elements
  can be assembled concurrently without coordination. If True, concurrent assembly
  must accumulate into separate buffers which are merged afterwards.
- ``linearize_ghost_elements``: Whether overlap elements contribute to the equations
  of locally owned degrees of freedom, and therefore must be assembled.
- ``strong_dirichlet``: Dirichlet conditions replace the equation of the constrained
  degree of freedom (strong), or enter through the boundary flux (weak).
- ``overlap_criterion``: The neighborhood defining the stencil of an element, used
  to construct the overlap of a partition.

"""

from __future__ import annotations

import abc

import numpy as np
import scipy.sparse as sps

import porefv as pf
from porefv.discretization.element_geometry import (
    FVElementGeometry,
    box_geometry,
    cell_centered_geometry,
)
from porefv.utils.logging import time_logger

module_sections = ["discretization"]


class Scheme(abc.ABC):
    """Common interface of the finite volume schemes."""

    name: str
    dof_entity: str
    shared_row_writes: bool
    linearize_ghost_elements: bool
    strong_dirichlet: bool
    overlap_criterion: str

    def __repr__(self) -> str:
        return (
            f"Finite volume scheme {self.name} with degrees of freedom on "
            f"{self.dof_entity}s"
        )

    @abc.abstractmethod
    def num_dofs(self, grid: pf.Grid) -> int:
        """Number of degrees of freedom (control volumes) of the grid."""

    @abc.abstractmethod
    def dof_coordinates(self, grid: pf.Grid) -> np.ndarray:
        """Position of each degree of freedom, ``shape=(3, num_dofs)``."""

    @abc.abstractmethod
    def element_dofs(self, grid: pf.Grid, cell: int) -> np.ndarray:
        """Degrees of freedom whose balance equations are assembled by an element."""

    @abc.abstractmethod
    def element_geometry(self, grid: pf.Grid, cell: int) -> FVElementGeometry:
        """Control volume geometry of an element."""

    @abc.abstractmethod
    def dof_adjacency(self, grid: pf.Grid) -> sps.csr_matrix:
        """Boolean connection matrix of the degrees of freedom,
        ``shape=(num_dofs, num_dofs)``, including the diagonal. This is the sparsity
        pattern of the Jacobian."""

    def dofs_of_cells(self, grid: pf.Grid, cells: np.ndarray) -> np.ndarray:
        """Sorted degrees of freedom of a set of cells."""
        if len(cells) == 0:
            return np.zeros(0, dtype=int)
        return np.unique(
            np.hstack([self.element_dofs(grid, int(c)) for c in cells])
        ).astype(int)


class CellCenteredScheme(Scheme):
    """Element-centered finite volume scheme with two-point flux approximation."""

    name = pf.CELL_CENTERED
    dof_entity = "cell"
    shared_row_writes = False
    linearize_ghost_elements = False
    strong_dirichlet = False
    overlap_criterion = "face"

    def __init__(self) -> None:
        self._face_cells: dict[int, np.ndarray] = {}

    def num_dofs(self, grid: pf.Grid) -> int:
        return grid.num_cells

    def dof_coordinates(self, grid: pf.Grid) -> np.ndarray:
        return grid.cell_centers

    def element_dofs(self, grid: pf.Grid, cell: int) -> np.ndarray:
        return np.array([cell])

    @time_logger(sections=module_sections)
    def element_geometry(self, grid: pf.Grid, cell: int) -> FVElementGeometry:
        if grid.id not in self._face_cells:
            self._face_cells[grid.id] = grid.cell_face_as_dense()
        return cell_centered_geometry(grid, cell, self._face_cells[grid.id])

    def dof_adjacency(self, grid: pf.Grid) -> sps.csr_matrix:
        return grid.cell_connection_map().tocsr()


class BoxScheme(Scheme):
    """Vertex-centered finite volume scheme on tensor-product grids."""

    name = pf.BOX
    dof_entity = "node"
    shared_row_writes = True
    linearize_ghost_elements = True
    strong_dirichlet = True
    overlap_criterion = "node"

    def num_dofs(self, grid: pf.Grid) -> int:
        return grid.num_nodes

    def dof_coordinates(self, grid: pf.Grid) -> np.ndarray:
        return grid.nodes

    def element_dofs(self, grid: pf.Grid, cell: int) -> np.ndarray:
        if not hasattr(grid, "cell_node_array"):
            raise ValueError("The box scheme requires a tensor product grid")
        return grid.cell_node_array[cell]

    @time_logger(sections=module_sections)
    def element_geometry(self, grid: pf.Grid, cell: int) -> FVElementGeometry:
        return box_geometry(grid, cell)

    def dof_adjacency(self, grid: pf.Grid) -> sps.csr_matrix:
        cn = grid.cell_nodes().astype(int)
        return ((cn @ cn.T) > 0).tocsr()


def get_scheme(name: str) -> Scheme:
    """Construct a scheme from its keyword, ``"ecfv"`` or ``"box"``.

    Raises:
        ValueError: If the keyword is unknown.

    """
    name = name.lower().strip()
    if name == pf.CELL_CENTERED:
        return CellCenteredScheme()
    elif name == pf.BOX:
        return BoxScheme()
    raise ValueError(f"Unknown discretization scheme {name}")
