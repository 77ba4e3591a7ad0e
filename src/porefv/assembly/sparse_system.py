"""Global linear system with a fixed sparsity pattern.

The pattern is allocated once per topology from the connection matrix of the degrees of
freedom, with a dense ``num_eq x num_eq`` block for each connected pair. The entries are
zeroed, not reallocated, at the start of every assembly pass. Explicit zeros stay in the
pattern, so structural checks should count the nonzero values rather than the stored
entries.

Row and column indices are ordered by degree of freedom, then equation:
``row = dof * num_eq + eq``.

"""

from __future__ import annotations

import numpy as np
import scipy.sparse as sps

__all__ = ["SparseSystem"]


class SparseSystem:
    """Matrix and right hand side of ``J * delta = rhs``.

    Parameters:
        adjacency: Boolean connection matrix of the degrees of freedom, including the
            diagonal.
        num_eq: Number of equations per degree of freedom.

    """

    def __init__(self, adjacency: sps.spmatrix, num_eq: int) -> None:
        adjacency = sps.csr_matrix(adjacency, dtype=float)
        if adjacency.shape[0] != adjacency.shape[1]:
            raise ValueError("The adjacency matrix must be square")
        # Make sure the diagonal is part of the pattern
        adjacency = adjacency + sps.identity(adjacency.shape[0], format="csr")
        pattern = sps.kron(adjacency, np.ones((num_eq, num_eq)), format="csr")
        pattern.sum_duplicates()
        pattern.sort_indices()
        pattern.data[:] = 0

        self.num_eq: int = num_eq
        self.num_dofs: int = adjacency.shape[0]
        self.matrix: sps.csr_matrix = pattern
        self.rhs: np.ndarray = np.zeros(pattern.shape[0])

    def __repr__(self) -> str:
        return (
            f"Sparse system with {self.num_dofs} degrees of freedom, {self.num_eq} "
            f"equation(s) each and {self.matrix.nnz} stored entries"
        )

    @property
    def num_rows(self) -> int:
        return self.rhs.size

    def row(self, dof: int, eq: int = 0) -> int:
        return dof * self.num_eq + eq

    def zero(self) -> None:
        self.matrix.data[:] = 0
        self.rhs[:] = 0

    def _positions(self, row: int, cols: np.ndarray) -> np.ndarray:
        start, end = self.matrix.indptr[row], self.matrix.indptr[row + 1]
        row_cols = self.matrix.indices[start:end]
        local = np.searchsorted(row_cols, cols)
        if np.any(local >= row_cols.size) or np.any(row_cols[local] != cols):
            raise ValueError(f"Entries of row {row} are outside the sparsity pattern")
        return start + local

    def add_block(self, row_dof: int, col_dof: int, block: np.ndarray) -> None:
        """Add a ``num_eq x num_eq`` block coupling the equations of ``row_dof`` to
        the primary variables of ``col_dof``."""
        n = self.num_eq
        cols = col_dof * n + np.arange(n)
        for eq in range(n):
            self.matrix.data[self._positions(row_dof * n + eq, cols)] += block[eq]

    def add_residual(self, dof: int, values: np.ndarray) -> None:
        """Add to the right hand side of the equations of a degree of freedom."""
        start = dof * self.num_eq
        self.rhs[start : start + self.num_eq] += values

    def set_identity_row(self, row: int, value: float) -> None:
        """Replace an equation by ``delta[row] = value``.

        All entries of the row are zeroed, except for the diagonal, which is set to
        one.

        """
        start, end = self.matrix.indptr[row], self.matrix.indptr[row + 1]
        self.matrix.data[start:end] = 0
        self.matrix.data[self._positions(row, np.array([row]))] = 1
        self.rhs[row] = value

    def add(self, other: SparseSystem) -> None:
        """Accumulate a system with the same pattern."""
        if other.matrix.nnz != self.matrix.nnz or other.num_rows != self.num_rows:
            raise ValueError("Only systems with the same pattern can be added")
        self.matrix.data += other.matrix.data
        self.rhs += other.rhs

    def copy_rows_from(self, other: SparseSystem, rows: np.ndarray) -> None:
        """Overwrite rows with those of a system with the same pattern."""
        for row in rows:
            start, end = self.matrix.indptr[row], self.matrix.indptr[row + 1]
            self.matrix.data[start:end] = other.matrix.data[start:end]
        self.rhs[rows] = other.rhs[rows]

    def copy(self) -> SparseSystem:
        new = SparseSystem.__new__(SparseSystem)
        new.num_eq = self.num_eq
        new.num_dofs = self.num_dofs
        new.matrix = self.matrix.copy()
        new.rhs = self.rhs.copy()
        return new
