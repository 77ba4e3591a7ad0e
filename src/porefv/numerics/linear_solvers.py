"""Wrapper around the direct solvers of the assembled linear systems."""

from __future__ import annotations

import logging
import time
import warnings
from typing import Optional

import numpy as np
import scipy.sparse as sps
import scipy.sparse.linalg as spla

from porefv.assembly.sparse_system import SparseSystem
from porefv.utils.errors import SingularSystemError
from porefv.utils.logging import time_logger

logger = logging.getLogger(__name__)

module_sections = ["numerics"]

__all__ = ["LinearSolver"]


class LinearSolver:
    """Direct solver of ``J * delta = rhs``.

    Parameters:
        params: ``default=None``

            Options:

            - ``"linear_solver"``: ``"scipy_sparse"`` (default) or ``"umfpack"``.

    """

    def __init__(self, params: Optional[dict] = None) -> None:
        if params is None:
            params = {}
        self.params = params
        self.solver: str = params.get("linear_solver", "scipy_sparse")
        if self.solver not in ("scipy_sparse", "umfpack"):
            raise ValueError(f"Unknown linear solver {self.solver}")

    def __repr__(self) -> str:
        return f"Linear solver {self.solver}"

    @time_logger(sections=module_sections)
    def solve(self, system: SparseSystem) -> np.ndarray:
        """Solve the system.

        Raises:
            SingularSystemError: If the matrix is singular, or the solution is not
                finite.

        """
        A, b = system.matrix, system.rhs
        t_0 = time.time()
        with warnings.catch_warnings():
            warnings.simplefilter("error", spla.MatrixRankWarning)
            try:
                x = spla.spsolve(
                    sps.csc_matrix(A), b, use_umfpack=self.solver == "umfpack"
                )
            except (spla.MatrixRankWarning, RuntimeError) as err:
                raise SingularSystemError(
                    f"The linear system is singular: {err}"
                ) from err

        x = np.atleast_1d(x)
        if not np.all(np.isfinite(x)):
            raise SingularSystemError("The solution of the linear system is not finite")
        logger.debug(f"Solved linear system in {time.time() - t_0:.2e} seconds.")
        return x
