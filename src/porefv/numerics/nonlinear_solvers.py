"""Newton's method with step reduction.

Every iteration assembles the linear system at the current iterate, solves it and adds
the increment to the solution. If the assembly fails because the iterate is outside the
physical domain of a closure relation, the last increment is reduced, and the assembly
repeated, until the iterate is admissible or the number of reductions is exhausted.

For partitioned simulations, the systems of all ranks are merged and solved on the
first rank, and the increment is distributed to all ranks. All ranks take the same
decisions, since these are based on the exchanged information only.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from porefv.assembly.global_assembler import GlobalAssembler
from porefv.models.model import Model
from porefv.numerics.linear_solvers import LinearSolver
from porefv.parallel.ghost_sync import GhostSync
from porefv.utils.errors import AssemblyAbortError, SingularSystemError
from porefv.utils.logging import time_logger

logger = logging.getLogger(__name__)

module_sections = ["numerics"]

__all__ = ["NewtonSolver"]


def _norm(vector: np.ndarray) -> float:
    """Euclidean norm scaled by the square root of the vector size."""
    if vector.size == 0:
        return 0.0
    return float(np.linalg.norm(vector) / np.sqrt(vector.size))


class NewtonSolver:
    """Newton solver of the nonlinear system of a model.

    Parameters:
        params: ``default=None``

            Options, with defaults:

            - ``"max_iterations"``: 10.
            - ``"nl_convergence_tol"``: 1e-10. Tolerance of the scaled norms of the
              residual and of the increment.
            - ``"nl_divergence_tol"``: 1e5. The iteration is considered diverged if
              the scaled norm of the increment exceeds this value.
            - ``"max_step_reductions"``: 5.
            - ``"step_reduction_factor"``: 0.5.

            The parameters are also passed to the :class:`LinearSolver`.

    """

    def __init__(self, params: Optional[dict] = None) -> None:
        if params is None:
            params = {}
        self.params = params
        self.max_iterations: int = params.get("max_iterations", 10)
        self.nl_convergence_tol: float = params.get("nl_convergence_tol", 1e-10)
        self.nl_divergence_tol: float = params.get("nl_divergence_tol", 1e5)
        self.max_step_reductions: int = params.get("max_step_reductions", 5)
        self.step_reduction_factor: float = params.get("step_reduction_factor", 0.5)
        if not 0 < self.step_reduction_factor < 1:
            raise ValueError("The step reduction factor must be in (0, 1)")
        self.linear_solver = LinearSolver(params)

    def __repr__(self) -> str:
        return (
            f"Newton solver with at most {self.max_iterations} iterations and "
            f"tolerance {self.nl_convergence_tol}"
        )

    def _assemble_and_solve(
        self,
        assembler: GlobalAssembler,
        ghost_sync: Optional[GhostSync],
    ) -> tuple[np.ndarray, float]:
        if ghost_sync is None or ghost_sync.comm.size == 1:
            system = assembler.assemble()
            return self.linear_solver.solve(system), _norm(system.rhs)

        comm = ghost_sync.comm
        failure: Optional[AssemblyAbortError] = None
        system = None
        try:
            system = assembler.assemble()
        except AssemblyAbortError as err:
            failure = err
        statuses = comm.all_gather(None if failure is None else failure.recoverable)
        merged = ghost_sync.gather_system(system)
        failed = [s for s in statuses if s is not None]
        if failed:
            if failure is not None:
                raise failure
            raise AssemblyAbortError(
                "Assembly failed on another rank", recoverable=all(failed)
            )

        result = None
        if comm.rank == 0:
            try:
                result = (self.linear_solver.solve(merged), _norm(merged.rhs), None)
            except SingularSystemError as err:
                result = (None, np.nan, str(err))
        delta, residual_norm, message = comm.broadcast(result)
        if message is not None:
            raise SingularSystemError(message)
        return delta, residual_norm

    @staticmethod
    def _sync(model: Model, ghost_sync: Optional[GhostSync]) -> None:
        if ghost_sync is not None:
            ghost_sync.sync_overlap(model)

    @time_logger(sections=module_sections)
    def solve(
        self,
        model: Model,
        assembler: GlobalAssembler,
        ghost_sync: Optional[GhostSync] = None,
    ) -> tuple[bool, int]:
        """Solve the nonlinear system at the current time step.

        Parameters:
            model: Model whose current solution is the initial guess, and receives the
                solution.
            assembler: Assembler of the model.
            ghost_sync: ``default=None``

                Synchronization of a partitioned simulation. Collective operation if
                given.

        Raises:
            AssemblyAbortError: If the assembly failed for another reason than an
                invalid state, or the step reductions were exhausted.
            SingularSystemError: If the linear system cannot be solved.

        Returns:
            Whether the iteration converged, and the number of iterations.

        """
        x_prev: Optional[np.ndarray] = None
        delta: Optional[np.ndarray] = None

        for iteration in range(1, self.max_iterations + 1):
            reductions = 0
            while True:
                try:
                    new_delta, residual_norm = self._assemble_and_solve(
                        assembler, ghost_sync
                    )
                    break
                except AssemblyAbortError as err:
                    if (
                        not err.recoverable
                        or delta is None
                        or reductions >= self.max_step_reductions
                    ):
                        raise
                    reductions += 1
                    factor = self.step_reduction_factor**reductions
                    logger.warning(
                        f"Newton iteration {iteration}: invalid iterate, reducing the "
                        f"step by a factor {factor:.2e}"
                    )
                    model.set_solution(x_prev + factor * delta)
                    self._sync(model, ghost_sync)

            logger.info(
                f"Newton iteration {iteration}: residual norm {residual_norm:.2e}"
            )
            if residual_norm < self.nl_convergence_tol:
                return True, iteration

            x_prev = model.current_vector()
            delta = new_delta
            model.update_solution(delta)
            self._sync(model, ghost_sync)

            increment_norm = _norm(delta)
            logger.debug(
                f"Newton iteration {iteration}: increment norm {increment_norm:.2e}"
            )
            if (
                not np.isfinite(increment_norm)
                or increment_norm > self.nl_divergence_tol
            ):
                logger.warning(f"Newton iteration {iteration}: diverged")
                return False, iteration
            if increment_norm < self.nl_convergence_tol:
                return True, iteration

        logger.warning(f"Newton solver did not converge in {self.max_iterations} steps")
        return False, self.max_iterations
