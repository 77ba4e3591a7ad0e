"""Assembly of the global residual and numerical Jacobian.

The :class:`GlobalAssembler` loops over the elements visible to the rank, evaluates the
local residual of each element through a
:class:`~porefv.assembly.element_context.MeshElementContext`, differentiates it
numerically by perturbing one primary variable at a time, and scatters the results into
a :class:`~porefv.assembly.sparse_system.SparseSystem`. Dirichlet conditions of schemes
with strong Dirichlet treatment and user defined hard constraints replace the
corresponding rows after all element contributions have been added.

The assembled system is ``J * delta = rhs`` with ``rhs = -R(x)``, such that the Newton
update is ``x <- x + delta``. A constrained row reads ``delta[row] = value - x[row]``.

Elements can be assembled by several threads. The scheme decides how the threads
write to the global system:

- Without shared row writes (cell-centered), every row is written by a single element,
  and all threads write to the global system directly.
- With shared row writes (box), every thread accumulates into a private system with
  the same pattern, and the private systems are summed after the threads finished.

An assembly pass is atomic: if any element fails, the system is zeroed and an
:class:`~porefv.utils.errors.AssemblyAbortError` is raised, chained to the original
error.

"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Optional

import numpy as np

import porefv as pf
from porefv.assembly.element_context import MeshElementContext
from porefv.assembly.sparse_system import SparseSystem
from porefv.discretization.time_levels import TimeLevel
from porefv.grids.grid_manager import Element, GridManager
from porefv.models.model import Model
from porefv.utils.errors import AssemblyAbortError, InvalidStateError
from porefv.utils.logging import time_logger

logger = logging.getLogger(__name__)

module_sections = ["assembly"]

__all__ = ["AssemblerState", "GlobalAssembler"]


class AssemblerState(Enum):
    IDLE = "idle"
    ASSEMBLING_LOCAL = "assembling_local"
    ASSEMBLING_GHOST = "assembling_ghost"
    SCATTERING = "scattering"
    SOLVER_READY = "solver_ready"


class GlobalAssembler:
    """Assembler of the global linear system of a model.

    Parameters:
        model: The model providing the problem, the scheme and the primary variables.
        grid_manager: ``default=None``

            The elements to assemble. If not given, all cells of the model grid are
            assembled.
        params: ``default=None``

            Options, with defaults:

            - ``"numeric_difference_method"``: 1 for forward, 0 for central and -1 for
              backward differences. Default 1.
            - ``"base_epsilon"``: Base of the perturbation, which is
              ``base_epsilon * (|x| + 1)``. Default 1e-8.
            - ``"num_threads"``: Number of assembly threads. Default 1.

    """

    def __init__(
        self,
        model: Model,
        grid_manager: Optional[GridManager] = None,
        params: Optional[dict] = None,
    ) -> None:
        if params is None:
            params = {}
        if grid_manager is None:
            grid_manager = GridManager(
                model.grid, overlap_criterion=model.scheme.overlap_criterion
            )
        self.model = model
        self.scheme = model.scheme
        self.grid_manager = grid_manager

        self.numeric_difference_method: int = params.get(
            "numeric_difference_method", 1
        )
        if self.numeric_difference_method not in (-1, 0, 1):
            raise ValueError("The numeric difference method must be -1, 0 or 1")
        self.base_epsilon: float = params.get("base_epsilon", 1e-8)
        self.num_threads: int = max(1, int(params.get("num_threads", 1)))

        self._constraints: dict[int, float] = {}
        self.state: AssemblerState = AssemblerState.IDLE
        self.num_elements_assembled: int = 0
        self.rebind()

    def __repr__(self) -> str:
        return (
            f"Global assembler of a {self.scheme.name} discretization with "
            f"{self.num_threads} thread(s), state {self.state.name}"
        )

    @property
    def uses_thread_buffers(self) -> bool:
        """True if concurrent assembly accumulates into per-thread systems, which are
        merged after the pass."""
        return self.num_threads > 1 and self.scheme.shared_row_writes

    def rebind(self) -> None:
        """Rebuild the system and element contexts for the current topology of the
        grid manager, e.g. after load balancing.

        Raises:
            ValueError: If the overlap of the grid manager does not cover the stencil
                of the scheme.

        """
        self.grid_manager.check_overlap(self.scheme.overlap_criterion)
        self._topology_version = self.grid_manager.topology_version
        self.system = SparseSystem(
            self.scheme.dof_adjacency(self.grid_manager.grid), self.model.num_eq
        )
        self._contexts = [
            MeshElementContext(self.model, self.grid_manager)
            for _ in range(self.num_threads)
        ]
        self.state = AssemblerState.IDLE

    def set_hard_constraint(self, dof: int, value: float, eq: int = 0) -> None:
        """Fix a primary variable of a degree of freedom to a value.

        The row of the equation is replaced by an identity row in every subsequent
        assembly pass. This removes the null space of problems which determine the
        pressure only up to a constant.

        """
        if not 0 <= dof < self.model.num_dofs or not 0 <= eq < self.model.num_eq:
            raise ValueError(f"No primary variable {eq} at degree of freedom {dof}")
        self._constraints[dof * self.model.num_eq + eq] = float(value)

    def clear_hard_constraints(self) -> None:
        self._constraints.clear()

    def _epsilon(self, value: float) -> float:
        return self.base_epsilon * (abs(value) + 1)

    def _perturbed_residual(
        self, context: MeshElementContext, cv: int, eq: int, value: float
    ) -> np.ndarray:
        context.save_scv_vars(cv)
        try:
            context.perturb(cv, eq, value)
            context.save_scvf_vars()
            context.update_all_scvf_vars()
            return context.element_residual()
        finally:
            context.restore_scv_vars(cv)
            context.restore_scvf_vars()

    def _admissible_residual(
        self, context: MeshElementContext, cv: int, eq: int, value: float
    ) -> Optional[np.ndarray]:
        """Perturbed residual, or None if the perturbed state is outside the domain
        of the closure relations."""
        try:
            return self._perturbed_residual(context, cv, eq, value)
        except InvalidStateError as err:
            logger.debug(f"Perturbation of control volume {cv} rejected: {err}")
            return None

    def _derivative(
        self, context: MeshElementContext, cv: int, eq: int, residual: np.ndarray
    ) -> np.ndarray:
        """Difference quotient of the element residual with respect to one primary
        variable.

        A state on the bound of the admissible domain, e.g. a mole fraction of exactly
        one, can be perturbed in one direction only. If the perturbation of the
        configured method is rejected, the one-sided difference in the opposite
        direction is used. An InvalidStateError is raised only if both directions are
        rejected.

        """
        x = float(context.primary_vars(cv, TimeLevel.CURRENT)[eq])
        eps = self._epsilon(x)
        method = self.numeric_difference_method

        upper = lower = None
        if method >= 0:
            upper = self._admissible_residual(context, cv, eq, x + eps)
        if method <= 0:
            lower = self._admissible_residual(context, cv, eq, x - eps)
        if upper is None and lower is None:
            if method > 0:
                lower = self._perturbed_residual(context, cv, eq, x - eps)
            elif method < 0:
                upper = self._perturbed_residual(context, cv, eq, x + eps)
            else:
                # Both sides were rejected, reevaluate to raise the error.
                self._perturbed_residual(context, cv, eq, x + eps)

        if upper is not None and lower is not None:
            return (upper - lower) / (2 * eps)
        if upper is not None:
            return (upper - residual) / eps
        return (residual - lower) / eps

    def assemble_element(
        self, context: MeshElementContext, element: Element, system: SparseSystem
    ) -> None:
        """Evaluate the residual and numerical Jacobian of an element, and add them to
        a system."""
        context.update_all(element)
        geom = context.geometry
        n = self.model.num_eq
        residual = context.element_residual()

        jac = np.zeros((geom.num_primary, geom.num_cv, n, n))
        for cv in range(geom.num_cv):
            for eq in range(n):
                jac[:, cv, :, eq] = self._derivative(context, cv, eq, residual)

        for i in range(geom.num_primary):
            row_dof = int(geom.dofs[i])
            system.add_residual(row_dof, -residual[i])
            for cv in range(geom.num_cv):
                system.add_block(row_dof, int(geom.dofs[cv]), jac[i, cv])

    def _assemble_elements(
        self,
        elements: list[Element],
        context: MeshElementContext,
        system: SparseSystem,
    ) -> int:
        for element in elements:
            try:
                self.assemble_element(context, element, system)
            except Exception as err:
                raise AssemblyAbortError(
                    f"Assembly of element {element.index} failed: {err}",
                    element=element.index,
                ) from err
        return len(elements)

    def _assemble_threaded(self, elements: list[Element]) -> int:
        chunks = np.array_split(np.arange(len(elements)), self.num_threads)
        if self.uses_thread_buffers:
            targets = [self.system.copy() for _ in chunks]
            for t in targets:
                t.zero()
        else:
            targets = [self.system for _ in chunks]

        with ThreadPoolExecutor(max_workers=self.num_threads) as executor:
            futures = [
                executor.submit(
                    self._assemble_elements,
                    [elements[k] for k in chunk],
                    self._contexts[t],
                    targets[t],
                )
                for t, chunk in enumerate(chunks)
            ]
            # All threads finish before a failure is raised.
            results = [f.exception() for f in futures]
        for err in results:
            if err is not None:
                raise err

        if self.uses_thread_buffers:
            for t in targets:
                self.system.add(t)
        return len(elements)

    def _assemble_pass(self, elements: list[Element]) -> int:
        if self.num_threads == 1:
            return self._assemble_elements(elements, self._contexts[0], self.system)
        return self._assemble_threaded(elements)

    def _dirichlet_rows(self) -> dict[int, float]:
        """Constrained rows of strong Dirichlet conditions and their values."""
        grid = self.grid_manager.grid
        problem = self.model.problem
        n = self.model.num_eq
        fn = grid.face_nodes
        rows: dict[int, float] = {}
        for face in grid.get_all_boundary_faces():
            kinds = problem.boundary_types(int(face))
            if pf.DIRICHLET not in kinds:
                continue
            for node in fn.indices[fn.indptr[face] : fn.indptr[face + 1]]:
                values = problem.dirichlet(int(face), grid.nodes[:, node])
                for eq, kind in enumerate(kinds):
                    if kind == pf.DIRICHLET:
                        rows[int(node) * n + eq] = float(values[eq])
        return rows

    @time_logger(sections=module_sections)
    def assemble(self) -> SparseSystem:
        """Assemble the global system at the current solution of the model.

        Returns:
            The assembled system, which is owned by the assembler and overwritten by the
            next pass.

        Raises:
            TopologyInvalidatedError: If the grid manager was load balanced since the
                last call to :meth:`rebind`.
            AssemblyAbortError: If the evaluation of an element failed. The system is
                zeroed.

        """
        self.grid_manager.check_topology_version(self._topology_version)
        self.system.zero()

        try:
            self.state = AssemblerState.ASSEMBLING_LOCAL
            count = self._assemble_pass(self.grid_manager.owned_elements())
            if self.scheme.linearize_ghost_elements:
                self.state = AssemblerState.ASSEMBLING_GHOST
                count += self._assemble_pass(self.grid_manager.ghost_elements())
        except AssemblyAbortError as err:
            self.system.zero()
            self.state = AssemblerState.IDLE
            logger.warning(f"Assembly aborted at element {err.element}: {err}")
            raise

        self.state = AssemblerState.SCATTERING
        x = self.model.solution[TimeLevel.CURRENT].ravel()
        rows: dict[int, float] = {}
        if self.scheme.strong_dirichlet:
            rows.update(self._dirichlet_rows())
        rows.update(self._constraints)
        for row, value in rows.items():
            self.system.set_identity_row(row, value - x[row])

        self.num_elements_assembled = count
        self.state = AssemblerState.SOLVER_READY
        logger.debug(f"Assembled {count} elements, {len(rows)} constrained rows")
        return self.system

    def residual_norm(self) -> float:
        """Euclidean norm of the right hand side of the last assembled system."""
        return float(np.linalg.norm(self.system.rhs))
