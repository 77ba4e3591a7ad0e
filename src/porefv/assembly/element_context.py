"""Cache of the state of one mesh element.

A :class:`MeshElementContext` holds, for the element it is currently bound to,

- the control volume geometry;
- the primary variables and volume variables of every control volume at every time
  level of the time discretization;
- the flux variables of every sub-face, at the current time level.

The context is constructed once per assembly thread and re-populated for each element.
Its buffers grow to the largest element seen and are never shrunk, such that volume and
flux variables are overwritten in place.

For the numerical Jacobian, the state of exactly one control volume can be saved,
perturbed and restored. The flux variables are kept in two slots; saving them makes the
other slot active, such that the baseline fluxes survive the evaluation at the perturbed
state and are restored by switching back.

The life cycle of a context is

    EMPTY -> GEOMETRY_BOUND -> FULLY_POPULATED <-> PERTURBED_EVALUATION

where binding the next element returns to ``GEOMETRY_BOUND``.

"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import TYPE_CHECKING, Optional

import numpy as np

import porefv as pf
from porefv.discretization.element_geometry import FVElementGeometry
from porefv.discretization.time_levels import TimeHistory, TimeLevel
from porefv.grids.grid_manager import Element, GridManager

if TYPE_CHECKING:
    from porefv.models.flux_variables import FluxVariables
    from porefv.models.model import Model
    from porefv.models.volume_variables import VolumeVariables

__all__ = ["ContextState", "FluxSlot", "MeshElementContext"]


class ContextState(Enum):
    EMPTY = "empty"
    GEOMETRY_BOUND = "geometry_bound"
    FULLY_POPULATED = "fully_populated"
    PERTURBED_EVALUATION = "perturbed_evaluation"


class FluxSlot(IntEnum):
    """Slot of the flux variable buffers used for the evaluation."""

    BASELINE = 0
    PERTURBED = 1


class MeshElementContext:
    """Per-element cache of geometry, volume variables and flux variables.

    Parameters:
        model: Provides the problem, the scheme and the primary variables.
        grid_manager: ``default=None``

            The grid manager whose elements are evaluated. The context remembers the
            topology version at construction, and refuses to bind elements after the
            grid manager has been load balanced. If not given, a serial grid manager of
            the model grid is created.

    """

    def __init__(
        self, model: Model, grid_manager: Optional[GridManager] = None
    ) -> None:
        if grid_manager is None:
            grid_manager = GridManager(model.grid)
        self.model = model
        self.problem = model.problem
        self.scheme = model.scheme
        self.grid_manager = grid_manager
        self.grid: pf.Grid = grid_manager.grid
        self.num_eq: int = model.num_eq
        self.num_time_levels: int = model.num_time_levels

        self._topology_version: int = grid_manager.topology_version
        self.state: ContextState = ContextState.EMPTY
        self.element: Optional[Element] = None
        self.geometry: Optional[FVElementGeometry] = None

        self._primary: list[TimeHistory[np.ndarray]] = []
        self._vol_vars: list[TimeHistory[VolumeVariables]] = []
        self._flux_vars: tuple[list[FluxVariables], list[FluxVariables]] = ([], [])
        self._active: FluxSlot = FluxSlot.BASELINE

        self._saved_cv: Optional[int] = None
        self._saved_primary = np.zeros(self.num_eq)
        self._saved_vol_vars = self.problem.create_volume_variables()

        self._bnd_primary = np.zeros(self.num_eq)
        self._bnd_vol_vars = self.problem.create_volume_variables()
        self._bnd_flux_vars = self.problem.create_flux_variables()
        self.local_residual = self.problem.create_local_residual()

    def __repr__(self) -> str:
        element = None if self.element is None else self.element.index
        return (
            f"Element context in state {self.state.name}, bound to element {element}, "
            f"capacity {self.cv_capacity} control volumes, {self.scvf_capacity} faces"
        )

    @property
    def cv_capacity(self) -> int:
        """Number of control volumes the buffers can hold."""
        return len(self._primary)

    @property
    def scvf_capacity(self) -> int:
        """Number of sub-faces the buffers can hold."""
        return len(self._flux_vars[0])

    @property
    def time_weights(self) -> np.ndarray:
        return self.model.time_weights

    def rebind(self) -> None:
        """Accept the current topology of the grid manager, after load balancing.

        All cached state is discarded.

        """
        self._topology_version = self.grid_manager.topology_version
        self.state = ContextState.EMPTY
        self.element = None
        self.geometry = None
        self._saved_cv = None
        self._active = FluxSlot.BASELINE

    def _grow(self, num_cv: int, num_scvf: int) -> None:
        n, m = self.num_eq, self.num_time_levels
        while len(self._primary) < num_cv:
            self._primary.append(TimeHistory(m, lambda: np.zeros(n)))
            self._vol_vars.append(
                TimeHistory(m, self.problem.create_volume_variables)
            )
        for slot in self._flux_vars:
            while len(slot) < num_scvf:
                slot.append(self.problem.create_flux_variables())

    def update_fv_elem_geom(self, element: Element) -> None:
        """Bind the context to an element and compute its geometry.

        Raises:
            TopologyInvalidatedError: If the grid manager was load balanced after the
                context was bound to it.

        """
        self.grid_manager.check_topology_version(self._topology_version)
        self.element = element
        self.geometry = self.scheme.element_geometry(self.grid, element.index)
        self._grow(self.geometry.num_cv, self.geometry.num_scvf)
        self._saved_cv = None
        self._active = FluxSlot.BASELINE
        self.state = ContextState.GEOMETRY_BOUND

    def _require(self, *states: ContextState) -> None:
        if self.state not in states:
            raise RuntimeError(
                f"Operation not allowed in state {self.state.name} of the element "
                "context"
            )

    def update_scv_vars(self, time_level: int) -> None:
        """Fetch the primary variables of all control volumes at a time level from the
        model, and compute their volume variables."""
        self._require(ContextState.GEOMETRY_BOUND, ContextState.FULLY_POPULATED)
        geom = self.geometry
        solution = self.model.solution[time_level]
        for cv in range(geom.num_cv):
            dof = int(geom.dofs[cv])
            np.copyto(self._primary[cv][time_level], solution[dof])
            vv = self._vol_vars[cv][time_level]
            vv.update(self, cv, time_level)
            if self.model.store_hints:
                self.model.set_hint(dof, time_level, vv)

    def update_all_scv_vars(self) -> None:
        """Compute the volume variables of all control volumes at all time levels."""
        for level in range(self.num_time_levels):
            self.update_scv_vars(level)
        self.state = ContextState.FULLY_POPULATED

    def update_single_scv_vars(self, cv: int) -> None:
        """Recompute the current volume variables of one control volume from its
        (possibly perturbed) primary variables."""
        self._vol_vars[cv][TimeLevel.CURRENT].update(self, cv, TimeLevel.CURRENT)

    def update_all_scvf_vars(self) -> None:
        """Compute the flux variables of all sub-faces at the current time level,
        into the active slot."""
        self._require(
            ContextState.FULLY_POPULATED, ContextState.PERTURBED_EVALUATION
        )
        slot = self._flux_vars[self._active]
        for f in range(self.geometry.num_scvf):
            slot[f].update(self, f, TimeLevel.CURRENT)

    def update_all(self, element: Element) -> None:
        """Bind an element, and compute all volume and flux variables."""
        self.update_fv_elem_geom(element)
        self.update_all_scv_vars()
        self.update_all_scvf_vars()

    def primary_vars(self, cv: int, time_level: int = TimeLevel.CURRENT) -> np.ndarray:
        return self._primary[cv][time_level]

    def vol_vars(self, cv: int, time_level: int = TimeLevel.CURRENT) -> VolumeVariables:
        return self._vol_vars[cv][time_level]

    def flux_vars(self, scvf: int) -> FluxVariables:
        """Flux variables of a sub-face in the active slot."""
        return self._flux_vars[self._active][scvf]

    def save_scv_vars(self, cv: int) -> None:
        """Save the current primary and volume variables of one control volume before
        it is perturbed.

        Raises:
            RuntimeError: If another control volume is already saved.

        """
        self._require(ContextState.FULLY_POPULATED)
        if self._saved_cv is not None:
            raise RuntimeError(
                f"Control volume {self._saved_cv} is already perturbed, only one "
                "control volume can be perturbed at a time"
            )
        np.copyto(self._saved_primary, self._primary[cv][TimeLevel.CURRENT])
        self._saved_vol_vars.copy_from(self._vol_vars[cv][TimeLevel.CURRENT])
        self._saved_cv = cv
        self.state = ContextState.PERTURBED_EVALUATION

    def perturb(self, cv: int, eq: int, value: float) -> None:
        """Set one primary variable of the saved control volume, and recompute its
        current volume variables."""
        if self._saved_cv != cv:
            raise RuntimeError(f"Control volume {cv} must be saved before perturbation")
        self._primary[cv][TimeLevel.CURRENT][eq] = value
        self.update_single_scv_vars(cv)

    def restore_scv_vars(self, cv: int) -> None:
        """Restore the saved state of a control volume."""
        if self._saved_cv != cv:
            raise RuntimeError(f"Control volume {cv} is not saved")
        np.copyto(self._primary[cv][TimeLevel.CURRENT], self._saved_primary)
        self._vol_vars[cv][TimeLevel.CURRENT].copy_from(self._saved_vol_vars)
        self._saved_cv = None
        self.state = ContextState.FULLY_POPULATED

    def has_saved_scv(self) -> bool:
        return self._saved_cv is not None

    def eval_point_vol_vars(self, cv: int) -> VolumeVariables:
        """Current volume variables at the evaluation point, i.e. the saved variables
        for a perturbed control volume."""
        if cv == self._saved_cv:
            return self._saved_vol_vars
        return self._vol_vars[cv][TimeLevel.CURRENT]

    def save_scvf_vars(self) -> None:
        """Keep the current flux variables, and direct further updates to the other
        slot."""
        self._active = FluxSlot.PERTURBED

    def restore_scvf_vars(self) -> None:
        """Switch back to the saved flux variables."""
        self._active = FluxSlot.BASELINE

    @property
    def active_flux_slot(self) -> FluxSlot:
        return self._active

    def boundary_flux_vars(
        self, bnd: int, is_dirichlet: np.ndarray
    ) -> FluxVariables:
        """Flux variables of a boundary sub-face against the boundary state.

        The boundary state takes the Dirichlet values for the equations marked in
        ``is_dirichlet``, and the current primary variables of the adjacent control
        volume for the others.

        """
        geom = self.geometry
        cv = int(geom.bnd_cvs[bnd])
        face = int(geom.bnd_faces[bnd])
        np.copyto(self._bnd_primary, self._primary[cv][TimeLevel.CURRENT])
        values = np.asarray(
            self.problem.dirichlet(face, geom.bnd_centers[bnd]), dtype=float
        )
        self._bnd_primary[is_dirichlet] = values[is_dirichlet]
        self._bnd_vol_vars.compute(
            self.problem, int(geom.cv_cells[cv]), self._bnd_primary
        )
        self._bnd_flux_vars.update_boundary(self, bnd, self._bnd_vol_vars)
        return self._bnd_flux_vars

    def element_residual(self) -> np.ndarray:
        """Residual of the primary control volumes of the bound element."""
        return self.local_residual.eval(self)
