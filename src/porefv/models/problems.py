"""Problem definitions of single-phase flow with one and two components.

A problem collects everything the assembly needs to know about the physics and the data
of a simulation: material parameters, closure relations (through a fluid), boundary
conditions, sources and initial values. The problems satisfy the capability interface
:class:`~porefv.models.protocol.Problem`.

The data are given as constant or cell/face-wise arrays in the ``params`` dictionary.
Spatially varying data which are easier expressed as functions are provided by
overriding the corresponding method in a subclass, e.g.

    class Injection(pf.OnePhaseProblem):
        def dirichlet(self, face, x):
            return np.array([1 - x[0]])

"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

import porefv as pf
from porefv.models.flux_variables import FluxVariables, OnePTwoCFluxVariables
from porefv.models.local_residual import OnePLocalResidual, OnePTwoCLocalResidual
from porefv.models.volume_variables import OnePTwoCVolumeVariables, OnePVolumeVariables

__all__ = ["PorousMediumProblem", "OnePhaseProblem", "OnePTwoCProblem"]


def _cell_values(value, num_cells: int, name: str) -> np.ndarray:
    values = np.asarray(value, dtype=float)
    if values.ndim == 0:
        return np.full(num_cells, float(values))
    if values.shape != (num_cells,):
        raise ValueError(f"{name} must be a scalar or one value per cell")
    return values


def _eq_values(value, num_eq: int, num_entities: int, name: str) -> np.ndarray:
    """Broadcast data to ``shape=(num_eq, num_entities)``."""
    values = np.asarray(value, dtype=float)
    if values.ndim == 0:
        return np.full((num_eq, num_entities), float(values))
    if values.ndim == 1 and values.size == num_eq:
        return np.tile(values.reshape((-1, 1)), (1, num_entities))
    if values.ndim == 1 and num_eq == 1 and values.size == num_entities:
        return values.reshape((1, -1)).copy()
    if values.shape != (num_eq, num_entities):
        raise ValueError(
            f"{name} must have shape ({num_eq}, {num_entities}), got {values.shape}"
        )
    return values.copy()


class PorousMediumProblem:
    """Common data of flow problems in porous media.

    Parameters:
        grid: Grid with computed geometry.
        params: ``default=None``

            Problem data. Recognized keys, with defaults:

            - ``"fluid"``: :class:`~porefv.params.fluid.UnitFluid`.
            - ``"permeability"``: Unit :class:`~porefv.params.tensor.SecondOrderTensor`.
            - ``"porosity"``: 1, scalar or cell-wise.
            - ``"temperature"``: 293.15 K, scalar or cell-wise.
            - ``"gravity"``: Zero vector of length 3.
            - ``"bc"``: :class:`~porefv.params.bc.BoundaryCondition` with Neumann
              conditions on all boundary faces.
            - ``"dirichlet_values"``: 0, per equation and face.
            - ``"neumann_values"``: 0, outflow per unit area, per equation and face.
            - ``"source"``: 0, per unit volume, per equation and cell.
            - ``"initial_values"``: 0, per equation.
            - ``"upwind_weight"``: 1, weight of the upstream control volume.

    Raises:
        ValueError: If data have the wrong shape, or the boundary condition was
            defined for a different number of equations.

    """

    num_eq: int = 1
    primary_variable_names: tuple[str, ...] = ("pressure",)

    def __init__(self, grid: pf.Grid, params: Optional[dict[str, Any]] = None) -> None:
        if params is None:
            params = {}
        self.grid = grid
        self.params = params
        nc, nf = grid.num_cells, grid.num_faces

        self.fluid = params.get("fluid", pf.UnitFluid())
        self._permeability: pf.SecondOrderTensor = params.get(
            "permeability", pf.SecondOrderTensor(np.ones(nc))
        )
        if self._permeability.num_cells != nc:
            raise ValueError("The permeability must be given for all cells")
        self._porosity = _cell_values(params.get("porosity", 1.0), nc, "Porosity")
        self._temperature = _cell_values(
            params.get("temperature", pf.CELSIUS_to_KELVIN(20)), nc, "Temperature"
        )
        gravity = np.zeros(3)
        g = np.asarray(params.get("gravity", np.zeros(3)), dtype=float).ravel()
        gravity[: g.size] = g
        self.gravity: np.ndarray = gravity

        self.bc: pf.BoundaryCondition = params.get(
            "bc", pf.BoundaryCondition(grid, num_eq=self.num_eq)
        )
        if self.bc.num_eq != self.num_eq:
            raise ValueError(
                f"Boundary condition has {self.bc.num_eq} equations, the problem "
                f"{self.num_eq}"
            )
        self._dirichlet = _eq_values(
            params.get("dirichlet_values", 0), self.num_eq, nf, "Dirichlet values"
        )
        self._neumann = _eq_values(
            params.get("neumann_values", 0), self.num_eq, nf, "Neumann values"
        )
        self._source = _eq_values(params.get("source", 0), self.num_eq, nc, "Source")
        self._initial = np.broadcast_to(
            np.asarray(params.get("initial_values", 0), dtype=float), (self.num_eq,)
        ).copy()

        self.upwind_weight: float = float(params.get("upwind_weight", 1.0))
        if not 0 <= self.upwind_weight <= 1:
            raise ValueError("The upwind weight must be in [0, 1]")

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__} with {self.num_eq} equation(s) on a grid with "
            f"{self.grid.num_cells} cells"
        )

    # Closure relations

    def density(self, temperature: float, pressure: float) -> float:
        return self.fluid.density(temperature, pressure)

    def viscosity(self, temperature: float, pressure: float) -> float:
        return self.fluid.viscosity(temperature, pressure)

    def molar_density(self, temperature: float, pressure: float) -> float:
        return self.fluid.molar_density(temperature, pressure)

    # Material parameters

    def temperature(self, cell: int) -> float:
        return float(self._temperature[cell])

    def permeability(self, cell: int) -> np.ndarray:
        return self._permeability.cell_tensor(cell)

    def porosity(self, cell: int) -> float:
        return float(self._porosity[cell])

    # Problem data

    def source(self, cell: int, x: np.ndarray) -> np.ndarray:
        return self._source[:, cell]

    def boundary_types(self, face: int) -> list[str]:
        return self.bc.kinds(face)

    def dirichlet(self, face: int, x: np.ndarray) -> np.ndarray:
        return self._dirichlet[:, face]

    def neumann(self, face: int, x: np.ndarray) -> np.ndarray:
        return self._neumann[:, face]

    def initial_values(self, x: np.ndarray) -> np.ndarray:
        return np.tile(self._initial, (x.shape[1], 1))


class OnePhaseProblem(PorousMediumProblem):
    """Single-phase flow, with the pressure as primary variable."""

    def create_volume_variables(self) -> OnePVolumeVariables:
        return OnePVolumeVariables()

    def create_flux_variables(self) -> FluxVariables:
        return FluxVariables(self.upwind_weight)

    def create_local_residual(self) -> OnePLocalResidual:
        return OnePLocalResidual()


class OnePTwoCProblem(PorousMediumProblem):
    """Single-phase flow of two components, with the pressure and the mole fraction of
    the second component as primary variables.

    In addition to the keys of :class:`PorousMediumProblem`, ``params`` recognizes

    - ``"diffusion_coefficient"``: Molecular diffusion coefficient in the free fluid,
      default 0.
    - ``"tortuosity"``: Default 1, scalar or cell-wise.
    - ``"longitudinal_dispersivity"``: Default 0.
    - ``"transversal_dispersivity"``: Default 0.

    """

    num_eq = 2
    primary_variable_names = ("pressure", "mole_fraction")

    def __init__(self, grid: pf.Grid, params: Optional[dict[str, Any]] = None) -> None:
        super().__init__(grid, params)
        params = self.params
        self.diffusion_coefficient: float = float(
            params.get("diffusion_coefficient", 0.0)
        )
        self._tortuosity = _cell_values(
            params.get("tortuosity", 1.0), grid.num_cells, "Tortuosity"
        )
        self.longitudinal_dispersivity: float = float(
            params.get("longitudinal_dispersivity", 0.0)
        )
        self.transversal_dispersivity: float = float(
            params.get("transversal_dispersivity", 0.0)
        )

    def tortuosity(self, cell: int) -> float:
        return float(self._tortuosity[cell])

    def create_volume_variables(self) -> OnePTwoCVolumeVariables:
        return OnePTwoCVolumeVariables()

    def create_flux_variables(self) -> OnePTwoCFluxVariables:
        return OnePTwoCFluxVariables(
            self.upwind_weight,
            self.longitudinal_dispersivity,
            self.transversal_dispersivity,
        )

    def create_local_residual(self) -> OnePTwoCLocalResidual:
        return OnePTwoCLocalResidual()
