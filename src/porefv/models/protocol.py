"""Capability interface of a physical problem.

The assembly does not depend on a particular physical model. Everything model
specific is reached through an object satisfying :class:`Problem`: the closure
relations, the problem data (sources, boundary conditions, initial values, material
parameters), and the factories of the model specific evaluators (volume variables,
flux variables and local residual).

"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import numpy as np

if TYPE_CHECKING:
    from porefv.models.flux_variables import FluxVariables
    from porefv.models.local_residual import LocalResidual
    from porefv.models.volume_variables import VolumeVariables


class Problem(Protocol):
    """Capability interface of a physical problem."""

    num_eq: int
    """Number of equations, which equals the number of primary variables per control
    volume."""
    primary_variable_names: tuple[str, ...]
    gravity: np.ndarray
    """Gravity vector, ``shape=(3,)``."""
    upwind_weight: float
    """Weight of the upstream control volume in the mobility terms."""

    def density(self, temperature: float, pressure: float) -> float:
        ...

    def viscosity(self, temperature: float, pressure: float) -> float:
        ...

    def temperature(self, cell: int) -> float:
        ...

    def permeability(self, cell: int) -> np.ndarray:
        """Intrinsic permeability tensor of a cell, ``shape=(3, 3)``."""
        ...

    def porosity(self, cell: int) -> float:
        ...

    def source(self, cell: int, x: np.ndarray) -> np.ndarray:
        """Source terms per unit volume, ``shape=(num_eq,)``."""
        ...

    def boundary_types(self, face: int) -> list[str]:
        """Boundary condition keyword of each equation on a boundary face."""
        ...

    def dirichlet(self, face: int, x: np.ndarray) -> np.ndarray:
        """Prescribed primary variables on a boundary face, ``shape=(num_eq,)``."""
        ...

    def neumann(self, face: int, x: np.ndarray) -> np.ndarray:
        """Prescribed outflow per unit area, ``shape=(num_eq,)``."""
        ...

    def initial_values(self, x: np.ndarray) -> np.ndarray:
        """Initial primary variables at the given positions,
        ``shape=(num_points, num_eq)`` for ``x`` of ``shape=(3, num_points)``."""
        ...

    def create_volume_variables(self) -> VolumeVariables:
        ...

    def create_flux_variables(self) -> FluxVariables:
        ...

    def create_local_residual(self) -> LocalResidual:
        ...
