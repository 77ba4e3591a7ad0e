"""Secondary variables of a control volume.

Volume variables are computed from the primary variables of one control volume at one
time level, the geometry of the element and the closure relations of the problem. They
are stored in the buffers of a
:class:`~porefv.assembly.element_context.MeshElementContext` and overwritten in place
when the context moves to the next element.

"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import TYPE_CHECKING

import numpy as np

from porefv.utils.errors import InvalidStateError

if TYPE_CHECKING:
    from porefv.assembly.element_context import MeshElementContext
    from porefv.models.protocol import Problem

__all__ = ["VolumeVariables", "OnePVolumeVariables", "OnePTwoCVolumeVariables"]


@dataclass
class VolumeVariables:
    """Base class of the volume variables."""

    def update(self, context: MeshElementContext, cv: int, time_level: int) -> None:
        """Recompute all quantities of a control volume at a time level.

        Raises:
            InvalidStateError: If a quantity is evaluated outside of its domain.

        """
        cell = int(context.geometry.cv_cells[cv])
        self.compute(context.problem, cell, context.primary_vars(cv, time_level))

    def compute(self, problem: Problem, cell: int, primary_vars: np.ndarray) -> None:
        """Evaluate the closure relations for given primary variables, using the
        material parameters of ``cell``."""
        raise NotImplementedError

    def copy_from(self, other: VolumeVariables) -> None:
        """Overwrite all quantities with those of ``other``."""
        for f in fields(self):
            setattr(self, f.name, getattr(other, f.name))

    def copy(self) -> VolumeVariables:
        new = type(self)()
        new.copy_from(self)
        return new


@dataclass
class OnePVolumeVariables(VolumeVariables):
    """Volume variables of single-phase flow. The primary variable is the pressure."""

    pressure: float = 0.0
    temperature: float = 0.0
    density: float = 0.0
    viscosity: float = 0.0
    porosity: float = 0.0

    def compute(self, problem: Problem, cell: int, primary_vars: np.ndarray) -> None:
        self.pressure = float(primary_vars[0])
        self.temperature = problem.temperature(cell)
        self.density = problem.density(self.temperature, self.pressure)
        self.viscosity = problem.viscosity(self.temperature, self.pressure)
        self.porosity = problem.porosity(cell)
        if self.viscosity <= 0:
            raise InvalidStateError("viscosity", self.viscosity)

    @property
    def mobility(self) -> float:
        """Mass mobility, density over viscosity."""
        return self.density / self.viscosity


@dataclass
class OnePTwoCVolumeVariables(OnePVolumeVariables):
    """Volume variables of single-phase flow with two components. The primary
    variables are the pressure and the mole fraction of the second component."""

    mole_fraction: float = 0.0
    molar_density: float = 0.0
    diffusion_coefficient: float = 0.0
    """Effective (porous medium) diffusion coefficient."""

    tolerance = 1e-10
    """Admissible violation of the bounds of the mole fraction."""

    def compute(self, problem: Problem, cell: int, primary_vars: np.ndarray) -> None:
        super().compute(problem, cell, primary_vars)
        x1 = float(primary_vars[1])
        if not (-self.tolerance <= x1 <= 1 + self.tolerance):
            raise InvalidStateError("mole fraction", x1)
        self.mole_fraction = x1
        self.molar_density = problem.molar_density(self.temperature, self.pressure)
        self.diffusion_coefficient = (
            self.porosity * problem.tortuosity(cell) * problem.diffusion_coefficient
        )

    @property
    def concentration(self) -> float:
        """Molar concentration of the second component."""
        return self.mole_fraction * self.molar_density

    @property
    def concentration_mobility(self) -> float:
        return self.concentration / self.viscosity
