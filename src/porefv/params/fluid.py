""" Closure relations of the fluid phase.

The fluids provide density and viscosity as pure functions of the local state
(absolute temperature in Kelvin, pressure in Pascal). Evaluations outside of the valid
domain of a relation raise :class:`~porefv.utils.errors.InvalidStateError`, which is
never replaced by a default value.

Standard values are taken from common sources (e.g. found in Wikipedia).
"""
from __future__ import annotations

import numpy as np

import porefv as pf
from porefv.utils.errors import InvalidStateError


def _check_finite(quantity: str, value: float) -> float:
    if not np.isfinite(value):
        raise InvalidStateError(quantity, value)
    return value


class UnitFluid:
    """Mother of all fluids, with properties equal 1.

    Parameters:
        molar_mass: ``default=1``

            Molar mass, used to convert between mass and molar quantities.

    """

    def __init__(self, molar_mass: float = 1.0) -> None:
        self.molar_mass = molar_mass

    def _check_state(self, temperature: float, pressure: float) -> None:
        _check_finite("pressure", pressure)
        if not np.isfinite(temperature) or temperature <= 0:
            raise InvalidStateError("temperature", temperature)

    def density(self, temperature: float, pressure: float) -> float:
        """Returns fluid density with unit: kg / m^3."""
        self._check_state(temperature, pressure)
        return 1.0

    def viscosity(self, temperature: float, pressure: float) -> float:
        """Returns dynamic viscosity with unit: Pa s."""
        self._check_state(temperature, pressure)
        return 1.0

    def molar_density(self, temperature: float, pressure: float) -> float:
        """Returns molar density with unit: mol / m^3."""
        return self.density(temperature, pressure) / self.molar_mass


class SlightlyCompressibleFluid(UnitFluid):
    """Fluid with exponential pressure dependency of the density,
    ``rho = rho_ref * exp(c * (p - p_ref))``, and constant viscosity.

    Parameters:
        reference_density: Density at the reference pressure.
        compressibility: Compressibility ``c`` with unit 1 / Pa.
        reference_pressure: ``default=0``

            Reference pressure.
        viscosity: ``default=1``

            Constant dynamic viscosity.
        molar_mass: ``default=1``

    """

    def __init__(
        self,
        reference_density: float = 1.0,
        compressibility: float = 1e-9 / pf.PASCAL,
        reference_pressure: float = 0.0,
        viscosity: float = 1.0,
        molar_mass: float = 1.0,
    ) -> None:
        super().__init__(molar_mass)
        self.reference_density = reference_density
        self.compressibility = compressibility
        self.reference_pressure = reference_pressure
        self._viscosity = viscosity

    def density(self, temperature: float, pressure: float) -> float:
        self._check_state(temperature, pressure)
        rho = self.reference_density * np.exp(
            self.compressibility * (pressure - self.reference_pressure)
        )
        return _check_finite("density", rho)

    def viscosity(self, temperature: float, pressure: float) -> float:
        self._check_state(temperature, pressure)
        return self._viscosity


class IdealGas(UnitFluid):
    """Ideal gas, ``rho = p M / (R T)``.

    Parameters:
        molar_mass: ``default=0.02896``

            Molar mass with unit kg / mol, defaults to dry air.
        viscosity: ``default=1.8e-5``

            Constant dynamic viscosity.

    """

    def __init__(self, molar_mass: float = 0.02896, viscosity: float = 1.8e-5) -> None:
        super().__init__(molar_mass)
        self._viscosity = viscosity

    def density(self, temperature: float, pressure: float) -> float:
        self._check_state(temperature, pressure)
        if pressure <= 0:
            raise InvalidStateError("pressure", pressure)
        return pressure * self.molar_mass / (pf.GAS_CONSTANT * temperature)

    def viscosity(self, temperature: float, pressure: float) -> float:
        self._check_state(temperature, pressure)
        return self._viscosity


class Water(UnitFluid):
    """Liquid water with temperature dependent density and viscosity. The pressure
    dependency is neglected."""

    def __init__(self) -> None:
        super().__init__(molar_mass=0.018015)

    def thermal_expansion(self, delta_theta: float) -> float:
        """Returns thermal expansion with unit m^3 / m^3 K, i.e. volumetric.

        Parameters:
            delta_theta: temperature increment in Kelvin.

        """
        return (
            0.0002115
            + 1.32 * 1e-6 * delta_theta
            + 1.09 * 1e-8 * np.power(delta_theta, 2)
        )

    def density(self, temperature: float, pressure: float) -> float:
        self._check_state(temperature, pressure)
        theta = pf.KELVIN_to_CELSIUS(temperature)
        theta_0 = 10 * pf.CELSIUS
        rho_0 = 999.8349 * (pf.KILOGRAM / pf.METER**3)
        return _check_finite(
            "density", rho_0 / (1.0 + self.thermal_expansion(theta - theta_0))
        )

    def viscosity(self, temperature: float, pressure: float) -> float:
        self._check_state(temperature, pressure)
        # The correlation has a pole at 140 K.
        if temperature <= 140:
            raise InvalidStateError("temperature", temperature)
        mu_0 = 2.414 * 1e-5 * (pf.PASCAL * pf.SECOND)
        return mu_0 * np.power(10, 247.8 / (temperature - 140))
