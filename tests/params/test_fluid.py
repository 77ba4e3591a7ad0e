"""Tests of the fluid closure relations."""
import numpy as np
import pytest

import porefv as pf


def test_unit_fluid():
    fluid = pf.UnitFluid(molar_mass=2.0)
    assert fluid.density(300, 1e5) == 1
    assert fluid.viscosity(300, 1e5) == 1
    assert fluid.molar_density(300, 1e5) == 0.5


def test_slightly_compressible():
    fluid = pf.SlightlyCompressibleFluid(
        reference_density=1000, compressibility=1e-2, reference_pressure=1.0
    )
    assert np.isclose(fluid.density(300, 1.0), 1000)
    assert np.isclose(fluid.density(300, 101.0), 1000 * np.exp(1))
    assert fluid.viscosity(300, 0) == 1


def test_ideal_gas():
    fluid = pf.IdealGas()
    rho = fluid.density(300, 1e5)
    assert np.isclose(rho, 1e5 * 0.02896 / (pf.GAS_CONSTANT * 300))
    assert np.isclose(fluid.molar_density(300, 1e5), 1e5 / (pf.GAS_CONSTANT * 300))


def test_water():
    fluid = pf.Water()
    rho_10 = fluid.density(pf.CELSIUS_to_KELVIN(10), 1e5)
    assert np.isclose(rho_10, 999.8349 / (1 + 0.0002115))
    assert fluid.density(pf.CELSIUS_to_KELVIN(50), 1e5) < rho_10
    assert fluid.viscosity(293.15, 1e5) > fluid.viscosity(353.15, 1e5)


@pytest.mark.parametrize(
    "fluid, temperature, pressure",
    [
        (pf.UnitFluid(), -1.0, 1.0),
        (pf.UnitFluid(), 300.0, np.nan),
        (pf.IdealGas(), 300.0, -1.0),
        (pf.IdealGas(), 300.0, 0.0),
        (pf.SlightlyCompressibleFluid(), 0.0, 1.0),
    ],
)
def test_invalid_density(fluid, temperature, pressure):
    with pytest.raises(pf.InvalidStateError):
        fluid.density(temperature, pressure)


def test_water_viscosity_pole():
    with pytest.raises(pf.InvalidStateError) as err:
        pf.Water().viscosity(100.0, 1e5)
    assert err.value.quantity == "temperature"
    assert isinstance(err.value, ValueError)
