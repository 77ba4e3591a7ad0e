"""Complete simulations of problems with known solutions, run through the public
drivers."""
import numpy as np
import pytest

import porefv as pf

SCHEMES = [pf.CELL_CENTERED, pf.BOX]


def _solver():
    return pf.NewtonSolver({"nl_convergence_tol": 1e-8})


def _dof_coordinates(model):
    return model.scheme.dof_coordinates(model.grid)


def _west_east_bc(g, west_value, east_value):
    west, east = pf.face_on_side(g, ["west", "east"])
    values = np.zeros(g.num_faces)
    values[west] = west_value
    values[east] = east_value
    return pf.BoundaryCondition(g, np.r_[west, east], "dir"), values


@pytest.mark.parametrize("scheme", SCHEMES)
def test_linear_pressure(scheme):
    """Flow between two Dirichlet sides of a square, no flow elsewhere."""
    g = pf.CartGrid([3, 3], physdims=[3, 3])
    g.compute_geometry()
    bc, values = _west_east_bc(g, 1, 0)
    problem = pf.OnePhaseProblem(g, {"bc": bc, "dirichlet_values": values})
    model = pf.Model(problem, scheme, pf.STATIONARY)
    model.initialize()
    converged, _ = pf.run_stationary_model(model, pf.GlobalAssembler(model), _solver())
    assert converged
    x = _dof_coordinates(model)
    assert np.allclose(model.current_vector(), 1 - x[0] / 3, atol=1e-7)


@pytest.mark.parametrize("scheme", SCHEMES)
def test_neumann_inflow(scheme):
    """A unit mass inflow through the west side is balanced by a linear pressure drop
    towards the east side."""
    g = pf.CartGrid([4], physdims=[4])
    g.compute_geometry()
    west, east = pf.face_on_side(g, ["west", "east"])
    neumann = np.zeros(g.num_faces)
    # Boundary fluxes are outflow-positive
    neumann[west] = -1
    params = {
        "bc": pf.BoundaryCondition(g, east, "dir"),
        "dirichlet_values": 0.0,
        "neumann_values": neumann,
    }
    model = pf.Model(pf.OnePhaseProblem(g, params), scheme, pf.STATIONARY)
    model.initialize()
    converged, _ = pf.run_stationary_model(model, pf.GlobalAssembler(model), _solver())
    assert converged
    x = _dof_coordinates(model)
    assert np.allclose(model.current_vector(), 4 - x[0], atol=1e-7)


@pytest.mark.parametrize("scheme", SCHEMES)
def test_hydrostatic_pressure(scheme):
    """With gravity and a fixed pressure on top, the fluid is at rest and the pressure
    increases linearly with depth."""
    g = pf.CartGrid([2, 3], physdims=[1, 3])
    g.compute_geometry()
    north = pf.face_on_side(g, "north")[0]
    params = {
        "bc": pf.BoundaryCondition(g, north, "dir"),
        "dirichlet_values": 1.0,
        "gravity": [0, -1],
        "initial_values": 1.0,
    }
    model = pf.Model(pf.OnePhaseProblem(g, params), scheme, pf.STATIONARY)
    model.initialize()
    converged, _ = pf.run_stationary_model(model, pf.GlobalAssembler(model), _solver())
    assert converged
    y = _dof_coordinates(model)[1]
    assert np.allclose(model.current_vector(), 1 + (3 - y), atol=1e-7)


def _two_component_model(scheme, p_west, diffusion):
    g = pf.CartGrid([5], physdims=[1])
    g.compute_geometry()
    west, east = pf.face_on_side(g, ["west", "east"])
    values = np.zeros((2, g.num_faces))
    values[0, west] = p_west
    values[0, east] = 1.0
    values[1, west] = 0.8
    values[1, east] = 0.2
    params = {
        "bc": pf.BoundaryCondition(g, np.r_[west, east], "dir", num_eq=2),
        "dirichlet_values": values,
        "diffusion_coefficient": diffusion,
        "porosity": 0.4,
        "initial_values": [1.0, 0.5],
    }
    model = pf.Model(pf.OnePTwoCProblem(g, params), scheme, pf.STATIONARY)
    model.initialize()
    return model


@pytest.mark.parametrize("scheme", SCHEMES)
def test_two_component_diffusion(scheme):
    """Without a pressure gradient, the mole fraction profile is linear."""
    model = _two_component_model(scheme, p_west=1.0, diffusion=1.0)
    converged, _ = pf.run_stationary_model(model, pf.GlobalAssembler(model), _solver())
    assert converged
    x = _dof_coordinates(model)[0]
    solution = model.current_vector().reshape((-1, 2))
    assert np.allclose(solution[:, 0], 1, atol=1e-7)
    assert np.allclose(solution[:, 1], 0.8 - 0.6 * x, atol=1e-7)


def test_two_component_advection():
    """Without diffusion, full upwinding carries the inflow composition through the
    whole domain."""
    model = _two_component_model(pf.CELL_CENTERED, p_west=2.0, diffusion=0.0)
    converged, _ = pf.run_stationary_model(model, pf.GlobalAssembler(model), _solver())
    assert converged
    solution = model.current_vector().reshape((-1, 2))
    assert np.all(np.diff(solution[:, 0]) < 0)
    assert np.allclose(solution[:, 1], 0.8, atol=1e-7)


@pytest.mark.parametrize("scheme", SCHEMES)
@pytest.mark.parametrize("method", [1, -1, 0])
def test_two_component_at_bounds_of_mole_fraction(scheme, method):
    """A pure second component flows into a domain without it. The mole fractions one
    and zero are valid states, and the Jacobian is assembled with all difference
    methods."""
    g = pf.CartGrid([5], physdims=[1])
    g.compute_geometry()
    west, east = pf.face_on_side(g, ["west", "east"])
    values = np.zeros((2, g.num_faces))
    values[0, west] = 2.0
    values[0, east] = 1.0
    values[1, west] = 1.0
    params = {
        "bc": pf.BoundaryCondition(g, np.r_[west, east], "dir", num_eq=2),
        "dirichlet_values": values,
        "diffusion_coefficient": 1.0,
        "initial_values": [1.0, 0.0],
    }
    model = pf.Model(pf.OnePTwoCProblem(g, params), scheme, pf.STATIONARY)
    model.initialize()
    assembler = pf.GlobalAssembler(model, params={"numeric_difference_method": method})
    converged, _ = pf.run_stationary_model(model, assembler, _solver())
    assert converged
    mole_fraction = model.current_vector().reshape((-1, 2))[:, 1]
    assert np.all(mole_fraction >= -1e-8) and np.all(mole_fraction <= 1 + 1e-8)
    assert np.all(np.diff(mole_fraction) <= 1e-8)


@pytest.mark.parametrize("scheme", SCHEMES)
def test_transient_run_reaches_steady_state(scheme):
    """A weakly compressible fluid relaxes to the stationary solution within a few
    implicit time steps."""

    def model_of(time_scheme):
        g = pf.CartGrid([6], physdims=[1])
        g.compute_geometry()
        bc, values = _west_east_bc(g, 2, 1)
        params = {
            "fluid": pf.SlightlyCompressibleFluid(compressibility=1e-3),
            "porosity": 0.2,
            "bc": bc,
            "dirichlet_values": values,
            "initial_values": 1.0,
        }
        model = pf.Model(pf.OnePhaseProblem(g, params), scheme, time_scheme)
        model.initialize()
        return model

    stationary = model_of(pf.STATIONARY)
    pf.run_stationary_model(stationary, pf.GlobalAssembler(stationary), _solver())

    transient = model_of(pf.IMPLICIT_EULER)
    time_manager = pf.TimeManager([0, 1], 0.25, constant_dt=True)
    num_steps = pf.run_time_dependent_model(
        transient, pf.GlobalAssembler(transient), time_manager, _solver()
    )
    assert num_steps == 4
    assert np.isclose(transient.time, 1)
    assert np.allclose(
        transient.current_vector(), stationary.current_vector(), atol=1e-6
    )


@pytest.mark.parametrize("num_threads", [2, 3])
def test_threaded_assembly_gives_same_solution(num_threads):
    g = pf.CartGrid([4, 4], physdims=[1, 1])
    g.compute_geometry()
    bc, values = _west_east_bc(g, 2, 1)
    params = {
        "fluid": pf.SlightlyCompressibleFluid(compressibility=0.5),
        "bc": bc,
        "dirichlet_values": values,
        "initial_values": 1.0,
    }

    def solve(threads):
        model = pf.Model(pf.OnePhaseProblem(g, params), pf.BOX, pf.STATIONARY)
        model.initialize()
        assembler = pf.GlobalAssembler(model, params={"num_threads": threads})
        pf.run_stationary_model(model, assembler, _solver())
        return model.current_vector()

    assert np.allclose(solve(num_threads), solve(1), atol=1e-10)


@pytest.mark.skipped  # reason: slow
@pytest.mark.parametrize("scheme", SCHEMES)
def test_linear_pressure_3d(scheme):
    g = pf.CartGrid([8, 6, 6], physdims=[4, 3, 3])
    g.compute_geometry()
    bc, values = _west_east_bc(g, 1, 0)
    params = {
        "bc": bc,
        "dirichlet_values": values,
        "permeability": pf.SecondOrderTensor(np.ones(g.num_cells)),
    }
    model = pf.Model(pf.OnePhaseProblem(g, params), scheme, pf.STATIONARY)
    model.initialize()
    assembler = pf.GlobalAssembler(model, params={"num_threads": 4})
    converged, _ = pf.run_stationary_model(model, assembler, _solver())
    assert converged
    x = _dof_coordinates(model)
    assert np.allclose(model.current_vector(), 1 - x[0] / 4, atol=1e-7)
