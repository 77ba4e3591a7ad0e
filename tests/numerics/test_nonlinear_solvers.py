"""Tests of the Newton solver, with scripted assemblers controlling the linear
systems, and with small flow problems."""
import numpy as np
import pytest
import scipy.sparse as sps

import porefv as pf


def _system(rhs, matrix=None):
    rhs = np.atleast_1d(np.asarray(rhs, dtype=float))
    system = pf.SparseSystem(sps.csr_matrix((rhs.size, rhs.size)), 1)
    if matrix is None:
        matrix = np.eye(rhs.size)
    for i in range(rhs.size):
        for j in range(rhs.size):
            if matrix[i, j] != 0:
                system.matrix[i, j] = matrix[i, j]
    system.rhs[:] = rhs
    return system


class _ScriptedAssembler:
    """Returns predefined systems, or raises predefined errors, one per call."""

    def __init__(self, script):
        self.script = list(script)
        self.num_calls = 0

    def assemble(self):
        self.num_calls += 1
        result = self.script.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class _StateModel:
    """Minimal holder of a current solution vector."""

    def __init__(self, x):
        self.x = np.asarray(x, dtype=float)

    def current_vector(self):
        return self.x.copy()

    def set_solution(self, values):
        self.x = np.asarray(values, dtype=float).copy()

    def update_solution(self, increment):
        self.x = self.x + increment


def _invalid_state_abort():
    try:
        raise pf.InvalidStateError("mole fraction", 1.5)
    except pf.InvalidStateError as err:
        abort = pf.AssemblyAbortError("Assembly failed", element=0)
        abort.__cause__ = err
    return abort


def test_defaults():
    solver = pf.NewtonSolver()
    assert solver.max_iterations == 10
    assert solver.nl_convergence_tol == 1e-10
    assert solver.step_reduction_factor == 0.5
    assert solver.max_step_reductions == 5


@pytest.mark.parametrize("factor", [0, 1, 1.5])
def test_invalid_step_reduction_factor(factor):
    with pytest.raises(ValueError):
        pf.NewtonSolver({"step_reduction_factor": factor})


def test_converged_at_initial_guess():
    model = _StateModel([1.0])
    assembler = _ScriptedAssembler([_system([0.0])])
    converged, iterations = pf.NewtonSolver().solve(model, assembler)
    assert converged and iterations == 1
    assert model.x[0] == 1


def test_step_reduction_after_invalid_state():
    """The first increment leads to an invalid state. The step is halved, and the
    assembly at the reduced iterate succeeds."""
    model = _StateModel([0.0])
    assembler = _ScriptedAssembler(
        [_system([2.0]), _invalid_state_abort(), _system([0.0])]
    )
    converged, iterations = pf.NewtonSolver().solve(model, assembler)
    assert converged
    assert iterations == 2
    assert assembler.num_calls == 3
    assert np.isclose(model.x[0], 1.0)


def test_step_reductions_exhausted():
    model = _StateModel([0.0])
    script = [_system([2.0])] + [_invalid_state_abort() for _ in range(3)]
    solver = pf.NewtonSolver({"max_step_reductions": 2})
    with pytest.raises(pf.AssemblyAbortError) as excinfo:
        solver.solve(model, _ScriptedAssembler(script))
    assert excinfo.value.recoverable
    # The iterate was reduced twice, to a quarter of the full step
    assert np.isclose(model.x[0], 0.5)


def test_invalid_initial_guess_is_raised():
    """Without a previous increment, there is no step to reduce."""
    model = _StateModel([0.0])
    with pytest.raises(pf.AssemblyAbortError):
        pf.NewtonSolver().solve(model, _ScriptedAssembler([_invalid_state_abort()]))


def test_non_recoverable_failure_is_raised():
    model = _StateModel([0.0])
    failure = pf.AssemblyAbortError("broken", element=2, recoverable=False)
    assembler = _ScriptedAssembler([_system([2.0]), failure])
    with pytest.raises(pf.AssemblyAbortError) as excinfo:
        pf.NewtonSolver().solve(model, assembler)
    assert excinfo.value.element == 2
    assert not excinfo.value.recoverable
    assert assembler.num_calls == 2


def test_divergence():
    model = _StateModel([0.0])
    assembler = _ScriptedAssembler([_system([1e6])])
    converged, iterations = pf.NewtonSolver().solve(model, assembler)
    assert not converged
    assert iterations == 1


def test_no_convergence_within_max_iterations():
    model = _StateModel([0.0])
    assembler = _ScriptedAssembler([_system([1.0]) for _ in range(3)])
    solver = pf.NewtonSolver({"max_iterations": 3})
    converged, iterations = solver.solve(model, assembler)
    assert not converged
    assert iterations == 3
    assert np.isclose(model.x[0], 3)


def test_singular_system_is_raised():
    model = _StateModel([0.0, 0.0])
    system = _system([1.0, 1.0], matrix=np.array([[1.0, 0], [0, 0]]))
    with pytest.raises(pf.SingularSystemError):
        pf.NewtonSolver().solve(model, _ScriptedAssembler([system]))


@pytest.mark.parametrize("scheme", ["ecfv", "box"])
def test_compressible_flow(scheme):
    """The Newton solver converges quadratically for compressible flow. The mass flux
    is constant along a one-dimensional domain."""
    g = pf.CartGrid([6], physdims=[1])
    g.compute_geometry()
    west, east = pf.face_on_side(g, ["west", "east"])
    values = np.zeros(g.num_faces)
    values[west] = 2
    params = {
        "fluid": pf.SlightlyCompressibleFluid(compressibility=0.5),
        "bc": pf.BoundaryCondition(g, np.r_[west, east], "dir"),
        "dirichlet_values": values,
        "initial_values": 1.0,
    }
    model = pf.Model(pf.OnePhaseProblem(g, params), scheme, "stationary")
    model.initialize()
    solver = pf.NewtonSolver({"nl_convergence_tol": 1e-8})
    converged, iterations = solver.solve(model, pf.GlobalAssembler(model))
    assert converged
    assert iterations < 8
    p = model.current_vector()
    assert np.all(np.diff(p) < 0)
    assert np.all(p >= -1e-8) and np.all(p <= 2 + 1e-8)
