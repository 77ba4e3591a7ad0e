"""Tests of the time step control and of the simulation drivers.

The tests of the time manager check the sanity of the input parameters and the
adaptation of the time step. The tests of the drivers use small one-dimensional
problems, and scripted solvers where the convergence behavior must be controlled.

"""
from pathlib import Path

import numpy as np
import pytest

import porefv as pf


class TestParameterInputs:
    """The following tests are written to check the sanity of the input parameters"""

    def test_default_parameters_and_attribute_initialization(self):
        time_manager = pf.TimeManager(schedule=[0, 1], dt_init=0.1)
        np.testing.assert_equal(time_manager.schedule, np.array([0, 1]))
        assert time_manager.time_init == 0
        assert time_manager.time_final == 1
        assert time_manager.dt_init == 0.1
        assert time_manager.dt_min_max == (0.001, 0.1)
        assert time_manager.iter_max == 15
        assert time_manager.iter_optimal_range == (4, 7)
        assert time_manager.iter_relax_factors == (0.7, 1.3)
        assert time_manager.recomp_factor == 0.5
        assert time_manager.recomp_max == 10
        assert time_manager.time == 0
        assert time_manager.dt == 0.1
        assert not time_manager.is_constant

    @pytest.mark.parametrize(
        "schedule", [(0, 0.5, 1), [0, 0.5, 1], np.array([0, 0.5, 1])]
    )
    def test_schedule_argument_type_compatibility(self, schedule):
        time_manager = pf.TimeManager(schedule=schedule, dt_init=0.01)
        assert isinstance(time_manager.schedule, np.ndarray)
        assert np.all(time_manager.schedule == np.array([0.0, 0.5, 1.0]))

    @pytest.mark.parametrize(
        "schedule, msg",
        [
            ([], "Expected schedule with at least two elements."),
            ([1], "Expected schedule with at least two elements."),
            ([-1, 10], "Encountered at least one negative time in schedule."),
            ([1, 2, -100, 3], "Encountered at least one negative time in schedule."),
            ([0, 1, 1, 2], "Schedule must contain strictly increasing times."),
            ([100, 200, 50], "Schedule must contain strictly increasing times."),
        ],
    )
    def test_invalid_schedule(self, schedule, msg):
        with pytest.raises(ValueError) as excinfo:
            pf.TimeManager(schedule=schedule, dt_init=0.1)
        assert msg in str(excinfo.value)

    @pytest.mark.parametrize(
        "schedule, dt_init",
        [
            ([0, 1], 1),
            ([0, 1, 2], 1),
            ([0, 0.05, 2.0, 4.0, 10.0], 0.05),
            ([5.0, 10.0, 60.0, 62.5, 70.0], 2.5),
        ],
    )
    def test_constant_dt_compatibility_with_schedule(self, schedule, dt_init):
        time_manager = pf.TimeManager(
            schedule=schedule, dt_init=dt_init, constant_dt=True
        )
        assert time_manager.is_constant

    @pytest.mark.parametrize(
        "schedule, dt_init",
        [
            ([0, 1], 0.4),
            ([0, 1], 0.3333),
            ([0, 0.4, 0.5, 0.8, 1], 0.2),
        ],
    )
    def test_incompatible_constant_dt_and_schedule(self, schedule, dt_init):
        with pytest.raises(ValueError, match="Mismatch between the time step"):
            pf.TimeManager(schedule=schedule, dt_init=dt_init, constant_dt=True)

    @pytest.mark.parametrize("dt_init", [-1, 0])
    def test_positive_initial_time_step(self, dt_init):
        with pytest.raises(ValueError, match="Initial time step must be positive."):
            pf.TimeManager(schedule=[0, 1], dt_init=dt_init)

    def test_initial_time_step_smaller_than_final_time(self):
        msg = "Initial time step cannot be larger than final simulation time."
        with pytest.raises(ValueError, match=msg):
            pf.TimeManager(schedule=[0, 1], dt_init=1.0001)

    @pytest.mark.parametrize(
        "dt_init, msg",
        [
            (0.0009, "Initial time step cannot be smaller than minimum time step."),
            (0.11, "Initial time step cannot be larger than maximum time step."),
        ],
    )
    def test_initial_time_step_within_limits(self, dt_init, msg):
        with pytest.raises(ValueError) as excinfo:
            pf.TimeManager(schedule=[0, 1], dt_init=dt_init)
        assert msg in str(excinfo.value)
        # The limits were not given, and the message says so
        assert "`dt_min_max` was not given" in str(excinfo.value)

    def test_explicit_limits_are_not_reported_as_unset(self):
        with pytest.raises(ValueError) as excinfo:
            pf.TimeManager(schedule=[0, 1], dt_init=0.05, dt_min_max=(0.1, 0.5))
        assert "`dt_min_max` was not given" not in str(excinfo.value)

    @pytest.mark.parametrize("iter_max", [0, -1])
    def test_max_number_of_iterations_positive(self, iter_max):
        msg = "Maximum number of iterations must be positive."
        with pytest.raises(ValueError, match=msg):
            pf.TimeManager(schedule=[0, 1], dt_init=0.1, iter_max=iter_max)

    @pytest.mark.parametrize(
        "iter_max, iter_optimal_range, msg",
        [
            (5, (3, 2), "Lower endpoint '3' of optimal iteration range cannot be"),
            (5, (2, 6), "Upper endpoint '6' of optimal iteration range cannot be"),
            (5, (-1, 2), "Lower endpoint '-1' of optimal iteration range cannot be"),
        ],
    )
    def test_optimal_iteration_range(self, iter_max, iter_optimal_range, msg):
        with pytest.raises(ValueError) as excinfo:
            pf.TimeManager(
                schedule=[0, 1],
                dt_init=0.1,
                iter_max=iter_max,
                iter_optimal_range=iter_optimal_range,
            )
        assert msg in str(excinfo.value)

    @pytest.mark.parametrize(
        "iter_relax_factors, msg",
        [
            ((1.0, 1.3), "Expected under-relaxation factor < 1."),
            ((1.05, 1.3), "Expected under-relaxation factor < 1."),
            ((0.7, 1.0), "Expected over-relaxation factor > 1."),
            ((0.7, 0.95), "Expected over-relaxation factor > 1."),
            ((0.9, 101), "Encountered dt_min * over_relax_factor > dt_max."),
            ((0.009, 1.3), "Encountered dt_max * under_relax_factor < dt_min."),
        ],
    )
    def test_relaxation_factors(self, iter_relax_factors, msg):
        with pytest.raises(ValueError) as excinfo:
            pf.TimeManager([0, 1], 0.1, iter_relax_factors=iter_relax_factors)
        assert msg in str(excinfo.value)

    @pytest.mark.parametrize("recomp_factor", [1, 1.05])
    def test_recomputation_factor_less_than_one(self, recomp_factor):
        with pytest.raises(ValueError, match="Expected recomputation factor < 1."):
            pf.TimeManager([0, 1], 0.1, recomp_factor=recomp_factor)

    @pytest.mark.parametrize("recomp_max", [-1, 0])
    def test_number_of_recomp_attempts_greater_than_zero(self, recomp_max):
        msg = "Number of recomputation attempts must be > 0."
        with pytest.raises(ValueError, match=msg):
            pf.TimeManager([0, 1], 0.1, recomp_max=recomp_max)


class TestTimeControl:
    """The following tests are written to check the overall behavior of the
    time-stepping algorithm"""

    @pytest.mark.parametrize("recompute_solution", [False, True])
    @pytest.mark.parametrize("time", [1, 2])
    def test_final_simulation_time(self, recompute_solution, time):
        """At or after the final time, no time step is returned unless the solution
        is recomputed."""
        time_manager = pf.TimeManager(schedule=[0, 1], dt_init=0.1)
        time_manager.time = time
        if recompute_solution:
            dt = time_manager.compute_time_step(recompute_solution=True)
            assert dt is not None
        else:
            dt = time_manager.compute_time_step(iterations=1000)
            assert dt is None

    @pytest.mark.parametrize(
        "schedule, dt_init, time, time_index",
        [
            ([0, 10], 1, 2, 0),
            ([0, pf.HOUR, 3 * pf.HOUR], 0.5 * pf.HOUR, 1.5 * pf.HOUR, 678),
        ],
    )
    def test_constant_time_step(self, schedule, dt_init, time, time_index):
        time_manager = pf.TimeManager(
            schedule=schedule, dt_init=dt_init, constant_dt=True
        )
        time_manager.time = time
        time_manager.time_index = time_index
        dt = time_manager.compute_time_step()
        assert dt == dt_init
        assert time_manager.time == time
        assert time_manager.time_index == time_index

    def test_warnings_for_constant_time_step(self):
        time_manager = pf.TimeManager([0, 1], 0.1, iter_max=10, constant_dt=True)
        with pytest.warns(UserWarning) as record:
            time_manager.compute_time_step(iterations=1)
        assert str(record[0].message) == (
            "iterations '1' has no effect if time step is constant."
        )
        with pytest.warns(UserWarning) as record:
            time_manager.compute_time_step(recompute_solution=True)
        assert str(record[0].message) == (
            "recompute_solution=True has no effect if time step is constant."
        )

    def test_non_recomputed_solution_conditions(self):
        time_manager = pf.TimeManager([0, 1], 0.1)
        time_manager.compute_time_step(iterations=5)
        assert not time_manager._recomp_sol
        # The counter of recomputations is reset after a successful step
        time_manager._recomp_num = 3
        time_manager.compute_time_step(iterations=5)
        assert time_manager._recomp_num == 0

    def test_recomputation_attempts_exhausted(self):
        time_manager = pf.TimeManager([0, 1], 0.1, recomp_max=5)
        time_manager._recomp_num = 5
        msg = "Solution did not converge after 5 recomputing attempts."
        with pytest.raises(ValueError, match=msg):
            time_manager.compute_time_step(recompute_solution=True)

    def test_recomputed_solutions(self):
        time_manager = pf.TimeManager([0, 100], 2, recomp_factor=0.5)
        time_manager.time = 5
        time_manager.time_index = 13
        time_manager.dt = 1
        time_manager._recomp_num = 6
        time_manager.compute_time_step(recompute_solution=True)
        # Time and index are reset to the start of the failed step, and the time step
        # is halved.
        assert time_manager.time == 4.0
        assert time_manager.time_index == 12
        assert time_manager.dt == 0.5
        assert time_manager._recomp_sol
        assert time_manager._recomp_num == 7

    def test_recomputed_time_step_below_dt_min(self):
        time_manager = pf.TimeManager([0, 100], 0.15, recomp_factor=0.5)
        time_manager.time = 5
        time_manager.compute_time_step(recompute_solution=True)
        assert time_manager.dt == time_manager.dt_min_max[0]

    def test_warning_when_iterations_is_given_and_recomputation_is_true(self):
        time_manager = pf.TimeManager([0, 1], 0.1, iter_max=10)
        with pytest.warns(UserWarning) as record:
            time_manager.compute_time_step(iterations=1, recompute_solution=True)
        assert str(record[0].message) == (
            "Number of iterations has no effect in recomputation."
        )

    def test_recomputation_with_dt_equal_to_dt_min(self):
        time_manager = pf.TimeManager(schedule=[0, 100], dt_init=1, dt_min_max=(1, 10))
        with pytest.raises(ValueError, match="Recomputation will not have any effect"):
            time_manager.compute_time_step(recompute_solution=True)

    def test_adaptation_without_iterations(self):
        time_manager = pf.TimeManager(schedule=[0, 100], dt_init=1)
        msg = "Time step cannot be adapted without 'iterations'."
        with pytest.raises(ValueError, match=msg):
            time_manager.compute_time_step()

    @pytest.mark.parametrize("iterations", [11, 100])
    def test_warning_iteration_is_greater_than_max_iter(self, iterations):
        time_manager = pf.TimeManager([0, 1], 0.1, iter_max=10)
        with pytest.warns(UserWarning) as record:
            time_manager.compute_time_step(iterations=iterations)
        assert f"'{iterations}' is larger than the maximum" in str(record[0].message)

    @pytest.mark.parametrize(
        "iterations, dt_expected",
        [(1, 1.3), (5, 1.3), (6, 1), (8, 1), (9, 0.7), (13, 0.7)],
    )
    def test_adaptation_based_on_iterations(self, iterations, dt_expected):
        time_manager = pf.TimeManager(
            [0, 100],
            2,
            iter_max=15,
            iter_optimal_range=(5, 9),
            iter_relax_factors=(0.7, 1.3),
        )
        time_manager.dt = 1
        time_manager.compute_time_step(iterations=iterations)
        assert np.isclose(time_manager.dt, dt_expected)

    @pytest.mark.parametrize("dt", [0.13, 0.1, 0.075])
    def test_time_step_less_than_dt_min(self, dt):
        time_manager = pf.TimeManager([0, 100], 2, iter_optimal_range=(4, 7))
        time_manager.dt = dt
        time_manager.compute_time_step(iterations=7)
        assert time_manager.dt == time_manager.dt_min_max[0]

    @pytest.mark.parametrize("dt", [9, 10, 15])
    def test_time_step_greater_than_dt_max(self, dt):
        time_manager = pf.TimeManager([0, 100], 2, iter_optimal_range=(4, 7))
        time_manager.dt = dt
        time_manager.compute_time_step(iterations=4)
        assert time_manager.dt == time_manager.dt_min_max[1]

    @pytest.mark.parametrize(
        "schedule, dt_init",
        [
            ([0, 1], 0.1),
            ([0, 10, 20, 30], 1),
            ([10, 11, 15, 16, 19, 20], 1),
            ([0, 0.01, pf.HOUR, 2 * pf.HOUR, 100 * pf.HOUR], 2 * pf.HOUR),
        ],
    )
    def test_hitting_schedule_times(self, schedule, dt_init):
        time_manager = pf.TimeManager(schedule, dt_init)
        for time in schedule[1:]:
            time_manager.time = 0.99 * time
            time_manager.dt = time_manager.dt_min_max[1]
            time_manager.compute_time_step(iterations=4)
            assert np.isclose(time, time_manager.time + time_manager.dt)

    @pytest.mark.parametrize("is_constant", [False, True])
    def test_update_time_and_index(self, is_constant):
        time_manager = pf.TimeManager(
            schedule=[0, 1], dt_init=0.1, constant_dt=is_constant
        )
        time_manager.time = 0.3
        time_manager.dt = 0.2
        time_manager.time_index = 13
        time_manager.increase_time()
        time_manager.increase_time_index()
        assert time_manager.time == 0.3 + 0.2
        assert time_manager.time_index == 14

    @pytest.mark.parametrize("constant_dt", [True, False])
    def test_time_step_match_schedule_exactly(self, constant_dt):
        """A time step which exactly hits a scheduled time must not produce a zero
        time step afterwards."""
        time_manager = pf.TimeManager(
            dt_init=1, dt_min_max=(0.1, 1), schedule=[0, 1, 2], constant_dt=constant_dt
        )
        while not time_manager.final_time_reached():
            time_manager.increase_time()
            time_manager.increase_time_index()
            if constant_dt:
                time_manager.compute_time_step()
            else:
                time_manager.compute_time_step(iterations=5)
            assert not np.allclose(time_manager.dt, 0)
        assert time_manager.time_index == 2

    def test_io_time_information(self, tmp_path):
        pth = Path(tmp_path) / "times.json"
        time_manager = pf.TimeManager(schedule=[0, 1], dt_init=0.1, constant_dt=True)
        for _ in range(10):
            time_manager.write_time_information(pth)
            time_manager.increase_time_index()
            time_manager.increase_time()

        assert np.allclose(time_manager.time_history, np.linspace(0, 0.9, 10))
        assert np.allclose(time_manager.dt_history, 10 * [0.1])

        new_time_manager = pf.TimeManager(
            schedule=[0, 1], dt_init=0.1, constant_dt=True
        )
        new_time_manager.load_time_information(pth)
        assert np.allclose(new_time_manager.time_history, np.linspace(0, 0.9, 10))

        # Resume from an entry, and discard the later history
        new_time_manager.set_from_history(5)
        assert np.isclose(new_time_manager.time, 0.5)
        assert np.isclose(new_time_manager.dt, 0.1)
        assert np.allclose(new_time_manager.time_history, [0, 0.1, 0.2, 0.3, 0.4])
        assert np.allclose(new_time_manager.dt_history, 5 * [0.1])

    def test_set_from_history_without_history(self):
        time_manager = pf.TimeManager(schedule=[0, 1], dt_init=0.1)
        with pytest.raises(ValueError):
            time_manager.set_from_history()


def _transient_model(time_scheme="implicit_euler"):
    """Compressible flow in 1d, with pressure 1 on the west and 0 on the east side."""
    g = pf.CartGrid([5], physdims=[1])
    g.compute_geometry()
    west, east = pf.face_on_side(g, ["west", "east"])
    values = np.zeros(g.num_faces)
    values[west] = 1
    params = {
        "fluid": pf.SlightlyCompressibleFluid(compressibility=0.1),
        "porosity": 0.2,
        "bc": pf.BoundaryCondition(g, np.r_[west, east], "dir"),
        "dirichlet_values": values,
    }
    model = pf.Model(pf.OnePhaseProblem(g, params), "ecfv", time_scheme)
    model.initialize()
    return model


class _ScriptedSolver:
    """Stand-in for the Newton solver, which returns, or raises, predefined results
    and records the time steps it was called with."""

    max_iterations = 10

    def __init__(self, script):
        self.script = list(script)
        self.dts = []

    def solve(self, model, assembler, ghost_sync=None):
        self.dts.append(model.dt)
        result = self.script.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.mark.parametrize("time_scheme", ["implicit_euler", "bdf2"])
def test_constant_time_steps(time_scheme):
    model = _transient_model(time_scheme)
    assembler = pf.GlobalAssembler(model)
    time_manager = pf.TimeManager([0, 1], 0.25, constant_dt=True)
    num_steps = pf.run_time_dependent_model(
        model, assembler, time_manager, pf.NewtonSolver({"nl_convergence_tol": 1e-6})
    )
    assert num_steps == 4
    assert time_manager.time_index == 4
    assert np.isclose(model.time, 1)
    # The pressure lies between the boundary values, and decreases from west to east
    p = model.current_vector()
    assert np.all(p > 0) and np.all(p < 1)
    assert np.all(np.diff(p) < 0)


def test_adaptive_time_steps_reach_final_time():
    model = _transient_model()
    assembler = pf.GlobalAssembler(model)
    time_manager = pf.TimeManager([0, 1], 0.1, dt_min_max=(0.01, 0.5))
    num_steps = pf.run_time_dependent_model(
        model, assembler, time_manager, pf.NewtonSolver({"nl_convergence_tol": 1e-6})
    )
    # Few Newton iterations per step let the time step grow
    assert num_steps < 10
    assert time_manager.final_time_reached()
    assert np.isclose(model.time, 1)


def test_failed_steps_are_recomputed():
    model = _transient_model()
    time_manager = pf.TimeManager(
        [0, 1], 0.5, dt_min_max=(0.1, 0.5), recomp_factor=0.5
    )
    invalid = pf.AssemblyAbortError("invalid", element=0, recoverable=True)
    solver = _ScriptedSolver([(False, 10), invalid] + [(True, 2)] * 10)
    num_steps = pf.run_time_dependent_model(model, None, time_manager, solver)

    # Two failures halve the time step twice, then it grows by the relaxation factor
    # until the final time cuts the last step.
    dt = [0.5, 0.25, 0.125, 0.1625, 0.21125, 0.274625]
    assert np.allclose(solver.dts[:6], dt)
    assert num_steps == len(solver.dts) - 2
    assert np.isclose(sum(solver.dts[2:]), 1)
    assert np.isclose(model.time, 1)


def test_non_recoverable_failure_is_raised():
    model = _transient_model()
    time_manager = pf.TimeManager([0, 1], 0.5, dt_min_max=(0.1, 0.5))
    failure = pf.AssemblyAbortError("broken", element=3, recoverable=False)
    solver = _ScriptedSolver([failure])
    with pytest.raises(pf.AssemblyAbortError):
        pf.run_time_dependent_model(model, None, time_manager, solver)


def test_failed_constant_time_step_is_fatal():
    model = _transient_model()
    time_manager = pf.TimeManager([0, 2], 1, constant_dt=True)
    solver = _ScriptedSolver([(True, 2), (False, 10)])
    with pytest.raises(ValueError, match="constant time step cannot be reduced"):
        pf.run_time_dependent_model(model, None, time_manager, solver)
    assert solver.dts == [1, 1]


def test_run_stationary_model():
    g = pf.CartGrid([4], physdims=[4])
    g.compute_geometry()
    west, east = pf.face_on_side(g, ["west", "east"])
    values = np.zeros(g.num_faces)
    values[west] = 2
    params = {
        "bc": pf.BoundaryCondition(g, np.r_[west, east], "dir"),
        "dirichlet_values": values,
    }
    model = pf.Model(pf.OnePhaseProblem(g, params), "ecfv", "stationary")
    model.initialize()
    converged, iterations = pf.run_stationary_model(
        model, pf.GlobalAssembler(model), pf.NewtonSolver({"nl_convergence_tol": 1e-6})
    )
    assert converged
    assert iterations <= 3
    assert np.allclose(model.current_vector(), 2 - g.cell_centers[0] / 2, atol=1e-6)
