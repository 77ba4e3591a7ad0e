"""Iteration-based control of the time step, and drivers of complete simulations.

The time step is adapted to the number of Newton iterations of the previous step:

    - If the iterations are at or below the lower end of the optimal iteration range,
      the time step is multiplied by the over-relaxation factor.
    - If the iterations are at or above the upper end of the range, the time step is
      multiplied by the under-relaxation factor.
    - Otherwise the time step is kept.

If the Newton solver failed, the step is recomputed with the time step multiplied by
the recomputation factor. Recomputation is refused if the time step already equals the
minimum time step, or if the number of consecutive recomputations is exhausted.

The new time step is finally clipped to ``[dt_min, dt_max]`` and shortened such that no
scheduled time is stepped over, in this order of precedence.

The approach follows

    Simunek, J., Van Genuchten, M. T., & Sejna, M. (2005). The HYDRUS-1D software
    package for simulating the one-dimensional movement of water, heat, and multiple
    solutes in variably-saturated media. University of California-Riverside Research
    Reports, 3, 1-240.

"""

from __future__ import annotations

import json
import logging
import warnings
from pathlib import Path
from typing import Optional, Union

import numpy as np
from numpy.typing import ArrayLike

from porefv.assembly.global_assembler import GlobalAssembler
from porefv.models.model import Model
from porefv.numerics.nonlinear_solvers import NewtonSolver
from porefv.parallel.ghost_sync import GhostSync
from porefv.utils.errors import AssemblyAbortError
from porefv.utils.logging import time_logger

logger = logging.getLogger(__name__)

module_sections = ["numerics"]

__all__ = ["TimeManager", "run_stationary_model", "run_time_dependent_model"]


class TimeManager:
    """Adaptive time step control.

    Parameters:
        schedule: Times the simulation must hit, including the initial and final time.
            At least two non-negative, strictly increasing times, e.g. ``[0, 1]`` or
            ``np.array([0, 10, 30, 50])``. With a constant time step, every scheduled
            time must be reachable by whole steps of length ``dt_init``.
        dt_init: Initial time step. Positive, and not larger than the final time.
        constant_dt: ``default=False``

            Bypass the adaptation. The time step is ``dt_init`` throughout.
        dt_min_max: ``default=None``

            Minimum and maximum time step. If not given, 0.1% and 10% of the final time.
            The limits and the relaxation factors must satisfy
            ``dt_min * over_relax < dt_max`` and ``dt_max * under_relax > dt_min``,
            otherwise the time step oscillates.
        iter_max: ``default=15``

            Maximum number of Newton iterations of a time step.
        iter_optimal_range: ``default=(4, 7)``

            Lower and upper end of the optimal number of iterations.
        iter_relax_factors: ``default=(0.7, 1.3)``

            Under-relaxation factor (below one) and over-relaxation factor (above one).
        recomp_factor: ``default=0.5``

            Factor, below one, applied to the time step of a failed step.
        recomp_max: ``default=10``

            Maximum number of consecutive recomputations.
        rtol: ``default=1e-10``

            Relative tolerance for comparisons of times.
        atol: ``default=1e-16``

            Absolute tolerance for comparisons of times.

    Example:
        time_manager = pf.TimeManager(
            schedule=[0, 10],
            dt_init=0.5,
            dt_min_max=(0.1, 2),
            iter_max=10,
            iter_optimal_range=(3, 8),
            iter_relax_factors=(0.9, 1.1),
            recomp_factor=0.1,
            recomp_max=5,
        )

    """

    def __init__(
        self,
        schedule: ArrayLike,
        dt_init: Union[int, float],
        constant_dt: bool = False,
        dt_min_max: Optional[tuple[Union[int, float], Union[int, float]]] = None,
        iter_max: int = 15,
        iter_optimal_range: tuple[int, int] = (4, 7),
        iter_relax_factors: tuple[float, float] = (0.7, 1.3),
        recomp_factor: float = 0.5,
        recomp_max: int = 10,
        rtol: float = 1e-10,
        atol: float = 1e-16,
    ) -> None:
        schedule = np.array(schedule)
        if np.size(schedule) < 2:
            raise ValueError("Expected schedule with at least two elements.")
        elif any(time < 0 for time in schedule):
            raise ValueError("Encountered at least one negative time in schedule.")
        elif not self._is_strictly_increasing(schedule):
            raise ValueError("Schedule must contain strictly increasing times.")

        if dt_init <= 0:
            raise ValueError("Initial time step must be positive.")
        elif dt_init > schedule[-1]:
            raise ValueError(
                "Initial time step cannot be larger than final simulation time."
            )

        self.rtol = rtol
        self.atol = atol

        dt_min_max_passed = dt_min_max
        if dt_min_max is None:
            dt_min_max = (0.001 * schedule[-1], 0.1 * schedule[-1])

        if not constant_dt:
            self._check_adaptation_parameters(
                dt_init,
                dt_min_max,
                dt_min_max_passed is not None,
                iter_max,
                iter_optimal_range,
                iter_relax_factors,
                recomp_factor,
                recomp_max,
            )
        else:
            sim_times = np.arange(schedule[0], schedule[-1] + dt_init, dt_init)
            if not self.is_schedule_in_simulated_times(
                schedule, sim_times, rtol=self.rtol, atol=self.atol
            ):
                raise ValueError(
                    "Mismatch between the time step and scheduled time. Make sure the"
                    " two are compatible, or consider adjusting the tolerances."
                )

        self.schedule = schedule
        self.time_init = schedule[0]
        self.time_final = schedule[-1]
        self.dt_init = dt_init
        self.dt_min_max = dt_min_max
        self.iter_max = iter_max
        self.iter_optimal_range = iter_optimal_range
        self.iter_relax_factors = iter_relax_factors
        self.recomp_factor = recomp_factor
        self.recomp_max = recomp_max
        self.is_constant = constant_dt

        self.time: Union[int, float] = self.time_init
        self.dt: Union[int, float] = self.dt_init
        self.time_index: int = 0

        # Number of consecutive recomputations
        self._recomp_num: int = 0
        # Index of the next scheduled time
        self._scheduled_idx: int = 1
        self._recomp_sol: bool = False
        self._iters: Optional[int] = None

    @staticmethod
    def _check_adaptation_parameters(
        dt_init: float,
        dt_min_max: tuple[float, float],
        dt_min_max_passed: bool,
        iter_max: int,
        iter_optimal_range: tuple[int, int],
        iter_relax_factors: tuple[float, float],
        recomp_factor: float,
        recomp_max: int,
    ) -> None:
        msg_unset = (
            "The limits were computed from the final simulation time, since "
            "`dt_min_max` was not given. Pass `dt_min_max` explicitly to use this "
            "initial time step."
        )
        suffix = "" if dt_min_max_passed else msg_unset
        if dt_init < dt_min_max[0]:
            raise ValueError(
                "Initial time step cannot be smaller than minimum time step. " + suffix
            )
        if dt_init > dt_min_max[1]:
            raise ValueError(
                "Initial time step cannot be larger than maximum time step. " + suffix
            )

        # iter_max = 1 is admissible, e.g. for linear problems.
        if iter_max <= 0:
            raise ValueError("Maximum number of iterations must be positive.")
        low, upp = iter_optimal_range
        if low > upp:
            raise ValueError(
                f"Lower endpoint '{low}' of optimal iteration range cannot be larger "
                f"than upper endpoint '{upp}'."
            )
        elif upp > iter_max:
            raise ValueError(
                f"Upper endpoint '{upp}' of optimal iteration range cannot be larger "
                f"than maximum number of iterations '{iter_max}'."
            )
        elif low < 0:
            raise ValueError(
                f"Lower endpoint '{low}' of optimal iteration range cannot be negative."
            )

        if iter_relax_factors[0] >= 1:
            raise ValueError("Expected under-relaxation factor < 1.")
        elif iter_relax_factors[1] <= 1:
            raise ValueError("Expected over-relaxation factor > 1.")

        msg_osc = (
            "The time step would oscillate for such a combination of parameters. See "
            "the documentation of `dt_min_max`."
        )
        if dt_min_max[0] * iter_relax_factors[1] > dt_min_max[1]:
            raise ValueError(
                "Encountered dt_min * over_relax_factor > dt_max. " + msg_osc
            )
        elif dt_min_max[1] * iter_relax_factors[0] < dt_min_max[0]:
            raise ValueError(
                "Encountered dt_max * under_relax_factor < dt_min. " + msg_osc
            )

        if recomp_factor >= 1:
            raise ValueError("Expected recomputation factor < 1.")
        if recomp_max <= 0:
            raise ValueError("Number of recomputation attempts must be > 0.")

    def __repr__(self) -> str:
        s = "Time step control with attributes:\n"
        s += "Initial and final simulation time = "
        s += f"({self.time_init}, {self.time_final})\n"
        s += f"Initial time step = {self.dt_init}\n"
        s += f"Minimum and maximum time steps = {self.dt_min_max}\n"
        s += f"Optimal iteration range = {self.iter_optimal_range}\n"
        s += f"Relaxation factors = {self.iter_relax_factors}\n"
        s += f"Recomputation factor = {self.recomp_factor}\n"
        s += f"Maximum recomputation attempts = {self.recomp_max}\n"
        s += f"Current time step and time are {self.dt} and {self.time}."
        return s

    def final_time_reached(self) -> bool:
        """Whether the final time has been reached or stepped over."""
        return self.time > self.time_final or np.isclose(
            self.time, self.time_final, rtol=self.rtol, atol=self.atol
        )

    def compute_time_step(
        self, iterations: Optional[int] = None, recompute_solution: bool = False
    ) -> Optional[float]:
        """Determine the next time step.

        Parameters:
            iterations: ``default=None``

                Number of Newton iterations of the completed step. Required unless the
                solution is recomputed or the time step is constant.
            recompute_solution: ``default=False``

                Whether the last step failed. The time is then reset to the start of
                the failed step, and the time step reduced.

        Raises:
            ValueError: If a failed step cannot be recomputed.

        Returns:
            The next time step, or None if the final time is reached.

        """
        self._recomp_sol = recompute_solution
        self._iters = iterations

        if self.final_time_reached() and not recompute_solution:
            return None

        if self.is_constant:
            if self._iters is not None:
                warnings.warn(
                    f"iterations '{self._iters}' has no effect if time step is "
                    "constant."
                )
            if self._recomp_sol:
                warnings.warn(
                    "recompute_solution=True has no effect if time step is constant."
                )
            return self.dt_init

        if not self._recomp_sol:
            self._adaptation_based_on_iterations(iterations=self._iters)
        else:
            self._adaptation_based_on_recomputation()

        self._correction_based_on_dt_min()
        self._correction_based_on_dt_max()
        self._correction_based_on_schedule()
        return self.dt

    def increase_time(self) -> None:
        self.time += self.dt

    def increase_time_index(self) -> None:
        self.time_index += 1

    def _adaptation_based_on_iterations(self, iterations: Optional[int]) -> None:
        if iterations is None:
            raise ValueError("Time step cannot be adapted without 'iterations'.")
        if iterations > self.iter_max:
            warnings.warn(
                f"The given number of iterations '{iterations}' is larger than the "
                f"maximum number of iterations '{self.iter_max}'. The time step is "
                "adapted nevertheless, since recompute_solution = False was given."
            )
        self._recomp_num = 0

        if iterations <= self.iter_optimal_range[0]:
            self.dt = self.dt * self.iter_relax_factors[1]
            logger.info(f"Relaxing time step. Next dt = {self.dt}.")
        elif iterations >= self.iter_optimal_range[1]:
            self.dt = self.dt * self.iter_relax_factors[0]
            logger.info(f"Restricting time step. Next dt = {self.dt}.")

    def _adaptation_based_on_recomputation(self) -> None:
        if self._recomp_num >= self.recomp_max:
            raise ValueError(
                f"Solution did not converge after {self.recomp_max} recomputing "
                "attempts."
            )
        # A reduction below dt_min would be undone by the correction to dt_min.
        if self.dt == self.dt_min_max[0]:
            raise ValueError(
                "Recomputation will not have any effect since the time step "
                f"achieved its minimum admissible value -> dt = dt_min = {self.dt}."
            )
        if self._iters is not None:
            warnings.warn("Number of iterations has no effect in recomputation.")

        self.time -= self.dt
        self.time_index -= 1
        self.dt *= self.recomp_factor
        self._recomp_num += 1
        # The schedule correction must consider the target of the failed step again.
        self._scheduled_idx = min(
            int(np.searchsorted(self.schedule, self.time, side="right")),
            len(self.schedule) - 1,
        )
        logger.warning(
            "Solution did not converge and will be recomputed. "
            f"Recomputing attempt #{self._recomp_num}. Next dt = {self.dt}."
        )

    def _correction_based_on_dt_min(self) -> None:
        if self.dt < self.dt_min_max[0]:
            self.dt = self.dt_min_max[0]
            logger.info(
                f"Calculated dt < dt_min. Using dt_min = {self.dt_min_max[0]} instead."
            )

    def _correction_based_on_dt_max(self) -> None:
        if self.dt > self.dt_min_max[1]:
            self.dt = self.dt_min_max[1]
            logger.info(
                f"Calculated dt > dt_max. Using dt_max = {self.dt_min_max[1]} instead."
            )

    def _correction_based_on_schedule(self) -> None:
        last = len(self.schedule) - 1
        # Skip the scheduled times reached by the completed steps
        while self._scheduled_idx < last and (
            self.schedule[self._scheduled_idx] < self.time
            or np.isclose(
                self.schedule[self._scheduled_idx],
                self.time,
                rtol=self.rtol,
                atol=self.atol,
            )
        ):
            self._scheduled_idx += 1
        schedule_time = self.schedule[self._scheduled_idx]
        if (self.time + self.dt) > schedule_time:
            self.dt = schedule_time - self.time
            if self._scheduled_idx < last:
                self._scheduled_idx += 1
                logger.info(
                    "Correcting time step to match scheduled time. "
                    f"Next dt = {self.dt}."
                )
            else:
                logger.info(
                    f"Correcting time step to match final time. Final dt = {self.dt}."
                )

    @staticmethod
    def _is_strictly_increasing(check_array: np.ndarray) -> bool:
        return all(a < b for a, b in zip(check_array, check_array[1:]))

    @staticmethod
    def is_schedule_in_simulated_times(
        schedule: np.ndarray,
        sim_times: np.ndarray,
        rtol: float = 1e-10,
        atol: float = 1e-16,
    ) -> bool:
        """Check if every scheduled time is hit by the simulated times, up to the
        tolerances."""
        ss = np.searchsorted(schedule[1:-1], sim_times, side="left")
        in1d = np.isclose(schedule[ss], sim_times, rtol=rtol, atol=atol) | np.isclose(
            schedule[ss + 1], sim_times, rtol=rtol, atol=atol
        )
        return schedule.size == np.sum(in1d)

    def write_time_information(self, path: Optional[Path] = None) -> None:
        """Append the current time and time step to the history, and store the
        history as json.

        Parameters:
            path: ``default=None``

                Target file. If not given, ``checkpoints/times.json``.

        """
        if not hasattr(self, "time_history"):
            self.time_history: list = []
        if not hasattr(self, "dt_history"):
            self.dt_history: list = []

        self.time_history.append(
            int(self.time) if isinstance(self.time, np.integer) else float(self.time)
        )
        self.dt_history.append(
            int(self.dt) if isinstance(self.dt, np.integer) else float(self.dt)
        )

        if path is None:
            path = Path("checkpoints") / Path("times.json")
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as out_file:
            json.dump({"time": self.time_history, "dt": self.dt_history}, out_file)

    def load_time_information(self, path: Optional[Path] = None) -> None:
        """Read a history written by :meth:`write_time_information`."""
        default_path = Path("checkpoints") / Path("times.json")
        with open(path if path is not None else default_path) as in_file:
            data = json.load(in_file)
            self.time_history = data["time"]
            self.dt_history = data["dt"]

    def set_from_history(self, time_index: int = -1) -> None:
        """Resume from an entry of the loaded history, and discard the later entries.

        Raises:
            ValueError: If no history is available.

        """
        if not hasattr(self, "time_history") or not hasattr(self, "dt_history"):
            raise ValueError(
                "The time manager does not hold information on previously used time "
                "and dt."
            )
        self.time = self.time_history[time_index]
        self.dt = self.dt_history[time_index]
        self.time_history = self.time_history[:time_index]
        self.dt_history = self.dt_history[:time_index]
        self._scheduled_idx = min(
            int(np.searchsorted(self.schedule, self.time, side="right")),
            len(self.schedule) - 1,
        )


def _sync(model: Model, ghost_sync: Optional[GhostSync]) -> None:
    if ghost_sync is not None:
        ghost_sync.sync_overlap(model)


@time_logger(sections=module_sections)
def run_stationary_model(
    model: Model,
    assembler: GlobalAssembler,
    solver: Optional[NewtonSolver] = None,
    ghost_sync: Optional[GhostSync] = None,
) -> tuple[bool, int]:
    """Solve a stationary problem, starting from the current solution of the model.

    Returns:
        Whether the Newton solver converged, and the number of iterations.

    """
    if solver is None:
        solver = NewtonSolver()
    converged, iterations = solver.solve(model, assembler, ghost_sync)
    if not converged:
        logger.warning(f"Stationary model did not converge in {iterations} iterations")
    return converged, iterations


@time_logger(sections=module_sections)
def run_time_dependent_model(
    model: Model,
    assembler: GlobalAssembler,
    time_manager: TimeManager,
    solver: Optional[NewtonSolver] = None,
    ghost_sync: Optional[GhostSync] = None,
) -> int:
    """Step a time dependent problem through the schedule of the time manager.

    A failed time step, either because the Newton solver did not converge or because
    the step reductions were exhausted for an invalid state, is recomputed with a
    reduced time step.

    Raises:
        ValueError: If a failed time step cannot be recomputed.
        AssemblyAbortError: If the assembly failed for another reason than an invalid
            state.
        SingularSystemError: If a linear system cannot be solved.

    Returns:
        The number of completed time steps.

    """
    if solver is None:
        solver = NewtonSolver()
    model.time = float(time_manager.time)
    num_steps = 0

    while not time_manager.final_time_reached():
        model.dt = float(time_manager.dt)
        time_manager.increase_time()
        time_manager.increase_time_index()
        logger.info(
            f"Time step {time_manager.time_index}: t = {time_manager.time}, "
            f"dt = {time_manager.dt}"
        )
        try:
            converged, iterations = solver.solve(model, assembler, ghost_sync)
        except AssemblyAbortError as err:
            if not err.recoverable:
                raise
            converged, iterations = False, solver.max_iterations

        if converged:
            model.advance_time_step()
            model.time = float(time_manager.time)
            _sync(model, ghost_sync)
            num_steps += 1
            if time_manager.is_constant:
                time_manager.compute_time_step()
            else:
                time_manager.compute_time_step(iterations=iterations)
        else:
            if time_manager.is_constant:
                raise ValueError(
                    f"Time step {time_manager.time_index} failed, and a constant time "
                    "step cannot be reduced."
                )
            model.reset_current()
            _sync(model, ghost_sync)
            time_manager.compute_time_step(recompute_solution=True)

    return num_steps
