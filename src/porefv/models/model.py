"""Storage of the primary variables of a simulation.

A :class:`Model` combines a problem, a discretization scheme and a time discretization,
and owns the global vectors of primary variables at every time level needed by the
time discretization. The assembly reads the primary variables from the model; the
nonlinear solver writes the updates into it.

"""

from __future__ import annotations

import logging
from typing import Optional, Union

import numpy as np

import porefv as pf
from porefv.discretization.schemes import Scheme, get_scheme
from porefv.discretization.time_levels import (
    TimeHistory,
    TimeLevel,
    history_size,
    time_derivative_weights,
)
from porefv.models.protocol import Problem
from porefv.models.volume_variables import VolumeVariables

logger = logging.getLogger(__name__)

__all__ = ["Model"]


class Model:
    """Primary variables and time state of a simulation.

    Parameters:
        problem: The physical problem.
        scheme: ``default='ecfv'``

            Discretization scheme, either as an instance or by its keyword.
        time_scheme: ``default='implicit_euler'``

            Time discretization, one of ``'stationary'``, ``'implicit_euler'`` and
            ``'bdf2'``.
        params: ``default=None``

            Further options:

            - ``"dt"``: Time step, default 1.
            - ``"time"``: Initial time, default 0.
            - ``"store_hints"``: Keep a copy of the volume variables of every degree of
              freedom, used to seed iterative closure relations. Default False.

    """

    def __init__(
        self,
        problem: Problem,
        scheme: Union[str, Scheme] = pf.CELL_CENTERED,
        time_scheme: str = pf.IMPLICIT_EULER,
        params: Optional[dict] = None,
    ) -> None:
        if params is None:
            params = {}
        if isinstance(scheme, str):
            scheme = get_scheme(scheme)
        self.problem = problem
        self.grid: pf.Grid = problem.grid
        self.scheme: Scheme = scheme
        self.time_scheme: str = time_scheme
        self.num_time_levels: int = history_size(time_scheme)
        self.num_eq: int = problem.num_eq
        self.num_dofs: int = scheme.num_dofs(self.grid)

        self.time: float = params.get("time", 0.0)
        self.dt: float = params.get("dt", 1.0)
        self.dt_previous: Optional[float] = None
        """Length of the previous time step, None before the first step is
        completed."""
        self.store_hints: bool = params.get("store_hints", False)

        shape = (self.num_dofs, self.num_eq)
        self.solution: TimeHistory[np.ndarray] = TimeHistory(
            self.num_time_levels, lambda: np.zeros(shape)
        )
        self.hints: TimeHistory[list[Optional[VolumeVariables]]] = TimeHistory(
            self.num_time_levels, lambda: [None] * self.num_dofs
        )
        self.solution_version: int = 0
        """Incremented every time the current solution changes."""

    def __repr__(self) -> str:
        return (
            f"Model of {type(self.problem).__name__}, {self.scheme.name} scheme, "
            f"{self.time_scheme} time discretization, {self.num_dofs} degrees of "
            f"freedom with {self.num_eq} equation(s) each"
        )

    @property
    def time_weights(self) -> np.ndarray:
        """Weights of the time levels in the discrete time derivative."""
        return time_derivative_weights(self.time_scheme, self.dt, self.dt_previous)

    def initialize(self) -> None:
        """Set all time levels to the initial values of the problem."""
        x = self.scheme.dof_coordinates(self.grid)
        values = np.asarray(self.problem.initial_values(x), dtype=float)
        for level in range(self.num_time_levels):
            self.solution[level][:] = values
        self.solution_version += 1
        logger.debug(f"Initialized {self.num_dofs} degrees of freedom")

    def primary_vars(self, dof: int, time_level: int = TimeLevel.CURRENT) -> np.ndarray:
        return self.solution[time_level][dof]

    def current_vector(self) -> np.ndarray:
        """The current solution as a flat vector, ordered by degree of freedom, then
        equation."""
        return self.solution[TimeLevel.CURRENT].ravel().copy()

    def set_solution(self, values: np.ndarray) -> None:
        """Overwrite the current solution with a flat vector or a
        ``(num_dofs, num_eq)`` array."""
        current = self.solution[TimeLevel.CURRENT]
        current[:] = np.reshape(values, current.shape)
        self.solution_version += 1

    def update_solution(self, increment: np.ndarray) -> None:
        """Add a Newton increment, given as flat vector, to the current solution."""
        current = self.solution[TimeLevel.CURRENT]
        current += np.reshape(increment, current.shape)
        self.solution_version += 1

    def hint(self, dof: int, time_level: int) -> Optional[VolumeVariables]:
        return self.hints[time_level][dof]

    def set_hint(self, dof: int, time_level: int, vol_vars: VolumeVariables) -> None:
        slot = self.hints[time_level]
        if slot[dof] is None:
            slot[dof] = vol_vars.copy()
        else:
            slot[dof].copy_from(vol_vars)

    def advance_time_step(self) -> None:
        """Accept the current solution as the solution of the completed time step.

        The history is shifted, and the time is advanced by the time step.

        """
        self.solution.shift()
        self.hints.shift()
        self.time += self.dt
        self.dt_previous = self.dt
        self.solution_version += 1
        logger.info(f"Completed time step, time is now {self.time}")

    def reset_current(self) -> None:
        """Discard the current iterate and start again from the previous solution.

        For stationary problems, where there is no previous level, this is a no-op.

        """
        if self.num_time_levels > 1:
            np.copyto(
                self.solution[TimeLevel.CURRENT], self.solution[TimeLevel.PREVIOUS]
            )
            self.solution_version += 1
