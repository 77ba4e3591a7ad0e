"""Time levels of implicit time discretizations.

An implicit scheme needs the state at a fixed number of time levels: the current
iterate, the solution of the previous time step, and for multi-step schemes, older
solutions. The number of levels is fixed by the time discretization and constant over
a run.

"""

from __future__ import annotations

from enum import IntEnum
from typing import Callable, Generic, TypeVar

import numpy as np

import porefv as pf

__all__ = ["TimeLevel", "TimeHistory", "history_size", "time_derivative_weights"]

T = TypeVar("T")


class TimeLevel(IntEnum):
    """Index of a time level."""

    CURRENT = 0
    """The current iterate of the nonlinear solver."""
    PREVIOUS = 1
    """The converged solution of the previous time step."""
    PRIOR_TO_PREVIOUS = 2
    """The converged solution of the time step before the previous one."""


_HISTORY_SIZE = {
    pf.STATIONARY: 1,
    pf.IMPLICIT_EULER: 2,
    pf.BDF2: 3,
}


def history_size(time_scheme: str) -> int:
    """Number of time levels needed by a time discretization.

    Raises:
        ValueError: If the time discretization is unknown.

    """
    try:
        return _HISTORY_SIZE[time_scheme]
    except KeyError as err:
        raise ValueError(f"Unknown time discretization {time_scheme}") from err


def time_derivative_weights(
    time_scheme: str, dt: float, dt_previous=None
) -> np.ndarray:
    """Weights of the storage terms at each time level in the discrete time derivative.

    The discrete derivative of a stored quantity ``S`` is ``sum_k w[k] * S[k]``, with
    ``k`` running over the time levels.

    Parameters:
        time_scheme: The time discretization.
        dt: Current time step.
        dt_previous: ``default=None``

            Previous time step, used by the variable step BDF2 formula. If None, BDF2
            falls back to implicit Euler, which is the case for the first step.

    Returns:
        One weight per time level of the scheme.

    """
    if time_scheme == pf.STATIONARY:
        return np.zeros(1)
    if dt <= 0:
        raise ValueError("The time step must be positive")
    if time_scheme == pf.IMPLICIT_EULER:
        return np.array([1.0, -1.0]) / dt
    if time_scheme == pf.BDF2:
        if dt_previous is None:
            return np.array([1.0, -1.0, 0.0]) / dt
        omega = dt / dt_previous
        return (
            np.array(
                [
                    (1 + 2 * omega) / (1 + omega),
                    -(1 + omega),
                    omega**2 / (1 + omega),
                ]
            )
            / dt
        )
    raise ValueError(f"Unknown time discretization {time_scheme}")


class TimeHistory(Generic[T]):
    """Fixed-capacity store of one object per time level.

    Parameters:
        capacity: Number of time levels, see :func:`history_size`.
        factory: Creates the object of a single level.

    """

    def __init__(self, capacity: int, factory: Callable[[], T]) -> None:
        if not 1 <= capacity <= len(TimeLevel):
            raise ValueError(
                f"The capacity must be between 1 and {len(TimeLevel)}, got {capacity}"
            )
        self.capacity: int = capacity
        self._slots: list[T] = [factory() for _ in range(capacity)]
        self._factory = factory

    def _check(self, level: int) -> None:
        if not 0 <= level < self.capacity:
            raise IndexError(
                f"Time level {level} is outside the history of size {self.capacity}"
            )

    def __getitem__(self, level: int) -> T:
        self._check(level)
        return self._slots[level]

    def __setitem__(self, level: int, value: T) -> None:
        self._check(level)
        self._slots[level] = value

    def __len__(self) -> int:
        return self.capacity

    def shift(self) -> None:
        """Rotate the levels at the end of a converged time step.

        After the shift, ``PREVIOUS`` holds the old ``CURRENT``, and so on. The oldest
        level is recycled as the new ``CURRENT``, which is initialized as a copy of the
        old ``CURRENT`` when the slots are arrays or support ``copy_from``. Other
        objects are replaced by a new one from the factory.

        """
        if self.capacity == 1:
            return
        self._slots = [self._slots[-1]] + self._slots[:-1]
        current, previous = self._slots[0], self._slots[1]
        if isinstance(current, np.ndarray):
            np.copyto(current, previous)
        elif hasattr(current, "copy_from"):
            current.copy_from(previous)
        else:
            self._slots[0] = self._factory()
