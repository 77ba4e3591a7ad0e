"""Exception classes raised by the assembly engine.

The classes distinguish between failures which the nonlinear solver may recover from
(an iterate outside the physical domain) and failures which leave the caller with no
usable linear system.

"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "PoreFVError",
    "InvalidStateError",
    "AssemblyAbortError",
    "SingularSystemError",
    "TopologyInvalidatedError",
]


class PoreFVError(Exception):
    """Base class of all exceptions raised by porefv."""


class InvalidStateError(PoreFVError, ValueError):
    """A physical quantity was evaluated outside of its valid domain.

    Typical examples are a density evaluated for a negative absolute temperature, or a
    mole fraction outside the unit interval. The error is recoverable by the nonlinear
    solver, e.g. by reducing the Newton step, but never by the assembly itself.

    Parameters:
        quantity: Name of the offending quantity.
        value: The value which was found to be invalid.
        message: ``default=None``

            Additional description. If not given, a standard message is composed.

    """

    def __init__(
        self, quantity: str, value: float, message: Optional[str] = None
    ) -> None:
        self.quantity = quantity
        self.value = value
        if message is None:
            message = f"Invalid state: {quantity} = {value}"
        super().__init__(message)


class AssemblyAbortError(PoreFVError):
    """An element-local failure aborted the assembly pass.

    The partially assembled matrix and vector are discarded before the error is raised.
    The original exception is available as ``__cause__``.

    Parameters:
        message: Description of the failure.
        element: ``default=None``

            Global index of the element being assembled when the failure occurred.
        recoverable: ``default=None``

            Whether the nonlinear solver may recover, for failures reported by other
            ranks, where the cause is not available.

    """

    def __init__(
        self,
        message: str,
        element: Optional[int] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        self.element = element
        self._recoverable = recoverable
        super().__init__(message)

    @property
    def recoverable(self) -> bool:
        """True if the pass was aborted because of an invalid physical state.

        Unless given explicitly, this is decided from the cause of the error.

        """
        if self._recoverable is not None:
            return self._recoverable
        return isinstance(self.__cause__, InvalidStateError)


class SingularSystemError(PoreFVError):
    """The linear solver detected a singular system.

    For problems with Neumann conditions on the whole boundary, the pressure is only
    determined up to a constant. Use
    :meth:`~porefv.assembly.global_assembler.GlobalAssembler.set_hard_constraint`
    to remove the null space.

    """


class TopologyInvalidatedError(PoreFVError):
    """Assembly was attempted on cached indices that were invalidated by a load
    balancing step.

    Call ``rebind()`` on the affected assembler (or construct new element contexts)
    after :meth:`~porefv.grids.grid_manager.GridManager.load_balance`.

    """
