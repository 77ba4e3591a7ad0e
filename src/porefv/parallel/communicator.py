"""Communication between the ranks of a partitioned simulation.

The only collective operation the assembly needs is a personalized all-to-all exchange:
every rank posts one message per rank, and receives one message from every rank. The
exchange blocks until all ranks have posted. Gathering and broadcasting are expressed
through the exchange, unless the implementation has native collectives.

Three implementations are provided:

- :class:`SerialCommunicator`, for a single rank.
- :class:`MPICommunicator`, for ranks in separate processes. Requires ``mpi4py``,
  which can be installed with ``pip install porefv[mpi]``.
- :class:`InProcessCommunicator`, which runs several ranks in one process, each rank
  typically in its own thread. Every rank communicates through its
  :class:`RankHandle`.

"""

from __future__ import annotations

import abc
import logging
import threading
from typing import Any, Optional

logger = logging.getLogger(__name__)

__all__ = [
    "Communicator",
    "SerialCommunicator",
    "MPICommunicator",
    "InProcessCommunicator",
    "RankHandle",
]


class Communicator(abc.ABC):
    """Interface of the communication between ranks."""

    rank: int
    size: int

    @abc.abstractmethod
    def exchange(self, messages: list[Any]) -> list[Any]:
        """Personalized all-to-all exchange.

        Parameters:
            messages: One message per rank, ``messages[k]`` is sent to rank ``k``.

        Returns:
            One message per rank, element ``k`` was sent by rank ``k``.

        """

    def barrier(self) -> None:
        self.exchange([None] * self.size)

    def gather(self, value: Any, root: int = 0) -> Optional[list[Any]]:
        """Collect one value of every rank on the root. Other ranks get None."""
        messages = [value if k == root else None for k in range(self.size)]
        received = self.exchange(messages)
        return received if self.rank == root else None

    def broadcast(self, value: Any, root: int = 0) -> Any:
        """Distribute the value of the root to all ranks."""
        messages = [value if self.rank == root else None] * self.size
        return self.exchange(messages)[root]

    def all_gather(self, value: Any) -> list[Any]:
        return self.exchange([value] * self.size)


class SerialCommunicator(Communicator):
    """Communicator of a simulation with a single rank."""

    def __init__(self) -> None:
        self.rank = 0
        self.size = 1

    def __repr__(self) -> str:
        return "Serial communicator"

    def exchange(self, messages: list[Any]) -> list[Any]:
        if len(messages) != 1:
            raise ValueError("A serial communicator exchanges exactly one message")
        return list(messages)


class MPICommunicator(Communicator):
    """Ranks in separate processes, communicating through MPI.

    Messages are pickled by ``mpi4py``, so any picklable object, in particular numpy
    arrays, can be exchanged.

    Parameters:
        comm: ``default=None``

            An ``mpi4py.MPI.Comm``. ``MPI.COMM_WORLD`` if not given.

    Raises:
        ImportError: If no communicator is given and ``mpi4py`` is not available.

    Example:
        # Run with mpiexec -n 4 python script.py
        comm = MPICommunicator()
        gm = GridManager(g, partition, rank=comm.rank, overlap_criterion="node")
        ghost_sync = GhostSync(gm, scheme, comm)

    """

    def __init__(self, comm: Any = None) -> None:
        if comm is None:
            try:
                from mpi4py import MPI
            except ImportError:
                logger.error("Could not import mpi4py, MPI communication will not work")
                raise
            comm = MPI.COMM_WORLD
        self.comm = comm
        self.rank = comm.Get_rank()
        self.size = comm.Get_size()

    def __repr__(self) -> str:
        return f"MPI communicator, rank {self.rank} of {self.size}"

    def exchange(self, messages: list[Any]) -> list[Any]:
        if len(messages) != self.size:
            raise ValueError(
                f"Rank {self.rank} posted {len(messages)} messages, expected "
                f"{self.size}"
            )
        return self.comm.alltoall(list(messages))

    def barrier(self) -> None:
        self.comm.Barrier()

    def gather(self, value: Any, root: int = 0) -> Optional[list[Any]]:
        return self.comm.gather(value, root=root)

    def broadcast(self, value: Any, root: int = 0) -> Any:
        return self.comm.bcast(value, root=root)

    def all_gather(self, value: Any) -> list[Any]:
        return self.comm.allgather(value)


class InProcessCommunicator:
    """Several ranks in one process.

    Parameters:
        size: Number of ranks.
        timeout: ``default=30``

            Seconds a rank waits for the other ranks in an exchange, before a
            ``RuntimeError`` is raised.

    Example:
        comm = InProcessCommunicator(2)
        # Run each rank in its own thread
        threads = [threading.Thread(target=run, args=(comm.handle(r),)) for r in
                   range(2)]

    """

    def __init__(self, size: int, timeout: float = 30.0) -> None:
        if size < 1:
            raise ValueError("The number of ranks must be positive")
        self.size = size
        self.timeout = timeout
        self._cond = threading.Condition()
        self._generation = 0
        self._posted: list[Optional[list[Any]]] = [None] * size
        self._num_posted = 0
        self._results: list[list[Any]] = []
        self._handles = [RankHandle(self, r) for r in range(size)]

    def __repr__(self) -> str:
        return f"In-process communicator with {self.size} ranks"

    def handle(self, rank: int) -> RankHandle:
        return self._handles[rank]

    def handles(self) -> list[RankHandle]:
        return list(self._handles)

    def _exchange(self, rank: int, messages: list[Any]) -> list[Any]:
        if len(messages) != self.size:
            raise ValueError(
                f"Rank {rank} posted {len(messages)} messages, expected {self.size}"
            )
        with self._cond:
            if self._posted[rank] is not None:
                raise RuntimeError(f"Rank {rank} posted twice in the same exchange")
            generation = self._generation
            self._posted[rank] = list(messages)
            self._num_posted += 1
            if self._num_posted == self.size:
                posted = self._posted
                self._results = [
                    [posted[src][dst] for src in range(self.size)]
                    for dst in range(self.size)
                ]
                self._posted = [None] * self.size
                self._num_posted = 0
                self._generation += 1
                self._cond.notify_all()
            elif not self._cond.wait_for(
                lambda: self._generation != generation, timeout=self.timeout
            ):
                # Withdraw the post, the exchange did not take place.
                self._posted[rank] = None
                self._num_posted -= 1
                logger.error(f"Rank {rank} timed out in exchange {generation}")
                raise RuntimeError(
                    f"Rank {rank} waited more than {self.timeout} s for the other ranks"
                )
            return self._results[rank]


class RankHandle(Communicator):
    """The view of one rank on an :class:`InProcessCommunicator`."""

    def __init__(self, comm: InProcessCommunicator, rank: int) -> None:
        self._comm = comm
        self.rank = rank
        self.size = comm.size

    def __repr__(self) -> str:
        return f"Rank {self.rank} of {self.size}"

    def exchange(self, messages: list[Any]) -> list[Any]:
        return self._comm._exchange(self.rank, messages)
