"""Synchronization of the degrees of freedom shared between ranks.

Every rank stores the primary variables of all degrees of freedom in the global
numbering, but only the values of the degrees of freedom it owns are computed locally.
The degrees of freedom of the overlap elements which are owned by other ranks (ghost
degrees of freedom) must be pulled from their owners before the next assembly reads
them.

Ownership follows the partition of the cells. A degree of freedom located on a cell is
owned by the rank of the cell; a degree of freedom on a node shared by cells of several
ranks is owned by the lowest of these ranks.

"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from porefv.assembly.sparse_system import SparseSystem
from porefv.discretization.schemes import Scheme
from porefv.discretization.time_levels import TimeLevel
from porefv.grids.grid_manager import GridManager
from porefv.models.model import Model
from porefv.parallel.communicator import Communicator, SerialCommunicator
from porefv.utils.logging import time_logger

logger = logging.getLogger(__name__)

module_sections = ["parallel"]

__all__ = ["GhostSync", "dof_owners"]


def dof_owners(grid_manager: GridManager, scheme: Scheme) -> np.ndarray:
    """Rank owning each degree of freedom."""
    grid = grid_manager.grid
    partition = grid_manager.partition
    if scheme.dof_entity == "cell":
        return partition.copy()
    owners = np.full(scheme.num_dofs(grid), np.iinfo(int).max, dtype=int)
    for cell in range(grid.num_cells):
        dofs = scheme.element_dofs(grid, cell)
        owners[dofs] = np.minimum(owners[dofs], partition[cell])
    return owners


class GhostSync:
    """Exchange of ghost values between the ranks.

    The construction is collective: all ranks must construct their instance at the same
    time, since the ghost requests are exchanged.

    Parameters:
        grid_manager: View of the grid of the rank.
        scheme: Discretization scheme.
        communicator: ``default=None``

            Communicator of the rank. A serial communicator if not given.

    Raises:
        ValueError: If the communicator and the grid manager belong to different
            ranks, or if the overlap of the grid manager does not cover the stencil of
            the scheme.

    """

    def __init__(
        self,
        grid_manager: GridManager,
        scheme: Scheme,
        communicator: Optional[Communicator] = None,
    ) -> None:
        if communicator is None:
            communicator = SerialCommunicator()
        if communicator.rank != grid_manager.rank:
            raise ValueError(
                "The grid manager and the communicator belong to different ranks"
            )
        self.grid_manager = grid_manager
        self.scheme = scheme
        self.comm = communicator
        self._synced_version: Optional[int] = None
        self.setup()

    def __repr__(self) -> str:
        return (
            f"Ghost synchronization of rank {self.comm.rank} of {self.comm.size}: "
            f"{self.owned_dofs.size} owned and {self.ghost_dofs.size} ghost degrees of "
            "freedom"
        )

    @time_logger(sections=module_sections)
    def setup(self) -> None:
        """Determine owned and ghost degrees of freedom, and exchange the requests for
        ghost values with their owners."""
        gm = self.grid_manager
        gm.check_overlap(self.scheme.overlap_criterion)
        grid = gm.grid
        rank, size = self.comm.rank, self.comm.size
        self._topology_version = gm.topology_version
        self.dof_owner: np.ndarray = dof_owners(gm, self.scheme)
        self.owned_dofs: np.ndarray = np.flatnonzero(self.dof_owner == rank)

        visible_cells = np.hstack((gm.owned_cells(), gm.ghost_cells())).astype(int)
        visible = self.scheme.dofs_of_cells(grid, visible_cells)
        self.ghost_dofs: np.ndarray = np.setdiff1d(visible, self.owned_dofs)

        # Ghost values are requested from their owners.
        self._recv_dofs = [
            self.ghost_dofs[self.dof_owner[self.ghost_dofs] == r] for r in range(size)
        ]
        self._send_dofs = self.comm.exchange(self._recv_dofs)
        self._synced_version = None
        logger.debug(
            f"Rank {rank}: {self.owned_dofs.size} owned, {self.ghost_dofs.size} ghost "
            "degrees of freedom"
        )

    def _check_topology(self) -> None:
        self.grid_manager.check_topology_version(self._topology_version)

    def owned_rows(self, num_eq: int) -> np.ndarray:
        """Rows of the global system belonging to the owned degrees of freedom."""
        return (self.owned_dofs[:, None] * num_eq + np.arange(num_eq)).ravel()

    @time_logger(sections=module_sections)
    def sync_overlap(self, model: Model) -> None:
        """Pull the current values of the ghost degrees of freedom from their owners.

        Collective operation.

        """
        self._check_topology()
        current = model.solution[TimeLevel.CURRENT]
        received = self.comm.exchange([current[d] for d in self._send_dofs])
        for dofs, values in zip(self._recv_dofs, received):
            current[dofs] = values
        model.solution_version += 1
        self._synced_version = model.solution_version

    def is_synchronized(self, model: Model) -> bool:
        """True if the ghost values are synchronized with the current solution.

        Any change of the current solution after the last synchronization invalidates
        the ghost values, unless the rank has no ghost degrees of freedom.

        """
        if self.comm.size == 1 or self.ghost_dofs.size == 0:
            return True
        return self._synced_version == model.solution_version

    @time_logger(sections=module_sections)
    def redistribute(self, model: Model) -> None:
        """Repopulate the primary variables after the grid manager was load balanced.

        Every rank sends the values of the degrees of freedom it owned before the load
        balancing to all ranks, at all time levels. Afterwards, ownership and ghost
        requests are recomputed. Collective operation.

        """
        old_owned = self.owned_dofs
        levels = [model.solution[k][old_owned] for k in range(model.num_time_levels)]
        received = self.comm.all_gather((old_owned, levels))
        for dofs, values in received:
            for k in range(model.num_time_levels):
                model.solution[k][dofs] = values[k]
        model.solution_version += 1
        self.setup()
        self._synced_version = model.solution_version
        logger.info(
            f"Rank {self.comm.rank}: redistributed, now owning {self.owned_dofs.size} "
            "degrees of freedom"
        )

    @time_logger(sections=module_sections)
    def gather_system(
        self, system: Optional[SparseSystem], root: int = 0
    ) -> Optional[SparseSystem]:
        """Merge the owned rows of the systems of all ranks on the root.

        A rank whose assembly failed passes None. Collective operation.

        Returns:
            On the root, the global system, or None if any rank passed None. None on
            all other ranks.

        """
        payload = None
        if system is not None:
            rows = self.owned_rows(system.num_eq)
            indptr = system.matrix.indptr
            data = [system.matrix.data[indptr[r] : indptr[r + 1]] for r in rows]
            payload = (rows, data, system.rhs[rows])
        gathered = self.comm.gather(payload, root)
        if gathered is None or system is None or any(p is None for p in gathered):
            return None

        merged = system.copy()
        merged.zero()
        indptr = merged.matrix.indptr
        for rows, data, rhs in gathered:
            for r, values in zip(rows, data):
                merged.matrix.data[indptr[r] : indptr[r + 1]] = values
            merged.rhs[rows] = rhs
        return merged
