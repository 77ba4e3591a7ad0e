"""Distributed view of a grid.

A :class:`GridManager` presents the part of a grid that is visible to one rank of a
partitioned simulation: the elements owned by the rank (interior elements) and a layer
of elements owned by neighboring ranks (overlap elements). All ranks share the global
cell numbering of the underlying grid, local indices number the visible elements with
the interior elements first.

Redistribution of the cells between ranks is done by :meth:`GridManager.load_balance`.
This invalidates every index derived from the previous distribution; consumers store
:attr:`GridManager.topology_version` when they bind to the manager, and compare with
:meth:`GridManager.check_topology_version` before they use their cached indices.

"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

import porefv as pf
from porefv.grids import partition as part
from porefv.utils.errors import TopologyInvalidatedError
from porefv.utils.logging import time_logger

logger = logging.getLogger(__name__)

module_sections = ["grids", "parallel"]


class EntityKind(Enum):
    """Classification of the elements visible to a rank."""

    INTERIOR = "interior"
    """The element is owned by the rank."""
    OVERLAP = "overlap"
    """The element is owned by another rank, but is needed to assemble the
    equations of degrees of freedom close to the partition boundary."""


@dataclass(frozen=True)
class Element:
    """Handle of a mesh element, borrowed from the grid manager.

    The handle is only valid for the topology version it was created for.

    """

    index: int
    """Global cell index in the grid."""
    local_index: int
    """Index among the elements visible to the rank."""
    kind: EntityKind
    """Interior or overlap element."""


class GridManager:
    """The elements of a grid as seen from one rank of a partitioning.

    Parameters:
        grid: The global grid. Geometry is computed if necessary.
        partition: ``default=None``

            Rank of each cell, ``shape=(grid.num_cells,)``. If not given, all cells
            belong to rank 0.
        rank: ``default=0``

            The rank this view belongs to.
        overlap_criterion: ``default='face'``

            Neighborhood used to construct the overlap layer, see
            :func:`~porefv.grids.partition.overlap`.
        num_overlap_layers: ``default=1``

            Number of layers of overlap elements.

    """

    def __init__(
        self,
        grid: pf.Grid,
        partition: Optional[np.ndarray] = None,
        rank: int = 0,
        overlap_criterion: str = "face",
        num_overlap_layers: int = 1,
    ) -> None:
        if not hasattr(grid, "cell_volumes"):
            grid.compute_geometry()

        self.grid: pf.Grid = grid
        self.rank: int = rank
        self.overlap_criterion: str = overlap_criterion
        self.num_overlap_layers: int = num_overlap_layers

        self.topology_version: int = 0
        """Incremented every time the distribution of cells changes."""

        if partition is None:
            partition = np.zeros(grid.num_cells, dtype=int)
        self._set_partition(partition)

    def __repr__(self) -> str:
        return (
            f"Grid manager for rank {self.rank} of {self.num_partitions}, "
            f"topology version {self.topology_version}.\n"
            f"Number of interior elements {self._owned.size}\n"
            f"Number of overlap elements {self._ghosts.size}\n"
        )

    def _set_partition(self, partition: np.ndarray) -> None:
        partition = np.asarray(partition, dtype=int)
        if partition.shape != (self.grid.num_cells,):
            raise ValueError("The partition must assign one rank to each cell")
        if np.any(partition < 0):
            raise ValueError("Partition numbers must be non-negative")

        self.partition: np.ndarray = partition
        self.num_partitions: int = int(max(partition.max() + 1, self.rank + 1))

        self._owned = np.flatnonzero(partition == self.rank)
        if self.num_partitions > 1 and self._owned.size > 0:
            connected, components = part.grid_is_connected(self.grid, self._owned)
            if not connected:
                logger.warning(
                    f"The cells of rank {self.rank} form {len(components)} "
                    "disconnected subdomains"
                )
        if self.num_partitions > 1 and self.num_overlap_layers > 0:
            extended = part.overlap(
                self.grid, self._owned, self.num_overlap_layers, self.overlap_criterion
            )
            self._ghosts = np.setdiff1d(extended, self._owned, assume_unique=True)
        else:
            self._ghosts = np.zeros(0, dtype=int)

        self._elements = [
            Element(int(c), i, EntityKind.INTERIOR) for i, c in enumerate(self._owned)
        ] + [
            Element(int(c), self._owned.size + i, EntityKind.OVERLAP)
            for i, c in enumerate(self._ghosts)
        ]

    def owned_cells(self) -> np.ndarray:
        """Global indices of the cells owned by the rank."""
        return self._owned

    def ghost_cells(self) -> np.ndarray:
        """Global indices of the overlap cells visible to the rank."""
        return self._ghosts

    def owned_elements(self) -> list[Element]:
        """Handles of the interior elements."""
        return self._elements[: self._owned.size]

    def ghost_elements(self) -> list[Element]:
        """Handles of the overlap elements."""
        return self._elements[self._owned.size :]

    def elements(self, include_ghosts: bool = False) -> list[Element]:
        """Handles of the interior elements, optionally followed by the overlap
        elements."""
        if include_ghosts:
            return list(self._elements)
        return self.owned_elements()

    def owner(self, cell: int) -> int:
        """Rank owning a cell."""
        return int(self.partition[cell])

    def check_overlap(self, criterion: str) -> None:
        """Check that the overlap layer contains every element whose stencil reaches
        the degrees of freedom of the rank, for a discretization whose stencil is
        defined by ``criterion``.

        A node overlap contains the face overlap. A grid manager with a single
        partition has no overlap and satisfies every criterion.

        Raises:
            ValueError: If the overlap is too small.

        """
        if self.num_partitions == 1:
            return
        covers = {"face": ("face", "node"), "node": ("node",)}
        if self.num_overlap_layers < 1 or self.overlap_criterion not in covers.get(
            criterion, (criterion,)
        ):
            raise ValueError(
                f"The overlap of rank {self.rank} ({self.num_overlap_layers} layer(s) "
                f"by {self.overlap_criterion}) does not cover a stencil defined by "
                f"{criterion}"
            )

    def check_topology_version(self, version: int) -> None:
        """Check that indices cached at ``version`` are still valid.

        Raises:
            TopologyInvalidatedError: If the cells have been redistributed since.

        """
        if version != self.topology_version:
            raise TopologyInvalidatedError(
                f"Cached topology version {version} is outdated, the grid manager "
                f"of rank {self.rank} is at version {self.topology_version}"
            )

    @time_logger(sections=module_sections)
    def load_balance(self, new_partition: np.ndarray) -> None:
        """Redistribute the cells between the ranks.

        All element handles, local indices and cached data derived from the previous
        distribution are invalidated.

        Parameters:
            new_partition: Rank of each cell after redistribution.

        """
        old_owned = self._owned.size
        self._set_partition(new_partition)
        self.topology_version += 1
        logger.info(
            f"Rank {self.rank}: load balancing changed the number of interior "
            f"elements from {old_owned} to {self._owned.size}"
        )
