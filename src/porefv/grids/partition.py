"""Partitioning of logically Cartesian grids into subdomains owned by different ranks,
and construction of the overlap layers around a subdomain.

Partitions of general grids are expected from an external partitioner; any vector
assigning a rank to each cell can be passed to
:class:`~porefv.grids.grid_manager.GridManager`. The connectivity of the resulting
subdomains can be checked with :func:`grid_is_connected`.

"""
from __future__ import annotations

import logging
from typing import Iterator, Optional

import networkx as nx
import numpy as np
import scipy.sparse as sps

import porefv as pf

logger = logging.getLogger(__name__)


def partition_structured(
    g: pf.TensorGrid, num_part: int = 1, coarse_dims: Optional[np.ndarray] = None
) -> np.ndarray:
    """Define a partitioning of a grid based on logical Cartesian indexing.

    The coarse grid can be specified either by its Cartesian dimensions ``coarse_dims``,
    or by its total number of partitions ``num_part``. In the latter case, a
    partitioning will be inferred from the fine-scale Cartesian dimensions, in a way
    that gives roughly the same number of cells in each direction.

    Parameters:
        g: Grid to be partitioned. Must have the attribute ``cart_dims``.
        num_part: ``default=1``

            Number of partitions.
        coarse_dims: ``default=None``

            Cartesian dimensions of the coarse grid.

    Raises:
        ValueError: If both ``coarse_dims`` and ``num_part`` are ``None``.

    Returns:
        Partition vector with ``shape=(g.num_cells,)``. The partitions are numbered
        lexicographically, with the x-index running fastest.

    """
    if (coarse_dims is None) and (num_part is None):
        raise ValueError(
            "Either coarse dimensions or number of coarse cells must be specified"
        )

    fine_dims: np.ndarray = g.cart_dims
    if coarse_dims is None:
        coarse_dims = determine_coarse_dimensions(num_part, fine_dims)
    coarse_dims = np.asarray(coarse_dims, dtype=int)

    # Number of fine cells per coarse cell
    fine_per_coarse = np.floor(fine_dims / coarse_dims).astype(int)

    ind = []
    for i in range(g.dim):
        # The last coarse cell absorbs the remainder of the fine cells.
        loc = np.arange(fine_dims[i]) // fine_per_coarse[i]
        ind.append(np.minimum(loc, coarse_dims[i] - 1))

    mesh = np.meshgrid(*ind, indexing="ij")
    fine_ind = [m.ravel(order="F") for m in mesh]
    return np.ravel_multi_index(fine_ind, tuple(coarse_dims), order="F").astype(int)


def determine_coarse_dimensions(target: int, fine_size: np.ndarray) -> np.ndarray:
    """Determine the Cartesian dimensions of a coarse partitioning of a logically
    Cartesian grid.

    Among all coarse dimensions which do not exceed the fine dimensions, the ones with a
    number of coarse cells closest to the target are selected. Ties are broken in favor
    of similar numbers of coarse cells in all directions.

    Parameters:
        target: Target number of coarse cells.
        fine_size: Number of fine-scale cells in each dimension.

    Returns:
        Coarse dimension sizes.

    """
    fine_size = np.asarray(fine_size, dtype=int)
    target = int(max(1, min(target, fine_size.prod())))

    def candidates(
        head: tuple[int, ...], remaining: float
    ) -> Iterator[tuple[int, ...]]:
        nd = len(head)
        if nd == fine_size.size - 1:
            # The last dimension takes the remaining factor, rounded both ways.
            for last in sorted({np.floor(remaining), np.ceil(remaining)}):
                yield head + (int(np.clip(last, 1, fine_size[-1])),)
            return
        for c in range(1, int(min(fine_size[nd], np.ceil(remaining))) + 1):
            yield from candidates(head + (c,), remaining / c)

    def score(dims: tuple[int, ...]) -> tuple[int, float]:
        return abs(target - int(np.prod(dims))), max(dims) / min(dims)

    return np.array(min(candidates((), float(target)), key=score), dtype=int)


def overlap(
    g: pf.Grid, cell_ind: np.ndarray, num_layers: int, criterion: str = "node"
) -> np.ndarray:
    """Finds an extended set of cells that forms an overlap.

    The cell set is increased by including all neighboring cells of the existing set.
    When multiple layers are asked for, this process is repeated.

    Example:

        >>> import numpy as np
        >>> import porefv as pf
        >>> g = pf.CartGrid([5, 5])
        >>> pf.partition.overlap(g, np.array([0, 1, 5, 6]), 1)
        array([ 0,  1,  2,  5,  6,  7, 10, 11, 12])

    Parameters:
        g: The grid.
        cell_ind: Cell indices of the initial cell set.
        num_layers: Number of overlap layers.
        criterion: ``default='node'``

            Which definition of neighborhood to apply:

            - ``'face'``: Each layer will add cells that share a face with the active
              set. This is the stencil of the cell-centered scheme.
            - ``'node'``: Each layer will add cells sharing a vertex with the active
              set. This is the stencil of the box scheme.

    Raises:
        ValueError: If the criterion is unknown.

    Returns:
        Sorted indices of the extended cell set.

    """
    active_cells = np.zeros(g.num_cells, dtype=bool)
    active_cells[cell_ind] = True

    criterion = criterion.lower().strip()
    if criterion == "node":
        conn = g.cell_nodes().astype(int)
    elif criterion == "face":
        cf = g.cell_faces
        conn = sps.csc_matrix((np.ones_like(cf.data), cf.indices, cf.indptr))
    else:
        raise ValueError(f"Unknown overlap criterion {criterion}")

    for _ in range(num_layers):
        active_entities = (conn @ active_cells.astype(int)) > 0
        active_cells = (conn.T @ active_entities.astype(int)) > 0

    return np.flatnonzero(active_cells)


def grid_is_connected(
    g: pf.Grid, cell_ind: Optional[np.ndarray] = None
) -> tuple[bool, list[np.ndarray]]:
    """Check if a grid, or a subset of its cells, is connected as defined by
    :meth:`~porefv.grids.grid.Grid.cell_connection_map`.

    Examples:

        >>> import numpy as np
        >>> import porefv as pf
        >>> g = pf.CartGrid(np.array([2, 2]))
        >>> is_con, l = pf.partition.grid_is_connected(g, np.array([0, 3]))
        >>> is_con
        False

    Parameters:
        g: Grid to be tested.
        cell_ind: ``default=None``

            Index of cells to be included when looking for connections.
            Defaults to all cells in the grid.

    Returns:
        A 2-tuple containing a flag which is ``True`` if the cell set is connected,
        and a list with the cell indices (relative to ``cell_ind``) of each connected
        component.

    """
    if cell_ind is None:
        cell_ind = np.arange(g.num_cells)

    c2c = g.cell_connection_map()
    c2c = c2c.tocsr()[cell_ind, :].tocsc()[:, cell_ind]

    graph = nx.from_scipy_sparse_array(c2c)
    is_connected = nx.is_connected(graph)

    components = [np.array(sorted(c)) for c in nx.connected_components(graph)]
    return is_connected, components
