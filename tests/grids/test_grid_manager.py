"""Tests of the distributed view of a grid."""
import numpy as np
import pytest

import porefv as pf


def _two_rank_managers(criterion="face"):
    g = pf.CartGrid([4, 2])
    p = pf.partition.partition_structured(g, coarse_dims=np.array([2, 1]))
    return [pf.GridManager(g, p, rank=r, overlap_criterion=criterion) for r in (0, 1)]


def test_single_rank():
    gm = pf.GridManager(pf.CartGrid([3, 3]))
    assert gm.num_partitions == 1
    assert np.array_equal(gm.owned_cells(), np.arange(9))
    assert gm.ghost_cells().size == 0
    assert len(gm.elements(include_ghosts=True)) == 9
    # Geometry is computed on construction
    assert hasattr(gm.grid, "cell_volumes")


def test_owned_and_ghost_cells():
    gm0, gm1 = _two_rank_managers()
    assert np.array_equal(gm0.owned_cells(), [0, 1, 4, 5])
    assert np.array_equal(gm0.ghost_cells(), [2, 6])
    assert np.array_equal(gm1.owned_cells(), [2, 3, 6, 7])
    assert np.array_equal(gm1.ghost_cells(), [1, 5])
    assert gm0.owner(2) == 1


def test_element_handles():
    gm0, _ = _two_rank_managers()
    elements = gm0.elements(include_ghosts=True)
    assert [e.index for e in elements] == [0, 1, 4, 5, 2, 6]
    assert [e.local_index for e in elements] == list(range(6))
    assert all(e.kind == pf.EntityKind.INTERIOR for e in gm0.owned_elements())
    assert all(e.kind == pf.EntityKind.OVERLAP for e in gm0.ghost_elements())
    assert gm0.elements() == gm0.owned_elements()
    with pytest.raises(AttributeError):
        elements[0].index = 3


def test_node_overlap_includes_diagonal_neighbors():
    g = pf.CartGrid([3, 3])
    p = np.ones(9, dtype=int)
    p[0] = 0
    face = pf.GridManager(g, p, rank=0, overlap_criterion="face")
    node = pf.GridManager(g, p, rank=0, overlap_criterion="node")
    assert np.array_equal(face.ghost_cells(), [1, 3])
    assert np.array_equal(node.ghost_cells(), [1, 3, 4])


def test_load_balance_invalidates_topology():
    gm0, _ = _two_rank_managers()
    version = gm0.topology_version
    gm0.check_topology_version(version)

    gm0.load_balance(np.array([0, 0, 0, 1, 0, 0, 0, 1]))
    assert gm0.topology_version == version + 1
    assert np.array_equal(gm0.owned_cells(), [0, 1, 2, 4, 5, 6])
    with pytest.raises(pf.TopologyInvalidatedError):
        gm0.check_topology_version(version)


@pytest.mark.parametrize("p", [np.zeros(3, dtype=int), -np.ones(8, dtype=int)])
def test_invalid_partition(p):
    with pytest.raises(ValueError):
        pf.GridManager(pf.CartGrid([4, 2]), p)


def test_overlap_covers_stencil():
    face, node = _two_rank_managers("face")[0], _two_rank_managers("node")[0]
    face.check_overlap("face")
    node.check_overlap("face")
    node.check_overlap("node")
    with pytest.raises(ValueError):
        face.check_overlap("node")
    # Without overlap, no stencil reaching into other ranks is covered
    g = pf.CartGrid([4, 2])
    p = pf.partition.partition_structured(g, coarse_dims=np.array([2, 1]))
    with pytest.raises(ValueError):
        pf.GridManager(g, p, num_overlap_layers=0).check_overlap("face")
    # A single rank has no overlap to check
    pf.GridManager(g, overlap_criterion="face").check_overlap("node")


def test_disconnected_subdomain_is_reported(caplog):
    g = pf.CartGrid([3, 1])
    with caplog.at_level("WARNING", logger="porefv.grids.grid_manager"):
        pf.GridManager(g, np.array([0, 1, 0]))
    assert "2 disconnected subdomains" in caplog.text
