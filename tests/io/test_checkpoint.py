"""Tests of checkpoints of the primary variables."""
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

import porefv as pf


def _model(scheme="ecfv", time_scheme="implicit_euler", problem=pf.OnePhaseProblem):
    g = pf.CartGrid([4, 2])
    g.compute_geometry()
    model = pf.Model(problem(g), scheme, time_scheme, {"dt": 0.5})
    model.initialize()
    return model


@pytest.mark.parametrize("scheme", ["ecfv", "box"])
def test_round_trip(scheme, tmp_path):
    model = _model(scheme)
    rng = np.random.default_rng(3)
    model.set_solution(rng.random(model.num_dofs))
    model.advance_time_step()
    model.set_solution(rng.random(model.num_dofs))
    reference = model.current_vector()

    path = tmp_path / "checkpoints" / "step_1.json"
    pf.io.checkpoint.write(path, model)
    data = pf.io.checkpoint.read(path)
    assert sorted(data["elements"]) == list(range(model.grid.num_cells))
    assert data["num_eq"] == 1

    restored = _model(scheme)
    pf.io.checkpoint.restore(restored, data)
    assert np.allclose(restored.current_vector(), reference)
    # The previous level restarts from the current one
    assert np.allclose(restored.solution[pf.TimeLevel.PREVIOUS].ravel(), reference)
    assert restored.time == model.time == 0.5
    assert restored.dt == 0.5


def test_snapshot_of_box_elements():
    model = _model("box", "stationary")
    model.set_solution(np.arange(model.num_dofs, dtype=float))
    elements = pf.io.checkpoint.snapshot(model)
    assert len(elements) == 8
    for entry in elements.values():
        assert len(entry["dofs"]) == 4
        assert entry["current"] == [[float(d)] for d in entry["dofs"]]
        # Stationary models have a single time level
        assert entry["previous"] == entry["current"]


def test_number_of_equations_mismatch(tmp_path):
    model = _model(problem=pf.OnePTwoCProblem)
    path = tmp_path / "two_components.json"
    pf.io.checkpoint.write(path, model)
    with pytest.raises(ValueError):
        pf.io.checkpoint.restore(_model(), pf.io.checkpoint.read(path))


def test_partitioned_checkpoint(tmp_path):
    """Every rank stores its owned elements, which are only written once the ghost
    values are synchronized. Together, the checkpoints cover the whole grid."""
    reference = np.linspace(1, 2, 8)
    g = pf.CartGrid([4, 2])
    g.compute_geometry()
    partition = pf.partition.partition_structured(g, coarse_dims=np.array([2, 1]))
    comm = pf.InProcessCommunicator(2, timeout=20.0)

    def run(handle):
        model = pf.Model(pf.OnePhaseProblem(g), "ecfv", "implicit_euler")
        model.initialize()
        gm = pf.GridManager(g, partition, rank=handle.rank)
        gs = pf.GhostSync(gm, model.scheme, handle)
        x = np.zeros(model.num_dofs)
        x[gs.owned_dofs] = reference[gs.owned_dofs]
        model.set_solution(x)
        path = tmp_path / f"rank_{handle.rank}.json"
        refused = False
        try:
            pf.io.checkpoint.write(path, model, gm, ghost_sync=gs)
        except RuntimeError:
            refused = True
        gs.sync_overlap(model)
        pf.io.checkpoint.write(path, model, gm, ghost_sync=gs)
        return refused, path

    with ThreadPoolExecutor(max_workers=2) as executor:
        futures = [executor.submit(run, h) for h in comm.handles()]
        results = [f.result() for f in futures]

    restored = pf.Model(pf.OnePhaseProblem(g), "ecfv", "implicit_euler")
    restored.initialize()
    for refused, path in results:
        assert refused
        data = pf.io.checkpoint.read(path)
        assert len(data["elements"]) == 4
        pf.io.checkpoint.restore(restored, data)
    assert np.allclose(restored.current_vector(), reference)
