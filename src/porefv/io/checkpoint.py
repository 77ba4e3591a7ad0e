"""Checkpoints of the primary variables.

A checkpoint stores, for every element owned by a rank, the primary variables of the
degrees of freedom of the element, at the current and the previous time level. Volume
and flux variables are never stored; they are recomputed from the primary variables by
the next assembly.

Degrees of freedom shared by several elements (box vertices) are stored once per
element. On restore, the values of the last element wins, which is immaterial since all
copies are equal.

Example:
    pf.io.checkpoint.write(Path("checkpoints") / "step_10.json", model, grid_manager)
    ...
    data = pf.io.checkpoint.read(Path("checkpoints") / "step_10.json")
    pf.io.checkpoint.restore(model, data)

"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np

from porefv.discretization.schemes import Scheme
from porefv.discretization.time_levels import TimeLevel
from porefv.grids.grid_manager import GridManager
from porefv.models.model import Model
from porefv.parallel.ghost_sync import GhostSync
from porefv.utils.logging import time_logger

logger = logging.getLogger(__name__)

module_sections = ["io"]

__all__ = ["snapshot", "write", "read", "restore"]


def snapshot(
    model: Model,
    grid_manager: Optional[GridManager] = None,
    scheme: Optional[Scheme] = None,
) -> dict[int, dict[str, list]]:
    """Primary variables of the owned elements.

    Parameters:
        model: The model holding the primary variables.
        grid_manager: ``default=None``

            Elements to store. If not given, all cells of the grid of the model.
        scheme: ``default=None``

            Scheme defining the degrees of freedom of an element. The scheme of the
            model if not given.

    Returns:
        Dictionary from the global element index to a dictionary with the degrees of
        freedom of the element (``"dofs"``) and their primary variables at the current
        (``"current"``) and previous (``"previous"``) time level. The previous level of
        a stationary model equals the current one.

    """
    if grid_manager is None:
        grid_manager = GridManager(model.grid)
    if scheme is None:
        scheme = model.scheme
    previous_level = (
        TimeLevel.PREVIOUS if model.num_time_levels > 1 else TimeLevel.CURRENT
    )
    current = model.solution[TimeLevel.CURRENT]
    previous = model.solution[previous_level]

    elements: dict[int, dict[str, list]] = {}
    for element in grid_manager.owned_elements():
        dofs = scheme.element_dofs(grid_manager.grid, element.index)
        elements[int(element.index)] = {
            "dofs": [int(d) for d in dofs],
            "current": current[dofs].tolist(),
            "previous": previous[dofs].tolist(),
        }
    return elements


@time_logger(sections=module_sections)
def write(
    path: Union[str, Path],
    model: Model,
    grid_manager: Optional[GridManager] = None,
    scheme: Optional[Scheme] = None,
    ghost_sync: Optional[GhostSync] = None,
) -> None:
    """Store a checkpoint of the owned elements as json.

    Raises:
        RuntimeError: If the ghost values of the model are not synchronized.

    """
    if ghost_sync is not None and not ghost_sync.is_synchronized(model):
        raise RuntimeError(
            "Cannot write a checkpoint before the ghost values are synchronized"
        )
    data = {
        "time": float(model.time),
        "dt": float(model.dt),
        "num_eq": int(model.num_eq),
        "elements": {
            str(k): v for k, v in snapshot(model, grid_manager, scheme).items()
        },
    }
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as out_file:
        json.dump(data, out_file)
    logger.info(f"Wrote checkpoint of {len(data['elements'])} elements to {path}")


@time_logger(sections=module_sections)
def read(path: Union[str, Path]) -> dict[str, Any]:
    """Read a checkpoint written by :func:`write`.

    The element indices are converted back to integers.

    """
    with open(Path(path)) as in_file:
        data = json.load(in_file)
    data["elements"] = {int(k): v for k, v in data["elements"].items()}
    return data


def restore(model: Model, data: dict[str, Any]) -> None:
    """Set the primary variables of the model from a checkpoint.

    The current level is set from the stored current values, and the previous level is
    set equal to the current level. Time and time step of the model are restored.
    Degrees of freedom not covered by the checkpoint keep their values; partitioned
    simulations must synchronize the ghost values afterwards.

    Raises:
        ValueError: If the number of equations does not match the model.

    """
    num_eq = data.get("num_eq", model.num_eq)
    if num_eq != model.num_eq:
        raise ValueError(
            f"Checkpoint has {num_eq} equations, the model has {model.num_eq}"
        )
    current = model.solution[TimeLevel.CURRENT]
    for entry in data["elements"].values():
        dofs = np.asarray(entry["dofs"], dtype=int)
        current[dofs] = np.asarray(entry["current"], dtype=float).reshape(
            dofs.size, model.num_eq
        )
    for level in range(1, model.num_time_levels):
        np.copyto(model.solution[level], current)

    model.time = float(data["time"])
    model.dt = float(data["dt"])
    model.solution_version += 1
    logger.info(f"Restored {len(data['elements'])} elements at time {model.time}")
