"""   porefv.

Root directory for the porefv package, an assembly engine for implicit finite volume
discretizations of flow in porous media. Contains the following sub-packages:

grids: Grid classes, structured grids, partitioning and the grid manager.

params: Boundary conditions, permeability tensors and fluid closure relations.

discretization: Control volume geometry of the cell-centered and box schemes, time
levels.

models: Problems, volume and flux variables, local residuals, primary variables.

assembly: Element contexts, global sparse system and the global assembler.

parallel: Communicators and synchronization of ghost degrees of freedom.

numerics: Linear and nonlinear solvers, time step control.

io: Checkpoints.

utils: Logging, exceptions, constants.


isort:skip_file

"""

import os
from pathlib import Path
import configparser


__version__ = "0.1.0"

# Try to read the config file from the directory where python process was launched
try:
    cwd = Path(os.getcwd())
    pth = cwd / Path("porefv.cfg")
    cfg = configparser.ConfigParser()
    cfg.read(pth)
    config = dict(cfg)
except (OSError, configparser.Error):
    # the assumption is that no configurations are given
    config = {}

# ------------------------------------
# Simplified namespaces. The rule of thumb is that classes and modules that a
# user can be exposed to should have a shortcut here.

from porefv.utils.common_constants import *
from porefv.utils import errors
from porefv.utils.errors import (
    PoreFVError,
    InvalidStateError,
    AssemblyAbortError,
    SingularSystemError,
    TopologyInvalidatedError,
)

# Grids
from porefv.grids.grid import Grid
from porefv.grids.structured import TensorGrid, CartGrid
from porefv.grids import partition
from porefv.grids.grid_manager import GridManager, Element, EntityKind

# Parameters
from porefv.params.bc import BoundaryCondition, face_on_side
from porefv.params.tensor import SecondOrderTensor
from porefv.params import fluid
from porefv.params.fluid import UnitFluid, SlightlyCompressibleFluid, IdealGas, Water

# Discretization
from porefv.discretization.time_levels import (
    TimeLevel,
    TimeHistory,
    history_size,
    time_derivative_weights,
)
from porefv.discretization.element_geometry import FVElementGeometry
from porefv.discretization import schemes
from porefv.discretization.schemes import (
    Scheme,
    CellCenteredScheme,
    BoxScheme,
    get_scheme,
)

# Models
from porefv.models.protocol import Problem
from porefv.models.volume_variables import (
    VolumeVariables,
    OnePVolumeVariables,
    OnePTwoCVolumeVariables,
)
from porefv.models.flux_variables import FluxVariables, OnePTwoCFluxVariables
from porefv.models.local_residual import (
    LocalResidual,
    OnePLocalResidual,
    OnePTwoCLocalResidual,
)
from porefv.models.problems import (
    PorousMediumProblem,
    OnePhaseProblem,
    OnePTwoCProblem,
)
from porefv.models.model import Model

# Assembly
from porefv.assembly.element_context import (
    ContextState,
    FluxSlot,
    MeshElementContext,
)
from porefv.assembly.sparse_system import SparseSystem
from porefv.assembly.global_assembler import AssemblerState, GlobalAssembler

# Parallel
from porefv.parallel.communicator import (
    Communicator,
    SerialCommunicator,
    MPICommunicator,
    InProcessCommunicator,
    RankHandle,
)
from porefv.parallel.ghost_sync import GhostSync, dof_owners

# Numerics
from porefv.numerics.linear_solvers import LinearSolver
from porefv.numerics.nonlinear_solvers import NewtonSolver
from porefv.numerics.time_step_control import (
    TimeManager,
    run_stationary_model,
    run_time_dependent_model,
)

# I/O
from porefv.io import checkpoint
from porefv import io
