"""
Class representing boundary conditions.

The class identifies, for each equation of the system, the faces of a grid which have
Dirichlet and Neumann type boundary conditions.
"""

from __future__ import annotations

from typing import Optional, Union

import numpy as np

import porefv as pf


class BoundaryCondition:
    """Class to store information on boundary condition types of a system of
    equations.

    The BCs are specified by face number and equation, and can have type Dirichlet
    (``"dir"``) or Neumann (``"neu"``). Faces that do not get an explicit condition will
    have Neumann conditions assigned.

    Parameters:
        sd: Grid for which boundary conditions are set.
        faces: ``default=None``

            Faces for which conditions are assigned, either as indices or as a boolean
            mask over all faces.
        cond: ``default=None``

            Conditions on the faces, in the same order as used in faces. Either one
            keyword per face, or a single keyword used for all faces.
        num_eq: ``default=1``

            Number of equations. Conditions given to the constructor apply to all
            equations; use :meth:`set_bc` to assign equation-wise conditions.

    Example:
        # Assign Dirichlet conditions on the left side of a grid; implicit
        # Neumann conditions on the rest
        sd = pf.CartGrid([2, 2])
        sd.compute_geometry()
        west_face = pf.face_on_side(sd, 'west')[0]
        bound_cond = pf.BoundaryCondition(sd, faces=west_face, cond='dir')

    """

    def __init__(
        self,
        sd: pf.Grid,
        faces: Optional[np.ndarray] = None,
        cond: Optional[Union[list[str], str]] = None,
        num_eq: int = 1,
    ) -> None:
        self.num_faces: int = sd.num_faces
        self.num_eq: int = num_eq
        self.dim: int = sd.dim - 1

        self.bf: np.ndarray = sd.get_all_boundary_faces()
        """Indices of the boundary faces."""

        self.is_neu: np.ndarray = np.zeros((num_eq, self.num_faces), dtype=bool)
        """Element ``[i, f]`` is True if face f has a Neumann condition for equation
        i."""
        self.is_dir: np.ndarray = np.zeros((num_eq, self.num_faces), dtype=bool)
        """Element ``[i, f]`` is True if face f has a Dirichlet condition for equation
        i."""

        # By default, all boundary faces are Neumann.
        self.is_neu[:, self.bf] = True

        self.set_bc(faces, cond)

    def set_bc(
        self,
        faces: Optional[np.ndarray],
        cond: Optional[Union[list[str], str]],
        eq: Optional[int] = None,
    ) -> None:
        """Assign boundary condition types.

        Parameters:
            faces: Faces for which conditions are assigned.
            cond: Boundary condition keyword(s).
            eq: ``default=None``

                Equation the condition applies to. If None, all equations.

        Raises:
            ValueError: If faces are a boolean array with size not matching the number
                of faces, if internal faces are marked, if the numbers of conditions
                and faces do not match, or if an unknown keyword is used.

        """
        if faces is None:
            return
        if cond is None:
            raise ValueError("Boundary condition types must be given with the faces")

        faces = np.asarray(faces)
        if faces.dtype == bool:
            if faces.size != self.num_faces:
                raise ValueError(
                    "When giving logical faces, the size of array must match number "
                    "of faces"
                )
            faces = np.flatnonzero(faces)
        faces = np.atleast_1d(faces).astype(int)

        if not np.all(np.isin(faces, self.bf)):
            raise ValueError("Give boundary condition only on the boundary")
        if isinstance(cond, str):
            cond = [cond] * faces.size
        if faces.size != len(cond):
            raise ValueError("One BC per face")

        rows = slice(None) if eq is None else eq
        for f, s in zip(faces, cond):
            s = s.lower()
            if s == pf.NEUMANN:
                self.is_neu[rows, f] = True
                self.is_dir[rows, f] = False
            elif s == pf.DIRICHLET:
                self.is_dir[rows, f] = True
                self.is_neu[rows, f] = False
            else:
                raise ValueError(f"Unknown boundary condition {s}")

    def kinds(self, face: int) -> list[str]:
        """Boundary condition keyword of each equation on a boundary face."""
        if face not in self.bf:
            raise ValueError(f"Face {face} is not on the boundary")
        return [
            pf.DIRICHLET if self.is_dir[i, face] else pf.NEUMANN
            for i in range(self.num_eq)
        ]

    def copy(self) -> BoundaryCondition:
        """Create a deep copy of the boundary condition."""
        bc = BoundaryCondition.__new__(BoundaryCondition)
        bc.num_faces = self.num_faces
        bc.num_eq = self.num_eq
        bc.dim = self.dim
        bc.bf = self.bf.copy()
        bc.is_neu = self.is_neu.copy()
        bc.is_dir = self.is_dir.copy()
        return bc

    def __repr__(self) -> str:
        return (
            f"Boundary condition for {self.num_eq} equation(s) in {self.dim + 1} "
            "dimensions\n"
            f"Grid has {self.num_faces} faces, {self.bf.size} on the boundary.\n"
            f"Number of Dirichlet conditions: {self.is_dir.sum()} \n"
            f"Number of Neumann conditions: {self.is_neu.sum()} \n"
        )


def face_on_side(
    sd: pf.Grid, side: Union[list[str], str], tol: float = 1e-8
) -> list[np.ndarray]:
    """Find faces on specified sides of a grid.

    It is assumed that the grid forms a box, and that its geometry is computed.

    The faces are specified by one of two type of keywords: (xmin / west),
    (xmax / east), (ymin / south), (ymax / north), (zmin / bottom),
    (zmax / top).

    Parameters:
        sd: Grid for which we want to find faces.
        side: Sides for which we want to find the boundary faces.
        tol: ``default=1e-8``

            Geometric tolerance for deciding whether a face lays on the boundary.

    Raises:
        ValueError: If an unsupported keyword is used to identify a boundary part.

    Returns:
        One array per element in side (same ordering), containing global indices of
        faces laying on that side.

    """
    if isinstance(side, str):
        side = [side]

    keywords = {
        "west": (0, np.min),
        "xmin": (0, np.min),
        "east": (0, np.max),
        "xmax": (0, np.max),
        "south": (1, np.min),
        "ymin": (1, np.min),
        "north": (1, np.max),
        "ymax": (1, np.max),
        "bottom": (2, np.min),
        "bot": (2, np.min),
        "zmin": (2, np.min),
        "top": (2, np.max),
        "zmax": (2, np.max),
    }

    bf = sd.get_all_boundary_faces()
    faces = []
    for s in side:
        s = s.lower().strip()
        if s not in keywords:
            raise ValueError("Unknown face side")
        axis, extremum = keywords[s]
        xm = extremum(sd.nodes[axis])
        hit = np.abs(sd.face_centers[axis, bf] - xm) < tol
        faces.append(bf[hit])
    return faces
