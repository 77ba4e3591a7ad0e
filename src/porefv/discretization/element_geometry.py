"""Control volume geometry of a single mesh element.

The geometry of an element is described by its sub-control volumes (one per degree of
freedom in the stencil of the element), the sub-control volume faces through which
fluxes are exchanged between two sub-control volumes, and the boundary sub-faces where
boundary conditions enter.

Two constructions are available:

- :func:`cell_centered_geometry`: The element itself is the single primary control
  volume. Its face neighbors are added as secondary control volumes, they are needed
  to evaluate the fluxes but their balance equations are assembled by their own
  elements.
- :func:`box_geometry`: Each node of a tensor-product element carries a
  sub-control volume, bounded by the element faces and the planes through the element
  center. The sub-faces are located on these planes, gradients are evaluated with the
  multilinear shape functions of the element.

"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

import porefv as pf

__all__ = ["FVElementGeometry", "cell_centered_geometry", "box_geometry"]


@dataclass
class FVElementGeometry:
    """Sub-control volumes and sub-faces of one element.

    All vectors are 3d. Sub-face normals are weighted with the sub-face area, interior
    normals point from the first to the second sub-control volume of the face, boundary
    normals point out of the domain.

    """

    element: int
    """Global index of the element."""
    dofs: np.ndarray
    """Global degree of freedom of each sub-control volume, ``shape=(num_cv,)``."""
    cv_cells: np.ndarray
    """Cell providing the material parameters of each sub-control volume."""
    cv_centers: np.ndarray
    """``shape=(num_cv, 3)``"""
    cv_volumes: np.ndarray
    """``shape=(num_cv,)``"""
    num_primary: int
    """Number of sub-control volumes whose balance equations are assembled by the
    element. These are the first ones."""
    two_point: bool
    """Fluxes are computed by a two-point approximation, rather than by a gradient."""

    scvf_cvs: np.ndarray
    """Local indices of the sub-control volumes on each side of a sub-face,
    ``shape=(num_scvf, 2)``."""
    scvf_normals: np.ndarray
    """``shape=(num_scvf, 3)``"""
    scvf_areas: np.ndarray
    """``shape=(num_scvf,)``"""
    scvf_ips: np.ndarray
    """Integration points, ``shape=(num_scvf, 3)``."""
    scvf_grad_weights: np.ndarray
    """Gradient at the integration point as weights of the sub-control volume values,
    ``shape=(num_scvf, num_cv, 3)``."""
    scvf_faces: np.ndarray
    """Grid face of each sub-face, -1 for faces in the element interior."""

    bnd_cvs: np.ndarray
    """Local sub-control volume of each boundary sub-face."""
    bnd_faces: np.ndarray
    """Grid face of each boundary sub-face."""
    bnd_areas: np.ndarray
    bnd_centers: np.ndarray
    bnd_normals: np.ndarray

    @property
    def num_cv(self) -> int:
        return self.dofs.size

    @property
    def num_scvf(self) -> int:
        return self.scvf_areas.size

    @property
    def num_boundary(self) -> int:
        return self.bnd_areas.size


def cell_centered_geometry(
    grid: pf.Grid, cell: int, face_cells: np.ndarray
) -> FVElementGeometry:
    """Geometry of an element of the cell-centered scheme.

    Parameters:
        grid: Grid with computed geometry.
        cell: Index of the element.
        face_cells: Cells on either side of each face, as returned by
            :meth:`~porefv.grids.grid.Grid.cell_face_as_dense`.

    """
    cf = grid.cell_faces
    faces = cf.indices[cf.indptr[cell] : cf.indptr[cell + 1]]
    signs = cf.data[cf.indptr[cell] : cf.indptr[cell + 1]]

    neighbors = np.where(
        face_cells[0, faces] == cell, face_cells[1, faces], face_cells[0, faces]
    )
    interior = neighbors >= 0

    dofs = np.hstack(([cell], neighbors[interior])).astype(int)
    num_cv = dofs.size
    centers = grid.cell_centers[:, dofs].T
    normals = (grid.face_normals[:, faces] * signs).T

    int_faces = faces[interior]
    num_scvf = int_faces.size
    scvf_cvs = np.vstack((np.zeros(num_scvf, dtype=int), np.arange(1, num_cv))).T

    # Two-point gradient: the difference quotient along the line between the centers.
    weights = np.zeros((num_scvf, num_cv, 3))
    for k in range(num_scvf):
        dist = centers[k + 1] - centers[0]
        proj = dist / np.dot(dist, dist)
        weights[k, 0] = -proj
        weights[k, k + 1] = proj

    bnd_faces = faces[~interior]
    return FVElementGeometry(
        element=cell,
        dofs=dofs,
        cv_cells=dofs.copy(),
        cv_centers=centers,
        cv_volumes=grid.cell_volumes[dofs],
        num_primary=1,
        two_point=True,
        scvf_cvs=scvf_cvs,
        scvf_normals=normals[interior],
        scvf_areas=grid.face_areas[int_faces],
        scvf_ips=grid.face_centers[:, int_faces].T,
        scvf_grad_weights=weights,
        scvf_faces=int_faces,
        bnd_cvs=np.zeros(bnd_faces.size, dtype=int),
        bnd_faces=bnd_faces,
        bnd_areas=grid.face_areas[bnd_faces],
        bnd_centers=grid.face_centers[:, bnd_faces].T,
        bnd_normals=normals[~interior],
    )


def _shape_values(bits: np.ndarray, xi: np.ndarray) -> np.ndarray:
    """Values of the 1d linear factors of all shape functions,
    ``shape=(num_nodes, dim)``."""
    return np.where(bits == 1, xi, 1 - xi)


def box_geometry(grid: pf.TensorGrid, cell: int) -> FVElementGeometry:
    """Geometry of an element of the box scheme.

    Only tensor-product elements (lines, rectangles and boxes aligned with the
    coordinate axes) are supported.

    Parameters:
        grid: Structured grid with computed geometry.
        cell: Index of the element.

    Raises:
        ValueError: If the grid does not provide the Cartesian cell-node layout.

    """
    if not hasattr(grid, "cell_node_array"):
        raise ValueError("The box geometry requires a tensor product grid")

    dim = grid.dim
    num_cv = 2**dim
    nodes = grid.cell_node_array[cell]
    h = grid.cell_extents[:, cell]
    x0 = grid.nodes[:dim, nodes[0]]

    # bits[k, a] is the position of local node k along axis a.
    bits = np.array([[(k >> a) & 1 for a in range(dim)] for k in range(num_cv)])

    def to_3d(x):
        out = np.zeros(x.shape[:-1] + (3,))
        out[..., :dim] = x
        return out

    cv_centers = to_3d(x0 + (0.25 + 0.5 * bits) * h)
    cv_volumes = np.full(num_cv, grid.cell_volumes[cell] / num_cv)

    scvf_cvs = []
    normals = []
    areas = []
    ips = []
    weights = []
    for a in range(dim):
        for i in range(num_cv):
            if bits[i, a] == 1:
                continue
            j = i | (1 << a)
            xi = 0.25 + 0.5 * bits[i].astype(float)
            xi[a] = 0.5
            others = [e for e in range(dim) if e != a]
            area = float(np.prod(h[others] / 2)) if others else 1.0

            factors = _shape_values(bits, xi)
            grad = np.zeros((num_cv, 3))
            for b in range(dim):
                prod_others = np.prod(np.delete(factors, b, axis=1), axis=1)
                grad[:, b] = np.where(bits[:, b] == 1, 1.0, -1.0) / h[b] * prod_others

            normal = np.zeros(3)
            normal[a] = area
            scvf_cvs.append((i, j))
            normals.append(normal)
            areas.append(area)
            ips.append(to_3d(x0 + xi * h))
            weights.append(grad)

    # Boundary sub-faces: each node of a boundary face gets an equal share.
    cf = grid.cell_faces
    faces = cf.indices[cf.indptr[cell] : cf.indptr[cell + 1]]
    signs = cf.data[cf.indptr[cell] : cf.indptr[cell + 1]]
    on_boundary = grid.tags["domain_boundary_faces"][faces]
    local_of = {int(n): k for k, n in enumerate(nodes)}
    share = 2 ** (dim - 1)

    bnd_cvs = []
    bnd_faces = []
    bnd_areas = []
    bnd_centers = []
    bnd_normals = []
    fn = grid.face_nodes
    for f, s in zip(faces[on_boundary], signs[on_boundary]):
        for n in fn.indices[fn.indptr[f] : fn.indptr[f + 1]]:
            bnd_cvs.append(local_of[int(n)])
            bnd_faces.append(f)
            bnd_areas.append(grid.face_areas[f] / share)
            bnd_centers.append(0.5 * (grid.nodes[:, n] + grid.face_centers[:, f]))
            bnd_normals.append(s * grid.face_normals[:, f] / share)

    return FVElementGeometry(
        element=cell,
        dofs=nodes.astype(int),
        cv_cells=np.full(num_cv, cell, dtype=int),
        cv_centers=cv_centers,
        cv_volumes=cv_volumes,
        num_primary=num_cv,
        two_point=False,
        scvf_cvs=np.array(scvf_cvs, dtype=int).reshape((-1, 2)),
        scvf_normals=np.array(normals).reshape((-1, 3)),
        scvf_areas=np.array(areas),
        scvf_ips=np.array(ips).reshape((-1, 3)),
        scvf_grad_weights=np.array(weights).reshape((-1, num_cv, 3)),
        scvf_faces=-np.ones(len(areas), dtype=int),
        bnd_cvs=np.array(bnd_cvs, dtype=int),
        bnd_faces=np.array(bnd_faces, dtype=int),
        bnd_areas=np.array(bnd_areas),
        bnd_centers=np.array(bnd_centers).reshape((-1, 3)),
        bnd_normals=np.array(bnd_normals).reshape((-1, 3)),
    )
