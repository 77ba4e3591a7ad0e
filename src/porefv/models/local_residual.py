"""Local residuals: the discrete balance equations of the control volumes of one
element.

The residual of a control volume ``i`` is

    sum_k w_k * S_k(i) * V_i  +  sum_faces F_ij  -  q_i * V_i  +  boundary fluxes,

where ``S_k`` is the stored amount per unit volume at time level ``k``, ``w_k`` are the
weights of the discrete time derivative, ``F_ij`` is the outflow through a sub-face and
``q`` is the source per unit volume. All terms are outflow-positive.

A local residual has no internal state. Every method is a function of the
:class:`~porefv.assembly.element_context.MeshElementContext` passed to it.

"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

import porefv as pf
from porefv.discretization.time_levels import TimeLevel

if TYPE_CHECKING:
    from porefv.assembly.element_context import MeshElementContext
    from porefv.models.flux_variables import FluxVariables

__all__ = ["LocalResidual", "OnePLocalResidual", "OnePTwoCLocalResidual"]


class LocalResidual:
    """Assembly of storage, flux, source and boundary terms of one element.

    Subclasses define the stored amount per unit volume (:meth:`storage`) and the flux
    over a sub-face given its flux variables (:meth:`flux`).

    """

    num_eq: int = 1

    def storage(
        self, context: MeshElementContext, cv: int, time_level: int
    ) -> np.ndarray:
        """Stored amount per unit volume of each conserved quantity."""
        raise NotImplementedError

    def flux(
        self,
        context: MeshElementContext,
        flux_vars: FluxVariables,
        normal: np.ndarray,
    ) -> np.ndarray:
        """Outflow from side ``i`` to side ``j`` of a sub-face, per equation."""
        raise NotImplementedError

    def compute_storage(
        self,
        context: MeshElementContext,
        cv: int,
        time_level: int = TimeLevel.CURRENT,
    ) -> np.ndarray:
        """Stored amount of a control volume at a time level.

        Selecting an older time level gives the terms of the discrete time derivative.

        """
        return self.storage(context, cv, time_level) * context.geometry.cv_volumes[cv]

    def compute_flux(self, context: MeshElementContext, scvf: int) -> np.ndarray:
        """Outflow through an interior sub-face, from its first to its second control
        volume."""
        return self.flux(
            context, context.flux_vars(scvf), context.geometry.scvf_normals[scvf]
        )

    def compute_source(self, context: MeshElementContext, cv: int) -> np.ndarray:
        """Integrated source term of a control volume."""
        geom = context.geometry
        cell = int(geom.cv_cells[cv])
        values = context.problem.source(cell, geom.cv_centers[cv])
        return np.asarray(values, dtype=float) * geom.cv_volumes[cv]

    def compute_boundary_flux(
        self, context: MeshElementContext, bnd: int
    ) -> np.ndarray:
        """Outflow through a boundary sub-face.

        Neumann equations get the prescribed flux. For weak Dirichlet conditions, the
        Dirichlet equations get the two-point flux against the boundary state. The
        entries of equations with strong Dirichlet conditions are zero, since their rows
        are replaced by the assembler.

        """
        geom = context.geometry
        problem = context.problem
        face = int(geom.bnd_faces[bnd])
        center = geom.bnd_centers[bnd]
        kinds = problem.boundary_types(face)
        is_dir = np.array([k == pf.DIRICHLET for k in kinds], dtype=bool)

        values = np.zeros(self.num_eq)
        if not np.all(is_dir):
            neumann = np.asarray(problem.neumann(face, center), dtype=float)
            values[~is_dir] = neumann[~is_dir] * geom.bnd_areas[bnd]

        if np.any(is_dir) and not context.scheme.strong_dirichlet:
            flux_vars = context.boundary_flux_vars(bnd, is_dir)
            weak = self.flux(context, flux_vars, geom.bnd_normals[bnd])
            values[is_dir] = weak[is_dir]
        return values

    def eval(self, context: MeshElementContext) -> np.ndarray:
        """Residual of all primary control volumes of the element,
        ``shape=(num_primary, num_eq)``."""
        geom = context.geometry
        residual = np.zeros((geom.num_primary, self.num_eq))

        weights = context.time_weights
        if np.any(weights != 0):
            for cv in range(geom.num_primary):
                for level, w in enumerate(weights):
                    if w != 0:
                        residual[cv] += w * self.compute_storage(context, cv, level)

        for cv in range(geom.num_primary):
            residual[cv] -= self.compute_source(context, cv)

        for f in range(geom.num_scvf):
            i, j = geom.scvf_cvs[f]
            flux = self.compute_flux(context, f)
            if i < geom.num_primary:
                residual[i] += flux
            if j < geom.num_primary:
                residual[j] -= flux

        for b in range(geom.num_boundary):
            cv = geom.bnd_cvs[b]
            if cv < geom.num_primary:
                residual[cv] += self.compute_boundary_flux(context, b)
        return residual


class OnePLocalResidual(LocalResidual):
    """Mass balance of single-phase flow."""

    num_eq = 1

    def storage(self, context, cv, time_level):
        vv = context.vol_vars(cv, time_level)
        return np.array([vv.density * vv.porosity])

    def flux(self, context, flux_vars, normal):
        vi = flux_vars.side(context, flux_vars.i)
        vj = flux_vars.side(context, flux_vars.j)
        mobility = flux_vars.upwind(vi.mobility, vj.mobility)
        return np.array([flux_vars.normal_flux * mobility])


class OnePTwoCLocalResidual(LocalResidual):
    """Total mass balance and transport of the second component in single-phase flow.

    The first equation balances the mass of the fluid, the second the amount of
    substance of the second component, which is advected with the fluid, and transported
    by molecular diffusion and mechanical dispersion.

    """

    num_eq = 2

    def storage(self, context, cv, time_level):
        vv = context.vol_vars(cv, time_level)
        return np.array([vv.density * vv.porosity, vv.concentration * vv.porosity])

    def flux(self, context, flux_vars, normal):
        vi = flux_vars.side(context, flux_vars.i)
        vj = flux_vars.side(context, flux_vars.j)
        q = flux_vars.normal_flux
        advective = np.array(
            [
                q * flux_vars.upwind(vi.mobility, vj.mobility),
                q
                * flux_vars.upwind(
                    vi.concentration_mobility, vj.concentration_mobility
                ),
            ]
        )
        advective[1] += flux_vars.diffusive_flux(context, normal)
        return advective
