"""Flux variables of a sub-control volume face.

The flux variables of a face are computed from the volume variables of the control
volumes on either side (or of the single control volume and the prescribed boundary
state, for boundary faces). They provide

- the normal Darcy flux ``-(K grad(phi)) . n`` without the mobility, where the
  potential ``phi`` combines pressure and gravity;
- the upstream and downstream control volumes, determined by the sign of the normal
  flux at the evaluation point;
- the weighted average of mobility terms over the upstream and downstream volumes,
  which falls back to the arithmetic mean when the normal flux vanishes.

All normals are area weighted and oriented from the first (``i``) to the second
(``j``) control volume of the face. A positive flux leaves ``i``.

"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

import numpy as np

from porefv.discretization.time_levels import TimeLevel

if TYPE_CHECKING:
    from porefv.assembly.element_context import MeshElementContext
    from porefv.models.volume_variables import VolumeVariables

__all__ = ["FluxVariables", "OnePTwoCFluxVariables", "half_transmissibility"]


def half_transmissibility(
    permeability: np.ndarray, normal: np.ndarray, cv_center: np.ndarray, ip: np.ndarray
) -> float:
    """Two-point transmissibility between a cell center and a face.

    Parameters:
        permeability: ``shape=(3, 3)``
        normal: Area weighted face normal.
        cv_center: Center of the control volume.
        ip: Center of the face.

    """
    dist = ip - cv_center
    return abs(normal @ permeability @ dist) / (dist @ dist)


class FluxVariables:
    """Advective flux variables, shared by all models.

    Parameters:
        upwind_weight: ``default=1``

            Weight ``alpha`` of the upstream volume. ``alpha=1`` is full upwinding.

    """

    def __init__(self, upwind_weight: float = 1.0) -> None:
        if not 0 <= upwind_weight <= 1:
            raise ValueError("The upwind weight must be in [0, 1]")
        self.upwind_weight = upwind_weight
        self.i: int = 0
        self.j: int = 1
        self.normal_flux: float = 0.0
        self.upstream: int = 0
        self.downstream: int = 1
        self.is_tie: bool = True
        self.potential_grad: np.ndarray = np.zeros(3)
        self.boundary: bool = False

    def __repr__(self) -> str:
        return (
            f"Flux variables between {self.i} and {self.j}, normal flux "
            f"{self.normal_flux}, upstream {self.upstream}"
        )

    def _normal_flux(
        self,
        context: MeshElementContext,
        scvf: int,
        vol_vars: Callable[[int], VolumeVariables],
    ) -> float:
        geom = context.geometry
        problem = context.problem
        i, j = geom.scvf_cvs[scvf]
        normal = geom.scvf_normals[scvf]
        density = 0.5 * (vol_vars(i).density + vol_vars(j).density)

        if geom.two_point:
            ip = geom.scvf_ips[scvf]
            t_i = half_transmissibility(
                problem.permeability(geom.cv_cells[i]), normal, geom.cv_centers[i], ip
            )
            t_j = half_transmissibility(
                problem.permeability(geom.cv_cells[j]), normal, geom.cv_centers[j], ip
            )
            trans = t_i * t_j / (t_i + t_j)
            dist = geom.cv_centers[j] - geom.cv_centers[i]
            pot_i = vol_vars(i).pressure
            pot_j = vol_vars(j).pressure - density * (problem.gravity @ dist)
            self.potential_grad = (pot_j - pot_i) * dist / (dist @ dist)
            return trans * (pot_i - pot_j)

        weights = geom.scvf_grad_weights[scvf]
        pressures = np.array([vol_vars(k).pressure for k in range(geom.num_cv)])
        self.potential_grad = weights.T @ pressures - density * problem.gravity
        perm = problem.permeability(geom.element)
        return -float((perm @ self.potential_grad) @ normal)

    def _set_direction(self, direction: float) -> None:
        if direction > 0:
            self.upstream, self.downstream, self.is_tie = self.i, self.j, False
        elif direction < 0:
            self.upstream, self.downstream, self.is_tie = self.j, self.i, False
        else:
            self.upstream, self.downstream, self.is_tie = self.i, self.j, True

    def update(
        self,
        context: MeshElementContext,
        scvf: int,
        time_level: int = TimeLevel.CURRENT,
    ) -> None:
        """Compute the flux variables of an interior sub-face.

        The direction of the flow is taken from the evaluation point, such that a
        perturbation of the primary variables during numerical differentiation does not
        switch the upstream volume.

        """
        self.i, self.j = (int(k) for k in context.geometry.scvf_cvs[scvf])
        self.boundary = False

        def current(k):
            return context.vol_vars(k, time_level)

        self.normal_flux = self._normal_flux(context, scvf, current)
        if time_level == TimeLevel.CURRENT and context.has_saved_scv():
            saved_grad = self.potential_grad
            direction = self._normal_flux(context, scvf, context.eval_point_vol_vars)
            self.potential_grad = saved_grad
        else:
            direction = self.normal_flux
        self._set_direction(direction)

    def update_boundary(
        self,
        context: MeshElementContext,
        bnd: int,
        boundary_vol_vars: VolumeVariables,
        time_level: int = TimeLevel.CURRENT,
    ) -> None:
        """Compute the two-point flux variables of a boundary sub-face against a
        prescribed boundary state. ``j`` then refers to the boundary state, which is
        accessible through :meth:`side`."""
        geom = context.geometry
        problem = context.problem
        i = int(geom.bnd_cvs[bnd])
        self.i, self.j = i, -1
        self.boundary = True
        self._boundary_vol_vars = boundary_vol_vars

        inner = context.vol_vars(i, time_level)
        normal = geom.bnd_normals[bnd]
        ip = geom.bnd_centers[bnd]
        trans = half_transmissibility(
            problem.permeability(geom.cv_cells[i]), normal, geom.cv_centers[i], ip
        )
        density = 0.5 * (inner.density + boundary_vol_vars.density)
        dist = ip - geom.cv_centers[i]
        pot_j = boundary_vol_vars.pressure - density * (problem.gravity @ dist)
        self.potential_grad = (pot_j - inner.pressure) * dist / (dist @ dist)
        self.normal_flux = trans * (inner.pressure - pot_j)
        self._set_direction(self.normal_flux)

    def side(
        self, context: MeshElementContext, k: int, time_level: int = TimeLevel.CURRENT
    ) -> VolumeVariables:
        """Volume variables of the control volume ``k`` of the face, or of the
        boundary state for ``k == -1``."""
        if k == -1:
            return self._boundary_vol_vars
        return context.vol_vars(k, time_level)

    def upwind(self, value_i: float, value_j: float) -> float:
        """Upstream weighted average of a quantity given on the ``i`` and ``j`` side.

        The result is ``alpha * upstream + (1 - alpha) * downstream``. If the normal
        flux vanishes, the arithmetic mean is returned.

        """
        if self.is_tie:
            return 0.5 * (value_i + value_j)
        if self.upstream == self.i:
            up, dn = value_i, value_j
        else:
            up, dn = value_j, value_i
        return self.upwind_weight * up + (1 - self.upwind_weight) * dn


class OnePTwoCFluxVariables(FluxVariables):
    """Flux variables with molecular diffusion and mechanical dispersion of the second
    component.

    Parameters:
        upwind_weight: Weight of the upstream volume.
        longitudinal_dispersivity: ``default=0``
        transversal_dispersivity: ``default=0``

    """

    def __init__(
        self,
        upwind_weight: float = 1.0,
        longitudinal_dispersivity: float = 0.0,
        transversal_dispersivity: float = 0.0,
    ) -> None:
        super().__init__(upwind_weight)
        self.longitudinal_dispersivity = longitudinal_dispersivity
        self.transversal_dispersivity = transversal_dispersivity
        self.mole_fraction_grad: np.ndarray = np.zeros(3)
        self.dispersion_tensor: np.ndarray = np.zeros((3, 3))

    def _dispersion(self, velocity: np.ndarray) -> np.ndarray:
        speed = np.linalg.norm(velocity)
        if speed == 0:
            return np.zeros((3, 3))
        a_l = self.longitudinal_dispersivity
        a_t = self.transversal_dispersivity
        return (
            a_t * speed * np.eye(3)
            + (a_l - a_t) * np.outer(velocity, velocity) / speed
        )

    def _darcy_velocity(self, context, normal, viscosity) -> np.ndarray:
        geom = context.geometry
        if geom.two_point or self.boundary:
            return self.normal_flux / (normal @ normal) * normal / viscosity
        perm = context.problem.permeability(geom.element)
        return -(perm @ self.potential_grad) / viscosity

    def update(
        self,
        context: MeshElementContext,
        scvf: int,
        time_level: int = TimeLevel.CURRENT,
    ) -> None:
        super().update(context, scvf, time_level)
        geom = context.geometry
        x = np.array(
            [context.vol_vars(k, time_level).mole_fraction for k in range(geom.num_cv)]
        )
        self.mole_fraction_grad = geom.scvf_grad_weights[scvf].T @ x
        mu = 0.5 * (
            context.vol_vars(self.i, time_level).viscosity
            + context.vol_vars(self.j, time_level).viscosity
        )
        self.dispersion_tensor = self._dispersion(
            self._darcy_velocity(context, geom.scvf_normals[scvf], mu)
        )

    def update_boundary(
        self,
        context: MeshElementContext,
        bnd: int,
        boundary_vol_vars: VolumeVariables,
        time_level: int = TimeLevel.CURRENT,
    ) -> None:
        super().update_boundary(context, bnd, boundary_vol_vars, time_level)
        geom = context.geometry
        inner = context.vol_vars(self.i, time_level)
        dist = geom.bnd_centers[bnd] - geom.cv_centers[self.i]
        self.mole_fraction_grad = (
            (boundary_vol_vars.mole_fraction - inner.mole_fraction)
            * dist
            / (dist @ dist)
        )
        mu = 0.5 * (inner.viscosity + boundary_vol_vars.viscosity)
        self.dispersion_tensor = self._dispersion(
            self._darcy_velocity(context, geom.bnd_normals[bnd], mu)
        )

    def diffusive_flux(
        self,
        context: MeshElementContext,
        normal: np.ndarray,
        time_level: int = TimeLevel.CURRENT,
    ) -> float:
        """Outflow of the second component by diffusion and dispersion.

        The molar density and diffusion coefficient are arithmetic means of the two
        sides, never upwinded.

        """
        vi = self.side(context, self.i, time_level)
        vj = self.side(context, self.j, time_level)
        molar_density = 0.5 * (vi.molar_density + vj.molar_density)
        diff_coeff = 0.5 * (vi.diffusion_coefficient + vj.diffusion_coefficient)
        grad_n = self.mole_fraction_grad @ normal
        disp_n = normal @ self.dispersion_tensor @ self.mole_fraction_grad
        return -molar_density * (diff_coeff * grad_n + disp_n)
