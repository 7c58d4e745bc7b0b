# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# MLS_MPM: Taichi-based 2D Moving Least Squares Material Point Method solver
# for Neo-Hookean solids and Newtonian fluids.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

import logging
from typing import Tuple

import taichi as ti

from mpm2d.errors import GridBoundsError, NumericalInstabilityError
from mpm2d.grid import is_finite
from mpm2d.materials import SOLID

logger = logging.getLogger(__name__)

# failure flags raised by the particle kernels
NON_POSITIVE_JACOBIAN = 1
NON_FINITE_STRESS = 2
NON_FINITE_VELOCITY = 4
NON_FINITE_DEFORMATION = 8

FAILURE_REASONS = {
    NON_POSITIVE_JACOBIAN: "deformation gradient determinant collapsed",
    NON_FINITE_STRESS: "non-finite stress",
    NON_FINITE_VELOCITY: "non-finite velocity",
    NON_FINITE_DEFORMATION: "non-finite deformation gradient",
}


@ti.func
def matrix_is_finite(A):
    return is_finite(A[0, 0]) and is_finite(A[0, 1]) and is_finite(A[1, 0]) and is_finite(A[1, 1])


@ti.func
def vector_is_finite(a):
    return is_finite(a[0]) and is_finite(a[1])


@ti.data_oriented
class MLS_MPM:
    def __init__(self, cfg, particles, grid, materials):

        self.cfg         = cfg
        self.particles   = particles
        self.grid        = grid
        self.materials   = materials

        # simulation parameters
        self.dtype       = ti.f32 if cfg.dtype == 'float32' else ti.f64
        self.n_grid      = cfg.n_grid
        self.dx          = cfg.dx
        self.inv_dx      = cfg.inv_dx
        self.min_jacobian = cfg.min_jacobian
        self.threads     = cfg.num_workers if cfg.num_workers > 0 else None
        self.lookahead   = cfg.wall_lookahead

        # simulable band: a particle here has its whole stencil inside the grid
        self.lower       = particles.lower
        self.upper       = particles.upper
        # inner faces of the wall layers
        self.wall_lower  = cfg.boundary_margin * cfg.dx
        self.wall_upper  = (cfg.n_grid - 1 - cfg.boundary_margin) * cfg.dx

        # MPM fields
        self.x       = particles.x
        self.v       = particles.v
        self.C       = particles.C
        self.F       = particles.F
        self.stress  = particles.stress
        self.mass    = particles.mass
        self.volume0 = particles.volume0
        self.material = particles.material
        self.x_new   = particles.x_new
        self.v_new   = particles.v_new
        self.C_new   = particles.C_new
        self.F_new   = particles.F_new
        self.escaped = particles.escaped

        # failure reporting
        self.fail_flags   = ti.field(dtype=ti.i32, shape=())
        self.bad_particle = ti.field(dtype=ti.i32, shape=())
        self.n_escaped    = ti.field(dtype=ti.i32, shape=())

        self.tick = 0

    @ti.func
    def fail(self, p, flag):
        ti.atomic_or(self.fail_flags[None], flag)
        ti.atomic_min(self.bad_particle[None], p)

    @ti.kernel
    def compute_stress(self, n: ti.i32):
        ti.loop_config(parallelize=self.threads)
        for p in range(n):
            F = self.F[p]
            J = F.determinant()
            slot = self.material[p]
            tau = ti.Matrix.zero(self.dtype, 2, 2)
            if self.materials.kind[slot] == SOLID and J <= self.min_jacobian:
                self.fail(p, NON_POSITIVE_JACOBIAN)
            else:
                tau = self.materials.kirchhoff_stress(slot, F, self.C[p], self.mass[p], self.volume0[p])
                if not matrix_is_finite(tau):
                    self.fail(p, NON_FINITE_STRESS)
                    tau = ti.Matrix.zero(self.dtype, 2, 2)
            self.stress[p] = tau

    @ti.kernel
    def p2g(self, n: ti.i32, dt: float):
        ti.loop_config(parallelize=self.threads)
        for p in range(n):
            Xp = self.x[p] * self.inv_dx
            base = ti.cast(Xp - 0.5, ti.i32)
            fx = Xp - base.cast(self.dtype)
            w = [0.5 * (1.5 - fx) ** 2, 0.75 - (fx - 1.0) ** 2, 0.5 * (fx - 0.5) ** 2]
            # force folded into the affine momentum term as an impulse
            stress = (-dt * self.volume0[p] * 4 * self.inv_dx * self.inv_dx) * self.stress[p]
            affine = stress + self.mass[p] * self.C[p]
            for i, j in ti.static(ti.ndrange(3, 3)):
                offset = ti.Vector([i, j])
                dpos = (offset.cast(self.dtype) - fx) * self.dx
                weight = w[i].x * w[j].y
                self.grid.accumulate(base + offset,
                                     weight * self.mass[p],
                                     weight * (self.mass[p] * self.v[p] + affine @ dpos))

    @ti.kernel
    def g2p(self, n: ti.i32, dt: float):
        ti.loop_config(parallelize=self.threads)
        for p in range(n):
            Xp = self.x[p] * self.inv_dx
            base = ti.cast(Xp - 0.5, ti.i32)
            fx = Xp - base.cast(self.dtype)
            w = [0.5 * (1.5 - fx) ** 2, 0.75 - (fx - 1.0) ** 2, 0.5 * (fx - 0.5) ** 2]
            new_v = ti.Vector.zero(self.dtype, 2)
            new_C = ti.Matrix.zero(self.dtype, 2, 2)
            for i, j in ti.static(ti.ndrange(3, 3)):
                offset = ti.Vector([i, j])
                dpos = offset.cast(self.dtype) - fx
                gv = self.grid.grid_v[base + offset]
                weight = w[i].x * w[j].y
                new_v += weight * gv
                new_C += 4 * self.inv_dx * weight * gv.outer_product(dpos)

            new_x = self.x[p] + dt * new_v
            # keep the particle where its stencil stays on the lattice
            out = 0
            for d in ti.static(range(2)):
                if new_x[d] < self.lower:
                    new_x[d] = self.lower
                    new_v[d] = ti.max(new_v[d], 0.0)
                    out = 1
                if new_x[d] > self.upper:
                    new_x[d] = self.upper
                    new_v[d] = ti.min(new_v[d], 0.0)
                    out = 1
            self.escaped[p] = out
            if out:
                ti.atomic_add(self.n_escaped[None], 1)

            if ti.static(self.lookahead > 0):
                # steer the velocity so the predicted position stays off the walls
                x_next = new_x + self.lookahead * new_v
                for d in ti.static(range(2)):
                    if x_next[d] < self.wall_lower:
                        new_v[d] += (self.wall_lower - x_next[d]) / self.lookahead
                    if x_next[d] > self.wall_upper:
                        new_v[d] += (self.wall_upper - x_next[d]) / self.lookahead

            slot = self.material[p]
            new_F = (ti.Matrix.identity(self.dtype, 2) + dt * new_C) @ self.F[p]
            new_F = self.materials.project_deformation(slot, new_F)

            if not (vector_is_finite(new_v) and matrix_is_finite(new_C)):
                self.fail(p, NON_FINITE_VELOCITY)
            if not matrix_is_finite(new_F):
                self.fail(p, NON_FINITE_DEFORMATION)
            elif self.materials.kind[slot] == SOLID and new_F.determinant() <= self.min_jacobian:
                self.fail(p, NON_POSITIVE_JACOBIAN)

            self.x_new[p] = new_x
            self.v_new[p] = new_v
            self.C_new[p] = new_C
            self.F_new[p] = new_F

    def reset_failures(self):
        self.fail_flags[None] = 0
        self.bad_particle[None] = self.particles.capacity
        self.n_escaped[None] = 0

    def check(self, phase: str):
        """Raise if the last particle kernel flagged a failure."""
        flags = self.fail_flags[None]
        if flags == 0:
            return
        reason = ", ".join(r for f, r in FAILURE_REASONS.items() if flags & f)
        particle = self.bad_particle[None]
        logger.error(f"Step {self.tick} failed in {phase}: {reason} (first particle {particle})")
        raise NumericalInstabilityError(phase, reason, particle=particle)

    def check_grid(self, phase: str):
        rejected = self.grid.rejected[None]
        if rejected:
            logger.error(f"Step {self.tick}: {rejected} grid writes fell outside the lattice in {phase}")
            raise GridBoundsError(f"{rejected} stencil nodes outside the lattice during {phase}")
        node = self.grid.first_bad_node()
        if node is not None:
            logger.error(f"Step {self.tick} failed in {phase}: non-finite grid velocity at node {node}")
            raise NumericalInstabilityError(phase, "non-finite grid velocity", node=node)

    def substep(self, dt: float, gravity: Tuple[float, float]) -> int:
        """
        Run one substep: reset -> stress -> P2G -> grid update -> G2P -> commit.
        Every kernel launch completes before the next starts, so each arrow is
        a full barrier. Returns the number of particles that hit the domain edge.
        """
        n = self.particles.count
        self.reset_failures()
        self.grid.reset()

        if n > 0:
            self.compute_stress(n)
            self.check("stress")

            self.p2g(n, dt)
            self.check_grid("p2g")

            self.grid.update(dt, gravity)
            self.check_grid("grid_update")

            self.g2p(n, dt)
            self.check("g2p")

            self.particles.commit(n)

        self.tick += 1
        return self.n_escaped[None]

    def step(self, dt: float, gravity: Tuple[float, float], n_substeps: int = 1) -> int:
        escaped = 0
        for _ in range(n_substeps):
            escaped += self.substep(dt, gravity)
        return escaped
