# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# Grid: background Eulerian lattice holding per-step mass and momentum
# accumulators, plus the grid force / wall boundary pass.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

import logging
from typing import Optional, Tuple

import numpy as np
import taichi as ti

from mpm2d.config.base_config import BOUNDARY_MODES
from mpm2d.errors import GridBoundsError

logger = logging.getLogger(__name__)

# boundary condition modes
SEPARATE, STICKY, BOUNCE, FRICTION = (
    BOUNDARY_MODES.index(m) for m in ("separate", "sticky", "bounce", "friction"))

# values at or above this magnitude count as diverged
FINITE_LIMIT = 1e30


@ti.func
def is_finite(x):
    # NaN fails every comparison, so it lands here too
    return ti.abs(x) <= FINITE_LIMIT


@ti.data_oriented
class Grid:
    """Background Eulerian grid, reset and rebuilt every substep."""

    def __init__(self, cfg):
        self.n_grid = cfg.n_grid
        self.dx = cfg.dx
        self.inv_dx = cfg.inv_dx
        self.dtype = ti.f32 if cfg.dtype == 'float32' else ti.f64

        self.margin = cfg.boundary_margin
        self.mode = BOUNDARY_MODES.index(cfg.boundary_mode)
        self.restitution = cfg.restitution
        self.friction = cfg.friction
        self.mass_epsilon = cfg.mass_epsilon
        self.threads = cfg.num_workers if cfg.num_workers > 0 else None

        g = cfg.n_grid
        self.grid_m = ti.field(dtype=self.dtype, shape=(g, g))
        # momentum during P2G, velocity after finalize_velocities
        self.grid_v = ti.Vector.field(2, dtype=self.dtype, shape=(g, g))

        # writes rejected for falling outside the lattice
        self.rejected = ti.field(dtype=ti.i32, shape=())
        # smallest flattened index of a node with non-finite velocity
        self.bad_node = ti.field(dtype=ti.i32, shape=())

        self.finalized = False
        self.reset()

    @ti.kernel
    def clear_grid(self):
        for I in ti.grouped(self.grid_m):
            self.grid_v[I] = ti.Vector.zero(self.dtype, 2)
            self.grid_m[I] = 0.0

    def reset(self):
        """Zero all accumulators. Called once per substep before P2G."""
        self.clear_grid()
        self.rejected[None] = 0
        self.bad_node[None] = self.n_grid * self.n_grid
        self.finalized = False

    @ti.func
    def in_lattice(self, cell):
        return cell[0] >= 0 and cell[0] < self.n_grid and cell[1] >= 0 and cell[1] < self.n_grid

    @ti.func
    def accumulate(self, cell, mass_delta, momentum_delta):
        """Atomically add one particle's contribution to a node."""
        if self.in_lattice(cell):
            self.grid_m[cell] += mass_delta
            self.grid_v[cell] += momentum_delta
        else:
            ti.atomic_add(self.rejected[None], 1)

    @ti.func
    def apply_walls(self, I, v):
        # velocity components pointing into a wall are removed
        out = v
        for d in ti.static(range(2)):
            into_lower = I[d] < self.margin and out[d] < 0
            into_upper = I[d] >= self.n_grid - self.margin and out[d] > 0
            if into_lower or into_upper:
                if ti.static(self.mode == STICKY):
                    out = ti.Vector.zero(self.dtype, 2)
                if ti.static(self.mode == SEPARATE):
                    out[d] = 0.0
                if ti.static(self.mode == BOUNCE):
                    out[d] = -self.restitution * out[d]
                if ti.static(self.mode == FRICTION):
                    v_n = ti.abs(out[d])
                    out[d] = 0.0
                    v_t = out[1 - d]
                    slide = ti.max(ti.abs(v_t) - self.friction * v_n, 0.0)
                    if v_t < 0:
                        slide = -slide
                    out[1 - d] = slide
        return out

    @ti.kernel
    def finalize_velocities(self, dt: float, gx: float, gy: float):
        """Momentum to velocity, gravity, then wall boundary conditions."""
        ti.loop_config(parallelize=self.threads)
        for i, j in ti.ndrange(self.n_grid, self.n_grid):
            m = self.grid_m[i, j]
            v = ti.Vector.zero(self.dtype, 2)
            if m > self.mass_epsilon:
                v = self.grid_v[i, j] / m
                v += dt * ti.Vector([gx, gy], dt=self.dtype)
                v = self.apply_walls(ti.Vector([i, j]), v)
                if not (is_finite(v[0]) and is_finite(v[1])):
                    ti.atomic_min(self.bad_node[None], i * self.n_grid + j)
            self.grid_v[i, j] = v

    def update(self, dt: float, gravity: Tuple[float, float]):
        self.finalize_velocities(dt, gravity[0], gravity[1])
        self.finalized = True

    def first_bad_node(self) -> Optional[Tuple[int, int]]:
        flat = self.bad_node[None]
        if flat >= self.n_grid * self.n_grid:
            return None
        return divmod(flat, self.n_grid)

    def read(self, cell) -> Tuple[float, np.ndarray]:
        """(mass, velocity) of one node; velocity is momentum before finalizing."""
        i, j = int(cell[0]), int(cell[1])
        if not (0 <= i < self.n_grid and 0 <= j < self.n_grid):
            raise GridBoundsError(f"cell {(i, j)} outside {self.n_grid}x{self.n_grid} grid")
        return float(self.grid_m[i, j]), self.grid_v[i, j].to_numpy()

    def to_numpy(self) -> Tuple[np.ndarray, np.ndarray]:
        return self.grid_m.to_numpy(), self.grid_v.to_numpy()

    def total_mass(self) -> float:
        return float(self.grid_m.to_numpy().sum())

    def total_momentum(self) -> np.ndarray:
        m, v = self.to_numpy()
        if self.finalized:
            return (m[..., None] * v).sum(axis=(0, 1))
        return v.sum(axis=(0, 1))
