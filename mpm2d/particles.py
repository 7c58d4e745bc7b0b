# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# ParticleStore: persistent material point state (positions, velocities,
# deformation gradients, APIC affine matrices) kept in taichi fields of fixed
# capacity, with host-side insertion, removal and snapshots.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

import logging
from typing import Dict

import numpy as np
import taichi as ti

from mpm2d.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _write(field, start: int, values):
    arr = field.to_numpy()
    arr[start:start + len(values)] = values
    field.from_numpy(arr)


@ti.data_oriented
class ParticleStore:
    """Manages MPM particle state."""

    def __init__(self, cfg):
        self.capacity = n = cfg.max_particles
        self.dtype = ti.f32 if cfg.dtype == 'float32' else ti.f64
        self.lower = cfg.dx
        self.upper = (cfg.n_grid - 2) * cfg.dx

        # particle state
        self.x = ti.Vector.field(2, dtype=self.dtype, shape=n)       # positions
        self.v = ti.Vector.field(2, dtype=self.dtype, shape=n)       # velocities
        self.C = ti.Matrix.field(2, 2, dtype=self.dtype, shape=n)    # APIC affine matrix
        self.F = ti.Matrix.field(2, 2, dtype=self.dtype, shape=n)    # deformation gradient
        self.J = ti.field(dtype=self.dtype, shape=n)                 # determinant of F
        self.stress = ti.Matrix.field(2, 2, dtype=self.dtype, shape=n)  # last Kirchhoff stress

        # particle properties
        self.mass = ti.field(dtype=self.dtype, shape=n)
        self.volume0 = ti.field(dtype=self.dtype, shape=n)
        self.material = ti.field(dtype=ti.i32, shape=n)   # material table slot
        self.created_at = ti.field(dtype=ti.i32, shape=n)  # tick of creation
        self.max_age = ti.field(dtype=ti.i32, shape=n)     # ticks to live, 0 = forever

        # G2P results, copied into the state above only once a substep succeeds
        self.x_new = ti.Vector.field(2, dtype=self.dtype, shape=n)
        self.v_new = ti.Vector.field(2, dtype=self.dtype, shape=n)
        self.C_new = ti.Matrix.field(2, 2, dtype=self.dtype, shape=n)
        self.F_new = ti.Matrix.field(2, 2, dtype=self.dtype, shape=n)
        self.escaped = ti.field(dtype=ti.i32, shape=n)

        self._persistent = [self.x, self.v, self.C, self.F, self.J, self.stress,
                            self.mass, self.volume0, self.material,
                            self.created_at, self.max_age]
        self.count = 0

    def __len__(self):
        return self.count

    @ti.kernel
    def _init_state(self, start: ti.i32, end: ti.i32):
        for p in range(start, end):
            self.C[p] = ti.Matrix.zero(self.dtype, 2, 2)
            self.F[p] = ti.Matrix.identity(self.dtype, 2)  # Initial deformation = identity
            self.J[p] = 1.0
            self.stress[p] = ti.Matrix.zero(self.dtype, 2, 2)
            self.escaped[p] = 0

    @ti.kernel
    def commit(self, n: ti.i32):
        """Accept the staged G2P results."""
        for p in range(n):
            self.x[p] = self.x_new[p]
            self.v[p] = self.v_new[p]
            self.C[p] = self.C_new[p]
            self.F[p] = self.F_new[p]
            self.J[p] = self.F_new[p].determinant()

    def inside(self, positions: np.ndarray) -> np.ndarray:
        """Mask of positions inside the band where a full 3x3 stencil fits."""
        return np.all((positions >= self.lower) & (positions <= self.upper), axis=1)

    def add(self, positions, velocities, mass, volume0, material: int,
            tick: int = 0, max_age: int = 0) -> int:
        """
        Append particles. ``mass`` and ``volume0`` may be scalars or per-particle
        arrays. Returns the index of the first new particle.
        """
        positions = np.asarray(positions, dtype=np.float64).reshape(-1, 2)
        k = len(positions)
        velocities = np.broadcast_to(np.asarray(velocities, dtype=np.float64), (k, 2))
        mass = np.broadcast_to(np.asarray(mass, dtype=np.float64), (k,))
        volume0 = np.broadcast_to(np.asarray(volume0, dtype=np.float64), (k,))

        if self.count + k > self.capacity:
            raise ConfigurationError(f"Too many particles: {self.count + k} > {self.capacity}")
        if not (np.all(np.isfinite(positions)) and np.all(np.isfinite(velocities))):
            raise ConfigurationError("Particle positions and velocities must be finite")
        if not np.all(mass > 0):
            raise ConfigurationError("Particle mass must be positive")
        if not np.all(volume0 > 0):
            raise ConfigurationError("Particle volume must be positive")
        if not np.all(self.inside(positions)):
            raise ConfigurationError(
                f"Particle positions must lie within [{self.lower}, {self.upper}] on both axes")
        if max_age < 0:
            raise ConfigurationError(f"max_age must be non-negative, got {max_age}")

        start = self.count
        if k == 0:
            return start
        _write(self.x, start, positions)
        _write(self.v, start, velocities)
        _write(self.mass, start, mass)
        _write(self.volume0, start, volume0)
        _write(self.material, start, np.full(k, material, dtype=np.int32))
        _write(self.created_at, start, np.full(k, tick, dtype=np.int32))
        _write(self.max_age, start, np.full(k, max_age, dtype=np.int32))
        self._init_state(start, start + k)
        self.count += k
        return start

    def remove(self, mask) -> int:
        """Drop the particles where ``mask`` is True, keeping the order of the rest."""
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (self.count,):
            raise ValueError(f"mask must have shape ({self.count},), got {mask.shape}")
        n_removed = int(mask.sum())
        if n_removed == 0:
            return 0
        keep = ~mask
        kept = self.count - n_removed
        for field in self._persistent:
            arr = field.to_numpy()
            out = np.zeros_like(arr)
            out[:kept] = arr[:self.count][keep]
            field.from_numpy(out)
        self.count = kept
        return n_removed

    def clear(self):
        """Clear all particles."""
        self.count = 0

    def positions(self) -> np.ndarray:
        return self.x.to_numpy()[:self.count]

    def velocities(self) -> np.ndarray:
        return self.v.to_numpy()[:self.count]

    def set_deformation_gradient(self, index: int, F):
        if not 0 <= index < self.count:
            raise IndexError(f"particle {index} out of range")
        self.F[index] = np.asarray(F, dtype=np.float64).tolist()

    def escaped_mask(self) -> np.ndarray:
        return self.escaped.to_numpy()[:self.count].astype(bool)

    def expired_mask(self, tick: int) -> np.ndarray:
        created = self.created_at.to_numpy()[:self.count]
        max_age = self.max_age.to_numpy()[:self.count]
        return (max_age > 0) & (tick > created + max_age)

    def snapshot(self) -> Dict[str, np.ndarray]:
        n = self.count
        return {
            "position": self.x.to_numpy()[:n],
            "velocity": self.v.to_numpy()[:n],
            "affine_velocity": self.C.to_numpy()[:n],
            "deformation_gradient": self.F.to_numpy()[:n],
            "J": self.J.to_numpy()[:n],
            "stress": self.stress.to_numpy()[:n],
            "mass": self.mass.to_numpy()[:n],
            "volume0": self.volume0.to_numpy()[:n],
            "material": self.material.to_numpy()[:n],
        }
