# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# High-level wrapper around the MLS-MPM solver: particle spawning, stepping,
# expiry and read-only snapshots for a rendering layer.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import taichi as ti

from mpm2d.config.base_config import Config
from mpm2d.errors import ConfigurationError
from mpm2d.grid import Grid
from mpm2d.materials import Material, MaterialTable, NeoHookean, NewtonianFluid
from mpm2d.particles import ParticleStore
from mpm2d.shapes import Region
from mpm2d.spawners import Spawner
from mpm2d.simulators.mls_mpm import MLS_MPM

logger = logging.getLogger(__name__)


def init_backend(cfg: Config, **kwargs):
    """ti.init with the backend and float precision of ``cfg``."""
    arch = getattr(ti, cfg.arch, None)
    if arch is None:
        raise ConfigurationError(f"Unknown taichi arch {cfg.arch!r}")
    default_fp = ti.f32 if cfg.dtype == "float32" else ti.f64
    ti.init(arch=arch, default_fp=default_fp, **kwargs)


@dataclass(frozen=True)
class ParticleSnapshot:
    """Read-only copy of the particle state for one render frame."""
    position: np.ndarray
    velocity: np.ndarray
    material: np.ndarray  # material table slot
    kind: np.ndarray  # SOLID or FLUID
    density: np.ndarray
    stress_norm: np.ndarray  # Frobenius norm of the Kirchhoff stress
    J: np.ndarray

    def __len__(self):
        return len(self.position)


@dataclass
class StepStats:
    steps: int = 0
    clamped: int = 0
    removed: int = 0
    expired: int = 0


class Simulation:

    def __init__(self, cfg: Optional[Config] = None):

        self.cfg = (cfg or Config()).validate()

        self.materials = MaterialTable(self.cfg)
        self.store = ParticleStore(self.cfg)
        self.grid = Grid(self.cfg)
        self.simulator = MLS_MPM(self.cfg, self.store, self.grid, self.materials)

        self.gravity_enabled = self.cfg.gravity_enabled
        self.spawners: List[Spawner] = []
        self.stats = StepStats()
        self._warned_dt = False

        logger.info(f"Grid {self.cfg.n_grid}x{self.cfg.n_grid}, dx={self.cfg.dx:.4g}, "
                    f"capacity={self.cfg.max_particles}, dt={self.cfg.dt}, substeps={self.cfg.substeps}")

    @property
    def tick(self) -> int:
        return self.simulator.tick

    @property
    def gravity(self):
        return self.cfg.gravity if self.gravity_enabled else (0.0, 0.0)

    def toggle_gravity(self) -> bool:
        self.gravity_enabled = not self.gravity_enabled
        logger.info(f"Gravity {'enabled' if self.gravity_enabled else 'disabled'}")
        return self.gravity_enabled

    def spawn(self, material: Material, region: Region,
              velocity: Sequence[float] = (0.0, 0.0),
              spacing: Optional[float] = None,
              max_age: int = 0) -> int:
        """
        Fill ``region`` with particles of ``material``. Not safe to call while
        a step is running. Returns the number of particles added.
        """
        if not isinstance(material, (NeoHookean, NewtonianFluid)):
            raise ConfigurationError(f"Unknown material variant: {type(material).__name__}")
        spacing = self._spacing(spacing)
        positions = self._sample(region, spacing)
        if len(positions) == 0:
            return 0
        self._emit(material, positions, velocity, spacing, max_age)
        logger.info(f"Spawned {len(positions)} {type(material).__name__} particles, total {self.store.count}")
        return len(positions)

    def _spacing(self, spacing: Optional[float]) -> float:
        if spacing is None:
            spacing = 0.5 * self.cfg.dx
        if not spacing > 0:
            raise ConfigurationError(f"spacing must be positive, got {spacing}")
        return spacing

    def _sample(self, region: Region, spacing: float) -> np.ndarray:
        positions = region.sample(spacing)
        inside = self.store.inside(positions)
        dropped = int((~inside).sum())
        if dropped:
            logger.warning(f"Dropped {dropped} of {len(positions)} spawn positions outside the simulable region")
        positions = positions[inside]
        if len(positions) == 0:
            logger.warning(f"{type(region).__name__} produced no particles inside the grid")
        return positions

    def _emit(self, material: Material, positions: np.ndarray, velocity, spacing: float, max_age: int):
        slot = self.materials.register(material)
        volume0 = spacing ** 2
        mass = material.density * volume0
        self.store.add(positions, velocity, mass, volume0, slot, tick=self.tick, max_age=max_age)
        logger.debug(f"Added {len(positions)} particles (mass={mass:.3e}, volume={volume0:.3e}) at tick {self.tick}")

    def add_spawner(self, spawner: Spawner) -> Spawner:
        """
        Attach ``spawner``. It counts ticks from now: with ``spawn_on_creation``
        it emits before the next substep, then every ``frequency`` substeps.
        """
        if not isinstance(spawner, Spawner):
            raise ConfigurationError(f"Expected a Spawner, got {type(spawner).__name__}")
        spacing = self._spacing(spawner.spacing)
        spawner.spacing = spacing
        spawner.positions = self._sample(spawner.region, spacing)
        spawner.created_at = self.tick
        self.spawners.append(spawner)
        logger.info(f"Added {type(spawner.material).__name__} spawner of {len(spawner.positions)} particles "
                    f"every {spawner.frequency} ticks")
        return spawner

    def remove_spawner(self, spawner: Spawner):
        self.spawners.remove(spawner)

    def _tick_spawners(self):
        for spawner in self.spawners:
            if not spawner.due(self.tick) or len(spawner.positions) == 0:
                continue
            if spawner.at_cap(self.store.count):
                continue
            n = len(spawner.positions)
            if self.store.count + n > self.store.capacity:
                logger.warning(f"Spawner skipped at tick {self.tick}: {self.store.count + n} particles "
                               f"would exceed capacity {self.store.capacity}")
                continue
            self._emit(spawner.material, spawner.positions, spawner.emission_velocity(),
                       spawner.spacing, spawner.max_age)
            spawner.emitted += n

    def remove(self, mask) -> int:
        return self.store.remove(mask)

    def clear(self):
        self.store.clear()
        self.grid.reset()

    def stable_dt(self) -> float:
        """Explicit time step limit from the fastest material wave speed in use."""
        used = set(np.unique(self.store.material.to_numpy()[:self.store.count]).tolist())
        speeds = [m.wave_speed() for i, m in enumerate(self.materials.materials) if i in used]
        if not speeds:
            return float("inf")
        return self.cfg.cfl * self.cfg.dx / max(speeds)

    def step(self, dt: Optional[float] = None, substeps: Optional[int] = None):
        """
        Advance ``substeps`` substeps of size ``dt`` (config defaults when
        omitted). Raises NumericalInstabilityError if a substep fails; particles
        then keep the state of the last completed substep.
        """
        dt = self.cfg.dt if dt is None else dt
        substeps = self.cfg.substeps if substeps is None else substeps
        if not dt > 0 or substeps < 1:
            raise ConfigurationError(f"invalid step dt={dt}, substeps={substeps}")

        if not self._warned_dt and dt > self.stable_dt():
            logger.warning(f"dt={dt} exceeds the estimated stable time step {self.stable_dt():.3e}")
            self._warned_dt = True

        for _ in range(substeps):
            self._tick_spawners()
            escaped = self.simulator.substep(dt, self.gravity)
            if escaped:
                self._handle_escaped(escaped)
        self.stats.steps += 1
        self._expire()

    def _handle_escaped(self, escaped: int):
        if self.cfg.out_of_bounds == "remove":
            removed = self.store.remove(self.store.escaped_mask())
            self.stats.removed += removed
            logger.warning(f"Removed {removed} particles that left the simulable region at tick {self.tick}")
        else:
            self.stats.clamped += escaped
            logger.debug(f"Clamped {escaped} particles to the domain edge at tick {self.tick}")

    def _expire(self):
        expired = self.store.remove(self.store.expired_mask(self.tick))
        if expired:
            self.stats.expired += expired
            logger.debug(f"Expired {expired} particles at tick {self.tick}")

    def particles(self) -> ParticleSnapshot:
        snap = self.store.snapshot()
        kind = self.materials.kinds()[snap["material"]]
        J = snap["J"]
        density = snap["mass"] / (snap["volume0"] * J)
        stress_norm = np.sqrt(np.sum(snap["stress"] ** 2, axis=(1, 2)))
        arrays = dict(position=snap["position"], velocity=snap["velocity"],
                      material=snap["material"], kind=kind, density=density,
                      stress_norm=stress_norm, J=J)
        for arr in arrays.values():
            arr.setflags(write=False)
        return ParticleSnapshot(**arrays)
