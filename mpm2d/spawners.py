# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# Spawner: a region that keeps emitting particles of one material at a fixed
# tick interval, e.g. a water jet or a waterfall source.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

from mpm2d.errors import ConfigurationError
from mpm2d.materials import Material, NeoHookean, NewtonianFluid
from mpm2d.shapes import Region


@dataclass(eq=False)
class Spawner:
    material: Material
    region: Region
    velocity: Tuple[float, float] = (0.0, 0.0)
    # Each emission adds U(0, 1) * jitter_a + U(0, 1) * jitter_b per component
    velocity_jitter_a: Tuple[float, float] = (0.0, 0.0)
    velocity_jitter_b: Tuple[float, float] = (0.0, 0.0)
    frequency: int = 0  # Ticks between emissions, 0 = no repeats
    spawn_on_creation: bool = True  # Emit on the first tick after being added
    max_particles: int = 0  # Skip emissions while the store holds this many, 0 = no cap
    max_age: int = 0  # Lifetime of emitted particles in ticks, 0 = forever
    spacing: Optional[float] = None  # Lattice spacing, defaults to dx / 2
    seed: Optional[int] = None

    created_at: int = field(default=0, init=False)
    emitted: int = field(default=0, init=False)  # Particles added so far
    positions: Optional[np.ndarray] = field(default=None, init=False, repr=False)  # Sampled once when attached

    def __post_init__(self):
        if not isinstance(self.material, (NeoHookean, NewtonianFluid)):
            raise ConfigurationError(f"Unknown material variant: {type(self.material).__name__}")
        if not isinstance(self.region, Region):
            raise ConfigurationError(f"region must be a Region, got {type(self.region).__name__}")
        if self.frequency < 0:
            raise ConfigurationError(f"frequency must be non-negative, got {self.frequency}")
        if self.max_particles < 0:
            raise ConfigurationError(f"max_particles must be non-negative, got {self.max_particles}")
        if self.max_age < 0:
            raise ConfigurationError(f"max_age must be non-negative, got {self.max_age}")
        if self.spacing is not None and not self.spacing > 0:
            raise ConfigurationError(f"spacing must be positive, got {self.spacing}")
        for name in ("velocity", "velocity_jitter_a", "velocity_jitter_b"):
            if np.shape(getattr(self, name)) != (2,):
                raise ConfigurationError(f"{name} must be a 2D vector, got {getattr(self, name)!r}")
        self.rng = np.random.default_rng(self.seed)

    def due(self, tick: int) -> bool:
        elapsed = tick - self.created_at
        if elapsed == 0:
            return self.spawn_on_creation
        return self.frequency > 0 and elapsed % self.frequency == 0

    def at_cap(self, count: int) -> bool:
        return self.max_particles > 0 and count >= self.max_particles

    def emission_velocity(self) -> np.ndarray:
        """Velocity shared by all particles of one emission."""
        v = np.asarray(self.velocity, dtype=np.float64)
        v = v + self.rng.random(2) * np.asarray(self.velocity_jitter_a, dtype=np.float64)
        v = v + self.rng.random(2) * np.asarray(self.velocity_jitter_b, dtype=np.float64)
        return v
