"""
2D MLS-MPM simulation of elastic solids and viscous fluids on taichi.
"""

from mpm2d.config.base_config import Config, load_config
from mpm2d.errors import (ConfigurationError, GridBoundsError, MPMError,
                          NumericalInstabilityError)
from mpm2d.materials import NeoHookean, NewtonianFluid, jelly, steel, water, wood
from mpm2d.simulation import ParticleSnapshot, Simulation, init_backend
from mpm2d.spawners import Spawner

__all__ = [
    'Config', 'load_config',
    'MPMError', 'ConfigurationError', 'GridBoundsError', 'NumericalInstabilityError',
    'NeoHookean', 'NewtonianFluid', 'water', 'steel', 'wood', 'jelly',
    'Simulation', 'ParticleSnapshot', 'init_backend', 'Spawner',
]
