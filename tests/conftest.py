import numpy as np
import pytest
import taichi as ti

from mpm2d.config.base_config import Config
from mpm2d.simulation import Simulation


def small_config(**overrides) -> Config:
    params = dict(n_grid=32, max_particles=4096, dtype="float64",
                  dt=1e-4, substeps=1, gravity=(0.0, 0.0))
    params.update(overrides)
    return Config(**params).validate()


@pytest.fixture(scope="module", autouse=True)
def taichi_backend():
    # one runtime per test module keeps the number of live field trees small
    ti.init(arch=ti.cpu, default_fp=ti.f64, random_seed=0)
    yield
    ti.reset()


@pytest.fixture
def cfg():
    return small_config()


@pytest.fixture
def sim(cfg):
    return Simulation(cfg)


def set_velocities(sim, velocities):
    full = np.zeros((sim.store.capacity, 2))
    full[:len(velocities)] = velocities
    sim.store.v.from_numpy(full)


def run_p2g(sim, dt=1e-4):
    """Reset the grid and scatter the current particles onto it."""
    n = sim.store.count
    sim.grid.reset()
    sim.simulator.reset_failures()
    sim.simulator.compute_stress(n)
    sim.simulator.p2g(n, dt)
