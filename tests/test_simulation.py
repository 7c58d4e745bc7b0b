import logging

import numpy as np
import pytest

from mpm2d.errors import ConfigurationError
from mpm2d.materials import FLUID, SOLID, jelly, steel, water
from mpm2d.shapes import Circle, Point, Rectangle
from mpm2d.simulation import Simulation, init_backend
from mpm2d.spawners import Spawner
from tests.conftest import small_config


def test_spawn_fills_region(sim, cfg):
    added = sim.spawn(water(), Rectangle((0.25, 0.25), (0.5, 0.5)))
    # four particles per cell at the default spacing
    assert added == 8 * 8 * 4
    assert len(sim.store) == added
    snap = sim.store.snapshot()
    np.testing.assert_allclose(snap["volume0"], (0.5 * cfg.dx) ** 2)
    np.testing.assert_allclose(snap["mass"], water().density * (0.5 * cfg.dx) ** 2)


def test_spawn_custom_spacing_and_velocity(sim):
    added = sim.spawn(jelly(), Rectangle((0.25, 0.25), (0.5, 0.5)), velocity=(1.0, 2.0), spacing=0.05)
    assert added == 25
    np.testing.assert_allclose(sim.store.velocities(), np.tile([1.0, 2.0], (25, 1)))


def test_spawn_drops_positions_outside(sim, caplog):
    with caplog.at_level(logging.WARNING, logger="mpm2d"):
        added = sim.spawn(water(), Rectangle((0.0, 0.4), (0.2, 0.6)))
    assert 0 < added < len(Rectangle((0.0, 0.4), (0.2, 0.6)).sample(0.5 * sim.cfg.dx))
    assert np.all(sim.store.positions() >= sim.store.lower)
    assert "outside the simulable region" in caplog.text


def test_spawn_entirely_outside(sim):
    assert sim.spawn(water(), Point((0.99, 0.5))) == 0
    assert len(sim.store) == 0
    assert sim.materials.materials == []


def test_spawn_rejects_unknown_material(sim):
    with pytest.raises(ConfigurationError):
        sim.spawn("honey", Point((0.5, 0.5)))
    with pytest.raises(ConfigurationError):
        sim.spawn(water(), Point((0.5, 0.5)), spacing=0.0)


def test_spawn_beyond_capacity():
    sim = Simulation(small_config(max_particles=10))
    with pytest.raises(ConfigurationError):
        sim.spawn(water(), Rectangle((0.25, 0.25), (0.5, 0.5)))
    assert len(sim.store) == 0


def test_particles_snapshot(sim):
    sim.spawn(water(), Rectangle((0.25, 0.25), (0.3, 0.3)))
    sim.spawn(steel(), Point((0.7, 0.7)))
    snap = sim.particles()
    assert len(snap) == len(sim.store)
    assert snap.position.shape == (len(snap), 2)
    assert snap.kind[:-1].tolist() == [FLUID] * (len(snap) - 1)
    assert snap.kind[-1] == SOLID
    np.testing.assert_allclose(snap.density[:-1], 1.0)
    np.testing.assert_allclose(snap.density[-1], 1.5)
    np.testing.assert_allclose(snap.J, 1.0)
    np.testing.assert_allclose(snap.stress_norm, 0.0)
    with pytest.raises(ValueError):
        snap.position[0, 0] = 0.0


def test_snapshot_is_a_copy(sim):
    sim.spawn(water(), Point((0.5, 0.5)), velocity=(1.0, 0.0))
    snap = sim.particles()
    sim.step(substeps=2)
    np.testing.assert_allclose(snap.position, [[0.5, 0.5]])


def test_step_advances_tick(sim):
    sim.spawn(water(), Point((0.5, 0.5)))
    sim.step(substeps=3)
    sim.step(substeps=2)
    assert sim.tick == 5
    assert sim.stats.steps == 2


def test_step_uses_config_defaults():
    sim = Simulation(small_config(substeps=4))
    sim.step()
    assert sim.tick == 4


def test_step_on_empty_store(sim):
    sim.step(substeps=2)
    assert sim.tick == 2


@pytest.mark.parametrize("kwargs", [dict(dt=0.0), dict(dt=-1e-4), dict(substeps=0)])
def test_step_rejects_invalid_arguments(sim, kwargs):
    with pytest.raises(ConfigurationError):
        sim.step(**kwargs)


def test_gravity_toggle():
    sim = Simulation(small_config(gravity=(0.0, -10.0)))
    sim.spawn(water(), Point((0.5, 0.5)))
    assert sim.gravity == (0.0, -10.0)

    assert sim.toggle_gravity() is False
    assert sim.gravity == (0.0, 0.0)
    sim.step(substeps=2)
    np.testing.assert_allclose(sim.store.velocities(), [[0.0, 0.0]], atol=1e-12)

    assert sim.toggle_gravity() is True
    sim.step(substeps=2)
    assert sim.store.velocities()[0, 1] < 0.0


def test_gravity_disabled_by_config():
    sim = Simulation(small_config(gravity=(0.0, -10.0), gravity_enabled=False))
    assert sim.gravity == (0.0, 0.0)


def test_particles_expire(sim):
    sim.spawn(water(), Point((0.5, 0.5)))
    sim.spawn(water(), Point((0.3, 0.3)), max_age=2)
    sim.step(substeps=2)
    assert len(sim.store) == 2
    sim.step(substeps=1)
    assert len(sim.store) == 1
    assert sim.stats.expired == 1
    np.testing.assert_allclose(sim.store.positions(), [[0.5, 0.5]], atol=1e-12)


def test_remove_and_clear(sim):
    sim.spawn(water(), Rectangle((0.25, 0.25), (0.3, 0.3)))
    n = len(sim.store)
    mask = np.zeros(n, dtype=bool)
    mask[::2] = True
    assert sim.remove(mask) == mask.sum()
    assert len(sim.store) == n - mask.sum()
    sim.clear()
    assert len(sim.store) == 0
    assert sim.grid.total_mass() == 0.0


def test_stable_dt(sim, cfg):
    assert sim.stable_dt() == float("inf")
    sim.spawn(water(), Point((0.5, 0.5)))
    assert sim.stable_dt() == pytest.approx(cfg.cfl * cfg.dx / water().wave_speed())
    sim.spawn(steel(), Point((0.3, 0.3)))
    assert sim.stable_dt() == pytest.approx(cfg.cfl * cfg.dx / steel().wave_speed())


def test_large_dt_warns_once(sim, caplog):
    sim.spawn(steel(), Point((0.5, 0.5)))
    with caplog.at_level(logging.WARNING, logger="mpm2d"):
        sim.step(dt=1e-3, substeps=1)
        sim.step(dt=1e-3, substeps=1)
    assert caplog.text.count("exceeds the estimated stable time step") == 1


def test_init_backend_unknown_arch():
    with pytest.raises(ConfigurationError):
        init_backend(small_config(arch="abacus"))


def test_moving_jelly_disk_stays_intact(sim):
    added = sim.spawn(jelly(), Circle((0.5, 0.5), 0.1), velocity=(0.5, 0.0))
    sim.step(substeps=10)
    snap = sim.particles()
    assert len(snap) == added
    assert np.all(np.isfinite(snap.position))
    assert np.all(snap.J > 0)
    # the disk drifts right as a whole
    assert snap.velocity[:, 0].mean() == pytest.approx(0.5, rel=1e-6)


@pytest.mark.parametrize("on_creation, expected", [(True, 3), (False, 2)])
def test_spawner_cadence(sim, on_creation, expected):
    # ticks 0..6 after attaching: emissions at 0 (optional), 3 and 6
    sim.add_spawner(Spawner(jelly(), Point((0.5, 0.5)), frequency=3, spawn_on_creation=on_creation))
    sim.step(substeps=7)
    assert len(sim.store) == expected
    assert sim.spawners[0].emitted == expected


def test_spawner_counts_from_attach_tick(sim):
    sim.step(substeps=2)
    spawner = sim.add_spawner(Spawner(jelly(), Point((0.5, 0.5)), frequency=2, spawn_on_creation=False))
    assert spawner.created_at == 2
    sim.step(substeps=1)
    assert len(sim.store) == 0
    sim.step(substeps=2)
    assert len(sim.store) == 1
    assert sim.particles().J.shape == (1,)


def test_spawner_without_frequency_emits_once(sim):
    sim.add_spawner(Spawner(jelly(), Point((0.5, 0.5))))
    sim.step(substeps=5)
    assert len(sim.store) == 1


def test_spawner_particle_cap(sim):
    sim.add_spawner(Spawner(jelly(), Point((0.5, 0.5)), frequency=1, max_particles=2))
    sim.step(substeps=5)
    assert len(sim.store) == 2


def test_spawner_skips_when_store_is_full(caplog):
    sim = Simulation(small_config(max_particles=3))
    sim.add_spawner(Spawner(jelly(), Rectangle((0.5, 0.5), (0.5 + 1.0 / 32, 0.5 + 0.5 / 32)), frequency=1))
    with caplog.at_level(logging.WARNING, logger="mpm2d"):
        sim.step(substeps=3)
    assert len(sim.store) == 2
    assert "exceed capacity" in caplog.text


def test_spawned_particles_expire(sim):
    sim.add_spawner(Spawner(jelly(), Point((0.5, 0.5)), max_age=2))
    sim.step(substeps=2)
    assert len(sim.store) == 1
    sim.step(substeps=1)
    assert len(sim.store) == 0
    assert sim.stats.expired == 1


def test_spawner_velocity_jitter(sim):
    spawner = Spawner(jelly(), Point((0.5, 0.5)), velocity=(1.0, 0.0),
                      velocity_jitter_a=(0.25, 0.0), velocity_jitter_b=(0.25, 0.0), seed=7)
    sim.add_spawner(spawner)
    sim.step(substeps=1)
    v = sim.store.velocities()[0]
    assert 1.0 <= v[0] <= 1.5
    assert v[1] == pytest.approx(0.0, abs=1e-12)


def test_spawner_region_and_removal(sim, cfg):
    spawner = sim.add_spawner(Spawner(water(), Rectangle((0.25, 0.25), (0.5, 0.5)), frequency=2))
    assert spawner.spacing == pytest.approx(0.5 * cfg.dx)
    sim.step(substeps=1)
    assert len(sim.store) == 8 * 8 * 4
    sim.remove_spawner(spawner)
    sim.step(substeps=3)
    assert len(sim.store) == 8 * 8 * 4
    assert sim.spawners == []


@pytest.mark.parametrize("kwargs", [
    dict(frequency=-1),
    dict(max_particles=-1),
    dict(max_age=-1),
    dict(spacing=0.0),
    dict(velocity=(1.0, 0.0, 0.0)),
])
def test_invalid_spawner(kwargs):
    with pytest.raises(ConfigurationError):
        Spawner(jelly(), Point((0.5, 0.5)), **kwargs)
    with pytest.raises(ConfigurationError):
        Spawner("honey", Point((0.5, 0.5)))
