import sys
import time

import numpy as np

from mpm2d import Simulation, Spawner, init_backend, load_config, jelly, water
from mpm2d.logging_config import setup_logging
from mpm2d.shapes import Circle, LineHorizontal, Rectangle

setup_logging()

cfg = load_config(sys.argv[1] if len(sys.argv) > 1 else None)
init_backend(cfg)

sim = Simulation(cfg)
sim.spawn(water(), Rectangle((0.05, 0.05), (0.45, 0.55)))
sim.spawn(jelly(), Circle((0.7, 0.6), 0.12), velocity=(-1.0, 0.0))
# water jet from the top right corner, each emission lasts 4000 ticks
sim.add_spawner(Spawner(water(), LineHorizontal((0.8, 0.9), 8), velocity=(-1.0, -1.0),
                        velocity_jitter_a=(0.2, 0.2), frequency=400, max_particles=cfg.max_particles // 2,
                        max_age=4000, seed=0))


for frame in range(200):

    t0 = time.time()
    sim.step()
    snap = sim.particles()

    if frame % 20 == 0:
        print(f"frame {frame:4d}  tick {sim.tick:6d}  particles {len(snap)}  "
              f"mean density {snap.density.mean():.3f}  "
              f"max |v| {np.linalg.norm(snap.velocity, axis=1).max():.3f}  "
              f"({time.time() - t0:.3f}s)")
