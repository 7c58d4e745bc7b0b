# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# Configuration module for the 2D MLS-MPM simulation: grid, time stepping,
# boundary policy and solver settings. YAML overrides are merged through yacs.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

import logging
from dataclasses import dataclass, asdict, fields
from typing import Optional, Tuple

from yacs.config import CfgNode as CN

from mpm2d.errors import ConfigurationError

logger = logging.getLogger(__name__)

BOUNDARY_MODES = ("separate", "sticky", "bounce", "friction")
OUT_OF_BOUNDS_POLICIES = ("clamp", "remove")


@dataclass
class Config:
    """
    Configuration for the MPM simulation. Values are read once when the
    simulation is built and stay fixed while it is stepping; build a new
    simulation to change them.
    """

    # ------------------------------- Grid -------------------------------------
    n_grid: int = 128  # Grid resolution per axis (lattice has n_grid^2 nodes)
    cell_size: Optional[float] = None  # Node spacing dx, defaults to 1 / n_grid
    dtype: str = "float32"  # Numeric precision: "float32" or "float64"
    arch: str = "cpu"  # Taichi backend: "cpu", "gpu", "cuda", "vulkan", ...

    # ----------------------------- Particles ----------------------------------
    max_particles: int = 50_000  # Capacity of the particle store

    # ---------------------------- Time Stepping -------------------------------
    dt: float = 1e-4  # Substep size (in seconds)
    substeps: int = 25  # Substeps per external frame tick
    gravity: Tuple[float, float] = (0.0, -9.8)  # Gravity vector (m/s^2)
    gravity_enabled: bool = True
    cfl: float = 0.5  # Fraction of the wave-speed time step limit considered stable

    # ------------------------------ Boundary ----------------------------------
    boundary_margin: int = 3  # Node layers acting as walls at every lattice edge
    boundary_mode: str = "separate"  # separate, sticky, bounce, friction
    restitution: float = 0.5  # Normal velocity kept (reversed) by "bounce" walls
    friction: float = 0.4  # Coulomb coefficient used by "friction" walls
    out_of_bounds: str = "clamp"  # clamp or remove particles leaving the grid
    wall_lookahead: float = 0.0  # Seconds of predicted travel kept inside the walls, 0 = off

    # ------------------------------- Solver -----------------------------------
    mass_epsilon: float = 1e-10  # Nodes lighter than this keep zero velocity
    min_jacobian: float = 1e-4  # Solid det(F) at or below this fails the step
    num_workers: int = 0  # CPU threads per parallel phase, 0 = taichi default

    def __post_init__(self):
        if self.cell_size is None and self.n_grid > 0:
            self.cell_size = 1.0 / self.n_grid
        self.gravity = tuple(float(g) for g in self.gravity)

    @property
    def dx(self) -> float:
        return self.cell_size

    @property
    def inv_dx(self) -> float:
        return 1.0 / self.cell_size

    @property
    def domain_size(self) -> float:
        return self.n_grid * self.cell_size

    def validate(self) -> "Config":
        """Raise ConfigurationError on the first invalid setting."""
        if self.n_grid < 2 * self.boundary_margin + 4:
            raise ConfigurationError(
                f"n_grid={self.n_grid} is too small for boundary_margin={self.boundary_margin}")
        if self.cell_size is None or not self.cell_size > 0:
            raise ConfigurationError(f"cell_size must be positive, got {self.cell_size}")
        if self.dtype not in ("float32", "float64"):
            raise ConfigurationError(f"dtype must be 'float32' or 'float64', got {self.dtype!r}")
        if self.max_particles <= 0:
            raise ConfigurationError(f"max_particles must be positive, got {self.max_particles}")
        if not self.dt > 0:
            raise ConfigurationError(f"dt must be positive, got {self.dt}")
        if self.substeps < 1:
            raise ConfigurationError(f"substeps must be at least 1, got {self.substeps}")
        if len(self.gravity) != 2:
            raise ConfigurationError(f"gravity must be a 2D vector, got {self.gravity}")
        if not 0 < self.cfl <= 1:
            raise ConfigurationError(f"cfl must be in (0, 1], got {self.cfl}")
        if self.boundary_margin < 1:
            raise ConfigurationError(f"boundary_margin must be at least 1, got {self.boundary_margin}")
        if self.boundary_mode not in BOUNDARY_MODES:
            raise ConfigurationError(
                f"boundary_mode must be one of {BOUNDARY_MODES}, got {self.boundary_mode!r}")
        if not 0 <= self.restitution <= 1:
            raise ConfigurationError(f"restitution must be in [0, 1], got {self.restitution}")
        if self.friction < 0:
            raise ConfigurationError(f"friction must be non-negative, got {self.friction}")
        if self.out_of_bounds not in OUT_OF_BOUNDS_POLICIES:
            raise ConfigurationError(
                f"out_of_bounds must be one of {OUT_OF_BOUNDS_POLICIES}, got {self.out_of_bounds!r}")
        if self.wall_lookahead < 0:
            raise ConfigurationError(f"wall_lookahead must be non-negative, got {self.wall_lookahead}")
        if not self.mass_epsilon > 0:
            raise ConfigurationError(f"mass_epsilon must be positive, got {self.mass_epsilon}")
        if not self.min_jacobian > 0:
            raise ConfigurationError(f"min_jacobian must be positive, got {self.min_jacobian}")
        if self.num_workers < 0:
            raise ConfigurationError(f"num_workers must be non-negative, got {self.num_workers}")
        return self


def default_cfg() -> CN:
    """Defaults of Config as a yacs node, the schema YAML files are merged into."""
    node = CN()
    for key, value in asdict(Config()).items():
        if key == "cell_size":
            # yacs cannot retype None, so an unset cell size is stored as 0.0
            value = 0.0
        elif isinstance(value, tuple):
            value = list(value)
        node[key] = value
    return node


def config_from_node(node: CN) -> Config:
    known = {f.name for f in fields(Config)}
    kwargs = {k: v for k, v in node.items() if k in known}
    if not kwargs.get("cell_size"):
        kwargs["cell_size"] = None
    kwargs["gravity"] = tuple(kwargs["gravity"])
    return Config(**kwargs).validate()


def load_config(path: Optional[str] = None, overrides: Optional[list] = None) -> Config:
    """
    Build a validated Config from the defaults, an optional YAML file and an
    optional flat list of ``[key, value, ...]`` overrides.
    """
    node = default_cfg()
    try:
        if path is not None:
            logger.info(f"Loading configuration from {path}")
            node.merge_from_file(path)
        if overrides:
            node.merge_from_list(list(overrides))
    except (KeyError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
    node.freeze()
    return config_from_node(node)
