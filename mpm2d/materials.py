# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# Constitutive models: Neo-Hookean hyperelastic solid and Newtonian fluid.
# Material parameter sets live in a small taichi table indexed by the
# per-particle material slot; stress evaluation dispatches on the slot kind.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

import math
import logging
from dataclasses import dataclass
from typing import ClassVar, Dict, List, Tuple, Union

import numpy as np
import taichi as ti

from mpm2d.errors import ConfigurationError

logger = logging.getLogger(__name__)

# material kinds stored in the table
SOLID = 0
FLUID = 1


def lame_parameters(youngs_modulus: float, poisson_ratio: float) -> Tuple[float, float]:
    """Shear modulus mu and Lame's first parameter lambda from (E, nu)."""
    E, nu = youngs_modulus, poisson_ratio
    mu = E / (2 * (1 + nu))
    lam = E * nu / ((1 + nu) * (1 - 2 * nu))
    return mu, lam


@dataclass(frozen=True)
class NeoHookean:
    """Neo-Hookean hyperelastic solid."""

    youngs_modulus: float = 0.185e4  # Young's modulus (Pa)
    poisson_ratio: float = 0.2  # Poisson's ratio (dimensionless)
    density: float = 1.0  # Reference density (mass per unit volume)

    kind: ClassVar[int] = SOLID

    def __post_init__(self):
        if not self.youngs_modulus > 0:
            raise ConfigurationError(f"youngs_modulus must be positive, got {self.youngs_modulus}")
        if not -1.0 < self.poisson_ratio < 0.5:
            raise ConfigurationError(f"poisson_ratio must be in (-1, 0.5), got {self.poisson_ratio}")
        if not self.density > 0:
            raise ConfigurationError(f"density must be positive, got {self.density}")

    @classmethod
    def from_lame(cls, mu: float, lam: float, density: float = 1.0) -> "NeoHookean":
        if not mu > 0 or lam <= -mu:
            raise ConfigurationError(f"invalid Lame parameters mu={mu}, lambda={lam}")
        E = mu * (3 * lam + 2 * mu) / (lam + mu)
        nu = lam / (2 * (lam + mu))
        return cls(youngs_modulus=E, poisson_ratio=nu, density=density)

    @property
    def lame(self) -> Tuple[float, float]:
        return lame_parameters(self.youngs_modulus, self.poisson_ratio)

    def wave_speed(self) -> float:
        # P-wave speed
        mu, lam = self.lame
        return math.sqrt((lam + 2 * mu) / self.density)


@dataclass(frozen=True)
class NewtonianFluid:
    """Weakly compressible Newtonian fluid with a Tait equation of state."""

    bulk_modulus: float = 100.0  # EOS stiffness
    eos_power: float = 4.0  # EOS density exponent
    dynamic_viscosity: float = 0.1
    rest_density: float = 1.0
    min_pressure: float = -0.1  # Most negative pressure (tension) allowed
    volume_recovery: float = 0.01  # Per-substep pull of det(F) back toward 1, in [0, 1]

    kind: ClassVar[int] = FLUID

    def __post_init__(self):
        if not self.bulk_modulus > 0:
            raise ConfigurationError(f"bulk_modulus must be positive, got {self.bulk_modulus}")
        if not self.eos_power > 0:
            raise ConfigurationError(f"eos_power must be positive, got {self.eos_power}")
        if self.dynamic_viscosity < 0:
            raise ConfigurationError(f"dynamic_viscosity must be non-negative, got {self.dynamic_viscosity}")
        if not self.rest_density > 0:
            raise ConfigurationError(f"rest_density must be positive, got {self.rest_density}")
        if self.min_pressure > 0:
            raise ConfigurationError(f"min_pressure must not be positive, got {self.min_pressure}")
        if not 0.0 <= self.volume_recovery <= 1.0:
            raise ConfigurationError(f"volume_recovery must be in [0, 1], got {self.volume_recovery}")

    @property
    def density(self) -> float:
        return self.rest_density

    def wave_speed(self) -> float:
        return math.sqrt(self.bulk_modulus * self.eos_power / self.rest_density)


Material = Union[NeoHookean, NewtonianFluid]


def water() -> NewtonianFluid:
    return NewtonianFluid(bulk_modulus=100.0, eos_power=4.0, dynamic_viscosity=0.1, rest_density=1.0,
                          volume_recovery=0.01)


def steel() -> NeoHookean:
    return NeoHookean.from_lame(mu=78.0e3, lam=180.0e3, density=1.5)


def wood() -> NeoHookean:
    return NeoHookean.from_lame(mu=20.0e3, lam=30.0e3, density=1.0)


def jelly() -> NeoHookean:
    return NeoHookean(youngs_modulus=0.185e4, poisson_ratio=0.2, density=1.0)


PRESETS = {
    "water": water,
    "steel": steel,
    "wood": wood,
    "jelly": jelly,
}


def preset(name: str) -> Material:
    try:
        return PRESETS[name]()
    except KeyError:
        raise ConfigurationError(f"Unknown material preset {name!r}, expected one of {sorted(PRESETS)}")


@ti.data_oriented
class MaterialTable:
    """
    Parameter sets of every material in the scene. Particles refer to a row
    by slot index, so one stress entry point serves all materials.
    """

    def __init__(self, cfg, max_materials: int = 32):
        self.dtype = ti.f32 if cfg.dtype == 'float32' else ti.f64
        self.max_materials = max_materials

        self.kind = ti.field(dtype=ti.i32, shape=max_materials)
        # solid
        self.mu = ti.field(dtype=self.dtype, shape=max_materials)
        self.lam = ti.field(dtype=self.dtype, shape=max_materials)
        # fluid
        self.bulk_modulus = ti.field(dtype=self.dtype, shape=max_materials)
        self.eos_power = ti.field(dtype=self.dtype, shape=max_materials)
        self.viscosity = ti.field(dtype=self.dtype, shape=max_materials)
        self.rest_density = ti.field(dtype=self.dtype, shape=max_materials)
        self.min_pressure = ti.field(dtype=self.dtype, shape=max_materials)
        self.volume_recovery = ti.field(dtype=self.dtype, shape=max_materials)

        self.materials: List[Material] = []
        self._slots: Dict[Material, int] = {}

        # scratch state for evaluating a single stress from Python
        self._host_F = ti.Matrix.field(2, 2, dtype=self.dtype, shape=())
        self._host_C = ti.Matrix.field(2, 2, dtype=self.dtype, shape=())
        self._host_tau = ti.Matrix.field(2, 2, dtype=self.dtype, shape=())

    def register(self, material: Material) -> int:
        """Return the slot of ``material``, adding it to the table if new."""
        if not isinstance(material, (NeoHookean, NewtonianFluid)):
            raise ConfigurationError(f"Unknown material variant: {type(material).__name__}")
        if material in self._slots:
            return self._slots[material]
        slot = len(self.materials)
        if slot >= self.max_materials:
            raise ConfigurationError(f"Too many materials: limit is {self.max_materials}")

        self.kind[slot] = material.kind
        if material.kind == SOLID:
            mu, lam = material.lame
            self.mu[slot] = mu
            self.lam[slot] = lam
        else:
            self.bulk_modulus[slot] = material.bulk_modulus
            self.eos_power[slot] = material.eos_power
            self.viscosity[slot] = material.dynamic_viscosity
            self.rest_density[slot] = material.rest_density
            self.min_pressure[slot] = material.min_pressure
            self.volume_recovery[slot] = material.volume_recovery

        self.materials.append(material)
        self._slots[material] = slot
        logger.debug(f"Registered {material} in slot {slot}")
        return slot

    def kinds(self) -> np.ndarray:
        return self.kind.to_numpy()

    @ti.func
    def kirchhoff_stress(self, slot, F, C, mass, volume0):
        """Kirchhoff stress tau = J * sigma of one particle."""
        I = ti.Matrix.identity(self.dtype, 2)
        J = F.determinant()
        tau = ti.Matrix.zero(self.dtype, 2, 2)
        if self.kind[slot] == SOLID:
            tau = self.mu[slot] * (F @ F.transpose() - I) + self.lam[slot] * ti.log(J) * I
        else:
            density = mass / (volume0 * J)
            pressure = self.bulk_modulus[slot] * (
                ti.pow(density / self.rest_density[slot], self.eos_power[slot]) - 1.0)
            pressure = ti.max(pressure, self.min_pressure[slot])
            sigma = -pressure * I + self.viscosity[slot] * (C + C.transpose())
            tau = J * sigma
        return tau

    @ti.func
    def project_deformation(self, slot, F):
        """
        Material correction after the deformation gradient update. Fluids keep
        only their volume change: F becomes isotropic, optionally relaxed
        toward rest volume.
        """
        result = F
        if self.kind[slot] == FLUID:
            J = F.determinant()
            J += self.volume_recovery[slot] * (1.0 - J)
            result = ti.Matrix.identity(self.dtype, 2) * ti.sqrt(J)
        return result

    @ti.kernel
    def _eval_stress(self, slot: ti.i32, mass: float, volume0: float):
        self._host_tau[None] = self.kirchhoff_stress(
            slot, self._host_F[None], self._host_C[None], mass, volume0)

    def stress(self, material: Material, F, C=None, mass: float = 1.0, volume0: float = 1.0) -> np.ndarray:
        """Evaluate the Kirchhoff stress of ``material`` for one deformation state."""
        slot = self.register(material)
        self._host_F[None] = np.asarray(F, dtype=np.float64).tolist()
        self._host_C[None] = np.zeros((2, 2)).tolist() if C is None else np.asarray(C, dtype=np.float64).tolist()
        self._eval_stress(slot, mass, volume0)
        return self._host_tau.to_numpy()
