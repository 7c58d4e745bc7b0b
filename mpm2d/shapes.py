# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# Spawn regions: simple 2D shapes sampled on a regular lattice of particle
# positions with a given spacing.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

from typing import Callable, Sequence

import numpy as np

from mpm2d.errors import ConfigurationError


def _vec(value, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=np.float64)
    if arr.shape != (2,):
        raise ConfigurationError(f"{name} must be a 2D point, got {value!r}")
    return arr


def lattice(lower, upper, spacing: float) -> np.ndarray:
    """Cell-centred lattice points covering the box [lower, upper)."""
    if not spacing > 0:
        raise ConfigurationError(f"spacing must be positive, got {spacing}")
    xs = np.arange(lower[0] + 0.5 * spacing, upper[0], spacing)
    ys = np.arange(lower[1] + 0.5 * spacing, upper[1], spacing)
    x, y = np.meshgrid(xs, ys, indexing="ij")
    return np.stack([x.ravel(), y.ravel()], axis=1)


def _count(value, name: str) -> int:
    if int(value) != value or value < 1:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
    return int(value)


def _block(origin, nx: int, ny: int, spacing: float) -> np.ndarray:
    if not spacing > 0:
        raise ConfigurationError(f"spacing must be positive, got {spacing}")
    i, j = np.meshgrid(np.arange(nx), np.arange(ny), indexing="ij")
    offsets = np.stack([i.ravel(), j.ravel()], axis=1) * spacing
    return origin + offsets


class Region:
    """A 2D area (or curve) that can be filled with particles."""

    def sample(self, spacing: float) -> np.ndarray:
        raise NotImplementedError


class Point(Region):
    """A single particle."""

    def __init__(self, at: Sequence[float]):
        self.at = _vec(at, "at")

    def sample(self, spacing: float) -> np.ndarray:
        return self.at.reshape(1, 2)


class Line(Region):
    """Particles evenly spaced along a segment, both ends included."""

    def __init__(self, start: Sequence[float], end: Sequence[float]):
        self.start = _vec(start, "start")
        self.end = _vec(end, "end")

    def sample(self, spacing: float) -> np.ndarray:
        if not spacing > 0:
            raise ConfigurationError(f"spacing must be positive, got {spacing}")
        length = np.linalg.norm(self.end - self.start)
        n = int(np.floor(length / spacing)) + 1
        t = np.linspace(0.0, 1.0, n) if n > 1 else np.zeros(1)
        return self.start + t[:, None] * (self.end - self.start)


class LineHorizontal(Region):
    """``count`` particles in a row to the right of ``origin``."""

    def __init__(self, origin: Sequence[float], count: int):
        self.origin = _vec(origin, "origin")
        self.count = _count(count, "count")

    def sample(self, spacing: float) -> np.ndarray:
        return _block(self.origin, self.count, 1, spacing)


class LineVertical(Region):
    """``count`` particles in a column above ``origin``."""

    def __init__(self, origin: Sequence[float], count: int):
        self.origin = _vec(origin, "origin")
        self.count = _count(count, "count")

    def sample(self, spacing: float) -> np.ndarray:
        return _block(self.origin, 1, self.count, spacing)


class Rectangle(Region):
    """Axis-aligned box."""

    def __init__(self, lower: Sequence[float], upper: Sequence[float]):
        self.lower = _vec(lower, "lower")
        self.upper = _vec(upper, "upper")
        if np.any(self.upper <= self.lower):
            raise ConfigurationError(f"empty rectangle {lower} - {upper}")

    def sample(self, spacing: float) -> np.ndarray:
        return lattice(self.lower, self.upper, spacing)


class Tower(Region):
    """
    A ``width`` x ``height`` block of particles stacked from ``origin``, the
    first one sitting exactly on it. Unlike Rectangle the size is given in
    particles, so the block grows or shrinks with the spacing.
    """

    def __init__(self, origin: Sequence[float], width: int, height: int):
        self.origin = _vec(origin, "origin")
        self.width = _count(width, "width")
        self.height = _count(height, "height")

    def sample(self, spacing: float) -> np.ndarray:
        return _block(self.origin, self.width, self.height, spacing)


class Circle(Region):
    """Filled disk."""

    def __init__(self, center: Sequence[float], radius: float):
        self.center = _vec(center, "center")
        if not radius > 0:
            raise ConfigurationError(f"radius must be positive, got {radius}")
        self.radius = float(radius)

    def sample(self, spacing: float) -> np.ndarray:
        pts = lattice(self.center - self.radius, self.center + self.radius, spacing)
        inside = np.sum((pts - self.center) ** 2, axis=1) <= self.radius ** 2
        return pts[inside]


class Triangle(Region):
    """Filled triangle given by three vertices."""

    def __init__(self, a: Sequence[float], b: Sequence[float], c: Sequence[float]):
        self.vertices = np.stack([_vec(a, "a"), _vec(b, "b"), _vec(c, "c")])
        if abs(self._cross(*self.vertices)) < 1e-12:
            raise ConfigurationError("degenerate triangle")

    @staticmethod
    def _cross(o, a, b):
        return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])

    def sample(self, spacing: float) -> np.ndarray:
        a, b, c = self.vertices
        pts = lattice(self.vertices.min(axis=0), self.vertices.max(axis=0), spacing)
        d1 = (b[0] - a[0]) * (pts[:, 1] - a[1]) - (b[1] - a[1]) * (pts[:, 0] - a[0])
        d2 = (c[0] - b[0]) * (pts[:, 1] - b[1]) - (c[1] - b[1]) * (pts[:, 0] - b[0])
        d3 = (a[0] - c[0]) * (pts[:, 1] - c[1]) - (a[1] - c[1]) * (pts[:, 0] - c[0])
        has_neg = (d1 < 0) | (d2 < 0) | (d3 < 0)
        has_pos = (d1 > 0) | (d2 > 0) | (d3 > 0)
        return pts[~(has_neg & has_pos)]


class FunctionRegion(Region):
    """
    Lattice points of a bounding box for which ``predicate(x, y)`` holds.
    Coordinates passed to the predicate are relative to the box centre.
    """

    def __init__(self, predicate: Callable[[float, float], bool],
                 lower: Sequence[float], upper: Sequence[float]):
        self.predicate = predicate
        self.box = Rectangle(lower, upper)

    def sample(self, spacing: float) -> np.ndarray:
        pts = self.box.sample(spacing)
        centre = 0.5 * (self.box.lower + self.box.upper)
        keep = np.array([bool(self.predicate(x, y)) for x, y in pts - centre], dtype=bool)
        return pts[keep] if len(pts) else pts


def hollow_box(hole_radius: float) -> Callable[[float, float], bool]:
    """Predicate for a box with a round hole in the middle."""
    return lambda x, y: x * x + y * y > hole_radius * hole_radius


def inside_circle(radius: float) -> Callable[[float, float], bool]:
    return lambda x, y: x * x + y * y < radius * radius


# Stripe patterns: alternating bands of width period / 2
def sinx(period: float) -> Callable[[float, float], bool]:
    return lambda x, y: np.sin(2 * np.pi * x / period) > 0


def siny(period: float) -> Callable[[float, float], bool]:
    return lambda x, y: np.sin(2 * np.pi * y / period) > 0


def sinxy(period: float) -> Callable[[float, float], bool]:
    """Diagonal waves where sin(x) exceeds sin(y)."""
    k = 2 * np.pi / period
    return lambda x, y: np.sin(k * x) - np.sin(k * y) > 0
