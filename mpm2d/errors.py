# --------------------------------------------------------------------------------
# Copyright (c) 2025 Krushang Gabani
# All rights reserved.
#
# Exceptions raised by the MPM simulation.
#
# Author: Krushang Gabani
# Date: July 7, 2025
# --------------------------------------------------------------------------------

from typing import Optional, Tuple


class MPMError(Exception):
    """Base class for all simulation errors."""


class ConfigurationError(MPMError, ValueError):
    """Invalid configuration, material parameters or particle data."""


class GridBoundsError(MPMError, IndexError):
    """A cell coordinate outside the allocated lattice."""


class NumericalInstabilityError(MPMError):
    """
    A substep produced a non-physical state. The particle store keeps the
    state it had before the failing substep.
    """

    def __init__(self, phase: str, reason: str,
                 particle: Optional[int] = None,
                 node: Optional[Tuple[int, int]] = None):
        self.phase = phase
        self.reason = reason
        self.particle = particle
        self.node = node
        where = ""
        if particle is not None:
            where = f" at particle {particle}"
        elif node is not None:
            where = f" at grid node {node}"
        super().__init__(f"{phase}: {reason}{where}")
