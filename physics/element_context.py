"""
Element context: local view of one mesh element for output modules.

Exposes the element's primary DOFs (the two vertices of a 1D element), their
global indices and their intensive quantities. Only time index 0 (the current
solution) is stored.
"""

from __future__ import annotations

from typing import List, Tuple

from core.simulator import Simulator
from physics.diffusion import DiffusionIntensiveQuantities


class ElementContext:
    def __init__(self, simulator: Simulator) -> None:
        self.simulator = simulator
        self.elem_idx: int | None = None
        self._dofs: Tuple[int, ...] = ()
        self._int_quants: List[DiffusionIntensiveQuantities] = []

    def update(self, elem_idx: int) -> None:
        """Bind the context to elem_idx and evaluate its intensive quantities."""
        sim = self.simulator
        self.elem_idx = int(elem_idx)
        self._dofs = sim.grid.element_dofs(self.elem_idx)
        self._int_quants = [
            DiffusionIntensiveQuantities(sim.cfg.fluid, sim.state, dof) for dof in self._dofs
        ]

    def num_primary_dof(self, time_idx: int = 0) -> int:
        return len(self._dofs)

    def global_space_index(self, local_idx: int, time_idx: int = 0) -> int:
        return self._dofs[local_idx]

    def intensive_quantities(self, local_idx: int, time_idx: int = 0) -> DiffusionIntensiveQuantities:
        return self._int_quants[local_idx]
