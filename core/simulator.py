"""
Minimal simulator facade: owns grid + state + time and advances the state.

The state evolution is prescribed (linear drainage of the first phase into the
others); it exists to drive the diagnostic output modules, not to solve a PDE.
"""

from __future__ import annotations

import logging
from typing import List

import numpy as np

from .grid import build_grid, interpolate_state, refine_grid
from .types import CaseConfig, Grid1D, State, check_saturation_sum, check_state_shapes

logger = logging.getLogger(__name__)


def build_initial_state(cfg: CaseConfig, grid: Grid1D) -> State:
    """Uniform porosity and saturations from cfg.fluid."""
    fluid = cfg.fluid
    porosity = np.full(grid.n_dof, float(fluid.porosity), dtype=np.float64)
    sat = np.repeat(np.asarray(fluid.saturation, dtype=np.float64)[:, None], grid.n_dof, axis=1)
    return State(porosity=porosity, saturation=sat)


class Simulator:
    def __init__(self, cfg: CaseConfig, grid: Grid1D | None = None, state: State | None = None) -> None:
        self.cfg = cfg
        self.grid = grid if grid is not None else build_grid(cfg)
        self.state = state if state is not None else build_initial_state(cfg, self.grid)
        self.t = float(cfg.time.t0)
        self.step_id = 0
        check_state_shapes(self.state, self.grid, n_phases=self.num_phases)

    @property
    def phase_names(self) -> List[str]:
        return list(self.cfg.fluid.phases)

    @property
    def component_names(self) -> List[str]:
        return list(self.cfg.fluid.components)

    @property
    def num_phases(self) -> int:
        return self.cfg.fluid.n_phases

    @property
    def num_components(self) -> int:
        return self.cfg.fluid.n_components

    def num_dof(self) -> int:
        return self.grid.n_dof

    def num_elements(self) -> int:
        return self.grid.n_elem

    def advance(self, dt: float) -> None:
        """
        Drain phase 0 by drainage_rate*dt*x/L, shared evenly among the other phases.

        Saturations stay in [0, 1] and keep summing to one.
        """
        rate = float(self.cfg.fluid.drainage_rate)
        sat = self.state.saturation
        if rate != 0.0 and self.num_phases > 1:
            x_rel = self.grid.x_v / float(self.grid.x_v[-1])
            dS = np.minimum(rate * dt * x_rel, sat[0])
            sat[0] -= dS
            sat[1:] += dS / (self.num_phases - 1)
            check_saturation_sum(self.state)
        self.t += float(dt)
        self.step_id += 1

    def refine(self) -> None:
        """Bisect all elements and interpolate the state; changes num_dof()."""
        new_grid = refine_grid(self.grid)
        self.state = interpolate_state(self.state, self.grid, new_grid)
        self.grid = new_grid
