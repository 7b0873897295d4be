"""
Diffusion intensive quantities of a porous medium.

Responsibilities
----------------
- Per-DOF tortuosity of every fluid phase (Millington-Quirk).
- Molecular diffusion coefficient of every component in every phase.
- Effective diffusion coefficient of the medium: phi * S_p * tau_p * D_pc.
- All quantities are Evaluations differentiated w.r.t. the DOF's phase
  saturations (primary variable index == phase index).

Scope / non-responsibilities
----------------------------
- No flux assembly; values are pure functions of the DOF's own state, so two
  elements sharing a vertex always compute identical quantities for it.
"""

from __future__ import annotations

from typing import List

import numpy as np

from core.evaluation import Evaluation, Scalar, ad_max, ad_pow
from core.types import CaseFluid, State

# Lower bound of phi*S inside the tortuosity power law
MIN_PHI_S = 1.0e-4


def millington_quirk_tortuosity(porosity: Scalar, saturation: Scalar) -> Scalar:
    """tau = max(MIN_PHI_S, phi*S)**(7/3) / phi**2."""
    phi_s = ad_max(saturation * porosity, MIN_PHI_S)
    return ad_pow(phi_s, 7.0 / 3.0) / (porosity * porosity)


class DiffusionIntensiveQuantities:
    """Diffusion-related intensive quantities of a single DOF."""

    def __init__(self, fluid: CaseFluid, state: State, dof: int) -> None:
        n_p = fluid.n_phases
        phi = float(state.porosity[dof])
        self._porosity = phi
        self._saturation: List[Evaluation] = [
            Evaluation.variable(float(state.saturation[p, dof]), p, n_p) for p in range(n_p)
        ]
        self._tortuosity: List[Scalar] = [
            millington_quirk_tortuosity(phi, self._saturation[p]) for p in range(n_p)
        ]
        self._diff_coeff = np.asarray(fluid.diffusion_coefficients, dtype=np.float64)

    def porosity(self) -> float:
        return self._porosity

    def saturation(self, phase_idx: int) -> Evaluation:
        return self._saturation[phase_idx]

    def tortuosity(self, phase_idx: int) -> Scalar:
        return self._tortuosity[phase_idx]

    def diffusion_coefficient(self, phase_idx: int, comp_idx: int) -> Evaluation:
        return Evaluation.constant(self._diff_coeff[phase_idx, comp_idx], len(self._saturation))

    def effective_diffusion_coefficient(self, phase_idx: int, comp_idx: int) -> Scalar:
        return (
            self._saturation[phase_idx]
            * self._porosity
            * self._tortuosity[phase_idx]
            * self.diffusion_coefficient(phase_idx, comp_idx)
        )
