"""
Diagnostic output for models with molecular diffusion.

Quantities (each off by default):
- tortuosity of every fluid phase                                  -> "tortuosity"
- molecular diffusion coefficient of every component in every phase -> "diffusionCoefficient"
- effective diffusion coefficient of the porous medium              -> "effectiveDiffusionCoefficient"
"""

from __future__ import annotations

from typing import Optional

from .base_module import BaseOutputModule, PhaseBuffer, PhaseComponentBuffer, Quantity

TORTUOSITY = Quantity(
    name="tortuosity",
    flag="WriteTortuosities",
    accessor="tortuosity",
    per_component=False,
    description="Include the tortuosity for each phase in the output files",
)
DIFFUSION_COEFFICIENT = Quantity(
    name="diffusionCoefficient",
    flag="WriteDiffusionCoefficients",
    accessor="diffusion_coefficient",
    per_component=True,
    description="Include the molecular diffusion coefficients in the output files",
)
EFFECTIVE_DIFFUSION_COEFFICIENT = Quantity(
    name="effectiveDiffusionCoefficient",
    flag="WriteEffectiveDiffusionCoefficients",
    accessor="effective_diffusion_coefficient",
    per_component=True,
    description="Include the effective molecular diffusion coefficients of the medium in the output files",
)


class DiffusionOutputModule(BaseOutputModule):
    """Tortuosity and (effective) diffusion coefficients per phase and component."""

    QUANTITIES = (TORTUOSITY, DIFFUSION_COEFFICIENT, EFFECTIVE_DIFFUSION_COEFFICIENT)

    @property
    def tortuosity(self) -> Optional[PhaseBuffer]:
        return self.buffers.get(TORTUOSITY.name)

    @property
    def diffusion_coefficient(self) -> Optional[PhaseComponentBuffer]:
        return self.buffers.get(DIFFUSION_COEFFICIENT.name)

    @property
    def effective_diffusion_coefficient(self) -> Optional[PhaseComponentBuffer]:
        return self.buffers.get(EFFECTIVE_DIFFUSION_COEFFICIENT.name)
