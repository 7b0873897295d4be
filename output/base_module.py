"""
Output module contract, flag cache and buffer set.

Lifecycle of every output module:
    construct -> register_parameters (once per registry)
    -> {alloc_buffers -> process_element* -> commit_buffers}*

Buffers
-------
- PhaseBuffer: list of n_phases float64 arrays of length n_dof.
- PhaseComponentBuffer: list of n_phases lists of n_comp float64 arrays of length n_dof.
- A buffer for a disabled quantity is absent (never a zero-length allocation).
- Buffers are indexed by global DOF index and re-created on every allocation.

A concrete module only declares its QUANTITIES; each quantity names the
intensive-quantities accessor that is called with (phase_idx) or
(phase_idx, comp_idx).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, Union

import numpy as np

from core.evaluation import scalar_value
from core.params import PARAMETERS, ParameterRegistry

logger = logging.getLogger(__name__)

PhaseBuffer = List[np.ndarray]
PhaseComponentBuffer = List[List[np.ndarray]]
Buffer = Union[PhaseBuffer, PhaseComponentBuffer]

ENABLE_OUTPUT = "EnableOutput"


@dataclass(frozen=True, slots=True)
class Quantity:
    """A selectable diagnostic quantity."""

    name: str  # canonical buffer name handed to writers
    flag: str  # boolean parameter enabling it
    accessor: str  # intensive-quantities method
    per_component: bool
    description: str


class FlagCache:
    """
    Per-instance cache of boolean output flags.

    A flag is read from the registry on its first query and never again; later
    changes to the registry do not affect this instance.
    """

    def __init__(self, params: ParameterRegistry) -> None:
        self._params = params
        self._cache: Dict[str, bool] = {}

    def is_enabled(self, name: str) -> bool:
        val = self._cache.get(name)
        if val is None:
            val = bool(self._params.get(name))
            self._cache[name] = val
        return val


def allocate_phase_buffer(n_phases: int, n_dof: int) -> PhaseBuffer:
    return [np.zeros(n_dof, dtype=np.float64) for _ in range(n_phases)]


def allocate_phase_component_buffer(n_phases: int, n_comp: int, n_dof: int) -> PhaseComponentBuffer:
    return [[np.zeros(n_dof, dtype=np.float64) for _ in range(n_comp)] for _ in range(n_phases)]


class BufferSet:
    """Storage for the enabled quantities of one module."""

    def __init__(self, quantities: Tuple[Quantity, ...]) -> None:
        self.quantities = tuple(quantities)
        self._buffers: Dict[str, Buffer] = {}
        self.n_dof = 0

    def allocate(self, flags: FlagCache, n_phases: int, n_comp: int, n_dof: int) -> None:
        """Zero-initialised buffers for every enabled quantity; replaces previous contents."""
        self._buffers = {}
        for q in self.quantities:
            if not flags.is_enabled(q.flag):
                continue
            if q.per_component:
                self._buffers[q.name] = allocate_phase_component_buffer(n_phases, n_comp, n_dof)
            else:
                self._buffers[q.name] = allocate_phase_buffer(n_phases, n_dof)
        self.n_dof = int(n_dof)

    def get(self, name: str) -> Optional[Buffer]:
        return self._buffers.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._buffers

    def items(self) -> Iterator[Tuple[Quantity, Buffer]]:
        for q in self.quantities:
            buf = self._buffers.get(q.name)
            if buf is not None:
                yield q, buf


class BaseOutputModule:
    """Base class of diagnostic output modules bound to one simulator."""

    QUANTITIES: Tuple[Quantity, ...] = ()

    def __init__(self, simulator, params: Optional[ParameterRegistry] = None) -> None:
        self.simulator = simulator
        self.params = params if params is not None else PARAMETERS
        self.flags = FlagCache(self.params)
        self.buffers = BufferSet(self.QUANTITIES)

    @classmethod
    def register_parameters(cls, params: Optional[ParameterRegistry] = None) -> None:
        """Register the global output gate and one bool flag per quantity."""
        params = params if params is not None else PARAMETERS
        params.register(ENABLE_OUTPUT, True, "Global switch for all diagnostic output modules")
        for q in cls.QUANTITIES:
            params.register(q.flag, False, q.description)

    def output_enabled(self) -> bool:
        # the gate is read on every call, unlike the cached quantity flags
        return bool(self.params.get(ENABLE_OUTPUT))

    def is_enabled(self, quantity: Quantity) -> bool:
        return self.flags.is_enabled(quantity.flag)

    def alloc_buffers(self) -> None:
        """Allocate buffers for all enabled quantities, sized by the current DOF count."""
        sim = self.simulator
        self.buffers.allocate(self.flags, sim.num_phases, sim.num_components, sim.num_dof())
        logger.debug(
            "%s: allocated %s for n_dof=%d",
            type(self).__name__,
            [q.name for q, _ in self.buffers.items()] or "nothing",
            self.buffers.n_dof,
        )

    def process_element(self, elem_ctx) -> None:
        """Write the materialized quantities of the element's DOFs into the buffers."""
        if not self.output_enabled():
            return

        n_phases = self.simulator.num_phases
        n_comp = self.simulator.num_components
        enabled = [(q, self.buffers.get(q.name)) for q in self.QUANTITIES if self.is_enabled(q)]
        phase_q = [(q, buf) for q, buf in enabled if not q.per_component]
        comp_q = [(q, buf) for q, buf in enabled if q.per_component]

        for i in range(elem_ctx.num_primary_dof(0)):
            I = elem_ctx.global_space_index(i, 0)
            int_quants = elem_ctx.intensive_quantities(i, 0)

            for phase_idx in range(n_phases):
                for q, buf in phase_q:
                    buf[phase_idx][I] = scalar_value(getattr(int_quants, q.accessor)(phase_idx))
                for comp_idx in range(n_comp):
                    for q, buf in comp_q:
                        buf[phase_idx][comp_idx][I] = scalar_value(
                            getattr(int_quants, q.accessor)(phase_idx, comp_idx)
                        )

    def commit_buffers(self, writer) -> None:
        """Hand every enabled buffer to the writer if it supports named buffers."""
        narrow = getattr(writer, "named_buffer_sink", None)
        sink = narrow() if narrow is not None else None
        if sink is None:
            logger.debug(
                "%s: writer %s has no named-buffer support; skipping",
                type(self).__name__,
                type(writer).__name__,
            )
            return

        for q, buf in self.buffers.items():
            sink.attach_buffer(q.name, buf)
            logger.debug("%s: committed '%s'", type(self).__name__, q.name)
