"""
Output cycle: allocate -> traverse all elements -> commit.

Element traversal is data-parallel. With n_workers > 1 the elements are split
into contiguous chunks, each processed by a thread with its own ElementContext.
Module buffers are shared without locks: each element writes only its own
DOF indices, and a vertex shared by two elements receives the same value from
both (intensive quantities depend on the DOF's state only), so the last writer
wins without changing the result.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from core.params import PARAMETERS, ParameterRegistry
from core.simulator import Simulator
from physics.element_context import ElementContext

from .base_module import BaseOutputModule
from .writers import BaseOutputWriter

logger = logging.getLogger(__name__)


def register_parameters(module_types: Iterable[type], params: Optional[ParameterRegistry] = None) -> None:
    """Register the runtime parameters of every output module type."""
    for module_type in module_types:
        module_type.register_parameters(params)


def _element_chunks(n_elem: int, n_workers: int) -> List[range]:
    bounds = np.linspace(0, n_elem, min(n_workers, n_elem) + 1).astype(int)
    return [range(int(a), int(b)) for a, b in zip(bounds[:-1], bounds[1:]) if b > a]


class OutputManager:
    def __init__(
        self,
        simulator: Simulator,
        modules: Sequence[BaseOutputModule],
        params: Optional[ParameterRegistry] = None,
    ) -> None:
        self.simulator = simulator
        self.modules = list(modules)
        self.params = params if params is not None else PARAMETERS

    def _process_elements(self, elements: range) -> None:
        elem_ctx = ElementContext(self.simulator)
        for elem_idx in elements:
            elem_ctx.update(elem_idx)
            for module in self.modules:
                module.process_element(elem_ctx)

    def traverse(self, n_workers: int = 1) -> None:
        n_elem = self.simulator.num_elements()
        if n_workers <= 1 or n_elem <= 1:
            self._process_elements(range(n_elem))
            return

        chunks = _element_chunks(n_elem, n_workers)
        with ThreadPoolExecutor(max_workers=len(chunks)) as pool:
            futures = [pool.submit(self._process_elements, chunk) for chunk in chunks]
            for fut in futures:
                # re-raises the first worker failure; the cycle is aborted
                fut.result()

    def run_cycle(
        self,
        writers: Sequence[BaseOutputWriter],
        n_workers: int = 1,
        scalars: Optional[Callable[[Simulator], Mapping[str, float]]] = None,
    ) -> None:
        """
        Run one full output cycle and hand the buffers to every writer.

        scalars, if given, maps the simulator to per-cycle scalar values that
        are recorded on writers exposing record(name, value).
        """
        sim = self.simulator
        values = dict(scalars(sim)) if scalars is not None else {}
        for writer in writers:
            writer.begin_write(sim.step_id, sim.t)

        for module in self.modules:
            module.alloc_buffers()
        self.traverse(n_workers)
        for writer in writers:
            for module in self.modules:
                module.commit_buffers(writer)
            record = getattr(writer, "record", None)
            if record is not None:
                for name, value in values.items():
                    record(name, value)
            writer.end_write()

        logger.info(
            "Output cycle step=%d t=%.6e n_dof=%d modules=%d writers=%d",
            sim.step_id,
            sim.t,
            sim.num_dof(),
            len(self.modules),
            len(writers),
        )
