"""
Output writer backends.

- BaseOutputWriter: per-cycle begin/end protocol plus the named-buffer capability query.
- NpzMultiWriter: accepts named diagnostic buffers and writes one npz file per cycle
  (steps/step_XXXXXX_time_Ys.npz) plus a mapping.json describing the axes.
- ScalarsCsvWriter: one CSV row of scalar summaries per cycle; no named-buffer support.
"""

from __future__ import annotations

import csv
import json
import logging
import math
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np

from core.logging_utils import is_root_rank

logger = logging.getLogger(__name__)


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


class BaseOutputWriter:
    """Generic output sink. Subclasses opt into named-buffer commits."""

    def __init__(self) -> None:
        self.step_id: Optional[int] = None
        self.t: float = math.nan

    def begin_write(self, step_id: int, t: float) -> None:
        self.step_id = int(step_id)
        self.t = float(t)

    def end_write(self) -> None:
        pass

    def named_buffer_sink(self) -> Optional["NpzMultiWriter"]:
        """Return a handle accepting attach_buffer(name, buffer), or None."""
        return None

    def close(self) -> None:
        pass


class NpzMultiWriter(BaseOutputWriter):
    """
    Collect named buffers of one output cycle and write them to an npz file.

    attach_buffer copies the nested buffer into a stacked float64 array:
    (n_phases, n_dof) for phase buffers, (n_phases, n_comp, n_dof) for
    phase-component buffers. Only rank 0 writes files.
    """

    def __init__(
        self,
        out_dir: Path | str,
        phase_names: Sequence[str],
        component_names: Sequence[str],
    ) -> None:
        super().__init__()
        self.out_dir = Path(out_dir)
        self.phase_names = list(phase_names)
        self.component_names = list(component_names)
        self._pending: Dict[str, np.ndarray] = {}
        self._mapping_written = False
        self.history: List[Dict[str, object]] = []
        self.last_path: Optional[Path] = None

    def named_buffer_sink(self) -> "NpzMultiWriter":
        return self

    def begin_write(self, step_id: int, t: float) -> None:
        super().begin_write(step_id, t)
        self._pending = {}

    def attach_buffer(self, name: str, buffer) -> None:
        if name in self._pending:
            raise ValueError(f"Buffer '{name}' already attached in this output cycle.")
        self._pending[name] = np.array(buffer, dtype=np.float64, copy=True)

    def _build_mapping(self) -> dict:
        return {
            "version": 1,
            "endianness": sys.byteorder,
            "dtype": "float64",
            "ordering": "C",
            "phase_names": self.phase_names,
            "component_names": self.component_names,
            "axes": {
                "phase_buffer": ["phase", "dof"],
                "phase_component_buffer": ["phase", "component", "dof"],
            },
        }

    def _write_mapping_json(self) -> None:
        out_path = self.out_dir / "mapping.json"
        tmp_path = self.out_dir / "mapping.json.tmp"
        with open(tmp_path, "w") as f:
            json.dump(self._build_mapping(), f, indent=2)
        os.replace(tmp_path, out_path)
        logger.info(f"Wrote mapping.json: {out_path}")

    def end_write(self) -> None:
        if self.step_id is None:
            raise RuntimeError("end_write() called without begin_write().")
        names = sorted(self._pending)
        self.history.append({"step": self.step_id, "t": self.t, "names": names})
        if not is_root_rank():
            self._pending = {}
            return

        _ensure_dir(self.out_dir)
        if not self._mapping_written:
            self._write_mapping_json()
            self._mapping_written = True

        steps_dir = _ensure_dir(self.out_dir / "steps")
        out_path = steps_dir / f"step_{self.step_id:06d}_time_{self.t:.6e}s.npz"
        np.savez(
            out_path,
            step_id=np.asarray(self.step_id, dtype=np.int32),
            t=np.asarray(self.t, dtype=np.float64),
            **self._pending,
        )
        self.last_path = out_path
        self._pending = {}
        logger.debug(f"Wrote step file: {out_path} ({names})")


class ScalarsCsvWriter(BaseOutputWriter):
    """One CSV row per output cycle; values are pushed with record()."""

    def __init__(self, out_path: Path | str, fields: Sequence[str]) -> None:
        super().__init__()
        self.out_path = Path(out_path)
        self.fields = list(fields)
        self._row: Dict[str, float] = {}
        self._fh = None
        self._writer = None
        self._unknown_fields: set[str] = set()
        self._closed = False

    def _open(self) -> None:
        _ensure_dir(self.out_path.parent)
        self._fh = self.out_path.open("w", newline="")
        self._writer = csv.writer(self._fh)
        self._writer.writerow(self.fields)
        self._fh.flush()

    def begin_write(self, step_id: int, t: float) -> None:
        super().begin_write(step_id, t)
        self._row = {"step": float(step_id), "t": float(t)}

    def record(self, name: str, value: float) -> None:
        if name not in self.fields and name not in self._unknown_fields:
            logger.warning("Unknown scalar field '%s'; ignored.", name)
            self._unknown_fields.add(name)
        self._row[name] = float(value)

    def end_write(self) -> None:
        if self._closed:
            raise RuntimeError(f"ScalarsCsvWriter for {self.out_path} is closed.")
        if not is_root_rank():
            return
        if self._writer is None:
            self._open()
        self._writer.writerow([self._row.get(f, math.nan) for f in self.fields])
        self._fh.flush()

    def close(self) -> None:
        self._closed = True
        if self._fh is not None:
            try:
                self._fh.close()
            finally:
                self._fh = None
                self._writer = None
