"""
Strongly typed containers for case configuration, grid and state.

Global shape conventions (law of the land):
- n_elem: number of 1D elements; n_dof = n_elem + 1 (vertex-centred, one DOF per vertex)
- n_phases: number of fluid phases; n_comp: number of components (same list in every phase)
- porosity.shape == (n_dof,)
- saturation.shape == (n_phases, n_dof)  # columns are space, sum over phases == 1
- Diagnostic buffers: phase buffers (n_phases, n_dof); phase-component buffers (n_phases, n_comp, n_dof)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray

FloatArray = NDArray[np.float64]
IntArray = NDArray[np.int64]


@dataclass(slots=True)
class CaseMeta:
    """Metadata for the case block."""

    id: str
    title: str = ""
    notes: Optional[str] = None


@dataclass(slots=True)
class CasePaths:
    """Case-level paths (resolved by the loader).

    Attributes
    ----------
    output_root : Path
        Root directory below which case directories are created.
    case_dir : Path
        Directory receiving all output of this case.
    params_file : Path or None
        Optional YAML file with runtime parameter values.
    """

    output_root: Path
    case_dir: Path
    params_file: Optional[Path] = None

    def __post_init__(self) -> None:
        for name in ("output_root", "case_dir"):
            v = getattr(self, name)
            if not isinstance(v, Path):
                raise TypeError(f"{name} must be pathlib.Path (loader must convert str -> Path).")
        if self.params_file is not None and not isinstance(self.params_file, Path):
            raise TypeError("params_file must be pathlib.Path or None.")


@dataclass(slots=True)
class CaseGeometry:
    """1D domain and mesh settings."""

    length: float
    n_elem: int
    method: str = "uniform"  # "uniform" | "tanh"
    beta: float = 2.0
    center_bias: float = 0.0
    refine_at_steps: List[int] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not np.isfinite(self.length) or self.length <= 0.0:
            raise ValueError(f"geometry.length must be positive, got {self.length}")
        if int(self.n_elem) < 1:
            raise ValueError(f"geometry.n_elem must be >= 1, got {self.n_elem}")
        if self.method not in ("uniform", "tanh"):
            raise ValueError(f"Unknown mesh method '{self.method}' (expected 'uniform' or 'tanh').")


@dataclass(slots=True)
class CaseFluid:
    """Fluid system: phases, components and transport data.

    diffusion_coefficients[p][c] is the molecular diffusion coefficient [m^2/s]
    of component c in phase p.
    """

    phases: List[str]
    components: List[str]
    diffusion_coefficients: List[List[float]]
    porosity: float = 0.3
    saturation: List[float] = field(default_factory=list)
    drainage_rate: float = 0.0

    def __post_init__(self) -> None:
        if not self.phases:
            raise ValueError("fluid.phases must list at least one phase.")
        if not self.components:
            raise ValueError("fluid.components must list at least one component.")
        n_p, n_c = len(self.phases), len(self.components)
        if len(self.diffusion_coefficients) != n_p or any(
            len(row) != n_c for row in self.diffusion_coefficients
        ):
            raise ValueError(
                f"fluid.diffusion_coefficients must have shape ({n_p}, {n_c}) (phases x components)."
            )
        if any(d < 0.0 for row in self.diffusion_coefficients for d in row):
            raise ValueError("fluid.diffusion_coefficients must be non-negative.")
        if not (0.0 < self.porosity <= 1.0):
            raise ValueError(f"fluid.porosity must be in (0, 1], got {self.porosity}")
        if not self.saturation:
            self.saturation = [1.0 / n_p] * n_p
        if len(self.saturation) != n_p:
            raise ValueError(f"fluid.saturation must have {n_p} entries, got {len(self.saturation)}")
        if any(not (0.0 <= s <= 1.0) for s in self.saturation):
            raise ValueError(f"fluid.saturation entries must be in [0, 1], got {self.saturation}")
        if abs(sum(self.saturation) - 1.0) > 1.0e-12:
            raise ValueError(f"fluid.saturation must sum to 1, got {sum(self.saturation)}")
        if self.drainage_rate < 0.0:
            raise ValueError(f"fluid.drainage_rate must be >= 0, got {self.drainage_rate}")

    @property
    def n_phases(self) -> int:
        return len(self.phases)

    @property
    def n_components(self) -> int:
        return len(self.components)


@dataclass(slots=True)
class CaseTime:
    """Time control settings."""

    t0: float
    dt: float
    n_steps: int

    def __post_init__(self) -> None:
        if self.dt <= 0.0:
            raise ValueError(f"time.dt must be positive, got {self.dt}")
        if self.n_steps < 0:
            raise ValueError(f"time.n_steps must be >= 0, got {self.n_steps}")


@dataclass(slots=True)
class CaseOutput:
    """Output cadence and backends."""

    write_every: int = 1
    formats: List[str] = field(default_factory=lambda: ["npz", "csv"])
    workers: int = 1

    def __post_init__(self) -> None:
        unknown = set(self.formats) - {"npz", "csv"}
        if unknown:
            raise ValueError(f"Unsupported output formats: {sorted(unknown)}")
        if self.write_every < 1:
            raise ValueError(f"output.write_every must be >= 1, got {self.write_every}")
        if self.workers < 1:
            raise ValueError(f"output.workers must be >= 1, got {self.workers}")


@dataclass(slots=True)
class CaseConfig:
    """Top-level case configuration container."""

    case: CaseMeta
    paths: CasePaths
    geometry: CaseGeometry
    fluid: CaseFluid
    time: CaseTime
    output: CaseOutput = field(default_factory=CaseOutput)
    parameters: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.geometry, CaseGeometry):
            raise TypeError("geometry must be CaseGeometry (loader must build dataclass).")
        if not isinstance(self.fluid, CaseFluid):
            raise TypeError("fluid must be CaseFluid (loader must build dataclass).")
        if not isinstance(self.output, CaseOutput):
            raise TypeError("output must be CaseOutput (loader must build dataclass).")


@dataclass(slots=True)
class Grid1D:
    """1D vertex-centred grid container (no generation logic).

    Fields
    ------
    n_elem : int
        Number of elements.
    x_v : (n_elem+1,) float64
        Vertex coordinates [m], strictly increasing.
    elem_vertices : (n_elem, 2) int64
        Global vertex (= DOF) indices of each element, left then right.
    """

    n_elem: int
    x_v: FloatArray
    elem_vertices: IntArray

    def __post_init__(self) -> None:
        if self.n_elem < 1:
            raise ValueError(f"n_elem must be >= 1, got {self.n_elem}")
        if self.x_v.shape != (self.n_elem + 1,):
            raise ValueError(f"x_v shape {self.x_v.shape} != ({self.n_elem + 1},)")
        if self.elem_vertices.shape != (self.n_elem, 2):
            raise ValueError(f"elem_vertices shape {self.elem_vertices.shape} != ({self.n_elem}, 2)")
        if not np.all(np.diff(self.x_v) > 0.0):
            raise ValueError("x_v must be strictly increasing.")

    @property
    def n_dof(self) -> int:
        return int(self.x_v.size)

    @property
    def x_c(self) -> FloatArray:
        """Element midpoints."""
        return 0.5 * (self.x_v[:-1] + self.x_v[1:])

    def element_dofs(self, elem_idx: int) -> Tuple[int, int]:
        left, right = self.elem_vertices[elem_idx]
        return int(left), int(right)


@dataclass(slots=True)
class State:
    """Primary state per DOF.

    porosity : (n_dof,) [-]
    saturation : (n_phases, n_dof) [-], columns sum to one
    """

    porosity: FloatArray
    saturation: FloatArray


def check_state_shapes(state: State, grid: Grid1D, *, n_phases: int) -> None:
    """Validate State array shapes against grid and phase count."""
    if state.porosity.shape != (grid.n_dof,):
        raise ValueError(f"porosity shape {state.porosity.shape} != ({grid.n_dof},)")
    if state.saturation.shape != (n_phases, grid.n_dof):
        raise ValueError(f"saturation shape {state.saturation.shape} != ({n_phases},{grid.n_dof})")
    for name, arr in (("porosity", state.porosity), ("saturation", state.saturation)):
        if arr.dtype != np.float64:
            raise ValueError(f"{name} dtype must be float64, got {arr.dtype}")


def check_saturation_sum(state: State, *, tol: float = 1e-10) -> None:
    """Verify phase saturations sum to unity column-wise."""
    if state.saturation.size:
        s_sum = np.sum(state.saturation, axis=0)
        max_err = float(np.max(np.abs(s_sum - 1.0)))
        if max_err > tol:
            raise ValueError(f"Saturation sum off by {max_err:.3e} (tol={tol})")
