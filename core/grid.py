"""
Grid construction from CaseConfig geometry settings.

Builds a 1D vertex-centred mesh on [0, length], either uniform or with tanh
stretching, and supports uniform bisection (h-refinement) together with the
matching state remap.
"""

from __future__ import annotations

import logging

import numpy as np

from .types import CaseConfig, FloatArray, Grid1D, State

logger = logging.getLogger(__name__)


def _build_segment_tanh(L: float, N: int, *, beta: float = 2.0, center_bias: float = 0.0) -> FloatArray:
    """
    Generate positive element widths on [0, L] using a tanh mapping.

    center_bias > 0 -> cluster toward the right end; center_bias < 0 -> left end.
    Returns an array of length N whose sum is L.

    For large |beta| the tanh mapping can saturate and create repeated nodes in
    float64; strict monotonicity of the node mapping is enforced to avoid zero widths.
    """
    N = int(N)
    L = float(L)
    beta = float(beta)
    center_bias = float(center_bias)

    if N <= 0:
        return np.array([], dtype=np.float64)
    if not np.isfinite(L) or L <= 0.0:
        raise ValueError("Segment length L must be positive and finite.")
    if not np.isfinite(beta) or not np.isfinite(center_bias):
        raise ValueError("beta and center_bias must be finite.")

    if abs(beta) < 1.0e-14:
        return np.full(N, L / N, dtype=np.float64)

    s = np.linspace(-1.0, 1.0, N + 1, dtype=np.float64)
    y = np.tanh(beta * (s + center_bias)).astype(np.float64)

    y_m = y.copy()
    for i in range(1, y_m.size):
        if not (y_m[i] > y_m[i - 1]):
            y_m[i] = np.nextafter(y_m[i - 1], np.inf)

    y0 = float(y_m[0])
    y1 = float(y_m[-1])
    den = y1 - y0
    if (not np.isfinite(den)) or den <= 0.0:
        raise ValueError("tanh grid mapping is degenerate; try smaller |beta| or different mapping.")

    xi = (y_m - y0) / den
    xi[0] = 0.0
    xi[-1] = 1.0

    widths = np.diff(L * xi)
    if np.any(~np.isfinite(widths)) or np.any(widths <= 0.0):
        raise ValueError("tanh grid produced non-positive or non-finite widths.")

    widths *= (L / float(np.sum(widths)))
    return widths.astype(np.float64)


def _grid_from_vertices(x_v: FloatArray) -> Grid1D:
    n_elem = int(x_v.size) - 1
    left = np.arange(n_elem, dtype=np.int64)
    elem_vertices = np.stack([left, left + 1], axis=1)
    return Grid1D(n_elem=n_elem, x_v=np.asarray(x_v, dtype=np.float64), elem_vertices=elem_vertices)


def build_grid(cfg: CaseConfig) -> Grid1D:
    """Build the initial grid from cfg.geometry."""
    gcfg = cfg.geometry
    L = float(gcfg.length)
    N = int(gcfg.n_elem)
    if gcfg.method == "uniform":
        x_v = np.linspace(0.0, L, N + 1, dtype=np.float64)
    else:
        widths = _build_segment_tanh(L, N, beta=gcfg.beta, center_bias=gcfg.center_bias)
        x_v = np.concatenate([[0.0], np.cumsum(widths)])
        x_v[-1] = L
    grid = _grid_from_vertices(x_v)
    logger.debug("Built %s grid: n_elem=%d n_dof=%d", gcfg.method, grid.n_elem, grid.n_dof)
    return grid


def refine_grid(grid: Grid1D) -> Grid1D:
    """Bisect every element; the new grid has 2*n_elem elements and 2*n_elem+1 DOFs."""
    x_old = grid.x_v
    x_new = np.empty(2 * x_old.size - 1, dtype=np.float64)
    x_new[0::2] = x_old
    x_new[1::2] = grid.x_c
    new_grid = _grid_from_vertices(x_new)
    logger.info("Refined grid: n_dof %d -> %d", grid.n_dof, new_grid.n_dof)
    return new_grid


def interpolate_state(state: State, old_grid: Grid1D, new_grid: Grid1D) -> State:
    """Linear interpolation of vertex values onto new_grid, renormalising saturations."""
    porosity = np.interp(new_grid.x_v, old_grid.x_v, state.porosity)
    sat = np.stack([np.interp(new_grid.x_v, old_grid.x_v, s) for s in state.saturation])
    sat /= np.sum(sat, axis=0, keepdims=True)
    return State(porosity=porosity.astype(np.float64), saturation=sat.astype(np.float64))
