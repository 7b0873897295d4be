"""
Driver: run a diffusion diagnostic case and write the selected quantities.

Responsibilities:
- Load CaseConfig from YAML.
- Register output module parameters; apply YAML / parameter-file / CLI values.
- Build simulator (grid + initial state).
- Advance in time; run an output cycle every output.write_every steps and
  refine the grid at geometry.refine_at_steps.
"""

from __future__ import annotations

import argparse
import logging
import shutil
import traceback
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import yaml

from core.logging_utils import get_log_level_from_env, is_root_rank, setup_logging
from core.params import PARAMETERS, ParameterRegistry
from core.simulator import Simulator
from core.types import (
    CaseConfig,
    CaseFluid,
    CaseGeometry,
    CaseMeta,
    CaseOutput,
    CasePaths,
    CaseTime,
)
from output.diffusion_module import DiffusionOutputModule
from output.manager import OutputManager, register_parameters
from output.writers import BaseOutputWriter, NpzMultiWriter, ScalarsCsvWriter

logger = logging.getLogger(__name__)

OUTPUT_MODULES = (DiffusionOutputModule,)

SCALAR_FIELDS = ["step", "t", "n_dof", "mean_saturation_0"]


# -----------------------------------------------------------------------------
# YAML loader
# -----------------------------------------------------------------------------
def _resolve_path(base: Path, value: str | Path) -> Path:
    """Resolve a possibly relative path against base."""
    path = Path(value)
    return path if path.is_absolute() else (base / path).resolve()


def _read_yaml_text(cfg_file: Path) -> str:
    try:
        return cfg_file.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError:
        return cfg_file.read_text()


def load_case_config(cfg_path: str | Path) -> CaseConfig:
    """Load YAML file into CaseConfig with nested dataclasses."""
    cfg_file = Path(cfg_path).expanduser().resolve()
    raw = yaml.safe_load(_read_yaml_text(cfg_file)) or {}
    base = cfg_file.parent

    case_cfg = CaseMeta(**raw["case"])

    paths_raw = raw.get("paths", {}) or {}
    output_root = _resolve_path(base, paths_raw.get("output_root", "out"))
    case_dir = _resolve_path(base, paths_raw.get("case_dir", output_root / case_cfg.id))
    params_file_raw = paths_raw.get("params_file", None)
    paths_cfg = CasePaths(
        output_root=output_root,
        case_dir=case_dir,
        params_file=_resolve_path(base, params_file_raw) if params_file_raw else None,
    )

    geom_raw = raw["geometry"]
    geom_cfg = CaseGeometry(
        length=float(geom_raw["length"]),
        n_elem=int(geom_raw["n_elem"]),
        method=str(geom_raw.get("method", "uniform")),
        beta=float(geom_raw.get("beta", 2.0)),
        center_bias=float(geom_raw.get("center_bias", 0.0)),
        refine_at_steps=[int(s) for s in geom_raw.get("refine_at_steps", []) or []],
    )

    fluid_raw = raw["fluid"]
    fluid_cfg = CaseFluid(
        phases=list(fluid_raw["phases"]),
        components=list(fluid_raw["components"]),
        diffusion_coefficients=[[float(d) for d in row] for row in fluid_raw["diffusion_coefficients"]],
        porosity=float(fluid_raw.get("porosity", 0.3)),
        saturation=[float(s) for s in fluid_raw.get("saturation", []) or []],
        drainage_rate=float(fluid_raw.get("drainage_rate", 0.0)),
    )

    time_raw = raw["time"]
    time_cfg = CaseTime(
        t0=float(time_raw.get("t0", 0.0)),
        dt=float(time_raw["dt"]),
        n_steps=int(time_raw["n_steps"]),
    )

    out_raw = raw.get("output", {}) or {}
    out_cfg = CaseOutput(
        write_every=int(out_raw.get("write_every", 1)),
        formats=list(out_raw.get("formats", ["npz", "csv"])),
        workers=int(out_raw.get("workers", 1)),
    )

    return CaseConfig(
        case=case_cfg,
        paths=paths_cfg,
        geometry=geom_cfg,
        fluid=fluid_cfg,
        time=time_cfg,
        output=out_cfg,
        parameters=dict(raw.get("parameters", {}) or {}),
    )


def _prepare_run_dir(cfg: CaseConfig, cfg_path: str) -> Path:
    """Create per-run output directory and copy cfg yaml into it."""
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_dir = Path(cfg.paths.case_dir) / stamp
    run_dir.mkdir(parents=True, exist_ok=True)
    cfg.paths.case_dir = run_dir
    shutil.copy2(cfg_path, run_dir / "config.yaml")
    return run_dir


def apply_parameters(
    cfg: CaseConfig,
    params: ParameterRegistry,
    *,
    params_file: Optional[str] = None,
    overrides: Sequence[str] = (),
) -> None:
    """Defaults < case 'parameters:' block < parameter file < CLI overrides."""
    params.update(cfg.parameters)
    file_path = params_file or cfg.paths.params_file
    if file_path:
        params.load_yaml(file_path)
    params.parse_overrides(overrides)


def build_writers(cfg: CaseConfig, sim: Simulator, run_dir: Path) -> List[BaseOutputWriter]:
    writers: List[BaseOutputWriter] = []
    if "npz" in cfg.output.formats:
        writers.append(NpzMultiWriter(run_dir, sim.phase_names, sim.component_names))
    if "csv" in cfg.output.formats:
        writers.append(ScalarsCsvWriter(run_dir / "scalars" / "scalars.csv", SCALAR_FIELDS))
    return writers


def cycle_scalars(sim: Simulator) -> Dict[str, float]:
    """Per-cycle scalars for the CSV writer."""
    return {
        "n_dof": sim.num_dof(),
        "mean_saturation_0": float(np.mean(sim.state.saturation[0])),
    }


def _log_parameters(params: ParameterRegistry) -> None:
    for entry in params.describe():
        logger.info("  %-38s = %-6r (default %r)", entry["name"], entry["value"], entry["default"])


def run_case(
    cfg_path: str,
    *,
    params_file: Optional[str] = None,
    overrides: Sequence[str] = (),
    workers: Optional[int] = None,
    params: Optional[ParameterRegistry] = None,
    log_level: int | str = logging.INFO,
) -> int:
    """Run one case. Return 0 on success, non-zero on failure."""
    cfg_path = str(cfg_path)
    params = params if params is not None else PARAMETERS
    writers: List[BaseOutputWriter] = []
    try:
        level = get_log_level_from_env(default=log_level)
        setup_logging(0 if is_root_rank() else 1, level=level, quiet_nonroot=True)

        cfg = load_case_config(cfg_path)
        register_parameters(OUTPUT_MODULES, params)
        apply_parameters(cfg, params, params_file=params_file, overrides=overrides)
        logger.info("Case: %s (%s)", cfg.case.id, cfg_path)
        _log_parameters(params)

        run_dir = _prepare_run_dir(cfg, cfg_path)
        logger.info("Run directory: %s", run_dir)

        sim = Simulator(cfg)
        modules = [module_type(sim, params) for module_type in OUTPUT_MODULES]
        manager = OutputManager(sim, modules, params)
        writers = build_writers(cfg, sim, run_dir)
        n_workers = int(workers) if workers is not None else cfg.output.workers
        refine_steps = set(cfg.geometry.refine_at_steps)

        manager.run_cycle(writers, n_workers=n_workers, scalars=cycle_scalars)
        for _ in range(cfg.time.n_steps):
            sim.advance(cfg.time.dt)
            if sim.step_id in refine_steps:
                sim.refine()
            if sim.step_id % cfg.output.write_every == 0:
                manager.run_cycle(writers, n_workers=n_workers, scalars=cycle_scalars)

        logger.info("Completed run: t=%.6e after %d steps (n_dof=%d).", sim.t, sim.step_id, sim.num_dof())
        return 0
    except Exception:
        tb = traceback.format_exc()
        logger.error("Unhandled exception:\n%s", tb)
        return 99
    finally:
        for writer in writers:
            writer.close()


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a diffusion diagnostic output case.")
    parser.add_argument("case_yaml", nargs="?", help="Path to case YAML file.")
    parser.add_argument(
        "--params",
        default=None,
        help="YAML file with runtime parameter values (overrides the case file).",
    )
    parser.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Override one runtime parameter; may be repeated.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of element traversal threads (default: output.workers from YAML).",
    )
    parser.add_argument(
        "--list-params",
        action="store_true",
        help="Print the registered runtime parameters and exit.",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    if args.list_params:
        registry = ParameterRegistry()
        register_parameters(OUTPUT_MODULES, registry)
        for entry in registry.describe():
            print(f"{entry['name']:<38} default={entry['default']!r:<6} {entry['description']}")
        return 0
    if not args.case_yaml:
        logger.error("case_yaml is required unless --list-params is given.")
        return 2
    return run_case(
        args.case_yaml,
        params_file=args.params,
        overrides=args.param,
        workers=args.workers,
        log_level=args.log_level,
    )


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
