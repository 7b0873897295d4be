"""
Smoke tests for the full output cycle.

Tests:
1. Element context shares vertex DOFs between neighbouring elements
2. Serial and threaded traversal produce identical buffers
3. NpzMultiWriter writes mapping.json + step files with stacked buffers
4. ScalarsCsvWriter is skipped by diagnostic modules but records scalars
5. Driver runs a small YAML case end-to-end (with refinement)
"""

from __future__ import annotations

import csv
import json
from pathlib import Path

import numpy as np
import pytest

from core.params import ParameterRegistry
from core.simulator import Simulator
from core.types import CaseConfig, CaseFluid, CaseGeometry, CaseMeta, CaseOutput, CasePaths, CaseTime
from driver.run_diffusion_case import cycle_scalars, load_case_config, main, run_case
from output.base_module import ENABLE_OUTPUT
from output.diffusion_module import DiffusionOutputModule
from output.manager import OutputManager
from output.writers import NpzMultiWriter, ScalarsCsvWriter
from physics.diffusion import millington_quirk_tortuosity
from physics.element_context import ElementContext

ALL_FLAGS = ("WriteTortuosities", "WriteDiffusionCoefficients", "WriteEffectiveDiffusionCoefficients")


def _make_cfg(tmp_path: Path, n_elem: int = 6, drainage_rate: float = 0.05) -> CaseConfig:
    return CaseConfig(
        case=CaseMeta(id="test_case"),
        paths=CasePaths(output_root=tmp_path, case_dir=tmp_path / "test_case"),
        geometry=CaseGeometry(length=0.1, n_elem=n_elem),
        fluid=CaseFluid(
            phases=["liquid", "gas"],
            components=["H2O", "CO2", "N2"],
            diffusion_coefficients=[[2.0e-9, 1.9e-9, 1.8e-9], [2.4e-5, 1.6e-5, 2.0e-5]],
            porosity=0.3,
            saturation=[0.7, 0.3],
            drainage_rate=drainage_rate,
        ),
        time=CaseTime(t0=0.0, dt=1.0, n_steps=3),
        output=CaseOutput(write_every=1),
    )


def _make_params(enabled=ALL_FLAGS) -> ParameterRegistry:
    params = ParameterRegistry()
    DiffusionOutputModule.register_parameters(params)
    for flag in enabled:
        params.set(flag, True)
    return params


def test_element_context_shares_vertex_dofs(tmp_path):
    sim = Simulator(_make_cfg(tmp_path))
    ctx = ElementContext(sim)

    ctx.update(2)
    assert ctx.num_primary_dof(0) == 2
    assert [ctx.global_space_index(i, 0) for i in range(2)] == [2, 3]
    right = ctx.intensive_quantities(1, 0)

    ctx.update(3)
    assert ctx.global_space_index(0, 0) == 3
    left = ctx.intensive_quantities(0, 0)
    assert left.tortuosity(0).value == right.tortuosity(0).value


@pytest.mark.parametrize("n_workers", [2, 3, 8])
def test_threaded_traversal_matches_serial(tmp_path, n_workers):
    cfg = _make_cfg(tmp_path, n_elem=17)
    sim = Simulator(cfg)
    sim.advance(1.0)  # non-uniform saturation profile

    serial = DiffusionOutputModule(sim, _make_params())
    serial.alloc_buffers()
    OutputManager(sim, [serial]).traverse()

    threaded = DiffusionOutputModule(sim, _make_params())
    threaded.alloc_buffers()
    OutputManager(sim, [threaded]).traverse(n_workers=n_workers)

    for q in DiffusionOutputModule.QUANTITIES:
        np.testing.assert_array_equal(
            np.asarray(serial.buffers.get(q.name)),
            np.asarray(threaded.buffers.get(q.name)),
        )

    phi = cfg.fluid.porosity
    expected = [millington_quirk_tortuosity(phi, s) for s in sim.state.saturation[1]]
    assert np.allclose(threaded.tortuosity[1], expected)


def test_npz_writer_receives_enabled_buffers(tmp_path):
    sim = Simulator(_make_cfg(tmp_path))
    params = _make_params(enabled=("WriteTortuosities", "WriteEffectiveDiffusionCoefficients"))
    manager = OutputManager(sim, [DiffusionOutputModule(sim, params)], params)
    writer = NpzMultiWriter(tmp_path / "run", sim.phase_names, sim.component_names)

    manager.run_cycle([writer])

    mapping = json.loads((tmp_path / "run" / "mapping.json").read_text())
    assert mapping["phase_names"] == ["liquid", "gas"]
    assert mapping["component_names"] == ["H2O", "CO2", "N2"]

    assert writer.last_path is not None and writer.last_path.exists()
    with np.load(writer.last_path) as data:
        assert set(data.files) == {"step_id", "t", "tortuosity", "effectiveDiffusionCoefficient"}
        assert data["tortuosity"].shape == (2, sim.num_dof())
        assert data["effectiveDiffusionCoefficient"].shape == (2, 3, sim.num_dof())
        assert np.all(data["tortuosity"] > 0.0)
    assert writer.history[-1]["names"] == ["effectiveDiffusionCoefficient", "tortuosity"]


def test_gate_off_commits_zero_buffers(tmp_path):
    sim = Simulator(_make_cfg(tmp_path))
    params = _make_params()
    params.set(ENABLE_OUTPUT, False)
    manager = OutputManager(sim, [DiffusionOutputModule(sim, params)], params)
    writer = NpzMultiWriter(tmp_path / "run", sim.phase_names, sim.component_names)

    manager.run_cycle([writer])
    with np.load(writer.last_path) as data:
        assert np.all(data["tortuosity"] == 0.0)
        assert np.all(data["diffusionCoefficient"] == 0.0)


def test_csv_writer_is_skipped_by_modules(tmp_path):
    sim = Simulator(_make_cfg(tmp_path))
    params = _make_params()
    manager = OutputManager(sim, [DiffusionOutputModule(sim, params)], params)
    csv_path = tmp_path / "scalars" / "scalars.csv"
    writer = ScalarsCsvWriter(csv_path, ["step", "t", "n_dof", "mean_saturation_0"])

    manager.run_cycle([writer], scalars=cycle_scalars)
    sim.advance(1.0)
    manager.run_cycle([writer], scalars=cycle_scalars)
    writer.close()

    # a closed writer must not reopen and truncate the file
    with pytest.raises(RuntimeError, match="closed"):
        manager.run_cycle([writer], scalars=cycle_scalars)

    with csv_path.open() as f:
        rows = list(csv.reader(f))
    assert rows[0] == ["step", "t", "n_dof", "mean_saturation_0"]
    assert len(rows) == 3
    assert float(rows[2][0]) == 1.0
    assert float(rows[2][2]) == sim.num_dof()
    assert float(rows[2][3]) == pytest.approx(float(np.mean(sim.state.saturation[0])))


def test_run_cycle_without_scalars_hook_records_only_step_and_time(tmp_path):
    sim = Simulator(_make_cfg(tmp_path))
    params = _make_params()
    manager = OutputManager(sim, [DiffusionOutputModule(sim, params)], params)
    csv_path = tmp_path / "scalars.csv"
    writer = ScalarsCsvWriter(csv_path, ["step", "t", "n_dof"])

    manager.run_cycle([writer])
    writer.close()

    with csv_path.open() as f:
        rows = list(csv.reader(f))
    assert rows[1][:2] == ["0.0", "0.0"]
    assert rows[1][2] == "nan"


def test_refinement_between_cycles_resizes_output(tmp_path):
    sim = Simulator(_make_cfg(tmp_path, n_elem=4))
    params = _make_params()
    module = DiffusionOutputModule(sim, params)
    manager = OutputManager(sim, [module], params)
    writer = NpzMultiWriter(tmp_path / "run", sim.phase_names, sim.component_names)

    manager.run_cycle([writer])
    assert module.tortuosity[0].shape == (5,)

    sim.refine()
    sim.advance(1.0)
    manager.run_cycle([writer], n_workers=2)
    assert module.tortuosity[0].shape == (9,)
    assert np.all(module.tortuosity[0] > 0.0)


_CASE_YAML = """
case:
  id: smoke
paths:
  output_root: out
geometry:
  length: 0.05
  n_elem: 5
  method: tanh
  beta: 1.2
  refine_at_steps: [2]
fluid:
  phases: [liquid, gas]
  components: [H2O, air]
  diffusion_coefficients:
    - [2.0e-9, 1.0e-9]
    - [2.5e-5, 2.0e-5]
  porosity: 0.35
  saturation: [0.8, 0.2]
  drainage_rate: 0.1
time:
  dt: 0.5
  n_steps: 4
output:
  write_every: 2
  workers: 2
parameters:
  WriteTortuosities: true
"""


def test_driver_runs_case_end_to_end(tmp_path):
    case_path = tmp_path / "case.yaml"
    case_path.write_text(_CASE_YAML, encoding="utf-8")

    cfg = load_case_config(case_path)
    assert cfg.paths.output_root == (tmp_path / "out").resolve()
    assert cfg.geometry.refine_at_steps == [2]

    params = ParameterRegistry()
    rc = run_case(str(case_path), overrides=["WriteDiffusionCoefficients=true"], params=params)
    assert rc == 0
    assert params.get("WriteTortuosities") is True
    assert params.get("WriteEffectiveDiffusionCoefficients") is False

    run_dirs = list((tmp_path / "out" / "smoke").iterdir())
    assert len(run_dirs) == 1
    run_dir = run_dirs[0]
    assert (run_dir / "config.yaml").exists()
    steps = sorted((run_dir / "steps").glob("step_*.npz"))
    # cycles at steps 0, 2, 4
    assert len(steps) == 3
    with np.load(steps[0]) as first, np.load(steps[-1]) as last:
        assert first["tortuosity"].shape == (2, 6)
        assert last["tortuosity"].shape == (2, 11)
        assert last["diffusionCoefficient"].shape == (2, 2, 11)
        assert "effectiveDiffusionCoefficient" not in last.files

    with (run_dir / "scalars" / "scalars.csv").open() as f:
        rows = list(csv.reader(f))
    assert len(rows) == 4


def test_driver_reports_failure_with_exit_code(tmp_path):
    case_path = tmp_path / "case.yaml"
    case_path.write_text(_CASE_YAML, encoding="utf-8")
    rc = run_case(str(case_path), overrides=["NotAParameter=1"], params=ParameterRegistry())
    assert rc == 99


@pytest.mark.parametrize("field, value", [("write_every", 0), ("workers", 0)])
def test_loader_rejects_non_positive_output_settings(tmp_path, field, value):
    text = _CASE_YAML.replace(f"{field}: 2", f"{field}: {value}")
    assert text != _CASE_YAML
    case_path = tmp_path / "case.yaml"
    case_path.write_text(text, encoding="utf-8")
    with pytest.raises(ValueError, match=f"output.{field} must be >= 1"):
        load_case_config(case_path)


def test_cli_list_params(capsys):
    assert main(["--list-params"]) == 0
    out = capsys.readouterr().out
    for flag in ("EnableOutput",) + ALL_FLAGS:
        assert flag in out
