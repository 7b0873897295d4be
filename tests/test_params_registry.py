from __future__ import annotations

import pytest

from core.params import ParameterError, ParameterRegistry


@pytest.fixture
def registry():
    params = ParameterRegistry()
    params.register("WriteTortuosities", False, "Include the tortuosity")
    params.register("OutputEvery", 1, "Output cadence")
    return params


def test_default_then_override(registry):
    assert registry.get("WriteTortuosities") is False
    registry.set("WriteTortuosities", "yes")
    assert registry.get("WriteTortuosities") is True
    registry.set("OutputEvery", "4")
    assert registry.get("OutputEvery") == 4


def test_unknown_parameter_raises(registry):
    with pytest.raises(ParameterError, match="not registered"):
        registry.get("Nope")
    with pytest.raises(ParameterError, match="not registered"):
        registry.set("Nope", True)


def test_conflicting_registration_raises(registry):
    registry.register("WriteTortuosities", False, "same default is fine")
    with pytest.raises(ParameterError, match="already registered"):
        registry.register("WriteTortuosities", True, "different default")


def test_bad_bool_value_raises(registry):
    with pytest.raises(ParameterError, match="expects a bool"):
        registry.set("WriteTortuosities", "maybe")
    with pytest.raises(ParameterError, match="expects int"):
        registry.set("OutputEvery", "often")


def test_overrides_and_yaml_file(registry, tmp_path):
    path = tmp_path / "params.yaml"
    path.write_text("WriteTortuosities: true\nOutputEvery: 3\n", encoding="utf-8")
    registry.load_yaml(path)
    assert registry.get("WriteTortuosities") is True
    assert registry.get("OutputEvery") == 3

    registry.parse_overrides(["WriteTortuosities=off", " OutputEvery = 7 "])
    assert registry.get("WriteTortuosities") is False
    assert registry.get("OutputEvery") == 7

    with pytest.raises(ParameterError, match="Name=Value"):
        registry.parse_overrides(["WriteTortuosities"])


def test_describe_and_reset(registry):
    registry.set("OutputEvery", 2)
    entries = registry.describe()
    assert [e["name"] for e in entries] == ["OutputEvery", "WriteTortuosities"]
    assert entries[0]["value"] == 2 and entries[0]["default"] == 1

    registry.reset()
    assert not registry.is_registered("OutputEvery")


def test_process_wide_registry_and_reset():
    from core import params as params_mod
    from output.diffusion_module import DiffusionOutputModule

    params_mod.reset()
    try:
        DiffusionOutputModule.register_parameters()
        assert params_mod.PARAMETERS.get("EnableOutput") is True
        assert params_mod.PARAMETERS.get("WriteTortuosities") is False
    finally:
        params_mod.reset()
    assert not params_mod.PARAMETERS.is_registered("EnableOutput")
