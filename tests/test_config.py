from pathlib import Path

import pytest

from mpm2d.config.base_config import Config, default_cfg, load_config
from mpm2d.errors import ConfigurationError, MPMError


def test_defaults_are_valid():
    cfg = Config().validate()
    assert cfg.n_grid == 128
    assert cfg.dx == pytest.approx(1.0 / 128)
    assert cfg.inv_dx == pytest.approx(128.0)
    assert cfg.domain_size == pytest.approx(1.0)
    assert cfg.boundary_mode == "separate"
    assert cfg.out_of_bounds == "clamp"


def test_explicit_cell_size():
    cfg = Config(n_grid=64, cell_size=0.5).validate()
    assert cfg.dx == 0.5
    assert cfg.domain_size == pytest.approx(32.0)


@pytest.mark.parametrize("overrides", [
    dict(n_grid=8),
    dict(cell_size=-1.0),
    dict(dtype="float16"),
    dict(max_particles=0),
    dict(dt=0.0),
    dict(substeps=0),
    dict(gravity=(0.0, -9.8, 0.0)),
    dict(cfl=1.5),
    dict(boundary_margin=0),
    dict(boundary_mode="slippery"),
    dict(restitution=2.0),
    dict(friction=-0.1),
    dict(out_of_bounds="wrap"),
    dict(mass_epsilon=0.0),
    dict(min_jacobian=0.0),
    dict(num_workers=-1),
    dict(wall_lookahead=-1.0),
])
def test_invalid_settings_raise(overrides):
    with pytest.raises(ConfigurationError):
        Config(**overrides).validate()


def test_configuration_error_hierarchy():
    with pytest.raises(MPMError):
        Config(dt=-1.0).validate()
    with pytest.raises(ValueError):
        Config(dt=-1.0).validate()


def test_default_node_matches_dataclass():
    node = default_cfg()
    assert node.n_grid == 128
    assert node.cell_size == 0.0
    assert list(node.gravity) == [0.0, -9.8]


def test_load_without_file_gives_defaults():
    assert load_config() == Config()


def test_load_from_yaml(tmp_path):
    path = tmp_path / "scene.yaml"
    path.write_text(
        "n_grid: 64\n"
        "dtype: float64\n"
        "dt: 0.0002\n"
        "gravity: [0.0, -4.0]\n"
        "boundary_mode: friction\n"
    )
    cfg = load_config(str(path))
    assert cfg.n_grid == 64
    assert cfg.dx == pytest.approx(1.0 / 64)
    assert cfg.dtype == "float64"
    assert cfg.dt == pytest.approx(2e-4)
    assert cfg.gravity == (0.0, -4.0)
    assert cfg.boundary_mode == "friction"


def test_overrides_apply_after_file(tmp_path):
    path = tmp_path / "scene.yaml"
    path.write_text("n_grid: 64\n")
    cfg = load_config(str(path), overrides=["n_grid", "96", "out_of_bounds", "remove"])
    assert cfg.n_grid == 96
    assert cfg.out_of_bounds == "remove"


def test_unknown_key_is_rejected(tmp_path):
    path = tmp_path / "scene.yaml"
    path.write_text("grid_resolution: 64\n")
    with pytest.raises(ConfigurationError):
        load_config(str(path))


def test_wrong_type_is_rejected():
    with pytest.raises(ConfigurationError):
        load_config(overrides=["boundary_mode", "3"])


def test_loaded_values_are_validated(tmp_path):
    path = tmp_path / "scene.yaml"
    path.write_text("boundary_mode: slippery\n")
    with pytest.raises(ConfigurationError):
        load_config(str(path))


def test_shipped_scene_config():
    path = Path(__file__).resolve().parent.parent / "configs" / "dam_break.yaml"
    cfg = load_config(str(path))
    assert cfg.n_grid == 128
    assert cfg.dt == pytest.approx(5e-5)
    assert cfg.substeps == 40
