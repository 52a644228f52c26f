import json

import pytest
import yaml

from torchvio.config import (
    DEFAULT_SYSTEM_CONFIG,
    DEFAULT_TRACKER_CONFIG,
    load_config,
    merge_config,
)


def test_merge_config_is_recursive():
    merged = merge_config(DEFAULT_TRACKER_CONFIG, {"margin": 4, "KLT": {"win_size": 21}})

    assert merged["margin"] == 4
    assert merged["KLT"]["win_size"] == 21
    # Untouched nested keys survive
    assert merged["KLT"]["max_level"] == DEFAULT_TRACKER_CONFIG["KLT"]["max_level"]


def test_merge_config_does_not_mutate_defaults():
    merged = merge_config(DEFAULT_TRACKER_CONFIG, {"KLT": {"win_size": 99}})
    merged["farneback"]["num_levels"] = 42

    assert DEFAULT_TRACKER_CONFIG["KLT"]["win_size"] == 15
    assert DEFAULT_TRACKER_CONFIG["farneback"]["num_levels"] == 3


def test_merge_config_without_overrides_copies():
    merged = merge_config(DEFAULT_SYSTEM_CONFIG, None)
    assert merged == DEFAULT_SYSTEM_CONFIG
    assert merged is not DEFAULT_SYSTEM_CONFIG


def test_load_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"tracker": {"optflow_class": "farneback"}}))

    config = load_config(path)
    assert config["tracker"]["optflow_class"] == "farneback"


@pytest.mark.parametrize("suffix", [".yaml", ".yml"])
def test_load_yaml(tmp_path, suffix):
    path = tmp_path / f"config{suffix}"
    path.write_text(yaml.safe_dump({"tracker": {"margin": 12}}))

    config = load_config(str(path))
    assert config["tracker"]["margin"] == 12


def test_load_unknown_suffix(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("margin = 3")
    with pytest.raises(ValueError):
        load_config(path)


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")


def test_load_non_mapping_root(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("[1, 2, 3]")
    with pytest.raises(ValueError):
        load_config(path)
