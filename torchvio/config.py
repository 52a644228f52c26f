"""
Configuration bundles for the tracking front-end.

Configurations are plain nested dictionaries. Components read them with
``dict.get`` and validate what they read in their constructors; this module
only provides the defaults and the loading/merging helpers.
"""
import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Union

import yaml

logger = logging.getLogger(__name__)


DEFAULT_TRACKER_CONFIG: Dict[str, Any] = {
    "optflow_class": "lucas-kanade",
    "margin": 8,
    "mask_size": 15,
    "num_features_min": 120,
    "num_features_max": 150,
    "max_pixel_displacement": 64,
    "extract_descriptor": True,
    "match_dropped_tracks": False,
    "descriptor_distance_thresh": 30,
    "verify_tracks_with_descriptor": False,
    "track_history": 16,
    "detector": "FAST",
    "extractor": "ORB",
    "FAST": {"threshold": 20, "nonmaxSuppression": True},
    "ORB": {"nfeatures": 500, "scaleFactor": 1.2, "nlevels": 8, "edgeThreshold": 31},
    "KLT": {"win_size": 15, "max_level": 5, "max_iter": 15, "eps": 0.01},
    "farneback": {
        "num_levels": 3,
        "pyr_scale": 0.5,
        "win_size": 13,
        "num_iter": 10,
        "poly_n": 5,
        "poly_sigma": 1.1,
        "use_initial_flow": False,
        "sampling": "bilinear",
    },
}

DEFAULT_SYSTEM_CONFIG: Dict[str, Any] = {
    "tracker": DEFAULT_TRACKER_CONFIG,
    "estimator": {
        "gyro_noise": 1e-3,
        "pixel_noise": 1.0,
        "static_tolerance": 0.5,
        "gravity_window": 200,
        "camera_to_body": None,
    },
    "optimizer": {
        "max_iterations": 10,
        "initial_lambda": 1e-4,
        "period": None,
        "iterations_per_solve": 1,
    },
    "process": {"max_pts_to_publish": 100, "max_queued": 64},
}


def merge_config(defaults: Dict, overrides: Dict = None) -> Dict:
    """
    Recursively merge ``overrides`` into a copy of ``defaults``.

    Nested dictionaries are merged key by key, every other value is replaced.

    Args:
        defaults: Base configuration
        overrides: Values taking precedence (optional)

    Returns:
        New merged dictionary; neither input is modified
    """
    merged = copy.deepcopy(defaults)
    if not overrides:
        return merged

    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)

    return merged


def load_config(path: Union[str, Path]) -> Dict:
    """
    Load a configuration bundle from a JSON or YAML file.

    Args:
        path: Path to a ``.json``, ``.yaml`` or ``.yml`` file

    Returns:
        Parsed configuration dictionary
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    suffix = path.suffix.lower()
    with open(path, "r") as f:
        if suffix == ".json":
            config = json.load(f)
        elif suffix in (".yaml", ".yml"):
            config = yaml.safe_load(f)
        else:
            raise ValueError(f"Unsupported configuration format: {suffix}")

    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ValueError(f"Configuration root must be a mapping, got {type(config)}")

    logger.info(f"Loaded configuration from {path}")
    return config
