"""
Configuration Loader - YAML Files and Profiles.

A configuration is one YAML file, optionally overlaid with a profile that
lives next to it in ``profiles/<name>.yaml``:

    config/
        default.yaml
        profiles/
            development.yaml
            production.yaml

Profiles only carry the values they change; nested sections are merged
key by key. The merged mapping is validated into NebulaCacheConfig.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from nebula_cache.config.models import NebulaCacheConfig

logger = logging.getLogger(__name__)

PROFILES_DIR = "profiles"

PathLike = Union[str, Path]


def load_config(
    config_path: Optional[PathLike] = None,
    profile: Optional[str] = None,
) -> NebulaCacheConfig:
    """
    Load configuration, optionally with a profile merged on top.

    Args:
        config_path: YAML file; built-in defaults if None
        profile: Profile name looked up next to the file

    Returns:
        Validated NebulaCacheConfig

    Raises:
        FileNotFoundError: If the file or profile doesn't exist
        ValueError: If a file is not a mapping or names an unknown section
        ValidationError: If a value is invalid
    """
    if config_path is None:
        if profile:
            raise ValueError(f"Profile '{profile}' given without a config file")
        return NebulaCacheConfig()

    path = Path(config_path)
    data = _read_yaml(path)

    if profile:
        profile_path = path.parent / PROFILES_DIR / f"{profile}.yaml"
        if not profile_path.is_file():
            raise FileNotFoundError(
                f"Profile not found: {profile} (available: {available_profiles(path)})"
            )
        data = deep_merge(data, _read_yaml(profile_path))

    config = load_config_from_dict(data)
    logger.debug(f"Loaded config {path}" + (f" with profile {profile}" if profile else ""))
    return config


def load_config_from_dict(data: Mapping[str, Any]) -> NebulaCacheConfig:
    """Validate a configuration mapping, rejecting unknown sections."""
    unknown = sorted(set(data) - set(NebulaCacheConfig.model_fields))
    if unknown:
        raise ValueError(f"Unknown config section(s): {', '.join(unknown)}")
    return NebulaCacheConfig.model_validate(dict(data))


def available_profiles(config_path: PathLike) -> List[str]:
    """Names of the profiles stored next to a config file."""
    directory = Path(config_path).parent / PROFILES_DIR
    if not directory.is_dir():
        return []
    return sorted(p.stem for p in directory.glob("*.yaml"))


def deep_merge(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge overlay into a copy of base; nested mappings merge key by key."""
    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data
