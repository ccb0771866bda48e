from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

from .viewer.controller import ViewerSettings
from .viewer.overlay import OverlayStyle

load_dotenv()

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [parent / "config/config.yaml" for parent in _HERE.parents[:3]]

CONFIG_PATH = next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)
if CONFIG_PATH is None:  # pragma: no cover - fail fast in misconfigured environments
    raise FileNotFoundError("Default config.yaml could not be located; ensure the package data was installed.")

# Environment variable -> dotted config key
ENV_OVERRIDES: Dict[str, str] = {
    "UPLOAD_DIR": "storage.upload_dir",
    "DATABASE_PATH": "storage.database_path",
    "LOG_LEVEL": "logging.level",
}


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve, enum_to_str=True)  # type: ignore[return-value]


def make_runtime_config(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Build the effective configuration.

    Defaults come from ``config/config.yaml``; environment variables listed in
    ``ENV_OVERRIDES`` replace single keys, and ``overrides`` is merged last.
    Unknown keys in ``overrides`` are rejected since the base config is struct.
    """
    base = OmegaConf.create(get_default_config_container(resolve=False))
    OmegaConf.set_struct(base, True)

    for name, key in ENV_OVERRIDES.items():
        value = os.environ.get(name)
        if value:
            OmegaConf.update(base, key, value)

    if overrides:
        base = DictConfig(OmegaConf.merge(base, OmegaConf.create(overrides)))
    return base


@lru_cache(maxsize=1)
def get_settings() -> DictConfig:
    return make_runtime_config()


def build_viewer_settings(config: DictConfig) -> ViewerSettings:
    viewer = OmegaConf.to_container(config.viewer, resolve=True)
    return ViewerSettings(**viewer)  # type: ignore[arg-type]


def build_overlay_style(config: DictConfig) -> OverlayStyle:
    overlay: Dict[str, Any] = OmegaConf.to_container(config.overlay, resolve=True)  # type: ignore[assignment]
    for key in ("stroke_color", "fill_color", "label_background", "label_color"):
        overlay[key] = tuple(overlay[key])
    return OverlayStyle(**overlay)
