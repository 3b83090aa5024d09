"""
Configuration loader for the bottlerun package.

Reads `docs/protocol/CONFIG.yaml` (or the file named by `BOTTLERUN_CONFIG`),
normalises environment variables, and exposes typed accessors for downstream
modules (database session factory, run capacity policy, export folders).
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import os

import yaml
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_PATH = ROOT_DIR / "docs/protocol/CONFIG.yaml"

DEFAULT_BOTTLE_TYPES = ("45kg", "8.5kg", "Forklift 18kg", "Forklift 15kg")
DEFAULT_CAPACITY_TYPE = "45kg"
DEFAULT_RUN_CAPACITY = 8


def load_env() -> None:
    # .env first, then .env.local for local overrides
    load_dotenv(ROOT_DIR / ".env")
    load_dotenv(ROOT_DIR / ".env.local", override=True)


def _expand_env(value: Any) -> Any:
    """Recursively expand environment variables inside CONFIG values."""
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    if isinstance(value, dict):
        return {key: _expand_env(val) for key, val in value.items()}
    return value


@dataclass(frozen=True)
class AppSettings:
    timezone: str
    log_level: str = "INFO"


@dataclass(frozen=True)
class DBSettings:
    driver: str
    uri: str


@dataclass(frozen=True)
class RunPolicySettings:
    bottle_types: Sequence[str]
    capacity_bottle_type: str
    run_capacity: int
    conflict_retries: int = 3

    def __post_init__(self) -> None:
        if not self.bottle_types:
            raise ValueError("run_policy.bottle_types must list at least one bottle type")
        if self.capacity_bottle_type not in self.bottle_types:
            raise ValueError(
                f"run_policy.capacity_bottle_type {self.capacity_bottle_type!r} "
                f"is not one of {list(self.bottle_types)}"
            )
        if int(self.run_capacity) < 1:
            raise ValueError("run_policy.run_capacity must be at least 1")


@dataclass(frozen=True)
class ExportSettings:
    exports_dir: str
    manifests_dir: str


@dataclass(frozen=True)
class AppConfig:
    app: AppSettings
    db: DBSettings
    run_policy: RunPolicySettings
    exports: ExportSettings


def _build_config(expanded: Dict[str, Any]) -> AppConfig:
    policy_raw = dict(expanded.get("run_policy") or {})
    policy_raw.setdefault("bottle_types", list(DEFAULT_BOTTLE_TYPES))
    policy_raw.setdefault("capacity_bottle_type", DEFAULT_CAPACITY_TYPE)
    policy_raw.setdefault("run_capacity", DEFAULT_RUN_CAPACITY)
    policy_raw["bottle_types"] = tuple(str(t) for t in policy_raw["bottle_types"])
    policy_raw["run_capacity"] = int(policy_raw["run_capacity"])

    exports_raw = expanded.get("exports") or {}
    return AppConfig(
        app=AppSettings(**expanded["app"]),
        db=DBSettings(**expanded["db"]),
        run_policy=RunPolicySettings(**policy_raw),
        exports=ExportSettings(
            exports_dir=exports_raw.get("exports_dir", "data/exports"),
            manifests_dir=exports_raw.get("manifests_dir", "data/manifests"),
        ),
    )


@lru_cache(maxsize=1)
def load_config(path: Optional[Union[str, Path]] = None) -> AppConfig:
    """
    Load the configuration file and convert it into typed objects.

    Parameters
    ----------
    path: Optional path override; defaults to $BOTTLERUN_CONFIG, then
        docs/protocol/CONFIG.yaml.
    """
    load_env()
    env_path = os.getenv("BOTTLERUN_CONFIG")
    cfg_path = Path(path) if path else Path(env_path) if env_path else DEFAULT_CONFIG_PATH
    if not cfg_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as fh:
        raw_data: Dict[str, Any] = yaml.safe_load(fh) or {}

    return _build_config(_expand_env(raw_data))


def resolve_path(raw: str) -> Path:
    """Resolve a configured directory relative to the repo root."""
    p = Path(raw)
    return p if p.is_absolute() else ROOT_DIR / p


__all__ = [
    "AppConfig",
    "AppSettings",
    "DBSettings",
    "ExportSettings",
    "RunPolicySettings",
    "load_config",
    "load_env",
    "resolve_path",
]
