"""
ecanmesh — Configuration System

All configuration is Pydantic-validated and loaded from:
1. default.yaml (defaults)
2. Environment variables (overrides)

Every tunable parameter of the attention bank, the scheduler and the
mesh coordinator lives here. Malformed bounds fail fast at construction.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ecanmesh.errors import InvalidConfigError

# ─── Sub-configs ──────────────────────────────────────────────────


class AttentionConfig(BaseModel):
    # Currency
    initial_bank: int = Field(1_000_000, ge=0)
    # Importance bounds
    max_sti: int = 32_767
    min_sti: int = -32_768
    max_lti: int = 65_535
    # Economic rates (per cycle)
    decay_rate: float = Field(0.95, ge=0.0, le=1.0)
    spread_rate: float = Field(0.1, ge=0.0, le=1.0)
    max_spread_fraction: float = Field(0.1, ge=0.0, le=1.0)
    rent_rate: float = Field(0.01, ge=0.0, le=1.0)
    wage_rate: float = Field(0.05, ge=0.0, le=1.0)
    # Entities with LTI above this are paid wages
    wage_lti_threshold: int = 1_000
    # Entities with STI below this (and vlti=False) are forgotten
    forgetting_threshold: int = -1_000
    # Periodic attention cycle. 0 disables the loop (on-demand run_cycle only).
    cycle_interval_s: float = Field(0.0, ge=0.0)

    @model_validator(mode="after")
    def _check_bounds(self) -> AttentionConfig:
        if self.min_sti > self.max_sti:
            raise InvalidConfigError(
                f"min_sti ({self.min_sti}) must not exceed max_sti ({self.max_sti})"
            )
        if self.max_lti < 0:
            raise InvalidConfigError(f"max_lti must be >= 0, got {self.max_lti}")
        return self


class SchedulerConfig(BaseModel):
    # Fraction of the bank a single schedule() call may commit
    attention_budget_fraction: float = Field(0.8, gt=0.0, le=1.0)
    priority_scale: float = Field(100.0, gt=0.0)
    complexity_scale: float = Field(1000.0, gt=0.0)


class MeshConfig(BaseModel):
    heartbeat_interval_s: float = Field(5.0, gt=0.0)
    # Missed heartbeats before a node is declared offline
    heartbeat_timeout_multiplier: int = Field(3, ge=1)
    metrics_interval_s: float = Field(10.0, gt=0.0)
    rebalance_interval_s: float = Field(30.0, gt=0.0)
    max_history_size: int = Field(1_000, ge=1)

    # Connection formation
    connection_threshold: float = Field(0.4, ge=0.0, le=1.0)
    min_compatibility: float = Field(0.3, ge=0.0, le=1.0)

    # Load-derived status: active <-> busy
    busy_load_threshold: float = Field(85.0, ge=0.0, le=100.0)

    # Rebalancing
    strategy: Literal[
        "round_robin", "least_load", "weighted", "cognitive_priority"
    ] = "cognitive_priority"
    rebalance_threshold: float = Field(20.0, ge=0.0)
    rebalance_target_gap: float = Field(10.0, ge=0.0)
    max_units_per_pair: int = Field(5, ge=0)
    load_per_unit: float = Field(5.0, gt=0.0)
    migration_cost_per_unit: float = Field(10.0, ge=0.0)

    # How long stop() waits for an in-progress tick before cancelling it
    shutdown_grace_s: float = Field(5.0, gt=0.0)

    @property
    def heartbeat_timeout_s(self) -> float:
        return self.heartbeat_interval_s * self.heartbeat_timeout_multiplier


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"


# ─── Root Configuration ──────────────────────────────────────────


class EcanMeshConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="ECANMESH_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    instance_id: str = "ecanmesh-default"

    attention: AttentionConfig = Field(default_factory=AttentionConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    mesh: MeshConfig = Field(default_factory=MeshConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> EcanMeshConfig:
    """
    Load configuration from YAML file, then apply environment variable overrides.

    Raises InvalidConfigError if the merged configuration is malformed.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}

    if overrides:
        raw = _deep_merge(raw, overrides)

    # Explicit env overrides win over the YAML file
    if instance_id := os.environ.get("ECANMESH_INSTANCE_ID"):
        raw["instance_id"] = instance_id
    if log_level := os.environ.get("ECANMESH_LOGGING__LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level
    if log_format := os.environ.get("ECANMESH_LOGGING__FORMAT"):
        raw.setdefault("logging", {})["format"] = log_format
    if strategy := os.environ.get("ECANMESH_MESH__STRATEGY"):
        raw.setdefault("mesh", {})["strategy"] = strategy
    if initial_bank := os.environ.get("ECANMESH_ATTENTION__INITIAL_BANK"):
        raw.setdefault("attention", {})["initial_bank"] = int(initial_bank)

    try:
        return EcanMeshConfig(**raw)
    except ValidationError as exc:
        raise InvalidConfigError(str(exc)) from exc
