"""Tests for configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pydantic
import pytest

from ecanmesh.config import AttentionConfig, EcanMeshConfig, MeshConfig, load_config
from ecanmesh.errors import InvalidConfigError

_DEFAULT_YAML = Path(__file__).resolve().parents[2] / "config" / "default.yaml"


class TestDefaults:
    def test_attention_defaults(self):
        config = AttentionConfig()
        assert config.initial_bank == 1_000_000
        assert config.max_sti == 32_767
        assert config.min_sti == -32_768
        assert config.max_lti == 65_535
        assert config.decay_rate == 0.95
        assert config.forgetting_threshold == -1_000

    def test_heartbeat_timeout(self):
        assert MeshConfig().heartbeat_timeout_s == 15.0

    def test_shipped_yaml_matches_defaults(self):
        config = load_config(_DEFAULT_YAML)
        assert config.attention == AttentionConfig()
        assert config.mesh == MeshConfig()

    def test_missing_file_falls_back_to_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.yaml")
        assert isinstance(config, EcanMeshConfig)
        assert config.mesh.strategy == "cognitive_priority"


class TestValidation:
    def test_inverted_sti_bounds(self):
        with pytest.raises(pydantic.ValidationError):
            AttentionConfig(min_sti=100, max_sti=10)

    def test_negative_max_lti(self):
        with pytest.raises(ValueError):
            AttentionConfig(max_lti=-1)

    def test_rate_out_of_range(self):
        with pytest.raises(pydantic.ValidationError):
            AttentionConfig(decay_rate=1.5)

    def test_non_positive_interval(self):
        with pytest.raises(pydantic.ValidationError):
            MeshConfig(heartbeat_interval_s=0)

    def test_unknown_strategy(self):
        with pytest.raises(pydantic.ValidationError):
            MeshConfig(strategy="random")

    def test_load_config_wraps_errors(self):
        with pytest.raises(InvalidConfigError):
            load_config(overrides={"attention": {"min_sti": 5, "max_sti": 1}})


class TestLoading:
    def test_yaml_and_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "instance_id: test-node\n"
            "attention:\n"
            "  initial_bank: 5000\n"
            "mesh:\n"
            "  strategy: least_load\n"
        )

        config = load_config(path, overrides={"mesh": {"rebalance_threshold": 15.0}})

        assert config.instance_id == "test-node"
        assert config.attention.initial_bank == 5000
        assert config.attention.max_sti == 32_767
        assert config.mesh.strategy == "least_load"
        assert config.mesh.rebalance_threshold == 15.0

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("mesh:\n  strategy: least_load\n")
        monkeypatch.setenv("ECANMESH_MESH__STRATEGY", "round_robin")
        monkeypatch.setenv("ECANMESH_ATTENTION__INITIAL_BANK", "42")

        config = load_config(path)

        assert config.mesh.strategy == "round_robin"
        assert config.attention.initial_bank == 42
