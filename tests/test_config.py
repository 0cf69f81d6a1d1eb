"""Tests for configuration management."""

from __future__ import annotations

from pathlib import Path

import pytest

from impactgate.config import (
    ImpactConfig,
    changed_settings,
    find_project_root,
    get_config_value,
    load_config,
    save_config,
    set_config_value,
)
from impactgate.exceptions import ConfigError
from impactgate.models import ChangeType, RiskSeverity


class TestConfig:
    def test_default_config(self):
        config = ImpactConfig()
        assert config.scope.max_depth == 3
        assert config.validation.test_command_prefix == "pytest"
        assert config.gate.blocking_severities == [RiskSeverity.CRITICAL, RiskSeverity.HIGH]
        assert ChangeType.MIGRATION in config.lifecycle.always_analyze_types
        assert "password" in config.risk.security_keywords

    def test_save_and_load(self, tmp_path: Path):
        config = ImpactConfig(name="test-project")
        config.scope.max_depth = 5
        config.gate.min_passed_validations = 2

        save_config(tmp_path, config)
        loaded = load_config(tmp_path)

        assert loaded.name == "test-project"
        assert loaded.scope.max_depth == 5
        assert loaded.gate.min_passed_validations == 2

    def test_load_missing_uses_defaults(self, tmp_path: Path):
        config = load_config(tmp_path)
        assert config.name == tmp_path.name
        assert config.root_path == str(tmp_path)

    def test_load_invalid(self, tmp_path: Path):
        (tmp_path / ".impactgate").mkdir()
        (tmp_path / ".impactgate" / "config.json").write_text("{not json")
        with pytest.raises(ConfigError):
            load_config(tmp_path)

    def test_load_wrong_types(self, tmp_path: Path):
        (tmp_path / ".impactgate").mkdir()
        (tmp_path / ".impactgate" / "config.json").write_text('{"scope": {"max_depth": "deep"}}')
        with pytest.raises(ConfigError):
            load_config(tmp_path)

    def test_find_project_root(self, tmp_path: Path):
        # No .impactgate dir - should return None
        assert find_project_root(tmp_path) is None

        (tmp_path / ".impactgate").mkdir()
        assert find_project_root(tmp_path) == tmp_path

        # Should find from subdirectory
        sub = tmp_path / "src" / "module"
        sub.mkdir(parents=True)
        assert find_project_root(sub) == tmp_path

    def test_set_config_value(self):
        config = ImpactConfig()
        updated = set_config_value(config, "scope.include_indirect", False)
        assert updated.scope.include_indirect is False
        assert config.scope.include_indirect is True

    def test_set_config_coerces(self):
        config = ImpactConfig()
        updated = set_config_value(config, "gate.min_passed_validations", "3")
        assert updated.gate.min_passed_validations == 3

    def test_set_config_invalid_key(self):
        config = ImpactConfig()
        with pytest.raises(KeyError, match="Unknown config section"):
            set_config_value(config, "nonexistent.key", "value")
        with pytest.raises(KeyError, match="has no setting 'unknown'"):
            set_config_value(config, "scope.unknown", 1)
        with pytest.raises(KeyError):
            set_config_value(config, "name", "renamed")

    def test_set_config_rejects_bad_value(self):
        with pytest.raises(ConfigError, match="gate.min_passed_validations"):
            set_config_value(ImpactConfig(), "gate.min_passed_validations", "many")
        with pytest.raises(ConfigError):
            set_config_value(ImpactConfig(), "gate.blocking_severities", "critical,urgent")

    def test_set_list_from_comma_separated(self):
        updated = set_config_value(ImpactConfig(), "gate.blocking_severities", "critical, medium")
        assert updated.gate.blocking_severities == [RiskSeverity.CRITICAL, RiskSeverity.MEDIUM]

        updated = set_config_value(ImpactConfig(), "risk.security_keywords", ["vault"])
        assert updated.risk.security_keywords == ["vault"]

    def test_get_config_value(self):
        config = ImpactConfig()
        assert get_config_value(config, "lifecycle.min_description_length") == 50
        with pytest.raises(KeyError):
            get_config_value(config, "lifecycle")

    def test_changed_settings(self):
        config = set_config_value(ImpactConfig(name="shop"), "scope.max_depth", 5)
        config = set_config_value(config, "risk.test_keywords", "test")
        assert changed_settings(config) == {"scope.max_depth", "risk.test_keywords"}
        assert changed_settings(ImpactConfig()) == set()
