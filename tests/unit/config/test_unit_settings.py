# tests/unit/config/test_unit_settings.py — v1
"""Tests for config/settings.py — typed Settings, RunConfig and validation rules."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from stronghold.config.settings import ConfigurationError, RunConfig, Settings, load_settings


class TestSettingsDefaults:
    def test_default_layout(self):
        s = Settings(_env_file=None)
        assert s.audit_dir == ".audit"
        assert s.history_dir == ".audit-history"

    def test_default_budget(self):
        s = Settings(_env_file=None)
        assert s.budget_fixed_overhead == 5_000
        assert s.budget_light_threshold == 40_000
        assert s.budget_heavy_threshold == 80_000
        assert s.budget_unit_ceiling == 120_000

    def test_default_batch_sizes(self):
        s = Settings(_env_file=None)
        assert (s.batch_size_light, s.batch_size_medium, s.batch_size_heavy) == (8, 5, 3)

    def test_default_delta_thresholds(self):
        s = Settings(_env_file=None)
        assert s.rewrite_threshold == 0.70
        assert s.major_change_lines == 50

    def test_audit_dirs_always_excluded(self):
        s = Settings(_env_file=None, audit_dir="out")
        assert "out" in s.corpus_exclude_dirs_list
        assert ".audit-history" in s.corpus_exclude_dirs_list

    def test_extension_list_normalized(self):
        s = Settings(_env_file=None, corpus_extensions=" .RS, .py ,,")
        assert s.corpus_extensions_list == [".rs", ".py"]

    def test_extra_tags_list(self):
        s = Settings(_env_file=None, extra_tags="bridge, amm")
        assert s.extra_tags_list == ["bridge", "amm"]


class TestSettingsEnv:
    def test_prefix(self, monkeypatch):
        monkeypatch.setenv("STRONGHOLD_TIER", "deep")
        monkeypatch.setenv("STRONGHOLD_MAX_CONCURRENCY", "2")
        s = Settings(_env_file=None)
        assert s.tier == "deep"
        assert s.max_concurrency == 2

    def test_env_file(self, tmp_path):
        env = tmp_path / ".env"
        env.write_text("STRONGHOLD_VERIFY_MAX_UNITS=3\n", encoding="utf-8")
        s = load_settings(_env_file=env)
        assert s.verify_max_units == 3


class TestSettingsValidation:
    def test_thresholds_must_increase(self):
        with pytest.raises(ConfigurationError, match="LIGHT < HEAVY"):
            Settings(_env_file=None, budget_light_threshold=90_000)

    def test_batch_sizes_non_increasing(self):
        with pytest.raises(ConfigurationError, match="non-increasing"):
            Settings(_env_file=None, batch_size_heavy=6)

    def test_rewrite_threshold_range(self):
        with pytest.raises(ConfigurationError, match="REWRITE_THRESHOLD"):
            Settings(_env_file=None, rewrite_threshold=1.5)

    def test_custom_worker_requires_class(self):
        with pytest.raises(ConfigurationError, match="WORKER_CLASS"):
            Settings(_env_file=None, worker="custom")

    def test_errors_are_joined(self):
        with pytest.raises(ConfigurationError) as exc_info:
            Settings(_env_file=None, rewrite_threshold=0.0, major_change_lines=0)
        assert "REWRITE_THRESHOLD" in str(exc_info.value)
        assert "MAJOR_CHANGE_LINES" in str(exc_info.value)

    def test_concurrency_positive(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, max_concurrency=0)

    def test_retries_non_negative(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, max_unit_retries=-1)

    def test_unknown_tier_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, tier="exhaustive")


class TestRunConfig:
    def test_frozen_from_settings(self):
        s = Settings(_env_file=None, tier="quick", max_concurrency=4, extra_tags="bridge")
        config = s.to_run_config()
        assert config.tier == "quick"
        assert config.max_concurrency == 4
        assert config.extra_tags == ["bridge"]
        assert config.unit_ceiling == s.budget_unit_ceiling

    def test_unknown_option_rejected(self):
        with pytest.raises(ValidationError):
            RunConfig(turbo=True)

    def test_thresholds_validated(self):
        with pytest.raises(ConfigurationError):
            RunConfig(light_threshold=100, heavy_threshold=50)

    def test_round_trip_through_json(self):
        config = Settings(_env_file=None).to_run_config()
        assert RunConfig.model_validate_json(config.model_dump_json()) == config
