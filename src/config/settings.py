# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for deployment-specific settings. Values that shape a
run (tier, thresholds, concurrency) are frozen into a RunConfig when the run
is created, so a later edit of .env never changes an in-flight run.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="STRONGHOLD_",
        extra="ignore",
    )

    # === Audit layout ===
    audit_dir: str = ".audit"
    history_dir: str = ".audit-history"

    # === Corpus scanning ===
    corpus_extensions: str = ".rs,.ts,.tsx,.js,.py,.sol,.go,.move,.toml,.json"
    corpus_exclude_dirs: str = ".git,node_modules,target,dist,build,.venv,__pycache__"
    corpus_max_file_bytes: int = 2_000_000

    # === Tier ===
    tier: Literal["quick", "standard", "deep"] = "standard"

    # === Budget estimation (token units) ===
    budget_fixed_overhead: int = 5_000
    budget_lightweight_overhead: int = 1_500
    budget_reference_file_cost: int = 500
    budget_reference_weight: float = 1.0
    budget_artifact_weight: float = 1.0
    budget_bytes_per_token: int = 4
    budget_light_threshold: int = 40_000
    budget_heavy_threshold: int = 80_000
    budget_unit_ceiling: int = 120_000

    # === Batch sizing ===
    batch_size_light: int = 8
    batch_size_medium: int = 5
    batch_size_heavy: int = 3
    max_concurrency: int = 8

    # === Execution ===
    unit_timeout_s: float = 900.0
    max_unit_retries: int = 1
    synthesis_cap: int = 5

    # === Delta ===
    rewrite_threshold: float = 0.70
    major_change_lines: int = 50

    # === Coverage ===
    coverage_enabled: bool = True
    coverage_checklist: Path | None = None

    # === Verify ===
    verify_max_units: int = 25

    # === Workers ===
    worker: Literal["command", "custom"] = "command"
    worker_command: str = ""
    worker_class: str = ""
    knowledge_dir: Path | None = None

    # === Extra capability tags (registered on top of the built-in vocabulary) ===
    extra_tags: str = ""

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "text"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 5

    # --- Validators ---

    @field_validator("max_concurrency", "batch_size_light", "batch_size_medium", "batch_size_heavy")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("batch sizes and max_concurrency must be >= 1")
        return v

    @field_validator("max_unit_retries", "synthesis_cap", "verify_max_units")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("retry, synthesis and verify limits must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Cross-field consistency rules."""
        errors: list[str] = []

        if not (
            0 < self.budget_light_threshold
            < self.budget_heavy_threshold
            < self.budget_unit_ceiling
        ):
            errors.append(
                "BUDGET thresholds must satisfy 0 < LIGHT < HEAVY < UNIT_CEILING"
            )

        if not (
            self.batch_size_light >= self.batch_size_medium >= self.batch_size_heavy
        ):
            errors.append(
                "BATCH_SIZE_* must be non-increasing from light to heavy"
            )

        if not 0.0 < self.rewrite_threshold <= 1.0:
            errors.append("REWRITE_THRESHOLD must be in (0, 1]")

        if self.major_change_lines < 1:
            errors.append("MAJOR_CHANGE_LINES must be >= 1")

        if self.budget_bytes_per_token < 1:
            errors.append("BUDGET_BYTES_PER_TOKEN must be >= 1")

        if self.budget_fixed_overhead >= self.budget_unit_ceiling:
            errors.append("BUDGET_FIXED_OVERHEAD must be < BUDGET_UNIT_CEILING")

        if self.worker == "custom" and not self.worker_class:
            errors.append("WORKER=custom requires WORKER_CLASS")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def corpus_extensions_list(self) -> list[str]:
        """Parse comma-separated corpus extensions."""
        return [e.strip().lower() for e in self.corpus_extensions.split(",") if e.strip()]

    @property
    def corpus_exclude_dirs_list(self) -> list[str]:
        """Parse comma-separated excluded directory names."""
        excluded = [d.strip() for d in self.corpus_exclude_dirs.split(",") if d.strip()]
        return excluded + [self.audit_dir, self.history_dir]

    @property
    def extra_tags_list(self) -> list[str]:
        """Parse comma-separated extra capability tags."""
        return [t.strip() for t in self.extra_tags.split(",") if t.strip()]

    def to_run_config(self) -> RunConfig:
        """Freeze the run-shaping options into a RunConfig."""
        return RunConfig(
            tier=self.tier,
            fixed_overhead=self.budget_fixed_overhead,
            lightweight_overhead=self.budget_lightweight_overhead,
            reference_file_cost=self.budget_reference_file_cost,
            reference_weight=self.budget_reference_weight,
            artifact_weight=self.budget_artifact_weight,
            bytes_per_token=self.budget_bytes_per_token,
            light_threshold=self.budget_light_threshold,
            heavy_threshold=self.budget_heavy_threshold,
            unit_ceiling=self.budget_unit_ceiling,
            batch_size_light=self.batch_size_light,
            batch_size_medium=self.batch_size_medium,
            batch_size_heavy=self.batch_size_heavy,
            max_concurrency=self.max_concurrency,
            unit_timeout_s=self.unit_timeout_s,
            max_unit_retries=self.max_unit_retries,
            synthesis_cap=self.synthesis_cap,
            rewrite_threshold=self.rewrite_threshold,
            major_change_lines=self.major_change_lines,
            coverage_enabled=self.coverage_enabled,
            verify_max_units=self.verify_max_units,
            extra_tags=self.extra_tags_list,
        )


class RunConfig(BaseModel):
    """Run-shaping options persisted in the run descriptor.

    Every recognized option is a field; unknown keys are rejected so a
    descriptor written by a newer version fails loudly instead of silently.
    """

    model_config = {"extra": "forbid"}

    tier: Literal["quick", "standard", "deep"] = "standard"
    fixed_overhead: int = 5_000
    lightweight_overhead: int = 1_500
    reference_file_cost: int = 500
    reference_weight: float = 1.0
    artifact_weight: float = 1.0
    bytes_per_token: int = 4
    light_threshold: int = 40_000
    heavy_threshold: int = 80_000
    unit_ceiling: int = 120_000
    batch_size_light: int = 8
    batch_size_medium: int = 5
    batch_size_heavy: int = 3
    max_concurrency: int = 8
    unit_timeout_s: float = 900.0
    max_unit_retries: int = 1
    synthesis_cap: int = 5
    rewrite_threshold: float = 0.70
    major_change_lines: int = 50
    coverage_enabled: bool = True
    verify_max_units: int = 25
    extra_tags: list[str] = []

    @model_validator(mode="after")
    def validate_thresholds(self) -> RunConfig:
        if not self.light_threshold < self.heavy_threshold < self.unit_ceiling:
            raise ConfigurationError(
                "RunConfig thresholds must satisfy light < heavy < unit_ceiling"
            )
        if not self.batch_size_light >= self.batch_size_medium >= self.batch_size_heavy >= 1:
            raise ConfigurationError("RunConfig batch sizes must be non-increasing and >= 1")
        return self


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or CLI flags).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
