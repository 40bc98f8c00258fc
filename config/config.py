"""
Configuration classes for the autonomous profit optimizer.
Defines guardrails, signal, decision and controller settings in a type-safe, extensible way.
"""

import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any

from models.errors import ConfigurationError
from utils.env import env_bool, env_float, env_int, load_project_dotenv

ENV_PREFIX = "PROFIT_OPT_"


@dataclass
class GuardrailConfig:
    min_margin_percent: float = 10.0
    max_price_change_percent: float = 25.0
    min_price_change_percent: float = 2.0
    max_transfer_fraction_of_warehouse: float = 0.3
    min_profit_increase_threshold: float = 10.0
    max_transfers_per_cycle: int = 50
    max_price_changes_per_cycle: int = 100
    clearance_min_margin_percent: float = 10.0


@dataclass
class SignalConfig:
    velocity_window_days: int = 30
    seasonal_window_days: int = 7
    crawl_frequency_hours: float = 4.0
    call_timeout_seconds: float = 30.0
    max_concurrency: int = 8
    min_match_confidence: float = 0.6


@dataclass
class DecisionConfig:
    velocity_threshold: float = 2.0  # units per day
    target_days: int = 14
    opportunity_price_factor: float = 0.95  # Price just below competitor
    threat_price_factor: float = 1.02  # Price slightly above competitor
    default_monthly_volume: float = 10.0
    fallback_cost_ratio: float = 0.7  # Cost estimate when the catalog has none
    stale_confidence_factor: float = 0.8
    slow_mover_days: int = 14
    overstock_units: int = 50


@dataclass
class ControllerConfig:
    min_sleep_seconds: float = 300.0
    max_sleep_seconds: float = 3600.0
    actions_for_min_sleep: int = 10
    jitter_fraction: float = 0.1
    kill_switch_cooldown_seconds: float = 300.0
    error_backoff_seconds: float = 600.0
    max_cycle_seconds: float = 3600.0


@dataclass
class OptimizationConfig:
    dry_run: bool = False
    warehouse_id: str = "WAREHOUSE-001"
    transfer_enabled: bool = True
    pricing_enabled: bool = True
    clearance_enabled: bool = True
    guardrails: GuardrailConfig = field(default_factory=GuardrailConfig)
    signals: SignalConfig = field(default_factory=SignalConfig)
    decision: DecisionConfig = field(default_factory=DecisionConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)

    def validate(self) -> "OptimizationConfig":
        """Raise ConfigurationError on any inconsistent setting."""
        g, s, d, c = self.guardrails, self.signals, self.decision, self.controller
        problems = []
        if not self.warehouse_id:
            problems.append("warehouse_id must be set")
        if g.min_margin_percent < 0 or g.clearance_min_margin_percent < 0:
            problems.append("margin floors must be non-negative")
        if g.min_price_change_percent < 0:
            problems.append("min_price_change_percent must be non-negative")
        if g.min_price_change_percent > g.max_price_change_percent:
            problems.append("min_price_change_percent exceeds max_price_change_percent")
        if not 0 < g.max_transfer_fraction_of_warehouse <= 1:
            problems.append("max_transfer_fraction_of_warehouse must be in (0, 1]")
        if g.max_transfers_per_cycle < 0 or g.max_price_changes_per_cycle < 0:
            problems.append("per-cycle caps must be non-negative")
        if s.velocity_window_days <= 0 or s.seasonal_window_days <= 0:
            problems.append("signal windows must be positive")
        if s.crawl_frequency_hours <= 0:
            problems.append("crawl_frequency_hours must be positive")
        if s.call_timeout_seconds <= 0:
            problems.append("call_timeout_seconds must be positive")
        if s.max_concurrency < 1:
            problems.append("max_concurrency must be at least 1")
        if d.target_days <= 0:
            problems.append("target_days must be positive")
        if d.velocity_threshold < 0:
            problems.append("velocity_threshold must be non-negative")
        if not 0 < d.fallback_cost_ratio < 1:
            problems.append("fallback_cost_ratio must be in (0, 1)")
        if c.min_sleep_seconds <= 0 or c.min_sleep_seconds > c.max_sleep_seconds:
            problems.append("sleep bounds must satisfy 0 < min_sleep <= max_sleep")
        if c.actions_for_min_sleep < 1:
            problems.append("actions_for_min_sleep must be at least 1")
        if not 0 <= c.jitter_fraction < 1:
            problems.append("jitter_fraction must be in [0, 1)")
        if c.max_cycle_seconds <= 0:
            problems.append("max_cycle_seconds must be positive")
        if problems:
            raise ConfigurationError("; ".join(problems))
        return self

    def snapshot(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "OptimizationConfig":
        """
        Build a config from PROFIT_OPT_* variables (after loading the project .env).
        Nested settings use their field name, e.g. PROFIT_OPT_MIN_MARGIN_PERCENT.
        """
        if environ is None:
            load_project_dotenv()
            environ = dict(os.environ)
        try:
            config = cls(
                dry_run=env_bool(environ, f"{ENV_PREFIX}DRY_RUN", False),
                warehouse_id=environ.get(f"{ENV_PREFIX}WAREHOUSE_ID", "WAREHOUSE-001"),
                transfer_enabled=env_bool(environ, f"{ENV_PREFIX}TRANSFER_ENABLED", True),
                pricing_enabled=env_bool(environ, f"{ENV_PREFIX}PRICING_ENABLED", True),
                clearance_enabled=env_bool(environ, f"{ENV_PREFIX}CLEARANCE_ENABLED", True),
            )
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        for section in (config.guardrails, config.signals, config.decision, config.controller):
            _apply_env_overrides(section, environ)
        return config.validate()


def _apply_env_overrides(section: Any, environ: dict[str, str]) -> None:
    for f in fields(section):
        key = f"{ENV_PREFIX}{f.name.upper()}"
        if key not in environ:
            continue
        current = getattr(section, f.name)
        try:
            if isinstance(current, bool):
                value: Any = env_bool(environ, key, current)
            elif isinstance(current, int):
                value = env_int(environ, key, current)
            else:
                value = env_float(environ, key, current)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {key}: {e}") from e
        setattr(section, f.name, value)


# Example usage:
# config = OptimizationConfig.from_env()
# config = OptimizationConfig(dry_run=True, guardrails=GuardrailConfig(min_margin_percent=15.0))
