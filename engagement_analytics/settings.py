import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from engagement_analytics.errors import ValidationError


SETTINGS_ENV_VAR = "ENGAGEMENT_SETTINGS"
DEFAULT_SETTINGS_PATH = Path(__file__).resolve().parent / "settings.yaml"

TIME_RANGES = ("7d", "30d", "90d")
CHANNELS = ("all", "instagram", "facebook")


@dataclass(frozen=True)
class AnalyticsConfig:
    default_time_range: str = "30d"
    default_channel: str = "all"
    trend_days: int = 7
    strict_filters: bool = False
    baseline_rate: float = 0.1
    power: float = 0.8
    min_sample_per_variant: int = 100

    def __post_init__(self):
        if self.default_time_range not in TIME_RANGES:
            raise ValidationError(
                f"default_time_range must be one of {TIME_RANGES}", field="default_time_range"
            )
        if self.default_channel not in CHANNELS:
            raise ValidationError(f"default_channel must be one of {CHANNELS}", field="default_channel")
        if not isinstance(self.strict_filters, bool):
            raise ValidationError("strict_filters must be true or false", field="strict_filters")
        if self.trend_days < 1:
            raise ValidationError("trend_days must be at least 1", field="trend_days")
        if not 0 < self.baseline_rate < 1:
            raise ValidationError("baseline_rate must be between 0 and 1", field="baseline_rate")
        if not 0 < self.power < 1:
            raise ValidationError("power must be between 0 and 1", field="power")
        if self.min_sample_per_variant < 1:
            raise ValidationError("min_sample_per_variant must be positive", field="min_sample_per_variant")

    @staticmethod
    def from_dict(cfg: Dict[str, Any]) -> "AnalyticsConfig":
        dashboard = cfg.get("dashboard", {}) or {}
        experiments = cfg.get("experiments", {}) or {}
        try:
            values = dict(
                default_time_range=str(dashboard.get("default_time_range", "30d")),
                default_channel=str(dashboard.get("default_channel", "all")).lower(),
                trend_days=int(dashboard.get("trend_days", 7)),
                strict_filters=dashboard.get("strict_filters", False),
                baseline_rate=float(experiments.get("baseline_rate", 0.1)),
                power=float(experiments.get("power", 0.8)),
                min_sample_per_variant=int(experiments.get("min_sample_per_variant", 100)),
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Malformed settings value: {e}") from e
        return AnalyticsConfig(**values)


def load_config(path: Optional[Union[str, Path]] = None) -> AnalyticsConfig:
    """Load settings from YAML; falls back to defaults when no file exists"""
    if path is None:
        path = os.environ.get(SETTINGS_ENV_VAR) or DEFAULT_SETTINGS_PATH
    cfg_path = Path(path)
    if not cfg_path.exists():
        return AnalyticsConfig()
    with cfg_path.open("r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    if not isinstance(cfg, dict):
        raise ValidationError(f"Settings file {cfg_path} must contain a mapping")
    return AnalyticsConfig.from_dict(cfg)
