import math
import numpy as np
from scipy import stats
from statsmodels.stats.proportion import proportion_confint
from typing import Dict, Tuple
from dataclasses import dataclass

from engagement_analytics.errors import ValidationError


# Abramowitz & Stegun formula 7.1.26, max absolute error ~1.5e-7
ERF_A1 = 0.254829592
ERF_A2 = -0.284496736
ERF_A3 = 1.421413741
ERF_A4 = -1.453152027
ERF_A5 = 1.061405429
ERF_P = 0.3275911

SUPPORTED_CONFIDENCE_LEVELS = (90, 95, 99)


def erf(x: float) -> float:
    """Rational approximation of the error function"""
    sign = -1.0 if x < 0 else 1.0
    x = abs(x)

    t = 1.0 / (1.0 + ERF_P * x)
    y = 1.0 - (((((ERF_A5 * t + ERF_A4) * t) + ERF_A3) * t + ERF_A2) * t + ERF_A1) * t * math.exp(-x * x)

    return sign * y


def normal_cdf(x: float) -> float:
    """Standard normal CDF built on the erf approximation"""
    return 0.5 * (1.0 + erf(x / math.sqrt(2.0)))


@dataclass(frozen=True)
class SampleSizePlan:
    per_variant: int
    total: int
    variants: int
    confidence_level: int
    baseline_rate: float
    min_detectable_effect: float

    def to_dict(self) -> Dict[str, float]:
        return {
            'per_variant': self.per_variant,
            'total': self.total,
            'variants': self.variants,
            'confidence_level': self.confidence_level,
            'baseline_rate': self.baseline_rate,
            'min_detectable_effect': self.min_detectable_effect,
        }


class StatisticalEngine:
    """Supporting statistics for campaign experiments: intervals and test planning"""

    def __init__(self, default_power: float = 0.8, min_sample_per_variant: int = 100):
        self.default_power = default_power
        self.min_sample_per_variant = min_sample_per_variant

    def proportion_confidence_interval(
        self,
        clicks: int,
        sent: int,
        confidence_level: float = 0.95
    ) -> Tuple[float, float]:
        """Wilson score interval for a click-through rate"""
        if sent == 0:
            return (0.0, 0.0)
        if not 0 < confidence_level < 1:
            raise ValidationError("confidence_level must be between 0 and 1", field="confidence_level")

        lower, upper = proportion_confint(clicks, sent, alpha=1 - confidence_level, method='wilson')
        return (float(lower), float(upper))

    def calculate_sample_size(
        self,
        baseline_rate: float,
        min_detectable_effect: float,
        confidence_level: int = 95,
        power: float = None,
        variants: int = 2
    ) -> SampleSizePlan:
        """Required sends for an A/B(/n) test to detect an absolute CTR change.

        Uses the two-proportion normal approximation with z-quantiles for a
        two-sided test at the given confidence level and power.
        min_detectable_effect is absolute (0.05 means five percentage points).
        """
        if confidence_level not in SUPPORTED_CONFIDENCE_LEVELS:
            raise ValidationError(
                f"confidence_level must be one of {SUPPORTED_CONFIDENCE_LEVELS}", field="confidence_level"
            )
        if not 0 < baseline_rate < 1:
            raise ValidationError("baseline_rate must be between 0 and 1", field="baseline_rate")
        if min_detectable_effect <= 0:
            raise ValidationError("min_detectable_effect must be positive", field="min_detectable_effect")
        if baseline_rate + min_detectable_effect >= 1:
            raise ValidationError("baseline_rate + min_detectable_effect must stay below 1", field="min_detectable_effect")
        if variants < 2:
            raise ValidationError("Test must have at least 2 variants", field="variants")

        power = power or self.default_power
        alpha = 1 - confidence_level / 100

        z_alpha = stats.norm.ppf(1 - alpha / 2)
        z_beta = stats.norm.ppf(power)

        p1 = baseline_rate
        p2 = baseline_rate + min_detectable_effect
        pooled_p = (p1 + p2) / 2

        sample_size = (
            (z_alpha * np.sqrt(2 * pooled_p * (1 - pooled_p)) +
             z_beta * np.sqrt(p1 * (1 - p1) + p2 * (1 - p2))) ** 2
        ) / (p2 - p1) ** 2

        per_variant = max(int(np.ceil(sample_size)), self.min_sample_per_variant)

        return SampleSizePlan(
            per_variant=per_variant,
            total=per_variant * variants,
            variants=variants,
            confidence_level=confidence_level,
            baseline_rate=baseline_rate,
            min_detectable_effect=min_detectable_effect
        )
