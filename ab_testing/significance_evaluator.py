import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from engagement_analytics.errors import ValidationError
from engagement_analytics.observability import MetricsSink, resolve_sink
from engagement_analytics.records import parse_count
from statistical_engine import StatisticalEngine, normal_cdf


logger = logging.getLogger(__name__)

# Fixed two-sided significance threshold
SIGNIFICANCE_THRESHOLD = 0.05


@dataclass(frozen=True)
class VariantSummary:
    """Observed clicks and sends for one arm of an experiment"""
    clicks: int
    sent: int

    def __post_init__(self):
        object.__setattr__(self, 'clicks', parse_count(self.clicks, 'clicks'))
        object.__setattr__(self, 'sent', parse_count(self.sent, 'sent'))
        if self.clicks > self.sent:
            raise ValidationError(
                f"Variant clicks ({self.clicks}) cannot exceed sends ({self.sent})", field="clicks"
            )

    @property
    def ctr(self) -> float:
        return self.clicks / self.sent if self.sent > 0 else 0.0

    @classmethod
    def coerce(cls, value: Union["VariantSummary", Mapping[str, Any]]) -> "VariantSummary":
        if isinstance(value, cls):
            return value
        try:
            clicks, sent = value['clicks'], value['sent']
        except (KeyError, TypeError) as e:
            raise ValidationError(f"Variant must provide integer 'clicks' and 'sent': {value!r}") from e
        return cls(clicks=clicks, sent=sent)


@dataclass(frozen=True)
class SignificanceResult:
    p_value: float
    is_significant: bool
    z_score: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    pooled_proportion: float = 0.0
    standard_error: float = 0.0

    @property
    def confidence_level(self) -> float:
        """Confidence in the observed difference, in percent"""
        return (1.0 - self.p_value) * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            'p_value': self.p_value,
            'is_significant': self.is_significant,
            'z_score': self.z_score,
            'p1': self.p1,
            'p2': self.p2,
            'pooled_proportion': self.pooled_proportion,
            'standard_error': self.standard_error,
            'confidence_level': self.confidence_level,
        }


NOT_EVALUABLE = SignificanceResult(p_value=1.0, is_significant=False)


@dataclass(frozen=True)
class VariantComparison:
    variant_a: VariantSummary
    variant_b: VariantSummary
    significance: SignificanceResult
    lift: float
    confidence_intervals: Dict[str, Tuple[float, float]]
    winner: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'variant_a': {'clicks': self.variant_a.clicks, 'sent': self.variant_a.sent, 'ctr': self.variant_a.ctr},
            'variant_b': {'clicks': self.variant_b.clicks, 'sent': self.variant_b.sent, 'ctr': self.variant_b.ctr},
            'significance': self.significance.to_dict(),
            'lift': self.lift,
            'confidence_intervals': {k: list(v) for k, v in self.confidence_intervals.items()},
            'winner': self.winner,
        }


def calculate_ab_test_significance(
    variant_a: Union[VariantSummary, Mapping[str, Any]],
    variant_b: Union[VariantSummary, Mapping[str, Any]],
    sink: Optional[MetricsSink] = None
) -> SignificanceResult:
    """Two-proportion z-test with pooled variance on click-through rates.

    A variant with no sends cannot be evaluated and yields p=1. When the
    pooled standard error is zero (nobody clicked, or everybody did) the
    rates cannot differ and z is taken as 0, again p=1.
    """
    sink = resolve_sink(sink)
    a = VariantSummary.coerce(variant_a)
    b = VariantSummary.coerce(variant_b)

    if a.sent == 0 or b.sent == 0:
        logger.debug("Variant without sends, significance not evaluable")
        sink.record_warning(
            "significance_not_evaluable",
            "At least one variant has no sends",
            sent_a=a.sent,
            sent_b=b.sent,
        )
        return NOT_EVALUABLE

    p1 = a.clicks / a.sent
    p2 = b.clicks / b.sent
    pooled = (a.clicks + b.clicks) / (a.sent + b.sent)

    se = math.sqrt(pooled * (1 - pooled) * (1 / a.sent + 1 / b.sent))

    if se == 0:
        z = 0.0
        p_value = 1.0
    else:
        z = abs(p1 - p2) / se
        p_value = 2 * (1 - normal_cdf(abs(z)))
        # erf approximation can leave tiny overshoots near the tails
        p_value = min(max(p_value, 0.0), 1.0)

    result = SignificanceResult(
        p_value=p_value,
        is_significant=p_value < SIGNIFICANCE_THRESHOLD,
        z_score=z,
        p1=p1,
        p2=p2,
        pooled_proportion=pooled,
        standard_error=se,
    )

    sink.record_metric("ab_test.p_value", result.p_value, significant=result.is_significant)
    return result


def calculate_lift(
    variant_a: Union[VariantSummary, Mapping[str, Any]],
    variant_b: Union[VariantSummary, Mapping[str, Any]]
) -> float:
    """Relative CTR change of B over A, in percent"""
    a = VariantSummary.coerce(variant_a)
    b = VariantSummary.coerce(variant_b)
    if a.ctr == 0:
        return 0.0
    return (b.ctr - a.ctr) / a.ctr * 100


class SignificanceEvaluator:
    """Evaluates A/B campaign variants: significance verdict, lift and intervals"""

    def __init__(self, statistical_engine: StatisticalEngine = None, sink: Optional[MetricsSink] = None):
        self.statistical_engine = statistical_engine or StatisticalEngine()
        self.sink = resolve_sink(sink)

    def evaluate(
        self,
        variant_a: Union[VariantSummary, Mapping[str, Any]],
        variant_b: Union[VariantSummary, Mapping[str, Any]]
    ) -> SignificanceResult:
        return calculate_ab_test_significance(variant_a, variant_b, sink=self.sink)

    def compare_variants(
        self,
        variant_a: Union[VariantSummary, Mapping[str, Any]],
        variant_b: Union[VariantSummary, Mapping[str, Any]]
    ) -> VariantComparison:
        """Full comparison; a winner is named only for a significant difference"""
        a = VariantSummary.coerce(variant_a)
        b = VariantSummary.coerce(variant_b)

        significance = self.evaluate(a, b)

        winner = None
        if significance.is_significant and a.ctr != b.ctr:
            winner = 'B' if b.ctr > a.ctr else 'A'

        return VariantComparison(
            variant_a=a,
            variant_b=b,
            significance=significance,
            lift=calculate_lift(a, b),
            confidence_intervals={
                'A': self.statistical_engine.proportion_confidence_interval(a.clicks, a.sent),
                'B': self.statistical_engine.proportion_confidence_interval(b.clicks, b.sent),
            },
            winner=winner
        )
