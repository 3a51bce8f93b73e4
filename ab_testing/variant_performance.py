import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ab_testing.significance_evaluator import VariantSummary
from engagement_analytics.records import Event, EventType
from engagement_analytics.observability import MetricsSink, resolve_sink


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VariantPerformance:
    """Sends and clicks attributed to one message variant through the event log"""
    variant_id: str
    sent: int
    clicks: int
    name: Optional[str] = None

    @property
    def ctr(self) -> float:
        return self.clicks / self.sent if self.sent > 0 else 0.0

    @property
    def has_click_anomaly(self) -> bool:
        return self.clicks > self.sent

    def to_summary(self) -> VariantSummary:
        return VariantSummary(clicks=self.clicks, sent=self.sent)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'variant_id': self.variant_id,
            'name': self.name or self.variant_id,
            'ctr': self.ctr,
            'clicks': self.clicks,
            'sent': self.sent,
        }


def _variant_id(event: Event) -> Optional[str]:
    return getattr(event.payload, 'variant_id', None)


def aggregate_variant_performance(
    events: Sequence[Event],
    campaign_id: Optional[str] = None,
    variant_names: Optional[Mapping[str, str]] = None,
    sink: Optional[MetricsSink] = None
) -> List[VariantPerformance]:
    """Count campaign_sent and link_clicked events per payload variant_id.

    Events without a variant_id are not attributable and are skipped. When
    campaign_id is given only that campaign's events count. Variants are
    returned ordered by id; a variant with more clicks than sends is kept
    and reported to the sink.
    """
    sink = resolve_sink(sink)
    variant_names = variant_names or {}

    sent: Counter = Counter()
    clicks: Counter = Counter()
    unattributed = 0

    for event in events:
        if event.event_type not in (EventType.CAMPAIGN_SENT, EventType.LINK_CLICKED):
            continue
        if campaign_id is not None and event.campaign_id != campaign_id:
            continue
        variant_id = _variant_id(event)
        if not variant_id:
            unattributed += 1
            continue
        if event.event_type == EventType.CAMPAIGN_SENT:
            sent[variant_id] += 1
        else:
            clicks[variant_id] += 1

    performance = [
        VariantPerformance(
            variant_id=variant_id,
            sent=sent[variant_id],
            clicks=clicks[variant_id],
            name=variant_names.get(variant_id),
        )
        for variant_id in sorted(set(sent) | set(clicks))
    ]

    for variant in performance:
        if variant.has_click_anomaly:
            sink.record_warning(
                "variant_clicks_exceed_sent",
                f"Variant {variant.variant_id} has {variant.clicks} clicks for {variant.sent} sends",
                variant_id=variant.variant_id,
                clicks=variant.clicks,
                sent=variant.sent,
            )

    if unattributed:
        logger.debug(f"{unattributed} send/click events carry no variant_id", extra={"campaign_id": campaign_id})

    return performance


def find_variant(performance: Sequence[VariantPerformance], variant_id: str) -> VariantPerformance:
    """A variant never seen in the log has no sends and no clicks"""
    for variant in performance:
        if variant.variant_id == variant_id:
            return variant
    return VariantPerformance(variant_id=variant_id, sent=0, clicks=0)
