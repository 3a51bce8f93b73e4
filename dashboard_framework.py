import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ab_testing.significance_evaluator import SignificanceEvaluator, VariantComparison, VariantSummary
from ab_testing.variant_performance import VariantPerformance, aggregate_variant_performance, find_variant
from engagement_analytics.engagement_trends import TrendPoint, build_engagement_trends
from engagement_analytics.kpi_aggregator import (
    AnalyticsSummary,
    CampaignStats,
    DashboardKPIs,
    calculate_analytics_summary,
    calculate_campaign_stats,
    calculate_channel_split,
    calculate_dashboard_kpis,
    calculate_interest_detection_rate,
    campaign_ctr_leaderboard,
    recent_contacts,
)
from engagement_analytics.records import Campaign, Channel, Contact, Event, ensure_utc
from engagement_analytics.errors import UnsupportedFilterError
from engagement_analytics.observability import MetricsSink, resolve_sink
from engagement_analytics.settings import AnalyticsConfig, load_config
from statistical_engine import SampleSizePlan, StatisticalEngine


logger = logging.getLogger(__name__)

TIME_RANGE_DAYS = {
    '7d': 7,
    '30d': 30,
    '90d': 90,
}


@dataclass(frozen=True)
class DashboardFilters:
    """Per-request dashboard selectors"""
    time_range: str = '30d'
    channel: str = 'all'

    @classmethod
    def from_config(cls, config: AnalyticsConfig) -> "DashboardFilters":
        return cls(time_range=config.default_time_range, channel=config.default_channel)


@dataclass(frozen=True)
class ResolvedFilters:
    window_days: Optional[int]
    channel: Optional[Channel]
    unsupported: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DashboardReport:
    kpis: DashboardKPIs
    trends: List[TrendPoint]
    channel_split: List[Dict[str, Any]]
    campaign_ctr: List[Dict[str, Any]]
    interest_detection_rate: float
    analytics: AnalyticsSummary
    recent_contacts: List[Dict[str, Any]]
    filters: DashboardFilters
    generated_at: datetime
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kpis': self.kpis.to_dict(),
            'trends': [p.to_dict() for p in self.trends],
            'channel_split': [dict(s) for s in self.channel_split],
            'campaign_ctr': [dict(c) for c in self.campaign_ctr],
            'interest_detection_rate': self.interest_detection_rate,
            'analytics': self.analytics.to_dict(),
            'recent_contacts': [dict(c) for c in self.recent_contacts],
            'filters': {'time_range': self.filters.time_range, 'channel': self.filters.channel},
            'generated_at': self.generated_at.isoformat(),
            'warnings': list(self.warnings),
        }


class DashboardFramework:
    """Entry point for the request layer: dashboard summaries and A/B test evaluation.

    Holds configuration only. Every call takes its record snapshots and filters
    as arguments and returns fresh value objects.
    """

    def __init__(self, config: Optional[AnalyticsConfig] = None, sink: Optional[MetricsSink] = None):
        self.config = config or AnalyticsConfig()
        self.sink = resolve_sink(sink)
        self.statistical_engine = StatisticalEngine(
            default_power=self.config.power,
            min_sample_per_variant=self.config.min_sample_per_variant
        )
        self.significance_evaluator = SignificanceEvaluator(self.statistical_engine, sink=self.sink)

    @classmethod
    def from_settings(cls, path=None, sink: Optional[MetricsSink] = None) -> "DashboardFramework":
        return cls(load_config(path), sink=sink)

    def default_filters(self) -> DashboardFilters:
        return DashboardFilters.from_config(self.config)

    def resolve_filters(self, filters: DashboardFilters) -> ResolvedFilters:
        """Map selectors onto a window and channel; unknown values mean no filtering"""
        unsupported = []

        time_range = str(filters.time_range).lower()
        window_days = TIME_RANGE_DAYS.get(time_range)
        if window_days is None:
            unsupported.append('time_range')
            self._report_unsupported('time_range', filters.time_range)

        channel_value = str(filters.channel).lower()
        channel = None
        if channel_value != 'all':
            try:
                channel = Channel(channel_value)
            except ValueError:
                unsupported.append('channel')
                self._report_unsupported('channel', filters.channel)

        return ResolvedFilters(window_days=window_days, channel=channel, unsupported=tuple(unsupported))

    def apply_filters(
        self,
        contacts: Sequence[Contact],
        campaigns: Sequence[Campaign],
        events: Sequence[Event],
        resolved: ResolvedFilters,
        reference_time: datetime
    ) -> Tuple[List[Contact], List[Campaign], List[Event]]:
        contacts = list(contacts)
        campaigns = list(campaigns)
        events = list(events)

        if resolved.channel is not None:
            excluded_contacts = {c.id for c in contacts if c.source != resolved.channel}
            excluded_campaigns = {
                c.id for c in campaigns if c.channel is not None and c.channel != resolved.channel
            }
            contacts = [c for c in contacts if c.id not in excluded_contacts]
            campaigns = [c for c in campaigns if c.id not in excluded_campaigns]
            # Events follow the contact or campaign they reference
            events = [
                e for e in events
                if e.contact_id not in excluded_contacts and e.campaign_id not in excluded_campaigns
            ]

        if resolved.window_days is not None:
            until = ensure_utc(reference_time)
            since = until - timedelta(days=resolved.window_days)

            def in_window(ts: datetime) -> bool:
                return since <= ensure_utc(ts) <= until

            contacts = [c for c in contacts if in_window(c.created_at)]
            campaigns = [c for c in campaigns if c.created_at is None or in_window(c.created_at)]
            events = [e for e in events if in_window(e.created_at)]

        return contacts, campaigns, events

    def build_dashboard(
        self,
        contacts: Sequence[Contact],
        campaigns: Sequence[Campaign],
        events: Sequence[Event],
        filters: Optional[DashboardFilters] = None,
        reference_time: Optional[datetime] = None
    ) -> DashboardReport:
        """KPIs, engagement trend, channel split and campaign CTRs for one request"""
        filters = filters or self.default_filters()
        reference_time = ensure_utc(reference_time or datetime.now(timezone.utc))

        resolved = self.resolve_filters(filters)
        contacts, campaigns, events = self.apply_filters(
            contacts, campaigns, events, resolved, reference_time
        )

        kpis = calculate_dashboard_kpis(contacts, campaigns, events, sink=self.sink)
        trends = build_engagement_trends(
            events, days=self.config.trend_days, reference_date=reference_time, sink=self.sink
        )

        logger.info(
            f"Dashboard built for time_range={filters.time_range} channel={filters.channel}",
            extra={"contacts": kpis.total_contacts, "unsupported_filters": list(resolved.unsupported)}
        )

        return DashboardReport(
            kpis=kpis,
            trends=trends,
            channel_split=calculate_channel_split(contacts),
            campaign_ctr=campaign_ctr_leaderboard(campaigns),
            interest_detection_rate=calculate_interest_detection_rate(events),
            analytics=calculate_analytics_summary(campaigns, events, sink=self.sink),
            recent_contacts=recent_contacts(contacts, events),
            filters=filters,
            generated_at=reference_time,
            warnings=[f"unsupported_{name}" for name in resolved.unsupported]
        )

    def get_campaign_stats(self, campaigns: Sequence[Campaign]) -> CampaignStats:
        return calculate_campaign_stats(campaigns)

    def evaluate_ab_test(
        self,
        variant_a: Union[VariantSummary, Mapping[str, Any]],
        variant_b: Union[VariantSummary, Mapping[str, Any]]
    ) -> VariantComparison:
        return self.significance_evaluator.compare_variants(variant_a, variant_b)

    def get_variant_performance(
        self,
        events: Sequence[Event],
        campaign_id: Optional[str] = None,
        variant_names: Optional[Mapping[str, str]] = None
    ) -> List[VariantPerformance]:
        return aggregate_variant_performance(
            events, campaign_id=campaign_id, variant_names=variant_names, sink=self.sink
        )

    def evaluate_campaign_variants(
        self,
        events: Sequence[Event],
        variant_a_id: str,
        variant_b_id: str,
        campaign_id: Optional[str] = None
    ) -> VariantComparison:
        """Compare two variants using the sends and clicks attributed to them in the event log"""
        performance = self.get_variant_performance(events, campaign_id=campaign_id)
        variant_a = find_variant(performance, variant_a_id)
        variant_b = find_variant(performance, variant_b_id)
        logger.info(
            f"Evaluating variants {variant_a_id} vs {variant_b_id}",
            extra={"campaign_id": campaign_id, "sent_a": variant_a.sent, "sent_b": variant_b.sent}
        )
        return self.significance_evaluator.compare_variants(variant_a.to_summary(), variant_b.to_summary())

    def plan_ab_test(
        self,
        min_detectable_effect: float,
        confidence_level: int = 95,
        variants: int = 2,
        baseline_rate: Optional[float] = None
    ) -> SampleSizePlan:
        """Sends needed before an experiment's verdict is worth reading"""
        return self.statistical_engine.calculate_sample_size(
            baseline_rate=baseline_rate or self.config.baseline_rate,
            min_detectable_effect=min_detectable_effect,
            confidence_level=confidence_level,
            variants=variants
        )

    def _report_unsupported(self, selector: str, value: Any) -> None:
        if self.config.strict_filters:
            raise UnsupportedFilterError(selector, str(value))
        self.sink.record_warning(
            "unsupported_filter",
            f"Ignoring unsupported {selector} value {value!r}",
            selector=selector,
            value=value,
        )
