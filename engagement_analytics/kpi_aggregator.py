import logging
import math
from collections import Counter
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from ab_testing.variant_performance import VariantPerformance, aggregate_variant_performance
from engagement_analytics.records import (
    Campaign,
    CampaignStatus,
    Channel,
    Contact,
    Event,
    EventType,
    InterestLevel,
    ensure_utc,
)
from engagement_analytics.errors import ValidationError
from engagement_analytics.observability import MetricsSink, resolve_sink


logger = logging.getLogger(__name__)

CHANNEL_LABELS = {
    Channel.INSTAGRAM: 'Instagram',
    Channel.FACEBOOK: 'Facebook',
}


@dataclass(frozen=True)
class DashboardKPIs:
    total_contacts: int
    interested_contacts: int
    interested_rate: float
    active_campaigns: int
    average_ctr: float
    total_clicks: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CampaignStats:
    total_campaigns: int
    active_campaigns: int
    total_sent: int
    total_clicks: int
    average_ctr: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def _whole_percent(part: int, total: int) -> int:
    # half-up, so a 62.5% share reads as 63
    return int(math.floor(_ratio(part, total) * 100 + 0.5))


def _report_click_anomalies(campaigns: Sequence[Campaign], sink: MetricsSink) -> None:
    for campaign in campaigns:
        if campaign.has_click_anomaly:
            sink.record_warning(
                "click_count_exceeds_sent",
                f"Campaign {campaign.id} reports {campaign.click_count} clicks for {campaign.sent_count} sends",
                campaign_id=campaign.id,
                click_count=campaign.click_count,
                sent_count=campaign.sent_count,
            )


def count_events(events: Sequence[Event], event_type: EventType) -> int:
    return sum(1 for e in events if e.event_type == event_type)


def calculate_dashboard_kpis(
    contacts: Sequence[Contact],
    campaigns: Sequence[Campaign],
    events: Sequence[Event],
    sink: Optional[MetricsSink] = None
) -> DashboardKPIs:
    """Reduce contact, campaign and event snapshots into the dashboard summary.

    Clicks come from the link_clicked event log when it has any entries,
    otherwise from the campaigns' click_count totals. Every ratio with a zero
    denominator is 0.
    """
    sink = resolve_sink(sink)

    total_contacts = len(contacts)
    interested_contacts = sum(1 for c in contacts if c.interest_level == InterestLevel.INTERESTED)
    active_campaigns = sum(1 for c in campaigns if c.status == CampaignStatus.RUNNING)

    event_clicks = count_events(events, EventType.LINK_CLICKED)
    campaign_clicks = sum(c.click_count for c in campaigns)
    total_clicks = event_clicks if event_clicks > 0 else campaign_clicks

    total_sent = sum(c.sent_count for c in campaigns)

    _report_click_anomalies(campaigns, sink)

    kpis = DashboardKPIs(
        total_contacts=total_contacts,
        interested_contacts=interested_contacts,
        interested_rate=_ratio(interested_contacts, total_contacts),
        active_campaigns=active_campaigns,
        average_ctr=_ratio(total_clicks, total_sent),
        total_clicks=total_clicks,
    )

    logger.debug(
        "Computed dashboard KPIs",
        extra={
            "click_source": "events" if event_clicks > 0 else "campaigns",
            "total_sent": total_sent,
        }
    )
    sink.record_metric("dashboard.total_contacts", kpis.total_contacts)
    sink.record_metric("dashboard.interested_rate", kpis.interested_rate)
    sink.record_metric("dashboard.average_ctr", kpis.average_ctr)
    sink.record_metric("dashboard.total_clicks", kpis.total_clicks,
                       source="events" if event_clicks > 0 else "campaigns")

    return kpis


def calculate_interest_detection_rate(events: Sequence[Event]) -> float:
    """Share of new-contact comments that were classified as interested"""
    interest_events = count_events(events, EventType.INTEREST_DETECTED)
    total_comments = count_events(events, EventType.CONTACT_CREATED)
    return _ratio(interest_events, total_comments)


def filter_contacts_by_interest(
    contacts: Sequence[Contact],
    interest_level: Union[InterestLevel, str]
) -> List[Contact]:
    """Selectors are case-insensitive; 'all' keeps every contact"""
    if not isinstance(interest_level, InterestLevel):
        selector = str(interest_level).strip().lower()
        if selector == 'all':
            return list(contacts)
        try:
            interest_level = InterestLevel(selector)
        except ValueError as e:
            raise ValidationError(f"Unknown interest level: {interest_level!r}", field="interest_level") from e
    return [c for c in contacts if c.interest_level == interest_level]


def calculate_channel_split(contacts: Sequence[Contact]) -> List[Dict[str, Any]]:
    """Whole-percent share of contacts per source channel"""
    instagram = sum(1 for c in contacts if c.source == Channel.INSTAGRAM)
    facebook = sum(1 for c in contacts if c.source == Channel.FACEBOOK)
    total = instagram + facebook

    return [
        {'name': CHANNEL_LABELS[Channel.INSTAGRAM], 'value': _whole_percent(instagram, total)},
        {'name': CHANNEL_LABELS[Channel.FACEBOOK], 'value': _whole_percent(facebook, total)},
    ]


def campaign_ctr_leaderboard(campaigns: Sequence[Campaign], limit: int = 4) -> List[Dict[str, Any]]:
    """CTR of campaigns that have actually been sent, first `limit` in input order"""
    if limit < 0:
        raise ValidationError("limit must be non-negative", field="limit")
    sent = [c for c in campaigns if c.sent_count > 0]
    return [{'name': c.name or c.id, 'ctr': c.ctr} for c in sent[:limit]]


def calculate_campaign_stats(campaigns: Sequence[Campaign]) -> CampaignStats:
    total_sent = sum(c.sent_count for c in campaigns)
    total_clicks = sum(c.click_count for c in campaigns)

    return CampaignStats(
        total_campaigns=len(campaigns),
        active_campaigns=sum(1 for c in campaigns if c.status == CampaignStatus.RUNNING),
        total_sent=total_sent,
        total_clicks=total_clicks,
        average_ctr=_ratio(total_clicks, total_sent),
    )


@dataclass(frozen=True)
class AnalyticsSummary:
    total_comments: int
    interest_detection_rate: float
    campaign_reach: int
    delivery_rate: float
    click_through_rate: float
    variant_performance: List[VariantPerformance] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_comments': self.total_comments,
            'interest_detection_rate': self.interest_detection_rate,
            'campaign_reach': self.campaign_reach,
            'delivery_rate': self.delivery_rate,
            'click_through_rate': self.click_through_rate,
            'variant_performance': [v.to_dict() for v in self.variant_performance],
        }


def calculate_analytics_summary(
    campaigns: Sequence[Campaign],
    events: Sequence[Event],
    variant_names: Optional[Mapping[str, str]] = None,
    sink: Optional[MetricsSink] = None
) -> AnalyticsSummary:
    """Funnel figures read from the event log.

    Reach counts distinct contacts that received a campaign message. Delivery
    rate compares logged campaign_sent events with the campaigns' sent_count
    totals and never exceeds 1. Click-through rate is link_clicked over
    campaign_sent events.
    """
    sink = resolve_sink(sink)

    sent_events = [e for e in events if e.event_type == EventType.CAMPAIGN_SENT]
    reach = len({e.contact_id for e in sent_events if e.contact_id})
    planned_sends = sum(c.sent_count for c in campaigns)

    delivery_rate = _ratio(len(sent_events), planned_sends)
    if delivery_rate > 1.0:
        sink.record_warning(
            "delivered_exceeds_sent",
            f"{len(sent_events)} campaign_sent events for {planned_sends} recorded sends",
            delivered=len(sent_events),
            sent_count=planned_sends,
        )
        delivery_rate = 1.0

    summary = AnalyticsSummary(
        total_comments=count_events(events, EventType.CONTACT_CREATED),
        interest_detection_rate=calculate_interest_detection_rate(events),
        campaign_reach=reach,
        delivery_rate=delivery_rate,
        click_through_rate=_ratio(count_events(events, EventType.LINK_CLICKED), len(sent_events)),
        variant_performance=aggregate_variant_performance(events, variant_names=variant_names, sink=sink),
    )

    sink.record_metric("analytics.campaign_reach", summary.campaign_reach)
    sink.record_metric("analytics.delivery_rate", summary.delivery_rate)
    return summary


def contact_stage(contact: Contact, clicks: int = 0, campaigns_received: int = 0) -> str:
    """Furthest funnel step a contact has reached"""
    if clicks > 0:
        return 'Clicked Link'
    if contact.interest_level == InterestLevel.INTERESTED:
        return 'High Interest'
    if campaigns_received > 0:
        return 'Engaged'
    if contact.interest_level == InterestLevel.NOT_INTERESTED:
        return 'Not Interested'
    return 'New'


def recent_contacts(
    contacts: Sequence[Contact],
    events: Sequence[Event],
    limit: int = 10
) -> List[Dict[str, Any]]:
    """Most recently active contacts first, each tagged with its funnel stage"""
    if limit < 0:
        raise ValidationError("limit must be non-negative", field="limit")

    clicks = Counter(e.contact_id for e in events if e.event_type == EventType.LINK_CLICKED and e.contact_id)
    received = Counter(e.contact_id for e in events if e.event_type == EventType.CAMPAIGN_SENT and e.contact_id)

    ordered = sorted(contacts, key=lambda c: ensure_utc(c.last_seen_at), reverse=True)
    return [
        {
            'id': c.id,
            'name': c.name,
            'handle': c.handle,
            'channel': CHANNEL_LABELS[c.source],
            'interest_level': c.interest_level.value,
            'stage': contact_stage(c, clicks[c.id], received[c.id]),
            'last_interaction_at': ensure_utc(c.last_seen_at).isoformat(),
        }
        for c in ordered[:limit]
    ]
