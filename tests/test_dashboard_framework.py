import json
from datetime import timedelta

import pytest

from engagement_analytics.records import (
    CampaignSentPayload,
    CampaignStatus,
    Channel,
    EventType,
    InterestLevel,
    LinkClickedPayload,
)
from dashboard_framework import DashboardFilters, DashboardFramework
from engagement_analytics.errors import UnsupportedFilterError
from engagement_analytics.settings import AnalyticsConfig


@pytest.fixture
def snapshot(make_contact, make_campaign, make_event, reference_time):
    old = reference_time - timedelta(days=45)
    ig_lead = make_contact(InterestLevel.INTERESTED, Channel.INSTAGRAM)
    ig_old = make_contact(InterestLevel.INTERESTED, Channel.INSTAGRAM, created_at=old)
    fb_lead = make_contact(InterestLevel.NEUTRAL, Channel.FACEBOOK)
    contacts = [ig_lead, ig_old, fb_lead]

    ig_campaign = make_campaign(CampaignStatus.RUNNING, sent=100, clicks=20, channel=Channel.INSTAGRAM)
    fb_campaign = make_campaign(CampaignStatus.RUNNING, sent=50, clicks=5, channel=Channel.FACEBOOK)
    campaigns = [ig_campaign, fb_campaign]

    events = [
        make_event(EventType.CONTACT_CREATED, contact_id=ig_lead.id),
        make_event(EventType.INTEREST_DETECTED, contact_id=ig_lead.id),
        make_event(EventType.CONTACT_CREATED, contact_id=fb_lead.id),
        make_event(EventType.LINK_CLICKED, contact_id=ig_lead.id, campaign_id=ig_campaign.id),
        make_event(EventType.LINK_CLICKED, contact_id=fb_lead.id, campaign_id=fb_campaign.id),
        make_event(EventType.LINK_CLICKED, created_at=old, contact_id=ig_old.id),
    ]
    return contacts, campaigns, events


def test_unfiltered_dashboard(snapshot, reference_time):
    report = DashboardFramework().build_dashboard(
        *snapshot, filters=DashboardFilters('90d', 'all'), reference_time=reference_time
    )

    assert report.kpis.total_contacts == 3
    assert report.kpis.interested_contacts == 2
    assert report.kpis.active_campaigns == 2
    assert report.kpis.total_clicks == 3
    assert report.kpis.average_ctr == pytest.approx(3 / 150)
    assert len(report.trends) == 7
    assert report.trends[-1].clicks == 2
    assert report.interest_detection_rate == pytest.approx(0.5)
    assert report.warnings == []


def test_time_range_filter(snapshot, reference_time):
    report = DashboardFramework().build_dashboard(
        *snapshot, filters=DashboardFilters('30d', 'all'), reference_time=reference_time
    )
    assert report.kpis.total_contacts == 2
    assert report.kpis.total_clicks == 2


def test_channel_filter(snapshot, reference_time):
    report = DashboardFramework().build_dashboard(
        *snapshot, filters=DashboardFilters('7d', 'Instagram'), reference_time=reference_time
    )
    assert report.kpis.total_contacts == 1
    assert report.kpis.interested_rate == 1.0
    assert report.kpis.total_clicks == 1
    assert report.kpis.average_ctr == pytest.approx(0.01)
    assert report.channel_split == [{'name': 'Instagram', 'value': 100}, {'name': 'Facebook', 'value': 0}]


def test_unsupported_filters_pass_through(snapshot, reference_time, sink):
    framework = DashboardFramework(sink=sink)
    report = framework.build_dashboard(
        *snapshot, filters=DashboardFilters('1y', 'tiktok'), reference_time=reference_time
    )

    assert report.kpis.total_contacts == 3
    assert report.warnings == ['unsupported_time_range', 'unsupported_channel']
    assert sink.warning_kinds().count('unsupported_filter') == 2


def test_strict_filters_raise(snapshot, reference_time):
    framework = DashboardFramework(AnalyticsConfig(strict_filters=True))
    with pytest.raises(UnsupportedFilterError):
        framework.build_dashboard(*snapshot, filters=DashboardFilters('1y', 'all'), reference_time=reference_time)


def test_trend_window_follows_config(reference_time):
    framework = DashboardFramework(AnalyticsConfig(trend_days=14))
    report = framework.build_dashboard([], [], [], reference_time=reference_time)
    assert len(report.trends) == 14


def test_report_is_json_serializable(snapshot, reference_time):
    report = DashboardFramework().build_dashboard(*snapshot, reference_time=reference_time)
    payload = json.loads(json.dumps(report.to_dict()))

    assert payload['filters'] == {'time_range': '30d', 'channel': 'all'}
    assert payload['generated_at'].startswith('2024-03-15T12:00:00')
    assert len(payload['trends']) == 7


def test_inputs_are_not_mutated(snapshot, reference_time):
    contacts, campaigns, events = snapshot
    before = (list(contacts), list(campaigns), list(events))
    DashboardFramework().build_dashboard(
        contacts, campaigns, events, filters=DashboardFilters('7d', 'facebook'), reference_time=reference_time
    )
    assert (contacts, campaigns, events) == before


def test_evaluate_ab_test():
    comparison = DashboardFramework().evaluate_ab_test({'clicks': 132, 'sent': 314}, {'clicks': 160, 'sent': 327})
    assert comparison.significance.is_significant is False
    assert comparison.winner is None


def test_plan_ab_test_uses_configured_baseline():
    framework = DashboardFramework(AnalyticsConfig(baseline_rate=0.1, min_sample_per_variant=100))
    plan = framework.plan_ab_test(min_detectable_effect=0.05)
    assert plan.baseline_rate == 0.1
    assert plan.per_variant == 686


def test_records_after_reference_time_are_excluded(make_contact, make_campaign, make_event, reference_time):
    later = reference_time + timedelta(days=3)
    contacts = [make_contact(created_at=later)]
    campaigns = [make_campaign(sent=10, clicks=2, created_at=later)]
    events = [
        make_event(EventType.CONTACT_CREATED, created_at=later, contact_id=contacts[0].id),
        make_event(EventType.LINK_CLICKED, created_at=later, contact_id=contacts[0].id),
    ]

    report = DashboardFramework().build_dashboard(
        contacts, campaigns, events, filters=DashboardFilters('7d', 'all'), reference_time=reference_time
    )

    assert report.kpis.total_contacts == 0
    assert report.kpis.total_clicks == 0
    assert report.kpis.active_campaigns == 0
    assert sum(p.clicks for p in report.trends) == 0


def test_window_includes_reference_instant(make_contact, reference_time):
    contacts = [make_contact(created_at=reference_time), make_contact(created_at=reference_time - timedelta(days=7))]
    report = DashboardFramework().build_dashboard(
        contacts, [], [], filters=DashboardFilters('7d', 'all'), reference_time=reference_time
    )
    assert report.kpis.total_contacts == 2


def test_report_carries_analytics_and_recent_contacts(snapshot, reference_time):
    report = DashboardFramework().build_dashboard(
        *snapshot, filters=DashboardFilters('90d', 'all'), reference_time=reference_time
    )
    payload = json.loads(json.dumps(report.to_dict()))

    assert report.analytics.total_comments == 2
    assert report.analytics.interest_detection_rate == pytest.approx(0.5)
    assert payload['analytics']['variant_performance'] == []
    assert len(payload['recent_contacts']) == 3
    assert [c['id'] for c in payload['recent_contacts']] == ['contact-1', 'contact-3', 'contact-2']
    assert {c['stage'] for c in payload['recent_contacts']} == {'Clicked Link'}


def test_evaluate_campaign_variants_from_events(make_event):
    events = []
    for variant_id, sent, clicks in (('var_1', 200, 20), ('var_2', 200, 60)):
        events += [
            make_event(EventType.CAMPAIGN_SENT, campaign_id='k1', payload=CampaignSentPayload(variant_id))
            for _ in range(sent)
        ]
        events += [
            make_event(EventType.LINK_CLICKED, campaign_id='k1', payload=LinkClickedPayload(variant_id))
            for _ in range(clicks)
        ]

    framework = DashboardFramework()
    comparison = framework.evaluate_campaign_variants(events, 'var_1', 'var_2', campaign_id='k1')

    assert comparison.variant_a.sent == 200 and comparison.variant_b.clicks == 60
    assert comparison.significance.is_significant
    assert comparison.winner == 'B'
    assert [v.variant_id for v in framework.get_variant_performance(events)] == ['var_1', 'var_2']


def test_missing_variant_is_not_evaluable(make_event):
    events = [make_event(EventType.CAMPAIGN_SENT, payload=CampaignSentPayload('var_1'))]
    comparison = DashboardFramework().evaluate_campaign_variants(events, 'var_1', 'var_2')
    assert comparison.significance.p_value == 1.0
    assert comparison.winner is None
