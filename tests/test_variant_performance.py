import pytest

from ab_testing.significance_evaluator import VariantSummary
from ab_testing.variant_performance import VariantPerformance, aggregate_variant_performance, find_variant
from engagement_analytics.records import CampaignSentPayload, EventType, LinkClickedPayload


@pytest.fixture
def variant_log(make_event):
    def _log(variant_id, sent, clicks, campaign_id='campaign-1'):
        events = [
            make_event(EventType.CAMPAIGN_SENT, contact_id=f"{variant_id}-{i}", campaign_id=campaign_id,
                       payload=CampaignSentPayload(variant_id))
            for i in range(sent)
        ]
        events += [
            make_event(EventType.LINK_CLICKED, contact_id=f"{variant_id}-{i}", campaign_id=campaign_id,
                       payload=LinkClickedPayload(variant_id, 'https://example.com/offer'))
            for i in range(clicks)
        ]
        return events

    return _log


class TestAggregation:
    def test_counts_sends_and_clicks_per_variant(self, variant_log):
        events = variant_log('var_2', sent=8, clicks=4) + variant_log('var_1', sent=10, clicks=3)

        performance = aggregate_variant_performance(events, variant_names={'var_1': 'Short CTA'})

        assert [v.variant_id for v in performance] == ['var_1', 'var_2']
        assert performance[0] == VariantPerformance('var_1', sent=10, clicks=3, name='Short CTA')
        assert performance[1].ctr == pytest.approx(0.5)
        assert performance[0].to_dict() == {
            'variant_id': 'var_1', 'name': 'Short CTA', 'ctr': pytest.approx(0.3), 'clicks': 3, 'sent': 10,
        }
        assert performance[1].to_dict()['name'] == 'var_2'

    def test_filters_by_campaign(self, variant_log):
        events = variant_log('var_1', 5, 1, campaign_id='spring') + variant_log('var_1', 7, 2, campaign_id='summer')

        performance = aggregate_variant_performance(events, campaign_id='summer')

        assert performance == [VariantPerformance('var_1', sent=7, clicks=2)]

    def test_events_without_variant_are_skipped(self, make_event):
        events = [
            make_event(EventType.CAMPAIGN_SENT),
            make_event(EventType.LINK_CLICKED, payload=LinkClickedPayload(None, 'https://example.com')),
            make_event(EventType.CONTACT_CREATED),
        ]
        assert aggregate_variant_performance(events) == []

    def test_click_overflow_is_reported(self, variant_log, sink):
        events = variant_log('var_1', sent=1, clicks=3)

        performance = aggregate_variant_performance(events, sink=sink)

        assert performance[0].has_click_anomaly
        assert sink.warning_kinds() == ['variant_clicks_exceed_sent']

    def test_to_summary_feeds_the_evaluator(self):
        assert VariantPerformance('var_1', sent=20, clicks=5).to_summary() == VariantSummary(clicks=5, sent=20)

    def test_unknown_variant_has_no_traffic(self):
        performance = [VariantPerformance('var_1', sent=3, clicks=1)]
        assert find_variant(performance, 'var_1') is performance[0]
        assert find_variant(performance, 'var_9') == VariantPerformance('var_9', sent=0, clicks=0)
