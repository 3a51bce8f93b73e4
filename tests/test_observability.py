import logging

import pytest

from engagement_analytics.observability import LoggingSink, NullSink, RecordingSink, resolve_sink


def test_logging_sink_writes_metrics_and_warnings(caplog):
    sink = LoggingSink(logger_name='engagement_analytics.test')

    with caplog.at_level(logging.INFO, logger='engagement_analytics.test'):
        sink.record_metric('dashboard.total_contacts', 12, channel='all')
        sink.record_warning('unsupported_filter', "Ignoring unsupported channel value 'tiktok'", selector='channel')

    metric, warning = caplog.records
    assert metric.levelno == logging.INFO
    assert metric.metric_name == 'dashboard.total_contacts'
    assert metric.metric_tags == {'channel': 'all'}
    assert warning.levelno == logging.WARNING
    assert warning.warning_kind == 'unsupported_filter'


def test_recording_sink_keeps_latest_metric():
    sink = RecordingSink()
    sink.record_metric('ab_test.p_value', 0.2)
    sink.record_metric('ab_test.p_value', 0.01)

    assert sink.metric('ab_test.p_value') == 0.01
    with pytest.raises(KeyError):
        sink.metric('missing')


def test_resolve_sink_defaults_to_null():
    assert isinstance(resolve_sink(None), NullSink)
    recording = RecordingSink()
    assert resolve_sink(recording) is recording
