from datetime import datetime, timezone
from itertools import count

import pytest

from engagement_analytics.records import (
    Campaign,
    CampaignStatus,
    Channel,
    Contact,
    Event,
    EventType,
    InterestLevel,
    OpaquePayload,
)
from engagement_analytics.observability import RecordingSink


REFERENCE_TIME = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def reference_time():
    return REFERENCE_TIME


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_contact():
    ids = count(1)

    def _make(interest=InterestLevel.NEUTRAL, source=Channel.INSTAGRAM, created_at=REFERENCE_TIME,
              last_interaction_at=None):
        return Contact(
            id=f"contact-{next(ids)}",
            source=source,
            interest_level=interest,
            created_at=created_at,
            last_interaction_at=last_interaction_at,
        )

    return _make


@pytest.fixture
def make_campaign():
    ids = count(1)

    def _make(status=CampaignStatus.RUNNING, sent=0, clicks=0, name=None, channel=None, created_at=None):
        campaign_id = f"campaign-{next(ids)}"
        return Campaign(
            id=campaign_id,
            status=status,
            sent_count=sent,
            click_count=clicks,
            name=name or campaign_id,
            channel=channel,
            created_at=created_at,
        )

    return _make


@pytest.fixture
def make_event():
    ids = count(1)

    def _make(event_type=EventType.LINK_CLICKED, created_at=REFERENCE_TIME, contact_id=None, campaign_id=None,
              payload=None):
        return Event(
            id=f"event-{next(ids)}",
            event_type=event_type,
            created_at=created_at,
            contact_id=contact_id,
            campaign_id=campaign_id,
            payload=payload or OpaquePayload(),
        )

    return _make
