import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from engagement_analytics.records import Event, EventType, ensure_utc
from engagement_analytics.errors import ValidationError
from engagement_analytics.observability import MetricsSink, resolve_sink


logger = logging.getLogger(__name__)

DEFAULT_TREND_DAYS = 7

# event type -> trend series
TRACKED_EVENTS = {
    EventType.CONTACT_CREATED: 'contacts',
    EventType.INTEREST_DETECTED: 'interested',
    EventType.LINK_CLICKED: 'clicks',
}
TREND_SERIES = ['contacts', 'interested', 'clicks']

WEEKDAY_LABELS = ('Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun')


@dataclass(frozen=True)
class TrendPoint:
    date: date
    contacts: int
    interested: int
    clicks: int

    @property
    def day(self) -> str:
        return WEEKDAY_LABELS[self.date.weekday()]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date.isoformat(),
            'day': self.day,
            'contacts': self.contacts,
            'interested': self.interested,
            'clicks': self.clicks,
        }


def _resolve_reference_date(reference: Union[date, datetime, None]) -> date:
    if reference is None:
        return datetime.now(timezone.utc).date()
    if isinstance(reference, datetime):
        return ensure_utc(reference).date()
    return reference


def build_engagement_trends(
    events: Sequence[Event],
    days: int = DEFAULT_TREND_DAYS,
    reference_date: Union[date, datetime, None] = None,
    sink: Optional[MetricsSink] = None
) -> List[TrendPoint]:
    """Dense daily counts of new contacts, detected interest and link clicks.

    Returns exactly `days` points, oldest first, ending on the reference day
    (today in UTC by default). Events are bucketed by UTC calendar date, not
    by rolling 24 hour windows; days without events get zero counts.
    """
    if days < 1:
        raise ValidationError("days must be at least 1", field="days")

    sink = resolve_sink(sink)
    end = _resolve_reference_date(reference_date)
    window = [end - timedelta(days=offset) for offset in range(days - 1, -1, -1)]

    rows = [
        (ensure_utc(e.created_at).date(), TRACKED_EVENTS[e.event_type])
        for e in events
        if e.event_type in TRACKED_EVENTS
    ]
    frame = pd.DataFrame(rows, columns=['date', 'series'])

    if frame.empty:
        counts = pd.DataFrame(0, index=window, columns=TREND_SERIES)
    else:
        counts = (
            frame.groupby(['date', 'series'])
            .size()
            .unstack(fill_value=0)
            .reindex(index=window, columns=TREND_SERIES, fill_value=0)
        )

    trends = [
        TrendPoint(
            date=day,
            contacts=int(row['contacts']),
            interested=int(row['interested']),
            clicks=int(row['clicks']),
        )
        for day, row in zip(window, counts.to_dict('records'))
    ]

    in_window = sum(p.contacts + p.interested + p.clicks for p in trends)
    logger.debug(
        "Built engagement trend",
        extra={"days": days, "tracked_events": len(rows), "events_in_window": in_window}
    )
    sink.record_metric("trends.events_in_window", in_window, days=days)

    return trends
