import numbers
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import pandas as pd

from engagement_analytics.errors import ValidationError


class Channel(Enum):
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"


class InterestLevel(Enum):
    INTERESTED = "interested"
    NOT_INTERESTED = "not_interested"
    NEUTRAL = "neutral"


class CampaignStatus(Enum):
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class EventType(Enum):
    CONTACT_CREATED = "contact_created"
    INTEREST_DETECTED = "interest_detected"
    CAMPAIGN_SENT = "campaign_sent"
    LINK_CLICKED = "link_clicked"
    CAMPAIGN_OPENED = "campaign_opened"


def parse_timestamp(value: Union[str, datetime, None], field_name: str = "created_at") -> datetime:
    """Accept datetimes or ISO-8601 strings (a trailing 'Z' means UTC)"""
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            ts = pd.Timestamp(value.strip())
        except ValueError as e:
            raise ValidationError(f"Invalid timestamp for {field_name}: {value!r}", field=field_name) from e
        if pd.isna(ts):
            raise ValidationError(f"Invalid timestamp for {field_name}: {value!r}", field=field_name)
        return ts.to_pydatetime()
    raise ValidationError(f"Missing timestamp for {field_name}", field=field_name)


def _parse_enum(enum_cls, value: Any, field_name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError as e:
        allowed = [m.value for m in enum_cls]
        raise ValidationError(f"{field_name} must be one of {allowed}, got {value!r}", field=field_name) from e


def parse_count(value: Any, field_name: str) -> int:
    """Whole, non-negative count. Integral floats and digit strings are accepted, fractions are not."""
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer, got {value!r}", field=field_name)
    if isinstance(value, numbers.Integral):
        count = int(value)
    elif isinstance(value, float) and value.is_integer():
        count = int(value)
    elif isinstance(value, str):
        try:
            count = int(value.strip())
        except ValueError as e:
            raise ValidationError(f"{field_name} must be an integer, got {value!r}", field=field_name) from e
    else:
        raise ValidationError(f"{field_name} must be an integer, got {value!r}", field=field_name)
    if count < 0:
        raise ValidationError(f"{field_name} must be non-negative", field=field_name)
    return count


def _parse_count(value: Any, field_name: str) -> int:
    # Absent counts in stored records mean nothing happened yet
    if value is None or value == "":
        return 0
    return parse_count(value, field_name)


@dataclass(frozen=True)
class Contact:
    id: str
    source: Channel
    interest_level: InterestLevel
    created_at: datetime
    handle: Optional[str] = None
    name: Optional[str] = None
    tags: Tuple[str, ...] = ()
    last_interaction_at: Optional[datetime] = None

    @property
    def last_seen_at(self) -> datetime:
        return self.last_interaction_at or self.created_at

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Contact":
        last_interaction = record.get("last_interaction_at")
        return cls(
            id=str(record["id"]),
            source=_parse_enum(Channel, record.get("source"), "source"),
            interest_level=_parse_enum(InterestLevel, record.get("interest_level"), "interest_level"),
            created_at=parse_timestamp(record.get("created_at")),
            handle=record.get("handle"),
            name=record.get("name"),
            tags=tuple(record.get("tags") or ()),
            last_interaction_at=(
                parse_timestamp(last_interaction, "last_interaction_at") if last_interaction else None
            ),
        )


@dataclass(frozen=True)
class Campaign:
    id: str
    status: CampaignStatus
    sent_count: int = 0
    click_count: int = 0
    name: str = ""
    channel: Optional[Channel] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if self.sent_count < 0:
            raise ValidationError("sent_count must be non-negative", field="sent_count")
        if self.click_count < 0:
            raise ValidationError("click_count must be non-negative", field="click_count")

    @property
    def ctr(self) -> float:
        return self.click_count / self.sent_count if self.sent_count > 0 else 0.0

    @property
    def has_click_anomaly(self) -> bool:
        """More clicks recorded than messages sent"""
        return self.click_count > self.sent_count

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Campaign":
        channel = record.get("channel")
        created_at = record.get("created_at")
        return cls(
            id=str(record["id"]),
            status=_parse_enum(CampaignStatus, record.get("status"), "status"),
            sent_count=_parse_count(record.get("sent_count"), "sent_count"),
            click_count=_parse_count(record.get("click_count"), "click_count"),
            name=record.get("name") or "",
            channel=_parse_enum(Channel, channel, "channel") if channel else None,
            created_at=parse_timestamp(created_at) if created_at else None,
        )


# Event payloads, one shape per event type

@dataclass(frozen=True)
class ContactCreatedPayload:
    source: Optional[Channel] = None
    handle: Optional[str] = None


@dataclass(frozen=True)
class InterestDetectedPayload:
    interest_level: InterestLevel = InterestLevel.INTERESTED
    message_text: Optional[str] = None


@dataclass(frozen=True)
class CampaignSentPayload:
    variant_id: Optional[str] = None


@dataclass(frozen=True)
class LinkClickedPayload:
    variant_id: Optional[str] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class CampaignOpenedPayload:
    variant_id: Optional[str] = None


@dataclass(frozen=True)
class OpaquePayload:
    """Raw metadata for event kinds without a dedicated payload"""
    data: Dict[str, Any] = field(default_factory=dict)


EventPayload = Union[
    ContactCreatedPayload,
    InterestDetectedPayload,
    CampaignSentPayload,
    LinkClickedPayload,
    CampaignOpenedPayload,
    OpaquePayload,
]


def _payload_from_metadata(event_type: Union[EventType, str], metadata: Mapping[str, Any]) -> EventPayload:
    if event_type == EventType.CONTACT_CREATED:
        source = metadata.get("source")
        return ContactCreatedPayload(
            source=_parse_enum(Channel, source, "metadata.source") if source else None,
            handle=metadata.get("handle"),
        )
    if event_type == EventType.INTEREST_DETECTED:
        level = metadata.get("interest_level")
        return InterestDetectedPayload(
            interest_level=(
                _parse_enum(InterestLevel, level, "metadata.interest_level")
                if level else InterestLevel.INTERESTED
            ),
            message_text=metadata.get("message_text"),
        )
    if event_type == EventType.CAMPAIGN_SENT:
        return CampaignSentPayload(variant_id=metadata.get("variant_id"))
    if event_type == EventType.LINK_CLICKED:
        return LinkClickedPayload(variant_id=metadata.get("variant_id"), url=metadata.get("url"))
    if event_type == EventType.CAMPAIGN_OPENED:
        return CampaignOpenedPayload(variant_id=metadata.get("variant_id"))
    return OpaquePayload(dict(metadata))


@dataclass(frozen=True)
class Event:
    id: str
    event_type: Union[EventType, str]
    created_at: datetime
    contact_id: Optional[str] = None
    campaign_id: Optional[str] = None
    payload: EventPayload = field(default_factory=OpaquePayload)

    @property
    def is_known_type(self) -> bool:
        return isinstance(self.event_type, EventType)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Event":
        raw_type = record.get("event_type")
        if not raw_type:
            raise ValidationError("event_type is required", field="event_type")
        try:
            event_type: Union[EventType, str] = EventType(str(raw_type).lower())
        except ValueError:
            # Future event kinds are kept, with their metadata left opaque
            event_type = str(raw_type)

        return cls(
            id=str(record["id"]),
            event_type=event_type,
            created_at=parse_timestamp(record.get("created_at")),
            contact_id=record.get("contact_id"),
            campaign_id=record.get("campaign_id"),
            payload=_payload_from_metadata(event_type, record.get("metadata") or {}),
        )


def ensure_utc(ts: datetime) -> datetime:
    """Naive timestamps are taken as UTC"""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)
