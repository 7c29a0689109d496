"""Normalization of upstream events into the stored event schema."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from config import event_url
from processor.models import EventRecord, Place, RawEvent

logger = logging.getLogger(__name__)


def _normalize_place(place: Optional[Place]) -> Optional[Dict[str, Any]]:
    if place is None:
        return None

    normalized: Dict[str, Any] = {}
    if place.name:
        normalized['name'] = place.name
    if place.location:
        normalized['location'] = dict(place.location)
    return normalized or None


def normalize_event(
    raw_event: RawEvent,
    page_id: str,
    cover_image_url: Optional[str] = None,
    now: Optional[datetime] = None
) -> EventRecord:
    """
    Map an upstream event onto an EventRecord.

    The cover URL resolved by image ingestion takes precedence over the
    upstream cover URL; with neither, the field stays absent.

    Args:
        raw_event: Validated upstream event
        page_id: Page the event belongs to
        cover_image_url: Cover URL from image ingestion, if any
        now: Timestamp for createdAt/updatedAt (defaults to current UTC time)

    Returns:
        EventRecord whose absent optional fields are None
    """
    timestamp = (now or datetime.now(timezone.utc)).isoformat()

    return EventRecord(
        id=raw_event.id,
        page_id=page_id,
        title=raw_event.name,
        start_time=raw_event.start_time,
        event_url=event_url(raw_event.id),
        created_at=timestamp,
        updated_at=timestamp,
        description=raw_event.description or None,
        end_time=raw_event.end_time or None,
        place=_normalize_place(raw_event.place),
        cover_image_url=cover_image_url or raw_event.cover_source or None
    )
