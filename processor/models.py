"""Data models for page event synchronization."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp such as 2024-01-15T19:00:00+0100 or an ISO 8601 string.

    Returns:
        Timezone-aware datetime (naive input is taken as UTC), or None if
        the value cannot be parsed
    """
    if not value or not isinstance(value, str):
        return None
    for parse in (
        lambda v: datetime.strptime(v, '%Y-%m-%dT%H:%M:%S%z'),
        datetime.fromisoformat,
    ):
        try:
            parsed = parse(value.strip())
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


class TokenStatus(str, Enum):
    VALID = 'valid'
    EXPIRING = 'expiring'
    EXPIRED = 'expired'


class WebhookVerb(str, Enum):
    """Change verbs carried by an events webhook notification."""
    CREATE = 'create'
    UPDATE = 'update'
    DELETE = 'delete'


class ChangeStatus(str, Enum):
    SUCCESS = 'success'
    FAILED = 'failed'
    SKIPPED = 'skipped'


@dataclass
class Page:
    """A page returned by the upstream accounts listing."""
    id: str
    name: str
    access_token: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Page':
        if not isinstance(data.get('id'), str) or not data['id']:
            raise ValueError('page is missing a string id')
        return cls(
            id=data['id'],
            name=data.get('name') or '',
            access_token=data.get('access_token')
        )


@dataclass
class Place:
    """Location attached to an upstream event."""
    name: Optional[str] = None
    location: Optional[Dict[str, Any]] = None


@dataclass
class RawEvent:
    """
    Event as returned by the upstream API.

    Only id, name and start_time are guaranteed; everything else is
    optional upstream and stays None when absent.
    """
    id: str
    name: str
    start_time: str
    description: Optional[str] = None
    end_time: Optional[str] = None
    place: Optional[Place] = None
    cover_source: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'RawEvent':
        """
        Validate and convert an upstream event object.

        Args:
            data: Event dict from the Graph API

        Returns:
            RawEvent instance

        Raises:
            ValueError: If a required field is missing or has the wrong type
        """
        for key in ('id', 'name', 'start_time'):
            if not isinstance(data.get(key), str) or not data[key]:
                raise ValueError(f"event is missing required field: {key}")

        place = None
        raw_place = data.get('place')
        if isinstance(raw_place, dict):
            location = raw_place.get('location')
            place = Place(
                name=raw_place.get('name'),
                location=location if isinstance(location, dict) and location else None
            )

        cover_source = None
        raw_cover = data.get('cover')
        if isinstance(raw_cover, dict) and isinstance(raw_cover.get('source'), str):
            cover_source = raw_cover['source'] or None

        return cls(
            id=data['id'],
            name=data['name'],
            start_time=data['start_time'],
            description=data.get('description'),
            end_time=data.get('end_time'),
            place=place,
            cover_source=cover_source
        )


@dataclass
class EventRecord:
    """Normalized event as stored locally, keyed by upstream event id."""
    id: str
    page_id: str
    title: str
    start_time: str
    event_url: str
    created_at: str
    updated_at: str
    description: Optional[str] = None
    end_time: Optional[str] = None
    place: Optional[Dict[str, Any]] = None
    cover_image_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Stored representation; absent optional fields are left out entirely."""
        item = {
            'id': self.id,
            'pageId': self.page_id,
            'title': self.title,
            'startTime': self.start_time,
            'eventURL': self.event_url,
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }
        if self.description is not None:
            item['description'] = self.description
        if self.end_time is not None:
            item['endTime'] = self.end_time
        if self.place is not None:
            item['place'] = self.place
        if self.cover_image_url is not None:
            item['coverImageUrl'] = self.cover_image_url
        return item


@dataclass
class PageSubscription:
    """A connected page as tracked in the pages table."""
    id: str
    name: str
    active: bool = True
    token_status: TokenStatus = TokenStatus.VALID
    token_expires_at: Optional[datetime] = None

    @property
    def is_syncable(self) -> bool:
        return self.active and self.token_status != TokenStatus.EXPIRED


@dataclass
class TokenExpiryStatus:
    is_expiring: bool
    days_until_expiry: int
    expires_at: Optional[datetime]


@dataclass
class ExpiringToken:
    page_id: str
    page_name: str
    days_until_expiry: int
    expires_at: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pageId': self.page_id,
            'pageName': self.page_name,
            'daysUntilExpiry': self.days_until_expiry,
            'expiresAt': self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass
class SyncRunResult:
    """Result of a full sync run."""
    synced_pages: int
    synced_events: int
    expiring_tokens: List[ExpiringToken] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'syncedPages': self.synced_pages,
            'syncedEvents': self.synced_events,
            'expiringTokens': [token.to_dict() for token in self.expiring_tokens],
        }


@dataclass
class WebhookChangeOutcome:
    """Outcome of applying a single webhook change."""
    event_id: str
    verb: str
    page_id: str
    status: ChangeStatus
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        detail = {
            'eventId': self.event_id,
            'verb': self.verb,
            'pageId': self.page_id,
            'status': self.status.value,
        }
        if self.reason:
            detail['reason'] = self.reason
        return detail


@dataclass
class WebhookProcessingResult:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    details: List[WebhookChangeOutcome] = field(default_factory=list)

    def record(self, outcome: WebhookChangeOutcome) -> None:
        self.details.append(outcome)
        if outcome.status == ChangeStatus.SUCCESS:
            self.processed += 1
        elif outcome.status == ChangeStatus.FAILED:
            self.failed += 1
        else:
            self.skipped += 1


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


@dataclass
class TokenRefreshResult:
    """Result of a scheduled token refresh run."""
    checked_pages: int = 0
    refreshed: List[str] = field(default_factory=list)
    expired: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'checkedPages': self.checked_pages,
            'refreshedPages': self.refreshed,
            'expiredPages': self.expired,
            'failedPages': self.failed,
        }
