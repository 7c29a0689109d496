"""DynamoDB manager for page subscriptions and event records."""
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from processor.models import EventRecord, PageSubscription, TokenStatus, parse_timestamp

logger = logging.getLogger(__name__)


def _to_dynamo(value: Dict[str, Any]) -> Dict[str, Any]:
    """DynamoDB rejects floats; round-trip through JSON to get Decimals."""
    return json.loads(json.dumps(value), parse_float=Decimal)


class DynamoDBManager:
    """Manager for the pages and events tables."""

    BATCH_SIZE = 25  # DynamoDB batch operation limit

    def __init__(self, pages_table: str, events_table: str):
        """
        Initialize DynamoDB resource and table references.

        Args:
            pages_table: Name of the page subscriptions table (key: page_id)
            events_table: Name of the events table (key: event_id)
        """
        self.dynamodb = boto3.resource('dynamodb')
        self.pages = self.dynamodb.Table(pages_table)
        self.events = self.dynamodb.Table(events_table)
        logger.info(
            f"Initialized DynamoDBManager for tables: {pages_table}, {events_table}"
        )

    # Pages

    def get_active_pages(self) -> List[PageSubscription]:
        """
        Scan the pages table for pages that are active and not expired.

        Returns:
            List of PageSubscription objects
        """
        logger.info("Scanning pages table for active pages")
        scan_filter = Attr('active').eq(True) & (
            Attr('token_status').not_exists() | Attr('token_status').ne(TokenStatus.EXPIRED.value)
        )

        try:
            response = self.pages.scan(FilterExpression=scan_filter)
            items = response.get('Items', [])

            while 'LastEvaluatedKey' in response:
                response = self.pages.scan(
                    FilterExpression=scan_filter,
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            logger.error(f"Error scanning pages table: {e}")
            raise

        pages = [self._item_to_page(item) for item in items]
        logger.info(f"Found {len(pages)} active pages")
        return pages

    def get_page(self, page_id: str) -> Optional[PageSubscription]:
        try:
            response = self.pages.get_item(Key={'page_id': page_id})
        except ClientError as e:
            logger.error(f"Error reading page {page_id}: {e}")
            raise

        item = response.get('Item')
        return self._item_to_page(item) if item else None

    def save_page(
        self,
        page_id: str,
        name: str,
        token_expires_at: Optional[datetime] = None,
        active: bool = True
    ) -> None:
        """
        Create or replace a page subscription with a valid token.

        Args:
            page_id: Upstream page ID
            name: Page display name
            token_expires_at: When the stored credential stops being valid
            active: Whether the page takes part in sync
        """
        item = {
            'page_id': page_id,
            'name': name,
            'active': active,
            'token_status': TokenStatus.VALID.value,
            'updated_at': datetime.now(timezone.utc).isoformat(),
        }
        if token_expires_at:
            item['token_expires_at'] = token_expires_at.isoformat()

        self.pages.put_item(Item=item)
        logger.info(f"Saved page {page_id}")

    def get_token_expiry(self, page_id: str) -> Optional[datetime]:
        """Stored token expiry for a page, or None if missing or unparseable."""
        page = self.get_page(page_id)
        return page.token_expires_at if page else None

    def mark_token_expired(self, page_id: str) -> None:
        """Set token_status to expired and deactivate the page."""
        try:
            self.pages.update_item(
                Key={'page_id': page_id},
                UpdateExpression='SET token_status = :status, active = :active, updated_at = :now',
                ExpressionAttributeValues={
                    ':status': TokenStatus.EXPIRED.value,
                    ':active': False,
                    ':now': datetime.now(timezone.utc).isoformat(),
                }
            )
        except ClientError as e:
            logger.error(f"Failed to mark token expired for page {page_id}: {e}")
            raise

    # Events

    def batch_upsert_events(self, records: List[EventRecord]) -> int:
        """
        Write events to DynamoDB in batches of 25 items.

        Batches are committed one after another; a failing batch raises and
        leaves earlier batches written. Every write is a put keyed by event
        id, so re-running is safe. An event that is already stored keeps its
        original createdAt.

        Args:
            records: EventRecord objects to write

        Returns:
            Count of written events
        """
        if not records:
            return 0

        logger.info(f"Writing {len(records)} events to DynamoDB")
        written = 0

        for i in range(0, len(records), self.BATCH_SIZE):
            batch = records[i:i + self.BATCH_SIZE]
            try:
                created_at = self._existing_created_at([record.id for record in batch])
                with self.events.batch_writer(overwrite_by_pkeys=['event_id']) as writer:
                    for record in batch:
                        item = self._record_to_item(record)
                        if record.id in created_at:
                            item['createdAt'] = created_at[record.id]
                        writer.put_item(Item=item)
            except ClientError as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1} "
                    f"after {written} events written: {e}"
                )
                raise
            written += len(batch)
            logger.debug(f"Wrote batch of {len(batch)} events ({written}/{len(records)})")

        logger.info(f"Successfully wrote {written} events")
        return written

    def delete_event(self, event_id: str) -> None:
        try:
            self.events.delete_item(Key={'event_id': event_id})
        except ClientError as e:
            logger.error(f"Error deleting event {event_id}: {e}")
            raise
        logger.info(f"Deleted event {event_id}")

    def _existing_created_at(self, event_ids: List[str]) -> Dict[str, str]:
        """createdAt of the given events that are already stored, keyed by event id."""
        keys = [{'event_id': event_id} for event_id in dict.fromkeys(event_ids)]
        request = {
            self.events.name: {
                'Keys': keys,
                'ProjectionExpression': 'event_id, createdAt',
            }
        }

        created_at: Dict[str, str] = {}
        while request:
            response = self.dynamodb.batch_get_item(RequestItems=request)
            for item in response.get('Responses', {}).get(self.events.name, []):
                if item.get('createdAt'):
                    created_at[item['event_id']] = item['createdAt']
            request = response.get('UnprocessedKeys') or None
        return created_at

    def _record_to_item(self, record: EventRecord) -> Dict[str, Any]:
        item = record.to_dict()
        item['event_id'] = item.pop('id')
        return _to_dynamo(item)

    def _item_to_page(self, item: Dict[str, Any]) -> PageSubscription:
        try:
            token_status = TokenStatus(item.get('token_status', TokenStatus.VALID.value))
        except ValueError:
            logger.warning(
                f"Unknown token status for page {item['page_id']}: {item.get('token_status')}"
            )
            token_status = TokenStatus.VALID

        return PageSubscription(
            id=item['page_id'],
            name=item.get('name', ''),
            active=bool(item.get('active', False)),
            token_status=token_status,
            token_expires_at=parse_timestamp(item.get('token_expires_at'))
        )
