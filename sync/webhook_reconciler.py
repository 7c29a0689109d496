"""Webhook verification and per-change reconciliation of page events."""
import hashlib
import hmac
import logging
from typing import Any, Dict, Mapping, Optional

from processor.error_sanitizer import sanitize_error
from processor.event_normalizer import normalize_event
from processor.models import (
    ChangeStatus,
    ValidationResult,
    WebhookChangeOutcome,
    WebhookProcessingResult,
    WebhookVerb,
)
from upstream.errors import AuthInvalidError

logger = logging.getLogger(__name__)

EXPECTED_OBJECT = 'page'
EVENTS_FIELD = 'events'
SIGNATURE_PREFIX = 'sha256='


def verify_signature(raw_payload: bytes, signature_header: Optional[str], secret: str) -> bool:
    """
    Check an X-Hub-Signature-256 header against the raw request body.

    Args:
        raw_payload: Exact request body bytes
        signature_header: Header value, expected as sha256=<hex>
        secret: App secret used as the HMAC key

    Returns:
        True only if the header is well formed and matches
    """
    if not signature_header:
        logger.warning("Webhook request missing signature header")
        return False

    if not signature_header.startswith(SIGNATURE_PREFIX):
        logger.warning("Invalid webhook signature format")
        return False

    if isinstance(raw_payload, str):
        raw_payload = raw_payload.encode('utf-8')

    provided = signature_header[len(SIGNATURE_PREFIX):]
    calculated = hmac.new(secret.encode('utf-8'), raw_payload, hashlib.sha256).hexdigest()

    if len(provided) != len(calculated):
        logger.warning(
            f"Webhook signature length mismatch: expected {len(calculated)}, got {len(provided)}"
        )
        return False

    try:
        provided_bytes = bytes.fromhex(provided)
    except ValueError:
        logger.warning("Webhook signature is not valid hex")
        return False

    is_valid = hmac.compare_digest(provided_bytes, bytes.fromhex(calculated))
    if not is_valid:
        logger.warning(
            f"Webhook signature verification failed (got {provided[:10]}...)"
        )
    return is_valid


def validate_payload(payload: Any) -> ValidationResult:
    """
    Structurally validate a webhook body, collecting every violation.

    Args:
        payload: Parsed JSON body

    Returns:
        ValidationResult with is_valid and the list of errors
    """
    errors = []

    if not isinstance(payload, dict):
        return ValidationResult(is_valid=False, errors=['Payload must be a JSON object'])

    if payload.get('object') != EXPECTED_OBJECT:
        errors.append(f"object must be '{EXPECTED_OBJECT}'")

    entries = payload.get('entry')
    if not isinstance(entries, list):
        errors.append('entry must be an array')
        entries = []

    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            errors.append(f"entry[{i}] must be an object")
            continue
        if not isinstance(entry.get('id'), str):
            errors.append(f"entry[{i}].id must be a string")

        changes = entry.get('changes')
        if not isinstance(changes, list):
            errors.append(f"entry[{i}].changes must be an array")
            continue

        for j, change in enumerate(changes):
            where = f"entry[{i}].changes[{j}]"
            if not isinstance(change, dict):
                errors.append(f"{where} must be an object")
                continue
            if change.get('field') != EVENTS_FIELD:
                continue

            value = change.get('value')
            if not isinstance(value, dict):
                errors.append(f"{where}.value must be an object")
                continue
            if not isinstance(value.get('event_id'), str):
                errors.append(f"{where}.value.event_id must be a string")
            if value.get('verb') not in {verb.value for verb in WebhookVerb}:
                errors.append(f"{where}.value.verb must be one of create, update, delete")

    return ValidationResult(is_valid=not errors, errors=errors)


def verify_challenge(query: Optional[Mapping[str, str]], expected_token: str) -> Optional[str]:
    """
    Answer the webhook subscription handshake.

    Args:
        query: Query parameters (hub.mode, hub.challenge, hub.verify_token)
        expected_token: Configured verify token

    Returns:
        The challenge to echo back, or None if verification fails
    """
    query = query or {}
    mode = query.get('hub.mode')
    challenge = query.get('hub.challenge')
    token = (query.get('hub.verify_token') or '').strip()
    expected = (expected_token or '').strip()

    logger.info(
        f"Webhook verification request received (mode={mode}, "
        f"has_challenge={bool(challenge)}, has_token={bool(token)})"
    )

    token_matches = bool(expected) and hmac.compare_digest(
        token.encode('utf-8'), expected.encode('utf-8')
    )
    if mode == 'subscribe' and token_matches and challenge:
        logger.info("Webhook verification successful")
        return challenge

    logger.warning(f"Webhook verification failed (mode={mode}, token_match={token_matches})")
    return None


class WebhookReconciler:
    """Applies webhook event changes to the events table one at a time."""

    def __init__(
        self,
        page_store,
        credential_store,
        client,
        token_tracker,
        image_pipeline,
        object_store,
        past_events_days: int = 30
    ):
        self.page_store = page_store
        self.credential_store = credential_store
        self.client = client
        self.token_tracker = token_tracker
        self.image_pipeline = image_pipeline
        self.object_store = object_store
        self.past_events_days = past_events_days
        self._appliers = {
            WebhookVerb.CREATE: self._apply_upsert,
            WebhookVerb.UPDATE: self._apply_upsert,
            WebhookVerb.DELETE: self._apply_delete,
        }

    def apply_change(self, event_id: str, verb, page_id: str) -> WebhookChangeOutcome:
        """
        Apply one change for an event.

        Never raises; failures come back as a failed outcome with a
        sanitized reason.

        Args:
            event_id: Upstream event ID
            verb: WebhookVerb (or its string value)
            page_id: Page the event belongs to

        Returns:
            WebhookChangeOutcome
        """
        verb_name = verb.value if isinstance(verb, WebhookVerb) else str(verb)

        def outcome(status: ChangeStatus, reason: Optional[str] = None) -> WebhookChangeOutcome:
            return WebhookChangeOutcome(
                event_id=event_id,
                verb=verb_name,
                page_id=page_id,
                status=status,
                reason=reason
            )

        try:
            verb = WebhookVerb(verb_name)
        except ValueError:
            logger.warning(f"Unsupported webhook verb '{verb_name}' for event {event_id}")
            return outcome(ChangeStatus.FAILED, 'Unsupported verb')

        try:
            page = self.page_store.get_page(page_id)
            if page is None or not page.is_syncable:
                logger.debug(f"Webhook change for inactive page {page_id}, skipping {event_id}")
                return outcome(ChangeStatus.SKIPPED, 'Page not active')

            status, reason = self._appliers[verb](event_id, page_id)
            return outcome(status, reason)
        except AuthInvalidError:
            logger.error(f"Access token rejected for page {page_id} during webhook change")
            try:
                self.token_tracker.mark_expired(page_id)
            except Exception as e:
                logger.error(f"Failed to mark token expired for page {page_id}: {e}")
            return outcome(ChangeStatus.FAILED, 'Access token invalid')
        except Exception as e:
            logger.error(
                f"Failed to process webhook change {verb_name} for event {event_id}: {e}",
                extra={'event_id': event_id, 'page_id': page_id},
                exc_info=True
            )
            return outcome(ChangeStatus.FAILED, sanitize_error(e)['message'])

    def process_payload(self, payload: Dict[str, Any]) -> WebhookProcessingResult:
        """
        Apply every events change in a webhook payload, in order.

        Changes on other fields are ignored. Never raises.

        Args:
            payload: Parsed webhook body

        Returns:
            WebhookProcessingResult with counts and per-change details
        """
        result = WebhookProcessingResult()

        if not isinstance(payload, dict) or payload.get('object') != EXPECTED_OBJECT:
            logger.warning("Received non-page webhook payload")
            return result

        entries = payload.get('entry') or []
        logger.info(f"Processing webhook payload with {len(entries)} entries")

        for entry in entries:
            if not isinstance(entry, dict):
                continue
            for change in entry.get('changes') or []:
                if not isinstance(change, dict) or change.get('field') != EVENTS_FIELD:
                    logger.debug("Skipping non-event change")
                    continue

                value = change.get('value') or {}
                event_id = value.get('event_id')
                verb = value.get('verb')
                if not event_id or not verb:
                    logger.warning("Webhook change missing event_id or verb")
                    continue

                page_id = value.get('page_id') or entry.get('id')
                result.record(self.apply_change(event_id, verb, page_id))

        logger.info(
            f"Webhook processing completed: {result.processed} processed, "
            f"{result.failed} failed, {result.skipped} skipped"
        )
        return result

    def _apply_delete(self, event_id: str, page_id: str):
        self.page_store.delete_event(event_id)
        logger.info(f"Event {event_id} deleted via webhook (page {page_id})")
        return ChangeStatus.SUCCESS, None

    def _apply_upsert(self, event_id: str, page_id: str):
        credential = self.credential_store.get(page_id)
        if not credential:
            logger.error(f"No access token for page {page_id} in webhook handler")
            return ChangeStatus.FAILED, 'No access token'

        events = self.client.get_relevant_events(page_id, credential, self.past_events_days)
        event = next((e for e in events if e.id == event_id), None)

        if event is None:
            logger.warning(f"Event {event_id} not found upstream, removing local copy")
            self.page_store.delete_event(event_id)
            return ChangeStatus.SUCCESS, 'Event not found, removed from DB'

        try:
            bucket = self.object_store.bucket()
        except Exception as e:
            logger.warning(f"Image bucket unavailable for webhook, using upstream URL: {e}")
            bucket = None

        cover_url = self.image_pipeline.process_cover_image(event, page_id, bucket)
        record = normalize_event(event, page_id, cover_url)
        self.page_store.batch_upsert_events([record])

        logger.info(f"Event {event_id} synced via webhook (page {page_id})")
        return ChangeStatus.SUCCESS, None
