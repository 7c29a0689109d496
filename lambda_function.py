"""AWS Lambda handlers for page events sync and webhook reconciliation."""
import base64
import binascii
import hmac
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from config import Settings
from processor.error_sanitizer import create_error_response, create_validation_error_response
from processor.token_lifecycle import TokenLifecycleTracker, get_token_status
from storage.credential_store import CredentialStore
from storage.dynamodb_manager import DynamoDBManager
from storage.image_ingestion import ImageIngestionPipeline, ImageUploadOptions
from storage.object_store import S3ObjectStore
from sync.orchestrator import SyncOrchestrator
from sync.token_refresher import TokenRefresher
from sync.webhook_reconciler import (
    WebhookReconciler,
    validate_payload,
    verify_challenge,
    verify_signature,
)
from upstream.graph_client import GraphClient

_RESERVED_LOG_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {
    'message', 'asctime'
}


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON, including any extra= fields."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_LOG_ATTRS and key not in log_data:
                log_data[key] = value

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def _components(settings: Settings) -> Dict[str, Any]:
    page_store = DynamoDBManager(
        pages_table=settings.pages_table,
        events_table=settings.events_table
    )
    return {
        'page_store': page_store,
        'credential_store': CredentialStore(secret_prefix=settings.secret_prefix),
        'client': GraphClient(timeout=settings.timeout_seconds),
        'token_tracker': TokenLifecycleTracker(page_store),
        'image_pipeline': ImageIngestionPipeline(ImageUploadOptions(
            make_public=settings.image_make_public,
            signed_url_expiry_seconds=settings.image_signed_url_expiry_seconds,
            timeout=settings.timeout_seconds
        )),
        'object_store': S3ObjectStore(default_bucket=settings.image_bucket),
    }


def build_orchestrator(settings: Settings) -> SyncOrchestrator:
    return SyncOrchestrator(
        past_events_days=settings.past_events_days,
        token_warning_days=settings.token_warning_days,
        **_components(settings)
    )


def build_reconciler(settings: Settings) -> WebhookReconciler:
    return WebhookReconciler(
        past_events_days=settings.past_events_days,
        **_components(settings)
    )


def _response(status_code: int, body: Any, content_type: str = 'application/json') -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'headers': {'Content-Type': content_type},
        'body': body if isinstance(body, str) and content_type != 'application/json' else json.dumps(body),
    }


def _header(event: Dict[str, Any], name: str) -> Optional[str]:
    headers = event.get('headers') or {}
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None


def _raw_body(event: Dict[str, Any]) -> bytes:
    body = event.get('body') or ''
    if event.get('isBase64Encoded'):
        return base64.b64decode(body, validate=True)
    return body.encode('utf-8')


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def scheduled_sync_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    EventBridge-triggered full sync. Never raises back to the scheduler.

    Returns:
        Summary dict with success flag and sync statistics
    """
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()
    logger.info("Scheduled sync started")

    try:
        result = build_orchestrator(settings).sync_all_pages()
    except Exception as e:
        logger.error(
            f"Scheduled sync failed: {e}",
            extra={
                'error_type': type(e).__name__,
                'duration_seconds': round(time.time() - start_time, 2)
            },
            exc_info=True
        )
        return {'success': False, 'timestamp': _now_iso()}

    logger.info(
        "Scheduled sync completed",
        extra={
            'synced_pages': result.synced_pages,
            'synced_events': result.synced_events,
            'expiring_tokens': len(result.expiring_tokens),
            'duration_seconds': round(time.time() - start_time, 2)
        }
    )
    return {'success': True, **result.to_dict(), 'timestamp': _now_iso()}


def manual_sync_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    API Gateway POST that triggers a full sync; requires the x-api-key header.

    Returns:
        API Gateway proxy response
    """
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    api_key = _header(event, 'x-api-key') or ''
    if not settings.sync_api_key or not hmac.compare_digest(
        api_key.encode('utf-8'), settings.sync_api_key.encode('utf-8')
    ):
        logger.warning("Manual sync rejected: invalid API key")
        return _response(401, {'success': False, 'error': 'Unauthorized', 'timestamp': _now_iso()})

    try:
        logger.info("Manual sync started")
        result = build_orchestrator(settings).sync_all_pages()
        logger.info(
            "Manual sync completed successfully",
            extra={'synced_pages': result.synced_pages, 'synced_events': result.synced_events}
        )
        return _response(200, {'success': True, **result.to_dict(), 'timestamp': _now_iso()})
    except Exception as e:
        logger.error(f"Manual sync failed: {e}", extra={'error_type': type(e).__name__}, exc_info=True)
        return _response(500, create_error_response(
            e, settings.is_development, 'Failed to sync events'
        ))


def webhook_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    API Gateway handler for the upstream webhook.

    GET answers the subscription handshake, POST applies event changes.

    Returns:
        API Gateway proxy response
    """
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    method = (event.get('httpMethod') or '').upper()

    if method == 'GET':
        challenge = verify_challenge(
            event.get('queryStringParameters'),
            settings.webhook_verify_token
        )
        if challenge:
            return _response(200, challenge, content_type='text/plain')
        return _response(403, {'error': 'Verification failed'})

    if method != 'POST':
        return _response(405, {'error': 'Method not allowed'})

    try:
        raw_body = _raw_body(event)
    except (binascii.Error, ValueError):
        logger.warning("Webhook body is not valid base64")
        return _response(400, create_validation_error_response(['Body must be valid base64']))

    if not settings.app_secret or not verify_signature(
        raw_body, _header(event, 'x-hub-signature-256'), settings.app_secret
    ):
        return _response(403, {'error': 'Invalid signature'})

    try:
        payload = json.loads(raw_body)
    except ValueError:
        logger.warning("Webhook body is not valid JSON")
        return _response(400, create_validation_error_response(['Body must be valid JSON']))

    validation = validate_payload(payload)
    if not validation.is_valid:
        logger.warning(f"Invalid webhook payload: {validation.errors}")
        return _response(400, create_validation_error_response(validation.errors))

    try:
        result = build_reconciler(settings).process_payload(payload)
    except Exception as e:
        logger.error(f"Webhook processing error: {e}", exc_info=True)
        return _response(500, create_error_response(
            e, settings.is_development, 'Failed to process webhook'
        ))

    return _response(200, {
        'success': True,
        'processed': result.processed,
        'skipped': result.skipped,
    })


def token_monitor_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    EventBridge-triggered report of page tokens nearing expiry. Never raises.

    Returns:
        Summary dict with the pages checked and their expiring tokens
    """
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    try:
        page_store = DynamoDBManager(
            pages_table=settings.pages_table,
            events_table=settings.events_table
        )
        tracker = TokenLifecycleTracker(page_store)
        pages = page_store.get_active_pages()

        expiring = []
        for page in pages:
            status = tracker.check_expiry(page.id, settings.token_warning_days)
            if not status.is_expiring:
                continue
            token_status = get_token_status(status.days_until_expiry, settings.token_warning_days)
            expiring.append({
                'pageId': page.id,
                'pageName': page.name,
                'daysUntilExpiry': status.days_until_expiry,
                'expiresAt': status.expires_at.isoformat() if status.expires_at else None,
                'status': token_status.value,
            })
    except Exception as e:
        logger.error(f"Token monitor failed: {e}", exc_info=True)
        return {'success': False, 'timestamp': _now_iso()}

    if expiring:
        logger.warning(f"{len(expiring)} page tokens need re-authorization", extra={'tokens': expiring})
    else:
        logger.info(f"All {len(pages)} page tokens are valid")

    return {
        'success': True,
        'checkedPages': len(pages),
        'expiringTokens': expiring,
        'timestamp': _now_iso(),
    }


def token_refresh_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    EventBridge-triggered renewal of page tokens nearing expiry. Never raises.

    Returns:
        Summary dict with refreshed, expired and failed page IDs
    """
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    logger = logging.getLogger(__name__)

    if not settings.app_id or not settings.app_secret:
        logger.error("Token refresh skipped: APP_ID or APP_SECRET not configured")
        return {'success': False, 'timestamp': _now_iso()}

    start_time = time.time()
    logger.info("Scheduled token refresh started")

    try:
        components = _components(settings)
        refresher = TokenRefresher(
            page_store=components['page_store'],
            credential_store=components['credential_store'],
            client=components['client'],
            token_tracker=components['token_tracker'],
            app_id=settings.app_id,
            app_secret=settings.app_secret,
            warning_days=settings.token_warning_days
        )
        result = refresher.refresh_expiring_tokens()
    except Exception as e:
        logger.error(
            f"Scheduled token refresh failed: {e}",
            extra={'error_type': type(e).__name__},
            exc_info=True
        )
        return {'success': False, 'timestamp': _now_iso()}

    logger.info(
        "Scheduled token refresh completed",
        extra={
            'refreshed': len(result.refreshed),
            'expired': len(result.expired),
            'failed': len(result.failed),
            'duration_seconds': round(time.time() - start_time, 2)
        }
    )
    return {'success': True, **result.to_dict(), 'timestamp': _now_iso()}
