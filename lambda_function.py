"""AWS Lambda handler for Event Catalog Sync."""
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from processor.curation import archive, mark_imported
from processor.normalizer import EventNormalizer
from processor.orchestrator import RunOrchestrator
from processor.status_engine import ImageChangePolicy, StatusEngine
from scraper.registry import build_sources
from storage.dynamodb_catalog import DynamoDBCatalog, RecordNotFoundError
from storage.run_lock import DynamoDBRunLock, InProcessRunLock

# Attributes every LogRecord has; anything else came in through extra=
_RESERVED_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}


class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        for key, value in vars(record).items():
            if key not in _RESERVED_RECORD_ATTRS:
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


@dataclass
class SyncConfig:
    """Settings read from the environment."""
    table_name: str
    lock_table_name: Optional[str]
    lock_lease_seconds: int
    log_level: str
    timeout_seconds: int
    sources: List[str]
    default_city: str
    image_change_policy: ImageChangePolicy
    region_name: Optional[str]


def load_config(environ: Mapping[str, str]) -> SyncConfig:
    """
    Read configuration from environment variables.

    Raises:
        ValueError: If a numeric setting or the image policy is invalid
    """
    return SyncConfig(
        table_name=environ.get('CATALOG_TABLE_NAME', 'event-catalog'),
        lock_table_name=environ.get('LOCK_TABLE_NAME') or None,
        lock_lease_seconds=int(environ.get('LOCK_LEASE_SECONDS', '900')),
        log_level=environ.get('LOG_LEVEL', 'INFO'),
        timeout_seconds=int(environ.get('TIMEOUT_SECONDS', '30')),
        sources=[
            name.strip() for name in environ.get('SOURCES', 'ticketmaster').split(',')
            if name.strip()
        ],
        default_city=environ.get('DEFAULT_CITY', EventNormalizer.DEFAULT_CITY),
        image_change_policy=ImageChangePolicy(
            environ.get('IMAGE_CHANGE_POLICY', ImageChangePolicy.CARRY.value).lower()
        ),
        region_name=environ.get('AWS_REGION') or None
    )


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {'statusCode': status_code, 'body': json.dumps(body, default=str)}


def handle_curation(event: Dict[str, Any], catalog: DynamoDBCatalog) -> Dict[str, Any]:
    """
    Apply an operator action: mark_imported or archive.

    Args:
        event: Payload with action, source_event_url and, for imports, user_id and notes
        catalog: Catalog to write to

    Returns:
        Response dict with statusCode and body
    """
    logger = logging.getLogger(__name__)
    action = event.get('action')
    key = event.get('source_event_url')

    if not key:
        return _response(400, {'message': 'source_event_url is required'})

    try:
        if action == 'mark_imported':
            imported_meta = mark_imported(
                catalog,
                key,
                user_id=event.get('user_id') or '',
                notes=event.get('notes') or ''
            )
            body = {
                'message': 'Event imported',
                'source_event_url': key,
                'imported_at': imported_meta.imported_at.isoformat()
            }
        elif action == 'archive':
            archived_at = archive(catalog, key)
            body = {
                'message': 'Event archived',
                'source_event_url': key,
                'archived_at': archived_at.isoformat()
            }
        else:
            return _response(400, {'message': f"Unknown action: {action}"})
    except ValueError as e:
        return _response(400, {'message': str(e)})
    except RecordNotFoundError:
        logger.warning(f"Curation action {action} for unknown event {key}")
        return _response(404, {'message': 'Event not found', 'source_event_url': key})

    return _response(200, body)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler function for Event Catalog Sync.

    Scheduled invocations run every configured source; a payload with
    "sources" runs that subset, and a payload with "action" applies an
    operator action to one event.

    Args:
        event: EventBridge event or invocation payload
        context: Lambda context object

    Returns:
        Response dict with statusCode and summary
    """
    event = event or {}
    start_time = time.time()

    try:
        config = load_config(os.environ)
    except ValueError as e:
        setup_logging()
        logging.getLogger(__name__).error(f"Invalid configuration: {e}")
        return _response(500, {
            'message': 'Invalid configuration',
            'error': str(e),
            'error_type': type(e).__name__
        })

    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    try:
        catalog = DynamoDBCatalog(config.table_name, region_name=config.region_name)

        if event.get('action'):
            return handle_curation(event, catalog)

        logger.info(
            "Lambda execution started",
            extra={
                'table_name': config.table_name,
                'sources': event.get('sources') or config.sources,
                'timeout_seconds': config.timeout_seconds
            }
        )

        sources = build_sources(
            event.get('sources') or config.sources,
            os.environ,
            timeout=config.timeout_seconds
        )

        if config.lock_table_name:
            run_lock = DynamoDBRunLock(
                config.lock_table_name,
                lease_seconds=config.lock_lease_seconds,
                region_name=config.region_name
            )
        else:
            run_lock = InProcessRunLock()

        orchestrator = RunOrchestrator(
            engine=StatusEngine(catalog, image_policy=config.image_change_policy),
            normalizer=EventNormalizer(default_city=config.default_city),
            run_lock=run_lock
        )
        summary = orchestrator.run_all(sources)

        duration = time.time() - start_time
        failed = summary.failed_sources

        if not failed:
            status_code, message = 200, 'Sync completed successfully'
        elif len(failed) < len(summary.per_source):
            status_code, message = 207, 'Sync completed with source failures'
        else:
            status_code, message = 500, 'Sync failed for every source'

        logger.info(
            "Lambda execution completed",
            extra={
                'duration_seconds': round(duration, 2),
                'failed_sources': failed
            }
        )

        body = summary.to_dict()
        body['message'] = message
        body['duration_seconds'] = round(duration, 2)
        return _response(status_code, body)

    except Exception as e:
        duration = time.time() - start_time

        logger.error(
            f"Lambda execution failed: {str(e)}",
            extra={
                'duration_seconds': round(duration, 2),
                'error_type': type(e).__name__
            },
            exc_info=True
        )

        return _response(500, {
            'message': 'Sync failed',
            'error': str(e),
            'error_type': type(e).__name__,
            'duration_seconds': round(duration, 2)
        })
