"""DynamoDB-backed event catalog."""
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from processor.models import (
    CatalogEvent,
    CatalogUpdate,
    EventStatus,
    ImportedMeta,
    ScrapeMeta,
    Venue,
)

logger = logging.getLogger(__name__)

CONDITIONAL_CHECK_FAILED = 'ConditionalCheckFailedException'


class CatalogError(Exception):
    """Base class for catalog contract errors."""


class DuplicateKeyError(CatalogError):
    """Insert attempted for a key that already exists."""


class RecordNotFoundError(CatalogError):
    """Update attempted for a key that does not exist."""


class CurationConflictError(CatalogError):
    """Guarded write refused because an operator curated the record."""


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DynamoDBCatalog:
    """Catalog of events stored in a DynamoDB table keyed by source_event_url."""

    KEY_ATTRIBUTE = 'source_event_url'
    SOURCE_INDEX = 'source-index'

    def __init__(self, table_name: str, region_name: Optional[str] = None):
        """
        Initialize DynamoDB resource and table reference.

        Args:
            table_name: Name of the catalog table
            region_name: AWS region, defaults to the environment's region
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBCatalog for table: {table_name}")

    def find_by_key(self, source_event_url: str) -> Optional[CatalogEvent]:
        """
        Look up a record by its natural key.

        Args:
            source_event_url: Natural key of the record

        Returns:
            CatalogEvent or None if no record exists
        """
        response = self.table.get_item(
            Key={self.KEY_ATTRIBUTE: source_event_url},
            ConsistentRead=True
        )
        item = response.get('Item')
        if item is None:
            return None
        return self._item_to_catalog_event(item)

    def insert(self, event: CatalogEvent) -> None:
        """
        Insert a new record.

        Raises:
            DuplicateKeyError: If a record with the same key already exists
        """
        try:
            self.table.put_item(
                Item=self._catalog_event_to_item(event),
                ConditionExpression='attribute_not_exists(#pk)',
                ExpressionAttributeNames={'#pk': self.KEY_ATTRIBUTE}
            )
        except ClientError as e:
            if e.response['Error']['Code'] == CONDITIONAL_CHECK_FAILED:
                raise DuplicateKeyError(event.source_event_url) from e
            raise

    def update_fields(
        self,
        source_event_url: str,
        update: CatalogUpdate,
        guard_curation: bool = False
    ) -> None:
        """
        Apply a partial update to an existing record.

        Args:
            source_event_url: Natural key of the record
            update: Fields to set
            guard_curation: Refuse the write if the record is imported or
                manually archived at write time

        Raises:
            RecordNotFoundError: If the record does not exist
            CurationConflictError: If guard_curation is set and the record is curated
        """
        if update.is_empty():
            return

        expression, names, values = self._build_update_expression(update)
        names['#pk'] = self.KEY_ATTRIBUTE
        condition = 'attribute_exists(#pk)'
        if guard_curation:
            names['#status'] = 'status'
            names['#archived_at'] = 'archived_at'
            values[':imported'] = EventStatus.IMPORTED.value
            condition += ' AND #status <> :imported AND attribute_not_exists(#archived_at)'

        try:
            self.table.update_item(
                Key={self.KEY_ATTRIBUTE: source_event_url},
                UpdateExpression=expression,
                ConditionExpression=condition,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values
            )
        except ClientError as e:
            if e.response['Error']['Code'] != CONDITIONAL_CHECK_FAILED:
                raise
            if self.find_by_key(source_event_url) is None:
                raise RecordNotFoundError(source_event_url) from e
            raise CurationConflictError(source_event_url) from e

    def bulk_update_where(
        self,
        source_name: str,
        excluded_keys: Iterable[str],
        excluded_statuses: Iterable[EventStatus],
        update: CatalogUpdate
    ) -> int:
        """
        Update every record of a source except the excluded keys and statuses.

        Each write re-checks the status condition, so a record curated while
        the pass runs is left alone.

        Args:
            source_name: Only records of this source are considered
            excluded_keys: Natural keys to leave untouched
            excluded_statuses: Statuses to leave untouched
            update: Fields to set on every matching record

        Returns:
            Number of records updated
        """
        excluded_keys = set(excluded_keys)
        statuses = [status.value for status in excluded_statuses]

        expression, names, values = self._build_update_expression(update)
        names['#pk'] = self.KEY_ATTRIBUTE
        condition = 'attribute_exists(#pk)'
        if statuses:
            names['#status'] = 'status'
            placeholders = []
            for i, status in enumerate(statuses):
                values[f':x{i}'] = status
                placeholders.append(f':x{i}')
            condition += f" AND NOT (#status IN ({', '.join(placeholders)}))"

        updated_count = 0
        for key in self._query_source_keys(source_name, statuses):
            if key in excluded_keys:
                continue
            try:
                self.table.update_item(
                    Key={self.KEY_ATTRIBUTE: key},
                    UpdateExpression=expression,
                    ConditionExpression=condition,
                    ExpressionAttributeNames=names,
                    ExpressionAttributeValues=values
                )
                updated_count += 1
            except ClientError as e:
                if e.response['Error']['Code'] != CONDITIONAL_CHECK_FAILED:
                    raise
                logger.info(f"Skipped {key}: status changed during bulk update")

        logger.info(
            f"Bulk update matched {updated_count} records for source {source_name}"
        )
        return updated_count

    def apply_curation(
        self,
        source_event_url: str,
        status: EventStatus,
        imported_meta: Optional[ImportedMeta] = None,
        archived_at: Optional[datetime] = None
    ) -> None:
        """
        Write an operator decision to a record.

        Raises:
            RecordNotFoundError: If the record does not exist
        """
        names = {'#pk': self.KEY_ATTRIBUTE, '#status': 'status'}
        values = {':status': status.value}
        assignments = ['#status = :status']

        if imported_meta is not None:
            names['#imported_meta'] = 'imported_meta'
            values[':imported_meta'] = {
                'imported_at': _to_iso(imported_meta.imported_at),
                'imported_by_user_id': imported_meta.imported_by_user_id,
                'notes': imported_meta.notes
            }
            assignments.append('#imported_meta = :imported_meta')
        if archived_at is not None:
            names['#archived_at'] = 'archived_at'
            values[':archived_at'] = _to_iso(archived_at)
            assignments.append('#archived_at = :archived_at')

        try:
            self.table.update_item(
                Key={self.KEY_ATTRIBUTE: source_event_url},
                UpdateExpression='SET ' + ', '.join(assignments),
                ConditionExpression='attribute_exists(#pk)',
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values
            )
        except ClientError as e:
            if e.response['Error']['Code'] == CONDITIONAL_CHECK_FAILED:
                raise RecordNotFoundError(source_event_url) from e
            raise

    def get_source_events(self, source_name: str) -> Dict[str, CatalogEvent]:
        """
        Retrieve every record of one source.

        Returns:
            Dictionary mapping source_event_url to CatalogEvent
        """
        events = {}
        for item in self._query_source(source_name):
            event = self._item_to_catalog_event(item)
            if event:
                events[event.source_event_url] = event
        return events

    def _query_source(self, source_name: str, filter_expression=None) -> List[dict]:
        """Query the source index, following pagination."""
        params = {
            'IndexName': self.SOURCE_INDEX,
            'KeyConditionExpression': Key('source_name').eq(source_name)
        }
        if filter_expression is not None:
            params['FilterExpression'] = filter_expression

        response = self.table.query(**params)
        items = response.get('Items', [])

        while 'LastEvaluatedKey' in response:
            response = self.table.query(
                ExclusiveStartKey=response['LastEvaluatedKey'],
                **params
            )
            items.extend(response.get('Items', []))

        return items

    def _query_source_keys(self, source_name: str, excluded_statuses: List[str]) -> List[str]:
        filter_expression = None
        if excluded_statuses:
            filter_expression = ~Attr('status').is_in(excluded_statuses)
        return [
            item[self.KEY_ATTRIBUTE]
            for item in self._query_source(source_name, filter_expression)
        ]

    def _build_update_expression(self, update: CatalogUpdate) -> Tuple[str, dict, dict]:
        """
        Render a CatalogUpdate as a SET expression.

        Every path segment goes through a name placeholder since several
        attribute names (status, name) are DynamoDB reserved words.
        """
        assignments: List[Tuple[Tuple[str, ...], object]] = []

        if update.content is not None:
            content = update.content
            assignments.extend([
                (('title',), content.title),
                (('description',), content.description),
                (('short_summary',), content.short_summary),
                (('start_at',), _to_iso(content.start)),
                (('end_at',), _to_iso(content.end)),
                (('venue',), self._venue_to_map(content.venue)),
                (('image_url',), content.image_url)
            ])
        if update.status is not None:
            assignments.append((('status',), update.status.value))
        if update.last_seen_at is not None:
            assignments.append((('scrape_meta', 'last_seen_at'), _to_iso(update.last_seen_at)))
        if update.last_changed_at is not None:
            assignments.append((('scrape_meta', 'last_changed_at'), _to_iso(update.last_changed_at)))

        names = {}
        values = {}
        clauses = []
        for i, (path, value) in enumerate(assignments):
            placeholders = []
            for segment in path:
                names[f'#{segment}'] = segment
                placeholders.append(f'#{segment}')
            values[f':u{i}'] = value
            clauses.append(f"{'.'.join(placeholders)} = :u{i}")

        return 'SET ' + ', '.join(clauses), names, values

    def _venue_to_map(self, venue: Venue) -> dict:
        return {'name': venue.name, 'address': venue.address, 'city': venue.city}

    def _item_to_catalog_event(self, item: dict) -> Optional[CatalogEvent]:
        """
        Convert DynamoDB item to CatalogEvent.

        Returns:
            CatalogEvent or None if the item is malformed
        """
        try:
            venue = item.get('venue') or {}
            scrape_meta = item['scrape_meta']
            imported_meta = None
            if item.get('imported_meta'):
                imported_meta = ImportedMeta(
                    imported_at=_from_iso(item['imported_meta']['imported_at']),
                    imported_by_user_id=item['imported_meta'].get('imported_by_user_id', ''),
                    notes=item['imported_meta'].get('notes') or ''
                )

            return CatalogEvent(
                title=item['title'],
                description=item.get('description') or '',
                short_summary=item.get('short_summary') or '',
                start=_from_iso(item['start_at']),
                end=_from_iso(item.get('end_at')),
                venue=Venue(
                    name=venue.get('name') or '',
                    address=venue.get('address') or '',
                    city=venue.get('city') or ''
                ),
                category=frozenset(item.get('category') or []),
                image_url=item.get('image_url'),
                source_name=item['source_name'],
                source_event_url=item[self.KEY_ATTRIBUTE],
                status=EventStatus(item['status']),
                scrape_meta=ScrapeMeta(
                    first_seen_at=_from_iso(scrape_meta['first_seen_at']),
                    last_seen_at=_from_iso(scrape_meta['last_seen_at']),
                    last_changed_at=_from_iso(scrape_meta['last_changed_at'])
                ),
                imported_meta=imported_meta,
                archived_at=_from_iso(item.get('archived_at'))
            )
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Failed to convert item to CatalogEvent: {e}")
            return None

    def _catalog_event_to_item(self, event: CatalogEvent) -> dict:
        """Convert CatalogEvent to DynamoDB item."""
        item = {
            self.KEY_ATTRIBUTE: event.source_event_url,
            'source_name': event.source_name,
            'title': event.title,
            'description': event.description,
            'short_summary': event.short_summary,
            'start_at': _to_iso(event.start),
            'end_at': _to_iso(event.end),
            'venue': self._venue_to_map(event.venue),
            'category': sorted(event.category),
            'image_url': event.image_url,
            'status': event.status.value,
            'scrape_meta': {
                'first_seen_at': _to_iso(event.scrape_meta.first_seen_at),
                'last_seen_at': _to_iso(event.scrape_meta.last_seen_at),
                'last_changed_at': _to_iso(event.scrape_meta.last_changed_at)
            }
        }

        # Add optional curation fields if present
        if event.imported_meta is not None:
            item['imported_meta'] = {
                'imported_at': _to_iso(event.imported_meta.imported_at),
                'imported_by_user_id': event.imported_meta.imported_by_user_id,
                'notes': event.imported_meta.notes
            }
        if event.archived_at is not None:
            item['archived_at'] = _to_iso(event.archived_at)

        return item
