"""Unit tests for DynamoDBCatalog."""
from datetime import datetime, timedelta, timezone

import pytest

from processor.models import (
    CatalogEvent,
    CatalogUpdate,
    EventStatus,
    ImportedMeta,
    Venue,
)
from storage.dynamodb_catalog import (
    CurationConflictError,
    DuplicateKeyError,
    RecordNotFoundError,
)

NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_record(make_event):
    """Create a sample CatalogEvent for testing."""
    return CatalogEvent.from_normalized(
        make_event(url='https://e.example.com/1', end=NOW + timedelta(days=40)),
        NOW
    )


def test_find_by_key_missing(catalog):
    assert catalog.find_by_key('https://e.example.com/missing') is None


def test_insert_and_find_round_trip(catalog, sample_record):
    catalog.insert(sample_record)

    assert catalog.find_by_key(sample_record.source_event_url) == sample_record


def test_insert_duplicate_key_raises(catalog, sample_record):
    catalog.insert(sample_record)

    with pytest.raises(DuplicateKeyError):
        catalog.insert(sample_record)


def test_insert_stores_expected_item_shape(aws, catalog, sample_record):
    """Test the raw item layout written to DynamoDB."""
    catalog.insert(sample_record)

    item = aws.Table(catalog.table_name).get_item(
        Key={'source_event_url': sample_record.source_event_url}
    )['Item']

    assert item['status'] == 'new'
    assert item['source_name'] == 'Ticketmaster'
    assert item['venue'] == {'name': 'Opera House', 'address': 'Bennelong Point', 'city': 'Sydney'}
    assert item['category'] == ['Music']
    assert item['start_at'] == '2025-04-12T19:30:00+00:00'
    assert item['scrape_meta']['first_seen_at'] == NOW.isoformat()
    assert 'imported_meta' not in item
    assert 'archived_at' not in item


def test_update_fields_content_and_meta(catalog, sample_record, make_event):
    catalog.insert(sample_record)
    later = NOW + timedelta(hours=6)
    new_content = make_event(
        title='Updated Title',
        venue=Venue(name='Town Hall', address='483 George St', city='Sydney'),
        image_url=None
    ).content

    catalog.update_fields(
        sample_record.source_event_url,
        CatalogUpdate(
            content=new_content,
            status=EventStatus.UPDATED,
            last_seen_at=later,
            last_changed_at=later
        )
    )

    record = catalog.find_by_key(sample_record.source_event_url)
    assert record.content == new_content
    assert record.status == EventStatus.UPDATED
    assert record.scrape_meta.first_seen_at == NOW
    assert record.scrape_meta.last_seen_at == later
    assert record.scrape_meta.last_changed_at == later
    assert record.category == sample_record.category


def test_update_fields_missing_record_raises(catalog):
    with pytest.raises(RecordNotFoundError):
        catalog.update_fields('https://e.example.com/missing', CatalogUpdate(last_seen_at=NOW))


def test_update_fields_empty_update_is_noop(catalog):
    catalog.update_fields('https://e.example.com/missing', CatalogUpdate())


def test_guarded_update_refused_for_imported_record(catalog, sample_record, make_event):
    catalog.insert(sample_record)
    catalog.apply_curation(
        sample_record.source_event_url,
        EventStatus.IMPORTED,
        imported_meta=ImportedMeta(imported_at=NOW, imported_by_user_id='operator-1')
    )

    with pytest.raises(CurationConflictError):
        catalog.update_fields(
            sample_record.source_event_url,
            CatalogUpdate(content=make_event(title='Other').content, status=EventStatus.UPDATED),
            guard_curation=True
        )

    assert catalog.find_by_key(sample_record.source_event_url).title == 'Concert'


def test_guarded_update_refused_for_archived_record(catalog, sample_record):
    catalog.insert(sample_record)
    catalog.apply_curation(sample_record.source_event_url, EventStatus.INACTIVE, archived_at=NOW)

    with pytest.raises(CurationConflictError):
        catalog.update_fields(
            sample_record.source_event_url,
            CatalogUpdate(status=EventStatus.UPDATED),
            guard_curation=True
        )


def test_apply_curation_import(catalog, sample_record):
    catalog.insert(sample_record)
    meta = ImportedMeta(imported_at=NOW, imported_by_user_id='operator-1', notes='front page')

    catalog.apply_curation(sample_record.source_event_url, EventStatus.IMPORTED, imported_meta=meta)

    record = catalog.find_by_key(sample_record.source_event_url)
    assert record.status == EventStatus.IMPORTED
    assert record.imported_meta == meta
    assert record.curated


def test_apply_curation_missing_record_raises(catalog):
    with pytest.raises(RecordNotFoundError):
        catalog.apply_curation('https://e.example.com/missing', EventStatus.INACTIVE, archived_at=NOW)


class TestBulkUpdateWhere:
    """Test cases for the conditional bulk update used by retirement."""

    def _insert(self, catalog, make_event, url, source='Ticketmaster', status=EventStatus.NEW):
        record = CatalogEvent.from_normalized(make_event(url=url, source=source), NOW)
        record.status = status
        catalog.insert(record)

    def test_excludes_keys_statuses_and_other_sources(self, catalog, make_event):
        self._insert(catalog, make_event, 'a')
        self._insert(catalog, make_event, 'b', status=EventStatus.UPDATED)
        self._insert(catalog, make_event, 'c', status=EventStatus.IMPORTED)
        self._insert(catalog, make_event, 'd', status=EventStatus.INACTIVE)
        self._insert(catalog, make_event, 'e')
        self._insert(catalog, make_event, 'z', source='Eventbrite')
        later = NOW + timedelta(hours=6)

        count = catalog.bulk_update_where(
            'Ticketmaster',
            excluded_keys={'e'},
            excluded_statuses=[EventStatus.INACTIVE, EventStatus.IMPORTED],
            update=CatalogUpdate(status=EventStatus.INACTIVE, last_seen_at=later)
        )

        assert count == 2
        assert catalog.find_by_key('a').status == EventStatus.INACTIVE
        assert catalog.find_by_key('a').scrape_meta.last_seen_at == later
        assert catalog.find_by_key('b').status == EventStatus.INACTIVE
        assert catalog.find_by_key('c').status == EventStatus.IMPORTED
        assert catalog.find_by_key('d').scrape_meta.last_seen_at == NOW
        assert catalog.find_by_key('e').status == EventStatus.NEW
        assert catalog.find_by_key('z').status == EventStatus.NEW

    def test_no_matches_returns_zero(self, catalog):
        count = catalog.bulk_update_where(
            'Nobody',
            excluded_keys=set(),
            excluded_statuses=[EventStatus.INACTIVE],
            update=CatalogUpdate(status=EventStatus.INACTIVE)
        )

        assert count == 0

    def test_large_source(self, catalog, make_event):
        """Test bulk update across many records of one source."""
        for i in range(60):
            self._insert(catalog, make_event, f'https://e.example.com/{i}')

        count = catalog.bulk_update_where(
            'Ticketmaster',
            excluded_keys=set(),
            excluded_statuses=[EventStatus.INACTIVE, EventStatus.IMPORTED],
            update=CatalogUpdate(status=EventStatus.INACTIVE, last_seen_at=NOW)
        )

        assert count == 60
        statuses = {r.status for r in catalog.get_source_events('Ticketmaster').values()}
        assert statuses == {EventStatus.INACTIVE}


def test_get_source_events_skips_malformed_items(aws, catalog, sample_record):
    catalog.insert(sample_record)
    aws.Table(catalog.table_name).put_item(Item={
        'source_event_url': 'https://e.example.com/broken',
        'source_name': 'Ticketmaster'
    })

    events = catalog.get_source_events('Ticketmaster')

    assert list(events) == [sample_record.source_event_url]
