"""Tests for operator curation actions."""
import pytest

from processor.curation import archive, mark_imported
from processor.models import CatalogEvent, EventStatus
from storage.dynamodb_catalog import RecordNotFoundError


@pytest.fixture
def stored_event(catalog, clock, make_event):
    record = CatalogEvent.from_normalized(make_event(url='u1'), clock.now)
    catalog.insert(record)
    return record


def test_mark_imported_sets_status_and_meta(catalog, clock, stored_event):
    clock.advance(hours=2)

    meta = mark_imported(catalog, 'u1', user_id='operator-1', notes='featured', clock=clock)

    record = catalog.find_by_key('u1')
    assert record.status == EventStatus.IMPORTED
    assert record.imported_meta == meta
    assert meta.imported_at == clock.now
    assert meta.imported_by_user_id == 'operator-1'
    assert meta.notes == 'featured'
    assert record.content == stored_event.content


def test_mark_imported_requires_user(catalog, stored_event):
    with pytest.raises(ValueError):
        mark_imported(catalog, 'u1', user_id='')


def test_mark_imported_unknown_key(catalog):
    with pytest.raises(RecordNotFoundError):
        mark_imported(catalog, 'missing', user_id='operator-1')


def test_archive_sets_inactive_and_marks_manual(catalog, clock, stored_event):
    archived_at = archive(catalog, 'u1', clock=clock)

    record = catalog.find_by_key('u1')
    assert record.status == EventStatus.INACTIVE
    assert record.archived_at == archived_at
    assert record.manually_archived


def test_archive_imported_event(catalog, clock, stored_event):
    """Any state may be archived by hand, including imported."""
    mark_imported(catalog, 'u1', user_id='operator-1', clock=clock)

    archive(catalog, 'u1', clock=clock)

    record = catalog.find_by_key('u1')
    assert record.status == EventStatus.INACTIVE
    assert record.imported_meta is not None


def test_archive_unknown_key(catalog):
    with pytest.raises(RecordNotFoundError):
        archive(catalog, 'missing')
