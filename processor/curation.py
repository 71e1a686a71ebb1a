"""Operator actions on catalog records, outside the automated reconcile path."""
import logging
from datetime import datetime
from typing import Callable, Optional

from processor.models import EventStatus, ImportedMeta
from processor.status_engine import utc_now

logger = logging.getLogger(__name__)


def mark_imported(
    catalog,
    source_event_url: str,
    user_id: str,
    notes: str = '',
    clock: Optional[Callable[[], datetime]] = None
) -> ImportedMeta:
    """
    Mark a record as imported by an operator.

    Imported records keep their content from then on: reconciliation only
    advances their last_seen_at stamp.

    Raises:
        ValueError: If user_id is empty
        RecordNotFoundError: If no record has this key
    """
    if not user_id:
        raise ValueError('user_id is required to import an event')

    now = (clock or utc_now)()
    imported_meta = ImportedMeta(
        imported_at=now,
        imported_by_user_id=user_id,
        notes=notes or ''
    )
    catalog.apply_curation(
        source_event_url,
        EventStatus.IMPORTED,
        imported_meta=imported_meta
    )
    logger.info(f"Event {source_event_url} imported by {user_id}")
    return imported_meta


def archive(
    catalog,
    source_event_url: str,
    clock: Optional[Callable[[], datetime]] = None
) -> datetime:
    """
    Archive a record by hand.

    Unlike automatic retirement, a manual archive is not undone when the
    listing shows up again in a later fetch.

    Raises:
        RecordNotFoundError: If no record has this key
    """
    now = (clock or utc_now)()
    catalog.apply_curation(source_event_url, EventStatus.INACTIVE, archived_at=now)
    logger.info(f"Event {source_event_url} archived")
    return now
