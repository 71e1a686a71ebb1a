"""
Reconciliation of a source's normalized listings against the catalog.

For each incoming listing, keyed by its source URL:
    - unknown key: inserted with status ``new``
    - known key with changed content: overwritten, status ``updated``
    - known key without changes: only ``last_seen_at`` advances

Records curated by an operator (imported, or archived by hand) are never
overwritten. After the listings are applied, every record of the same source
that was not seen in the batch is retired to ``inactive``.
"""
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from botocore.exceptions import ClientError

from processor.models import (
    CatalogEvent,
    CatalogUpdate,
    EventStatus,
    NormalizedEvent,
    ReconcileReport,
)
from storage.dynamodb_catalog import (
    CatalogError,
    CurationConflictError,
    DuplicateKeyError,
    RecordNotFoundError,
)

logger = logging.getLogger(__name__)

# Statuses the retirement pass leaves alone
RETIREMENT_EXEMPT_STATUSES = (EventStatus.INACTIVE, EventStatus.IMPORTED)


class ImageChangePolicy(str, Enum):
    """
    How image URL changes take part in change detection.

    CARRY: an image-only change is not an update, but the incoming image is
    copied along whenever a tracked field changes.
    TRACK: the image URL is compared like any tracked field.
    """
    CARRY = 'carry'
    TRACK = 'track'


class Outcome(str, Enum):
    CREATED = 'created'
    UPDATED = 'updated'
    REVIVED = 'revived'
    UNCHANGED = 'unchanged'


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StatusEngine:
    """Merges one source's batch of listings into the catalog."""

    def __init__(
        self,
        catalog,
        clock: Optional[Callable[[], datetime]] = None,
        image_policy: ImageChangePolicy = ImageChangePolicy.CARRY
    ):
        """
        Args:
            catalog: Store implementing find_by_key, insert, update_fields
                and bulk_update_where
            clock: Returns the current UTC time, injectable for tests
            image_policy: Whether image-only changes count as updates
        """
        self.catalog = catalog
        self.clock = clock or utc_now
        self.image_policy = ImageChangePolicy(image_policy)

    def reconcile(self, incoming: List[NormalizedEvent], source_name: str) -> ReconcileReport:
        """
        Merge a batch of listings for one source into the catalog.

        Must only be called with the result of a successful fetch: an empty
        batch retires every live record of the source.

        Args:
            incoming: Normalized listings from one successful fetch
            source_name: Source the batch belongs to

        Returns:
            ReconcileReport with per-outcome counts and per-key failures
        """
        now = self.clock()
        report = ReconcileReport(source_name=source_name, reconciled_at=now)

        batch = self._collapse_duplicates(incoming)
        report.duplicate_count = len(incoming) - len(batch)
        if report.duplicate_count:
            logger.warning(
                f"{report.duplicate_count} duplicate listings in batch for "
                f"{source_name}, keeping the last occurrence of each"
            )

        logger.info(f"Reconciling {len(batch)} listings for source {source_name}")

        for key, event in batch.items():
            if event.source_name != source_name:
                report.failures[key] = (
                    f"Listing belongs to source '{event.source_name}', not '{source_name}'"
                )
                logger.error(f"Rejected {key}: {report.failures[key]}")
                continue

            try:
                outcome = self._reconcile_one(event, now)
            except (CatalogError, ClientError) as e:
                report.failures[key] = f"{type(e).__name__}: {e}"
                logger.error(f"Failed to reconcile {key}: {e}")
                continue

            self._count(report, outcome)

        # Every incoming key has been attempted; anything else is gone
        try:
            report.retired_count = self.catalog.bulk_update_where(
                source_name,
                excluded_keys=set(batch),
                excluded_statuses=RETIREMENT_EXEMPT_STATUSES,
                update=CatalogUpdate(status=EventStatus.INACTIVE, last_seen_at=now)
            )
        except (CatalogError, ClientError) as e:
            report.retirement_error = f"{type(e).__name__}: {e}"
            logger.error(f"Retirement pass failed for source {source_name}: {e}")

        logger.info(
            f"Reconciled {source_name}: {report.processed_count} processed ({report.created_count} created, "
            f"{report.updated_count} updated, {report.unchanged_count} unchanged), "
            f"{report.retired_count} retired, {len(report.failures)} failed"
        )
        return report

    def has_changed(self, existing: CatalogEvent, incoming: NormalizedEvent) -> bool:
        """Field-by-field comparison of the tracked content fields."""
        changed = (
            existing.title != incoming.title or
            existing.description != incoming.description or
            existing.start != incoming.start or
            existing.venue.name != incoming.venue.name or
            existing.venue.address != incoming.venue.address
        )
        if self.image_policy == ImageChangePolicy.TRACK:
            changed = changed or existing.image_url != incoming.image_url
        return changed

    def _reconcile_one(self, event: NormalizedEvent, now: datetime) -> Outcome:
        key = event.source_event_url
        existing = self.catalog.find_by_key(key)

        if existing is None:
            try:
                self.catalog.insert(CatalogEvent.from_normalized(event, now))
                return Outcome.CREATED
            except DuplicateKeyError:
                # Another writer created it between lookup and insert
                existing = self.catalog.find_by_key(key)
                if existing is None:
                    raise RecordNotFoundError(key)

        return self._reconcile_existing(existing, event, now)

    def _reconcile_existing(
        self,
        existing: CatalogEvent,
        event: NormalizedEvent,
        now: datetime
    ) -> Outcome:
        key = event.source_event_url
        seen_at = max(now, existing.scrape_meta.last_seen_at)
        stamp_only = CatalogUpdate(last_seen_at=seen_at)

        if existing.curated:
            self.catalog.update_fields(key, stamp_only)
            return Outcome.UNCHANGED

        changed = self.has_changed(existing, event)
        revived = existing.status == EventStatus.INACTIVE

        if not changed and not revived:
            self.catalog.update_fields(key, stamp_only)
            return Outcome.UNCHANGED

        update = CatalogUpdate(status=EventStatus.UPDATED, last_seen_at=seen_at)
        if changed:
            update.content = event.content
            update.last_changed_at = max(seen_at, existing.scrape_meta.last_changed_at)

        try:
            self.catalog.update_fields(key, update, guard_curation=True)
        except CurationConflictError:
            logger.info(f"{key} was curated during reconciliation, stamping only")
            self.catalog.update_fields(key, stamp_only)
            return Outcome.UNCHANGED

        if revived:
            return Outcome.REVIVED
        return Outcome.UPDATED

    def _collapse_duplicates(self, incoming: List[NormalizedEvent]) -> Dict[str, NormalizedEvent]:
        """Keep the last listing per key, ordered by first appearance."""
        batch: Dict[str, NormalizedEvent] = OrderedDict()
        for event in incoming:
            batch[event.source_event_url] = event
        return batch

    def _count(self, report: ReconcileReport, outcome: Outcome) -> None:
        if outcome == Outcome.CREATED:
            report.created_count += 1
        elif outcome == Outcome.UPDATED:
            report.updated_count += 1
        elif outcome == Outcome.REVIVED:
            report.updated_count += 1
            report.revived_count += 1
        else:
            report.unchanged_count += 1
