"""Data models for event ingestion and reconciliation."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional


class EventStatus(str, Enum):
    """Lifecycle status of a catalog event."""
    NEW = 'new'
    UPDATED = 'updated'
    INACTIVE = 'inactive'
    IMPORTED = 'imported'


@dataclass(frozen=True)
class Venue:
    """Where an event takes place."""
    name: str
    address: str
    city: str


@dataclass
class RawEvent:
    """Listing as returned by a source connector."""
    title: str
    description: str
    short_summary: str
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    venue_name: str
    venue_address: str
    category: List[str]
    image_url: Optional[str]
    event_url: str
    source_name: str


@dataclass(frozen=True)
class EventContent:
    """Content fields that a reconciliation pass may overwrite."""
    title: str
    description: str
    short_summary: str
    start: datetime
    end: Optional[datetime]
    venue: Venue
    image_url: Optional[str]


@dataclass(frozen=True)
class NormalizedEvent:
    """Canonical listing produced by the normalizer."""
    title: str
    description: str
    short_summary: str
    start: datetime
    end: Optional[datetime]
    venue: Venue
    category: FrozenSet[str]
    image_url: Optional[str]
    source_name: str
    source_event_url: str

    @property
    def content(self) -> EventContent:
        return EventContent(
            title=self.title,
            description=self.description,
            short_summary=self.short_summary,
            start=self.start,
            end=self.end,
            venue=self.venue,
            image_url=self.image_url
        )


@dataclass
class ScrapeMeta:
    """Provenance timestamps maintained by the reconciliation engine."""
    first_seen_at: datetime
    last_seen_at: datetime
    last_changed_at: datetime


@dataclass
class ImportedMeta:
    """Curation record written when an operator imports an event."""
    imported_at: datetime
    imported_by_user_id: str
    notes: str = ''


@dataclass
class CatalogEvent:
    """Persisted catalog record, keyed by source_event_url."""
    title: str
    description: str
    short_summary: str
    start: datetime
    end: Optional[datetime]
    venue: Venue
    category: FrozenSet[str]
    image_url: Optional[str]
    source_name: str
    source_event_url: str
    status: EventStatus
    scrape_meta: ScrapeMeta
    imported_meta: Optional[ImportedMeta] = None
    archived_at: Optional[datetime] = None

    @classmethod
    def from_normalized(cls, event: NormalizedEvent, now: datetime) -> 'CatalogEvent':
        """Build a first-observation record for a normalized event."""
        return cls(
            title=event.title,
            description=event.description,
            short_summary=event.short_summary,
            start=event.start,
            end=event.end,
            venue=event.venue,
            category=event.category,
            image_url=event.image_url,
            source_name=event.source_name,
            source_event_url=event.source_event_url,
            status=EventStatus.NEW,
            scrape_meta=ScrapeMeta(
                first_seen_at=now,
                last_seen_at=now,
                last_changed_at=now
            )
        )

    @property
    def content(self) -> EventContent:
        return EventContent(
            title=self.title,
            description=self.description,
            short_summary=self.short_summary,
            start=self.start,
            end=self.end,
            venue=self.venue,
            image_url=self.image_url
        )

    @property
    def manually_archived(self) -> bool:
        return self.status == EventStatus.INACTIVE and self.archived_at is not None

    @property
    def curated(self) -> bool:
        """True when an operator decision protects the record from automated writes."""
        return self.status == EventStatus.IMPORTED or self.manually_archived


@dataclass
class CatalogUpdate:
    """
    Partial update of a catalog record.

    Only the fields automation is allowed to touch are representable here;
    imported_meta and archived_at are written by curation actions alone.
    None means "leave unchanged".
    """
    content: Optional[EventContent] = None
    status: Optional[EventStatus] = None
    last_seen_at: Optional[datetime] = None
    last_changed_at: Optional[datetime] = None

    def is_empty(self) -> bool:
        return (
            self.content is None and
            self.status is None and
            self.last_seen_at is None and
            self.last_changed_at is None
        )


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass for one source."""
    source_name: str
    reconciled_at: datetime
    created_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    retired_count: int = 0
    revived_count: int = 0
    duplicate_count: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
    retirement_error: Optional[str] = None

    @property
    def processed_count(self) -> int:
        return self.created_count + self.updated_count + self.unchanged_count

    def to_dict(self) -> dict:
        return {
            'source_name': self.source_name,
            'reconciled_at': self.reconciled_at.isoformat(),
            'created': self.created_count,
            'updated': self.updated_count,
            'unchanged': self.unchanged_count,
            'retired': self.retired_count,
            'revived': self.revived_count,
            'duplicates': self.duplicate_count,
            'failures': dict(self.failures),
            'retirement_error': self.retirement_error
        }


@dataclass
class SourceRunResult:
    """Per-source line of a run summary."""
    name: str
    fetched: int = 0
    normalized: int = 0
    skipped: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    retired: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None
    record_failures: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def apply_report(self, report: ReconcileReport) -> None:
        """Copy reconciliation counts into this result."""
        self.created = report.created_count
        self.updated = report.updated_count
        self.unchanged = report.unchanged_count
        self.retired = report.retired_count
        self.record_failures = dict(report.failures)
        if report.retirement_error:
            self.error = f"Retirement pass failed: {report.retirement_error}"
            self.error_type = 'RetirementError'

    def to_dict(self) -> dict:
        data = {
            'name': self.name,
            'fetched': self.fetched,
            'normalized': self.normalized,
            'skipped': self.skipped,
            'created': self.created,
            'updated': self.updated,
            'unchanged': self.unchanged,
            'retired': self.retired,
            'record_failures': dict(self.record_failures)
        }
        if self.error is not None:
            data['error'] = self.error
            data['error_type'] = self.error_type
        return data


@dataclass
class RunSummary:
    """Aggregated results of one orchestrated run over several sources."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    per_source: List[SourceRunResult] = field(default_factory=list)

    @property
    def failed_sources(self) -> List[str]:
        return [result.name for result in self.per_source if not result.succeeded]

    @property
    def succeeded(self) -> bool:
        return not self.failed_sources

    def to_dict(self) -> dict:
        return {
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'per_source': [result.to_dict() for result in self.per_source],
            'failed_sources': self.failed_sources
        }
