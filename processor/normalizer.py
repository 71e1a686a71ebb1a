"""Normalizer mapping connector listings to the canonical event shape."""
import logging
import re
from datetime import datetime, timezone
from typing import List, Optional

from bs4 import BeautifulSoup

from processor.models import NormalizedEvent, RawEvent, Venue

logger = logging.getLogger(__name__)

_MARKUP_PATTERN = re.compile(r'<[a-zA-Z/!][^>]*>')


class NormalizationError(ValueError):
    """Raised when a listing lacks a field required by the catalog."""


class EventNormalizer:
    """Pure, deterministic mapping from RawEvent to NormalizedEvent."""

    MAX_SUMMARY_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 2000
    DEFAULT_CITY = 'Sydney'

    def __init__(self, default_city: str = DEFAULT_CITY):
        self.default_city = default_city

    def normalize_events(self, raw_events: List[RawEvent]) -> List[NormalizedEvent]:
        """
        Normalize a batch of listings, skipping malformed ones.

        Args:
            raw_events: Listings from one connector

        Returns:
            Normalized events in input order
        """
        normalized = []

        for raw in raw_events:
            try:
                normalized.append(self.normalize(raw))
            except NormalizationError as e:
                logger.warning(
                    f"Skipping malformed listing from {raw.source_name or 'unknown source'} "
                    f"({raw.event_url or 'no url'}): {e}"
                )

        logger.info(
            f"Normalized {len(normalized)} of {len(raw_events)} listings"
        )
        return normalized

    def normalize(self, raw: RawEvent) -> NormalizedEvent:
        """
        Map a single listing to the canonical shape.

        Args:
            raw: Listing as returned by a connector

        Returns:
            NormalizedEvent

        Raises:
            NormalizationError: If title, event URL, source name or start time is missing
        """
        title = self._clean_text(raw.title)
        event_url = (raw.event_url or '').strip()
        source_name = (raw.source_name or '').strip()

        if not title:
            raise NormalizationError('missing title')
        if not event_url:
            raise NormalizationError('missing event url')
        if not source_name:
            raise NormalizationError('missing source name')
        if raw.start_date is None:
            raise NormalizationError('missing start time')

        description = self._clean_text(raw.description)[:self.MAX_DESCRIPTION_LENGTH]
        short_summary = self._clean_text(raw.short_summary) or description
        short_summary = short_summary[:self.MAX_SUMMARY_LENGTH]

        return NormalizedEvent(
            title=title,
            description=description,
            short_summary=short_summary,
            start=self._to_utc(raw.start_date),
            end=self._to_utc(raw.end_date) if raw.end_date else None,
            venue=Venue(
                name=(raw.venue_name or '').strip(),
                address=(raw.venue_address or '').strip(),
                city=self.default_city
            ),
            category=frozenset(
                tag.strip() for tag in (raw.category or []) if tag and tag.strip()
            ),
            image_url=(raw.image_url or '').strip() or None,
            source_name=source_name,
            source_event_url=event_url
        )

    def _clean_text(self, value: Optional[str]) -> str:
        """Trim whitespace and drop HTML markup."""
        if not value:
            return ''
        if _MARKUP_PATTERN.search(value):
            value = BeautifulSoup(value, 'html.parser').get_text(' ')
            value = re.sub(r'\s+', ' ', value)
        return value.strip()

    def _to_utc(self, value: datetime) -> datetime:
        # Naive timestamps are taken as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
