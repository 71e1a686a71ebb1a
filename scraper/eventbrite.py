"""Eventbrite API v3 connector."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from processor.models import RawEvent
from scraper.base import HttpConnector, parse_timestamp


class EventbriteConnector(HttpConnector):
    """Connector for the Eventbrite event search endpoint."""

    NAME = 'Eventbrite'
    BASE_URL = 'https://www.eventbriteapi.com/v3/events/search/'
    API_KEY_ENV = 'EVENTBRITE_API_KEY'

    def __init__(self, api_key, location: str = 'Sydney, NSW, Australia',
                 within: str = '30km', page_size: int = 50, **kwargs):
        super().__init__(api_key, **kwargs)
        self.location = location
        self.within = within
        self.page_size = page_size

    def _headers(self) -> Dict[str, str]:
        return {
            'Accept': 'application/json',
            'Authorization': f"Bearer {self.api_key}",
        }

    def _request_params(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc).replace(microsecond=0)
        return {
            'location.address': self.location,
            'location.within': self.within,
            'expand': 'venue,category',
            'sort_by': 'date',
            'page_size': self.page_size,
            'start_date.range_start': now.strftime('%Y-%m-%dT%H:%M:%SZ'),
        }

    def _extract_items(self, payload: Any) -> List[dict]:
        return self._require_list(payload, 'events')

    def _parse_item(self, item: dict) -> Optional[RawEvent]:
        title = ((item.get('name') or {}).get('text') or '').strip()
        if not title or not item.get('url'):
            return None

        description = (
            (item.get('description') or {}).get('html') or
            (item.get('description') or {}).get('text') or
            item.get('summary') or
            title
        )
        venue = item.get('venue') or {}

        return RawEvent(
            title=title,
            description=description,
            short_summary=item.get('summary') or '',
            start_date=parse_timestamp((item.get('start') or {}).get('utc')),
            end_date=parse_timestamp((item.get('end') or {}).get('utc')),
            venue_name=venue.get('name') or '',
            venue_address=(venue.get('address') or {}).get('localized_address_display') or '',
            category=[(item.get('category') or {}).get('name') or 'General'],
            image_url=(item.get('logo') or {}).get('url'),
            event_url=item['url'],
            source_name=self.NAME
        )
