"""Ticketmaster Discovery API v2 connector."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from processor.models import RawEvent
from scraper.base import HttpConnector, MalformedResponseError, parse_timestamp

# Ticketmaster segment name -> catalog category
SEGMENT_CATEGORIES = {
    'Music': 'Music',
    'Sports': 'Sport',
    'Arts & Theatre': 'Arts',
    'Film': 'Arts',
    'Miscellaneous': 'General',
    'Family': 'Family',
}


class TicketmasterConnector(HttpConnector):
    """Connector for https://developer.ticketmaster.com Discovery API."""

    NAME = 'Ticketmaster'
    BASE_URL = 'https://app.ticketmaster.com/discovery/v2/events.json'
    API_KEY_ENV = 'TICKETMASTER_API_KEY'
    EVENT_URL_TEMPLATE = 'https://www.ticketmaster.com.au/event/{id}'

    def __init__(self, api_key, city: str = 'Sydney', country_code: str = 'AU',
                 page_size: int = 50, **kwargs):
        super().__init__(api_key, **kwargs)
        self.city = city
        self.country_code = country_code
        self.page_size = page_size

    def _request_params(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc).replace(microsecond=0)
        return {
            'apikey': self.api_key,
            'city': self.city,
            'countryCode': self.country_code,
            'size': self.page_size,
            'sort': 'date,asc',
            'startDateTime': now.strftime('%Y-%m-%dT%H:%M:%SZ'),
        }

    def _extract_items(self, payload: Any) -> List[dict]:
        if not isinstance(payload, dict):
            raise MalformedResponseError('Ticketmaster payload is not a JSON object')
        # _embedded is omitted entirely when a search has no results
        if '_embedded' not in payload:
            if 'page' not in payload:
                raise MalformedResponseError('Ticketmaster payload has neither _embedded nor page')
            return []
        return self._require_list(payload['_embedded'], 'events')

    def _parse_item(self, item: dict) -> Optional[RawEvent]:
        title = (item.get('name') or '').strip()
        if not title:
            return None

        event_url = item.get('url')
        if not event_url and item.get('id'):
            event_url = self.EVENT_URL_TEMPLATE.format(id=item['id'])
        if not event_url:
            return None

        venue = ((item.get('_embedded') or {}).get('venues') or [{}])[0]
        venue_name = venue.get('name') or ''
        address_parts = [
            (venue.get('address') or {}).get('line1'),
            (venue.get('city') or {}).get('name'),
            (venue.get('state') or {}).get('stateCode'),
        ]
        venue_address = ', '.join(part for part in address_parts if part)

        start = (item.get('dates') or {}).get('start') or {}
        start_date = parse_timestamp(start.get('dateTime') or start.get('localDate'))

        description = item.get('info') or item.get('pleaseNote') or f"{title} at {venue_name}".strip()

        return RawEvent(
            title=title,
            description=description,
            short_summary='',
            start_date=start_date,
            end_date=None,
            venue_name=venue_name,
            venue_address=venue_address,
            category=[self._map_category(item)],
            image_url=self._pick_image(item.get('images') or []),
            event_url=event_url,
            source_name=self.NAME
        )

    def _map_category(self, item: dict) -> str:
        classification = (item.get('classifications') or [{}])[0]
        segment = (classification.get('segment') or {}).get('name') or ''
        genre = (classification.get('genre') or {}).get('name') or ''
        return SEGMENT_CATEGORIES.get(segment) or genre or segment or 'General'

    def _pick_image(self, images: List[dict]) -> Optional[str]:
        # Prefer a wide 16:9 rendition
        for image in images:
            if image.get('ratio') == '16_9' and (image.get('width') or 0) > 500:
                return image.get('url')
        return images[0].get('url') if images else None
