"""Humanitix public API connector."""
from typing import Any, Dict, List, Optional

from processor.models import RawEvent
from scraper.base import HttpConnector, MalformedResponseError, parse_timestamp


class HumanitixConnector(HttpConnector):
    """Connector for https://developers.humanitix.com/api/v1/events."""

    NAME = 'Humanitix'
    BASE_URL = 'https://developers.humanitix.com/api/v1/events'
    API_KEY_ENV = 'HUMANITIX_API_KEY'
    EVENT_URL_TEMPLATE = 'https://humanitix.com/au/{slug}'

    def __init__(self, api_key, city: str = 'Sydney', country: str = 'AU',
                 limit: int = 50, **kwargs):
        super().__init__(api_key, **kwargs)
        self.city = city
        self.country = country
        self.limit = limit

    def _headers(self) -> Dict[str, str]:
        return {'Accept': 'application/json', 'x-api-key': self.api_key}

    def _request_params(self) -> Dict[str, Any]:
        return {
            'city': self.city,
            'country': self.country,
            'status': 'published',
            'limit': self.limit,
            'sort': 'startDate',
        }

    def _extract_items(self, payload: Any) -> List[dict]:
        if isinstance(payload, dict):
            for key in ('events', 'data'):
                if isinstance(payload.get(key), list):
                    return payload[key]
        raise MalformedResponseError('Humanitix payload has no events list')

    def _parse_item(self, item: dict) -> Optional[RawEvent]:
        title = (item.get('name') or item.get('title') or '').strip()
        if not title:
            return None

        event_url = item.get('url') or item.get('link')
        if not event_url and item.get('slug'):
            event_url = self.EVENT_URL_TEMPLATE.format(slug=item['slug'])
        if not event_url:
            return None

        venue = item.get('venue') or item.get('location') or {}
        image = item.get('imageUrl') or (item.get('image') or {}).get('url')
        address = venue.get('address')
        if isinstance(address, dict):
            address = ', '.join(
                str(address[part]) for part in ('line1', 'suburb', 'state') if address.get(part)
            )

        return RawEvent(
            title=title,
            description=item.get('description') or item.get('summary') or title,
            short_summary=item.get('summary') or '',
            start_date=parse_timestamp(item.get('startDate')),
            end_date=parse_timestamp(item.get('endDate')),
            venue_name=venue.get('name') or '',
            venue_address=address or '',
            category=[item['category']] if item.get('category') else ['Community'],
            image_url=image,
            event_url=event_url,
            source_name=self.NAME
        )
