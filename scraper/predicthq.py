"""PredictHQ events API connector."""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from processor.models import RawEvent
from scraper.base import HttpConnector, parse_timestamp

# PredictHQ category -> catalog category
PHQ_CATEGORIES = {
    'concerts': 'Music',
    'festivals': 'Festival',
    'sports': 'Sport',
    'community': 'Community',
    'conferences': 'Technology',
    'expos': 'Technology',
    'performing_arts': 'Arts',
    'school_holidays': 'Family',
}


class PredictHQConnector(HttpConnector):
    """Connector for https://api.predicthq.com/v1/events/."""

    NAME = 'PredictHQ'
    BASE_URL = 'https://api.predicthq.com/v1/events/'
    API_KEY_ENV = 'PREDICTHQ_API_KEY'
    EVENT_URL_TEMPLATE = 'https://predicthq.com/events/{id}'

    def __init__(self, api_key, within: str = '30km@-33.8688,151.2093',
                 country: str = 'AU', days_ahead: int = 90, limit: int = 50, **kwargs):
        super().__init__(api_key, **kwargs)
        self.within = within
        self.country = country
        self.days_ahead = days_ahead
        self.limit = limit

    def _headers(self) -> Dict[str, str]:
        return {
            'Accept': 'application/json',
            'Authorization': f"Bearer {self.api_key}",
        }

    def _request_params(self) -> Dict[str, Any]:
        today = datetime.now(timezone.utc).date()
        return {
            'within': self.within,
            'active.gte': today.isoformat(),
            'active.lte': (today + timedelta(days=self.days_ahead)).isoformat(),
            'category': ','.join(
                ['concerts', 'festivals', 'sports', 'community',
                 'conferences', 'expos', 'performing_arts']
            ),
            'country': self.country,
            'sort': 'start',
            'limit': self.limit,
        }

    def _extract_items(self, payload: Any) -> List[dict]:
        return self._require_list(payload, 'results')

    def _parse_item(self, item: dict) -> Optional[RawEvent]:
        title = (item.get('title') or '').strip()
        if not title or not item.get('id'):
            return None

        entities = item.get('entities') or []
        venue = next((e for e in entities if e.get('type') == 'venue'), {})
        organizer = next((e for e in entities if e.get('type') == 'organizer'), {})

        # location is [longitude, latitude]
        location = item.get('location') or []
        venue_address = venue.get('formatted_address') or ''
        if not venue_address and len(location) == 2:
            venue_address = f"{location[1]:.4f}, {location[0]:.4f}"

        category = item.get('category') or ''

        return RawEvent(
            title=title,
            description=item.get('description') or f"{title} ({category} event)",
            short_summary='',
            start_date=parse_timestamp(item.get('start')),
            end_date=parse_timestamp(item.get('end')),
            venue_name=venue.get('name') or '',
            venue_address=venue_address,
            category=[PHQ_CATEGORIES.get(category, 'General')],
            image_url=None,
            event_url=organizer.get('url') or self.EVENT_URL_TEMPLATE.format(id=item['id']),
            source_name=self.NAME
        )
