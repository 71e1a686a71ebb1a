"""Shared HTTP plumbing and error types for source connectors."""
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from processor.models import RawEvent

logger = logging.getLogger(__name__)


class ConnectorError(Exception):
    """Fetching listings from a provider failed."""


class FetchTimeoutError(ConnectorError):
    """The provider did not answer within the timeout."""


class AuthError(ConnectorError):
    """Missing or rejected credentials."""


class MalformedResponseError(ConnectorError):
    """The provider answered with something other than the expected payload."""


class NetworkError(ConnectorError):
    """Connection failure or server error that persisted through retries."""


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp or date as returned by provider APIs."""
    if not value:
        return None
    value = value.strip()
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning(f"Unparseable timestamp from provider: {value}")
        return None


class HttpConnector:
    """
    Base class for JSON API connectors.

    Subclasses set NAME, BASE_URL and API_KEY_ENV and implement
    _request_params, _extract_items and _parse_item.
    """

    NAME = ''
    BASE_URL = ''
    API_KEY_ENV = ''

    MAX_RETRIES = 3
    BASE_DELAY = 1  # seconds

    def __init__(
        self,
        api_key: Optional[str],
        timeout: int = 30,
        session: Optional[requests.Session] = None
    ):
        """
        Args:
            api_key: Provider credential
            timeout: HTTP request timeout in seconds (default: 30)
            session: requests session, a new one is created if omitted
        """
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def name(self) -> str:
        return self.NAME

    def fetch_raw_events(self) -> List[RawEvent]:
        """
        Fetch listings from the provider.

        Returns:
            List of RawEvent objects; unparseable listings are skipped

        Raises:
            ConnectorError: If the fetch as a whole failed
        """
        if not self.api_key:
            raise AuthError(f"{self.API_KEY_ENV} is not set")

        payload = self._get_json(self.BASE_URL, self._request_params(), self._headers())
        items = self._extract_items(payload)
        logger.info(f"{self.NAME} API returned {len(items)} listings")

        events = []
        for item in items:
            try:
                event = self._parse_item(item)
                if event:
                    events.append(event)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Failed to parse {self.NAME} listing: {e}")
                continue

        if items and not events:
            raise MalformedResponseError(
                f"None of the {len(items)} {self.NAME} listings could be parsed"
            )

        logger.info(f"Parsed {len(events)} {self.NAME} listings")
        return events

    def _request_params(self) -> Dict[str, Any]:
        raise NotImplementedError

    def _headers(self) -> Dict[str, str]:
        return {'Accept': 'application/json'}

    def _extract_items(self, payload: Any) -> List[dict]:
        raise NotImplementedError

    def _parse_item(self, item: dict) -> Optional[RawEvent]:
        raise NotImplementedError

    def _get_json(self, url: str, params: Dict[str, Any], headers: Dict[str, str]) -> Any:
        """
        GET a JSON document with retry logic.

        Timeouts, connection errors and 5xx responses are retried with
        exponential backoff; 401/403 fail immediately.

        Raises:
            FetchTimeoutError, NetworkError, AuthError, MalformedResponseError
        """
        for attempt in range(self.MAX_RETRIES):
            try:
                logger.info(
                    f"Requesting {self.NAME} listings (attempt {attempt + 1}/{self.MAX_RETRIES})"
                )
                response = self.session.get(
                    url,
                    params=params,
                    headers=headers,
                    timeout=self.timeout
                )
            except requests.Timeout as e:
                error = FetchTimeoutError(f"{self.NAME} request timed out: {e}")
            except requests.RequestException as e:
                error = NetworkError(f"{self.NAME} request failed: {e}")
            else:
                if response.status_code in (401, 403):
                    raise AuthError(
                        f"{self.NAME} rejected credentials (HTTP {response.status_code})"
                    )
                if response.status_code >= 500:
                    error = NetworkError(f"{self.NAME} server error (HTTP {response.status_code})")
                elif response.status_code >= 400:
                    raise MalformedResponseError(
                        f"{self.NAME} rejected request (HTTP {response.status_code})"
                    )
                else:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise MalformedResponseError(
                            f"{self.NAME} returned invalid JSON: {e}"
                        ) from e

            if attempt < self.MAX_RETRIES - 1:
                delay = self.BASE_DELAY * (2 ** attempt)
                logger.warning(
                    f"Request failed (attempt {attempt + 1}/{self.MAX_RETRIES}): {error}. "
                    f"Retrying in {delay} seconds..."
                )
                time.sleep(delay)
            else:
                logger.error(
                    f"All {self.MAX_RETRIES} retry attempts failed. Last error: {error}"
                )
                raise error

    def _require_list(self, payload: Any, key: str) -> List[dict]:
        """Return payload[key] as a list, or raise MalformedResponseError."""
        if not isinstance(payload, dict):
            raise MalformedResponseError(f"{self.NAME} payload is not a JSON object")
        items = payload.get(key)
        if not isinstance(items, list):
            raise MalformedResponseError(f"{self.NAME} payload has no '{key}' list")
        return items
