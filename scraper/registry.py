"""Registry mapping configured source names to connectors."""
import logging
from typing import Dict, List, Mapping, Type

from processor.orchestrator import SourceConfig
from scraper.base import HttpConnector
from scraper.eventbrite import EventbriteConnector
from scraper.humanitix import HumanitixConnector
from scraper.predicthq import PredictHQConnector
from scraper.ticketmaster import TicketmasterConnector

logger = logging.getLogger(__name__)

CONNECTORS: Dict[str, Type[HttpConnector]] = {
    'ticketmaster': TicketmasterConnector,
    'eventbrite': EventbriteConnector,
    'predicthq': PredictHQConnector,
    'humanitix': HumanitixConnector,
}


def build_sources(
    names: List[str],
    environ: Mapping[str, str],
    timeout: int = 30
) -> List[SourceConfig]:
    """
    Build source configs for the given connector names.

    A source whose API key is missing is still built: its fetch fails with
    AuthError, which the run reports instead of treating as zero listings.

    Args:
        names: Connector names, case-insensitive
        environ: Environment holding the API keys
        timeout: HTTP request timeout in seconds

    Returns:
        List of SourceConfig in the order given

    Raises:
        ValueError: If a name has no registered connector
    """
    sources = []

    for raw_name in names:
        key = raw_name.strip().lower()
        if not key:
            continue
        connector_class = CONNECTORS.get(key)
        if connector_class is None:
            raise ValueError(
                f"Unknown source '{raw_name}', expected one of: {', '.join(sorted(CONNECTORS))}"
            )

        api_key = environ.get(connector_class.API_KEY_ENV)
        if not api_key:
            logger.warning(f"{connector_class.API_KEY_ENV} is not set, {connector_class.NAME} will fail")

        connector = connector_class(api_key, timeout=timeout)
        sources.append(SourceConfig(name=connector.name, connector=connector))

    return sources
