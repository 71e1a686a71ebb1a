"""Run orchestrator driving fetch, normalize and reconcile for each source."""
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, runtime_checkable

from botocore.exceptions import ClientError

from processor.models import RawEvent, RunSummary, SourceRunResult
from processor.normalizer import EventNormalizer
from processor.status_engine import StatusEngine
from scraper.base import MalformedResponseError
from storage.run_lock import InProcessRunLock, SourceBusyError

logger = logging.getLogger(__name__)


@runtime_checkable
class Connector(Protocol):
    """Fetches raw listings from one provider."""

    name: str

    def fetch_raw_events(self) -> List[RawEvent]:
        ...


@dataclass
class SourceConfig:
    """A configured source: its catalog name and the connector that feeds it."""
    name: str
    connector: Connector
    enabled: bool = True


class RunOrchestrator:
    """Runs each configured source through fetch, normalize and reconcile."""

    def __init__(
        self,
        engine: StatusEngine,
        normalizer: Optional[EventNormalizer] = None,
        run_lock=None
    ):
        """
        Args:
            engine: Reconciliation engine bound to the catalog
            normalizer: Listing normalizer, defaults to EventNormalizer()
            run_lock: Object with a hold(source_name) context manager that
                raises SourceBusyError for a source already mid-run
        """
        self.engine = engine
        self.normalizer = normalizer or EventNormalizer()
        self.run_lock = run_lock or InProcessRunLock()

    def run_all(self, sources: List[SourceConfig]) -> RunSummary:
        """
        Run every enabled source in turn.

        A failing source never stops the others.

        Args:
            sources: Configured sources

        Returns:
            RunSummary with one result per source
        """
        summary = RunSummary(started_at=self.engine.clock())
        logger.info(f"Starting run over {len(sources)} sources")

        for source in sources:
            if not source.enabled:
                logger.info(f"Skipping disabled source {source.name}")
                continue
            summary.per_source.append(self.run_source(source))

        summary.finished_at = self.engine.clock()
        logger.info(
            f"Run complete: {len(summary.per_source)} sources, "
            f"{len(summary.failed_sources)} failed",
            extra={'failed_sources': summary.failed_sources}
        )
        return summary

    def run_source(self, source: SourceConfig) -> SourceRunResult:
        """
        Fetch, normalize and reconcile one source under its run lock.

        Returns:
            SourceRunResult, with error set if the source failed
        """
        result = SourceRunResult(name=source.name)

        try:
            with self.run_lock.hold(source.name):
                self._run_locked(source, result)
        except SourceBusyError as e:
            logger.warning(str(e))
            self._record_error(result, e)
        except ClientError as e:
            # Acquire or release of the lease failed; counts already applied are kept
            logger.error(
                f"Run lock failed for {source.name}: {e}",
                extra={'source': source.name, 'error_type': type(e).__name__},
                exc_info=True
            )
            if result.error is None:
                self._record_error(result, e)

        return result

    def _run_locked(self, source: SourceConfig, result: SourceRunResult) -> None:
        try:
            logger.info(f"Fetching listings from {source.name}")
            raw_events = source.connector.fetch_raw_events()
        except Exception as e:
            # A failed fetch says nothing about which listings still exist,
            # so the source is not reconciled and nothing is retired
            logger.error(
                f"Fetch failed for {source.name}, skipping reconciliation: {e}",
                extra={'source': source.name, 'error_type': type(e).__name__},
                exc_info=True
            )
            self._record_error(result, e)
            return

        result.fetched = len(raw_events)
        normalized = self.normalizer.normalize_events(raw_events)
        result.normalized = len(normalized)
        result.skipped = result.fetched - result.normalized

        if result.fetched and not normalized:
            error = MalformedResponseError(
                f"None of the {result.fetched} listings from {source.name} could be normalized"
            )
            logger.error(
                f"{error}, skipping reconciliation",
                extra={'source': source.name, 'error_type': type(error).__name__}
            )
            self._record_error(result, error)
            return

        try:
            report = self.engine.reconcile(normalized, source.name)
        except Exception as e:
            logger.error(
                f"Reconciliation failed for {source.name}: {e}",
                extra={'source': source.name, 'error_type': type(e).__name__},
                exc_info=True
            )
            self._record_error(result, e)
            return

        result.apply_report(report)

    def _record_error(self, result: SourceRunResult, error: Exception) -> None:
        result.error = str(error) or type(error).__name__
        result.error_type = type(error).__name__
