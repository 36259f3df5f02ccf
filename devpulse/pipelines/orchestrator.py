"""
Collection run: collect from every platform concurrently, dedupe, store,
enrich, and roll the touched days into daily aggregates.
"""

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Set
import threading
import time
import logging
import argparse

from devpulse.agents.enrichment import EnrichmentEngine
from devpulse.agents.llm_agent import ChatAgent
from devpulse.collectors.articles import ArticlesCollector
from devpulse.collectors.base import BaseCollector, CollectorResult
from devpulse.collectors.forum import ForumCollector
from devpulse.collectors.social import SocialCollector
from devpulse.collectors.technews import TechNewsCollector
from devpulse.config.settings import Settings
from devpulse.data_access.postgres_client import PostgresClient
from devpulse.http.fetch_client import FetchClient
from devpulse.models.errors import StorageError
from devpulse.models.schemas import (
    CollectionRunReport,
    CollectionWindow,
    EnrichmentSource,
    FeedbackItem,
    PlatformResult,
    StoredFeedbackItem,
)
from devpulse.pipelines.aggregate import DailyAggregator
from devpulse.pipelines.dedupe import dedupe, exclude_existing


logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.5


def build_collectors(config: Settings, fetch_client: FetchClient) -> List[BaseCollector]:
    """One collector per supported platform, in a fixed order."""
    return [
        ForumCollector(config, fetch_client),
        SocialCollector(config, fetch_client),
        TechNewsCollector(config, fetch_client),
        ArticlesCollector(config, fetch_client),
    ]


class RunOrchestrator:
    """Runs one end-to-end collection and enrichment pass."""

    def __init__(
        self,
        config: Settings,
        storage: Optional[PostgresClient] = None,
        fetch_client: Optional[FetchClient] = None,
        generator=None,
        collectors: Optional[List[BaseCollector]] = None,
        enrichment_engine: Optional[EnrichmentEngine] = None,
        aggregator: Optional[DailyAggregator] = None,
    ):
        """
        Initialize the orchestrator. Collaborators not passed in are built from config.

        Args:
            config: Application settings
            storage: Storage client
            fetch_client: HTTP fetch client shared by the default collectors
            generator: Generative-text client used by the default enrichment engine
            collectors: Collectors to run (default: one per platform)
            enrichment_engine: Enrichment engine
            aggregator: Daily aggregator
        """
        self.config = config
        self.storage = storage or PostgresClient(config)
        self.fetch_client = fetch_client or FetchClient(config)
        self.collectors = collectors if collectors is not None else build_collectors(config, self.fetch_client)
        self.enrichment = enrichment_engine or EnrichmentEngine(config, generator or ChatAgent(config))
        self.aggregator = aggregator or DailyAggregator(self.storage)
        self._abandoned: List[Future] = []

    def run(
        self,
        days_back: Optional[int] = None,
        window: Optional[CollectionWindow] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        enrich: bool = True,
        include_backlog: bool = True,
    ) -> CollectionRunReport:
        """
        Execute one collection run. Never raises for collector, enrichment or
        storage failures; they are reported in the returned report.

        Args:
            days_back: Recency window in days (default from config)
            window: Explicit recency window (overrides days_back)
            timeout: Overall collection deadline in seconds (default from config)
            cancel_event: External cancellation signal
            enrich: Whether to enrich newly stored items
            include_backlog: Whether to also enrich older unanalyzed items

        Returns:
            CollectionRunReport
        """
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

        report = CollectionRunReport(start_time=datetime.now(timezone.utc))
        started = time.monotonic()

        if window is None:
            window = CollectionWindow.last_days(
                days_back if days_back is not None else self.config.collection_days_back
            )
        if timeout is None:
            timeout = self.config.run_timeout_seconds
        cancel_event = cancel_event or threading.Event()
        self.enrichment.reset()

        logger.info(
            f"Starting collection run for {window.start.date()} to {window.end.date()} "
            f"across {len(self.collectors)} platforms"
        )

        collector_results = self._run_collectors(window, timeout, cancel_event, report)

        # Merge in collector order so per-platform source order is kept
        merged: List[FeedbackItem] = []
        for result in collector_results:
            merged.extend(result.items)
        report.total_items_collected = len(merged)

        unique = dedupe(merged)
        report.unique_items = len(unique)
        report.duplicates_skipped = len(merged) - len(unique)
        new_items = self._exclude_stored(unique, window, report)
        logger.info(
            f"Collected {len(merged)} items: {len(unique)} unique, {len(new_items)} new"
        )

        stored = self._store(new_items, report)
        report.new_items_stored = len(stored)
        stored_per_platform: Dict[str, int] = {}
        for item in stored:
            stored_per_platform[item.platform] = stored_per_platform.get(item.platform, 0) + 1

        for result in collector_results:
            report.platforms.append(PlatformResult(
                platform=result.platform,
                items_collected=len(result.items),
                items_stored=stored_per_platform.get(result.platform, 0),
                success=result.success,
                error=result.error_summary,
            ))
            if not result.success:
                report.errors.append(f"{result.platform}: {result.error_summary}")

        touched_days: Set[date] = {datetime.now(timezone.utc).date()}
        touched_days.update(item.timestamp.date() for item in stored)

        if report.partial:
            logger.warning("Run is partial; skipping enrichment")
        elif enrich:
            touched_days.update(self._enrich(stored, include_backlog, report))

        self._aggregate(touched_days, report)

        report.end_time = datetime.now(timezone.utc)
        report.duration = round(time.monotonic() - started, 3)

        if self.config.audit_runs:
            try:
                self.storage.record_run(report)
            except StorageError as e:
                report.errors.append(f"record_run: {e}")

        logger.info(
            f"Collection run complete in {report.duration}s: {report.new_items_stored} new items, "
            f"{report.items_enriched} enriched ({report.llm_enriched} llm, "
            f"{report.fallback_enriched} fallback), {len(report.errors)} errors"
            f"{' (partial)' if report.partial else ''}"
        )
        return report

    def _run_collectors(
        self,
        window: CollectionWindow,
        timeout: Optional[float],
        cancel_event: threading.Event,
        report: CollectionRunReport,
    ) -> List[CollectorResult]:
        """
        Run all collectors concurrently until they finish, the deadline passes or
        the run is cancelled. Only this thread writes the results.
        """
        if not self.collectors:
            return []

        deadline = time.monotonic() + timeout if timeout else None
        self._abandoned = []
        results: Dict[int, CollectorResult] = {}
        max_workers = max(1, min(len(self.collectors), self.config.collector_max_workers))
        executor = ThreadPoolExecutor(max_workers=max_workers)

        try:
            future_to_index = {
                executor.submit(collector.collect, window, cancel_event): index
                for index, collector in enumerate(self.collectors)
            }
            pending = set(future_to_index)

            while pending:
                if cancel_event.is_set():
                    logger.warning("Collection run cancelled")
                    break
                wait_for = POLL_INTERVAL_SECONDS
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        logger.warning(f"Collection deadline of {timeout}s reached")
                        break
                    wait_for = min(wait_for, remaining)

                done, pending = wait(pending, timeout=wait_for, return_when=FIRST_COMPLETED)
                for future in done:
                    index = future_to_index[future]
                    platform = self.collectors[index].platform.value
                    try:
                        results[index] = future.result()
                    except Exception as e:
                        logger.error(f"Collector {platform} crashed: {e}")
                        results[index] = CollectorResult(platform=platform, errors=[str(e)])

            if pending:
                cancel_event.set()
                for future in pending:
                    index = future_to_index[future]
                    platform = self.collectors[index].platform.value
                    logger.warning(f"Abandoning collector {platform}")
                    results[index] = CollectorResult(platform=platform, cancelled=True)
                self._abandoned = list(pending)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        ordered = [results[index] for index in range(len(self.collectors))]
        if any(result.cancelled for result in ordered):
            report.partial = True
        return ordered

    def wait_for_abandoned(self, timeout: Optional[float]) -> bool:
        """
        Wait for collectors abandoned at the deadline or on cancel to return.

        They were told to stop through the cancel event and exit after their
        in-flight request.

        Args:
            timeout: Maximum seconds to wait

        Returns:
            True when no abandoned collector is still running
        """
        if not self._abandoned:
            return True
        _, still_running = wait(self._abandoned, timeout=timeout)
        self._abandoned = list(still_running)
        if still_running:
            logger.warning(f"{len(still_running)} abandoned collectors still running")
        return not still_running

    def _exclude_stored(
        self, items: List[FeedbackItem], window: CollectionWindow, report: CollectionRunReport
    ) -> List[FeedbackItem]:
        """Drop items already in storage. Platforms whose check fails are not stored."""
        by_platform: Dict[str, List[FeedbackItem]] = {}
        for item in items:
            by_platform.setdefault(item.platform, []).append(item)

        new_items: List[FeedbackItem] = []
        for platform, platform_items in by_platform.items():
            try:
                existing = self.storage.query_existing_keys(platform, window.start, window.end)
            except StorageError as e:
                report.errors.append(f"query_existing_keys({platform}): {e}")
                continue
            fresh = exclude_existing(platform_items, existing)
            report.duplicates_skipped += len(platform_items) - len(fresh)
            new_items.extend(fresh)
        return new_items

    def _store(self, items: List[FeedbackItem], report: CollectionRunReport) -> List[StoredFeedbackItem]:
        stored: List[StoredFeedbackItem] = []
        batch_size = max(1, self.config.batch_size)
        for i in range(0, len(items), batch_size):
            batch = items[i:i + batch_size]
            try:
                ids = self.storage.insert_feedback(batch)
            except StorageError as e:
                report.errors.append(f"insert_feedback: {e}")
                continue
            stored.extend(
                StoredFeedbackItem(id=feedback_id, **item.model_dump())
                for feedback_id, item in zip(ids, batch)
            )
        return stored

    def _enrich(
        self, stored: List[StoredFeedbackItem], include_backlog: bool, report: CollectionRunReport
    ) -> Set[date]:
        """Enrich new items plus the unanalyzed backlog; returns the days whose sentiment changed."""
        items = list(stored)
        backlog_limit = self.config.enrichment_backlog_limit
        if include_backlog and backlog_limit > 0:
            stored_ids = {item.id for item in stored}
            try:
                unanalyzed = self.storage.query_unanalyzed(limit=backlog_limit + len(stored))
            except StorageError as e:
                report.errors.append(f"query_unanalyzed: {e}")
                unanalyzed = []
            backlog = [item for item in unanalyzed if item.id not in stored_ids][:backlog_limit]
            if backlog:
                logger.info(f"Including {len(backlog)} backlog items in enrichment")
            items.extend(backlog)

        if not items:
            return set()

        logger.info(f"Enriching {len(items)} items")
        results = self.enrichment.enrich_batch(items)
        item_days = {item.id: item.timestamp.date() for item in items}

        touched: Set[date] = set()
        batch_size = max(1, self.config.batch_size)
        for i in range(0, len(results), batch_size):
            batch = results[i:i + batch_size]
            try:
                self.storage.insert_enrichment_results(batch)
            except StorageError as e:
                report.errors.append(f"insert_enrichment_results: {e}")
                continue
            for result in batch:
                report.items_enriched += 1
                if result.source == EnrichmentSource.LLM:
                    report.llm_enriched += 1
                else:
                    report.fallback_enriched += 1
                touched.add(item_days[result.feedback_id])
        return touched

    def _aggregate(self, days: Set[date], report: CollectionRunReport) -> None:
        for day in sorted(days):
            try:
                report.aggregates.append(self.aggregator.recompute(day))
            except StorageError as e:
                report.errors.append(f"aggregate {day}: {e}")


def main():
    """Main entry point for a collection run with CLI arguments."""
    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(
        description='Collect developer feedback from public platforms, enrich it and update daily aggregates.'
    )
    parser.add_argument(
        '--days-back',
        type=int,
        help='Only collect items created in the last N days (default from config)'
    )
    parser.add_argument(
        '--timeout',
        type=float,
        help='Overall collection deadline in seconds'
    )
    parser.add_argument(
        '--skip-enrichment',
        action='store_true',
        help='Store new items without enriching them'
    )
    parser.add_argument(
        '--no-backlog',
        action='store_true',
        help='Only enrich items collected in this run'
    )
    parser.add_argument(
        '--init-schema',
        action='store_true',
        help='Create database tables before running'
    )
    args = parser.parse_args()

    if args.days_back is not None and args.days_back < 1:
        parser.error("--days-back must be at least 1")

    # Load configuration and build clients once
    config = Settings()
    storage = PostgresClient(config)
    fetch_client = FetchClient(config)
    generator = ChatAgent(config)

    orchestrator = None
    try:
        if args.init_schema:
            storage.initialize_schema()
        orchestrator = RunOrchestrator(
            config, storage=storage, fetch_client=fetch_client, generator=generator
        )
        report = orchestrator.run(
            days_back=args.days_back,
            timeout=args.timeout,
            enrich=not args.skip_enrichment,
            include_backlog=not args.no_backlog,
        )
    finally:
        if orchestrator is not None:
            orchestrator.wait_for_abandoned(config.collector_shutdown_grace_seconds)
        fetch_client.close()
        storage.close()

    # Print results
    print("\n" + "="*60)
    print("COLLECTION RUN RESULTS" + (" (PARTIAL)" if report.partial else ""))
    print("="*60)
    for platform in report.platforms:
        status = "ok" if platform.success else f"FAILED ({platform.error})"
        print(f"{platform.platform:<10} collected={platform.items_collected:<5} stored={platform.items_stored:<5} {status}")
    print(f"Total collected: {report.total_items_collected}")
    print(f"Unique items: {report.unique_items}")
    print(f"New items stored: {report.new_items_stored}")
    print(f"Duplicates skipped: {report.duplicates_skipped}")
    print(f"Enriched: {report.items_enriched} (llm={report.llm_enriched}, fallback={report.fallback_enriched})")
    print(f"Errors: {len(report.errors)}")
    for error in report.errors:
        print(f"  - {error}")
    print(f"Duration: {report.duration}s")
    print("="*60)


if __name__ == "__main__":
    main()
