# devpulse/pipelines/backfill.py
"""
Backfill pipeline to enrich stored feedback that has no enrichment result yet.
"""

from datetime import date
from typing import Optional, Set
import logging
import argparse

from devpulse.agents.enrichment import EnrichmentEngine
from devpulse.agents.llm_agent import ChatAgent
from devpulse.config.settings import Settings
from devpulse.data_access.postgres_client import PostgresClient
from devpulse.models.errors import StorageError
from devpulse.models.schemas import EnrichmentSource
from devpulse.pipelines.aggregate import DailyAggregator


logger = logging.getLogger(__name__)


class EnrichmentBackfillPipeline:
    """Pipeline for enriching historical feedback and refreshing affected aggregates."""

    def __init__(
        self,
        config: Settings,
        storage: Optional[PostgresClient] = None,
        enrichment_engine: Optional[EnrichmentEngine] = None,
        aggregator: Optional[DailyAggregator] = None,
    ):
        """
        Initialize the backfill pipeline.

        Args:
            config: Application settings
            storage: Storage client (default: PostgresClient from config)
            enrichment_engine: Enrichment engine (default: OpenAI-backed)
            aggregator: Daily aggregator (default: over the same storage)
        """
        self.config = config
        self.storage = storage or PostgresClient(config)
        self.enrichment = enrichment_engine or EnrichmentEngine(config, ChatAgent(config))
        self.aggregator = aggregator or DailyAggregator(self.storage)

    def run(self, limit: Optional[int] = None, batch_size: Optional[int] = None) -> dict:
        """
        Execute the backfill pipeline.

        Args:
            limit: Maximum number of items to enrich (None = all unanalyzed items)
            batch_size: Number of items to enrich and persist per batch (default from config)

        Returns:
            Dictionary with processing statistics
        """
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

        if batch_size is None:
            batch_size = self.config.batch_size

        logger.info("Starting enrichment backfill")
        self.enrichment.reset()

        items = self.storage.query_unanalyzed(limit=limit)
        total_items = len(items)
        logger.info(f"Found {total_items} unanalyzed items")

        if total_items == 0:
            logger.info("No items to process")
            return {
                "total_items": 0,
                "enriched": 0,
                "llm_enriched": 0,
                "fallback_enriched": 0,
                "errors": 0,
                "days_recomputed": 0,
            }

        enriched = 0
        llm_enriched = 0
        errors = 0
        touched_days: Set[date] = set()

        for i in range(0, total_items, batch_size):
            batch = items[i:i + batch_size]
            batch_num = (i // batch_size) + 1
            total_batches = (total_items + batch_size - 1) // batch_size

            logger.info(f"Processing batch {batch_num}/{total_batches} ({len(batch)} items)")

            results = self.enrichment.enrich_batch(batch)
            try:
                self.storage.insert_enrichment_results(results)
            except StorageError as e:
                logger.error(f"Error saving batch {batch_num}: {e}")
                errors += len(batch)
                continue

            enriched += len(results)
            llm_enriched += sum(1 for r in results if r.source == EnrichmentSource.LLM)
            touched_days.update(item.timestamp.date() for item in batch)

        days_recomputed = 0
        for day in sorted(touched_days):
            try:
                self.aggregator.recompute(day)
                days_recomputed += 1
            except StorageError as e:
                logger.error(f"Error recomputing aggregate for {day}: {e}")

        logger.info(
            f"Backfill complete: {enriched} enriched ({llm_enriched} llm), "
            f"{errors} errors, {days_recomputed} days recomputed"
        )

        return {
            "total_items": total_items,
            "enriched": enriched,
            "llm_enriched": llm_enriched,
            "fallback_enriched": enriched - llm_enriched,
            "errors": errors,
            "days_recomputed": days_recomputed,
        }


def main():
    """Main entry point for running the enrichment backfill."""
    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(
        description='Enrich stored feedback items that have not been analyzed yet.'
    )
    parser.add_argument(
        '--limit',
        type=int,
        help='Maximum number of items to enrich'
    )
    parser.add_argument(
        '--batch-size',
        type=int,
        help='Number of items to enrich and save per batch'
    )
    args = parser.parse_args()

    # Load configuration
    config = Settings()
    storage = PostgresClient(config)

    try:
        pipeline = EnrichmentBackfillPipeline(config, storage=storage)
        stats = pipeline.run(limit=args.limit, batch_size=args.batch_size)
    finally:
        storage.close()

    # Print results
    print("\n" + "="*50)
    print("ENRICHMENT BACKFILL RESULTS")
    print("="*50)
    print(f"Total items processed: {stats['total_items']}")
    print(f"Enriched: {stats['enriched']}")
    print(f"  via LLM: {stats['llm_enriched']}")
    print(f"  via fallback heuristic: {stats['fallback_enriched']}")
    print(f"Errors: {stats['errors']}")
    print(f"Days recomputed: {stats['days_recomputed']}")
    print("="*50)


if __name__ == "__main__":
    main()
