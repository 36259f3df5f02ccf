"""
Daily rollup of stored feedback into one aggregate row per UTC calendar day.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Union
import logging
import argparse

import pandas as pd

from devpulse.config.settings import Settings
from devpulse.data_access.postgres_client import PostgresClient, day_bounds
from devpulse.models.schemas import DailyAggregate


logger = logging.getLogger(__name__)

ROW_COLUMNS = ["id", "platform", "timestamp", "sentiment_score", "sentiment_label"]


def parse_day(day: Union[date, datetime, str]) -> date:
    """Accept a date, a datetime (converted to its UTC date) or a YYYY-MM-DD string."""
    if isinstance(day, datetime):
        if day.tzinfo is not None:
            day = day.astimezone(timezone.utc)
        return day.date()
    if isinstance(day, date):
        return day
    return datetime.strptime(day, '%Y-%m-%d').date()


class DailyAggregator:
    """Recomputes and upserts DailyAggregate rows from stored items."""

    def __init__(self, storage: PostgresClient):
        self.storage = storage

    @staticmethod
    def compute(day: date, rows: List[Dict[str, Any]]) -> DailyAggregate:
        """
        Build the aggregate for one day from its rows.

        Each row is one feedback item of the day joined with its latest
        enrichment result (sentiment_score/sentiment_label None when unanalyzed).
        The result depends only on the rows, so recomputation is idempotent.

        Args:
            day: Calendar day (UTC)
            rows: Rows from storage.get_feedback_with_enrichment

        Returns:
            DailyAggregate for the day
        """
        if not rows:
            return DailyAggregate(date=day)

        df = pd.DataFrame(rows, columns=ROW_COLUMNS)

        scores = pd.to_numeric(df["sentiment_score"], errors="coerce").dropna()
        average = round(float(scores.mean()), 6) if not scores.empty else None

        # The trailing 24h window ending at the end of the day is the day itself
        active_platforms = int(df["platform"].dropna().nunique())
        critical_issues = int((df["sentiment_label"] == "negative").sum())
        last_updated = pd.to_datetime(df["timestamp"], utc=True).max().to_pydatetime()

        return DailyAggregate(
            date=day,
            total_feedback=len(df),
            average_sentiment=average,
            active_platforms=active_platforms,
            critical_issues=critical_issues,
            last_updated=last_updated,
        )

    def recompute(self, day: Union[date, datetime, str]) -> DailyAggregate:
        """
        Recompute and upsert the aggregate for one day.

        Args:
            day: date, datetime or YYYY-MM-DD string

        Returns:
            The stored DailyAggregate
        """
        day = parse_day(day)
        start, end = day_bounds(day)
        rows = self.storage.get_feedback_with_enrichment(start, end)
        aggregate = self.compute(day, rows)
        self.storage.upsert_daily_aggregate(aggregate)
        logger.info(
            f"Aggregate for {day}: {aggregate.total_feedback} items, "
            f"avg sentiment {aggregate.average_sentiment}, "
            f"{aggregate.active_platforms} platforms, {aggregate.critical_issues} critical"
        )
        return aggregate

    def recompute_many(self, days: Iterable[Union[date, datetime, str]]) -> List[DailyAggregate]:
        """Recompute several days, each once, in chronological order."""
        unique_days = sorted({parse_day(day) for day in days})
        return [self.recompute(day) for day in unique_days]


def main():
    """Main entry point for recomputing daily aggregates."""
    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(
        description='Recompute daily feedback aggregates.'
    )
    parser.add_argument(
        '--date',
        type=str,
        help='Day to recompute in YYYY-MM-DD format (default: today, UTC)'
    )
    parser.add_argument(
        '--days',
        type=int,
        default=1,
        help='Number of consecutive days ending at --date to recompute'
    )
    args = parser.parse_args()

    try:
        end_day = parse_day(args.date) if args.date else datetime.now(timezone.utc).date()
    except ValueError:
        parser.error(f"Invalid date format: {args.date}. Use YYYY-MM-DD")
    if args.days < 1:
        parser.error("--days must be at least 1")

    config = Settings()
    storage = PostgresClient(config)
    try:
        aggregates = DailyAggregator(storage).recompute_many(
            end_day - timedelta(days=offset) for offset in range(args.days)
        )
    finally:
        storage.close()

    print("\n" + "="*60)
    print("DAILY AGGREGATES")
    print("="*60)
    for aggregate in aggregates:
        print(
            f"{aggregate.date}: total={aggregate.total_feedback} "
            f"avg_sentiment={aggregate.average_sentiment} "
            f"platforms={aggregate.active_platforms} critical={aggregate.critical_issues}"
        )
    print("="*60)


if __name__ == "__main__":
    main()
