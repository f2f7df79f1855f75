"""
Trend core - command-line entry point.

Runs one pipeline cycle over a JSONL file of ContentItems (one JSON object
per line) and prints the ranked trends, optionally with forecasts.

    python -m app.main --items items.jsonl
    python -m app.main --items items.jsonl --db sqlite:///./trends.db --forecast
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError as SchemaValidationError

from .config import get_settings
from .schemas import ContentItem
from .trends import TrendPipeline
from .trends.store import InMemoryTrendStore

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Suppress noisy loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def load_items(path: Path) -> List[ContentItem]:
    """Parse a JSONL file. Malformed lines are logged and skipped."""
    items = []
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                items.append(ContentItem.model_validate(json.loads(line)))
            except (json.JSONDecodeError, SchemaValidationError) as e:
                logger.warning(f"{path}:{line_no}: skipping malformed item ({type(e).__name__})")
    return items


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for CLI."""
    parser = argparse.ArgumentParser(description="Trend formation, scoring and forecasting")
    parser.add_argument("--items", type=Path, required=True, help="JSONL file of content items")
    parser.add_argument("--db", default=None, help="SQLAlchemy URL (default: in-memory store)")
    parser.add_argument("--forecast", action="store_true", help="Forecast trends with enough history")
    parser.add_argument("--horizon", type=int, default=None, help="Forecast horizon in days")
    parser.add_argument("--top", type=int, default=10, help="Number of trends to print")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level)

    if args.db:
        from .database import SqlTrendStore
        store = SqlTrendStore(args.db)
        store.create_tables()
    else:
        store = InMemoryTrendStore()

    pipeline = TrendPipeline(settings=settings, store=store)
    items = load_items(args.items)
    now = datetime.now(timezone.utc)
    trends = pipeline.run_cycle(items, now)

    print("\n" + "=" * 60)
    print(f"TRENDS ({len(trends)} live, {len(items)} items)")
    print("=" * 60)
    for rank, trend in enumerate(trends[: args.top], start=1):
        print(
            f"{rank:>2}. {trend.score:5.1f}  {trend.status.value:<9} {trend.velocity:+6.1f}  "
            f"{trend.name}  [{', '.join(sorted(trend.platforms))}]"
        )

    if args.forecast:
        result = pipeline.forecast_all(args.horizon, now)
        print(f"\nForecasts: {len(result.predictions)} "
              f"(insufficient history: {len(result.insufficient_history)})")
        for prediction in result.predictions:
            flag = " HIGH OPPORTUNITY" if prediction.high_opportunity else ""
            print(f"  {prediction.trend_id[:8]}  confidence={prediction.confidence:.2f}  "
                  f"growth={prediction.projected_growth_pct:+.1f}%{flag}")
    print("=" * 60 + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
