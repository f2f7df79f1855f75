"""
Engagement aggregation for themes and trends.

SIGNALS:
  totals:           views / likes / comments / shares summed over items.
  average rate:     mean of per-item engagement rates (content-count weighted
                    when combining groups, so combining is exact).
  window engagement: interactions (likes + comments + shares) of items
                    published in the trailing window, and in the preceding
                    window of equal length.
  growth_rate:      percentage change window vs prior window.

Items are bucketed by publish time, not by snapshot time: the engagement a
post has collected is credited to the window it was published in.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, List

from app.schemas.base import EngagementStats, growth_pct
from app.schemas.content import ContentItem

logger = logging.getLogger(__name__)


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def aggregate_item_stats(
    items: Iterable[ContentItem],
    now: datetime,
    window_days: int = 7,
) -> EngagementStats:
    """Aggregate engagement of a group of items as of `now`."""
    now = _as_utc(now)
    window = timedelta(days=window_days)
    window_start = now - window
    prior_start = now - 2 * window

    views = likes = comments = shares = 0
    rate_sum = 0.0
    count = 0
    current = 0.0
    prior = 0.0

    for item in items:
        m = item.engagement
        views += m.views
        likes += m.likes
        comments += m.comments
        shares += m.shares
        rate_sum += m.rate
        count += 1

        pub = item.published_utc
        if window_start <= pub <= now:
            current += m.interactions
        elif prior_start <= pub < window_start:
            prior += m.interactions

    return EngagementStats(
        total_views=views,
        total_likes=likes,
        total_comments=comments,
        total_shares=shares,
        average_engagement_rate=rate_sum / count if count else 0.0,
        content_count=count,
        growth_rate=growth_pct(current, prior),
        window_engagement=current,
        prior_window_engagement=prior,
    )


def combine_stats(parts: List[EngagementStats]) -> EngagementStats:
    """Combine theme stats into trend stats.

    Counts and window engagement are summed, the average rate is weighted by
    content count, and growth is recomputed from the summed windows (a
    weighted mean of percentages would let a tiny theme with +900% dominate).
    """
    if not parts:
        return EngagementStats()

    total_count = sum(p.content_count for p in parts)
    weighted_rate = (
        sum(p.average_engagement_rate * p.content_count for p in parts) / total_count
        if total_count else 0.0
    )
    current = sum(p.window_engagement for p in parts)
    prior = sum(p.prior_window_engagement for p in parts)

    return EngagementStats(
        total_views=sum(p.total_views for p in parts),
        total_likes=sum(p.total_likes for p in parts),
        total_comments=sum(p.total_comments for p in parts),
        total_shares=sum(p.total_shares for p in parts),
        average_engagement_rate=weighted_rate,
        content_count=total_count,
        growth_rate=growth_pct(current, prior),
        window_engagement=current,
        prior_window_engagement=prior,
    )
