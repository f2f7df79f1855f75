"""
Typed failures raised by the trend core.

  ValidationError      bad/missing/non-finite/wrong-dimension embedding.
                       Recovered locally: the item is skipped and counted.
  DimensionMismatch    similarity across incompatible embedding spaces.
                       Programming/config error, fatal to the call.
  InsufficientHistory  forecast requested with too few history points.
                       Surfaced to the caller, never retried here.
  RecomputeConflict    two recomputations of the same trend overlapped, or
                       the stored version moved underneath a writer. The
                       loser must re-read and retry.
"""


class TrendEngineError(Exception):
    """Base class for all trend core failures."""


class ValidationError(TrendEngineError, ValueError):
    """Content item failed input validation."""

    def __init__(self, item_id: str, reason: str):
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"Item {item_id!r} rejected: {reason}")


class DimensionMismatch(TrendEngineError, ValueError):
    """Two vectors (or a vector and an index) have different dimensions."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Embedding dimension mismatch: expected {expected}, got {actual}")


class InsufficientHistory(TrendEngineError):
    """Score history too short to forecast."""

    def __init__(self, trend_id: str, available: int, required: int):
        self.trend_id = trend_id
        self.available = available
        self.required = required
        super().__init__(
            f"Trend {trend_id} has {available} history points, {required} required"
        )


class RecomputeConflict(TrendEngineError):
    """A concurrent writer already holds or has advanced this trend."""

    def __init__(self, trend_id: str, detail: str = "recompute already in flight"):
        self.trend_id = trend_id
        super().__init__(f"Conflict on trend {trend_id}: {detail}")


Conflict = RecomputeConflict
