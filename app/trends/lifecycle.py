"""
Trend lifecycle state machine.

States: emerging → peak → declining, with declining → emerging as the only
recovery path. Transitions live in one explicit table keyed by
(current state, signal); signal derivation is kept separate from the table
so each can be tested on its own.

    (EMERGING,  NEW_HIGH)           → PEAK
    (EMERGING,  SUSTAINED_DECLINE)  → DECLINING   (never reached peak)
    (PEAK,      FALLING)            → DECLINING
    (PEAK,      SUSTAINED_DECLINE)  → DECLINING
    (DECLINING, RECOVERY)           → EMERGING

More than one signal can hold in a cycle (a declining trend that recovers
may also set a new high). Signals are tried in LIFECYCLE_SIGNAL_PRECEDENCE
order and the first one with a table entry for the current state wins.

Only the current score/velocity, the previous history entry and the
bookkeeping stored on the Trend (high-water mark, consecutive negative
cycles, score before the negative run, decline start score) are consulted.
The decline start is the score before the fall began, so recovery means
climbing back above where the trend stood, not just ticking up from the low.
"""

import logging
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from pydantic import BaseModel

from app.schemas.base import LifecycleSignal, TrendStatus

logger = logging.getLogger(__name__)


TRANSITIONS: Dict[Tuple[TrendStatus, LifecycleSignal], TrendStatus] = {
    (TrendStatus.EMERGING, LifecycleSignal.NEW_HIGH): TrendStatus.PEAK,
    (TrendStatus.EMERGING, LifecycleSignal.SUSTAINED_DECLINE): TrendStatus.DECLINING,
    (TrendStatus.PEAK, LifecycleSignal.FALLING): TrendStatus.DECLINING,
    (TrendStatus.PEAK, LifecycleSignal.SUSTAINED_DECLINE): TrendStatus.DECLINING,
    (TrendStatus.DECLINING, LifecycleSignal.RECOVERY): TrendStatus.EMERGING,
}

DEFAULT_PRECEDENCE: Tuple[LifecycleSignal, ...] = (
    LifecycleSignal.SUSTAINED_DECLINE,
    LifecycleSignal.FALLING,
    LifecycleSignal.RECOVERY,
    LifecycleSignal.NEW_HIGH,
)


class LifecycleState(BaseModel):
    """Status plus the rolling bookkeeping needed to evaluate the next cycle."""
    status: TrendStatus = TrendStatus.EMERGING
    high_water_mark: float = 0.0
    consecutive_negative_cycles: int = 0
    # Score just before the current run of negative cycles began
    negative_run_start_score: Optional[float] = None
    decline_start_score: Optional[float] = None


def derive_signals(
    state: LifecycleState,
    score: float,
    velocity: float,
    history_len: int,
    min_history: int = 3,
    negative_cycles: int = 3,
) -> FrozenSet[LifecycleSignal]:
    """Signals that hold for this cycle.

    `state.consecutive_negative_cycles` must already include this cycle.
    `history_len` is the number of entries recorded before this cycle.
    """
    signals = set()
    if velocity < 0:
        signals.add(LifecycleSignal.FALLING)
        if state.consecutive_negative_cycles >= negative_cycles:
            signals.add(LifecycleSignal.SUSTAINED_DECLINE)
    else:
        if history_len >= min_history and score > state.high_water_mark:
            signals.add(LifecycleSignal.NEW_HIGH)
        if (
            velocity > 0
            and state.decline_start_score is not None
            and score > state.decline_start_score
        ):
            signals.add(LifecycleSignal.RECOVERY)
    return frozenset(signals)


def next_status(
    status: TrendStatus,
    signals: FrozenSet[LifecycleSignal],
    precedence: Sequence[LifecycleSignal] = DEFAULT_PRECEDENCE,
) -> TrendStatus:
    """Look up the transition table in precedence order."""
    for signal in precedence:
        if signal in signals:
            target = TRANSITIONS.get((status, signal))
            if target is not None:
                return target
    return status


def parse_precedence(names: List[str]) -> Tuple[LifecycleSignal, ...]:
    """Config strings → signals; any signal left out is appended in default order."""
    ordered = [LifecycleSignal(n) for n in names]
    for signal in DEFAULT_PRECEDENCE:
        if signal not in ordered:
            ordered.append(signal)
    return tuple(ordered)


def advance(
    state: LifecycleState,
    score: float,
    velocity: float,
    history_len: int,
    min_history: int = 3,
    negative_cycles: int = 3,
    precedence: Sequence[LifecycleSignal] = DEFAULT_PRECEDENCE,
) -> LifecycleState:
    """Evaluate one recompute cycle and return the new lifecycle state."""
    negatives = state.consecutive_negative_cycles + 1 if velocity < 0 else 0
    if velocity >= 0:
        run_start = None
    elif state.consecutive_negative_cycles > 0 and state.negative_run_start_score is not None:
        run_start = state.negative_run_start_score
    else:
        run_start = score - velocity
    counted = state.model_copy(update={"consecutive_negative_cycles": negatives})

    signals = derive_signals(counted, score, velocity, history_len, min_history, negative_cycles)
    status = next_status(state.status, signals, precedence)

    decline_start = state.decline_start_score
    if status == TrendStatus.DECLINING and state.status != TrendStatus.DECLINING:
        decline_start = run_start
    elif status != TrendStatus.DECLINING:
        decline_start = None

    if status != state.status:
        logger.debug(
            f"Lifecycle {state.status.value} → {status.value} "
            f"(score={score:.2f}, velocity={velocity:+.2f}, signals={sorted(s.value for s in signals)})"
        )

    return LifecycleState(
        status=status,
        high_water_mark=max(state.high_water_mark, score),
        consecutive_negative_cycles=negatives,
        negative_run_start_score=run_start,
        decline_start_score=decline_start,
    )
