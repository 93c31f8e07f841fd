"""Alert state machine.

Pure functions, no I/O. States cycle INACTIVE -> PENDING -> FIRING ->
RESOLVED -> (INACTIVE | PENDING); there is no terminal state.

    current    condition  next
    INACTIVE   met        PENDING
    INACTIVE   not met    INACTIVE
    PENDING    met        FIRING once pending duration elapsed, else PENDING
    PENDING    not met    INACTIVE
    FIRING     met        FIRING
    FIRING     not met    RESOLVED
    RESOLVED   met        PENDING
    RESOLVED   not met    INACTIVE
"""

import math
from datetime import datetime

from alert_engine.alerts.schemas import AlertOperator, AlertState


def check_threshold(
    value: float,
    threshold: float,
    operator: AlertOperator | str,
) -> bool:
    """Return True when ``value`` breaches ``threshold`` (strict comparison)."""
    if AlertOperator(operator) == AlertOperator.GREATER_THAN:
        return value > threshold
    return value < threshold


def next_state(
    current: AlertState,
    condition_met: bool,
    elapsed_ms: float,
    pending_ms: float,
) -> AlertState:
    """Compute the next state.

    Args:
        current: State before this evaluation.
        condition_met: Result of ``check_threshold``.
        elapsed_ms: Time since ``state_changed_at`` (only used in PENDING).
        pending_ms: Debounce duration for the alert.
    """
    if current == AlertState.INACTIVE:
        return AlertState.PENDING if condition_met else AlertState.INACTIVE

    if current == AlertState.PENDING:
        if not condition_met:
            return AlertState.INACTIVE
        if elapsed_ms >= pending_ms:
            return AlertState.FIRING
        return AlertState.PENDING

    if current == AlertState.FIRING:
        return AlertState.FIRING if condition_met else AlertState.RESOLVED

    if current == AlertState.RESOLVED:
        return AlertState.PENDING if condition_met else AlertState.INACTIVE

    raise ValueError(f"Unknown alert state: {current!r}")


def is_significant(previous: AlertState, new: AlertState) -> bool:
    """Transitions that get an audit history record.

    Entering FIRING or RESOLVED, or leaving FIRING.
    """
    if previous == new:
        return False
    return new in (AlertState.FIRING, AlertState.RESOLVED) or previous == AlertState.FIRING


def enters_firing(previous: AlertState, new: AlertState) -> bool:
    return new == AlertState.FIRING and previous != AlertState.FIRING


def cooldown_elapsed(
    last_triggered_at: datetime | None,
    now: datetime,
    cooldown_ms: float,
) -> bool:
    """True when a sustained FIRING alert may notify again."""
    if last_triggered_at is None:
        return True
    return elapsed_ms(last_triggered_at, now) >= cooldown_ms


def elapsed_ms(since: datetime | None, now: datetime) -> float:
    """Milliseconds from ``since`` to ``now``; infinite when ``since`` is unknown."""
    if since is None:
        return math.inf
    return (now - since).total_seconds() * 1000
