from __future__ import annotations

import time
from typing import Optional

from .models import get_lock_period

DAILY_INTEREST_RATE = 0.05
MIN_STAKE_AMOUNT = 10
EARLY_WITHDRAWAL_PENALTY = 0.5
MASTER_USER_ID = "MASTER"
MS_PER_DAY = 24 * 60 * 60 * 1000


def current_time_ms() -> int:
    return int(time.time() * 1000)


def calculate_earnings(
    principal: float,
    last_claim_time: int,
    lock_period: str,
    now: Optional[int] = None,
) -> float:
    """
    Compound interest accrued on `principal` since `last_claim_time`.

    The base rate is `DAILY_INTEREST_RATE / 365` per day, boosted by the lock
    period bonus, and compounded over fractional elapsed days:

        earnings = P * ((1 + r) ** days - 1)

    No rounding happens here; amounts are quantised when they are persisted.
    """

    if now is None:
        now = current_time_ms()

    days_elapsed = (now - last_claim_time) / MS_PER_DAY

    period = get_lock_period(lock_period)
    bonus = period.bonus if period else 0.0
    effective_rate = (DAILY_INTEREST_RATE / 365) * (1 + bonus)

    return principal * ((1 + effective_rate) ** days_elapsed - 1)


def apply_early_withdrawal_penalty(earnings: float) -> float:
    return earnings * (1 - EARLY_WITHDRAWAL_PENALTY)


def base_apr() -> float:
    """Base yearly rate as a percentage, as shown on the position page."""

    return DAILY_INTEREST_RATE * 365 * 100


def projected_earnings(principal: float, lock_period: str) -> float:
    """
    Simplified, non-compounded estimate of what a position earns over its
    whole lock period.
    """

    period = get_lock_period(lock_period)
    if period is None:
        return 0.0
    return principal * (DAILY_INTEREST_RATE * (1 + period.bonus)) * period.days
