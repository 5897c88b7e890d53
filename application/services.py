from __future__ import annotations

import logging
import math
import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, List, Optional

from domain.interest import (
    EARLY_WITHDRAWAL_PENALTY,
    MASTER_USER_ID,
    MIN_STAKE_AMOUNT,
    apply_early_withdrawal_penalty,
    base_apr,
    calculate_earnings,
    current_time_ms,
    projected_earnings,
)
from domain.models import StakingPosition, TransactionRecord, get_lock_period
from domain.money import money
from domain.repositories import StakingRepository

logger = logging.getLogger(__name__)

LEGACY_LOCK_PERIOD = "30d"
MISSING_POSITION_ID = "Missing positionId."


class ErrorKind(str, Enum):
    """Business-rule failures a staking operation can report."""

    INVALID_LOCK_PERIOD = "invalid_lock_period"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_INPUT = "invalid_input"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    POSITION_NOT_FOUND = "position_not_found"
    NOTHING_TO_CLAIM = "nothing_to_claim"


@dataclass
class PositionView:
    """A stored position enriched with values derived at read time."""

    position: StakingPosition
    current_earnings: float
    unlock_time: int
    is_locked: bool

    def to_dict(self) -> dict:
        data = self.position.to_dict()
        data.update(
            currentEarnings=self.current_earnings,
            unlockTime=self.unlock_time,
            isLocked=self.is_locked,
        )
        return data


@dataclass
class PositionDetail(PositionView):
    """Everything the position page shows about a single stake."""

    base_apr: float
    bonus_apr: float
    lock_period_days: int
    early_withdrawal_penalty: float
    projected_earnings: float
    time_remaining: int
    last_update: int

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            baseAPR=self.base_apr,
            bonusAPR=self.bonus_apr,
            lockPeriodDays=self.lock_period_days,
            earlyWithdrawalPenalty=self.early_withdrawal_penalty,
            projectedEarnings=self.projected_earnings,
            timeRemaining=self.time_remaining,
            lastUpdate=self.last_update,
        )
        return data


@dataclass
class StakeResult:
    success: bool
    error: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    position: Optional[StakingPosition] = None


@dataclass
class UnstakeResult:
    success: bool
    error: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    returned: float = 0.0
    principal: float = 0.0
    earnings: float = 0.0
    penalty_applied: bool = False


@dataclass
class ClaimResult:
    success: bool
    error: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    claimed_amount: float = 0.0
    new_balance: float = 0.0
    position: Optional[StakingPosition] = None


@dataclass
class ListPositionsResult:
    """Result of listing positions; `migrated` is set when legacy data was converted."""

    positions: List[PositionView] = field(default_factory=list)
    migrated: bool = False


@dataclass
class PositionDetailResult:
    success: bool
    error: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    detail: Optional[PositionDetail] = None


def parse_amount(amount: Any) -> Optional[float]:
    """
    Parse a user-supplied coin amount.

    Accepts numbers and numeric strings. Returns None for anything that is
    not a finite number (including booleans, NaN and infinities).
    """

    if amount is None or isinstance(amount, bool):
        return None
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def _new_position_id(existing: Iterable[StakingPosition]) -> str:
    taken = {p.position_id for p in existing}
    while True:
        position_id = secrets.token_hex(16)
        if position_id not in taken:
            return position_id


def _find_position(positions: List[StakingPosition], position_id: str) -> Optional[int]:
    for index, position in enumerate(positions):
        if position.position_id == position_id:
            return index
    return None


def _build_view(position: StakingPosition, now: int) -> PositionView:
    unlock_time = position.unlock_time
    return PositionView(
        position=position,
        current_earnings=calculate_earnings(
            position.amount, position.last_claim_time, position.lock_period, now
        ),
        unlock_time=unlock_time,
        is_locked=now < unlock_time,
    )


def _migrate_legacy_stake(
    user_id: str,
    staking_repo: StakingRepository,
    now: int,
) -> Optional[StakingPosition]:
    # Callers must already hold `staking_repo.atomic(user_id)`.
    if staking_repo.get_positions(user_id) is not None:
        return None

    legacy = staking_repo.get_legacy_stake(user_id)
    if legacy is None:
        return None

    amount, last_stake_time = legacy
    if amount <= 0:
        return None

    start_time = last_stake_time or now
    position = StakingPosition(
        position_id=_new_position_id([]),
        amount=money(amount),
        lock_period=LEGACY_LOCK_PERIOD,
        start_time=start_time,
        last_claim_time=start_time,
    )
    staking_repo.save_positions(user_id, [position])
    staking_repo.clear_legacy_stake(user_id)

    logger.info(
        "Migrated legacy stake of %s coins for user %s into position %s",
        position.amount,
        user_id,
        position.position_id,
    )
    return position


def _load_positions(
    user_id: str,
    staking_repo: StakingRepository,
    now: int,
) -> List[StakingPosition]:
    _migrate_legacy_stake(user_id, staking_repo, now)
    return staking_repo.get_positions(user_id) or []


def migrate_legacy_stake(
    user_id: str,
    staking_repo: StakingRepository,
    now: Optional[int] = None,
) -> Optional[StakingPosition]:
    """
    Convert the single-position stake format into a position list.

    Only runs when the user has no position list yet and a positive legacy
    `staked-{userId}` amount exists. The legacy stake becomes one `30d`
    position starting at the legacy stake time, and the legacy keys are
    removed. Calling it again is a no-op and returns None.
    """

    if now is None:
        now = current_time_ms()

    with staking_repo.atomic(user_id):
        return _migrate_legacy_stake(user_id, staking_repo, now)


def stake(
    user_id: str,
    amount: Any,
    lock_period: Any,
    staking_repo: StakingRepository,
    now: Optional[int] = None,
) -> StakeResult:
    """
    Open a new staking position.

    - The lock period must be one of the known keys and `amount` must be a
      number of at least `MIN_STAKE_AMOUNT`.
    - The caller's balance is decreased by `amount`, the position is
      appended and the transfer to the pool is logged, all in one atomic
      unit: either everything is written or nothing is.
    """

    period = get_lock_period(lock_period) if isinstance(lock_period, str) else None
    if period is None:
        return StakeResult(
            success=False,
            error=ErrorKind.INVALID_LOCK_PERIOD,
            error_message="Invalid lock period",
        )

    parsed = parse_amount(amount)
    if parsed is None or parsed < MIN_STAKE_AMOUNT:
        return StakeResult(
            success=False,
            error=ErrorKind.INVALID_AMOUNT,
            error_message=f"Invalid amount. Minimum stake is {MIN_STAKE_AMOUNT} coins.",
        )

    if now is None:
        now = current_time_ms()

    with staking_repo.atomic(user_id):
        balance = staking_repo.get_balance(user_id)
        if balance < parsed:
            return StakeResult(
                success=False,
                error=ErrorKind.INSUFFICIENT_BALANCE,
                error_message="Insufficient balance",
            )

        principal = money(parsed)

        positions = _load_positions(user_id, staking_repo, now)
        position = StakingPosition(
            position_id=_new_position_id(positions),
            amount=principal,
            lock_period=period.key,
            start_time=now,
            last_claim_time=now,
        )
        positions.append(position)

        staking_repo.save_positions(user_id, positions)
        staking_repo.set_balance(user_id, balance - principal)
        staking_repo.append_transaction(
            TransactionRecord(
                sender_id=user_id,
                receiver_id=MASTER_USER_ID,
                amount=principal,
                description=f"Staked with {period.key} lock",
                timestamp=now,
            )
        )

    logger.info(
        "User %s staked %s coins with %s lock (position %s)",
        user_id,
        principal,
        period.key,
        position.position_id,
    )
    return StakeResult(success=True, position=position)


def unstake(
    user_id: str,
    position_id: Any,
    staking_repo: StakingRepository,
    now: Optional[int] = None,
) -> UnstakeResult:
    """
    Close a position and pay back principal plus earnings.

    If the lock period has not elapsed yet, earnings are reduced by
    `EARLY_WITHDRAWAL_PENALTY`. The principal is always returned in full.
    """

    if not position_id or not isinstance(position_id, str):
        return UnstakeResult(
            success=False,
            error=ErrorKind.INVALID_INPUT,
            error_message=MISSING_POSITION_ID,
        )

    if now is None:
        now = current_time_ms()

    with staking_repo.atomic(user_id):
        positions = _load_positions(user_id, staking_repo, now)
        index = _find_position(positions, position_id)
        if index is None:
            return UnstakeResult(
                success=False,
                error=ErrorKind.POSITION_NOT_FOUND,
                error_message="Invalid position",
            )

        position = positions[index]
        is_locked = now - position.start_time < position.lock_duration_ms

        earnings = calculate_earnings(
            position.amount, position.last_claim_time, position.lock_period, now
        )
        if is_locked:
            earnings = apply_early_withdrawal_penalty(earnings)
        earnings = money(max(earnings, 0.0))

        principal = position.amount
        total_return = money(principal + earnings)

        balance = staking_repo.get_balance(user_id)
        staking_repo.set_balance(user_id, balance + total_return)

        del positions[index]
        staking_repo.save_positions(user_id, positions)

        staking_repo.append_transaction(
            TransactionRecord(
                sender_id=MASTER_USER_ID,
                receiver_id=user_id,
                amount=principal,
                description=f"Unstaked position {position_id}",
                timestamp=now,
            )
        )
        if earnings > 0:
            staking_repo.append_transaction(
                TransactionRecord(
                    sender_id=MASTER_USER_ID,
                    receiver_id=user_id,
                    amount=earnings,
                    description=f"Staking earnings for position {position_id}",
                    timestamp=now,
                )
            )

    logger.info(
        "User %s unstaked position %s: principal=%s earnings=%s penalty=%s",
        user_id,
        position_id,
        principal,
        earnings,
        is_locked,
    )
    return UnstakeResult(
        success=True,
        returned=total_return,
        principal=principal,
        earnings=earnings,
        penalty_applied=is_locked,
    )


def claim(
    user_id: str,
    position_id: Any,
    staking_repo: StakingRepository,
    now: Optional[int] = None,
) -> ClaimResult:
    """
    Settle a position's accrued earnings into the balance without closing it.

    Claiming is allowed while the position is locked and is never penalised.
    The position's `lastClaimTime` moves to `now`, so accrual restarts from
    zero; principal and start time are left untouched.
    """

    if not position_id or not isinstance(position_id, str):
        return ClaimResult(
            success=False,
            error=ErrorKind.INVALID_INPUT,
            error_message=MISSING_POSITION_ID,
        )

    if now is None:
        now = current_time_ms()

    with staking_repo.atomic(user_id):
        positions = _load_positions(user_id, staking_repo, now)
        index = _find_position(positions, position_id)
        if index is None:
            return ClaimResult(
                success=False,
                error=ErrorKind.POSITION_NOT_FOUND,
                error_message="Invalid position",
            )

        position = positions[index]
        earnings = money(
            calculate_earnings(
                position.amount, position.last_claim_time, position.lock_period, now
            )
        )
        # Earnings that round to zero coins stay on the position.
        if earnings <= 0:
            return ClaimResult(
                success=False,
                error=ErrorKind.NOTHING_TO_CLAIM,
                error_message="No earnings to claim",
            )

        new_balance = money(staking_repo.get_balance(user_id) + earnings)
        staking_repo.set_balance(user_id, new_balance)

        position.last_claim_time = now
        staking_repo.save_positions(user_id, positions)

        staking_repo.append_transaction(
            TransactionRecord(
                sender_id=MASTER_USER_ID,
                receiver_id=user_id,
                amount=earnings,
                description=f"Claimed earnings for position {position_id}",
                timestamp=now,
            )
        )

    logger.info("User %s claimed %s coins from position %s", user_id, earnings, position_id)
    return ClaimResult(
        success=True,
        claimed_amount=earnings,
        new_balance=new_balance,
        position=position,
    )


def list_positions(
    user_id: str,
    staking_repo: StakingRepository,
    now: Optional[int] = None,
) -> ListPositionsResult:
    """Return all of the user's positions with their current earnings and lock state."""

    if now is None:
        now = current_time_ms()

    with staking_repo.atomic(user_id):
        migrated = _migrate_legacy_stake(user_id, staking_repo, now)
        positions = staking_repo.get_positions(user_id) or []

    return ListPositionsResult(
        positions=[_build_view(p, now) for p in positions],
        migrated=migrated is not None,
    )


def get_position_detail(
    user_id: str,
    position_id: Any,
    staking_repo: StakingRepository,
    now: Optional[int] = None,
) -> PositionDetailResult:
    """
    Return a single position with rates, projections and time remaining.

    `projected_earnings` is a simplified, non-compounded estimate over the
    whole lock period and is meant for display only.
    """

    if not position_id or not isinstance(position_id, str):
        return PositionDetailResult(
            success=False,
            error=ErrorKind.INVALID_INPUT,
            error_message=MISSING_POSITION_ID,
        )

    if now is None:
        now = current_time_ms()

    with staking_repo.atomic(user_id):
        positions = _load_positions(user_id, staking_repo, now)

    index = _find_position(positions, position_id)
    if index is None:
        return PositionDetailResult(
            success=False,
            error=ErrorKind.POSITION_NOT_FOUND,
            error_message="Position not found",
        )

    position = positions[index]
    view = _build_view(position, now)
    period = get_lock_period(position.lock_period)
    bonus = period.bonus if period else 0.0
    apr = base_apr()

    detail = PositionDetail(
        position=position,
        current_earnings=view.current_earnings,
        unlock_time=view.unlock_time,
        is_locked=view.is_locked,
        base_apr=apr,
        bonus_apr=apr * (1 + bonus),
        lock_period_days=period.days if period else 0,
        early_withdrawal_penalty=EARLY_WITHDRAWAL_PENALTY * 100,
        projected_earnings=projected_earnings(position.amount, position.lock_period),
        time_remaining=max(0, view.unlock_time - now),
        last_update=now,
    )
    return PositionDetailResult(success=True, detail=detail)


def list_transactions(user_id: str, staking_repo: StakingRepository) -> List[TransactionRecord]:
    """Return the user's ledger entries, oldest first."""

    return staking_repo.list_transactions(user_id)
