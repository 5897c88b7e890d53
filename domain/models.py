from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class LockPeriod:
    """
    Commitment terms a stake is opened with.

    `bonus` is a fractional multiplier on top of the base interest rate,
    e.g. 0.5 means the position earns 150% of the base rate.
    """

    key: str
    days: int
    bonus: float

    @property
    def duration_ms(self) -> int:
        return self.days * 24 * 60 * 60 * 1000


LOCK_PERIODS: Dict[str, LockPeriod] = {
    "30d": LockPeriod(key="30d", days=30, bonus=0.2),
    "90d": LockPeriod(key="90d", days=90, bonus=0.5),
    "180d": LockPeriod(key="180d", days=180, bonus=1.0),
}


def get_lock_period(key: str) -> Optional[LockPeriod]:
    return LOCK_PERIODS.get(key)


@dataclass
class StakingPosition:
    """
    A single staking commitment owned by one user.

    This model is independent of the transport (web, Discord) and of the
    storage layout. `to_dict` / `from_dict` define the JSON shape stored
    under `staking-positions-{userId}`, which keeps the camelCase keys the
    panel has always used.
    """

    position_id: str
    amount: float
    lock_period: str
    start_time: int
    last_claim_time: int

    def to_dict(self) -> dict:
        return {
            "positionId": self.position_id,
            "amount": self.amount,
            "lockPeriod": self.lock_period,
            "startTime": self.start_time,
            "lastClaimTime": self.last_claim_time,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StakingPosition":
        return cls(
            position_id=str(data["positionId"]),
            amount=float(data["amount"]),
            lock_period=str(data["lockPeriod"]),
            start_time=int(data["startTime"]),
            last_claim_time=int(data["lastClaimTime"]),
        )

    @property
    def lock_duration_ms(self) -> int:
        # Positions with an unknown lock key are treated as never locked.
        period = get_lock_period(self.lock_period)
        return period.duration_ms if period else 0

    @property
    def unlock_time(self) -> int:
        return self.start_time + self.lock_duration_ms


@dataclass
class TransactionRecord:
    """One entry of the append-only coin ledger."""

    sender_id: str
    receiver_id: str
    amount: float
    description: str
    timestamp: int

    def to_dict(self) -> dict:
        return {
            "senderId": self.sender_id,
            "receiverId": self.receiver_id,
            "amount": self.amount,
            "description": self.description,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TransactionRecord":
        return cls(
            sender_id=str(data["senderId"]),
            receiver_id=str(data["receiverId"]),
            amount=float(data["amount"]),
            description=str(data.get("description", "")),
            timestamp=int(data["timestamp"]),
        )
