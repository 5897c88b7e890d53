from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

from domain.models import StakingPosition, TransactionRecord
from domain.money import money
from domain.repositories import KeyValueStore, StakingRepository, StoreFailure
from infrastructure.locks import UserLocks

TRANSACTIONS_KEY = "transactions"


def positions_key(user_id: str) -> str:
    return f"staking-positions-{user_id}"


def coins_key(user_id: str) -> str:
    return f"coins-{user_id}"


def legacy_amount_key(user_id: str) -> str:
    return f"staked-{user_id}"


def legacy_time_key(user_id: str) -> str:
    return f"lastStakeTime-{user_id}"


class KeyValueStakingRepository(StakingRepository):
    """
    `StakingRepository` on top of any `KeyValueStore`.

    This class owns the key naming scheme shared with the rest of the panel
    and the mapping between stored JSON and the domain models. Amounts are
    quantised with `money` every time they are written.
    """

    def __init__(self, store: KeyValueStore, locks: Optional[UserLocks] = None) -> None:
        self._store = store
        self._locks = locks or UserLocks()

    @contextmanager
    def atomic(self, user_id: str) -> Iterator[None]:
        with self._locks.hold(user_id):
            with self._store.transaction():
                yield

    def get_balance(self, user_id: str) -> float:
        value = self._store.get(coins_key(user_id))
        if value is None:
            return 0.0
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise StoreFailure(f"Corrupt balance for user {user_id}") from exc

    def set_balance(self, user_id: str, amount: float) -> None:
        self._store.set(coins_key(user_id), money(amount))

    def get_positions(self, user_id: str) -> Optional[List[StakingPosition]]:
        raw = self._store.get(positions_key(user_id))
        if raw is None:
            return None
        try:
            return [StakingPosition.from_dict(item) for item in raw]
        except (TypeError, KeyError, ValueError) as exc:
            raise StoreFailure(f"Corrupt staking positions for user {user_id}") from exc

    def save_positions(self, user_id: str, positions: List[StakingPosition]) -> None:
        self._store.set(positions_key(user_id), [p.to_dict() for p in positions])

    def get_legacy_stake(self, user_id: str) -> Optional[Tuple[float, Optional[int]]]:
        amount = self._store.get(legacy_amount_key(user_id))
        if amount is None:
            return None
        last_stake_time = self._store.get(legacy_time_key(user_id))
        try:
            return (
                float(amount),
                int(last_stake_time) if last_stake_time else None,
            )
        except (TypeError, ValueError) as exc:
            raise StoreFailure(f"Corrupt legacy stake for user {user_id}") from exc

    def clear_legacy_stake(self, user_id: str) -> None:
        self._store.delete(legacy_amount_key(user_id))
        self._store.delete(legacy_time_key(user_id))

    def append_transaction(self, record: TransactionRecord) -> None:
        # The ledger is one global list; store transactions keep concurrent
        # appends from different users from overwriting each other.
        with self._store.transaction():
            transactions = self._store.get(TRANSACTIONS_KEY) or []
            entry = record.to_dict()
            entry["amount"] = money(record.amount)
            transactions.append(entry)
            self._store.set(TRANSACTIONS_KEY, transactions)

    def list_transactions(self, user_id: str) -> List[TransactionRecord]:
        raw = self._store.get(TRANSACTIONS_KEY) or []
        try:
            records = [TransactionRecord.from_dict(item) for item in raw]
        except (TypeError, KeyError, ValueError) as exc:
            raise StoreFailure("Corrupt transaction log") from exc
        return [r for r in records if user_id in (r.sender_id, r.receiver_id)]
