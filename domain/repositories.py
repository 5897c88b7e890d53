from __future__ import annotations

from typing import Any, ContextManager, List, Optional, Protocol, Tuple

from .models import StakingPosition, TransactionRecord


class StoreFailure(Exception):
    """Raised when the underlying store cannot be read or written."""


class KeyValueStore(Protocol):
    """
    Abstraction over the panel's generic key-value database.

    Values are JSON-serialisable. Implementations are responsible for:
    - Namespacing keys so several panels can share one database.
    - Raising `StoreFailure` for any driver / decoding error.
    - Making every read and write issued inside `transaction()` part of a
      single unit that is committed on success and rolled back if the
      block raises.
    """

    def get(self, key: str) -> Any:
        """Return the value stored under `key`, or None if missing."""

        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def delete(self, key: str) -> None:
        """Remove `key`. Deleting a missing key is not an error."""

        ...

    def has(self, key: str) -> bool:
        ...

    def transaction(self) -> ContextManager[None]:
        ...


class StakingRepository(Protocol):
    """
    Persistence abstraction used by the staking engine.

    The application layer never deals with key names or JSON shapes; it
    only sees balances, `StakingPosition` and `TransactionRecord` objects.
    """

    def atomic(self, user_id: str) -> ContextManager[None]:
        """
        Serialise the enclosed block against every other `atomic` block for
        the same user and run it as one store transaction.
        """

        ...

    def get_balance(self, user_id: str) -> float:
        """Return the user's coin balance (0 when never set)."""

        ...

    def set_balance(self, user_id: str, amount: float) -> None:
        ...

    def get_positions(self, user_id: str) -> Optional[List[StakingPosition]]:
        """
        Return the user's staking positions in insertion order.

        None means the user has no position list at all, which is
        different from an empty list (every position was unstaked).
        """

        ...

    def save_positions(self, user_id: str, positions: List[StakingPosition]) -> None:
        ...

    def get_legacy_stake(self, user_id: str) -> Optional[Tuple[float, Optional[int]]]:
        """
        Return `(staked_amount, last_stake_time)` from the single-position
        format used before lock periods existed, or None if absent.
        """

        ...

    def clear_legacy_stake(self, user_id: str) -> None:
        ...

    def append_transaction(self, record: TransactionRecord) -> None:
        ...

    def list_transactions(self, user_id: str) -> List[TransactionRecord]:
        """Return ledger entries where the user is sender or receiver."""

        ...
