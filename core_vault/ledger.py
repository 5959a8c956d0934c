"""
Vault Ledger

Per-account, per-asset balances in unit of account (USD, 6 decimals) plus
the global aggregates. The ledger trusts its caller: preconditions such as
the bank cap and sufficient balance are checked by the accounting engine
before any mutation, never re-checked here.

Invariant maintained by every write: total_deposited equals the sum of all
balances. Each balance change and its total adjustment is one atomic
storage write.

Zero balances are not stored; an absent row reads as zero.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, Tuple

from .storage import StorageInterface


NATIVE_ASSET_ADDRESS = "0x0000000000000000000000000000000000000000"


class AssetKind(Enum):
    """The two asset kinds a vault holds"""
    NATIVE = "native"  # Chain base currency
    TOKEN = "token"    # The single supported fungible token


@dataclass(frozen=True)
class LedgerAggregates:
    """Process-lifetime aggregates"""
    total_deposited: int = 0
    deposit_count: int = 0
    withdrawal_count: int = 0

    def to_dict(self) -> Dict[str, str]:
        return {
            'total_deposited': str(self.total_deposited),
            'deposit_count': str(self.deposit_count),
            'withdrawal_count': str(self.withdrawal_count)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> 'LedgerAggregates':
        return cls(
            total_deposited=int(data['total_deposited']),
            deposit_count=int(data['deposit_count']),
            withdrawal_count=int(data['withdrawal_count'])
        )


class Ledger:
    """Balance store for a single vault"""

    BALANCES_TABLE = "balances"
    AGGREGATES_TABLE = "aggregates"
    AGGREGATES_ID = "vault"

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        if not self.storage.exists(self.AGGREGATES_TABLE, self.AGGREGATES_ID):
            self._save_aggregates(LedgerAggregates())

    @staticmethod
    def _key(account: str, asset: AssetKind) -> str:
        return f"{account}:{asset.value}"

    def transaction(self):
        """Group several ledger writes into one atomic unit"""
        return self.storage.atomic()

    # Mutations

    def credit(self, account: str, asset: AssetKind, amount: int) -> int:
        """
        Increase a balance and the total by amount

        Caller must already have verified total + amount <= bank cap.

        Returns:
            The new balance
        """
        with self.storage.atomic():
            balance = self.get_balance(account, asset) + amount
            aggregates = self.get_aggregates()
            self._save_balance(account, asset, balance)
            self._save_aggregates(LedgerAggregates(
                total_deposited=aggregates.total_deposited + amount,
                deposit_count=aggregates.deposit_count,
                withdrawal_count=aggregates.withdrawal_count
            ))
        return balance

    def debit(self, account: str, asset: AssetKind, amount: int) -> int:
        """
        Decrease a balance and the total by amount

        Caller must already have verified amount <= balance.

        Returns:
            The new balance
        """
        with self.storage.atomic():
            balance = self.get_balance(account, asset) - amount
            aggregates = self.get_aggregates()
            self._save_balance(account, asset, balance)
            self._save_aggregates(LedgerAggregates(
                total_deposited=aggregates.total_deposited - amount,
                deposit_count=aggregates.deposit_count,
                withdrawal_count=aggregates.withdrawal_count
            ))
        return balance

    def record_deposit(self, delta: int = 1) -> None:
        """Adjust the deposit counter (negative delta only when undoing)"""
        aggregates = self.get_aggregates()
        self._save_aggregates(LedgerAggregates(
            total_deposited=aggregates.total_deposited,
            deposit_count=aggregates.deposit_count + delta,
            withdrawal_count=aggregates.withdrawal_count
        ))

    def record_withdrawal(self, delta: int = 1) -> None:
        """Adjust the withdrawal counter (negative delta only when undoing)"""
        aggregates = self.get_aggregates()
        self._save_aggregates(LedgerAggregates(
            total_deposited=aggregates.total_deposited,
            deposit_count=aggregates.deposit_count,
            withdrawal_count=aggregates.withdrawal_count + delta
        ))

    # Queries

    def get_balance(self, account: str, asset: AssetKind) -> int:
        data = self.storage.load(self.BALANCES_TABLE, self._key(account, asset))
        if data:
            return int(data['balance'])
        return 0

    def get_total_balance(self, account: str) -> int:
        """Sum of an account's balances across both asset kinds"""
        return sum(self.get_balance(account, asset) for asset in AssetKind)

    def get_aggregates(self) -> LedgerAggregates:
        data = self.storage.load(self.AGGREGATES_TABLE, self.AGGREGATES_ID)
        if data:
            return LedgerAggregates.from_dict(data)
        return LedgerAggregates()

    def total_deposited(self) -> int:
        return self.get_aggregates().total_deposited

    def iter_balances(self) -> Iterator[Tuple[str, AssetKind, int]]:
        """Yield (account, asset, balance) for every non-zero balance"""
        for data in self.storage.load_all(self.BALANCES_TABLE):
            yield data['account'], AssetKind(data['asset']), int(data['balance'])

    def _save_balance(self, account: str, asset: AssetKind, balance: int) -> None:
        key = self._key(account, asset)
        if balance == 0:
            self.storage.delete(self.BALANCES_TABLE, key)
            return
        self.storage.save(self.BALANCES_TABLE, key, {
            'account': account,
            'asset': asset.value,
            'balance': str(balance)
        })

    def _save_aggregates(self, aggregates: LedgerAggregates) -> None:
        self.storage.save(self.AGGREGATES_TABLE, self.AGGREGATES_ID, aggregates.to_dict())
