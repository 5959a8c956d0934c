"""
Accounting Engine

Runs one deposit or withdrawal per call as a strict three-phase sequence:

    CHECK        validate inputs, oracle quote, cap / threshold / balance
    EFFECT       write the ledger (balance, total, counter) atomically
    INTERACTION  move value through the transfer gateway

The ledger is written before any external code runs, so a recipient that
calls back into the engine during INTERACTION sees the already-reduced
balance and cannot spend it twice.

All operations and queries are serialized by one re-entrant lock per
engine. Other threads never observe the window between EFFECT and
INTERACTION; a reentrant call on the same thread does, and sees the
EFFECT already applied.

If INTERACTION fails, the engine writes compensating entries that undo
exactly its own EFFECT. Effects committed by nested calls stay. While an
INTERACTION is pending the engine holds reservations so that compensation
is always valid:

- a deposit's credited value cannot be withdrawn by a nested call;
- a withdrawal's debited value still counts against the bank cap.
"""

import threading
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

from .audit import AuditTrail, AuditEventType
from .conversion import FixedPointConverter
from .errors import (
    BankCapExceeded, DepositAmountZero, InsufficientBalance, InvalidAmount,
    InvalidToken, TransferFailed, VaultError, WithdrawalThresholdExceeded
)
from .events import DomainEvent, EventDispatcher, create_transfer_event
from .gateway import TransferGateway
from .ledger import AssetKind, Ledger, NATIVE_ASSET_ADDRESS
from .logging_config import get_logger, log_action
from .oracle import PriceOracleAdapter


AssetRef = Union[AssetKind, str]


@dataclass(frozen=True)
class VaultParameters:
    """Configuration fixed at construction"""
    withdrawal_threshold: int
    bank_cap: int
    owner: str
    token_address: str
    oracle_address: str

    def __post_init__(self):
        if self.withdrawal_threshold < 0:
            raise ValueError("Withdrawal threshold must be non-negative")
        if self.bank_cap < 0:
            raise ValueError("Bank cap must be non-negative")


class AccountingEngine:
    """
    Custodial vault holding the native currency and one token, with every
    balance recorded in unit of account
    """

    def __init__(
        self,
        ledger: Ledger,
        oracle: PriceOracleAdapter,
        gateway: TransferGateway,
        withdrawal_threshold: int,
        bank_cap: int,
        owner: str,
        event_dispatcher: Optional[EventDispatcher] = None,
        audit_trail: Optional[AuditTrail] = None,
        converter: Optional[FixedPointConverter] = None
    ):
        self.ledger = ledger
        self.oracle = oracle
        self.gateway = gateway
        self.params = VaultParameters(
            withdrawal_threshold=withdrawal_threshold,
            bank_cap=bank_cap,
            owner=owner,
            token_address=gateway.token.address,
            oracle_address=oracle.address
        )
        self.converter = converter or FixedPointConverter()
        self._event_dispatcher = event_dispatcher
        self._audit_trail = audit_trail
        self.logger = get_logger("core_vault.engine")

        self._lock = threading.RLock()
        # Reservations held while an INTERACTION is in flight
        self._pending_credits: Dict[Tuple[str, AssetKind], int] = {}
        self._pending_withdrawals = 0

    # Public operations

    def deposit_native(self, caller: str, amount: int) -> int:
        """
        Deposit native currency attached to the call

        Args:
            caller: Depositor identity
            amount: Native units (18 decimals)

        Returns:
            Unit-of-account value credited
        """
        return self._deposit(caller, AssetKind.NATIVE, amount)

    def deposit_token(self, caller: str, amount: int) -> int:
        """Deposit previously approved tokens; 1 token unit == 1 unit of account"""
        return self._deposit(caller, AssetKind.TOKEN, amount)

    def withdraw_native(self, caller: str, amount_usd: int) -> int:
        """
        Withdraw native currency worth amount_usd

        Returns:
            Native units sent to the caller
        """
        return self._withdraw(caller, AssetKind.NATIVE, amount_usd)

    def withdraw_token(self, caller: str, amount: int) -> int:
        """Withdraw tokens; returns token units sent"""
        return self._withdraw(caller, AssetKind.TOKEN, amount)

    # Queries

    def get_balance(self, account: str, asset: AssetRef) -> int:
        kind = self.resolve_asset(asset)
        with self._lock:
            return self.ledger.get_balance(account, kind)

    def get_total_balance(self, account: str) -> int:
        with self._lock:
            return self.ledger.get_total_balance(account)

    def get_deposit_count(self) -> int:
        with self._lock:
            return self.ledger.get_aggregates().deposit_count

    def get_withdrawal_count(self) -> int:
        with self._lock:
            return self.ledger.get_aggregates().withdrawal_count

    def get_total_deposits_usd(self) -> int:
        with self._lock:
            return self.ledger.total_deposited()

    def get_total_native_balance(self) -> int:
        """Native units actually held by the vault"""
        with self._lock:
            return self.gateway.native_balance()

    def get_current_price(self) -> int:
        """Validated oracle price (8 decimals)"""
        return self.oracle.get_asset_price().price

    def get_withdrawal_threshold(self) -> int:
        return self.params.withdrawal_threshold

    def get_bank_cap(self) -> int:
        return self.params.bank_cap

    def get_owner(self) -> str:
        return self.params.owner

    @property
    def token_address(self) -> str:
        return self.params.token_address

    @property
    def oracle_address(self) -> str:
        return self.params.oracle_address

    @property
    def native_asset_address(self) -> str:
        return NATIVE_ASSET_ADDRESS

    def resolve_asset(self, asset: AssetRef) -> AssetKind:
        """
        Map an asset kind or address to an AssetKind

        Raises:
            InvalidToken: for any asset other than the native sentinel or the vault's token
        """
        if isinstance(asset, AssetKind):
            return asset
        if asset == NATIVE_ASSET_ADDRESS:
            return AssetKind.NATIVE
        if asset == self.params.token_address:
            return AssetKind.TOKEN
        raise InvalidToken(asset)

    # Operation sequences

    def _deposit(self, caller: str, asset: AssetKind, amount: int) -> int:
        with self._lock:
            try:
                # CHECK
                self._require_int(amount)
                if amount <= 0:
                    raise DepositAmountZero(amount)
                value = self._to_unit(asset, amount)
                if value == 0:
                    raise DepositAmountZero(amount)
                current = self.ledger.total_deposited()
                if current + self._pending_withdrawals + value > self.params.bank_cap:
                    raise BankCapExceeded(current, value, self.params.bank_cap)

                # EFFECT
                with self.ledger.transaction():
                    self.ledger.credit(caller, asset, value)
                    self.ledger.record_deposit()

                # INTERACTION
                key = (caller, asset)
                self._pending_credits[key] = self._pending_credits.get(key, 0) + value
                try:
                    self._collect(caller, asset, amount)
                except BaseException:
                    with self.ledger.transaction():
                        self.ledger.debit(caller, asset, value)
                        self.ledger.record_deposit(-1)
                    raise
                finally:
                    self._release_credit(key, value)

            except VaultError as e:
                self._log_rejection("deposit", caller, asset, amount, e)
                raise

            self._complete(
                DomainEvent.DEPOSIT_COMPLETED, AuditEventType.DEPOSIT_RECORDED,
                caller, asset, amount, value
            )
            return value

    def _withdraw(self, caller: str, asset: AssetKind, amount: int) -> int:
        with self._lock:
            try:
                # CHECK
                self._require_int(amount)
                if amount <= 0:
                    raise InvalidAmount(amount)
                if amount > self.params.withdrawal_threshold:
                    raise WithdrawalThresholdExceeded(amount, self.params.withdrawal_threshold)
                available = self._available(caller, asset)
                if amount > available:
                    raise InsufficientBalance(caller, asset, available, amount)
                payout = self._to_native(asset, amount)

                # EFFECT
                with self.ledger.transaction():
                    self.ledger.debit(caller, asset, amount)
                    self.ledger.record_withdrawal()

                # INTERACTION
                self._pending_withdrawals += amount
                try:
                    self._pay_out(caller, asset, payout)
                except BaseException:
                    with self.ledger.transaction():
                        self.ledger.credit(caller, asset, amount)
                        self.ledger.record_withdrawal(-1)
                    raise
                finally:
                    self._pending_withdrawals -= amount

            except VaultError as e:
                self._log_rejection("withdrawal", caller, asset, amount, e)
                raise

            self._complete(
                DomainEvent.WITHDRAWAL_COMPLETED, AuditEventType.WITHDRAWAL_RECORDED,
                caller, asset, payout, amount
            )
            return payout

    # Helpers

    @staticmethod
    def _require_int(amount) -> None:
        # bool is an int subclass and is rejected too
        if type(amount) is not int:
            raise InvalidAmount(amount)

    def _to_unit(self, asset: AssetKind, amount: int) -> int:
        if asset is AssetKind.TOKEN:
            return amount
        quote = self.oracle.get_asset_price()
        return self.converter.to_unit(amount, quote.price)

    def _to_native(self, asset: AssetKind, amount: int) -> int:
        if asset is AssetKind.TOKEN:
            return amount
        quote = self.oracle.get_asset_price()
        return self.converter.to_native(amount, quote.price)

    def _available(self, account: str, asset: AssetKind) -> int:
        """Balance minus credits whose transfer-in has not completed"""
        held = self._pending_credits.get((account, asset), 0)
        return self.ledger.get_balance(account, asset) - held

    def _release_credit(self, key: Tuple[str, AssetKind], value: int) -> None:
        remaining = self._pending_credits[key] - value
        if remaining:
            self._pending_credits[key] = remaining
        else:
            del self._pending_credits[key]

    def _collect(self, caller: str, asset: AssetKind, amount: int) -> None:
        if asset is AssetKind.TOKEN:
            self.gateway.pull_token(caller, amount)
        elif not self.gateway.receive_native(caller, amount):
            raise TransferFailed(caller)

    def _pay_out(self, caller: str, asset: AssetKind, amount: int) -> None:
        if asset is AssetKind.TOKEN:
            self.gateway.send_token(caller, amount)
        elif not self.gateway.send_native(caller, amount):
            raise TransferFailed(caller)

    def _complete(
        self,
        event_type: DomainEvent,
        audit_type: AuditEventType,
        account: str,
        asset: AssetKind,
        native_amount: int,
        unit_value: int
    ) -> None:
        log_action(
            self.logger, "info", f"{event_type.value}: {asset.value}",
            account=account, action=event_type.value, resource=f"balance:{account}:{asset.value}",
            extra={"native_amount": str(native_amount), "unit_value": str(unit_value)}
        )

        if self._audit_trail:
            self._audit_trail.log_event(
                event_type=audit_type,
                entity_type="account",
                entity_id=account,
                user_id=account,
                metadata={
                    "asset": asset.value,
                    "native_amount": str(native_amount),
                    "unit_value": str(unit_value)
                }
            )

        if self._event_dispatcher:
            self._event_dispatcher.publish(
                create_transfer_event(event_type, account, asset, native_amount, unit_value)
            )

    def _log_rejection(
        self,
        operation: str,
        caller: str,
        asset: AssetKind,
        amount: int,
        error: VaultError
    ) -> None:
        log_action(
            self.logger, "warning", f"{operation} rejected: {error.message}",
            account=caller, action=f"{operation}_rejected", resource=f"balance:{caller}:{asset.value}",
            extra={"amount": str(amount), "error": error.code}
        )
