"""
Transfer Gateway Module

Moves value between the vault and its depositors. This is the only place
where untrusted external code runs: a native-currency recipient may have a
receive hook, and the token contract is an arbitrary collaborator. Both may
call back into the vault before the transfer returns.

Native sends report failure as a False result. Token moves treat any
rejection as a hard failure and raise TransferFailed.

The in-process chain and token keep their state in memory and, when given a
storage backend, mirror every balance change to it so that a restarted
service sees the same holdings as its ledger.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import TransferFailed
from .storage import StorageInterface

logger = logging.getLogger("core_vault.gateway")

ReceiveHook = Callable[[str, int], None]


class NativeChain(ABC):
    """Native-currency balances of the surrounding chain"""

    @abstractmethod
    def balance_of(self, account: str) -> int:
        pass

    @abstractmethod
    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """Low-level value transfer; returns False instead of raising"""
        pass


class InMemoryNativeChain(NativeChain):
    """
    Native balances held in process.

    A recipient may register a receive hook that runs after the value has
    arrived. If the hook raises, the transfer is undone and reported as
    failed. A hook that has already passed the value on before raising
    cannot be undone; the transfer then stands.
    """

    BALANCES_TABLE = "chain_native_balances"

    def __init__(self, storage: Optional[StorageInterface] = None):
        self._balances: Dict[str, int] = {}
        self._hooks: Dict[str, ReceiveHook] = {}
        self._lock = threading.RLock()
        self._storage = storage
        if storage is not None:
            for row in storage.load_all(self.BALANCES_TABLE):
                self._balances[row['account']] = int(row['balance'])

    def mint(self, account: str, amount: int) -> None:
        """Create native currency out of thin air (test and dev setups)"""
        if amount < 0:
            raise ValueError("Mint amount must be non-negative")
        with self._lock:
            self._balances[account] = self._balances.get(account, 0) + amount
            self._persist(account)

    def set_receive_hook(self, account: str, hook: Optional[ReceiveHook]) -> None:
        with self._lock:
            if hook is None:
                self._hooks.pop(account, None)
            else:
                self._hooks[account] = hook

    def balance_of(self, account: str) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        with self._lock:
            if amount < 0 or self._balances.get(sender, 0) < amount:
                return False
            self._move(sender, recipient, amount)
            hook = self._hooks.get(recipient)

        if hook is None:
            return True

        try:
            hook(sender, amount)
        except Exception as e:
            with self._lock:
                if self._balances.get(recipient, 0) < amount:
                    logger.warning(
                        f"Receive hook of {recipient} raised after passing {amount} on; transfer stands: {e}"
                    )
                    return True
                self._move(recipient, sender, amount)
            logger.info(f"Receive hook of {recipient} rejected {amount}: {e}")
            return False
        return True

    def _move(self, sender: str, recipient: str, amount: int) -> None:
        self._balances[sender] = self._balances.get(sender, 0) - amount
        self._balances[recipient] = self._balances.get(recipient, 0) + amount
        self._persist(sender, recipient)

    def _persist(self, *accounts: str) -> None:
        if self._storage is None:
            return
        for account in accounts:
            balance = self._balances.get(account, 0)
            if balance:
                self._storage.save(self.BALANCES_TABLE, account, {
                    'account': account,
                    'balance': str(balance)
                })
            else:
                self._storage.delete(self.BALANCES_TABLE, account)


class TokenError(Exception):
    """Raised by a token contract that rejects a call"""
    pass


class TokenContract(ABC):
    """ERC-20 style fungible token interface"""

    address: str = ""
    decimals: int = 6

    @abstractmethod
    def balance_of(self, account: str) -> int:
        pass

    @abstractmethod
    def allowance(self, owner: str, spender: str) -> int:
        pass

    @abstractmethod
    def approve(self, owner: str, spender: str, amount: int) -> Any:
        pass

    @abstractmethod
    def transfer(self, sender: str, recipient: str, amount: int) -> Any:
        pass

    @abstractmethod
    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> Any:
        pass


class InMemoryToken(TokenContract):
    """Sample USDC-like token with 6 decimals"""

    BALANCES_TABLE = "token_balances"
    ALLOWANCES_TABLE = "token_allowances"

    def __init__(
        self,
        address: str = "usdc",
        decimals: int = 6,
        storage: Optional[StorageInterface] = None
    ):
        self.address = address
        self.decimals = decimals
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self._lock = threading.RLock()
        self._storage = storage
        if storage is not None:
            for row in storage.load_all(self.BALANCES_TABLE):
                self._balances[row['account']] = int(row['balance'])
            for row in storage.load_all(self.ALLOWANCES_TABLE):
                self._allowances[(row['owner'], row['spender'])] = int(row['amount'])

    def mint(self, account: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Mint amount must be non-negative")
        with self._lock:
            self._balances[account] = self._balances.get(account, 0) + amount
            self._persist_balances(account)

    def balance_of(self, account: str) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        with self._lock:
            return self._allowances.get((owner, spender), 0)

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        if amount < 0:
            raise TokenError("Allowance must be non-negative")
        with self._lock:
            self._allowances[(owner, spender)] = amount
            self._persist_allowance(owner, spender)
        return True

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        with self._lock:
            self._move(sender, recipient, amount)
        return True

    def transfer_from(self, spender: str, owner: str, recipient: str, amount: int) -> bool:
        with self._lock:
            allowed = self._allowances.get((owner, spender), 0)
            if allowed < amount:
                raise TokenError(f"Insufficient allowance: {allowed} < {amount}")
            self._move(owner, recipient, amount)
            self._allowances[(owner, spender)] = allowed - amount
            self._persist_allowance(owner, spender)
        return True

    def _move(self, sender: str, recipient: str, amount: int) -> None:
        if amount < 0:
            raise TokenError("Transfer amount must be non-negative")
        balance = self._balances.get(sender, 0)
        if balance < amount:
            raise TokenError(f"Insufficient balance: {balance} < {amount}")
        self._balances[sender] = balance - amount
        self._balances[recipient] = self._balances.get(recipient, 0) + amount
        self._persist_balances(sender, recipient)

    def _persist_balances(self, *accounts: str) -> None:
        if self._storage is None:
            return
        for account in accounts:
            balance = self._balances.get(account, 0)
            if balance:
                self._storage.save(self.BALANCES_TABLE, account, {
                    'account': account,
                    'balance': str(balance)
                })
            else:
                self._storage.delete(self.BALANCES_TABLE, account)

    def _persist_allowance(self, owner: str, spender: str) -> None:
        if self._storage is None:
            return
        key = f"{owner}:{spender}"
        amount = self._allowances.get((owner, spender), 0)
        if amount:
            self._storage.save(self.ALLOWANCES_TABLE, key, {
                'owner': owner,
                'spender': spender,
                'amount': str(amount)
            })
        else:
            self._storage.delete(self.ALLOWANCES_TABLE, key)


class TransferGateway:
    """Value movement on behalf of the vault at ``address``"""

    def __init__(self, address: str, native_chain: NativeChain, token: TokenContract):
        self.address = address
        self.native_chain = native_chain
        self.token = token

    def send_native(self, to: str, amount: int) -> bool:
        """Send native currency from the vault; False on any rejection"""
        ok = self.native_chain.transfer(self.address, to, amount)
        if not ok:
            logger.warning(f"Native send of {amount} to {to} failed")
        return ok

    def receive_native(self, sender: str, amount: int) -> bool:
        """Collect the native value attached to a deposit"""
        ok = self.native_chain.transfer(sender, self.address, amount)
        if not ok:
            logger.warning(f"Native receipt of {amount} from {sender} failed")
        return ok

    def send_token(self, to: str, amount: int) -> None:
        """Send tokens from the vault; raises TransferFailed on rejection"""
        self._call_token(to, lambda: self.token.transfer(self.address, to, amount))

    def pull_token(self, sender: str, amount: int) -> None:
        """Pull approved tokens into the vault; raises TransferFailed on rejection"""
        self._call_token(
            sender, lambda: self.token.transfer_from(self.address, sender, self.address, amount)
        )

    def native_balance(self) -> int:
        return self.native_chain.balance_of(self.address)

    def token_balance(self) -> int:
        return self.token.balance_of(self.address)

    def _call_token(self, party: str, call: Callable[[], Any]) -> None:
        try:
            result = call()
        except Exception as e:
            logger.warning(f"Token {self.token.address} rejected transfer with {party}: {e}")
            raise TransferFailed(party) from e

        # Tokens that return nothing are accepted; anything but True/None is not
        if result is not None and result is not True:
            logger.warning(f"Token {self.token.address} returned {result!r} for transfer with {party}")
            raise TransferFailed(party)
