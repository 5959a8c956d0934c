"""
Vault Error Taxonomy

Every failure aborts the triggering operation and leaves the ledger exactly
as it was before the call. Each error carries the structured fields needed
to explain the rejection to the caller.
"""

from typing import Any, Dict, Optional


class VaultError(Exception):
    """Base class for all vault rejections"""

    code = "vault_error"

    def __init__(self, message: str, **fields: Any):
        super().__init__(message)
        self.message = message
        self.fields = fields

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary"""
        result: Dict[str, Any] = {"error": self.code, "detail": self.message}
        for key, value in self.fields.items():
            result[key] = getattr(value, "value", value)
        return result


class DepositAmountZero(VaultError):
    """Deposit of a zero (or non-positive) amount"""

    code = "deposit_amount_zero"

    def __init__(self, amount: int = 0):
        super().__init__(f"Deposit amount must be positive, got {amount}", amount=amount)
        self.amount = amount


class InvalidAmount(VaultError):
    """Amount that is not an integer, or a withdrawal of zero or less"""

    code = "invalid_amount"

    def __init__(self, amount: Any):
        super().__init__(f"Amount must be a positive integer, got {amount!r}", amount=amount)
        self.amount = amount


class BankCapExceeded(VaultError):
    """Deposit would push total holdings over the bank cap"""

    code = "bank_cap_exceeded"

    def __init__(self, current_total: int, attempted: int, cap: int):
        super().__init__(
            f"Deposit of {attempted} would exceed bank cap {cap} (current total {current_total})",
            current_total=current_total, attempted=attempted, cap=cap
        )
        self.current_total = current_total
        self.attempted = attempted
        self.cap = cap


class InsufficientBalance(VaultError):
    """Withdrawal exceeds the caller's recorded balance"""

    code = "insufficient_balance"

    def __init__(self, account: str, asset: Any, available: int, requested: int):
        super().__init__(
            f"Account {account} has {available} available in {getattr(asset, 'value', asset)}, "
            f"requested {requested}",
            account=account, asset=asset, available=available, requested=requested
        )
        self.account = account
        self.asset = asset
        self.available = available
        self.requested = requested


class WithdrawalThresholdExceeded(VaultError):
    """Single withdrawal larger than the per-call limit"""

    code = "withdrawal_threshold_exceeded"

    def __init__(self, requested: int, threshold: int):
        super().__init__(
            f"Withdrawal of {requested} exceeds threshold {threshold}",
            requested=requested, threshold=threshold
        )
        self.requested = requested
        self.threshold = threshold


class TransferFailed(VaultError):
    """Value movement to or from an account was rejected"""

    code = "transfer_failed"

    def __init__(self, recipient: str):
        super().__init__(f"Transfer involving {recipient} failed", recipient=recipient)
        self.recipient = recipient


class InvalidToken(VaultError):
    """Reference to an asset the vault does not support"""

    code = "invalid_token"

    def __init__(self, asset: Any):
        super().__init__(f"Unsupported asset: {asset}", asset=str(asset))
        self.asset = asset


class Unauthorized(VaultError):
    """Caller is not the configured owner"""

    code = "unauthorized"

    def __init__(self, caller: Optional[str]):
        super().__init__(f"Caller {caller} is not authorized", caller=caller)
        self.caller = caller


class OracleError(VaultError):
    """Base class for price oracle rejections"""

    code = "oracle_error"


class OracleInvalidPrice(OracleError):
    """Oracle reported a non-positive price"""

    code = "oracle_invalid_price"

    def __init__(self, price: int):
        super().__init__(f"Oracle reported invalid price {price}", price=price)
        self.price = price


class OracleStalePrice(OracleError):
    """Oracle answer is older than the heartbeat"""

    code = "oracle_stale_price"

    def __init__(self, age: int, heartbeat: int):
        super().__init__(
            f"Oracle price is {age}s old, maximum age is {heartbeat}s",
            age=age, heartbeat=heartbeat
        )
        self.age = age
        self.heartbeat = heartbeat


class OracleInvalidTimestamp(OracleError):
    """Oracle answer is timestamped in the future"""

    code = "oracle_invalid_timestamp"

    def __init__(self, as_of: int, now: int):
        super().__init__(
            f"Oracle timestamp {as_of} is ahead of current time {now}",
            as_of=as_of, now=now
        )
        self.as_of = as_of
        self.now = now


class OracleUnavailable(OracleError):
    """Price source could not be reached or returned garbage"""

    code = "oracle_unavailable"

    def __init__(self, reason: str):
        super().__init__(f"Price oracle unavailable: {reason}", reason=reason)
        self.reason = reason
