"""
FastAPI REST API Module

Provides REST endpoints for vault deposits, withdrawals and queries.
Amounts are integers in the smallest unit: wei-like native units for native
deposits, 6-decimal unit of account for everything else.
"""

from datetime import datetime, timezone
import time
from typing import Callable, Optional

from fastapi import FastAPI, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from .access import require_caller, require_owner
from .audit import AuditTrail
from .config import VaultConfig, get_config
from .engine import AccountingEngine
from .errors import (
    BankCapExceeded, DepositAmountZero, InsufficientBalance, InvalidAmount,
    InvalidToken, OracleError, TransferFailed, Unauthorized, VaultError,
    WithdrawalThresholdExceeded
)
from .events import EventDispatcher
from .gateway import InMemoryNativeChain, InMemoryToken, TransferGateway
from .ledger import AssetKind, Ledger
from .logging_config import setup_logging
from .oracle import HttpPriceFeed, ManualPriceFeed, PriceFeed, PriceOracleAdapter
from .storage import create_storage


# Pydantic models for API requests
class AmountRequest(BaseModel):
    account: str = Field(..., min_length=1, description="Caller identity")
    amount: int = Field(..., description="Integer amount in smallest units")


class FundingRequest(BaseModel):
    account: str = Field(..., min_length=1, description="Account to fund")
    amount: int = Field(..., ge=0, description="Integer amount in smallest units")


class ApproveRequest(BaseModel):
    amount: int = Field(..., ge=0, description="Token allowance granted to the vault")


class PriceUpdateRequest(BaseModel):
    price: int = Field(..., gt=0, description="Native/USD price with 8 decimals")
    updated_at: Optional[int] = Field(None, description="Unix seconds; defaults to now")


# Vault System Context
class VaultSystem:
    """
    Vault with all collaborators wired from configuration

    The in-process chain and token share the ledger's storage, so a vault
    reopened on the same database holds what its ledger says it holds.
    """

    def __init__(
        self,
        config: Optional[VaultConfig] = None,
        feed: Optional[PriceFeed] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config or get_config()

        self.storage = create_storage(self.config.database_url)
        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_logging else None
        self.event_dispatcher = EventDispatcher()
        self.ledger = Ledger(self.storage)

        if feed is None:
            if self.config.oracle_url:
                feed = HttpPriceFeed(
                    self.config.oracle_url,
                    timeout=self.config.oracle_timeout,
                    address=self.config.oracle_address
                )
            else:
                feed = ManualPriceFeed(
                    self.config.initial_price, address=self.config.oracle_address, clock=clock
                )
        self.feed = feed
        self.oracle = PriceOracleAdapter(
            feed, heartbeat=self.config.oracle_heartbeat_seconds, clock=clock
        )

        self.native_chain = InMemoryNativeChain(self.storage)
        self.token = InMemoryToken(address=self.config.token_address, storage=self.storage)
        self.gateway = TransferGateway(self.config.vault_address, self.native_chain, self.token)

        self.engine = AccountingEngine(
            ledger=self.ledger,
            oracle=self.oracle,
            gateway=self.gateway,
            withdrawal_threshold=self.config.withdrawal_threshold,
            bank_cap=self.config.bank_cap,
            owner=self.config.owner_address,
            event_dispatcher=self.event_dispatcher,
            audit_trail=self.audit_trail
        )

    def close(self) -> None:
        """Release the storage connection and any HTTP client"""
        if isinstance(self.feed, HttpPriceFeed):
            self.feed.close()
        self.storage.close()


# Global vault system instance, built on first use
vault_system: Optional[VaultSystem] = None


def get_vault_system() -> VaultSystem:
    global vault_system
    if vault_system is None:
        vault_system = VaultSystem()
    return vault_system


ERROR_STATUS = {
    DepositAmountZero: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidAmount: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidToken: status.HTTP_400_BAD_REQUEST,
    BankCapExceeded: status.HTTP_409_CONFLICT,
    InsufficientBalance: status.HTTP_409_CONFLICT,
    WithdrawalThresholdExceeded: status.HTTP_409_CONFLICT,
    TransferFailed: status.HTTP_502_BAD_GATEWAY,
    OracleError: status.HTTP_503_SERVICE_UNAVAILABLE,
    Unauthorized: status.HTTP_403_FORBIDDEN,
}


def status_for(error: VaultError) -> int:
    for error_type in type(error).__mro__:
        if error_type in ERROR_STATUS:
            return ERROR_STATUS[error_type]
    return status.HTTP_400_BAD_REQUEST


# Create FastAPI app
app = FastAPI(
    title="Core Vault API",
    description="Custodial vault with oracle-priced unit-of-account accounting",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)


@app.exception_handler(VaultError)
async def vault_error_handler(request: Request, exc: VaultError):
    return JSONResponse(status_code=status_for(exc), content=exc.to_dict())


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


# Operations

@app.post("/deposits/native", status_code=status.HTTP_201_CREATED)
def deposit_native(request: AmountRequest, system: VaultSystem = Depends(get_vault_system)):
    """Deposit native currency; amount in native units"""
    value = system.engine.deposit_native(request.account, request.amount)
    return {
        "account": request.account,
        "asset": AssetKind.NATIVE.value,
        "native_amount": request.amount,
        "unit_value": value,
        "balance": system.engine.get_balance(request.account, AssetKind.NATIVE)
    }


@app.post("/deposits/token", status_code=status.HTTP_201_CREATED)
def deposit_token(request: AmountRequest, system: VaultSystem = Depends(get_vault_system)):
    """Deposit approved tokens"""
    value = system.engine.deposit_token(request.account, request.amount)
    return {
        "account": request.account,
        "asset": AssetKind.TOKEN.value,
        "native_amount": request.amount,
        "unit_value": value,
        "balance": system.engine.get_balance(request.account, AssetKind.TOKEN)
    }


@app.post("/withdrawals/native")
def withdraw_native(request: AmountRequest, system: VaultSystem = Depends(get_vault_system)):
    """Withdraw native currency; amount in unit of account"""
    sent = system.engine.withdraw_native(request.account, request.amount)
    return {
        "account": request.account,
        "asset": AssetKind.NATIVE.value,
        "native_amount": sent,
        "unit_value": request.amount,
        "balance": system.engine.get_balance(request.account, AssetKind.NATIVE)
    }


@app.post("/withdrawals/token")
def withdraw_token(request: AmountRequest, system: VaultSystem = Depends(get_vault_system)):
    """Withdraw tokens"""
    sent = system.engine.withdraw_token(request.account, request.amount)
    return {
        "account": request.account,
        "asset": AssetKind.TOKEN.value,
        "native_amount": sent,
        "unit_value": request.amount,
        "balance": system.engine.get_balance(request.account, AssetKind.TOKEN)
    }


# Queries

@app.get("/balances/{account}")
def get_balances(account: str, system: VaultSystem = Depends(get_vault_system)):
    """All balances of an account"""
    engine = system.engine
    return {
        "account": account,
        "native": engine.get_balance(account, AssetKind.NATIVE),
        "token": engine.get_balance(account, AssetKind.TOKEN),
        "total": engine.get_total_balance(account)
    }


@app.get("/balances/{account}/{asset}")
def get_balance(account: str, asset: str, system: VaultSystem = Depends(get_vault_system)):
    """Balance for one asset, addressed by kind name or asset address"""
    try:
        asset_ref = AssetKind(asset)
    except ValueError:
        asset_ref = asset
    return {
        "account": account,
        "asset": system.engine.resolve_asset(asset_ref).value,
        "balance": system.engine.get_balance(account, asset_ref)
    }


@app.get("/stats")
def get_stats(system: VaultSystem = Depends(get_vault_system)):
    """Vault-wide aggregates"""
    engine = system.engine
    return {
        "total_deposits_usd": engine.get_total_deposits_usd(),
        "deposit_count": engine.get_deposit_count(),
        "withdrawal_count": engine.get_withdrawal_count(),
        "total_native_balance": engine.get_total_native_balance()
    }


@app.get("/config")
def get_vault_config(system: VaultSystem = Depends(get_vault_system)):
    """Immutable vault parameters"""
    engine = system.engine
    return {
        "withdrawal_threshold": engine.get_withdrawal_threshold(),
        "bank_cap": engine.get_bank_cap(),
        "owner": engine.get_owner(),
        "token_address": engine.token_address,
        "oracle_address": engine.oracle_address,
        "native_asset_address": engine.native_asset_address
    }


@app.get("/price")
def get_price(system: VaultSystem = Depends(get_vault_system)):
    """Current validated oracle price (8 decimals)"""
    return {"price": system.engine.get_current_price()}


# Wallets (in-process chain and token)

@app.get("/wallets/{account}")
def get_wallet(account: str, system: VaultSystem = Depends(get_vault_system)):
    """Chain-side holdings of an account, outside the vault"""
    return {
        "account": account,
        "native": system.native_chain.balance_of(account),
        "token": system.token.balance_of(account),
        "token_allowance": system.token.allowance(account, system.gateway.address)
    }


@app.post("/accounts/{account}/token/approve")
def approve_token(
    account: str,
    request: ApproveRequest,
    x_caller: Optional[str] = Header(None),
    system: VaultSystem = Depends(get_vault_system)
):
    """Let the vault pull up to amount tokens from account (account itself only)"""
    require_caller(x_caller, account)
    system.token.approve(account, system.gateway.address, request.amount)
    return {
        "account": account,
        "spender": system.gateway.address,
        "allowance": system.token.allowance(account, system.gateway.address)
    }


# Administration

@app.post("/admin/native/mint")
def mint_native(
    request: FundingRequest,
    x_caller: Optional[str] = Header(None),
    system: VaultSystem = Depends(get_vault_system)
):
    """Credit native currency to an account on the in-process chain (owner only)"""
    require_owner(x_caller, system.engine.get_owner())
    system.native_chain.mint(request.account, request.amount)
    return {"account": request.account, "native": system.native_chain.balance_of(request.account)}


@app.post("/admin/token/mint")
def mint_token(
    request: FundingRequest,
    x_caller: Optional[str] = Header(None),
    system: VaultSystem = Depends(get_vault_system)
):
    """Mint sample tokens to an account (owner only)"""
    require_owner(x_caller, system.engine.get_owner())
    system.token.mint(request.account, request.amount)
    return {"account": request.account, "token": system.token.balance_of(request.account)}


@app.post("/admin/price")
def update_price(
    request: PriceUpdateRequest,
    x_caller: Optional[str] = Header(None),
    system: VaultSystem = Depends(get_vault_system)
):
    """Publish a new answer on the manual price feed (owner only)"""
    require_owner(x_caller, system.engine.get_owner())
    if not isinstance(system.feed, ManualPriceFeed):
        raise HTTPException(status_code=409, detail="Price feed is not manually managed")
    system.feed.set_price(request.price, updated_at=request.updated_at)
    price, updated_at = system.feed.latest_round_data()
    return {"price": price, "updated_at": updated_at}


@app.get("/admin/audit/verify")
def verify_audit(
    x_caller: Optional[str] = Header(None),
    system: VaultSystem = Depends(get_vault_system)
):
    """Verify the audit hash chain (owner only)"""
    require_owner(x_caller, system.engine.get_owner())
    if system.audit_trail is None:
        return {"valid": True, "total_events": 0, "enabled": False}
    return {**system.audit_trail.verify_integrity(), "enabled": True}


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    uvicorn.run(
        "core_vault.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level="info"
    )
