"""
Wallet API Routes
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from delivery_market.api.dependencies import get_wallet_service
from delivery_market.core.exceptions import WalletNotFoundError
from delivery_market.core.timeouts import run_with_timeout
from delivery_market.db.models.wallet import TransactionType
from delivery_market.domain.services.wallet_service import WalletService
from delivery_market.domain.snapshots import TransactionSnapshot, WalletSnapshot

router = APIRouter()


class BalanceResponse(BaseModel):
    user_id: str
    balance: int


class AmountRequest(BaseModel):
    amount: int
    description: Optional[str] = None


class CreditRequest(BaseModel):
    amount: int
    delivery_id: str
    kind: TransactionType


class EarningsResponse(BaseModel):
    user_id: str
    total: int
    cod_collections: int
    prepaid_earnings: int
    deposits: int
    withdrawals: int


class AuditResponse(BaseModel):
    user_id: str
    stored_balance: int
    computed_balance: int
    transaction_count: int
    version: int
    consistent: bool


@router.get(
    "/{user_id}",
    response_model=WalletSnapshot,
    summary="Wallet with its full ledger",
    responses={404: {"description": "No wallet yet for this user"}},
)
async def get_wallet(
    user_id: str,
    service: WalletService = Depends(get_wallet_service),
) -> WalletSnapshot:
    wallet = await service.get_wallet(user_id)
    if wallet is None:
        raise WalletNotFoundError(user_id)
    return wallet


@router.get(
    "/{user_id}/balance",
    response_model=BalanceResponse,
    summary="Current balance",
    description="0 when the user has no wallet yet; reading never creates one.",
)
async def get_balance(
    user_id: str,
    service: WalletService = Depends(get_wallet_service),
) -> BalanceResponse:
    return BalanceResponse(user_id=user_id, balance=await service.get_balance(user_id))


@router.get(
    "/{user_id}/history",
    response_model=List[TransactionSnapshot],
    summary="Ledger entries, most recent first",
)
async def get_transaction_history(
    user_id: str,
    limit: Optional[int] = None,
    offset: int = 0,
    service: WalletService = Depends(get_wallet_service),
) -> List[TransactionSnapshot]:
    return await service.get_history(user_id, limit=limit, offset=offset)


@router.get(
    "/{user_id}/earnings",
    response_model=EarningsResponse,
    summary="Totals per transaction type",
)
async def get_earnings(
    user_id: str,
    service: WalletService = Depends(get_wallet_service),
) -> EarningsResponse:
    summary = await service.earnings_summary(user_id)
    return EarningsResponse(
        user_id=user_id,
        total=summary.total,
        cod_collections=summary.cod_collections,
        prepaid_earnings=summary.prepaid_earnings,
        deposits=summary.deposits,
        withdrawals=summary.withdrawals,
    )


@router.get(
    "/{user_id}/audit",
    response_model=AuditResponse,
    summary="Recompute the balance from the ledger",
)
async def audit_wallet(
    user_id: str,
    service: WalletService = Depends(get_wallet_service),
) -> AuditResponse:
    audit = await service.audit(user_id)
    return AuditResponse(
        user_id=audit.user_id,
        stored_balance=audit.stored_balance,
        computed_balance=audit.computed_balance,
        transaction_count=audit.transaction_count,
        version=audit.version,
        consistent=audit.consistent,
    )


@router.post(
    "/{user_id}/deposit",
    response_model=BalanceResponse,
    summary="Deposit into the wallet",
)
async def deposit(
    user_id: str,
    data: AmountRequest,
    service: WalletService = Depends(get_wallet_service),
) -> BalanceResponse:
    balance = await run_with_timeout(
        service.deposit(user_id, data.amount, data.description or "Deposit"),
        "wallet_deposit",
    )
    return BalanceResponse(user_id=user_id, balance=balance)


@router.post(
    "/{user_id}/withdraw",
    response_model=BalanceResponse,
    summary="Withdraw from the wallet",
    responses={400: {"description": "Insufficient funds"}},
)
async def withdraw(
    user_id: str,
    data: AmountRequest,
    service: WalletService = Depends(get_wallet_service),
) -> BalanceResponse:
    balance = await run_with_timeout(
        service.debit(user_id, data.amount, data.description or "Withdrawal"),
        "wallet_debit",
    )
    return BalanceResponse(user_id=user_id, balance=balance)


@router.post(
    "/{user_id}/credit",
    response_model=BalanceResponse,
    summary="Credit a driver for a delivery",
    description=(
        "Not deduplicated by delivery unless WALLET_REJECT_DUPLICATE_CREDITS is on. "
        "After a 504, read the history before retrying."
    ),
)
async def credit(
    user_id: str,
    data: CreditRequest,
    service: WalletService = Depends(get_wallet_service),
) -> BalanceResponse:
    balance = await run_with_timeout(
        service.credit(user_id, data.amount, data.delivery_id, data.kind),
        "wallet_credit",
    )
    return BalanceResponse(user_id=user_id, balance=balance)
