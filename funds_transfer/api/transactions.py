"""
Transaction endpoints
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query

from .auth import TransferSystem, get_transfer_system, require_role
from .errors import http_error
from .schemas import TransferRequest, TransactionResponse, TransactionPageResponse
from ..exceptions import TransferServiceError
from ..query import PageRequest
from ..transactions import TransactionSearchCriteria
from ..users import Role, TokenClaims


router = APIRouter()


@router.post("/transfer", response_model=TransactionResponse)
def transfer(
    request: TransferRequest,
    user: TokenClaims = Depends(require_role(Role.USER)),
    system: TransferSystem = Depends(get_transfer_system)
):
    """Move funds from an account the caller owns to another account"""
    try:
        transaction = system.transfer_service.make_transfer(request.to_command(), user.username)
    except TransferServiceError as e:
        raise http_error(e)
    return TransactionResponse.from_transaction(transaction)


@router.get("/search", response_model=TransactionPageResponse)
def search_transactions(
    account_id: Optional[str] = Query(None, description="Matches source or destination"),
    amount_from: Optional[Decimal] = Query(None, ge=0),
    amount_to: Optional[Decimal] = Query(None, ge=0),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None, description="Inclusive up to the end of this day"),
    page: int = Query(0, ge=0),
    size: Optional[int] = Query(None, ge=1),
    sort: str = Query("transaction_date", pattern="^(transaction_date|amount)$"),
    direction: str = Query("desc", pattern="^(asc|desc)$"),
    user: TokenClaims = Depends(require_role(Role.ADMIN)),
    system: TransferSystem = Depends(get_transfer_system)
):
    """Search transactions with optional filters, paginated"""
    size = min(size or system.config.default_page_size, system.config.max_page_size)
    criteria = TransactionSearchCriteria(
        account_id=account_id,
        amount_from=amount_from,
        amount_to=amount_to,
        date_from=date_from,
        date_to=date_to
    )
    page_request = PageRequest(page=page, size=size, sort=sort, descending=direction == "desc")
    result = system.transfer_service.find_transactions(criteria, page_request)
    return TransactionPageResponse.from_page(result)


@router.get("/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: str,
    user: TokenClaims = Depends(require_role(Role.USER)),
    system: TransferSystem = Depends(get_transfer_system)
):
    """Get a transaction the caller took part in"""
    transaction = system.transfer_service.get_transaction(transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")

    if not user.has_role(Role.ADMIN):
        accounts = system.account_manager.list_accounts(user.username)
        if not any(transaction.involves(account.id) for account in accounts):
            raise HTTPException(status_code=403, detail="Insufficient permissions")

    return TransactionResponse.from_transaction(transaction)
