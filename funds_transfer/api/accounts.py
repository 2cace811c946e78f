"""
Account endpoints
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Depends, Query, status

from .auth import TransferSystem, get_transfer_system, require_role
from .errors import http_error
from .schemas import (
    CreateAccountRequest, AccountResponse, AccountActivityResponse, TransactionResponse
)
from ..accounts import Account
from ..exceptions import TransferServiceError
from ..users import Role, TokenClaims


router = APIRouter()


def _check_access(account: Account, user: TokenClaims) -> None:
    if not user.has_role(Role.ADMIN) and not account.is_owned_by(user.username):
        raise HTTPException(status_code=403, detail="Insufficient permissions")


@router.post("", status_code=status.HTTP_201_CREATED, response_model=AccountResponse)
def open_account(
    request: CreateAccountRequest,
    user: TokenClaims = Depends(require_role(Role.ADMIN)),
    system: TransferSystem = Depends(get_transfer_system)
):
    """Open an account for a user"""
    try:
        account = system.account_manager.open_account(
            username=request.username or user.username,
            initial_balance=request.initial_balance,
            name=request.name
        )
    except TransferServiceError as e:
        raise http_error(e)
    return AccountResponse.from_account(account)


@router.get("", response_model=List[AccountResponse])
def list_accounts(
    username: Optional[str] = Query(None, description="Owner filter, admins only"),
    user: TokenClaims = Depends(require_role(Role.USER)),
    system: TransferSystem = Depends(get_transfer_system)
):
    """List the caller's accounts; admins may list any owner's or all"""
    if not user.has_role(Role.ADMIN):
        username = user.username
    accounts = system.account_manager.list_accounts(username)
    return [AccountResponse.from_account(a) for a in accounts]


@router.get("/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: str,
    user: TokenClaims = Depends(require_role(Role.USER)),
    system: TransferSystem = Depends(get_transfer_system)
):
    """Get account details"""
    account = system.account_manager.get_account(account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    _check_access(account, user)
    return AccountResponse.from_account(account)


@router.get("/{account_id}/transactions", response_model=AccountActivityResponse)
def get_account_transactions(
    account_id: str,
    user: TokenClaims = Depends(require_role(Role.USER)),
    system: TransferSystem = Depends(get_transfer_system)
):
    """Get an account with its outgoing and incoming transactions"""
    try:
        activity = system.transfer_service.get_account_activity(account_id)
    except TransferServiceError as e:
        raise http_error(e)
    _check_access(activity.account, user)

    return AccountActivityResponse(
        account=AccountResponse.from_account(activity.account),
        outgoing=[TransactionResponse.from_transaction(t) for t in activity.outgoing],
        incoming=[TransactionResponse.from_transaction(t) for t in activity.incoming]
    )
