"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator

from ..accounts import Account
from ..transactions import Transaction, TransferCommand
from ..query import Page


# Up to 15 whole digits plus cents
AMOUNT_MAX_DIGITS = 17


# Auth schemas
class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: str


# Account schemas
class CreateAccountRequest(BaseModel):
    username: Optional[str] = Field(None, description="Owner; admins only, defaults to the caller")
    initial_balance: Decimal = Field(
        Decimal("0.00"), ge=0, max_digits=AMOUNT_MAX_DIGITS, decimal_places=2,
        description="Opening balance"
    )
    name: Optional[str] = None


class AccountResponse(BaseModel):
    id: str
    username: str
    balance: str
    name: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> 'AccountResponse':
        return cls(
            id=account.id,
            username=account.username,
            balance=str(account.balance),
            name=account.name,
            created_at=account.created_at,
            updated_at=account.updated_at
        )


# Transaction schemas
class TransferRequest(BaseModel):
    source_account_id: str
    destination_account_id: str
    amount: Decimal = Field(
        ..., ge=0, max_digits=AMOUNT_MAX_DIGITS, decimal_places=2,
        description="Amount to move, non-negative, whole cents"
    )
    title: str = Field(..., min_length=1, max_length=255)

    @model_validator(mode="after")
    def check_distinct_accounts(self) -> 'TransferRequest':
        if self.source_account_id == self.destination_account_id:
            raise ValueError("Source and destination accounts must differ")
        return self

    def to_command(self) -> TransferCommand:
        return TransferCommand(
            source_account_id=self.source_account_id,
            destination_account_id=self.destination_account_id,
            amount=self.amount,
            title=self.title
        )


class TransactionResponse(BaseModel):
    id: str
    source_account_id: str
    destination_account_id: str
    amount: str = Field(..., description="Decimal amount as string")
    title: str
    transaction_date: datetime

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> 'TransactionResponse':
        return cls(
            id=transaction.id,
            source_account_id=transaction.source_account_id,
            destination_account_id=transaction.destination_account_id,
            amount=str(transaction.amount),
            title=transaction.title,
            transaction_date=transaction.transaction_date
        )


class TransactionPageResponse(BaseModel):
    content: List[TransactionResponse]
    page: int
    size: int
    total_elements: int
    total_pages: int

    @classmethod
    def from_page(cls, page: Page[Transaction]) -> 'TransactionPageResponse':
        return cls(
            content=[TransactionResponse.from_transaction(t) for t in page.items],
            page=page.page,
            size=page.size,
            total_elements=page.total,
            total_pages=page.total_pages
        )


class AccountActivityResponse(BaseModel):
    account: AccountResponse
    outgoing: List[TransactionResponse]
    incoming: List[TransactionResponse]
