"""
Account Management Module

Manages bank accounts: opening, lookup, listing and the locked read used by
the transfer service. Balances are Decimal values rounded to cents and only
change inside a transfer.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union
import uuid

from .storage import StorageInterface, StorageRecord
from .query import Eq, Field
from .exceptions import AccountNotFoundError, InvalidAmountError
from .logging_config import get_logger, log_action


CENTS = Decimal("0.01")

OWNER_FIELD = Field("username")


def to_amount(value: Union[Decimal, str, int]) -> Decimal:
    """Normalize a monetary value to a two-place Decimal"""
    try:
        return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmountError(f"Invalid amount: {value}")


def exact_amount(value: Union[Decimal, str, int]) -> Decimal:
    """
    Parse a caller-supplied amount without rounding it.

    Raises InvalidAmountError for non-numeric or non-finite values, values too
    large to represent and fractions of a cent.
    """
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise InvalidAmountError(f"Invalid amount: {value}")
    if not amount.is_finite():
        raise InvalidAmountError(f"Invalid amount: {value}")
    rounded = to_amount(amount)
    if rounded != amount:
        raise InvalidAmountError("Amount must not have more than two decimal places")
    return rounded


@dataclass
class Account(StorageRecord):
    """
    Bank account owned by a single user
    """
    username: str
    balance: Decimal = Decimal("0.00")
    name: str = ""

    def __post_init__(self):
        self.balance = to_amount(self.balance)

    def is_owned_by(self, username: str) -> bool:
        return self.username == username

    def has_funds(self, amount: Decimal) -> bool:
        return self.balance >= amount

    def debit(self, amount: Decimal, when: Optional[datetime] = None) -> None:
        self.balance = to_amount(self.balance - amount)
        self.updated_at = when or datetime.now(timezone.utc)

    def credit(self, amount: Decimal, when: Optional[datetime] = None) -> None:
        self.balance = to_amount(self.balance + amount)
        self.updated_at = when or datetime.now(timezone.utc)


@dataclass
class AccountActivity:
    """An account together with its outgoing and incoming transactions"""
    account: Account
    outgoing: List = field(default_factory=list)
    incoming: List = field(default_factory=list)


class AccountManager:
    """
    Manages account lifecycle and locked reads
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.accounts_table = "accounts"
        self.logger = get_logger("funds_transfer.accounts")

    def open_account(
        self,
        username: str,
        initial_balance: Union[Decimal, str, int] = Decimal("0.00"),
        name: Optional[str] = None,
        account_id: Optional[str] = None
    ) -> Account:
        """
        Open a new account

        Args:
            username: Owner of the account
            initial_balance: Opening balance, must not be negative
            name: Account name/description
            account_id: Specific account ID (generated if not provided)

        Returns:
            Created Account object
        """
        balance = exact_amount(initial_balance)
        if balance < 0:
            raise InvalidAmountError("Initial balance must not be negative")

        now = datetime.now(timezone.utc)
        account = Account(
            id=account_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            username=username,
            balance=balance,
            name=name or f"{username} account"
        )
        self.save_account(account)

        log_action(
            self.logger, "info", "Account opened",
            user_id=username, action="open_account", resource=f"account:{account.id}",
            extra={"initial_balance": str(balance)}
        )
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        data = self.storage.load(self.accounts_table, account_id)
        if data:
            return self._account_from_dict(data)
        return None

    def require_account(self, account_id: str) -> Account:
        """Get account by ID or raise AccountNotFoundError"""
        account = self.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def lock_account(self, account_id: str) -> Optional[Account]:
        """
        Read an account under an exclusive lock.

        Must be called inside ``storage.atomic()``; the lock is held until
        that unit of work commits or rolls back.
        """
        data = self.storage.load_for_update(self.accounts_table, account_id)
        if data:
            return self._account_from_dict(data)
        return None

    def list_accounts(self, username: Optional[str] = None) -> List[Account]:
        """List all accounts, or only those owned by ``username``"""
        criterion = Eq(OWNER_FIELD, username) if username else None
        records = self.storage.query(self.accounts_table, criterion)
        return [self._account_from_dict(data) for data in records]

    def save_account(self, account: Account) -> None:
        """Save account to storage"""
        self.storage.save(self.accounts_table, account.id, self._account_to_dict(account))

    def _account_to_dict(self, account: Account) -> Dict:
        """Convert Account to dictionary for storage"""
        result = account.to_dict()
        result['balance'] = str(account.balance)
        return result

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        return Account(
            **StorageRecord.parse_audit_fields(data),
            username=data['username'],
            balance=Decimal(data['balance']),
            name=data.get('name', '')
        )
