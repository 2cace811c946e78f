"""
Transfer Processing Module

Moves funds between two accounts and searches the resulting transaction
history. A transfer locks both accounts, checks ownership and balance, then
debits, credits and records the transaction in a single unit of work; any
failure rolls the whole unit back.
"""

from decimal import Decimal
from datetime import date, datetime, time, timezone
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union
import uuid

from .storage import StorageInterface, StorageRecord
from .accounts import Account, AccountActivity, AccountManager, exact_amount, to_amount
from .query import (
    AllOf, AnyOf, Between, Criterion, Eq, Field, FieldType, Gte, Lte,
    Ordering, Page, PageRequest, parse_timestamp
)
from .exceptions import (
    AccountNotFoundError, InsufficientFundsError, InvalidAmountError, WrongOwnerError
)
from .logging_config import get_logger, log_action


SOURCE_ACCOUNT = Field("source_account_id")
DESTINATION_ACCOUNT = Field("destination_account_id")
AMOUNT = Field("amount", FieldType.NUMERIC)
TRANSACTION_DATE = Field("transaction_date", FieldType.TIMESTAMP)

SORTABLE_FIELDS = {
    "transaction_date": TRANSACTION_DATE,
    "amount": AMOUNT,
}


@dataclass
class Transaction(StorageRecord):
    """
    Completed transfer between two accounts. Immutable once stored.
    """
    source_account_id: str
    destination_account_id: str
    amount: Decimal
    title: str
    transaction_date: datetime

    def __post_init__(self):
        self.amount = to_amount(self.amount)
        if self.amount < 0:
            raise InvalidAmountError("Transaction amount must not be negative")

    def involves(self, account_id: str) -> bool:
        return account_id in (self.source_account_id, self.destination_account_id)


@dataclass(frozen=True)
class TransferCommand:
    """Request to move ``amount`` from the source to the destination account"""
    source_account_id: str
    destination_account_id: str
    amount: Decimal
    title: str


@dataclass(frozen=True)
class TransactionSearchCriteria:
    """Optional search filters; absent filters do not restrict the result"""
    account_id: Optional[str] = None
    amount_from: Optional[Decimal] = None
    amount_to: Optional[Decimal] = None
    date_from: Optional[Union[datetime, date]] = None
    date_to: Optional[Union[datetime, date]] = None


def range_start(value: Union[datetime, date]) -> datetime:
    """Datetimes are used as given; a bare date starts at midnight UTC"""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def end_of_day(value: Union[datetime, date]) -> datetime:
    """Last representable instant of the calendar day ``value`` falls on"""
    tzinfo = timezone.utc
    if isinstance(value, datetime):
        tzinfo = value.tzinfo or timezone.utc
        value = value.date()
    return datetime.combine(value, time.max, tzinfo=tzinfo)


def build_search_criterion(criteria: TransactionSearchCriteria) -> Criterion:
    """
    Combine the present filters into one conjunctive criterion.

    ``account_id`` matches either side of the transfer and ``date_to`` is
    promoted to the end of its day. An amount bound given on its own is
    applied on its own.
    """
    predicates: List[Criterion] = []

    if criteria.account_id is not None:
        predicates.append(AnyOf(
            Eq(SOURCE_ACCOUNT, criteria.account_id),
            Eq(DESTINATION_ACCOUNT, criteria.account_id)
        ))

    if criteria.amount_from is not None and criteria.amount_to is not None:
        predicates.append(Between(AMOUNT, criteria.amount_from, criteria.amount_to))
    elif criteria.amount_from is not None:
        predicates.append(Gte(AMOUNT, criteria.amount_from))
    elif criteria.amount_to is not None:
        predicates.append(Lte(AMOUNT, criteria.amount_to))

    if criteria.date_from is not None:
        predicates.append(Gte(TRANSACTION_DATE, range_start(criteria.date_from)))
    if criteria.date_to is not None:
        predicates.append(Lte(TRANSACTION_DATE, end_of_day(criteria.date_to)))

    return AllOf(*predicates)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransferService:
    """
    Executes transfers under pessimistic locks and searches transactions
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.clock = clock
        self.table_name = "transactions"
        self.logger = get_logger("funds_transfer.transactions")

    def make_transfer(self, command: TransferCommand, username: str) -> Transaction:
        """
        Move funds between two accounts on behalf of ``username``

        Args:
            command: Source, destination, amount and title
            username: Authenticated caller; must own the source account

        Returns:
            The stored Transaction

        Raises:
            InvalidAmountError: If the amount is negative or finer than a cent
            AccountNotFoundError: If either account does not exist
            WrongOwnerError: If the caller does not own the source account
            InsufficientFundsError: If the source balance is below the amount
        """
        amount = exact_amount(command.amount)
        if amount < 0:
            raise InvalidAmountError("Transfer amount must not be negative")

        try:
            with self.storage.atomic():
                source, destination = self._lock_accounts(
                    command.source_account_id, command.destination_account_id
                )

                if not source.is_owned_by(username):
                    raise WrongOwnerError(source.id, username)

                if not source.has_funds(amount):
                    raise InsufficientFundsError(source.id, source.balance, amount)

                now = self.clock()
                source.debit(amount, now)
                destination.credit(amount, now)
                self.account_manager.save_account(source)
                self.account_manager.save_account(destination)

                transaction = Transaction(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    source_account_id=source.id,
                    destination_account_id=destination.id,
                    amount=amount,
                    title=command.title,
                    transaction_date=now
                )
                self._save_transaction(transaction)
        except (AccountNotFoundError, WrongOwnerError, InsufficientFundsError) as e:
            log_action(
                self.logger, "warning", f"Transfer rejected: {e}",
                user_id=username, action="transfer_rejected",
                resource=f"account:{command.source_account_id}",
                extra={
                    "reason": type(e).__name__,
                    "destination_account": command.destination_account_id,
                    "amount": str(amount)
                }
            )
            raise

        log_action(
            self.logger, "info", "Transfer completed",
            user_id=username, action="transfer", resource=f"transaction:{transaction.id}",
            extra={
                "source_account": transaction.source_account_id,
                "destination_account": transaction.destination_account_id,
                "amount": str(transaction.amount)
            }
        )
        return transaction

    def _lock_accounts(self, source_id: str, destination_id: str) -> Tuple[Account, Account]:
        """
        Lock both accounts in ascending id order.

        A fixed global order means two opposite-direction transfers can never
        each hold one lock while waiting for the other.
        """
        locked: Dict[str, Optional[Account]] = {}
        for account_id in sorted({source_id, destination_id}):
            locked[account_id] = self.account_manager.lock_account(account_id)

        source = locked[source_id]
        if source is None:
            raise AccountNotFoundError(source_id, "Source")
        destination = locked[destination_id]
        if destination is None:
            raise AccountNotFoundError(destination_id, "Destination")
        return source, destination

    def record_transaction(
        self,
        source_account_id: str,
        destination_account_id: str,
        amount: Union[Decimal, str],
        title: str,
        transaction_date: datetime
    ) -> Transaction:
        """
        Store a historical transaction without moving funds.

        Used to load existing history; balances are expected to already
        reflect it.
        """
        for account_id in (source_account_id, destination_account_id):
            if not self.storage.exists(self.account_manager.accounts_table, account_id):
                raise AccountNotFoundError(account_id)

        now = self.clock()
        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            source_account_id=source_account_id,
            destination_account_id=destination_account_id,
            amount=Decimal(str(amount)),
            title=title,
            transaction_date=transaction_date
        )
        self._save_transaction(transaction)
        return transaction

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Get transaction by ID"""
        data = self.storage.load(self.table_name, transaction_id)
        if data:
            return self._transaction_from_dict(data)
        return None

    def find_transactions(
        self,
        criteria: TransactionSearchCriteria,
        page_request: Optional[PageRequest] = None
    ) -> Page[Transaction]:
        """
        Search transactions with optional filters, one page at a time

        Args:
            criteria: Account, amount range and date range filters
            page_request: Page index, size and sort order

        Returns:
            Page of matching transactions plus the total match count
        """
        page_request = page_request or PageRequest()
        sort_field = SORTABLE_FIELDS.get(page_request.sort)
        if sort_field is None:
            raise ValueError(f"Unsupported sort field: {page_request.sort}")

        criterion = build_search_criterion(criteria)
        records = self.storage.query(
            self.table_name,
            criterion,
            ordering=Ordering(sort_field, page_request.descending),
            offset=page_request.offset,
            limit=page_request.size
        )
        total = self.storage.count(self.table_name, criterion)

        self.logger.debug("Transaction search", extra={"extra": {"criterion": repr(criterion), "total": total}})

        return Page(
            items=[self._transaction_from_dict(data) for data in records],
            page=page_request.page,
            size=page_request.size,
            total=total
        )

    def get_account_activity(self, account_id: str) -> AccountActivity:
        """Load an account with its outgoing and incoming transactions"""
        account = self.account_manager.require_account(account_id)
        ordering = Ordering(TRANSACTION_DATE)
        outgoing = self.storage.query(self.table_name, Eq(SOURCE_ACCOUNT, account_id), ordering)
        incoming = self.storage.query(self.table_name, Eq(DESTINATION_ACCOUNT, account_id), ordering)
        return AccountActivity(
            account=account,
            outgoing=[self._transaction_from_dict(data) for data in outgoing],
            incoming=[self._transaction_from_dict(data) for data in incoming]
        )

    def _save_transaction(self, transaction: Transaction) -> None:
        """Save transaction to storage"""
        self.storage.save(self.table_name, transaction.id, self._transaction_to_dict(transaction))

    def _transaction_to_dict(self, transaction: Transaction) -> Dict:
        """Convert Transaction to dictionary for storage"""
        result = transaction.to_dict()
        result['amount'] = str(transaction.amount)
        return result

    def _transaction_from_dict(self, data: Dict) -> Transaction:
        """Convert dictionary to Transaction"""
        return Transaction(
            **StorageRecord.parse_audit_fields(data),
            source_account_id=data['source_account_id'],
            destination_account_id=data['destination_account_id'],
            amount=Decimal(data['amount']),
            title=data['title'],
            transaction_date=parse_timestamp(data['transaction_date'])
        )
