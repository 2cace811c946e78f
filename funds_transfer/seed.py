"""
Demo data for local runs and API tests.

Creates an administrator, two customers with one account each and a short
transaction history spread over the first days of January 2023.

Run with: python -m funds_transfer.seed
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, TYPE_CHECKING

from .accounts import Account
from .transactions import Transaction
from .users import Role
from .logging_config import get_logger

if TYPE_CHECKING:
    from .api.auth import TransferSystem


logger = get_logger("funds_transfer.seed")

DEMO_USERS = [
    ("admin", "admin123", [Role.ADMIN, Role.USER]),
    ("User1", "password1", [Role.USER]),
    ("User2", "password2", [Role.USER]),
]

DEMO_ACCOUNTS = [
    # (owner, opening balance, name)
    ("User1", Decimal("5000.00"), "User1 main account"),
    ("User2", Decimal("3000.00"), "User2 main account"),
]

# (source index, destination index, amount, title, timestamp)
DEMO_HISTORY = [
    (0, 1, "50.00", "Dinner split", datetime(2023, 1, 1, 10, 0, tzinfo=timezone.utc)),
    (1, 0, "75.00", "Concert tickets", datetime(2023, 1, 2, 9, 30, tzinfo=timezone.utc)),
    (1, 0, "200.00", "Rent share", datetime(2023, 1, 3, 13, 0, tzinfo=timezone.utc)),
    (0, 1, "100.00", "Groceries", datetime(2023, 1, 4, 12, 0, tzinfo=timezone.utc)),
]


@dataclass
class SeedResult:
    accounts: List[Account] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)
    users: Dict[str, str] = field(default_factory=dict)  # username -> password


def seed_demo_data(system: "TransferSystem") -> SeedResult:
    """Load demo users, accounts and history; skipped if already seeded"""
    result = SeedResult()
    if system.user_manager.get_user_by_username("admin"):
        logger.info("Demo data already present, skipping seed")
        return result

    for username, password, roles in DEMO_USERS:
        system.user_manager.create_user(username, password, roles)
        result.users[username] = password

    for owner, balance, name in DEMO_ACCOUNTS:
        result.accounts.append(system.account_manager.open_account(owner, balance, name))

    for source, destination, amount, title, when in DEMO_HISTORY:
        result.transactions.append(system.transfer_service.record_transaction(
            result.accounts[source].id,
            result.accounts[destination].id,
            amount,
            title,
            when
        ))

    logger.info(
        f"Seeded {len(result.users)} users, {len(result.accounts)} accounts "
        f"and {len(result.transactions)} transactions"
    )
    return result


if __name__ == "__main__":
    from .api.auth import get_transfer_system
    from .config import get_config
    from .logging_config import setup_logging

    config = get_config()
    setup_logging(config.log_level, config.log_format)
    seeded = seed_demo_data(get_transfer_system())
    for account in seeded.accounts:
        print(f"{account.username}: {account.id} balance {account.balance}")
