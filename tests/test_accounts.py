"""
Tests for account management
"""

import pytest
from decimal import Decimal

from funds_transfer.storage import InMemoryStorage
from funds_transfer.accounts import Account, AccountManager, exact_amount, to_amount
from funds_transfer.exceptions import AccountNotFoundError, InvalidAmountError


class TestAmounts:
    """Monetary rounding"""

    def test_to_amount_rounds_to_cents(self):
        assert to_amount("10") == Decimal("10.00")
        assert to_amount("10.005") == Decimal("10.01")
        assert to_amount(Decimal("0.004")) == Decimal("0.00")

    def test_to_amount_out_of_range(self):
        with pytest.raises(InvalidAmountError):
            to_amount("1e30")

    def test_exact_amount(self):
        assert exact_amount("12.3") == Decimal("12.30")
        assert exact_amount("7.000") == Decimal("7.00")

        for value in ("0.004", "1e30", "NaN", "Infinity", "abc"):
            with pytest.raises(InvalidAmountError):
                exact_amount(value)


class TestAccount:
    """Balance operations on a single account"""

    def setup_method(self):
        manager = AccountManager(InMemoryStorage())
        self.account = manager.open_account("alice", Decimal("100.00"))

    def test_debit_and_credit(self):
        self.account.debit(Decimal("30.00"))
        self.account.credit(Decimal("5.50"))
        assert self.account.balance == Decimal("75.50")

    def test_has_funds_allows_exact_balance(self):
        assert self.account.has_funds(Decimal("100.00"))
        assert not self.account.has_funds(Decimal("100.01"))

    def test_ownership(self):
        assert self.account.is_owned_by("alice")
        assert not self.account.is_owned_by("bob")


class TestAccountManager:
    """Test account manager"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.manager = AccountManager(self.storage)

    def test_open_account(self):
        """Test opening an account"""
        account = self.manager.open_account("alice", "250", name="Savings")

        assert isinstance(account, Account)
        assert account.username == "alice"
        assert account.balance == Decimal("250.00")
        assert account.name == "Savings"
        assert self.storage.exists("accounts", account.id)

    def test_open_account_with_explicit_id(self):
        account = self.manager.open_account("alice", account_id="acc-1")
        assert account.id == "acc-1"
        assert account.balance == Decimal("0.00")
        assert account.name == "alice account"

    def test_open_account_rejects_negative_balance(self):
        with pytest.raises(InvalidAmountError):
            self.manager.open_account("alice", "-1.00")

    def test_open_account_rejects_unrepresentable_balance(self):
        with pytest.raises(InvalidAmountError):
            self.manager.open_account("alice", "1e30")
        with pytest.raises(InvalidAmountError):
            self.manager.open_account("alice", "10.001")
        assert self.manager.list_accounts() == []

    def test_get_account_round_trips_balance(self):
        created = self.manager.open_account("alice", "12.34")
        loaded = self.manager.get_account(created.id)

        assert loaded == created
        assert loaded.balance == Decimal("12.34")

    def test_get_missing_account(self):
        assert self.manager.get_account("missing") is None
        with pytest.raises(AccountNotFoundError):
            self.manager.require_account("missing")

    def test_list_accounts_by_owner(self):
        self.manager.open_account("alice", account_id="a1")
        self.manager.open_account("alice", account_id="a2")
        self.manager.open_account("bob", account_id="b1")

        assert {a.id for a in self.manager.list_accounts("alice")} == {"a1", "a2"}
        assert [a.id for a in self.manager.list_accounts("bob")] == ["b1"]
        assert len(self.manager.list_accounts()) == 3

    def test_lock_account_needs_unit_of_work(self):
        self.manager.open_account("alice", account_id="a1")

        with pytest.raises(RuntimeError):
            self.manager.lock_account("a1")

        with self.storage.atomic():
            assert self.manager.lock_account("a1").id == "a1"
            assert self.manager.lock_account("missing") is None
