"""
Domain errors raised by the transfer service.

Each error maps to one distinct failure response at the HTTP layer.
"""


class TransferServiceError(Exception):
    """Base class for domain errors."""


class AccountNotFoundError(TransferServiceError):
    """Raised when a referenced account does not exist."""

    def __init__(self, account_id: str, role: str = "Account"):
        self.account_id = account_id
        self.role = role
        super().__init__(f"{role} account not found: {account_id}")


class WrongOwnerError(TransferServiceError):
    """Raised when the caller does not own the source account."""

    def __init__(self, account_id: str, username: str):
        self.account_id = account_id
        self.username = username
        super().__init__(f"User {username} does not own the source account")


class InsufficientFundsError(TransferServiceError):
    """Raised when the source balance is lower than the transfer amount."""

    def __init__(self, account_id: str, balance, amount):
        self.account_id = account_id
        self.balance = balance
        self.amount = amount
        super().__init__("Source account does not have enough balance")


class InvalidAmountError(TransferServiceError):
    """Raised when an amount is negative."""


class AuthenticationError(TransferServiceError):
    """Raised when credentials or a bearer token are rejected."""
