"""
Mapping from domain errors to HTTP responses
"""

from fastapi import HTTPException

from ..exceptions import (
    TransferServiceError, AccountNotFoundError, WrongOwnerError,
    InsufficientFundsError, InvalidAmountError, AuthenticationError
)


ERROR_STATUS = {
    AccountNotFoundError: 404,
    WrongOwnerError: 403,
    InsufficientFundsError: 409,
    InvalidAmountError: 400,
    AuthenticationError: 401,
}


def http_error(error: TransferServiceError) -> HTTPException:
    """Build the HTTPException for a domain error"""
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))
