"""
Login endpoint
"""

from fastapi import APIRouter, HTTPException, Depends

from .auth import TransferSystem, get_transfer_system
from .schemas import LoginRequest, TokenResponse
from ..exceptions import AuthenticationError


router = APIRouter()


@router.post("/login", response_model=TokenResponse)
def login(
    request: LoginRequest,
    system: TransferSystem = Depends(get_transfer_system)
):
    """Authenticate user and return JWT token"""
    try:
        user = system.user_manager.authenticate(request.username, request.password)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return TokenResponse(**system.user_manager.issue_token(user))
