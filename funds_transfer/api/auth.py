"""
Authentication and authorization dependencies
"""

from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..storage import StorageInterface, create_storage
from ..accounts import AccountManager
from ..transactions import TransferService
from ..users import UserManager, TokenClaims, Role
from ..exceptions import AuthenticationError
from ..config import TransferServiceConfig, get_config


class TransferSystem:
    """Funds transfer service with all components initialized"""

    def __init__(self, storage: StorageInterface, config: Optional[TransferServiceConfig] = None):
        self.config = config or get_config()
        self.storage = storage

        self.account_manager = AccountManager(self.storage)
        self.transfer_service = TransferService(self.storage, self.account_manager)
        self.user_manager = UserManager(
            self.storage,
            jwt_secret=self.config.jwt_secret,
            jwt_algorithm=self.config.jwt_algorithm,
            jwt_expiry_hours=self.config.jwt_expiry_hours
        )

    @classmethod
    def from_config(cls, config: Optional[TransferServiceConfig] = None) -> "TransferSystem":
        config = config or get_config()
        return cls(create_storage(config.database_url), config)

    def close(self) -> None:
        self.storage.close()


# Global transfer system instance, built on first use
_transfer_system: Optional[TransferSystem] = None


def get_transfer_system() -> TransferSystem:
    global _transfer_system
    if _transfer_system is None:
        _transfer_system = TransferSystem.from_config()
    return _transfer_system


def set_transfer_system(system: Optional[TransferSystem]) -> None:
    """Replace the global instance (tests, embedding)"""
    global _transfer_system
    _transfer_system = system


# JWT Security
security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: TransferSystem = Depends(get_transfer_system)
) -> TokenClaims:
    """Dependency that validates the bearer token and returns its claims"""
    if not system.config.auth_enabled:
        # For local runs and tests when auth is disabled
        return system.user_manager.anonymous_claims()

    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated",
                            headers={"WWW-Authenticate": "Bearer"})
    try:
        return system.user_manager.decode_token(credentials.credentials)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e),
                            headers={"WWW-Authenticate": "Bearer"})


def require_role(role: Role):
    """Dependency factory for role checking"""
    def check(user: TokenClaims = Depends(get_current_user)) -> TokenClaims:
        if not user.has_role(role):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user
    return check
