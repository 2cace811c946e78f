"""
User Authentication Module

Stores users with scrypt-hashed passwords and issues HS256 JWT bearer
tokens. Roles are plain strings: ``user`` may transfer from accounts it
owns, ``admin`` may additionally search every transaction.
"""

from datetime import datetime, timezone, timedelta
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
import hashlib
import hmac
import secrets
import uuid

import jwt

from .storage import StorageInterface, StorageRecord
from .query import Eq, Field
from .exceptions import AuthenticationError
from .logging_config import get_logger, log_action


ANONYMOUS_USER = "test_user"


class Role(Enum):
    """User roles"""
    USER = "user"
    ADMIN = "admin"


@dataclass
class User(StorageRecord):
    """Service user with roles and authentication info"""
    username: str
    roles: List[str] = field(default_factory=lambda: [Role.USER.value])
    is_active: bool = True
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None

    def has_role(self, role: Role) -> bool:
        return role.value in self.roles

    @property
    def is_admin(self) -> bool:
        return self.has_role(Role.ADMIN)


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of a bearer token"""
    username: str
    roles: List[str]
    expires_at: datetime

    def has_role(self, role: Role) -> bool:
        return role.value in self.roles


class UserManager:
    """Creates users, verifies passwords and issues bearer tokens"""

    def __init__(self, storage: StorageInterface, jwt_secret: str,
                 jwt_algorithm: str = "HS256", jwt_expiry_hours: int = 24):
        self.storage = storage
        self.table_name = "users"
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm
        self.jwt_expiry_hours = jwt_expiry_hours
        self.logger = get_logger("funds_transfer.users")

    def create_user(self, username: str, password: str,
                    roles: Optional[Iterable[Role]] = None) -> User:
        """Create a user; usernames are unique"""
        if self.get_user_by_username(username):
            raise ValueError(f"User {username} already exists")

        now = datetime.now(timezone.utc)
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            username=username,
            roles=[role.value for role in (roles or [Role.USER])]
        )
        self._set_user_password(user, password)
        self.save_user(user)

        log_action(
            self.logger, "info", "User created",
            user_id=username, action="create_user", resource=f"user:{user.id}",
            extra={"roles": user.roles}
        )
        return user

    def get_user_by_username(self, username: str) -> Optional[User]:
        records = self.storage.query(self.table_name, Eq(Field("username"), username))
        if records:
            return self._user_from_dict(records[0])
        return None

    def authenticate(self, username: str, password: str) -> User:
        """Return the user if the password matches, else raise AuthenticationError"""
        user = self.get_user_by_username(username)
        if not user or not user.is_active or not self._verify_password(user, password):
            log_action(
                self.logger, "warning", "Authentication failed",
                user_id=username, action="login_failed", resource="auth"
            )
            raise AuthenticationError("Invalid credentials")

        log_action(
            self.logger, "info", "User authenticated successfully",
            user_id=username, action="login", resource="auth"
        )
        return user

    def issue_token(self, user: User) -> Dict[str, Any]:
        """Generate a signed JWT for the user"""
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(hours=self.jwt_expiry_hours)
        token_payload = {
            "sub": user.username,
            "roles": user.roles,
            "iat": now,
            "exp": expires_at
        }
        token = jwt.encode(token_payload, self.jwt_secret, algorithm=self.jwt_algorithm)
        return {
            "access_token": token,
            "token_type": "bearer",
            "expires_at": expires_at.isoformat()
        }

    def decode_token(self, token: str) -> TokenClaims:
        """Validate a bearer token and return its claims"""
        try:
            payload = jwt.decode(token, self.jwt_secret, algorithms=[self.jwt_algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token expired")
        except jwt.InvalidTokenError:
            raise AuthenticationError("Invalid token")

        username = payload.get("sub")
        if not username:
            raise AuthenticationError("Invalid token")
        return TokenClaims(
            username=username,
            roles=list(payload.get("roles", [])),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        )

    def anonymous_claims(self) -> TokenClaims:
        """Claims used when authentication is disabled"""
        return TokenClaims(
            username=ANONYMOUS_USER,
            roles=[Role.USER.value, Role.ADMIN.value],
            expires_at=datetime.max.replace(tzinfo=timezone.utc)
        )

    def save_user(self, user: User) -> None:
        self.storage.save(self.table_name, user.id, user.to_dict())

    def _user_from_dict(self, data: Dict) -> User:
        return User(
            **StorageRecord.parse_audit_fields(data),
            username=data['username'],
            roles=list(data.get('roles', [])),
            is_active=data.get('is_active', True),
            password_hash=data.get('password_hash'),
            password_salt=data.get('password_salt')
        )

    def _generate_salt(self) -> str:
        """Generate random salt for password hashing"""
        return secrets.token_hex(16)

    def _hash_password(self, password: str, salt: str) -> str:
        """Hash password with salt using scrypt"""
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()

    def _set_user_password(self, user: User, password: str):
        user.password_salt = self._generate_salt()
        user.password_hash = self._hash_password(password, user.password_salt)

    def _verify_password(self, user: User, password: str) -> bool:
        if not user.password_hash or not user.password_salt:
            return False
        expected = self._hash_password(password, user.password_salt)
        return hmac.compare_digest(user.password_hash, expected)
