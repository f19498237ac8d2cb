"""Account lookup, password verification and role/permission resolution."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from usermanager.models.user import Permission, User, role_permissions, user_roles

logger = logging.getLogger(__name__)

# Argon2 password hasher with recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)


@dataclass
class Account:
    """Credential record as seen by the authentication flow."""

    id: str
    login: str
    password_hash: str
    role_names: set[str] = field(default_factory=set)
    is_active: bool = True


class PasswordVerifier:
    """Constant-time password verification against Argon2 hashes."""

    def __init__(self, hasher: PasswordHasher = ph):
        self._hasher = hasher
        self._dummy_hash: str | None = None

    def matches(self, plaintext: str, password_hash: str) -> bool:
        try:
            return self._hasher.verify(password_hash, plaintext)
        except VerifyMismatchError:
            return False
        except (VerificationError, InvalidHashError) as e:
            logger.warning(f"Stored password hash could not be verified: {e}")
            return False

    def burn(self, plaintext: str) -> None:
        """Spend the same work as a real verification; used when no account exists."""
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash("dummy-password-for-timing")
        self.matches(plaintext, self._dummy_hash)


class CredentialStore(ABC):
    @abstractmethod
    async def find_account_by_login(self, login: str) -> Account | None: ...

    async def record_login(self, account_id: str) -> None:
        """Note a successful sign-in. Optional."""
        return None


class RolePermissionStore(ABC):
    @abstractmethod
    async def get_permissions_for_user(self, user_id: str) -> set[str]: ...


def _parse_uuid(value: str) -> UUID | None:
    try:
        return UUID(value)
    except ValueError:
        return None


class SqlCredentialStore(CredentialStore):
    """Reads accounts from the users table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_account_by_login(self, login: str) -> Account | None:
        result = await self.session.execute(select(User).where(User.login == login))
        user = result.scalar_one_or_none()
        if user is None:
            return None
        return Account(
            id=str(user.id),
            login=user.login,
            password_hash=user.password_hash,
            role_names={role.name for role in user.roles},
            is_active=user.is_active,
        )

    async def record_login(self, account_id: str) -> None:
        user_id = _parse_uuid(account_id)
        if user_id is None:
            return
        await self.session.execute(
            update(User).where(User.id == user_id).values(last_login_at=datetime.now(UTC))
        )
        await self.session.flush()


class SqlRolePermissionStore(RolePermissionStore):
    """Resolves permissions through user_roles and role_permissions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_permissions_for_user(self, user_id: str) -> set[str]:
        uid = _parse_uuid(user_id)
        if uid is None:
            return set()
        result = await self.session.execute(
            select(Permission.name)
            .join(role_permissions, role_permissions.c.permission_id == Permission.id)
            .join(user_roles, user_roles.c.role_id == role_permissions.c.role_id)
            .where(user_roles.c.user_id == uid)
            .distinct()
        )
        return set(result.scalars().all())
