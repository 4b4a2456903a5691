# school_admin/services/identity.py - Identity provider used by student onboarding
from typing import Any, Dict, Optional, Protocol
from uuid import UUID
import logging

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from school_admin.core.db import unit_of_work
from school_admin.core.security import hash_password, verify_password
from school_admin.models.base import utcnow
from school_admin.models.user import User
from school_admin.services.results import IdentityProviderError

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    """Creates and removes login identities. Sessions and tokens live elsewhere."""

    def create_identity(self, email: str, initial_password: str, metadata: Dict[str, Any]) -> UUID:
        ...

    def delete_identity(self, identity_id: UUID) -> None:
        ...

    def authenticate(self, email: str, password: str) -> Optional[UUID]:
        ...


class LocalIdentityProvider:
    """Identity provider backed by the users table"""

    def __init__(self, db: Session):
        self.db = db

    def create_identity(self, email: str, initial_password: str, metadata: Dict[str, Any]) -> UUID:
        """
        Create a credential record.

        Args:
            email: Login email (lowercased)
            initial_password: Plain text password, hashed before storage
            metadata: Free-form attributes; ``role`` and ``must_change_password`` are lifted to columns

        Returns:
            The new identity id

        Raises:
            IdentityProviderError: If the email is taken or the write fails
        """
        email = email.lower().strip()
        metadata = dict(metadata or {})
        user = User(
            email=email,
            password_hash=hash_password(initial_password),
            role=metadata.get("role", "student"),
            must_change_password=bool(metadata.pop("must_change_password", False)),
            user_metadata=metadata,
            is_active=True,
        )
        try:
            with unit_of_work(self.db):
                self.db.add(user)
        except IntegrityError:
            raise IdentityProviderError(f"An account with email {email} already exists")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create identity for {email}: {e}")
            raise IdentityProviderError("Failed to create user account")

        logger.info(f"Identity created: {email}")
        return user.id

    def delete_identity(self, identity_id: UUID) -> None:
        try:
            with unit_of_work(self.db):
                self.db.execute(delete(User).where(User.id == identity_id))
        except SQLAlchemyError as e:
            raise IdentityProviderError(f"Failed to delete identity {identity_id}: {e}")
        logger.info(f"Identity deleted: {identity_id}")

    def authenticate(self, email: str, password: str) -> Optional[UUID]:
        email = email.lower().strip()
        user = self.db.execute(
            select(User).where(User.email == email)
        ).scalar_one_or_none()

        if not user or not user.is_active:
            return None
        if not verify_password(password, user.password_hash):
            return None

        user.last_login = utcnow()
        self.db.commit()
        return user.id


__all__ = ["IdentityProvider", "LocalIdentityProvider"]
