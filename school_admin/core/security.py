# school_admin/core/security.py - Password hashing and bearer token utilities
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional, Union, List
import secrets

import jwt
from passlib.context import CryptContext
from fastapi import HTTPException, status

from school_admin.core.config import settings

# Password hashing context
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
    bcrypt__ident="2b"
)


class SecurityError(Exception):
    """Custom exception for security-related errors"""
    pass


class TokenManager:
    """Creates and validates the bearer tokens that carry the acting user"""

    def __init__(self):
        self.secret_key = settings.JWT_SECRET
        self.algorithm = settings.JWT_ALGORITHM
        self.issuer = settings.JWT_ISSUER
        self.audience = settings.JWT_AUDIENCE
        self.access_token_expire_minutes = settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES

    def create_access_token(
        self,
        subject: Union[str, Any],
        expires_delta: Optional[timedelta] = None,
        scopes: Optional[List[str]] = None
    ) -> str:
        """
        Create a JWT access token.

        Args:
            subject: Token subject (the user ID)
            expires_delta: Custom expiration time
            scopes: Token scopes/permissions

        Returns:
            Encoded JWT token string

        Raises:
            SecurityError: If token creation fails
        """
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(minutes=self.access_token_expire_minutes))

        payload = {
            "sub": str(subject),
            "iat": now,
            "exp": expire,
            "iss": self.issuer,
            "aud": self.audience,
            "type": "access",
            "jti": secrets.token_hex(16),
        }
        if scopes:
            payload["scope"] = " ".join(scopes)

        try:
            return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        except jwt.PyJWTError as e:
            raise SecurityError(f"Failed to create access token: {e}")

    def decode_token(self, token: str, expected_type: str = "access") -> Dict[str, Any]:
        """
        Decode and validate a JWT token.

        Raises:
            HTTPException: If token is invalid or expired
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
            )
        except jwt.ExpiredSignatureError:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Token has expired",
                headers={"WWW-Authenticate": "Bearer"},
            )
        except jwt.InvalidTokenError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Invalid token: {e}",
                headers={"WWW-Authenticate": "Bearer"},
            )

        if payload.get("type") != expected_type:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Invalid token type. Expected {expected_type}",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return payload


class PasswordManager:
    """Password hashing and verification"""

    @staticmethod
    def hash_password(password: str) -> str:
        if not password:
            raise SecurityError("Password cannot be empty")
        return pwd_context.hash(password)

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        if not plain_password or not hashed_password:
            return False
        try:
            return pwd_context.verify(plain_password, hashed_password)
        except (ValueError, TypeError):
            return False


token_manager = TokenManager()


def create_access_token(subject: Union[str, Any], **kwargs) -> str:
    return token_manager.create_access_token(subject, **kwargs)


def decode_token(token: str, expected_type: str = "access") -> Dict[str, Any]:
    return token_manager.decode_token(token, expected_type)


def hash_password(password: str) -> str:
    return PasswordManager.hash_password(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return PasswordManager.verify_password(plain_password, hashed_password)


__all__ = [
    "SecurityError",
    "TokenManager",
    "PasswordManager",
    "create_access_token",
    "decode_token",
    "hash_password",
    "verify_password",
]
