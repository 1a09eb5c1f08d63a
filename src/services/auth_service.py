"""Authentication primitives: JWT access tokens, password and token hashing."""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from uuid import UUID

import bcrypt
import jwt
import structlog

from src.config import Settings

logger = structlog.get_logger(__name__)

# Constants
JWT_ALGORITHM = "HS256"


class AuthService:
    """Service for password hashing and JWT access token management."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def hash_password(self, password: str) -> str:
        """Hash a password using bcrypt.

        Args:
            password: Plain-text password to hash

        Returns:
            Bcrypt hash string
        """
        salt = bcrypt.gensalt()
        hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    def verify_password(self, password: str, password_hash: str) -> bool:
        """Verify a password against a bcrypt hash.

        Args:
            password: Plain-text password to check
            password_hash: Bcrypt hash to verify against

        Returns:
            True if the password matches, False otherwise
        """
        try:
            return bcrypt.checkpw(
                password.encode("utf-8"),
                password_hash.encode("utf-8"),
            )
        except ValueError:
            logger.warning("password_hash_malformed")
            return False

    def create_access_token(
        self, user_id: int, username: str, session_id: UUID, branch_id: int
    ) -> str:
        """Create a signed JWT access token bound to a login session.

        Args:
            user_id: User id (placed in 'sub' claim as a string)
            username: Username to include in payload
            session_id: Login session id ('sid' claim)
            branch_id: Branch the session was opened for

        Returns:
            Encoded JWT string
        """
        now = datetime.now(timezone.utc)
        expire_minutes = self.settings.access_token_expire_minutes
        payload = {
            "sub": str(user_id),
            "username": username,
            "sid": str(session_id),
            "branch_id": branch_id,
            "iat": now,
            "exp": now + timedelta(minutes=expire_minutes),
        }
        token = jwt.encode(payload, self.settings.jwt_secret, algorithm=JWT_ALGORITHM)
        logger.debug(
            "access_token_created",
            user_id=user_id,
            session_id=str(session_id),
            expires_minutes=expire_minutes,
        )
        return token

    def validate_access_token(self, token: str) -> dict:
        """Decode and validate a JWT access token.

        Args:
            token: Encoded JWT string

        Returns:
            Decoded payload dict with sub, username, sid, branch_id, iat, exp

        Raises:
            ValueError: If the token is invalid, expired, or malformed
        """
        try:
            return jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[JWT_ALGORITHM],
            )
        except jwt.ExpiredSignatureError:
            raise ValueError("Access token has expired")
        except jwt.InvalidTokenError as e:
            raise ValueError(f"Invalid access token: {e}")

    @staticmethod
    def generate_refresh_token() -> str:
        """Opaque, high-entropy refresh token."""
        return secrets.token_urlsafe(48)

    @staticmethod
    def hash_token(raw_token: str) -> str:
        """SHA256 digest under which a refresh token is stored."""
        return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()
