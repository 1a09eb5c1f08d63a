"""Login sessions and the refresh-token lifecycle bound to them."""

from datetime import timedelta
from typing import Optional
from uuid import UUID, uuid4

import structlog

from src.models.session import (
    ClientMetadata,
    LoginSession,
    SessionStatus,
    TokenFailure,
    TokenValidation,
)
from src.services.auth_service import AuthService
from src.services.clock import Clock, utc_now
from src.services.credential_store import CredentialStore

logger = structlog.get_logger(__name__)


class SessionService:
    """Creates sessions, issues/validates/rotates refresh tokens, closes sessions.

    A refresh token is valid iff it is not revoked, not expired and its
    session is still active. Validation failures come back as a classified
    TokenValidation, never as exceptions.
    """

    def __init__(
        self,
        store: CredentialStore,
        refresh_token_ttl: timedelta = timedelta(days=7),
        idle_timeout: Optional[timedelta] = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.refresh_token_ttl = refresh_token_ttl
        self.idle_timeout = idle_timeout
        self.clock = clock

    async def create_session(
        self, user_id: int, branch_id: int, client: ClientMetadata
    ) -> LoginSession:
        """Open an active session for a successful login."""
        now = self.clock()
        session = LoginSession(
            id=uuid4(),
            user_id=user_id,
            branch_id=branch_id,
            login_at=now,
            last_activity_at=now,
            client=client,
            status=SessionStatus.ACTIVE,
        )
        await self.store.insert_session(session)

        logger.info(
            "session_created",
            user_id=user_id,
            session_id=str(session.id),
            branch_id=branch_id,
            ip_address=client.ip_address,
            browser=client.browser,
        )
        return session

    async def issue_refresh_token(
        self, user_id: int, session_id: UUID, ttl: Optional[timedelta] = None
    ) -> str:
        """Generate a refresh token, store its hash, and return the raw value."""
        raw_token = AuthService.generate_refresh_token()
        now = self.clock()
        expires_at = now + (ttl or self.refresh_token_ttl)

        await self.store.insert_refresh_token(
            token_id=uuid4(),
            user_id=user_id,
            session_id=session_id,
            token_hash=AuthService.hash_token(raw_token),
            expires_at=expires_at,
            created_at=now,
        )

        logger.info(
            "refresh_token_created",
            user_id=user_id,
            session_id=str(session_id),
            expires_at=expires_at.isoformat(),
        )
        return raw_token

    async def validate_refresh_token(self, raw_token: str) -> TokenValidation:
        """Classify a refresh token as valid or NOT_FOUND/REVOKED/EXPIRED/SESSION_INACTIVE."""
        record = await self.store.find_refresh_token(AuthService.hash_token(raw_token))
        now = self.clock()

        if record is None:
            logger.warning("refresh_token_not_found")
            return TokenValidation.failure(TokenFailure.NOT_FOUND)

        if record.session_status != SessionStatus.ACTIVE:
            logger.warning(
                "refresh_token_session_inactive",
                user_id=record.user_id,
                session_id=str(record.session_id),
                session_status=record.session_status.value,
            )
            return TokenValidation.failure(TokenFailure.SESSION_INACTIVE)

        if record.revoked_at is not None:
            logger.warning("refresh_token_revoked", user_id=record.user_id)
            return TokenValidation.failure(TokenFailure.REVOKED)

        if now >= record.expires_at:
            logger.warning("refresh_token_expired", user_id=record.user_id)
            return TokenValidation.failure(TokenFailure.EXPIRED)

        if await self._expire_if_idle(record.session_id):
            return TokenValidation.failure(TokenFailure.SESSION_INACTIVE)

        return TokenValidation(
            valid=True,
            session_id=record.session_id,
            user_id=record.user_id,
        )

    async def rotate_refresh_token(self, old_token: str) -> TokenValidation:
        """Exchange a valid refresh token for a new one on the same session.

        The old token is revoked by a conditional update, so of two concurrent
        rotations with the same token exactly one wins; the other gets REVOKED.
        """
        validation = await self.validate_refresh_token(old_token)
        if not validation.valid:
            return validation

        new_token = AuthService.generate_refresh_token()
        now = self.clock()
        rotated = await self.store.rotate_refresh_token(
            old_hash=AuthService.hash_token(old_token),
            new_id=uuid4(),
            new_hash=AuthService.hash_token(new_token),
            expires_at=now + self.refresh_token_ttl,
            now=now,
        )

        if not rotated:
            logger.warning(
                "refresh_token_replayed",
                user_id=validation.user_id,
                session_id=str(validation.session_id),
            )
            return TokenValidation.failure(TokenFailure.REVOKED)

        logger.info(
            "refresh_token_rotated",
            user_id=validation.user_id,
            session_id=str(validation.session_id),
        )
        return TokenValidation(
            valid=True,
            session_id=validation.session_id,
            user_id=validation.user_id,
            refresh_token=new_token,
        )

    async def invalidate_session(
        self,
        session_id: UUID,
        reason: str,
        status: SessionStatus = SessionStatus.LOGGED_OUT,
    ) -> bool:
        """Close a session and revoke its refresh tokens.

        Returns:
            True if the session was active and is now closed
        """
        now = self.clock()
        closed = await self.store.update_session_status(session_id, status, reason, now)
        revoked = await self.store.revoke_session_tokens(session_id, now)

        logger.info(
            "session_invalidated",
            session_id=str(session_id),
            status=status.value,
            reason=reason,
            was_active=closed,
            revoked_count=revoked,
        )
        return closed

    async def invalidate_all_user_sessions(
        self,
        user_id: int,
        reason: str = "logout_all",
        status: SessionStatus = SessionStatus.REVOKED,
        except_session_id: Optional[UUID] = None,
    ) -> int:
        """Close every session that is active at call time.

        Sessions created after the snapshot is taken are left alone.

        Returns:
            Number of sessions closed
        """
        sessions = await self.store.list_sessions_for_user(user_id, active_only=True)
        closed = 0
        for session in sessions:
            if session.id == except_session_id:
                continue
            if await self.invalidate_session(session.id, reason, status):
                closed += 1

        logger.info(
            "user_sessions_invalidated",
            user_id=user_id,
            reason=reason,
            count=closed,
        )
        return closed

    async def touch_session(self, session_id: UUID) -> bool:
        """Record activity on a session.

        Returns:
            False if the session is no longer active (including idle expiry)
        """
        if await self._expire_if_idle(session_id):
            return False
        return await self.store.touch_session(session_id, self.clock())

    async def get_session(self, session_id: UUID) -> Optional[LoginSession]:
        return await self.store.find_session(session_id)

    async def list_active_sessions(self, user_id: int) -> list[LoginSession]:
        return await self.store.list_sessions_for_user(user_id, active_only=True)

    async def list_login_history(self, user_id: int, limit: int = 50) -> list[LoginSession]:
        return await self.store.list_login_history(user_id, limit)

    async def _expire_if_idle(self, session_id: UUID) -> bool:
        """Mark an active session EXPIRED once it exceeds the idle timeout."""
        if not self.idle_timeout:
            return False

        session = await self.store.find_session(session_id)
        if session is None or session.status != SessionStatus.ACTIVE:
            return session is not None

        if self.clock() - session.last_activity_at < self.idle_timeout:
            return False

        await self.invalidate_session(session_id, "idle_timeout", SessionStatus.EXPIRED)
        return True
