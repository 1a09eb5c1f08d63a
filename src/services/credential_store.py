"""Credential store: named, parameterized operations over the auth tables.

Every race the auth flows care about is settled here with a conditional
update (``... WHERE revoked_at IS NULL RETURNING``) rather than with locks in
the application.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional
from uuid import UUID

import asyncpg
import structlog

from src.models.otp import OtpChannel, OtpRecord
from src.models.response_message import ResponseMessage
from src.models.session import (
    ClientMetadata,
    LoginSession,
    RefreshTokenRecord,
    SessionStatus,
)
from src.models.user import User

logger = structlog.get_logger(__name__)

_CONNECTIVITY_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.InterfaceError,
    asyncpg.PostgresConnectionError,
)

_SESSION_COLUMNS = """
    id, user_id, branch_id, login_at, last_activity_at, logout_at,
    ip_address, user_agent, browser, browser_version, operating_system,
    device, device_type, status, logout_reason
"""


class CredentialStoreError(RuntimeError):
    """The credential store could not be reached."""


def _affected(status: str) -> int:
    """Row count from an asyncpg command status such as ``UPDATE 3``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


def _row_to_user(row) -> User:
    return User(
        id=row["id"],
        username=row["username"],
        contact=row["contact"],
        email=row["email"],
        is_active=row["is_active"],
    )


def _row_to_otp(row) -> OtpRecord:
    return OtpRecord(
        id=row["id"],
        user_id=row["user_id"],
        channel=OtpChannel(row["channel"]),
        code=row["code"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
        consumed_at=row["consumed_at"],
        reset_used_at=row["reset_used_at"],
    )


def _row_to_session(row) -> LoginSession:
    return LoginSession(
        id=row["id"],
        user_id=row["user_id"],
        branch_id=row["branch_id"],
        login_at=row["login_at"],
        last_activity_at=row["last_activity_at"],
        logout_at=row["logout_at"],
        client=ClientMetadata(
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
            browser=row["browser"] or "Unknown",
            browser_version=row["browser_version"] or "Unknown",
            operating_system=row["operating_system"] or "Unknown",
            device=row["device"] or "Unknown",
            device_type=row["device_type"] or "Unknown",
        ),
        status=SessionStatus(row["status"]),
        logout_reason=row["logout_reason"],
    )


class CredentialStore:
    """Data access for users, OTP codes, login sessions and refresh tokens."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection, translating connectivity failures."""
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except _CONNECTIVITY_ERRORS as e:
            logger.error("credential_store_unavailable", error=str(e))
            raise CredentialStoreError("Credential store unavailable") from e

    # Users

    async def find_user_by_username(self, username: str) -> Optional[tuple[User, str]]:
        """Look up a user by login name (case-insensitive).

        Returns:
            Tuple of (User, password_hash) or None
        """
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, username, contact, email, password_hash, is_active
                FROM users
                WHERE lower(username) = lower($1)
                """,
                username,
            )
        if row is None:
            return None
        return _row_to_user(row), row["password_hash"]

    async def find_user_by_id(self, user_id: int) -> Optional[tuple[User, str]]:
        """Look up a user by id.

        Returns:
            Tuple of (User, password_hash) or None
        """
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, username, contact, email, password_hash, is_active
                FROM users
                WHERE id = $1
                """,
                user_id,
            )
        if row is None:
            return None
        return _row_to_user(row), row["password_hash"]

    async def update_password_hash(
        self, user_id: int, password_hash: str, now: datetime
    ) -> bool:
        async with self._connection() as conn:
            status = await conn.execute(
                """
                UPDATE users
                SET password_hash = $1, updated_at = $2
                WHERE id = $3
                """,
                password_hash,
                now,
                user_id,
            )
        return _affected(status) == 1

    # OTP codes

    async def insert_otp(
        self,
        user_id: int,
        channel: OtpChannel,
        code: str,
        created_at: datetime,
        expires_at: datetime,
    ) -> OtpRecord:
        """Store a new OTP and supersede any unconsumed one for the channel.

        The newest row per (user, channel) is the live one, so two concurrent
        inserts still leave exactly one verifiable code.
        """
        async with self._connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    UPDATE otp_codes
                    SET superseded_at = $1
                    WHERE user_id = $2 AND channel = $3
                      AND consumed_at IS NULL AND superseded_at IS NULL
                    """,
                    created_at,
                    user_id,
                    channel.value,
                )
                otp_id = await conn.fetchval(
                    """
                    INSERT INTO otp_codes (user_id, channel, code, created_at, expires_at)
                    VALUES ($1, $2, $3, $4, $5)
                    RETURNING id
                    """,
                    user_id,
                    channel.value,
                    code,
                    created_at,
                    expires_at,
                )
        return OtpRecord(
            id=otp_id,
            user_id=user_id,
            channel=channel,
            code=code,
            created_at=created_at,
            expires_at=expires_at,
        )

    async def find_latest_otp(
        self, user_id: int, channel: OtpChannel
    ) -> Optional[OtpRecord]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, user_id, channel, code, created_at, expires_at,
                       consumed_at, reset_used_at
                FROM otp_codes
                WHERE user_id = $1 AND channel = $2
                ORDER BY id DESC
                LIMIT 1
                """,
                user_id,
                channel.value,
            )
        return _row_to_otp(row) if row is not None else None

    async def mark_otp_consumed(self, otp_id: int, now: datetime) -> bool:
        """Consume an OTP. Returns False if it was already consumed."""
        async with self._connection() as conn:
            consumed_id = await conn.fetchval(
                """
                UPDATE otp_codes
                SET consumed_at = $1
                WHERE id = $2 AND consumed_at IS NULL
                RETURNING id
                """,
                now,
                otp_id,
            )
        return consumed_id is not None

    async def claim_reset_grant(self, otp_id: int, now: datetime) -> bool:
        """Use a verified OTP for its single password update."""
        async with self._connection() as conn:
            claimed_id = await conn.fetchval(
                """
                UPDATE otp_codes
                SET reset_used_at = $1
                WHERE id = $2 AND consumed_at IS NOT NULL AND reset_used_at IS NULL
                RETURNING id
                """,
                now,
                otp_id,
            )
        return claimed_id is not None

    # Login sessions

    async def insert_session(self, session: LoginSession) -> None:
        client = session.client
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO login_sessions (
                    id, user_id, branch_id, login_at, last_activity_at,
                    ip_address, user_agent, browser, browser_version,
                    operating_system, device, device_type, status
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
                """,
                session.id,
                session.user_id,
                session.branch_id,
                session.login_at,
                session.last_activity_at,
                client.ip_address,
                client.user_agent,
                client.browser,
                client.browser_version,
                client.operating_system,
                client.device,
                client.device_type,
                session.status.value,
            )

    async def find_session(self, session_id: UUID) -> Optional[LoginSession]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_SESSION_COLUMNS} FROM login_sessions WHERE id = $1",
                session_id,
            )
        return _row_to_session(row) if row is not None else None

    async def update_session_status(
        self,
        session_id: UUID,
        status: SessionStatus,
        reason: str,
        now: datetime,
    ) -> bool:
        """Close an active session. Returns False if it was not active."""
        async with self._connection() as conn:
            result = await conn.execute(
                """
                UPDATE login_sessions
                SET status = $1, logout_reason = $2, logout_at = $3
                WHERE id = $4 AND status = 'active'
                """,
                status.value,
                reason,
                now,
                session_id,
            )
        return _affected(result) == 1

    async def touch_session(self, session_id: UUID, now: datetime) -> bool:
        async with self._connection() as conn:
            result = await conn.execute(
                """
                UPDATE login_sessions
                SET last_activity_at = $1
                WHERE id = $2 AND status = 'active'
                """,
                now,
                session_id,
            )
        return _affected(result) == 1

    async def list_sessions_for_user(
        self, user_id: int, active_only: bool = True
    ) -> list[LoginSession]:
        query = f"SELECT {_SESSION_COLUMNS} FROM login_sessions WHERE user_id = $1"
        if active_only:
            query += " AND status = 'active'"
        query += " ORDER BY login_at DESC"

        async with self._connection() as conn:
            rows = await conn.fetch(query, user_id)
        return [_row_to_session(row) for row in rows]

    async def list_login_history(self, user_id: int, limit: int = 50) -> list[LoginSession]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_SESSION_COLUMNS}
                FROM login_sessions
                WHERE user_id = $1
                ORDER BY login_at DESC
                LIMIT $2
                """,
                user_id,
                limit,
            )
        return [_row_to_session(row) for row in rows]

    # Refresh tokens

    async def insert_refresh_token(
        self,
        token_id: UUID,
        user_id: int,
        session_id: UUID,
        token_hash: str,
        expires_at: datetime,
        created_at: datetime,
    ) -> None:
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO refresh_tokens (id, user_id, session_id, token_hash, expires_at, created_at)
                VALUES ($1, $2, $3, $4, $5, $6)
                """,
                token_id,
                user_id,
                session_id,
                token_hash,
                expires_at,
                created_at,
            )

    async def find_refresh_token(self, token_hash: str) -> Optional[RefreshTokenRecord]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT rt.id, rt.user_id, rt.session_id, rt.token_hash,
                       rt.expires_at, rt.revoked_at, rt.created_at,
                       ls.status AS session_status
                FROM refresh_tokens rt
                JOIN login_sessions ls ON ls.id = rt.session_id
                WHERE rt.token_hash = $1
                """,
                token_hash,
            )
        if row is None:
            return None
        return RefreshTokenRecord(
            id=row["id"],
            user_id=row["user_id"],
            session_id=row["session_id"],
            token_hash=row["token_hash"],
            expires_at=row["expires_at"],
            revoked_at=row["revoked_at"],
            created_at=row["created_at"],
            session_status=SessionStatus(row["session_status"]),
        )

    async def revoke_refresh_token(self, token_hash: str, now: datetime) -> bool:
        """Revoke a token. Returns False if it was already revoked."""
        async with self._connection() as conn:
            revoked_id = await conn.fetchval(
                """
                UPDATE refresh_tokens
                SET revoked_at = $1
                WHERE token_hash = $2 AND revoked_at IS NULL
                RETURNING id
                """,
                now,
                token_hash,
            )
        return revoked_id is not None

    async def rotate_refresh_token(
        self,
        old_hash: str,
        new_id: UUID,
        new_hash: str,
        expires_at: datetime,
        now: datetime,
    ) -> bool:
        """Revoke ``old_hash`` and insert its replacement in one transaction.

        Only the caller whose conditional revoke succeeds inserts a new
        token; a concurrent loser gets False and nothing is written.
        """
        async with self._connection() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    UPDATE refresh_tokens
                    SET revoked_at = $1
                    WHERE token_hash = $2 AND revoked_at IS NULL
                    RETURNING user_id, session_id
                    """,
                    now,
                    old_hash,
                )
                if row is None:
                    return False
                await conn.execute(
                    """
                    INSERT INTO refresh_tokens (id, user_id, session_id, token_hash, expires_at, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    """,
                    new_id,
                    row["user_id"],
                    row["session_id"],
                    new_hash,
                    expires_at,
                    now,
                )
        return True

    async def revoke_session_tokens(self, session_id: UUID, now: datetime) -> int:
        async with self._connection() as conn:
            result = await conn.execute(
                """
                UPDATE refresh_tokens
                SET revoked_at = $1
                WHERE session_id = $2 AND revoked_at IS NULL
                """,
                now,
                session_id,
            )
        return _affected(result)

    # Response messages

    async def list_response_messages(self) -> list[ResponseMessage]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT alert_code, type, message
                FROM response_messages
                WHERE is_active = TRUE
                """
            )
        return [
            ResponseMessage(alert_code=r["alert_code"], type=r["type"], message=r["message"])
            for r in rows
        ]
