"""Unit tests for CredentialStore with a mocked asyncpg pool.

Checks the conditional-update forms that settle races and the translation
of connectivity failures into CredentialStoreError.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import asyncpg
import pytest

from src.models.otp import OtpChannel
from src.models.session import ClientMetadata, LoginSession, SessionStatus
from src.services.credential_store import CredentialStore, CredentialStoreError, _affected

NOW = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# asyncpg mock helpers
# ---------------------------------------------------------------------------

class _MockTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        return False


class MockConnection:
    """Mock asyncpg connection with common query methods."""

    def __init__(self):
        self.execute = AsyncMock()
        self.fetchrow = AsyncMock()
        self.fetchval = AsyncMock()
        self.fetch = AsyncMock()
        self.transaction = MagicMock(return_value=_MockTransaction())


class MockPool:
    """Mock asyncpg pool with acquire() context manager."""

    def __init__(self, conn: MockConnection):
        self._conn = conn

    def acquire(self):
        return _MockPoolAcquire(self._conn)


class _MockPoolAcquire:
    def __init__(self, conn):
        self._conn = conn

    async def __aenter__(self):
        return self._conn

    async def __aexit__(self, *args):
        pass


class _FailingAcquire:
    def __init__(self, error):
        self._error = error

    async def __aenter__(self):
        raise self._error

    async def __aexit__(self, *args):
        pass


@pytest.fixture
def conn():
    return MockConnection()


@pytest.fixture
def store(conn):
    return CredentialStore(MockPool(conn))


def _sql(mock_call) -> str:
    return " ".join(mock_call.args[0].split())


class TestAffected:
    @pytest.mark.parametrize(
        "status,expected",
        [("UPDATE 1", 1), ("UPDATE 0", 0), ("UPDATE 12", 12), (None, 0), ("", 0)],
    )
    def test_parses_command_status(self, status, expected):
        assert _affected(status) == expected


class TestUsers:
    async def test_find_user_by_username_is_case_insensitive(self, store, conn):
        conn.fetchrow.return_value = {
            "id": 42,
            "username": "alice",
            "contact": "9876543210",
            "email": "alice@example.com",
            "password_hash": "$2b$hash",
            "is_active": True,
        }

        user, password_hash = await store.find_user_by_username("ALICE")

        assert user.id == 42
        assert password_hash == "$2b$hash"
        assert "lower(username) = lower($1)" in _sql(conn.fetchrow.call_args)

    async def test_missing_user(self, store, conn):
        conn.fetchrow.return_value = None
        assert await store.find_user_by_id(1) is None

    async def test_update_password_hash(self, store, conn):
        conn.execute.return_value = "UPDATE 1"
        assert await store.update_password_hash(42, "$2b$new", NOW) is True

        conn.execute.return_value = "UPDATE 0"
        assert await store.update_password_hash(43, "$2b$new", NOW) is False


class TestOtpCodes:
    async def test_insert_supersedes_then_inserts_in_transaction(self, store, conn):
        conn.fetchval.return_value = 7

        record = await store.insert_otp(
            42, OtpChannel.SMS, "123456", NOW, NOW + timedelta(minutes=5)
        )

        assert record.id == 7
        assert record.code == "123456"
        conn.transaction.assert_called_once()
        supersede_sql = _sql(conn.execute.call_args)
        assert "SET superseded_at" in supersede_sql
        assert "consumed_at IS NULL AND superseded_at IS NULL" in supersede_sql
        assert "INSERT INTO otp_codes" in _sql(conn.fetchval.call_args)

    async def test_latest_otp_orders_by_id(self, store, conn):
        conn.fetchrow.return_value = {
            "id": 9,
            "user_id": 42,
            "channel": "email",
            "code": "654321",
            "created_at": NOW,
            "expires_at": NOW + timedelta(minutes=5),
            "consumed_at": None,
            "reset_used_at": None,
        }

        record = await store.find_latest_otp(42, OtpChannel.EMAIL)

        assert record.channel == OtpChannel.EMAIL
        assert record.consumed is False
        assert "ORDER BY id DESC LIMIT 1" in _sql(conn.fetchrow.call_args)

    async def test_mark_consumed_is_conditional(self, store, conn):
        conn.fetchval.return_value = 9
        assert await store.mark_otp_consumed(9, NOW) is True
        assert "consumed_at IS NULL" in _sql(conn.fetchval.call_args)

        conn.fetchval.return_value = None
        assert await store.mark_otp_consumed(9, NOW) is False

    async def test_claim_reset_grant_requires_consumed_and_unused(self, store, conn):
        conn.fetchval.return_value = None

        assert await store.claim_reset_grant(9, NOW) is False
        sql = _sql(conn.fetchval.call_args)
        assert "consumed_at IS NOT NULL AND reset_used_at IS NULL" in sql


class TestSessions:
    async def test_insert_session_writes_client_metadata(self, store, conn):
        session = LoginSession(
            id=uuid4(),
            user_id=42,
            branch_id=1,
            login_at=NOW,
            last_activity_at=NOW,
            client=ClientMetadata(ip_address="10.0.0.5", browser="Firefox"),
        )

        await store.insert_session(session)

        args = conn.execute.call_args.args
        assert "10.0.0.5" in args
        assert "Firefox" in args
        assert "active" in args

    async def test_update_status_only_closes_active(self, store, conn):
        conn.execute.return_value = "UPDATE 0"

        closed = await store.update_session_status(
            uuid4(), SessionStatus.LOGGED_OUT, "user_logout", NOW
        )

        assert closed is False
        assert "status = 'active'" in _sql(conn.execute.call_args)

    async def test_revoke_session_tokens_returns_count(self, store, conn):
        conn.execute.return_value = "UPDATE 2"
        assert await store.revoke_session_tokens(uuid4(), NOW) == 2


class TestRefreshTokens:
    async def test_find_joins_session_status(self, store, conn):
        session_id = uuid4()
        conn.fetchrow.return_value = {
            "id": uuid4(),
            "user_id": 42,
            "session_id": session_id,
            "token_hash": "abc",
            "expires_at": NOW + timedelta(days=7),
            "revoked_at": None,
            "created_at": NOW,
            "session_status": "logged_out",
        }

        record = await store.find_refresh_token("abc")

        assert record.session_id == session_id
        assert record.session_status == SessionStatus.LOGGED_OUT
        assert "JOIN login_sessions" in _sql(conn.fetchrow.call_args)

    async def test_rotate_loser_writes_nothing(self, store, conn):
        conn.fetchrow.return_value = None

        rotated = await store.rotate_refresh_token("old", uuid4(), "new", NOW, NOW)

        assert rotated is False
        conn.execute.assert_not_called()

    async def test_rotate_winner_inserts_replacement(self, store, conn):
        session_id = uuid4()
        conn.fetchrow.return_value = {"user_id": 42, "session_id": session_id}

        rotated = await store.rotate_refresh_token(
            "old", uuid4(), "new", NOW + timedelta(days=7), NOW
        )

        assert rotated is True
        assert "revoked_at IS NULL" in _sql(conn.fetchrow.call_args)
        insert_args = conn.execute.call_args.args
        assert "INSERT INTO refresh_tokens" in insert_args[0]
        assert session_id in insert_args
        assert "new" in insert_args


class TestConnectivity:
    @pytest.mark.parametrize(
        "error",
        [OSError("connection refused"), asyncpg.InterfaceError("pool is closing")],
    )
    async def test_connection_failure_raises_store_error(self, error):
        pool = MagicMock()
        pool.acquire.return_value = _FailingAcquire(error)
        store = CredentialStore(pool)

        with pytest.raises(CredentialStoreError):
            await store.find_user_by_id(1)


async def test_response_messages_only_active(store, conn):
    conn.fetch.return_value = [
        {"alert_code": "OTP_SENT", "type": "Success", "message": "OTP sent"},
    ]

    messages = await store.list_response_messages()

    assert messages[0].alert_code == "OTP_SENT"
    assert "is_active = TRUE" in _sql(conn.fetch.call_args)
