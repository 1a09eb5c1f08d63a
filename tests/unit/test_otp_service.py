"""Unit tests for OtpService: issue, supersede, expire, verify, consume."""

import asyncio

import pytest

from src.models.otp import OtpChannel, OtpFailure
from src.services.otp_service import OtpService, generate_otp


class TestGenerateOtp:
    """Tests for the code generator."""

    def test_default_length_is_six_digits(self):
        code = generate_otp()
        assert len(code) == 6
        assert code.isdigit()

    def test_short_codes_are_zero_padded(self):
        codes = {generate_otp(4) for _ in range(200)}
        assert all(len(c) == 4 and c.isdigit() for c in codes)

    @pytest.mark.parametrize("length", [3, 7])
    def test_rejects_out_of_range_length(self, length):
        with pytest.raises(ValueError):
            generate_otp(length)


class TestIssueOtp:
    """Tests for OtpService.issue_otp."""

    async def test_issued_code_expires_after_configured_minutes(self, otp_service, clock):
        record = await otp_service.issue_otp(42, OtpChannel.SMS)

        assert record.user_id == 42
        assert record.channel == OtpChannel.SMS
        assert len(record.code) == 6
        assert record.created_at == clock.now
        assert (record.expires_at - record.created_at).total_seconds() == 300

    async def test_expiry_override(self, otp_service):
        record = await otp_service.issue_otp(42, OtpChannel.SMS, expiry_minutes=2)
        assert (record.expires_at - record.created_at).total_seconds() == 120

    async def test_new_code_supersedes_previous(self, otp_service, store):
        first = await otp_service.issue_otp(42, OtpChannel.SMS)
        second = await otp_service.issue_otp(42, OtpChannel.SMS)

        assert first.id in store.superseded
        latest = await store.find_latest_otp(42, OtpChannel.SMS)
        assert latest.id == second.id

    async def test_channels_are_independent(self, otp_service, store):
        sms = await otp_service.issue_otp(42, OtpChannel.SMS)
        await otp_service.issue_otp(42, OtpChannel.EMAIL)

        assert sms.id not in store.superseded
        latest_sms = await store.find_latest_otp(42, OtpChannel.SMS)
        assert latest_sms.id == sms.id


class TestVerifyOtp:
    """Tests for OtpService.verify_otp."""

    async def test_correct_code_succeeds_and_consumes(self, otp_service, store):
        record = await otp_service.issue_otp(42, OtpChannel.SMS)

        result = await otp_service.verify_otp(42, OtpChannel.SMS, record.code)

        assert result.ok is True
        assert result.otp_id == record.id
        latest = await store.find_latest_otp(42, OtpChannel.SMS)
        assert latest.consumed is True

    async def test_second_verification_reports_already_consumed(self, otp_service):
        record = await otp_service.issue_otp(42, OtpChannel.SMS)
        await otp_service.verify_otp(42, OtpChannel.SMS, record.code)

        result = await otp_service.verify_otp(42, OtpChannel.SMS, record.code)

        assert result.ok is False
        assert result.reason == OtpFailure.ALREADY_CONSUMED

    async def test_no_code_issued(self, otp_service):
        result = await otp_service.verify_otp(42, OtpChannel.SMS, "123456")
        assert result.reason == OtpFailure.NOT_FOUND

    async def test_wrong_code_is_mismatch_and_not_consumed(self, otp_service, store):
        record = await otp_service.issue_otp(42, OtpChannel.SMS)
        wrong = "000000" if record.code != "000000" else "111111"

        result = await otp_service.verify_otp(42, OtpChannel.SMS, wrong)

        assert result.reason == OtpFailure.MISMATCH
        retry = await otp_service.verify_otp(42, OtpChannel.SMS, record.code)
        assert retry.ok is True

    async def test_non_ascii_digits_are_mismatch(self, otp_service):
        await otp_service.issue_otp(42, OtpChannel.SMS)

        result = await otp_service.verify_otp(42, OtpChannel.SMS, "١٢٣٤٥٦")

        assert result.reason == OtpFailure.MISMATCH

    async def test_correct_but_expired_code_reports_expired(self, otp_service, clock):
        record = await otp_service.issue_otp(42, OtpChannel.SMS)
        clock.advance(minutes=6)

        result = await otp_service.verify_otp(42, OtpChannel.SMS, record.code)

        assert result.reason == OtpFailure.EXPIRED

    async def test_expiry_boundary_is_exclusive(self, otp_service, clock):
        record = await otp_service.issue_otp(42, OtpChannel.SMS)
        clock.advance(minutes=5)

        result = await otp_service.verify_otp(42, OtpChannel.SMS, record.code)

        assert result.reason == OtpFailure.EXPIRED

    async def test_superseded_code_no_longer_verifies(self, otp_service):
        first = await otp_service.issue_otp(42, OtpChannel.SMS)
        second = await otp_service.issue_otp(42, OtpChannel.SMS)
        if first.code == second.code:
            pytest.skip("generator produced the same code twice")

        result = await otp_service.verify_otp(42, OtpChannel.SMS, first.code)

        assert result.ok is False
        assert result.reason == OtpFailure.MISMATCH

    async def test_concurrent_verifications_consume_once(self, otp_service):
        record = await otp_service.issue_otp(42, OtpChannel.SMS)

        results = await asyncio.gather(
            *[otp_service.verify_otp(42, OtpChannel.SMS, record.code) for _ in range(5)]
        )

        assert sum(1 for r in results if r.ok) == 1
        assert all(r.reason == OtpFailure.ALREADY_CONSUMED for r in results if not r.ok)


class TestGetLiveOtp:
    """Tests for OtpService.get_live_otp."""

    async def test_returns_unconsumed_unexpired_code(self, otp_service):
        record = await otp_service.issue_otp(42, OtpChannel.EMAIL)
        live = await otp_service.get_live_otp(42, OtpChannel.EMAIL)
        assert live.id == record.id

    async def test_none_once_expired(self, otp_service, clock):
        await otp_service.issue_otp(42, OtpChannel.EMAIL)
        clock.advance(minutes=10)
        assert await otp_service.get_live_otp(42, OtpChannel.EMAIL) is None

    async def test_none_once_consumed(self, otp_service):
        record = await otp_service.issue_otp(42, OtpChannel.EMAIL)
        await otp_service.verify_otp(42, OtpChannel.EMAIL, record.code)
        assert await otp_service.get_live_otp(42, OtpChannel.EMAIL) is None

    async def test_custom_code_length(self, store, clock):
        service = OtpService(store, code_length=4, clock=clock)
        record = await service.issue_otp(7, OtpChannel.SMS)
        assert len(record.code) == 4
