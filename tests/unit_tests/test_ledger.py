"""Tests for the pending-passcode ledger."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from app.services.otp.codes import hash_code
from app.services.otp.ledger import OtpLedger
from app.services.otp.outcomes import IssueStatus, VerifyStatus
from app.services.otp.rate_window import RateWindowTracker

T0 = 1_000_000.0
TTL = 900.0


@pytest.fixture()
def ledger() -> OtpLedger:
    limiter = RateWindowTracker(max_events=3, window_seconds=900.0)
    return OtpLedger(limiter, ttl_seconds=TTL, max_failed_attempts=5)


def _wrong(code: str) -> str:
    return "000000" if code != "000000" else "111111"


class TestIssue:
    def test_issue_stores_digest_not_plaintext(self, ledger):
        result = ledger.issue("a@x.io", T0)
        assert result.status is IssueStatus.ISSUED
        record = ledger.get("a@x.io")
        assert record.code_digest == hash_code(result.code)
        assert result.code not in record.code_digest
        assert record.expires_at == T0 + TTL
        assert record.failed_attempts == 0

    def test_reissue_replaces_previous_record(self, ledger):
        first = ledger.issue("a@x.io", T0).code
        second = ledger.issue("a@x.io", T0 + 1).code
        assert len(ledger) == 1
        if first != second:
            assert ledger.verify("a@x.io", first, T0 + 2).status is VerifyStatus.MISMATCH
        assert ledger.verify("a@x.io", second, T0 + 3).status is VerifyStatus.VALID

    def test_fourth_issue_in_window_is_rate_limited(self, ledger):
        for i in range(3):
            assert ledger.issue("a@x.io", T0 + i).issued
        limited = ledger.issue("a@x.io", T0 + 3)
        assert limited.status is IssueStatus.RATE_LIMITED
        assert limited.code is None
        assert limited.retry_after > 0

    def test_issue_allowed_again_after_window(self, ledger):
        for i in range(3):
            ledger.issue("a@x.io", T0 + i)
        assert ledger.issue("a@x.io", T0 + 900.0).issued


class TestVerify:
    def test_valid_exactly_once(self, ledger):
        code = ledger.issue("a@x.io", T0).code
        assert ledger.verify("a@x.io", code, T0 + 10).status is VerifyStatus.VALID
        assert ledger.verify("a@x.io", code, T0 + 11).status is VerifyStatus.NOT_FOUND

    def test_not_found(self, ledger):
        assert ledger.verify("nobody@x.io", "123456", T0).status is VerifyStatus.NOT_FOUND

    def test_expired_even_with_correct_code(self, ledger):
        code = ledger.issue("a@x.io", T0).code
        assert ledger.verify("a@x.io", code, T0 + TTL + 1).status is VerifyStatus.EXPIRED
        assert ledger.verify("a@x.io", code, T0 + TTL + 2).status is VerifyStatus.NOT_FOUND

    def test_expiry_boundary_is_inclusive(self, ledger):
        code = ledger.issue("a@x.io", T0).code
        assert ledger.verify("a@x.io", code, T0 + TTL).status is VerifyStatus.VALID

    def test_mismatch_keeps_record_and_counts(self, ledger):
        code = ledger.issue("a@x.io", T0).code
        result = ledger.verify("a@x.io", _wrong(code), T0 + 1)
        assert result.status is VerifyStatus.MISMATCH
        assert result.attempts_remaining == 4
        assert ledger.get("a@x.io").failed_attempts == 1
        assert ledger.verify("a@x.io", code, T0 + 2).status is VerifyStatus.VALID

    def test_five_wrong_codes_then_correct_is_not_found(self, ledger):
        code = ledger.issue("a@x.io", T0).code
        statuses = [ledger.verify("a@x.io", _wrong(code), T0 + i).status for i in range(5)]
        assert statuses == [VerifyStatus.MISMATCH] * 4 + [VerifyStatus.TOO_MANY_ATTEMPTS]
        assert ledger.verify("a@x.io", code, T0 + 10).status is VerifyStatus.NOT_FOUND

    def test_spent_budget_is_checked_before_digest(self, ledger):
        code = ledger.issue("a@x.io", T0).code
        ledger.get("a@x.io").failed_attempts = 5
        assert ledger.verify("a@x.io", code, T0 + 1).status is VerifyStatus.TOO_MANY_ATTEMPTS
        assert ledger.get("a@x.io") is None


class TestIssueSlots:
    def test_valid_code_releases_its_own_slot(self, ledger):
        ledger.issue("a@x.io", T0)
        code = ledger.issue("a@x.io", T0 + 10).code
        assert ledger.verify("a@x.io", code, T0 + 20).valid
        # The T0 event stays, the T0 + 10 one was handed back
        assert ledger.issue_limiter.count("a@x.io", T0 + 20) == 1
        assert ledger.issue_limiter.count("a@x.io", T0 + 905) == 0

    def test_released_slot_is_not_released_again_on_success(self, ledger):
        ledger.issue("a@x.io", T0)
        code = ledger.issue("a@x.io", T0 + 10).code
        assert ledger.release_issue_slot("a@x.io", T0 + 10) is True
        assert ledger.release_issue_slot("a@x.io", T0 + 10) is False

        assert ledger.verify("a@x.io", code, T0 + 20).valid
        assert ledger.issue_limiter.count("a@x.io", T0 + 20) == 1

    def test_release_after_reissue_frees_the_old_slot(self, ledger):
        ledger.issue("a@x.io", T0)
        ledger.issue("a@x.io", T0 + 10)
        assert ledger.release_issue_slot("a@x.io", T0) is True
        assert ledger.get("a@x.io").slot_held
        assert ledger.issue_limiter.count("a@x.io", T0 + 905) == 1


class TestPurgeExpired:
    def test_purge_removes_only_expired(self, ledger):
        ledger.issue("old@x.io", T0)
        ledger.issue("new@x.io", T0 + 600)
        assert ledger.purge_expired(T0 + TTL + 1) == 1
        assert ledger.get("old@x.io") is None
        assert ledger.get("new@x.io") is not None


class TestConcurrency:
    def test_parallel_issue_for_distinct_identities(self, ledger):
        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(lambda i: ledger.issue(f"user{i}@x.io", T0), range(100)))
        assert all(r.issued for r in results)
        assert len(ledger) == 100

    def test_parallel_verify_same_identity_single_winner(self, ledger):
        code = ledger.issue("a@x.io", T0).code
        with ThreadPoolExecutor(max_workers=16) as pool:
            statuses = list(pool.map(lambda _: ledger.verify("a@x.io", code, T0 + 1).status, range(32)))
        assert statuses.count(VerifyStatus.VALID) == 1
        assert statuses.count(VerifyStatus.NOT_FOUND) == 31
