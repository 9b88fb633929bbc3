"""Tests for the worker error hierarchy."""

from __future__ import annotations

import pytest

from billing_worker.core.errors import (
    ConfigError,
    DataError,
    ErrorCategory,
    GatewayTimeoutError,
    JobNotFoundError,
    LockBusyError,
    PermanentFailure,
    RateLimitedError,
    SyncError,
    TransientGatewayError,
    WorkerError,
    is_retryable,
)


class TestClassification:
    @pytest.mark.parametrize(
        "error, retryable",
        [
            (TransientGatewayError("503"), True),
            (GatewayTimeoutError("slow"), True),
            (RateLimitedError(retry_after=30), True),
            (SyncError("radius down"), True),
            (LockBusyError("job:x"), True),
            (PermanentFailure("400"), False),
            (DataError("missing to"), False),
            (ConfigError("no api key"), False),
        ],
    )
    def test_retryable_flags(self, error, retryable):
        assert error.retryable is retryable
        assert is_retryable(error) is retryable

    def test_foreign_exceptions_are_transient(self):
        assert is_retryable(RuntimeError("boom")) is True

    def test_data_error_is_permanent_failure(self):
        err = DataError("bad")
        assert isinstance(err, PermanentFailure)
        assert err.category is ErrorCategory.DATA

    def test_timeout_category(self):
        assert GatewayTimeoutError("t").category is ErrorCategory.NETWORK

    def test_explicit_override(self):
        err = PermanentFailure("odd", retryable=True)
        assert err.retryable is True


class TestContext:
    def test_with_context_sets_known_fields_and_metadata(self):
        err = TransientGatewayError("sms returned HTTP 502").with_context(gateway="sms", http_status=502, batch=7)
        assert err.context.gateway == "sms"
        assert err.context.http_status == 502
        assert err.context.metadata == {"batch": 7}

    def test_to_dict(self):
        cause = ValueError("inner")
        err = RateLimitedError("slow down", retry_after=60, cause=cause).with_context(gateway="email")
        data = err.to_dict()
        assert data["error_type"] == "RateLimitedError"
        assert data["retryable"] is True
        assert data["retry_after"] == 60
        assert data["context"]["gateway"] == "email"
        assert data["cause"] == "inner"
        assert err.__cause__ is cause

    def test_lock_busy_carries_name(self):
        err = LockBusyError("job:process-payments")
        assert err.lock_name == "job:process-payments"
        assert "job:process-payments" in str(err)

    def test_job_not_found(self):
        err = JobNotFoundError("nope")
        assert err.job_name == "nope"
        assert isinstance(err, WorkerError)
