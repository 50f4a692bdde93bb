"""
Tests for jsr_errors - error categorisation, retry policy and history.
"""

import asyncio

import aiohttp
import pytest

from jsr_errors import (
    ASSET_ERROR,
    FORMAT_ERROR,
    IO_ERROR,
    MEMORY_ERROR,
    NETWORK_TIMEOUT,
    PERMISSION_ERROR,
    RENDERER_ERROR,
    UNKNOWN_ERROR,
    VALIDATION_ERROR,
    ExportError,
    ExportErrorHandler,
    UnsupportedFormatError,
    UpstreamFetchError,
    ValidationError,
    ValidationReport,
    categorize_error,
    is_recoverable,
)


class TestCategorize:
    @pytest.mark.parametrize("exc,code", [
        (MemoryError(), MEMORY_ERROR),
        (asyncio.TimeoutError(), NETWORK_TIMEOUT),
        (TimeoutError("slow"), NETWORK_TIMEOUT),
        (PermissionError("denied"), PERMISSION_ERROR),
        (FileNotFoundError("gone"), IO_ERROR),
        (OSError("disk full"), IO_ERROR),
        (ConnectionResetError("reset"), NETWORK_TIMEOUT),
        (aiohttp.ClientConnectionError("refused"), NETWORK_TIMEOUT),
        (UpstreamFetchError("Jira down", status_code=503), NETWORK_TIMEOUT),
        (ValidationError("bad"), VALIDATION_ERROR),
        (UnsupportedFormatError("docx"), FORMAT_ERROR),
        (RuntimeError("chart render failed"), RENDERER_ERROR),
        (ValueError("image is corrupt"), ASSET_ERROR),
        (ValueError("invalid slide"), VALIDATION_ERROR),
        (KeyError("x"), UNKNOWN_ERROR),
    ])
    def test_codes(self, exc, code):
        assert categorize_error(exc) == code

    def test_type_beats_message(self):
        # message mentions "format" but the type says permission
        assert categorize_error(PermissionError("format folder locked")) == PERMISSION_ERROR

    def test_export_error_keeps_code(self):
        assert categorize_error(ExportError(ASSET_ERROR, "x")) == ASSET_ERROR

    def test_recoverable_codes(self):
        assert is_recoverable(IO_ERROR)
        assert is_recoverable(RENDERER_ERROR)
        assert not is_recoverable(FORMAT_ERROR)
        assert not is_recoverable(VALIDATION_ERROR)
        assert not is_recoverable(UNKNOWN_ERROR)


class TestExportError:
    def test_recoverable_derived_from_code(self):
        assert ExportError(NETWORK_TIMEOUT, "slow").recoverable is True
        assert ExportError(FORMAT_ERROR, "nope").recoverable is False
        assert ExportError(NETWORK_TIMEOUT, "slow", recoverable=False).recoverable is False

    def test_user_message(self):
        error = ExportError("SOMETHING_NEW", "x")
        assert "unexpected error" in error.user_message

    def test_to_dict(self):
        data = ExportError(IO_ERROR, "disk", retry_count=2, context={"format": "pdf"}).to_dict()
        assert data["code"] == IO_ERROR
        assert data["retryCount"] == 2
        assert data["context"] == {"format": "pdf"}
        assert data["timestamp"].endswith("+00:00")


class TestExportErrorHandler:
    def test_wraps_and_records(self, caplog):
        handler = ExportErrorHandler()

        error = handler.to_export_error(OSError("disk"), attempt=2, context={"format": "pdf", "quality": "high"})

        assert error.code == IO_ERROR
        assert error.recoverable is True
        assert error.retry_count == 2
        assert error.details == "format: pdf, quality: high, attempt: 2"
        assert handler.history == [error]
        assert "code=IO_ERROR" in caplog.text

    def test_export_error_passes_through(self):
        handler = ExportErrorHandler()
        original = ExportError(FORMAT_ERROR, "Unsupported export format: docx", recoverable=False)

        error = handler.to_export_error(original, attempt=3, context={"format": "docx"})

        assert error is original
        assert error.retry_count == 3
        assert error.recoverable is False
        assert error.context["format"] == "docx"

    def test_retry_policy(self):
        handler = ExportErrorHandler(max_retries=3)
        recoverable = ExportError(RENDERER_ERROR, "x")

        assert handler.should_retry(recoverable, 1)
        assert handler.should_retry(recoverable, 2)
        assert not handler.should_retry(recoverable, 3)
        assert not handler.should_retry(ExportError(FORMAT_ERROR, "x"), 1)

    def test_backoff(self):
        handler = ExportErrorHandler(base_delay=0.5, backoff_multiplier=2)
        assert [handler.retry_delay(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]

    def test_recovery_actions(self):
        handler = ExportErrorHandler()
        assert "Export without images" in handler.suggest_recovery_actions(ExportError(ASSET_ERROR, "x"))
        assert handler.suggest_recovery_actions(ExportError(UNKNOWN_ERROR, "x")) == [
            "Try again", "Contact support if the issue persists"]

    def test_history_is_bounded(self):
        handler = ExportErrorHandler(max_history=3)
        for i in range(5):
            handler.to_export_error(RuntimeError(f"render {i}"))

        assert [e.message for e in handler.history] == ["render 2", "render 3", "render 4"]
        handler.clear_history()
        assert handler.history == []

    def test_report_and_statistics(self):
        handler = ExportErrorHandler()
        handler.to_export_error(OSError("disk"), 1, {"format": "pdf"})
        handler.to_export_error(OSError("disk"), 2, {"format": "pdf"})
        handler.to_export_error(UnsupportedFormatError("docx"), 1, {"format": "docx"})

        report = handler.error_report()
        assert report["totalErrors"] == 3
        assert report["recoverableErrors"] == 2
        assert report["unrecoverableErrors"] == 1
        assert report["lastError"]["code"] == FORMAT_ERROR

        stats = handler.error_statistics()
        assert stats["errorsByCode"] == {IO_ERROR: 2, FORMAT_ERROR: 1}
        assert stats["errorsByFormat"] == {"pdf": 2, "docx": 1}
        assert stats["averageRetryCount"] == pytest.approx(4 / 3)
        assert stats["recoveryRate"] == pytest.approx(200 / 3)

    def test_empty_statistics(self):
        stats = ExportErrorHandler().error_statistics()
        assert stats["totalErrors"] == 0
        assert stats["recoveryRate"] == 0
        assert ExportErrorHandler().error_report()["lastError"] is None


def test_validation_report():
    assert ValidationReport().valid
    assert not ValidationReport(errors=["No slides"]).valid
    assert ValidationReport(warnings=["Large"]).valid
