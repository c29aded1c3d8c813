"""Tests for result values, error logging and the ops log."""

import logging

import pytest

from tipsync.errors import (
    ErrorKind,
    NotFoundError,
    RemoteRejectedError,
    Result,
    ValidationError,
    log_exception,
)
from tipsync.logging_config import configure_ops_log


class TestResult:
    def test_success(self):
        result = Result.success(3)
        assert result.ok
        assert result.kind is None
        assert result.unwrap() == 3

    def test_fail(self):
        result = Result.fail(ErrorKind.NOT_FOUND, "Tip not found: t1")
        assert not result.ok
        assert str(result.failure) == "not_found: Tip not found: t1"
        with pytest.raises(RuntimeError):
            result.unwrap()

    @pytest.mark.parametrize("exc,kind", [
        (ValidationError("blank"), ErrorKind.VALIDATION),
        (NotFoundError("gone"), ErrorKind.NOT_FOUND),
        (RemoteRejectedError("403"), ErrorKind.REMOTE_REJECTED),
    ])
    def test_from_exception(self, exc, kind):
        assert Result.from_exception(exc).kind is kind

    def test_validation_error_is_value_error(self):
        assert isinstance(ValidationError("x"), ValueError)


class TestLogging:
    def test_log_exception_writes_traceback(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TIPSYNC_STORE_PATH", str(tmp_path))
        try:
            raise RuntimeError("kaboom")
        except RuntimeError as e:
            path = log_exception(e, "sync")

        text = path.read_text()
        assert path == tmp_path / "tipsync-errors.log"
        assert "sync" in text
        assert "kaboom" in text

    def test_ops_log(self, tmp_path):
        handler = configure_ops_log(tmp_path)
        try:
            logging.getLogger("tipsync.sync").info("Pulled 2 tips")
            handler.flush()
            assert "Pulled 2 tips" in (tmp_path / "tipsync-ops.log").read_text()
        finally:
            logging.getLogger("tipsync").removeHandler(handler)
            handler.close()
