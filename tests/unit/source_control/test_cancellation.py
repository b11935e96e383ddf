"""Tests for CancellationToken."""

import threading
import time

import pytest

from ossactions.exceptions import OperationCancelledError
from ossactions.source_control import CancellationToken, check_cancelled


class TestCancellationToken:
    def test_starts_uncancelled(self) -> None:
        token = CancellationToken()
        assert token.cancelled is False
        token.raise_if_cancelled()

    def test_cancel_is_idempotent(self) -> None:
        token = CancellationToken()
        token.cancel()
        token.cancel()
        assert token.cancelled is True

    def test_raise_if_cancelled_raises(self) -> None:
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelledError):
            token.raise_if_cancelled()

    def test_wait_returns_false_on_timeout(self) -> None:
        assert CancellationToken().wait(0.01) is False

    def test_wait_returns_early_when_cancelled(self) -> None:
        token = CancellationToken()
        timer = threading.Timer(0.05, token.cancel)
        timer.start()
        start = time.monotonic()
        try:
            assert token.wait(10.0) is True
        finally:
            timer.cancel()
        assert time.monotonic() - start < 5.0

    def test_wait_treats_negative_as_zero(self) -> None:
        assert CancellationToken().wait(-1.0) is False


class TestCheckCancelled:
    def test_none_never_cancels(self) -> None:
        check_cancelled(None)

    def test_raises_for_cancelled_token(self) -> None:
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelledError):
            check_cancelled(token)
