"""Cooperative cancellation for long-running operations."""

import threading

from ossactions.exceptions import OperationCancelledError


class CancellationToken:
    """Thread-safe cancellation signal supplied by a caller.

    Operations poll the token at safe points and raise
    OperationCancelledError once it is set. ``wait`` doubles as a
    cancellable sleep for retry backoff.

    Example:
        >>> token = CancellationToken()
        >>> token.cancelled
        False
        >>> token.cancel()
        >>> token.wait(10.0)
        True
    """

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """True once cancellation was requested."""
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError if cancellation was requested."""
        if self._event.is_set():
            msg = "Operation cancelled"
            raise OperationCancelledError(msg)

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, returning early on cancellation.

        Returns:
            True if cancellation was requested before or during the wait.
        """
        return self._event.wait(max(0.0, seconds))


def check_cancelled(token: CancellationToken | None) -> None:
    """Raise OperationCancelledError if ``token`` is set; None never cancels."""
    if token is not None:
        token.raise_if_cancelled()
