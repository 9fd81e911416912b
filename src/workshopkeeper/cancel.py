from __future__ import annotations

import threading

from .errors import WorkshopError


class OperationCancelledError(WorkshopError):
    pass


class CancelToken:
    """
    Cooperative cancellation signal shared between a caller and a long-running call.

    Cancelling never interrupts work mid-step; operations poll the token between
    steps and raise OperationCancelledError.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError("Operation was cancelled.")


def check(token: CancelToken | None) -> None:
    if token is not None:
        token.raise_if_cancelled()
