"""Cooperative cancellation for the auth lifecycle."""


class OperationCancelled(Exception):
    pass


class CancellationToken:
    """One-way flag checked after every await before touching shared state."""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled()
