"""Cooperative cancellation token.

Shared by the generated runtime (signals, execution timeout) and the
deployment manager (global timeout, explicit cancel). Work checks the
token at its own boundaries and unwinds to a partial result.
"""

import asyncio

from .errors import OperationCancelled


class CancellationToken:
    """One-shot cancellation flag that can be awaited.

    Example:
        >>> token = CancellationToken()
        >>> token.cancel("shutdown")
        >>> token.cancelled
        True
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Set the token. Only the first reason is kept."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> str | None:
        await self._event.wait()
        return self.reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "cancelled")
