"""Cancellable suspend/resume primitive for task loops.

A task loop never blocks: it suspends on :meth:`CancellationToken.sleep`,
which returns early the moment the token is cancelled.  The loop then makes a
single explicit check (``token.cancelled``) after every suspend point instead
of relying on timer handles captured in closures.
"""

from __future__ import annotations

import asyncio

__all__ = ["CancellationToken"]


class CancellationToken:
    """One-shot cancellation flag that can also interrupt a pending sleep.

    Each task gets its own token.  Once cancelled it stays cancelled, so a
    loop belonging to a superseded task can never be revived by a later
    start.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """Mark the token cancelled and wake any pending :meth:`sleep`.  Idempotent."""
        self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """Suspend for *seconds* unless cancelled first.

        Returns:
            ``True`` if the full delay elapsed, ``False`` if the token was
            (or already is) cancelled.
        """
        if self.cancelled:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(seconds, 0.0))
        except TimeoutError:
            return True
        return False
