"""
Nonce sequencer.

Hands out strictly increasing transaction sequence numbers for one signing
account. The counter is seeded once from the backend and never re-read, so
unconfirmed in-flight submissions cannot cause a number to be reused. A
failed submission does not roll the counter back; recovering from a gap is
the caller's job.
"""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class NonceSequencer:
    """Per-account monotonically increasing nonce source."""

    def __init__(self, backend, account: str):
        self.backend = backend
        self.account = account
        self._next: Optional[int] = None
        self._lock = asyncio.Lock()

    async def reserve(self) -> int:
        """Assign the next nonce. Seeds from the backend on first use."""
        async with self._lock:
            if self._next is None:
                self._next = int(await self.backend.get_current_nonce(self.account))
                logger.debug(f"Seeded nonce for {self.account} at {self._next}")
            nonce = self._next
            self._next += 1
            return nonce

    def peek(self) -> Optional[int]:
        """Next nonce that reserve() would hand out, or None before seeding."""
        return self._next

    def __repr__(self) -> str:
        return f"NonceSequencer(account={self.account}, next={self._next})"
