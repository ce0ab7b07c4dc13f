"""Per-signer send serialization.

Two concurrent settlements that share a facilitator key would otherwise both
read the same pending nonce and one of their transactions would be dropped.
Sends are serialized per (signer address, chain); sends from different
signers or on different chains still run in parallel.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Tuple

logger = logging.getLogger(__name__)


class SignerSendGuard:
    """One ``asyncio.Lock`` per (signer, chain)."""

    def __init__(self) -> None:
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    def _get_lock(self, signer: str, chain: str) -> asyncio.Lock:
        key = (signer.lower(), chain.lower())
        lock = self._locks.get(key)
        if lock is None:
            # No await between lookup and insert, so no other coroutine can interleave
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def is_locked(self, signer: str, chain: str) -> bool:
        lock = self._locks.get((signer.lower(), chain.lower()))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, signer: str, chain: str) -> AsyncIterator[None]:
        """Hold the send slot for ``signer`` on ``chain`` (nonce read through broadcast)."""
        lock = self._get_lock(signer, chain)
        if lock.locked():
            logger.debug(f"Waiting for send slot of {signer} on {chain}")
        async with lock:
            yield


__all__ = ["SignerSendGuard"]
