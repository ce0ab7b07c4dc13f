"""Tests for per-signer send serialization."""
from __future__ import annotations

import asyncio

import pytest

from crosschain_settlement.chain.signer_guard import SignerSendGuard

SIGNER = "0xAbCdEf0000000000000000000000000000000001"


class TestSignerSendGuard:
    @pytest.mark.asyncio
    async def test_same_signer_and_chain_serialized(self):
        guard = SignerSendGuard()
        order = []

        async def send(label):
            async with guard.hold(SIGNER, "base"):
                order.append(f"{label}-start")
                await asyncio.sleep(0.01)
                order.append(f"{label}-end")

        await asyncio.gather(send("a"), send("b"))

        assert order in (
            ["a-start", "a-end", "b-start", "b-end"],
            ["b-start", "b-end", "a-start", "a-end"],
        )

    @pytest.mark.asyncio
    async def test_signer_key_is_case_insensitive(self):
        guard = SignerSendGuard()
        async with guard.hold(SIGNER, "base"):
            assert guard.is_locked(SIGNER.lower(), "BASE")

    @pytest.mark.asyncio
    async def test_other_chain_not_blocked(self):
        guard = SignerSendGuard()
        async with guard.hold(SIGNER, "base"):
            assert not guard.is_locked(SIGNER, "arbitrum")
            async with guard.hold(SIGNER, "arbitrum"):
                assert guard.is_locked(SIGNER, "arbitrum")

    @pytest.mark.asyncio
    async def test_released_after_error(self):
        guard = SignerSendGuard()
        with pytest.raises(RuntimeError):
            async with guard.hold(SIGNER, "base"):
                raise RuntimeError("broadcast failed")
        assert not guard.is_locked(SIGNER, "base")

    def test_unknown_signer_not_locked(self):
        assert not SignerSendGuard().is_locked(SIGNER, "base")
