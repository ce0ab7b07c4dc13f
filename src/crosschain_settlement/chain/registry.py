"""Explicit registry of chain clients.

Constructed once at process start and handed to the router; clients are
created lazily, one per chain key, and all closed by ``aclose()``.
"""
from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional, Tuple, Union

import httpx

from ..exceptions import ChainError
from ..registry import CapabilityRegistry, ChainKind
from .evm import EvmChainClient
from .ledger import StellarLedgerClient
from .rpc_client import JsonRpcClient
from .signer_guard import SignerSendGuard

logger = logging.getLogger(__name__)

ChainClient = Union[EvmChainClient, StellarLedgerClient]


class ChainClientRegistry:
    def __init__(
        self,
        capabilities: CapabilityRegistry,
        rpc_url_overrides: Optional[Mapping[str, str]] = None,
        http_timeout_seconds: float = 30.0,
        receipt_timeout_seconds: float = 120.0,
        receipt_poll_interval_seconds: float = 2.0,
        signer_guard: Optional[SignerSendGuard] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._capabilities = capabilities
        self._overrides = {key.lower(): url for key, url in (rpc_url_overrides or {}).items()}
        self._http_timeout = http_timeout_seconds
        self._receipt_timeout = receipt_timeout_seconds
        self._poll_interval = receipt_poll_interval_seconds
        self._http_client = http_client
        self.signer_guard = signer_guard or SignerSendGuard()
        self._clients: Dict[str, ChainClient] = {}

    def _urls_for(self, chain_key: str) -> Tuple[str, ...]:
        """Endpoints in failover order; a configured override is tried first."""
        entry = self._capabilities.lookup(chain_key)
        override = self._overrides.get(entry.key)
        if override is None:
            return entry.rpc_urls
        return (override,) + tuple(url for url in entry.rpc_urls if url != override)

    def evm(self, chain_key: str) -> EvmChainClient:
        entry = self._capabilities.lookup(chain_key)
        if entry.kind != ChainKind.EVM:
            raise ChainError(f"{entry.display_name} is not an EVM chain", chain=entry.key)
        client = self._clients.get(entry.key)
        if client is None:
            rpc = JsonRpcClient(
                entry.key,
                self._urls_for(entry.key),
                timeout_seconds=self._http_timeout,
                expected_chain_id=entry.chain_id,
                http_client=self._http_client,
            )
            client = EvmChainClient(
                entry,
                rpc,
                signer_guard=self.signer_guard,
                receipt_timeout_seconds=self._receipt_timeout,
                receipt_poll_interval_seconds=self._poll_interval,
            )
            self._clients[entry.key] = client
        return client  # type: ignore[return-value]

    def ledger(self, chain_key: str) -> StellarLedgerClient:
        entry = self._capabilities.lookup(chain_key)
        if entry.kind != ChainKind.STELLAR:
            raise ChainError(f"{entry.display_name} is not a ledger chain", chain=entry.key)
        client = self._clients.get(entry.key)
        if client is None:
            client = StellarLedgerClient(
                self._urls_for(entry.key)[0],
                timeout_seconds=self._http_timeout,
                http_client=self._http_client,
            )
            self._clients[entry.key] = client
        return client  # type: ignore[return-value]

    def active_chains(self) -> tuple:
        return tuple(self._clients)

    async def aclose(self) -> None:
        for key, client in list(self._clients.items()):
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Failed to close client for {key}: {e}")
        self._clients.clear()


__all__ = ["ChainClient", "ChainClientRegistry"]
