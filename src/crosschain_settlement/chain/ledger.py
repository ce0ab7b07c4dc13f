"""Stellar Horizon client.

Uses raw httpx against the Horizon REST API: submit an already-signed
envelope and read a transaction with its payment operations.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

import httpx

from ..exceptions import ChainError, ChainRPCError

logger = logging.getLogger(__name__)


@dataclass
class LedgerPayment:
    destination: str
    amount: str
    asset_code: Optional[str] = None
    asset_issuer: Optional[str] = None

    @property
    def is_native(self) -> bool:
        return self.asset_code is None


@dataclass
class LedgerTransaction:
    tx_hash: str
    successful: bool
    source_account: Optional[str] = None
    memo: Optional[str] = None
    memo_type: Optional[str] = None
    payments: List[LedgerPayment] = field(default_factory=list)

    @property
    def destination(self) -> Optional[str]:
        """Destination of the first payment operation."""
        return self.payments[0].destination if self.payments else None


class StellarLedgerClient:
    """Async Horizon client for one Stellar network."""

    chain = "stellar"

    def __init__(
        self,
        horizon_url: str,
        timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._base_url = horizon_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = http_client is None

    async def _get(self, path: str, **params: Any) -> Optional[dict]:
        try:
            response = await self._client.get(f"{self._base_url}{path}", params=params or None)
        except httpx.HTTPError as e:
            raise ChainRPCError(f"Horizon request failed: {e}", chain=self.chain) from e
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ChainRPCError(
                f"Horizon {path} returned {response.status_code}: {response.text[:200]}",
                chain=self.chain,
                code=response.status_code,
            )
        return response.json()

    async def submit_envelope(self, envelope_xdr: str) -> str:
        """Submit a signed transaction envelope. Returns the transaction hash."""
        try:
            response = await self._client.post(
                f"{self._base_url}/transactions",
                data={"tx": envelope_xdr},
            )
        except httpx.HTTPError as e:
            raise ChainRPCError(f"Horizon submission failed: {e}", chain=self.chain) from e

        body = response.json() if response.content else {}
        if response.status_code >= 400:
            result_codes = (body.get("extras") or {}).get("result_codes")
            raise ChainRPCError(
                f"Horizon rejected transaction: {result_codes or body.get('title', response.status_code)}",
                chain=self.chain,
                code=response.status_code,
                data=result_codes,
            )
        tx_hash = body.get("hash")
        if not tx_hash:
            raise ChainError("Horizon response missing transaction hash", chain=self.chain)
        logger.info(f"Stellar tx submitted: {tx_hash}")
        return tx_hash

    async def get_transaction(self, tx_hash: str) -> Optional[LedgerTransaction]:
        """Transaction record plus its payment operations; ``None`` if Horizon does not know it."""
        record = await self._get(f"/transactions/{tx_hash}")
        if record is None:
            return None

        operations = await self._get(f"/transactions/{tx_hash}/operations", limit=50) or {}
        payments = []
        for op in (operations.get("_embedded") or {}).get("records", []):
            if op.get("type") not in ("payment", "path_payment_strict_send", "path_payment_strict_receive"):
                continue
            payments.append(LedgerPayment(
                destination=op.get("to", ""),
                amount=op.get("amount", "0"),
                asset_code=op.get("asset_code"),
                asset_issuer=op.get("asset_issuer"),
            ))

        return LedgerTransaction(
            tx_hash=record.get("hash", tx_hash),
            successful=bool(record.get("successful")),
            source_account=record.get("source_account"),
            memo=record.get("memo"),
            memo_type=record.get("memo_type"),
            payments=payments,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = [
    "LedgerPayment",
    "LedgerTransaction",
    "StellarLedgerClient",
]
