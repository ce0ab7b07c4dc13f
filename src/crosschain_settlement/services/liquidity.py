"""Stargate quotes API client.

The API returns candidate routes, each a list of steps (``approve``,
``bridge``) with ready-to-sign transactions. The engine never signs them; it
hands them back to the caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from ..config import STARGATE_QUOTES_API_URL
from ..exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

SERVICE_NAME = "liquidity"


@dataclass
class LiquidityQuoteParams:
    src_token: str
    dst_token: str
    src_address: str
    dst_address: str
    src_chain_key: str
    dst_chain_key: str
    src_amount: int
    dst_amount_min: int

    def to_query(self) -> Dict[str, str]:
        return {
            "srcToken": self.src_token,
            "dstToken": self.dst_token,
            "srcAddress": self.src_address,
            "dstAddress": self.dst_address,
            "srcChainKey": self.src_chain_key,
            "dstChainKey": self.dst_chain_key,
            "srcAmount": str(self.src_amount),
            "dstAmountMin": str(self.dst_amount_min),
        }


def min_amount_after_slippage(amount: int, slippage_bps: int) -> int:
    return amount * (10_000 - slippage_bps) // 10_000


def select_route(quotes: List[Dict[str, Any]], preferred: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """The ``preferred`` route class if offered, else the first quote."""
    if not quotes:
        return None
    if preferred:
        for quote in quotes:
            if quote.get("route") == preferred:
                return quote
    return quotes[0]


def find_step(quote: Dict[str, Any], step_type: str) -> Optional[Dict[str, Any]]:
    for step in quote.get("steps") or []:
        if step.get("type") == step_type:
            return step
    return None


class LiquidityClient:
    def __init__(
        self,
        api_url: str = STARGATE_QUOTES_API_URL,
        timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_url = api_url
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = http_client is None

    async def get_quotes(self, params: LiquidityQuoteParams) -> List[Dict[str, Any]]:
        logger.info(
            f"Fetching liquidity quotes {params.src_chain_key} -> {params.dst_chain_key} "
            f"amount={params.src_amount}"
        )
        try:
            response = await self._client.get(self._api_url, params=params.to_query())
        except httpx.HTTPError as e:
            raise ExternalServiceError(SERVICE_NAME, f"quote request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text[:500]}

        if response.status_code >= 400:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"API error {response.status_code}: {body}",
                status_code=response.status_code,
                body=body,
            )
        return list(body.get("quotes") or [])

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = [
    "LiquidityQuoteParams",
    "min_amount_after_slippage",
    "select_route",
    "find_step",
    "LiquidityClient",
]
