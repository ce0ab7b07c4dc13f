"""NEAR Intents 1Click API client.

Flow: ``POST /v0/quote`` returns a deposit address (and memo on memo-based
chains); the user deposits; ``POST /v0/deposit/submit`` tells the solver
network about the deposit early; ``GET /v0/status`` reports progress.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx

from ..config import ONE_CLICK_API_URL
from ..exceptions import ExternalServiceError
from ..logging_config import mask_secret

logger = logging.getLogger(__name__)

SERVICE_NAME = "intents"


@dataclass
class IntentQuoteRequest:
    origin_asset: str
    destination_asset: str
    amount: str
    recipient: str
    refund_to: str
    dry: bool = False
    slippage_bps: int = 100
    deposit_mode: Optional[str] = None
    deadline: Optional[datetime] = None
    deadline_seconds: int = 6 * 60 * 60
    referral: Optional[str] = None
    quote_waiting_time_ms: int = 10_000

    def to_payload(self) -> Dict[str, Any]:
        deadline = self.deadline or datetime.now(timezone.utc) + timedelta(seconds=self.deadline_seconds)
        payload: Dict[str, Any] = {
            "dry": self.dry,
            "swapType": "EXACT_INPUT",
            "slippageTolerance": self.slippage_bps,
            "originAsset": self.origin_asset,
            "depositType": "ORIGIN_CHAIN",
            "destinationAsset": self.destination_asset,
            "amount": self.amount,
            "refundTo": self.refund_to,
            "refundType": "ORIGIN_CHAIN",
            "recipient": self.recipient,
            "recipientType": "DESTINATION_CHAIN",
            "deadline": deadline.isoformat().replace("+00:00", "Z"),
            "quoteWaitingTimeMs": self.quote_waiting_time_ms,
        }
        if self.deposit_mode:
            payload["depositMode"] = self.deposit_mode
        if self.referral:
            payload["referral"] = self.referral
        return payload


@dataclass
class IntentQuote:
    deposit_address: Optional[str]
    deposit_memo: Optional[str] = None
    amount_in: Optional[str] = None
    amount_out: Optional[str] = None
    amount_out_formatted: Optional[str] = None
    min_amount_out: Optional[str] = None
    deadline: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, body: Dict[str, Any]) -> "IntentQuote":
        quote = body.get("quote") or {}
        return cls(
            deposit_address=quote.get("depositAddress"),
            deposit_memo=quote.get("depositMemo") or quote.get("memo"),
            amount_in=quote.get("amountIn"),
            amount_out=quote.get("amountOut"),
            amount_out_formatted=quote.get("amountOutFormatted"),
            min_amount_out=quote.get("minAmountOut"),
            deadline=quote.get("deadline"),
            raw=body,
        )


class IntentClient:
    def __init__(
        self,
        api_url: str = ONE_CLICK_API_URL,
        api_token: str = "",
        timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_url = api_url.rstrip("/")
        self._headers = {"Content-Type": "application/json"}
        if api_token:
            self._headers["Authorization"] = f"Bearer {api_token}"
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = http_client is None
        logger.debug(f"Intent client for {self._api_url} (token={mask_secret(api_token)})")

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = f"{self._api_url}{path}"
        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            raise ExternalServiceError(SERVICE_NAME, f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            try:
                body: Any = response.json()
                detail = body.get("message") if isinstance(body, dict) else None
            except ValueError:
                body, detail = response.text[:500], None
            raise ExternalServiceError(
                SERVICE_NAME,
                detail or f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                body=body,
            )
        return response.json()

    async def get_quote(self, request: IntentQuoteRequest) -> IntentQuote:
        payload = request.to_payload()
        logger.info(
            f"Requesting intent quote {request.origin_asset} -> {request.destination_asset} "
            f"amount={request.amount} dry={request.dry}"
        )
        body = await self._request("POST", "/v0/quote", json=payload)
        return IntentQuote.from_response(body)

    async def submit_deposit(
        self,
        tx_hash: str,
        deposit_address: str,
        memo: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Notify the solver network of a deposit so it does not wait for its own indexer."""
        payload: Dict[str, Any] = {"txHash": tx_hash, "depositAddress": deposit_address}
        if memo:
            payload["memo"] = memo
        return await self._request("POST", "/v0/deposit/submit", json=payload)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = [
    "IntentQuoteRequest",
    "IntentQuote",
    "IntentClient",
]
