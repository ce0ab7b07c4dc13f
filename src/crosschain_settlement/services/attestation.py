"""Circle attestation service (Iris v2) client.

After a burn, Circle signs the emitted message. ``GET /v2/messages/{domain}
?transactionHash=`` answers 404 until the burn is indexed, then returns the
message with ``status: "pending_confirmations"`` and finally ``"complete"``
with the attestation bytes.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import httpx

from ..config import CIRCLE_ATTESTATION_API_URL
from ..exceptions import AttestationTimeoutError, ExternalServiceError
from ..models import AttestationProof

logger = logging.getLogger(__name__)

SERVICE_NAME = "attestation"


class AttestationClient:
    def __init__(
        self,
        api_url: str = CIRCLE_ATTESTATION_API_URL,
        poll_interval_seconds: float = 5.0,
        default_timeout_seconds: float = 120.0,
        http_timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_url = api_url.rstrip("/")
        self._poll_interval = poll_interval_seconds
        self._default_timeout = default_timeout_seconds
        self._client = http_client or httpx.AsyncClient(timeout=http_timeout_seconds)
        self._owns_client = http_client is None

    async def fetch_attestation(self, burn_tx_hash: str, source_domain: int) -> Optional[AttestationProof]:
        """
        One lookup. Returns ``None`` while the attestation is not ready.

        Raises:
            ExternalServiceError: Non-retryable response (4xx other than 404)
        """
        url = f"{self._api_url}/{source_domain}"
        try:
            response = await self._client.get(url, params={"transactionHash": burn_tx_hash})
        except httpx.HTTPError as e:
            logger.debug(f"Attestation lookup for {burn_tx_hash} failed: {e}")
            return None

        if response.status_code == 404 or response.status_code >= 500:
            return None
        if response.status_code == 429:
            logger.debug("Attestation service rate limited")
            return None
        if response.status_code >= 400:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"lookup returned {response.status_code}",
                status_code=response.status_code,
                body=response.text[:500],
            )

        # Gateways in front of Iris sometimes answer 200 with an HTML page
        try:
            body = response.json()
        except ValueError:
            logger.debug(f"Attestation lookup for {burn_tx_hash} returned a non-JSON body")
            return None
        if not isinstance(body, dict):
            logger.debug(f"Attestation lookup for {burn_tx_hash} returned {type(body).__name__}, not an object")
            return None

        for message in body.get("messages") or []:
            attestation = message.get("attestation")
            if (
                message.get("status") == "complete"
                and attestation
                and attestation != "PENDING"
                and message.get("message")
            ):
                return AttestationProof(message=message["message"], attestation=attestation)
        return None

    async def retrieve_attestation(
        self,
        burn_tx_hash: str,
        source_domain: int,
        timeout_seconds: Optional[float] = None,
    ) -> AttestationProof:
        """
        Poll until the attestation is complete or the deadline passes.

        Raises:
            AttestationTimeoutError: Not available within ``timeout_seconds``
        """
        timeout = self._default_timeout if timeout_seconds is None else timeout_seconds
        deadline = time.monotonic() + timeout
        attempt = 0

        while True:
            attempt += 1
            proof = await self.fetch_attestation(burn_tx_hash, source_domain)
            if proof is not None:
                logger.info(f"Attestation for {burn_tx_hash} received after {attempt} polls")
                return proof

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise AttestationTimeoutError(burn_tx_hash, timeout)
            logger.debug(f"Attestation for {burn_tx_hash} not ready (poll {attempt})")
            await asyncio.sleep(min(self._poll_interval, remaining))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["AttestationClient"]
