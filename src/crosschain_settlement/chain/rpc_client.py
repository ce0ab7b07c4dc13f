"""
JSON-RPC client with endpoint failover and health tracking.

Features:
- Multiple RPC endpoints per chain with automatic failover
- Optional chain ID check on first use
- Health-based endpoint selection
- Latency tracking
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from ..exceptions import ChainRPCError

logger = logging.getLogger(__name__)

# Server errors and rate limits; worth trying the next endpoint
RETRYABLE_RPC_CODES = (-32000, -32005)


class EndpointStatus(str, Enum):
    """Health status of an RPC endpoint."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # High latency but working
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class EndpointHealth:
    """Health tracking for an RPC endpoint."""
    url: str
    priority: int = 0
    status: EndpointStatus = EndpointStatus.UNKNOWN
    consecutive_failures: int = 0
    total_requests: int = 0
    total_failures: int = 0
    last_failure: Optional[datetime] = None
    avg_latency_ms: float = 0.0
    last_error: Optional[str] = None

    max_consecutive_failures: int = 3
    degraded_latency_ms: float = 5000.0

    def record_success(self, latency_ms: float) -> None:
        self.consecutive_failures = 0
        self.total_requests += 1
        if self.avg_latency_ms == 0:
            self.avg_latency_ms = latency_ms
        else:
            # Exponential moving average
            self.avg_latency_ms = 0.9 * self.avg_latency_ms + 0.1 * latency_ms

        if latency_ms > self.degraded_latency_ms:
            self.status = EndpointStatus.DEGRADED
        else:
            self.status = EndpointStatus.HEALTHY

    def record_failure(self, error: str) -> None:
        self.consecutive_failures += 1
        self.total_requests += 1
        self.total_failures += 1
        self.last_failure = datetime.now(timezone.utc)
        self.last_error = error

        if self.consecutive_failures >= self.max_consecutive_failures:
            self.status = EndpointStatus.UNHEALTHY

    def priority_score(self) -> float:
        """Lower score = higher priority."""
        score = float(self.priority * 100)
        if self.status == EndpointStatus.UNHEALTHY:
            score += 10000
        elif self.status == EndpointStatus.DEGRADED:
            score += 1000
        elif self.status == EndpointStatus.UNKNOWN:
            score += 500
        score += self.avg_latency_ms / 10.0
        score += self.consecutive_failures * 100
        return score


class JsonRpcClient:
    """
    EVM JSON-RPC client over ``httpx`` with failover across endpoints.

    Non-retryable node errors (reverts, bad params) are raised immediately as
    ``ChainRPCError``; transport failures and rate limits move on to the next
    endpoint, and ``ChainRPCError`` is raised once every endpoint failed.
    """

    def __init__(
        self,
        chain: str,
        urls: Sequence[str],
        timeout_seconds: float = 30.0,
        expected_chain_id: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not urls:
            raise ValueError(f"No RPC endpoints configured for chain {chain}")
        self._chain = chain
        self._timeout = timeout_seconds
        self._expected_chain_id = expected_chain_id
        self._chain_id_checked = expected_chain_id is None
        self._request_id = 0
        self._http_client = http_client
        self._owns_client = http_client is None
        self._endpoints: List[EndpointHealth] = [
            EndpointHealth(url=url, priority=index) for index, url in enumerate(urls)
        ]

        logger.info(f"Initialized RPC client for {chain} with {len(self._endpoints)} endpoints")

    @property
    def chain(self) -> str:
        return self._chain

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._http_client

    def _ordered_endpoints(self) -> List[EndpointHealth]:
        return sorted(self._endpoints, key=lambda health: health.priority_score())

    async def _ensure_chain_id(self) -> None:
        if self._chain_id_checked:
            return
        result = await self._call_internal("eth_chainId", [])
        received = int(result, 16)
        if received != self._expected_chain_id:
            raise ChainRPCError(
                f"Chain ID mismatch for {self._chain}: expected "
                f"{self._expected_chain_id}, got {received}",
                chain=self._chain,
            )
        self._chain_id_checked = True
        logger.info(f"Chain ID validated for {self._chain}: {received}")

    async def _call_internal(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        errors: List[Tuple[str, str]] = []
        client = self._get_client()

        for health in self._ordered_endpoints():
            start_time = time.monotonic()
            try:
                response = await client.post(
                    health.url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
                latency_ms = (time.monotonic() - start_time) * 1000
                response.raise_for_status()
                result = response.json()
            except (httpx.HTTPError, ValueError) as e:
                latency_ms = (time.monotonic() - start_time) * 1000
                health.record_failure(str(e))
                errors.append((health.url, str(e)))
                logger.warning(
                    f"RPC call {method} to {health.url} failed after {latency_ms:.0f}ms: {e}"
                )
                continue

            error = result.get("error")
            if error:
                code = error.get("code", 0)
                message = error.get("message", str(error))
                health.record_failure(message)
                errors.append((health.url, message))
                if code in RETRYABLE_RPC_CODES:
                    logger.warning(f"RPC error from {health.url}: {message}, trying next endpoint")
                    continue
                raise ChainRPCError(message, chain=self._chain, code=code, data=error.get("data"))

            health.record_success(latency_ms)
            logger.debug(f"RPC call {method} to {health.url} succeeded in {latency_ms:.0f}ms")
            return result.get("result")

        summary = "; ".join(f"{url}: {err}" for url, err in errors[:3])
        raise ChainRPCError(
            f"All RPC endpoints failed for {self._chain}. Errors: {summary}",
            chain=self._chain,
        )

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Make a JSON-RPC call with automatic failover.

        Raises:
            ChainRPCError: If the node returns an error, the chain ID does not
                match, or every endpoint fails
        """
        await self._ensure_chain_id()
        return await self._call_internal(method, params or [])

    async def get_gas_price(self) -> int:
        result = await self.call("eth_gasPrice")
        return int(result, 16)

    async def get_max_priority_fee(self) -> int:
        """Get max priority fee for EIP-1559."""
        try:
            result = await self.call("eth_maxPriorityFeePerGas")
            return int(result, 16)
        except ChainRPCError:
            # Chains without the method
            return 1_500_000_000

    async def get_base_fee(self) -> Optional[int]:
        block = await self.call("eth_getBlockByNumber", ["latest", False])
        if block and block.get("baseFeePerGas"):
            return int(block["baseFeePerGas"], 16)
        return None

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        result = await self.call("eth_estimateGas", [tx])
        return int(result, 16)

    async def get_nonce(self, address: str, block: str = "pending") -> int:
        result = await self.call("eth_getTransactionCount", [address, block])
        return int(result, 16)

    async def send_raw_transaction(self, signed_tx: str) -> str:
        if not signed_tx.startswith("0x"):
            signed_tx = "0x" + signed_tx
        return await self.call("eth_sendRawTransaction", [signed_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionByHash", [tx_hash])

    async def eth_call(self, tx: Dict[str, Any], block: str = "latest") -> str:
        """Execute a call without creating a transaction."""
        return await self.call("eth_call", [tx, block])

    def get_endpoint_stats(self) -> List[Dict[str, Any]]:
        return [
            {
                "url": health.url,
                "priority": health.priority,
                "status": health.status.value,
                "consecutive_failures": health.consecutive_failures,
                "total_requests": health.total_requests,
                "total_failures": health.total_failures,
                "avg_latency_ms": round(health.avg_latency_ms, 2),
                "last_error": health.last_error,
            }
            for health in self._endpoints
        ]

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
        self._http_client = None

    async def __aenter__(self) -> "JsonRpcClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


__all__ = [
    "EndpointStatus",
    "EndpointHealth",
    "JsonRpcClient",
]
