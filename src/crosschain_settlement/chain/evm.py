"""EVM chain client used by the strategies.

Signs with a facilitator key supplied per request (``eth_account``) and
talks to the chain through ``JsonRpcClient``. Sends for one signer on one
chain go through ``SignerSendGuard`` so the pending nonce read and the
broadcast are never interleaved with another send.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from eth_account import Account
from eth_utils import to_checksum_address, to_hex

from ..exceptions import ChainError, ReceiptTimeoutError, TransactionRevertedError
from ..registry import CapabilityEntry
from .abi import decode_transfer_log, decode_uint256, encode_balance_of
from .rpc_client import JsonRpcClient
from .signer_guard import SignerSendGuard

logger = logging.getLogger(__name__)

GAS_LIMIT_MULTIPLIER = 1.2


def address_from_key(private_key: str) -> str:
    """Checksummed address for a hex private key."""
    return Account.from_key(private_key).address


@dataclass
class TransactionRequest:
    """A contract call to be signed and submitted."""
    to_address: str
    data: str = "0x"
    value: int = 0
    gas_limit: Optional[int] = None


@dataclass
class TransactionReceipt:
    tx_hash: str
    status: int
    block_number: Optional[int] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    gas_used: Optional[int] = None
    logs: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_rpc(cls, tx_hash: str, raw: Dict[str, Any]) -> "TransactionReceipt":
        def _int(key: str) -> Optional[int]:
            value = raw.get(key)
            return int(value, 16) if isinstance(value, str) else value

        return cls(
            tx_hash=raw.get("transactionHash", tx_hash),
            status=_int("status") or 0,
            block_number=_int("blockNumber"),
            from_address=raw.get("from"),
            to_address=raw.get("to"),
            gas_used=_int("gasUsed"),
            logs=list(raw.get("logs") or []),
        )

    def token_transfers(self, token_address: str) -> List[Tuple[str, str, int]]:
        """``(from, to, value)`` for every ``Transfer`` emitted by ``token_address``."""
        token = token_address.lower()
        transfers = []
        for log in self.logs:
            if str(log.get("address", "")).lower() != token:
                continue
            decoded = decode_transfer_log(log)
            if decoded is not None:
                transfers.append(decoded)
        return transfers


class EvmChainClient:
    """Chain-client capability for one EVM chain."""

    def __init__(
        self,
        entry: CapabilityEntry,
        rpc: JsonRpcClient,
        signer_guard: Optional[SignerSendGuard] = None,
        receipt_timeout_seconds: float = 120.0,
        receipt_poll_interval_seconds: float = 2.0,
    ):
        if not entry.is_evm or entry.chain_id is None:
            raise ChainError(f"{entry.key} is not an EVM chain", chain=entry.key)
        self._entry = entry
        self._rpc = rpc
        self._guard = signer_guard or SignerSendGuard()
        self._receipt_timeout = receipt_timeout_seconds
        self._poll_interval = receipt_poll_interval_seconds

    @property
    def chain(self) -> str:
        return self._entry.key

    @property
    def chain_id(self) -> int:
        return self._entry.chain_id  # type: ignore[return-value]

    @staticmethod
    def address_of(private_key: str) -> str:
        return address_from_key(private_key)

    async def read_balance(self, token_address: str, owner: str) -> int:
        """Balance of ``owner`` in atomic units; the zero address reads the native balance."""
        owner = to_checksum_address(owner)
        if int(token_address, 16) == 0:
            result = await self._rpc.call("eth_getBalance", [owner, "latest"])
            return int(result, 16)
        result = await self._rpc.eth_call({
            "to": to_checksum_address(token_address),
            "data": encode_balance_of(owner),
        })
        return decode_uint256(result)

    async def _build_transaction(self, sender: str, request: TransactionRequest) -> Dict[str, Any]:
        call = {
            "from": sender,
            "to": to_checksum_address(request.to_address),
            "data": request.data,
            "value": hex(request.value),
        }
        gas_limit = request.gas_limit
        if gas_limit is None:
            gas_limit = int(await self._rpc.estimate_gas(call) * GAS_LIMIT_MULTIPLIER)

        tx: Dict[str, Any] = {
            "chainId": self.chain_id,
            "to": call["to"],
            "data": request.data,
            "value": request.value,
            "gas": gas_limit,
            "nonce": await self._rpc.get_nonce(sender, "pending"),
        }
        base_fee = await self._rpc.get_base_fee()
        if base_fee is None:
            tx["gasPrice"] = await self._rpc.get_gas_price()
        else:
            priority_fee = await self._rpc.get_max_priority_fee()
            tx["maxPriorityFeePerGas"] = priority_fee
            tx["maxFeePerGas"] = base_fee * 2 + priority_fee
            tx["type"] = 2
        return tx

    async def send_transaction(self, request: TransactionRequest, private_key: str) -> str:
        """Sign ``request`` with ``private_key`` and broadcast it. Returns the tx hash."""
        account = Account.from_key(private_key)
        async with self._guard.hold(account.address, self.chain):
            tx = await self._build_transaction(account.address, request)
            signed = account.sign_transaction(tx)
            tx_hash = await self._rpc.send_raw_transaction(to_hex(signed.raw_transaction))

        logger.info(
            f"Submitted tx {tx_hash} on {self.chain} to {tx['to']} (nonce {tx['nonce']})"
        )
        return tx_hash

    async def send_contract_call(
        self,
        contract: str,
        data: str,
        private_key: str,
        value: int = 0,
    ) -> str:
        return await self.send_transaction(
            TransactionRequest(to_address=contract, data=data, value=value),
            private_key,
        )

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout_seconds: Optional[float] = None,
    ) -> TransactionReceipt:
        """
        Poll for a receipt until ``timeout_seconds`` elapse.

        Raises:
            TransactionRevertedError: Mined with status 0
            ReceiptTimeoutError: No receipt before the deadline
        """
        timeout = self._receipt_timeout if timeout_seconds is None else timeout_seconds
        deadline = time.monotonic() + timeout

        while True:
            raw = await self._rpc.get_transaction_receipt(tx_hash)
            if raw:
                receipt = TransactionReceipt.from_rpc(tx_hash, raw)
                if not receipt.succeeded:
                    raise TransactionRevertedError(tx_hash, chain=self.chain)
                logger.debug(f"Tx {tx_hash} confirmed in block {receipt.block_number}")
                return receipt

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ReceiptTimeoutError(tx_hash, timeout, chain=self.chain)
            await asyncio.sleep(min(self._poll_interval, remaining))

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Raw transaction (``to``, ``from``, ``input``, ``value``) or ``None`` if unknown."""
        return await self._rpc.get_transaction(tx_hash)

    async def close(self) -> None:
        await self._rpc.close()


__all__ = [
    "address_from_key",
    "TransactionRequest",
    "TransactionReceipt",
    "EvmChainClient",
]
