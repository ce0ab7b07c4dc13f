"""
Burn-and-mint bridging through Circle CCTP V2.

Two-call protocol:
1. Without ``deposit_tx_hash`` the strategy answers with a pending-deposit
   result naming the facilitator address and the amount to send.
2. With ``deposit_tx_hash`` it verifies the deposit, waits for the balance
   to show up, approves the TokenMessenger, burns, polls Circle for the
   attestation and mints on the destination chain.

Once the burn is mined it cannot be undone: attestation and mint failures
are reported as ``success=True`` with an ``error_reason`` so the mint can be
finished out-of-band.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Tuple

from eth_utils import is_address

from ..amounts import format_atomic, to_atomic
from ..chain.abi import MAX_UINT256, encode_approve, encode_deposit_for_burn, encode_receive_message
from ..chain.evm import address_from_key
from ..exceptions import AttestationTimeoutError, SettlementValidationError
from ..models import (
    AuthorizationPayload,
    PENDING_USER_DEPOSIT,
    PendingDepositData,
    SettlementPreview,
    SettlementRequest,
    SettlementResult,
)
from ..registry import AssetInfo, CapabilityEntry
from .base import SettlementStrategy, StrategyKind

logger = logging.getLogger(__name__)


class AttestationBridgeStrategy(SettlementStrategy):
    kind = StrategyKind.ATTESTATION_BRIDGE
    name = "CCTP"

    def _entries(self, request: SettlementRequest) -> Optional[Tuple[CapabilityEntry, CapabilityEntry]]:
        source = self.context.capabilities.get(request.source_chain)
        dest = self.context.capabilities.get(request.dest_chain)
        if source is None or dest is None:
            return None
        if source.attestation is None or dest.attestation is None:
            return None
        return source, dest

    def can_handle(self, request: SettlementRequest) -> bool:
        entries = self._entries(request)
        if entries is None:
            return False
        source, dest = entries

        # A missing destination token means "same as source", and a missing
        # source token means the canonical asset. Symbols match case-insensitively.
        source_token = request.source_token or source.attestation.canonical_asset
        target = request.dest_token or source_token
        return (
            target.casefold() == dest.attestation.canonical_asset.casefold()
            and source_token.casefold() == source.attestation.canonical_asset.casefold()
        )

    def max_fee(self, amount_units: int) -> int:
        """Fast-transfer fee cap: 1% of the amount with a fixed floor."""
        return max(amount_units // 100, self.policy.attestation_min_max_fee_units)

    def _source_asset(self, source: CapabilityEntry) -> Optional[AssetInfo]:
        return source.asset(source.attestation.canonical_asset)

    async def preview(self, request: SettlementRequest) -> SettlementPreview:
        entries = self._entries(request)
        if entries is None:
            return self._preview_failure("Attestation bridge not available for this pair")
        asset = self._source_asset(entries[0])
        if asset is None:
            return self._preview_failure("Canonical asset not configured")
        try:
            amount = to_atomic(request.amount, asset.decimals)
        except SettlementValidationError as e:
            return self._preview_failure(e.message)
        fee = to_atomic(self.policy.bridge_fee, asset.decimals)
        if amount <= fee:
            return self._preview_failure("Amount too small to cover bridge fee")
        net = amount - fee
        return SettlementPreview(
            success=True,
            strategy=self.name,
            amount_sent=format_atomic(amount, asset.decimals),
            protocol_fee=format_atomic(fee, asset.decimals),
            net_amount=format_atomic(net, asset.decimals),
            estimated_received=format_atomic(net, asset.decimals),
        )

    async def execute(self, request: SettlementRequest) -> SettlementResult:
        entries = self._entries(request)
        if entries is None:
            return self._failure(
                f"Attestation bridge not available for {request.source_chain} -> {request.dest_chain}"
            )
        source, dest = entries

        asset = self._source_asset(source)
        if asset is None:
            return self._failure(f"{source.attestation.canonical_asset} not configured on {source.display_name}")

        try:
            amount = to_atomic(request.amount, asset.decimals)
        except SettlementValidationError as e:
            return self._failure(e.message)

        fee = to_atomic(self.policy.bridge_fee, asset.decimals)
        if amount <= fee:
            return self._failure(
                f"Amount too small. Minimum required: more than "
                f"{format_atomic(fee, asset.decimals)} {asset.symbol} (to cover bridge fees)"
            )

        private_key = request.facilitator_key()
        if not private_key:
            return self._failure("Facilitator private key not provided")
        try:
            facilitator = address_from_key(private_key)
        except (ValueError, TypeError):
            return self._failure("Facilitator private key is invalid")

        payer = request.sender_address
        if not payer and isinstance(request.payment_payload, AuthorizationPayload):
            payer = request.payment_payload.authorization.from_address
        if not payer:
            return self._failure("Sender address is missing")

        if not is_address(request.recipient.lower()):
            return self._failure(f"Recipient {request.recipient} is not a valid EVM address")

        if not request.deposit_tx_hash:
            logger.info(f"No deposit hash; requesting deposit of {amount} units to {facilitator}")
            return self._result(
                True,
                transaction_hash=PENDING_USER_DEPOSIT,
                payer=payer,
                data=PendingDepositData(
                    deposit_address=facilitator,
                    amount_atomic=str(amount),
                    chain_id=source.chain_id,
                    source_token=asset.symbol,
                ),
            )

        deposit_hash = request.deposit_tx_hash
        client = self.context.clients.evm(source.key)

        # Phase 1: deposit verification
        try:
            await client.wait_for_receipt(deposit_hash, self.policy.receipt_timeout_seconds)
        except Exception as e:
            logger.warning(f"Deposit {deposit_hash} failed verification: {e}")
            return self._failure(f"Invalid deposit transaction: {e}", transaction_hash=deposit_hash)

        # Phase 2: balance confirmation, RPC nodes may lag the deposit
        try:
            balance = await self._await_balance(client, asset.address, facilitator, amount)
        except Exception as e:
            return self._failure(f"Balance check failed: {e}", transaction_hash=deposit_hash)
        if balance < amount:
            return self._failure(
                f"Deposit verified but facilitator balance insufficient "
                f"(has {balance}, needs {amount})",
                transaction_hash=deposit_hash,
            )

        # Phase 3: approve and burn
        try:
            approve_hash = await client.send_contract_call(
                asset.address,
                encode_approve(source.attestation.token_messenger, MAX_UINT256),
                private_key,
            )
            await client.wait_for_receipt(approve_hash, self.policy.receipt_timeout_seconds)
        except Exception as e:
            logger.warning(f"TokenMessenger approval failed on {source.key}: {e}")
            return self._failure(f"Approval failed: {e}", transaction_hash=deposit_hash)

        burn_amount = amount - fee
        burn_data = encode_deposit_for_burn(
            amount=burn_amount,
            destination_domain=dest.attestation.domain,
            mint_recipient=request.recipient,
            burn_token=asset.address,
            max_fee=self.max_fee(amount),
            min_finality_threshold=self.policy.attestation_min_finality_threshold,
        )
        try:
            burn_hash = await client.send_contract_call(
                source.attestation.token_messenger, burn_data, private_key
            )
            await client.wait_for_receipt(burn_hash, self.policy.receipt_timeout_seconds)
        except Exception as e:
            logger.warning(f"depositForBurn failed on {source.key}: {e}")
            return self._failure(f"Burn failed: {e}", transaction_hash=deposit_hash)

        logger.info(f"Burned {burn_amount} units on {source.key} in {burn_hash}")

        # Phase 4: attestation
        try:
            proof = await self.context.attestation.retrieve_attestation(
                burn_hash,
                source.attestation.domain,
                self.policy.attestation_timeout_seconds,
            )
        except AttestationTimeoutError:
            logger.error(f"Attestation timeout for burn {burn_hash}; funds burned but not minted")
            return self._result(
                True,
                transaction_hash=deposit_hash,
                burn_transaction_hash=burn_hash,
                error_reason="Attestation timeout. Funds burned but not minted.",
                payer=payer,
                fee=str(fee),
                net_amount=str(burn_amount),
            )
        except Exception as e:
            logger.error(f"Attestation retrieval failed for burn {burn_hash}: {e}")
            return self._result(
                True,
                transaction_hash=deposit_hash,
                burn_transaction_hash=burn_hash,
                error_reason=f"Attestation retrieval failed ({e}). Funds burned but not minted.",
                payer=payer,
                fee=str(fee),
                net_amount=str(burn_amount),
            )

        # Phase 5: mint on the destination chain
        try:
            dest_client = self.context.clients.evm(dest.key)
            mint_hash = await dest_client.send_contract_call(
                dest.attestation.message_transmitter,
                encode_receive_message(proof.message, proof.attestation),
                private_key,
            )
            await dest_client.wait_for_receipt(mint_hash, self.policy.receipt_timeout_seconds)
        except Exception as e:
            logger.error(f"Mint on {dest.key} failed for burn {burn_hash}: {e}")
            return self._result(
                True,
                transaction_hash=deposit_hash,
                burn_transaction_hash=burn_hash,
                error_reason=f"Mint execution failed: {e}",
                attestation=proof,
                payer=payer,
                fee=str(fee),
                net_amount=str(burn_amount),
            )

        logger.info(f"CCTP settlement complete: burn={burn_hash} mint={mint_hash}")
        return self._result(
            True,
            transaction_hash=deposit_hash,
            burn_transaction_hash=burn_hash,
            mint_transaction_hash=mint_hash,
            attestation=proof,
            payer=payer,
            fee=str(fee),
            net_amount=str(burn_amount),
        )

    async def _await_balance(self, client, token_address: str, owner: str, required: int) -> int:
        attempts = self.policy.balance_confirm_attempts
        balance = 0
        for attempt in range(1, attempts + 1):
            balance = await client.read_balance(token_address, owner)
            if balance >= required:
                return balance
            logger.debug(f"Balance lag: has {balance}, needs {required} (attempt {attempt}/{attempts})")
            if attempt < attempts:
                await asyncio.sleep(self.policy.balance_confirm_delay_seconds)
        return balance


__all__ = ["AttestationBridgeStrategy"]
