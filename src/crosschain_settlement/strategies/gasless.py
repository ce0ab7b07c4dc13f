"""Same-chain gasless relay (EIP-3009 ``transferWithAuthorization``).

The payer signs an authorization moving funds to the facilitator. The
facilitator submits it (paying gas), then forwards ``amount - fee`` to the
recipient.
"""
from __future__ import annotations

import logging

from ..amounts import format_atomic, to_atomic
from ..chain.abi import encode_transfer, encode_transfer_with_authorization
from ..chain.evm import address_from_key
from ..exceptions import SettlementValidationError
from ..models import AuthorizationPayload, SettlementPreview, SettlementRequest, SettlementResult
from .base import SettlementStrategy, StrategyKind

logger = logging.getLogger(__name__)


class GaslessStrategy(SettlementStrategy):
    kind = StrategyKind.GASLESS
    name = "Gasless"

    def can_handle(self, request: SettlementRequest) -> bool:
        return request.is_same_asset_transfer

    async def preview(self, request: SettlementRequest) -> SettlementPreview:
        entry = self.context.capabilities.get(request.source_chain)
        asset = entry.asset(request.resolved_source_token) if entry else None
        if asset is None:
            return self._preview_failure(f"Unsupported token {request.resolved_source_token}")
        try:
            amount = to_atomic(request.amount, asset.decimals)
        except SettlementValidationError as e:
            return self._preview_failure(e.message)
        fee = self.policy.relay_fee_units(asset.decimals)
        net = max(amount - fee, 0)
        return SettlementPreview(
            success=amount > fee,
            strategy=self.name,
            amount_sent=format_atomic(amount, asset.decimals),
            protocol_fee=format_atomic(fee, asset.decimals),
            net_amount=format_atomic(net, asset.decimals),
            estimated_received=format_atomic(net, asset.decimals),
            error_reason=None if amount > fee else "Amount too small to cover relay fee",
        )

    async def execute(self, request: SettlementRequest) -> SettlementResult:
        payload = request.payment_payload
        if not isinstance(payload, AuthorizationPayload):
            return self._failure("Payment payload with a signed authorization is required for gasless settlement")

        private_key = request.facilitator_key()
        if not private_key:
            return self._failure("Facilitator private key not provided")

        entry = self.context.capabilities.get(request.source_chain)
        if entry is None:
            return self._failure(f"Unsupported chain: {request.source_chain}")
        if not entry.is_evm:
            return self._failure(f"Gasless relay is not available on {entry.display_name}")

        token = request.resolved_source_token
        asset = entry.asset(token)
        if asset is None or asset.is_native:
            return self._failure(f"Token {token} is not supported for gasless relay on {entry.display_name}")

        try:
            amount = to_atomic(request.amount, asset.decimals)
        except SettlementValidationError as e:
            return self._failure(e.message)

        fee = self.policy.relay_fee_units(asset.decimals)
        if amount <= fee:
            return self._failure(
                f"Amount too small. Minimum required: more than "
                f"{format_atomic(fee, asset.decimals)} {token} (relay fee)"
            )

        authorization = payload.authorization
        if authorization.value < amount:
            return self._failure(
                f"Authorized value {authorization.value} does not cover requested amount {amount}"
            )
        try:
            facilitator = address_from_key(private_key)
        except (ValueError, TypeError):
            return self._failure("Facilitator private key is invalid")
        if authorization.to.lower() != facilitator.lower():
            return self._failure("Authorization must pay the facilitator address")

        try:
            pull_data = encode_transfer_with_authorization(
                authorization.from_address,
                authorization.to,
                authorization.value,
                authorization.valid_after,
                authorization.valid_before,
                authorization.nonce,
                payload.signature,
            )
            payout_data = encode_transfer(request.recipient, amount - fee)
        except ValueError as e:
            return self._failure(f"Invalid authorization payload: {e}")

        client = self.context.clients.evm(entry.key)

        # Step 1: pull the authorized funds into the facilitator
        try:
            transfer_hash = await client.send_contract_call(asset.address, pull_data, private_key)
            await client.wait_for_receipt(transfer_hash, self.policy.receipt_timeout_seconds)
        except Exception as e:
            logger.warning(f"transferWithAuthorization failed on {entry.key}: {e}")
            return self._failure(f"Authorized transfer failed: {e}")

        # Step 2: forward net amount to the recipient
        try:
            payout_hash = await client.send_contract_call(asset.address, payout_data, private_key)
            await client.wait_for_receipt(payout_hash, self.policy.receipt_timeout_seconds)
        except Exception as e:
            logger.error(
                f"Final transfer to recipient failed after {transfer_hash}; "
                f"{amount} units held by facilitator {facilitator}: {e}"
            )
            return self._failure(
                "Final transfer to recipient failed. Funds are with facilitator.",
                transaction_hash=transfer_hash,
                payer=authorization.from_address,
            )

        logger.info(f"Gasless settlement complete: pull={transfer_hash} payout={payout_hash}")
        return self._result(
            True,
            transaction_hash=transfer_hash,
            payer=authorization.from_address,
            fee=str(fee),
            net_amount=str(amount - fee),
        )


__all__ = ["GaslessStrategy"]
