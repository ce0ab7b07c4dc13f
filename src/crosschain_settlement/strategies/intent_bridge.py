"""
Cross-chain settlement through NEAR Intents (1Click).

Three request shapes:
- signed envelope (Stellar): submit it and return the ledger hash
- ``deposit_tx_hash``: verify the deposit on the source chain, notify the
  solver network in the background, return a terminal result
- neither: request a quote and hand back the deposit address
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set, Tuple

from ..amounts import format_atomic, to_atomic
from ..exceptions import SettlementValidationError
from ..models import (
    IntentCompletedData,
    PENDING_USER_DEPOSIT,
    PendingDepositData,
    SettlementPreview,
    SettlementRequest,
    SettlementResult,
    SignedEnvelopePayload,
)
from ..registry import CapabilityEntry, ChainKind, IntentAsset
from ..services.intents import IntentQuoteRequest
from .base import SettlementStrategy, StrategyKind

logger = logging.getLogger(__name__)

# Placeholder parties for dry quotes; the API only checks their format
DUMMY_EVM_ADDRESS = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
DUMMY_STELLAR_ADDRESS = "GB7BDSZU2Y27LYNLJLVEGW5TIVYQ6362DS5QZ5F6S27S227227227AAA"


class DepositVerificationError(Exception):
    """The supplied deposit does not check out."""


class IntentBridgeStrategy(SettlementStrategy):
    kind = StrategyKind.INTENT_BRIDGE
    name = "NearIntents"

    def __init__(self, context):
        super().__init__(context)
        self._notifications: Set[asyncio.Task] = set()

    def _resolve(
        self, request: SettlementRequest
    ) -> Optional[Tuple[CapabilityEntry, CapabilityEntry, IntentAsset, IntentAsset]]:
        source = self.context.capabilities.get(request.source_chain)
        dest = self.context.capabilities.get(request.dest_chain)
        if source is None or dest is None:
            return None
        if not source.supports_intents or not dest.supports_intents:
            return None
        origin = source.intent_asset(request.resolved_source_token)
        destination = dest.intent_asset(request.resolved_dest_token)
        if origin is None or destination is None:
            return None
        return source, dest, origin, destination

    def can_handle(self, request: SettlementRequest) -> bool:
        return self._resolve(request) is not None

    def _fee_units(self, origin: IntentAsset) -> int:
        return to_atomic(self.policy.intent_fee, origin.decimals)

    async def preview(self, request: SettlementRequest) -> SettlementPreview:
        resolved = self._resolve(request)
        if resolved is None:
            return self._preview_failure("Intent bridge not available for this pair")
        source, dest, origin, destination = resolved
        if self.context.intents is None:
            return self._preview_failure("Intent service not configured")

        try:
            total = to_atomic(request.amount, origin.decimals)
        except SettlementValidationError as e:
            return self._preview_failure(e.message)
        fee = self._fee_units(origin)
        net = total - fee
        if net <= 0:
            return self._preview_failure("Amount too small to cover fees")

        def placeholder(entry: CapabilityEntry) -> str:
            return DUMMY_STELLAR_ADDRESS if entry.kind == ChainKind.STELLAR else DUMMY_EVM_ADDRESS

        quote_request = IntentQuoteRequest(
            origin_asset=origin.asset_id,
            destination_asset=destination.asset_id,
            amount=str(net),
            recipient=placeholder(dest),
            refund_to=placeholder(source),
            dry=True,
            slippage_bps=self.policy.intent_slippage_bps,
            deposit_mode="MEMO" if source.intent_needs_memo else None,
            deadline_seconds=self.policy.intent_quote_deadline_seconds,
            referral=self.policy.intent_referral,
            quote_waiting_time_ms=self.policy.intent_quote_wait_ms,
        )
        try:
            quote = await self.context.intents.get_quote(quote_request)
        except Exception as e:
            logger.warning(f"Intent preview quote failed: {e}")
            return self._preview_failure(f"Quote failed: {e}")

        estimated = quote.amount_out_formatted
        if estimated is None and quote.amount_out is not None:
            estimated = format_atomic(int(quote.amount_out), destination.decimals)
        min_received = None
        if quote.min_amount_out is not None:
            min_received = format_atomic(int(quote.min_amount_out), destination.decimals)

        return SettlementPreview(
            success=True,
            strategy=self.name,
            amount_sent=format_atomic(total, origin.decimals),
            protocol_fee=format_atomic(fee, origin.decimals),
            net_amount=format_atomic(net, origin.decimals),
            estimated_received=estimated,
            min_received=min_received,
        )

    async def execute(self, request: SettlementRequest) -> SettlementResult:
        resolved = self._resolve(request)
        if resolved is None:
            return self._failure(
                f"Intent bridge not available for {request.resolved_source_token} on "
                f"{request.source_chain} -> {request.resolved_dest_token} on {request.dest_chain}"
            )
        source, dest, origin, destination = resolved

        try:
            total = to_atomic(request.amount, origin.decimals)
        except SettlementValidationError as e:
            return self._failure(e.message)
        fee = self._fee_units(origin)
        net = total - fee
        if net <= 0:
            return self._failure("Amount too small to cover fees")

        payload = request.payment_payload
        if isinstance(payload, SignedEnvelopePayload):
            return await self._submit_envelope(source, payload)

        if request.deposit_tx_hash:
            return await self._verify_deposit(source, origin, request.deposit_tx_hash)

        if self.context.intents is None:
            return self._failure("Intent service not configured")

        quote_request = IntentQuoteRequest(
            origin_asset=origin.asset_id,
            destination_asset=destination.asset_id,
            amount=str(net),
            recipient=request.recipient,
            refund_to=request.sender_address or request.recipient,
            dry=False,
            slippage_bps=self.policy.intent_slippage_bps,
            deposit_mode="MEMO" if source.intent_needs_memo else None,
            deadline_seconds=self.policy.intent_quote_deadline_seconds,
            referral=self.policy.intent_referral,
            quote_waiting_time_ms=self.policy.intent_quote_wait_ms,
        )
        try:
            quote = await self.context.intents.get_quote(quote_request)
        except Exception as e:
            logger.warning(f"Intent quote failed for {source.key} -> {dest.key}: {e}")
            return self._failure(f"Intent quote failed: {e}")

        if not quote.deposit_address:
            return self._failure("No deposit address returned from intent quote")

        logger.info(
            f"Intent quote ready: deposit {net} units of {origin.symbol} to {quote.deposit_address}"
        )
        return self._result(
            True,
            transaction_hash=PENDING_USER_DEPOSIT,
            fee=str(fee),
            net_amount=str(net),
            data=PendingDepositData(
                deposit_address=quote.deposit_address,
                amount_atomic=str(net),
                chain_id=source.chain_id,
                memo=quote.deposit_memo,
                source_token=origin.symbol,
            ),
        )

    async def _submit_envelope(self, source: CapabilityEntry, payload: SignedEnvelopePayload) -> SettlementResult:
        if source.kind != ChainKind.STELLAR:
            return self._failure(f"Signed envelopes are not supported on {source.display_name}")
        try:
            tx_hash = await self.context.clients.ledger(source.key).submit_envelope(payload.signed_envelope)
        except Exception as e:
            logger.warning(f"Envelope submission on {source.key} failed: {e}")
            return self._failure(f"Envelope submission failed: {e}")
        return self._result(True, transaction_hash=tx_hash)

    async def _verify_deposit(self, source: CapabilityEntry, origin: IntentAsset, tx_hash: str) -> SettlementResult:
        try:
            if source.kind == ChainKind.STELLAR:
                deposit_address, memo = await self._verify_ledger_deposit(source, origin, tx_hash)
            else:
                deposit_address, memo = await self._verify_evm_deposit(source, origin, tx_hash)
        except Exception as e:
            logger.warning(f"Deposit {tx_hash} on {source.key} failed verification: {e}")
            return self._failure(f"Deposit verification failed: {e}", transaction_hash=tx_hash)

        if source.intent_needs_memo and not memo:
            return self._failure(
                f"Deposit on {source.display_name} is missing the required memo",
                transaction_hash=tx_hash,
            )

        scheduled = self._schedule_notification(tx_hash, deposit_address, memo)
        return self._result(
            True,
            transaction_hash=tx_hash,
            data=IntentCompletedData(
                deposit_tx_hash=tx_hash,
                deposit_address=deposit_address,
                memo=memo,
                notification_scheduled=scheduled,
            ),
        )

    async def _verify_evm_deposit(
        self, source: CapabilityEntry, origin: IntentAsset, tx_hash: str
    ) -> Tuple[Optional[str], Optional[str]]:
        client = self.context.clients.evm(source.key)
        receipt = await client.wait_for_receipt(tx_hash, self.policy.receipt_timeout_seconds)
        tx = await client.get_transaction(tx_hash)
        if tx is None:
            raise DepositVerificationError("transaction not found")

        asset = source.asset(origin.symbol)
        if asset is None:
            raise DepositVerificationError(f"{origin.symbol} is not configured on {source.display_name}")
        if asset.is_native:
            value = tx.get("value") or 0
            if isinstance(value, str):
                value = int(value, 16)
            if not tx.get("to") or value <= 0:
                raise DepositVerificationError(f"no {origin.symbol} transfer in deposit")
            return tx["to"], None

        # ERC-20 deposits name the payee in the Transfer log of the token itself
        transfers = receipt.token_transfers(asset.address)
        if not transfers:
            raise DepositVerificationError(f"no {origin.symbol} transfer in deposit")
        return transfers[0][1], None

    async def _verify_ledger_deposit(
        self, source: CapabilityEntry, origin: IntentAsset, tx_hash: str
    ) -> Tuple[Optional[str], Optional[str]]:
        record = await self.context.clients.ledger(source.key).get_transaction(tx_hash)
        if record is None:
            raise DepositVerificationError("transaction not found")
        if not record.successful:
            raise DepositVerificationError("transaction failed on ledger")

        asset = source.asset(origin.symbol)
        if asset is None:
            raise DepositVerificationError(f"{origin.symbol} is not configured on {source.display_name}")
        for payment in record.payments:
            if asset.is_native:
                if payment.is_native:
                    return payment.destination, record.memo
            elif (
                payment.asset_code is not None
                and payment.asset_code.casefold() == asset.symbol.casefold()
                and payment.asset_issuer == asset.address
            ):
                return payment.destination, record.memo
        raise DepositVerificationError(f"no {origin.symbol} payment in deposit")

    def _schedule_notification(self, tx_hash: str, deposit_address: Optional[str], memo: Optional[str]) -> bool:
        intents = self.context.intents
        if intents is None or not deposit_address:
            return False

        task = asyncio.create_task(
            asyncio.wait_for(
                intents.submit_deposit(tx_hash, deposit_address, memo),
                self.policy.intent_notify_timeout_seconds,
            ),
            name=f"intent-notify-{tx_hash}",
        )
        self._notifications.add(task)
        task.add_done_callback(self._notification_done)
        return True

    def _notification_done(self, task: asyncio.Task) -> None:
        self._notifications.discard(task)
        if task.cancelled():
            logger.warning(f"Deposit notification {task.get_name()} cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Deposit notification {task.get_name()} failed: {error!r}")
        else:
            logger.info(f"Deposit notification {task.get_name()} delivered")

    @property
    def pending_notifications(self) -> int:
        return len(self._notifications)

    async def drain_notifications(self) -> None:
        """Wait for in-flight deposit notifications (shutdown and tests)."""
        if self._notifications:
            await asyncio.gather(*list(self._notifications), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain_notifications()


__all__ = [
    "DUMMY_EVM_ADDRESS",
    "DUMMY_STELLAR_ADDRESS",
    "IntentBridgeStrategy",
]
