"""Stargate liquidity bridge: quote-only, the caller signs and submits."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from ..amounts import format_atomic, to_atomic
from ..exceptions import SettlementValidationError
from ..models import (
    PENDING_USER_SIGNATURE,
    ApprovalStep,
    SettlementPreview,
    SettlementRequest,
    SettlementResult,
    UnsignedTransactionData,
)
from ..registry import AssetInfo, CapabilityEntry
from ..services.liquidity import LiquidityQuoteParams, find_step, min_amount_after_slippage, select_route
from .base import SettlementStrategy, StrategyKind

logger = logging.getLogger(__name__)


class LiquidityBridgeStrategy(SettlementStrategy):
    kind = StrategyKind.LIQUIDITY_BRIDGE
    name = "Stargate"

    def _is_override(self, request: SettlementRequest) -> bool:
        route = (request.source_chain, request.dest_chain, request.resolved_source_token)
        return any(
            (src.lower(), dst.lower(), token.casefold()) == (route[0], route[1], route[2].casefold())
            for src, dst, token in self.policy.liquidity_override_pairs
        )

    def _resolve(
        self, request: SettlementRequest
    ) -> Optional[Tuple[CapabilityEntry, CapabilityEntry, AssetInfo, AssetInfo]]:
        source = self.context.capabilities.get(request.source_chain)
        dest = self.context.capabilities.get(request.dest_chain)
        if source is None or dest is None:
            return None
        src_asset = source.asset(request.resolved_source_token)
        dst_asset = dest.asset(request.resolved_dest_token)
        if src_asset is None or dst_asset is None:
            return None
        return source, dest, src_asset, dst_asset

    def can_handle(self, request: SettlementRequest) -> bool:
        if request.is_same_chain:
            return False
        if self._is_override(request):
            return True
        resolved = self._resolve(request)
        if resolved is None:
            return False
        source, dest, src_asset, dst_asset = resolved
        return (
            source.liquidity_bridge
            and dest.liquidity_bridge
            and src_asset.supports_liquidity_bridge
            and dst_asset.supports_liquidity_bridge
        )

    async def _fetch_route(
        self, request: SettlementRequest
    ) -> Tuple[Optional[Dict[str, Any]], Optional[str], Optional[Tuple[AssetInfo, AssetInfo, int]]]:
        """Best route for the request, or an error reason."""
        resolved = self._resolve(request)
        if resolved is None:
            return None, (
                f"Liquidity bridge not available for {request.resolved_source_token} on "
                f"{request.source_chain} -> {request.dest_chain}"
            ), None
        source, dest, src_asset, dst_asset = resolved

        try:
            amount = to_atomic(request.amount, src_asset.decimals)
        except SettlementValidationError as e:
            return None, e.message, None
        if amount <= 0:
            return None, "Amount must be greater than zero", None

        if self.context.liquidity is None:
            return None, "Liquidity service not configured", None

        sender = request.sender_address or request.recipient
        params = LiquidityQuoteParams(
            src_token=src_asset.address,
            dst_token=dst_asset.address,
            src_address=sender,
            dst_address=request.recipient,
            src_chain_key=source.key,
            dst_chain_key=dest.key,
            src_amount=amount,
            dst_amount_min=min_amount_after_slippage(amount, self.policy.liquidity_slippage_bps),
        )
        try:
            quotes = await self.context.liquidity.get_quotes(params)
        except Exception as e:
            logger.warning(f"Liquidity quote {source.key} -> {dest.key} failed: {e}")
            return None, f"Liquidity API error: {e}", None

        route = select_route(quotes, self.policy.liquidity_preferred_route)
        if route is None:
            return None, "No routes found", None
        return route, None, (src_asset, dst_asset, amount)

    async def preview(self, request: SettlementRequest) -> SettlementPreview:
        route, reason, sizing = await self._fetch_route(request)
        if route is None:
            return self._preview_failure(reason or "No routes found")
        src_asset, dst_asset, amount = sizing

        src_amount = int(route.get("srcAmount", amount))
        dst_amount = int(route.get("dstAmount", 0))
        dst_min = route.get("dstAmountMin")
        return SettlementPreview(
            success=True,
            strategy=self.name,
            amount_sent=format_atomic(src_amount, src_asset.decimals),
            protocol_fee=format_atomic(max(src_amount - dst_amount, 0), src_asset.decimals),
            net_amount=format_atomic(dst_amount, dst_asset.decimals),
            estimated_received=format_atomic(dst_amount, dst_asset.decimals),
            min_received=format_atomic(int(dst_min), dst_asset.decimals) if dst_min is not None else None,
        )

    async def execute(self, request: SettlementRequest) -> SettlementResult:
        route, reason, _ = await self._fetch_route(request)
        if route is None:
            return self._failure(reason or "No routes found")

        bridge = find_step(route, "bridge")
        transaction = (bridge or {}).get("transaction")
        if not transaction or not transaction.get("to"):
            return self._failure("No bridge transaction found in quote")

        approval = None
        approve_step = find_step(route, "approve")
        if approve_step and approve_step.get("transaction"):
            approve_tx = approve_step["transaction"]
            approval = ApprovalStep(
                target=approve_tx["to"],
                data=approve_tx.get("data", "0x"),
                value=str(approve_tx["value"]) if approve_tx.get("value") is not None else None,
            )

        logger.info(
            f"Liquidity route {route.get('route')} ready for signature "
            f"({request.source_chain} -> {request.dest_chain})"
        )
        return self._result(
            True,
            transaction_hash=PENDING_USER_SIGNATURE,
            data=UnsignedTransactionData(
                strategy=self.name,
                route=route.get("route"),
                tx_target=transaction["to"],
                tx_data=transaction.get("data", "0x"),
                tx_value=str(transaction["value"]) if transaction.get("value") is not None else None,
                approval_required=approval,
                quote=route,
            ),
        )


__all__ = ["LiquidityBridgeStrategy"]
