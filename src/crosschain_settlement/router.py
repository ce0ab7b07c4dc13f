"""
Settlement routing.

The router owns an ordered list of strategies and hands each request to the
first one whose ``can_handle`` accepts it. Same-asset, same-chain requests
bypass the list entirely. Nothing raised by a strategy escapes ``execute``;
only cancellation propagates to the caller.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence

import httpx

from .chain.registry import ChainClientRegistry
from .config import SettlementPolicy, SettlementSettings, get_settings
from .exceptions import UnsupportedRouteError
from .logging_config import mask_secret, settlement_context
from .models import (
    DIRECT_TRANSFER_REQUIRED,
    DirectTransferData,
    SettlementPreview,
    SettlementRequest,
    SettlementResult,
)
from .registry import CapabilityRegistry, build_default_registry
from .services.attestation import AttestationClient
from .services.intents import IntentClient
from .services.liquidity import LiquidityClient
from .strategies import (
    AttestationBridgeStrategy,
    GaslessStrategy,
    IntentBridgeStrategy,
    LiquidityBridgeStrategy,
    SettlementStrategy,
    StandardBridgeStrategy,
    StrategyContext,
    StrategyKind,
)

logger = logging.getLogger(__name__)

DEFAULT_ORDER = (
    StrategyKind.LIQUIDITY_BRIDGE,
    StrategyKind.ATTESTATION_BRIDGE,
    StrategyKind.INTENT_BRIDGE,
    StrategyKind.GASLESS,
    StrategyKind.STANDARD,
)

TRANSFER_ORDER = (
    StrategyKind.LIQUIDITY_BRIDGE,
    StrategyKind.ATTESTATION_BRIDGE,
    StrategyKind.INTENT_BRIDGE,
)


class SettlementRouter:
    """Dispatches settlement requests to strategies in fixed priority order."""

    def __init__(
        self,
        strategies: Iterable[SettlementStrategy],
        capabilities: CapabilityRegistry,
        order: Sequence[StrategyKind] = DEFAULT_ORDER,
        context: Optional[StrategyContext] = None,
    ):
        by_kind: Dict[StrategyKind, SettlementStrategy] = {}
        for strategy in strategies:
            if strategy.kind not in order:
                raise ValueError(f"{strategy!r} is not part of the routing order")
            if strategy.kind in by_kind:
                raise ValueError(f"Duplicate strategy for {strategy.kind.value}")
            by_kind[strategy.kind] = strategy

        self._by_kind = by_kind
        self._strategies: List[SettlementStrategy] = [by_kind[k] for k in order if k in by_kind]
        self.capabilities = capabilities
        self.context = context

    @property
    def strategies(self) -> List[SettlementStrategy]:
        return list(self._strategies)

    def strategy(self, kind: StrategyKind) -> Optional[SettlementStrategy]:
        return self._by_kind.get(kind)

    def select(self, request: SettlementRequest) -> Optional[SettlementStrategy]:
        """The strategy that would execute ``request``; pure, no I/O."""
        if request.is_same_asset_transfer:
            return self._by_kind.get(StrategyKind.GASLESS)
        for strategy in self._strategies:
            if strategy.can_handle(request):
                return strategy
        return None

    def _validate_route(self, request: SettlementRequest) -> Optional[str]:
        try:
            self.capabilities.lookup(request.source_chain)
            self.capabilities.lookup(request.dest_chain)
        except UnsupportedRouteError as e:
            return f"{e.message} ({request.source_chain} -> {request.dest_chain})"
        return None

    async def _same_chain(self, request: SettlementRequest) -> Optional[SettlementResult]:
        """Hook for same-asset, same-chain requests. ``None`` falls through to selection."""
        return None

    def _same_chain_preview(self, request: SettlementRequest) -> Optional[SettlementPreview]:
        """Preview counterpart of ``_same_chain``."""
        return None

    async def execute(self, request: SettlementRequest) -> SettlementResult:
        with settlement_context(request.source_chain, request.dest_chain) as settlement_id:
            reason = self._validate_route(request)
            if reason is not None:
                logger.warning(reason)
                return SettlementResult.failure(reason)

            if request.is_same_asset_transfer:
                result = await self._same_chain(request)
                if result is not None:
                    return result

            strategy = self.select(request)
            if strategy is None:
                reason = (
                    f"No suitable settlement strategy found for "
                    f"{request.source_chain} -> {request.dest_chain}"
                )
                logger.warning(reason)
                return SettlementResult.failure(reason)

            logger.info(
                f"Settlement {settlement_id}: {request.amount} {request.resolved_source_token} "
                f"via {strategy.name} (recipient={request.recipient}, "
                f"key={mask_secret(request.facilitator_key())})"
            )
            try:
                result = await strategy.execute(request)
            except Exception as e:
                logger.exception(f"{strategy.name} raised during settlement {settlement_id}")
                return SettlementResult.failure(
                    f"{strategy.name} failed unexpectedly: {e}",
                    strategy=strategy.name,
                )

            if result.success:
                logger.info(
                    f"Settlement {settlement_id} via {strategy.name}: "
                    f"tx={result.transaction_hash} partial={result.is_partial}"
                )
            else:
                logger.info(f"Settlement {settlement_id} via {strategy.name} rejected: {result.error_reason}")
            return result

    async def preview(self, request: SettlementRequest) -> SettlementPreview:
        """Side-effect free estimate from the strategy that would execute ``request``."""
        reason = self._validate_route(request)
        if reason is not None:
            return SettlementPreview(success=False, error_reason=reason)

        if request.is_same_asset_transfer:
            preview = self._same_chain_preview(request)
            if preview is not None:
                return preview

        strategy = self.select(request)
        if strategy is None:
            return SettlementPreview(
                success=False,
                error_reason=(
                    f"No suitable settlement strategy found for "
                    f"{request.source_chain} -> {request.dest_chain}"
                ),
            )
        try:
            return await strategy.preview(request)
        except Exception as e:
            logger.exception(f"{strategy.name} preview failed")
            return SettlementPreview(success=False, strategy=strategy.name, error_reason=str(e))

    async def aclose(self) -> None:
        """Let every strategy release its resources, then close every owned client."""
        for strategy in self._strategies:
            try:
                await strategy.aclose()
            except Exception as e:
                logger.warning(f"Failed to close {strategy.name}: {e}")

        if self.context is None:
            return
        for service in (self.context.attestation, self.context.intents, self.context.liquidity):
            if service is None:
                continue
            try:
                await service.close()
            except Exception as e:
                logger.warning(f"Failed to close {type(service).__name__}: {e}")
        await self.context.clients.aclose()

    async def __aenter__(self) -> "SettlementRouter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


class TransferRouter(SettlementRouter):
    """
    Routing for wallet transfers.

    Same-chain requests are not relayed: the caller gets a
    ``DIRECT_TRANSFER_REQUIRED`` signal and moves the funds itself.
    Cross-chain requests use the liquidity, attestation and intent bridges.
    """

    def __init__(
        self,
        strategies: Iterable[SettlementStrategy],
        capabilities: CapabilityRegistry,
        order: Sequence[StrategyKind] = TRANSFER_ORDER,
        context: Optional[StrategyContext] = None,
    ):
        super().__init__(strategies, capabilities, order=order, context=context)

    async def _same_chain(self, request: SettlementRequest) -> Optional[SettlementResult]:
        logger.info(f"Same-chain transfer on {request.source_chain}; caller sends directly")
        return SettlementResult(
            success=True,
            transaction_hash=DIRECT_TRANSFER_REQUIRED,
            data=DirectTransferData(
                amount=request.amount,
                token=request.resolved_source_token,
                recipient=request.recipient,
            ),
        )

    def _same_chain_preview(self, request: SettlementRequest) -> Optional[SettlementPreview]:
        return SettlementPreview(
            success=True,
            amount_sent=request.amount,
            protocol_fee="0",
            net_amount=request.amount,
            estimated_received=request.amount,
            action=DIRECT_TRANSFER_REQUIRED,
        )


def build_context(
    settings: Optional[SettlementSettings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    capabilities: Optional[CapabilityRegistry] = None,
) -> StrategyContext:
    """Wire chain clients and service clients from settings."""
    settings = settings or get_settings()
    capabilities = capabilities or build_default_registry()

    clients = ChainClientRegistry(
        capabilities,
        rpc_url_overrides=settings.rpc_url_overrides,
        http_timeout_seconds=settings.http_timeout_seconds,
        receipt_timeout_seconds=settings.receipt_timeout_seconds,
        receipt_poll_interval_seconds=settings.receipt_poll_interval_seconds,
        http_client=http_client,
    )
    return StrategyContext(
        capabilities=capabilities,
        clients=clients,
        policy=SettlementPolicy.from_settings(settings),
        attestation=AttestationClient(
            api_url=settings.attestation_api_url,
            poll_interval_seconds=settings.attestation_poll_interval_seconds,
            default_timeout_seconds=settings.attestation_timeout_seconds,
            http_timeout_seconds=settings.http_timeout_seconds,
            http_client=http_client,
        ),
        intents=IntentClient(
            api_url=settings.intent_api_url,
            api_token=settings.intent_api_token.get_secret_value(),
            timeout_seconds=settings.http_timeout_seconds,
            http_client=http_client,
        ),
        liquidity=LiquidityClient(
            api_url=settings.liquidity_api_url,
            timeout_seconds=settings.http_timeout_seconds,
            http_client=http_client,
        ),
    )


def default_strategies(context: StrategyContext) -> List[SettlementStrategy]:
    return [
        LiquidityBridgeStrategy(context),
        AttestationBridgeStrategy(context),
        IntentBridgeStrategy(context),
        GaslessStrategy(context),
        StandardBridgeStrategy(context),
    ]


def build_router(
    settings: Optional[SettlementSettings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    capabilities: Optional[CapabilityRegistry] = None,
) -> SettlementRouter:
    """Production router with every strategy in default priority order."""
    context = build_context(settings, http_client, capabilities)
    return SettlementRouter(default_strategies(context), context.capabilities, context=context)


def build_transfer_router(
    settings: Optional[SettlementSettings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    capabilities: Optional[CapabilityRegistry] = None,
) -> TransferRouter:
    context = build_context(settings, http_client, capabilities)
    strategies = [
        LiquidityBridgeStrategy(context),
        AttestationBridgeStrategy(context),
        IntentBridgeStrategy(context),
    ]
    return TransferRouter(strategies, context.capabilities, context=context)


__all__ = [
    "DEFAULT_ORDER",
    "TRANSFER_ORDER",
    "SettlementRouter",
    "TransferRouter",
    "build_context",
    "default_strategies",
    "build_router",
    "build_transfer_router",
]
