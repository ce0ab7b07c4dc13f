"""Tests for strategy routing."""
from __future__ import annotations

import asyncio

import pytest

from crosschain_settlement.config import SettlementSettings
from crosschain_settlement.models import DIRECT_TRANSFER_REQUIRED, SettlementRequest
from crosschain_settlement.registry import MESSAGE_TRANSMITTER_V2
from crosschain_settlement.router import (
    SettlementRouter,
    TransferRouter,
    build_router,
    default_strategies,
)
from crosschain_settlement.strategies import (
    AttestationBridgeStrategy,
    GaslessStrategy,
    IntentBridgeStrategy,
    LiquidityBridgeStrategy,
    SettlementStrategy,
    StrategyKind,
)
from crosschain_settlement.strategies.standard import DEPRECATION_MESSAGE


class ExplodingStrategy(SettlementStrategy):
    kind = StrategyKind.ATTESTATION_BRIDGE
    name = "Exploding"

    def can_handle(self, request):
        return True

    async def execute(self, request):
        raise RuntimeError("boom")

    async def preview(self, request):
        raise RuntimeError("preview boom")


@pytest.fixture
def router(context):
    return SettlementRouter(default_strategies(context), context.capabilities, context=context)


@pytest.fixture
def transfer_router(context):
    strategies = [
        LiquidityBridgeStrategy(context),
        AttestationBridgeStrategy(context),
        IntentBridgeStrategy(context),
    ]
    return TransferRouter(strategies, context.capabilities, context=context)


def make_request(source, dest, **kwargs):
    fields = {
        "source_chain": source,
        "dest_chain": dest,
        "amount": "10",
        "recipient": "0x1234567890123456789012345678901234567890",
    }
    fields.update(kwargs)
    return SettlementRequest(**fields)


class TestConstruction:
    def test_priority_order_ignores_input_order(self, context):
        strategies = list(reversed(default_strategies(context)))
        router = SettlementRouter(strategies, context.capabilities)

        assert [s.name for s in router.strategies] == [
            "Stargate", "CCTP", "NearIntents", "Gasless", "StandardBridge",
        ]

    def test_duplicate_kind_rejected(self, context):
        with pytest.raises(ValueError):
            SettlementRouter(
                [GaslessStrategy(context), GaslessStrategy(context)], context.capabilities
            )

    def test_kind_outside_order_rejected(self, context):
        with pytest.raises(ValueError):
            TransferRouter([GaslessStrategy(context)], context.capabilities)

    def test_strategy_lookup(self, router):
        assert router.strategy(StrategyKind.INTENT_BRIDGE).name == "NearIntents"


class TestSelect:
    @pytest.mark.parametrize(
        "source,dest,expected",
        [
            ("base", "avalanche", "Stargate"),
            ("base", "arbitrum", "CCTP"),
            ("base", "gnosis", "NearIntents"),
            ("stellar", "base", "NearIntents"),
            ("base", "base", "Gasless"),
        ],
    )
    def test_routes(self, router, source, dest, expected):
        assert router.select(make_request(source, dest)).name == expected

    def test_same_chain_is_gasless_even_when_a_bridge_accepts(self, context):
        class Greedy(LiquidityBridgeStrategy):
            def can_handle(self, request):
                return True

        router = SettlementRouter(
            [Greedy(context), GaslessStrategy(context)], context.capabilities
        )
        assert router.select(make_request("base", "base")).name == "Gasless"
        assert router.select(make_request("base", "arbitrum")).name == "Stargate"

    def test_token_swap_on_same_chain_goes_through_bridges(self, router):
        request = make_request("gnosis", "gnosis", source_token="USDC", dest_token="USDT")
        assert router.select(request).name == "NearIntents"

    def test_token_symbols_match_case_insensitively(self, router):
        same_chain = make_request("base", "base", source_token="USDC", dest_token="usdc")
        assert same_chain.is_same_asset_transfer
        assert router.select(same_chain).name == "Gasless"

        cross_chain = make_request("base", "arbitrum", source_token="usdc")
        assert router.select(cross_chain).name == "CCTP"

    def test_unsupported_pair(self, router):
        assert router.select(make_request("unichain", "stellar")) is None


class TestExecute:
    @pytest.mark.asyncio
    async def test_no_strategy(self, router):
        result = await router.execute(make_request("unichain", "stellar"))

        assert result.success is False
        assert result.error_reason == "No suitable settlement strategy found for unichain -> stellar"

    @pytest.mark.asyncio
    async def test_unknown_chain(self, router, evm_client):
        result = await router.execute(make_request("base", "solana"))

        assert result.success is False
        assert "Unsupported chain: solana" in result.error_reason
        assert "base -> solana" in result.error_reason
        evm_client.send_contract_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_standard_payload_gets_deprecation(self, router):
        request = make_request("unichain", "stellar", payment_payload={"type": "STANDARD"})
        result = await router.execute(request)

        assert result.success is False
        assert result.error_reason == DEPRECATION_MESSAGE
        assert result.strategy == "StandardBridge"

    @pytest.mark.asyncio
    async def test_strategy_exception_becomes_failure(self, context):
        router = SettlementRouter([ExplodingStrategy(context)], context.capabilities)
        result = await router.execute(make_request("base", "arbitrum"))

        assert result.success is False
        assert result.error_reason == "Exploding failed unexpectedly: boom"
        assert result.strategy == "Exploding"

    @pytest.mark.asyncio
    async def test_dispatches_to_selected_strategy(self, router, evm_client):
        # Gasless without a payload fails before touching the chain
        result = await router.execute(make_request("base", "base"))

        assert result.success is False
        assert result.strategy == "Gasless"
        evm_client.send_contract_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_caller_timeout_cancels_attestation_wait(
        self, router, evm_client, attestation_service, facilitator_key, sample_eth_address, sender_address
    ):
        async def never_attested(*args, **kwargs):
            await asyncio.Event().wait()

        attestation_service.retrieve_attestation.side_effect = never_attested
        request = make_request(
            "base", "arbitrum",
            recipient=sample_eth_address,
            sender_address=sender_address,
            facilitator_private_key=facilitator_key,
            deposit_tx_hash="0x" + "d" * 64,
        )

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(router.execute(request), 0.05)

        attestation_service.retrieve_attestation.assert_awaited_once()
        # approve and burn only; the mint is never sent
        assert evm_client.send_contract_call.await_count == 2
        targets = [call.args[0] for call in evm_client.send_contract_call.await_args_list]
        assert MESSAGE_TRANSMITTER_V2 not in targets


class TestTransferRouter:
    @pytest.mark.asyncio
    async def test_same_chain_returns_direct_transfer(self, transfer_router, evm_client):
        result = await transfer_router.execute(make_request("base", "base", amount="5"))

        assert result.success is True
        assert result.transaction_hash == DIRECT_TRANSFER_REQUIRED
        assert result.is_pending
        assert result.data.kind == "direct_transfer"
        assert result.data.action == "DIRECT_TRANSFER"
        assert result.data.amount == "5"
        assert result.data.token == "USDC"
        evm_client.send_contract_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_same_chain_preview_signals_direct_transfer(self, transfer_router, evm_client):
        preview = await transfer_router.preview(make_request("base", "base", amount="5"))

        assert preview.success is True
        assert preview.action == DIRECT_TRANSFER_REQUIRED
        assert preview.strategy is None
        assert preview.protocol_fee == "0"
        assert preview.estimated_received == "5"
        assert evm_client.mock_calls == []

    @pytest.mark.asyncio
    async def test_cross_chain_preview_uses_bridge(self, transfer_router):
        preview = await transfer_router.preview(make_request("base", "arbitrum"))
        assert preview.strategy == "CCTP"
        assert preview.action is None

    def test_order_has_no_relay(self, transfer_router):
        assert [s.name for s in transfer_router.strategies] == ["Stargate", "CCTP", "NearIntents"]

    @pytest.mark.asyncio
    async def test_cross_chain_without_route(self, transfer_router):
        result = await transfer_router.execute(make_request("unichain", "stellar"))
        assert result.error_reason == "No suitable settlement strategy found for unichain -> stellar"


class TestPreview:
    @pytest.mark.asyncio
    async def test_no_strategy(self, router):
        preview = await router.preview(make_request("unichain", "stellar"))
        assert preview.success is False
        assert "unichain -> stellar" in preview.error_reason

    @pytest.mark.asyncio
    async def test_unknown_chain(self, router):
        preview = await router.preview(make_request("solana", "base"))
        assert preview.success is False
        assert "Unsupported chain: solana" in preview.error_reason

    @pytest.mark.asyncio
    async def test_strategy_exception(self, context):
        router = SettlementRouter([ExplodingStrategy(context)], context.capabilities)
        preview = await router.preview(make_request("base", "arbitrum"))

        assert preview.success is False
        assert preview.strategy == "Exploding"
        assert preview.error_reason == "preview boom"

    @pytest.mark.asyncio
    async def test_gasless_preview(self, router):
        preview = await router.preview(make_request("base", "base", amount="1"))

        assert preview.success is True
        assert preview.strategy == "Gasless"
        assert preview.protocol_fee == "0.01"
        assert preview.net_amount == "0.99"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_aclose_closes_services_and_clients(
        self, router, clients, attestation_service, intent_service, liquidity_service
    ):
        async with router:
            pass

        attestation_service.close.assert_awaited_once()
        intent_service.close.assert_awaited_once()
        liquidity_service.close.assert_awaited_once()
        clients.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_aclose_survives_service_close_failure(self, router, clients, intent_service):
        intent_service.close.side_effect = RuntimeError("already closed")
        await router.aclose()
        clients.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_aclose_reaches_every_strategy(self, context):
        closed = []

        class Recording(GaslessStrategy):
            async def aclose(self):
                closed.append(self.name)

        class Stuck(LiquidityBridgeStrategy):
            async def aclose(self):
                raise RuntimeError("stuck")

        router = SettlementRouter([Stuck(context), Recording(context)], context.capabilities, context=context)
        await router.aclose()

        assert closed == ["Gasless"]
        context.clients.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_build_router(self):
        router = build_router(SettlementSettings(_env_file=None))
        try:
            assert [s.kind for s in router.strategies] == [
                StrategyKind.LIQUIDITY_BRIDGE,
                StrategyKind.ATTESTATION_BRIDGE,
                StrategyKind.INTENT_BRIDGE,
                StrategyKind.GASLESS,
                StrategyKind.STANDARD,
            ]
            assert router.context.policy.relay_fee_units(6) == 10_000
        finally:
            await router.aclose()
