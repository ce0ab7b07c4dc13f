"""Tests for the NEAR Intents strategy."""
from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from crosschain_settlement.chain.abi import TRANSFER_EVENT_TOPIC
from crosschain_settlement.chain.evm import TransactionReceipt
from crosschain_settlement.chain.ledger import LedgerPayment, LedgerTransaction
from crosschain_settlement.exceptions import ExternalServiceError, ReceiptTimeoutError
from crosschain_settlement.models import (
    PENDING_USER_DEPOSIT,
    IntentCompletedData,
    PendingDepositData,
    SettlementRequest,
)
from crosschain_settlement.services.intents import IntentQuote
from crosschain_settlement.strategies import IntentBridgeStrategy
from crosschain_settlement.strategies.intent_bridge import DUMMY_EVM_ADDRESS, DUMMY_STELLAR_ADDRESS

BASE_USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
BASE_USDC_INTENT_ID = "nep141:base-0x833589fcd6edb6e08f4c7c32d4f71b54bda02913.omft.near"
DEPOSIT_ADDRESS = "0x00000000000000000000000000000000000000dd"
STELLAR_DEPOSIT = "GDEPOSITADDRESSXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXXX"
DEPOSIT_HASH = "0x" + "e" * 64
STELLAR_USDC_ISSUER = "GA5ZSEJYB37JRC5AVCIA5MOP4RHTM335X2KGX3IHOJAPP5RE34K4KZVN"


def _request(recipient, sender=None, **overrides):
    data = {
        "source_chain": "base",
        "dest_chain": "gnosis",
        "amount": "10",
        "recipient": recipient,
        "sender_address": sender,
    }
    data.update(overrides)
    return SettlementRequest(**data)


def _transfer_log(token: str, sender: str, recipient: str, amount: int) -> dict:
    def topic(address: str) -> str:
        return "0x" + "0" * 24 + address[2:].lower()

    return {
        "address": token,
        "topics": [TRANSFER_EVENT_TOPIC, topic(sender), topic(recipient)],
        "data": "0x" + f"{amount:064x}",
    }


@pytest.fixture
def strategy(context, intent_service):
    intent_service.get_quote.return_value = IntentQuote(deposit_address=DEPOSIT_ADDRESS)
    return IntentBridgeStrategy(context)


class TestCanHandle:
    def test_both_chains_have_intent_assets(self, strategy):
        assert strategy.can_handle(_request("0x1"))
        assert strategy.can_handle(_request("0x1", source_chain="stellar", dest_chain="base"))

    def test_swap_between_listed_assets(self, strategy):
        assert strategy.can_handle(_request("0x1", dest_token="EURe"))

    def test_unlisted_asset(self, strategy):
        assert not strategy.can_handle(_request("0x1", dest_token="DOGE"))

    def test_chain_without_intents(self, strategy):
        assert not strategy.can_handle(_request("0x1", dest_chain="unichain"))


class TestQuote:
    @pytest.mark.asyncio
    async def test_quote_returns_pending_deposit(
        self, strategy, intent_service, sample_eth_address, sender_address
    ):
        result = await strategy.execute(_request(sample_eth_address, sender_address))

        assert result.success is True
        assert result.transaction_hash == PENDING_USER_DEPOSIT
        assert isinstance(result.data, PendingDepositData)
        assert result.data.deposit_address == DEPOSIT_ADDRESS
        assert result.data.amount_atomic == "9980000"
        assert result.fee == "20000"
        assert result.net_amount == "9980000"

        quote_request = intent_service.get_quote.await_args.args[0]
        assert quote_request.origin_asset == BASE_USDC_INTENT_ID
        assert quote_request.amount == "9980000"
        assert quote_request.recipient == sample_eth_address
        assert quote_request.refund_to == sender_address
        assert quote_request.dry is False
        assert quote_request.deposit_mode is None
        assert quote_request.referral == "1llet"

    @pytest.mark.asyncio
    async def test_refund_defaults_to_recipient(self, strategy, intent_service, sample_eth_address):
        await strategy.execute(_request(sample_eth_address))
        assert intent_service.get_quote.await_args.args[0].refund_to == sample_eth_address

    @pytest.mark.asyncio
    async def test_memo_chain_requests_memo_deposit(self, strategy, intent_service, sample_eth_address):
        intent_service.get_quote.return_value = IntentQuote(deposit_address=STELLAR_DEPOSIT, deposit_memo="4242")
        result = await strategy.execute(
            _request(sample_eth_address, source_chain="stellar", dest_chain="base")
        )

        assert result.success is True
        assert result.data.memo == "4242"
        # Stellar USDC has 7 decimals: 10 - 0.02
        assert result.data.amount_atomic == "99800000"
        assert intent_service.get_quote.await_args.args[0].deposit_mode == "MEMO"

    @pytest.mark.asyncio
    async def test_development_has_no_fee(self, strategy, context, sample_eth_address):
        context.policy = replace(context.policy, development=True)
        result = await strategy.execute(_request(sample_eth_address))
        assert result.fee == "0"
        assert result.data.amount_atomic == "10000000"

    @pytest.mark.asyncio
    async def test_missing_deposit_address(self, strategy, intent_service, sample_eth_address):
        intent_service.get_quote.return_value = IntentQuote(deposit_address=None)
        result = await strategy.execute(_request(sample_eth_address))
        assert result.success is False
        assert result.error_reason == "No deposit address returned from intent quote"

    @pytest.mark.asyncio
    async def test_quote_error(self, strategy, intent_service, sample_eth_address):
        intent_service.get_quote.side_effect = ExternalServiceError("intents", "amount too low", 400)
        result = await strategy.execute(_request(sample_eth_address))
        assert result.success is False
        assert "amount too low" in result.error_reason

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0.02", "0.015"])
    async def test_amount_at_fee_floor_makes_no_calls(
        self, strategy, intent_service, clients, sample_eth_address, amount
    ):
        result = await strategy.execute(_request(sample_eth_address, amount=amount))

        assert result.success is False
        assert result.error_reason == "Amount too small to cover fees"
        assert intent_service.get_quote.await_count == 0
        assert clients.evm.call_count == 0


class TestDepositVerification:
    @pytest.mark.asyncio
    async def test_evm_deposit_verified_and_notified(
        self, strategy, evm_client, intent_service, sample_eth_address, sender_address
    ):
        log = _transfer_log(BASE_USDC, sender_address, DEPOSIT_ADDRESS, 9_980_000)
        evm_client.wait_for_receipt.side_effect = None
        evm_client.wait_for_receipt.return_value = TransactionReceipt(tx_hash=DEPOSIT_HASH, status=1, logs=[log])
        evm_client.get_transaction.return_value = {"to": BASE_USDC}

        result = await strategy.execute(_request(sample_eth_address, deposit_tx_hash=DEPOSIT_HASH))
        await strategy.drain_notifications()

        assert result.success is True
        assert result.transaction_hash == DEPOSIT_HASH
        assert isinstance(result.data, IntentCompletedData)
        assert result.data.deposit_address.lower() == DEPOSIT_ADDRESS
        assert result.data.notification_scheduled is True
        intent_service.submit_deposit.assert_awaited_once()
        assert intent_service.submit_deposit.await_args.args[0] == DEPOSIT_HASH
        assert intent_service.get_quote.await_count == 0
        assert evm_client.send_contract_call.await_count == 0

    @pytest.mark.asyncio
    async def test_native_deposit_uses_transaction_target(
        self, strategy, evm_client, sample_eth_address
    ):
        evm_client.get_transaction.return_value = {"to": DEPOSIT_ADDRESS, "value": hex(10**18)}
        result = await strategy.execute(
            _request(sample_eth_address, source_token="ETH", dest_token="XDAI", deposit_tx_hash=DEPOSIT_HASH)
        )
        await strategy.drain_notifications()

        assert result.success is True
        assert result.data.deposit_address == DEPOSIT_ADDRESS

    @pytest.mark.asyncio
    async def test_native_deposit_without_value_rejected(
        self, strategy, evm_client, intent_service, sample_eth_address
    ):
        evm_client.get_transaction.return_value = {"to": DEPOSIT_ADDRESS, "value": "0x0"}
        result = await strategy.execute(
            _request(sample_eth_address, source_token="ETH", dest_token="XDAI", deposit_tx_hash=DEPOSIT_HASH)
        )

        assert result.success is False
        assert "no ETH transfer in deposit" in result.error_reason
        assert intent_service.submit_deposit.await_count == 0

    @pytest.mark.asyncio
    async def test_token_deposit_without_transfer_log_rejected(
        self, strategy, evm_client, intent_service, sample_eth_address
    ):
        # A mined call to an unrelated contract moves no USDC
        evm_client.get_transaction.return_value = {"to": "0xdAC17F958D2ee523a2206206994597C13D831ec7"}
        result = await strategy.execute(_request(sample_eth_address, deposit_tx_hash=DEPOSIT_HASH))
        await strategy.drain_notifications()

        assert result.success is False
        assert result.transaction_hash == DEPOSIT_HASH
        assert "no USDC transfer in deposit" in result.error_reason
        assert intent_service.submit_deposit.await_count == 0

    @pytest.mark.asyncio
    async def test_transfer_of_other_token_rejected(
        self, strategy, evm_client, intent_service, sample_eth_address, sender_address
    ):
        other_token = "0x50c5725949A6F0c72E6C4a641F24049A917DB0Cb"
        log = _transfer_log(other_token, sender_address, DEPOSIT_ADDRESS, 9_980_000)
        evm_client.wait_for_receipt.side_effect = None
        evm_client.wait_for_receipt.return_value = TransactionReceipt(tx_hash=DEPOSIT_HASH, status=1, logs=[log])
        evm_client.get_transaction.return_value = {"to": other_token}

        result = await strategy.execute(_request(sample_eth_address, deposit_tx_hash=DEPOSIT_HASH))

        assert result.success is False
        assert "no USDC transfer in deposit" in result.error_reason
        assert intent_service.submit_deposit.await_count == 0

    @pytest.mark.asyncio
    async def test_verification_is_idempotent(
        self, strategy, evm_client, intent_service, sample_eth_address, sender_address
    ):
        log = _transfer_log(BASE_USDC, sender_address, DEPOSIT_ADDRESS, 9_980_000)
        evm_client.wait_for_receipt.side_effect = None
        evm_client.wait_for_receipt.return_value = TransactionReceipt(tx_hash=DEPOSIT_HASH, status=1, logs=[log])
        evm_client.get_transaction.return_value = {"to": BASE_USDC}
        request = _request(sample_eth_address, deposit_tx_hash=DEPOSIT_HASH)

        first = await strategy.execute(request)
        second = await strategy.execute(request)
        await strategy.drain_notifications()

        assert first.to_dict() == second.to_dict()
        assert evm_client.send_contract_call.await_count == 0
        assert intent_service.submit_deposit.await_count == 2

    @pytest.mark.asyncio
    async def test_reverted_deposit(self, strategy, evm_client, intent_service, sample_eth_address):
        evm_client.wait_for_receipt.side_effect = ReceiptTimeoutError(DEPOSIT_HASH, 1, chain="base")
        result = await strategy.execute(_request(sample_eth_address, deposit_tx_hash=DEPOSIT_HASH))

        assert result.success is False
        assert result.transaction_hash == DEPOSIT_HASH
        assert "Deposit verification failed" in result.error_reason
        assert intent_service.submit_deposit.await_count == 0

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, strategy, evm_client, sample_eth_address):
        evm_client.get_transaction.return_value = None
        result = await strategy.execute(_request(sample_eth_address, deposit_tx_hash=DEPOSIT_HASH))
        assert result.success is False
        assert "not found" in result.error_reason

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_result(
        self, strategy, evm_client, intent_service, sample_eth_address, sender_address
    ):
        log = _transfer_log(BASE_USDC, sender_address, DEPOSIT_ADDRESS, 9_980_000)
        evm_client.wait_for_receipt.side_effect = None
        evm_client.wait_for_receipt.return_value = TransactionReceipt(tx_hash=DEPOSIT_HASH, status=1, logs=[log])
        evm_client.get_transaction.return_value = {"to": BASE_USDC}
        intent_service.submit_deposit.side_effect = ExternalServiceError("intents", "unavailable", 503)

        result = await strategy.execute(_request(sample_eth_address, deposit_tx_hash=DEPOSIT_HASH))
        await strategy.drain_notifications()

        assert result.success is True
        assert strategy.pending_notifications == 0

    @pytest.mark.asyncio
    async def test_aclose_waits_for_pending_notifications(
        self, strategy, evm_client, intent_service, sample_eth_address, sender_address
    ):
        delivered = []

        async def slow_submit(tx_hash, deposit_address, memo):
            await asyncio.sleep(0.01)
            delivered.append(tx_hash)

        log = _transfer_log(BASE_USDC, sender_address, DEPOSIT_ADDRESS, 9_980_000)
        evm_client.wait_for_receipt.side_effect = None
        evm_client.wait_for_receipt.return_value = TransactionReceipt(tx_hash=DEPOSIT_HASH, status=1, logs=[log])
        evm_client.get_transaction.return_value = {"to": BASE_USDC}
        intent_service.submit_deposit.side_effect = slow_submit

        await strategy.execute(_request(sample_eth_address, deposit_tx_hash=DEPOSIT_HASH))
        await strategy.aclose()

        assert delivered == [DEPOSIT_HASH]
        assert strategy.pending_notifications == 0

    @pytest.mark.asyncio
    async def test_stellar_deposit_with_memo(self, strategy, ledger_client, intent_service, sample_eth_address):
        ledger_client.get_transaction.return_value = LedgerTransaction(
            tx_hash="abc123",
            successful=True,
            memo="4242",
            memo_type="text",
            payments=[LedgerPayment(
                destination=STELLAR_DEPOSIT, amount="10", asset_code="USDC", asset_issuer=STELLAR_USDC_ISSUER,
            )],
        )
        result = await strategy.execute(
            _request(sample_eth_address, source_chain="stellar", dest_chain="base", deposit_tx_hash="abc123")
        )
        await strategy.drain_notifications()

        assert result.success is True
        assert result.data.deposit_address == STELLAR_DEPOSIT
        assert result.data.memo == "4242"
        intent_service.submit_deposit.assert_awaited_once_with("abc123", STELLAR_DEPOSIT, "4242")

    @pytest.mark.asyncio
    async def test_stellar_deposit_without_memo(self, strategy, ledger_client, intent_service, sample_eth_address):
        ledger_client.get_transaction.return_value = LedgerTransaction(
            tx_hash="abc123",
            successful=True,
            payments=[LedgerPayment(
                destination=STELLAR_DEPOSIT, amount="10", asset_code="USDC", asset_issuer=STELLAR_USDC_ISSUER,
            )],
        )
        result = await strategy.execute(
            _request(sample_eth_address, source_chain="stellar", dest_chain="base", deposit_tx_hash="abc123")
        )

        assert result.success is False
        assert "memo" in result.error_reason
        assert intent_service.submit_deposit.await_count == 0

    @pytest.mark.asyncio
    async def test_stellar_payment_of_other_asset_rejected(
        self, strategy, ledger_client, intent_service, sample_eth_address
    ):
        ledger_client.get_transaction.return_value = LedgerTransaction(
            tx_hash="abc123",
            successful=True,
            memo="4242",
            payments=[
                LedgerPayment(destination=STELLAR_DEPOSIT, amount="10"),
                LedgerPayment(destination=STELLAR_DEPOSIT, amount="10", asset_code="USDC", asset_issuer="GFAKEISSUER"),
            ],
        )
        result = await strategy.execute(
            _request(sample_eth_address, source_chain="stellar", dest_chain="base", deposit_tx_hash="abc123")
        )

        assert result.success is False
        assert "no USDC payment in deposit" in result.error_reason
        assert intent_service.submit_deposit.await_count == 0

    @pytest.mark.asyncio
    async def test_stellar_failed_transaction(self, strategy, ledger_client, sample_eth_address):
        ledger_client.get_transaction.return_value = LedgerTransaction(tx_hash="abc123", successful=False)
        result = await strategy.execute(
            _request(sample_eth_address, source_chain="stellar", dest_chain="base", deposit_tx_hash="abc123")
        )
        assert result.success is False
        assert result.transaction_hash == "abc123"

    @pytest.mark.asyncio
    async def test_stellar_transaction_not_found(self, strategy, ledger_client, sample_eth_address):
        ledger_client.get_transaction.return_value = None
        result = await strategy.execute(
            _request(sample_eth_address, source_chain="stellar", dest_chain="base", deposit_tx_hash="abc123")
        )
        assert result.success is False
        assert "not found" in result.error_reason


class TestSignedEnvelope:
    @pytest.mark.asyncio
    async def test_envelope_submitted_on_stellar(self, strategy, ledger_client, intent_service, sample_eth_address):
        ledger_client.submit_envelope.return_value = "stellarhash"
        result = await strategy.execute(_request(
            sample_eth_address, source_chain="stellar", dest_chain="base",
            payment_payload={"signedXDR": "AAAAenvelope"},
        ))

        assert result.success is True
        assert result.transaction_hash == "stellarhash"
        ledger_client.submit_envelope.assert_awaited_once_with("AAAAenvelope")
        assert intent_service.get_quote.await_count == 0

    @pytest.mark.asyncio
    async def test_envelope_rejected_on_evm(self, strategy, ledger_client, sample_eth_address):
        result = await strategy.execute(_request(sample_eth_address, payment_payload={"signedXDR": "AAAA"}))
        assert result.success is False
        assert ledger_client.submit_envelope.await_count == 0

    @pytest.mark.asyncio
    async def test_envelope_submission_failure(self, strategy, ledger_client, sample_eth_address):
        ledger_client.submit_envelope.side_effect = RuntimeError("tx_bad_seq")
        result = await strategy.execute(_request(
            sample_eth_address, source_chain="stellar", dest_chain="base",
            payment_payload={"signedXDR": "AAAA"},
        ))
        assert result.success is False
        assert result.error_reason == "Envelope submission failed: tx_bad_seq"


class TestPreview:
    @pytest.mark.asyncio
    async def test_preview_uses_dry_quote_with_placeholders(self, strategy, intent_service):
        intent_service.get_quote.return_value = IntentQuote(
            deposit_address=None, amount_out="9950000", amount_out_formatted="9.95", min_amount_out="9900000",
        )
        preview = await strategy.preview(_request("0x1", source_chain="stellar", dest_chain="base"))

        assert preview.success is True
        assert preview.estimated_received == "9.95"
        assert preview.min_received == "9.9"
        assert preview.protocol_fee == "0.02"
        quote_request = intent_service.get_quote.await_args.args[0]
        assert quote_request.dry is True
        assert quote_request.refund_to == DUMMY_STELLAR_ADDRESS
        assert quote_request.recipient == DUMMY_EVM_ADDRESS
        assert quote_request.deposit_mode == "MEMO"

    @pytest.mark.asyncio
    async def test_preview_without_memo_chain_uses_default_deposit_mode(self, strategy, intent_service):
        intent_service.get_quote.return_value = IntentQuote(deposit_address=None, amount_out_formatted="9.9")
        await strategy.preview(_request("0x1"))
        assert intent_service.get_quote.await_args.args[0].deposit_mode is None
