"""
Pytest configuration for crosschain_settlement tests.

Chain clients and HTTP services are replaced with mocks; the capability
registry is the real mainnet table.
"""
from __future__ import annotations

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

# Keep a developer's .env and shell from leaking into tests
for _key in [k for k in os.environ if k.startswith("SETTLEMENT_")]:
    del os.environ[_key]

from crosschain_settlement.chain.evm import TransactionReceipt, address_from_key
from crosschain_settlement.chain.signer_guard import SignerSendGuard
from crosschain_settlement.config import SettlementPolicy
from crosschain_settlement.registry import build_default_registry
from crosschain_settlement.strategies import StrategyContext


FACILITATOR_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio for async tests."""
    return "asyncio"


@pytest.fixture
def facilitator_key():
    return FACILITATOR_KEY


@pytest.fixture
def facilitator_address():
    return address_from_key(FACILITATOR_KEY)


@pytest.fixture
def sample_eth_address():
    """Valid Ethereum address for testing."""
    return "0x1234567890123456789012345678901234567890"


@pytest.fixture
def sender_address():
    return "0x9999999999999999999999999999999999999999"


@pytest.fixture
def sample_tx_hash():
    """Valid transaction hash for testing."""
    return "0x" + "a" * 64


@pytest.fixture
def policy():
    """Production fees, no waiting."""
    return SettlementPolicy(
        balance_confirm_delay_seconds=0,
        receipt_timeout_seconds=1,
        attestation_timeout_seconds=1,
        intent_notify_timeout_seconds=1,
    )


@pytest.fixture
def capabilities():
    return build_default_registry()


def make_receipt(tx_hash: str, status: int = 1, logs=None) -> TransactionReceipt:
    return TransactionReceipt(tx_hash=tx_hash, status=status, block_number=100, logs=logs or [])


@pytest.fixture
def evm_client():
    """Mock EVM chain client: every send returns a fresh hash, every receipt succeeds."""
    client = AsyncMock()
    counter = {"n": 0}

    async def send_contract_call(contract, data, private_key, value=0):
        counter["n"] += 1
        return "0x" + f"{counter['n']:064x}"

    async def wait_for_receipt(tx_hash, timeout_seconds=None):
        return make_receipt(tx_hash)

    client.send_contract_call.side_effect = send_contract_call
    client.wait_for_receipt.side_effect = wait_for_receipt
    client.read_balance.return_value = 10**30
    client.get_transaction.return_value = {"to": "0x0000000000000000000000000000000000000001"}
    return client


@pytest.fixture
def ledger_client():
    return AsyncMock()


@pytest.fixture
def clients(evm_client, ledger_client):
    registry = MagicMock()
    registry.evm.return_value = evm_client
    registry.ledger.return_value = ledger_client
    registry.signer_guard = SignerSendGuard()
    registry.aclose = AsyncMock()
    return registry


@pytest.fixture
def attestation_service():
    return AsyncMock()


@pytest.fixture
def intent_service():
    return AsyncMock()


@pytest.fixture
def liquidity_service():
    return AsyncMock()


@pytest.fixture
def context(capabilities, clients, policy, attestation_service, intent_service, liquidity_service):
    return StrategyContext(
        capabilities=capabilities,
        clients=clients,
        policy=policy,
        attestation=attestation_service,
        intents=intent_service,
        liquidity=liquidity_service,
    )
