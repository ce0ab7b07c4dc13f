"""
Cross-chain settlement orchestration.

Routes a settlement request to one protocol (liquidity bridge, CCTP
attestation bridge, NEAR intents, same-chain gasless relay) and reports a
uniform ``SettlementResult``.

Usage:
    from crosschain_settlement import SettlementRequest, build_router

    async with build_router() as router:
        result = await router.execute(SettlementRequest(
            source_chain="base",
            dest_chain="arbitrum",
            amount="10",
            recipient="0x...",
            sender_address="0x...",
            facilitator_private_key="0x...",
        ))
"""

__version__ = "0.4.0"

from .config import SettlementPolicy, SettlementSettings, get_settings
from .exceptions import (
    AttestationTimeoutError,
    ChainError,
    ChainRPCError,
    ExternalServiceError,
    ReceiptTimeoutError,
    SettlementException,
    SettlementValidationError,
    TransactionRevertedError,
    UnsupportedRouteError,
)
from .logging_config import configure_logging, settlement_context
from .models import (
    DIRECT_TRANSFER_REQUIRED,
    PENDING_USER_DEPOSIT,
    PENDING_USER_SIGNATURE,
    AttestationProof,
    AuthorizationPayload,
    DirectTransferData,
    IntentCompletedData,
    PaymentAuthorization,
    PendingDepositData,
    SettlementPreview,
    SettlementRequest,
    SettlementResult,
    SignedEnvelopePayload,
    UnsignedTransactionData,
)
from .registry import CapabilityEntry, CapabilityRegistry, build_default_registry
from .router import SettlementRouter, TransferRouter, build_router, build_transfer_router
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

__all__ = [
    "__version__",
    # Config
    "SettlementSettings",
    "SettlementPolicy",
    "get_settings",
    # Exceptions
    "SettlementException",
    "SettlementValidationError",
    "UnsupportedRouteError",
    "ChainError",
    "ChainRPCError",
    "TransactionRevertedError",
    "ReceiptTimeoutError",
    "ExternalServiceError",
    "AttestationTimeoutError",
    # Logging
    "configure_logging",
    "settlement_context",
    # Models
    "PENDING_USER_DEPOSIT",
    "PENDING_USER_SIGNATURE",
    "DIRECT_TRANSFER_REQUIRED",
    "PaymentAuthorization",
    "AuthorizationPayload",
    "SignedEnvelopePayload",
    "SettlementRequest",
    "SettlementResult",
    "SettlementPreview",
    "AttestationProof",
    "PendingDepositData",
    "UnsignedTransactionData",
    "IntentCompletedData",
    "DirectTransferData",
    # Registry
    "CapabilityEntry",
    "CapabilityRegistry",
    "build_default_registry",
    # Routing
    "SettlementRouter",
    "TransferRouter",
    "build_router",
    "build_transfer_router",
    # Strategies
    "StrategyKind",
    "StrategyContext",
    "SettlementStrategy",
    "LiquidityBridgeStrategy",
    "AttestationBridgeStrategy",
    "IntentBridgeStrategy",
    "GaslessStrategy",
    "StandardBridgeStrategy",
]
