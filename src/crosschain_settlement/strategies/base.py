"""Settlement strategy contract and shared execution context."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from ..config import SettlementPolicy
from ..models import SettlementPreview, SettlementRequest, SettlementResult
from ..registry import CapabilityRegistry

if TYPE_CHECKING:
    from ..chain.registry import ChainClientRegistry
    from ..chain.signer_guard import SignerSendGuard
    from ..services.attestation import AttestationClient
    from ..services.intents import IntentClient
    from ..services.liquidity import LiquidityClient


class StrategyKind(str, Enum):
    """Closed set of settlement protocols."""
    LIQUIDITY_BRIDGE = "liquidity_bridge"
    ATTESTATION_BRIDGE = "attestation_bridge"
    INTENT_BRIDGE = "intent_bridge"
    GASLESS = "gasless"
    STANDARD = "standard"


@dataclass
class StrategyContext:
    """Collaborators shared by every strategy of one router."""

    capabilities: CapabilityRegistry
    clients: "ChainClientRegistry"
    policy: SettlementPolicy
    attestation: Optional["AttestationClient"] = None
    intents: Optional["IntentClient"] = None
    liquidity: Optional["LiquidityClient"] = None

    @property
    def signer_guard(self) -> "SignerSendGuard":
        return self.clients.signer_guard


class SettlementStrategy(ABC):
    """
    One settlement protocol.

    ``can_handle`` is a pure capability check (no I/O). ``execute`` never
    raises for protocol failures: every error becomes a ``SettlementResult``.
    Only cancellation propagates.
    """

    kind: StrategyKind
    name: str

    def __init__(self, context: StrategyContext):
        self.context = context

    @property
    def policy(self) -> SettlementPolicy:
        return self.context.policy

    @abstractmethod
    def can_handle(self, request: SettlementRequest) -> bool:
        ...

    @abstractmethod
    async def execute(self, request: SettlementRequest) -> SettlementResult:
        ...

    async def preview(self, request: SettlementRequest) -> SettlementPreview:
        return self._preview_failure(f"{self.name} does not support previews")

    def _result(self, success: bool, **fields: Any) -> SettlementResult:
        return SettlementResult(success=success, strategy=self.name, **fields)

    def _failure(self, reason: str, **fields: Any) -> SettlementResult:
        return SettlementResult.failure(reason, strategy=self.name, **fields)

    def _preview_failure(self, reason: str) -> SettlementPreview:
        return SettlementPreview(success=False, strategy=self.name, error_reason=reason)

    async def aclose(self) -> None:
        """Release per-strategy resources; called once by the router on shutdown."""
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} kind={self.kind.value}>"


__all__ = [
    "StrategyKind",
    "StrategyContext",
    "SettlementStrategy",
]
