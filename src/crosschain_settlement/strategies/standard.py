"""Legacy lock-and-release bridge. Kept only to reject old callers clearly."""
from __future__ import annotations

import logging

from ..models import SettlementRequest, SettlementResult
from .base import SettlementStrategy, StrategyKind

logger = logging.getLogger(__name__)

DEPRECATION_MESSAGE = "Standard Bridge Strategy is deprecated. Please use Near Intents or CCTP."


class StandardBridgeStrategy(SettlementStrategy):
    kind = StrategyKind.STANDARD
    name = "StandardBridge"

    def can_handle(self, request: SettlementRequest) -> bool:
        payload = request.payment_payload
        return payload is not None and payload.kind == "standard"

    async def execute(self, request: SettlementRequest) -> SettlementResult:
        logger.warning(f"Rejected legacy standard-bridge request {request.source_chain} -> {request.dest_chain}")
        return self._failure(DEPRECATION_MESSAGE)


__all__ = ["DEPRECATION_MESSAGE", "StandardBridgeStrategy"]
