"""Exception hierarchy for the settlement engine.

Collaborator clients (chain RPC, attestation, intent and liquidity services)
raise these. Strategies catch them and translate them into a
``SettlementResult``; nothing in this hierarchy is expected to escape
``SettlementRouter.execute``.

All exceptions have:
- error_code: Machine-readable error code (e.g., "VALIDATION_ERROR")
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to a response-friendly dictionary
"""
from __future__ import annotations

from typing import Any, Optional


class SettlementException(Exception):
    """Base exception for all settlement errors."""

    error_code: str = "SETTLEMENT_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class SettlementValidationError(SettlementException):
    """Invalid request data (amounts, addresses, payloads)."""

    error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details)


class UnsupportedRouteError(SettlementException):
    """Chain, token or chain pair not present in the capability registry."""

    error_code = "UNSUPPORTED_ROUTE"


# =============================================================================
# Chain errors
# =============================================================================

class ChainError(SettlementException):
    """Base class for blockchain-related errors."""

    error_code = "CHAIN_ERROR"

    def __init__(
        self,
        message: str,
        chain: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if chain:
            details["chain"] = chain
        self.chain = chain
        super().__init__(message, details=details)


class ChainRPCError(ChainError):
    """RPC node returned an error or could not be reached."""

    error_code = "RPC_ERROR"

    def __init__(
        self,
        message: str,
        chain: Optional[str] = None,
        code: Optional[int] = None,
        data: Any = None,
    ) -> None:
        self.code = code
        self.data = data
        details: dict[str, Any] = {}
        if code is not None:
            details["rpc_code"] = code
        super().__init__(message, chain=chain, details=details)


class TransactionRevertedError(ChainError):
    """A transaction was mined with a failure status."""

    error_code = "TRANSACTION_REVERTED"

    def __init__(self, tx_hash: str, chain: Optional[str] = None, reason: Optional[str] = None) -> None:
        self.tx_hash = tx_hash
        self.reason = reason
        message = f"Transaction {tx_hash} reverted"
        if reason:
            message += f": {reason}"
        super().__init__(message, chain=chain, details={"tx_hash": tx_hash})


class ReceiptTimeoutError(ChainError):
    """No receipt for a transaction within the confirmation deadline."""

    error_code = "RECEIPT_TIMEOUT"

    def __init__(self, tx_hash: str, timeout_seconds: float, chain: Optional[str] = None) -> None:
        self.tx_hash = tx_hash
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Transaction {tx_hash} not confirmed within {timeout_seconds:.0f}s",
            chain=chain,
            details={"tx_hash": tx_hash},
        )


# =============================================================================
# External service errors
# =============================================================================

class ExternalServiceError(SettlementException):
    """An HTTP collaborator (attestation, intents, liquidity) failed."""

    error_code = "EXTERNAL_SERVICE_ERROR"

    def __init__(
        self,
        service: str,
        message: str,
        status_code: Optional[int] = None,
        body: Any = None,
    ) -> None:
        self.service = service
        self.status_code = status_code
        self.body = body
        details: dict[str, Any] = {"service": service}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(f"{service}: {message}", details=details)


class AttestationTimeoutError(ExternalServiceError):
    """Attestation was not available before the deadline."""

    error_code = "ATTESTATION_TIMEOUT"

    def __init__(self, burn_tx_hash: str, timeout_seconds: float) -> None:
        self.burn_tx_hash = burn_tx_hash
        self.timeout_seconds = timeout_seconds
        super().__init__(
            "attestation",
            f"attestation for {burn_tx_hash} not available within {timeout_seconds:.0f}s",
        )


__all__ = [
    "SettlementException",
    "SettlementValidationError",
    "UnsupportedRouteError",
    "ChainError",
    "ChainRPCError",
    "TransactionRevertedError",
    "ReceiptTimeoutError",
    "ExternalServiceError",
    "AttestationTimeoutError",
]
