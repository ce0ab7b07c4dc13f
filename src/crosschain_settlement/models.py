"""Request, result and payload models for the settlement engine.

Payloads and result data are tagged unions keyed by ``kind`` so each
strategy's contract can be checked independently. Payload dicts coming from
older callers (``{"authorization": ..., "signature": ...}``,
``{"signedXDR": ...}``, ``{"type": "STANDARD"}``) carry no ``kind`` and are
classified by shape.
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    SecretStr,
    Tag,
    field_validator,
    model_validator,
)

DEFAULT_TOKEN = "USDC"

# Sentinel transaction hashes. A success result carrying one of these is not
# settled yet: the caller still has to act.
PENDING_USER_DEPOSIT = "PENDING_USER_DEPOSIT"
PENDING_USER_SIGNATURE = "PENDING_USER_SIGNATURE"
DIRECT_TRANSFER_REQUIRED = "DIRECT_TRANSFER_REQUIRED"

PENDING_SENTINELS = frozenset((
    PENDING_USER_DEPOSIT,
    PENDING_USER_SIGNATURE,
    DIRECT_TRANSFER_REQUIRED,
))


class SettlementModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        extra="ignore",
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        """Create model from dictionary."""
        return cls.model_validate(data)


# =============================================================================
# Request payloads
# =============================================================================

class PaymentAuthorization(SettlementModel):
    """EIP-3009 ``transferWithAuthorization`` parameters signed by the payer."""

    from_address: str = Field(
        validation_alias=AliasChoices("from", "from_address"),
        serialization_alias="from",
    )
    to: str
    value: int
    valid_after: int = Field(
        default=0, validation_alias=AliasChoices("validAfter", "valid_after")
    )
    valid_before: int = Field(
        validation_alias=AliasChoices("validBefore", "valid_before")
    )
    nonce: str

    @field_validator("value", "valid_after", "valid_before", mode="before")
    @classmethod
    def coerce_int(cls, value: Any) -> Any:
        if isinstance(value, str):
            return int(value, 0)
        return value


class AuthorizationPayload(SettlementModel):
    kind: Literal["authorization"] = "authorization"
    authorization: PaymentAuthorization
    signature: str


class SignedEnvelopePayload(SettlementModel):
    """A transaction already signed by the user for a non-EVM ledger."""

    kind: Literal["signed_envelope"] = "signed_envelope"
    signed_envelope: str = Field(
        validation_alias=AliasChoices("signed_envelope", "signedXDR", "signed_xdr")
    )


class LegacyStandardPayload(SettlementModel):
    kind: Literal["standard"] = "standard"
    type: Literal["STANDARD"] = "STANDARD"


def _payload_kind(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        if "kind" in value:
            return value["kind"]
        if value.get("type") == "STANDARD":
            return "standard"
        if any(key in value for key in ("signed_envelope", "signedXDR", "signed_xdr")):
            if not value.get("authorization"):
                return "signed_envelope"
        return "authorization"
    return getattr(value, "kind", None)


PaymentPayload = Annotated[
    Union[
        Annotated[AuthorizationPayload, Tag("authorization")],
        Annotated[SignedEnvelopePayload, Tag("signed_envelope")],
        Annotated[LegacyStandardPayload, Tag("standard")],
    ],
    Discriminator(_payload_kind),
]


# =============================================================================
# Request
# =============================================================================

class SettlementRequest(SettlementModel):
    """One bridging intent.

    ``amount`` stays a human-readable decimal string; each strategy converts
    it with the decimals of the asset it actually moves.
    """

    source_chain: str
    dest_chain: str
    source_token: Optional[str] = None
    dest_token: Optional[str] = None
    amount: str
    recipient: str
    sender_address: Optional[str] = None
    facilitator_private_key: Optional[SecretStr] = None
    deposit_tx_hash: Optional[str] = None
    payment_payload: Optional[PaymentPayload] = None

    @field_validator("source_chain", "dest_chain")
    @classmethod
    def normalize_chain(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("amount", mode="before")
    @classmethod
    def amount_as_string(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return str(value)
        return value

    @property
    def resolved_source_token(self) -> str:
        return self.source_token or DEFAULT_TOKEN

    @property
    def resolved_dest_token(self) -> str:
        return self.dest_token or self.resolved_source_token

    @property
    def is_same_chain(self) -> bool:
        return self.source_chain == self.dest_chain

    @property
    def is_same_asset_transfer(self) -> bool:
        """Same chain, and the destination token is unset or equal to the source token."""
        return self.is_same_chain and (
            self.dest_token is None
            or self.dest_token.casefold() == self.resolved_source_token.casefold()
        )

    def facilitator_key(self) -> Optional[str]:
        if self.facilitator_private_key is None:
            return None
        return self.facilitator_private_key.get_secret_value() or None


# =============================================================================
# Result data
# =============================================================================

class AttestationProof(SettlementModel):
    message: str
    attestation: str


class PendingDepositData(SettlementModel):
    """The caller must move ``amount_atomic`` to ``deposit_address`` and resubmit."""

    kind: Literal["pending_deposit"] = "pending_deposit"
    deposit_address: str
    amount_atomic: str
    chain_id: Optional[int] = None
    memo: Optional[str] = None
    source_token: Optional[str] = None


class ApprovalStep(SettlementModel):
    target: str
    data: str
    value: Optional[str] = None


class UnsignedTransactionData(SettlementModel):
    """Transaction the caller signs and submits itself."""

    kind: Literal["unsigned_transaction"] = "unsigned_transaction"
    strategy: str
    route: Optional[str] = None
    tx_target: str
    tx_data: str
    tx_value: Optional[str] = None
    approval_required: Optional[ApprovalStep] = None
    quote: dict[str, Any] = Field(default_factory=dict)


class IntentCompletedData(SettlementModel):
    kind: Literal["intent_completed"] = "intent_completed"
    deposit_tx_hash: str
    deposit_address: Optional[str] = None
    memo: Optional[str] = None
    notification_scheduled: bool = False


class DirectTransferData(SettlementModel):
    kind: Literal["direct_transfer"] = "direct_transfer"
    action: Literal["DIRECT_TRANSFER"] = "DIRECT_TRANSFER"
    amount: str
    token: Optional[str] = None
    recipient: str


ResultData = Annotated[
    Union[PendingDepositData, UnsignedTransactionData, IntentCompletedData, DirectTransferData],
    Field(discriminator="kind"),
]


class SettlementResult(SettlementModel):
    """Outcome of one ``execute`` call.

    The three hash fields are distinct on-chain actions and are populated
    independently, depending on how far the protocol got. ``success=True``
    with an ``error_reason`` means an irreversible step happened but the flow
    did not complete.
    """

    success: bool
    transaction_hash: Optional[str] = None
    burn_transaction_hash: Optional[str] = None
    mint_transaction_hash: Optional[str] = None
    error_reason: Optional[str] = None
    attestation: Optional[AttestationProof] = None
    data: Optional[ResultData] = None
    # Atomic units of the source asset
    fee: Optional[str] = None
    net_amount: Optional[str] = None
    payer: Optional[str] = None
    strategy: Optional[str] = None

    @model_validator(mode="after")
    def failure_has_reason(self) -> "SettlementResult":
        if not self.success and not self.error_reason:
            raise ValueError("a failed settlement result requires error_reason")
        return self

    @property
    def is_pending(self) -> bool:
        return self.success and self.transaction_hash in PENDING_SENTINELS

    @property
    def is_partial(self) -> bool:
        """An irreversible step happened but the flow stopped short."""
        return self.success and self.error_reason is not None and not self.is_pending

    @classmethod
    def failure(cls, reason: str, **fields: Any) -> "SettlementResult":
        return cls(success=False, error_reason=reason, **fields)


class SettlementPreview(SettlementModel):
    """Side-effect free estimate of what a settlement would deliver."""

    success: bool
    strategy: Optional[str] = None
    amount_sent: Optional[str] = None
    protocol_fee: Optional[str] = None
    net_amount: Optional[str] = None
    estimated_received: Optional[str] = None
    min_received: Optional[str] = None
    # DIRECT_TRANSFER_REQUIRED when no strategy runs and the caller moves the funds
    action: Optional[str] = None
    error_reason: Optional[str] = None


__all__ = [
    "DEFAULT_TOKEN",
    "PENDING_USER_DEPOSIT",
    "PENDING_USER_SIGNATURE",
    "DIRECT_TRANSFER_REQUIRED",
    "PENDING_SENTINELS",
    "SettlementModel",
    "PaymentAuthorization",
    "AuthorizationPayload",
    "SignedEnvelopePayload",
    "LegacyStandardPayload",
    "PaymentPayload",
    "SettlementRequest",
    "AttestationProof",
    "PendingDepositData",
    "ApprovalStep",
    "UnsignedTransactionData",
    "IntentCompletedData",
    "DirectTransferData",
    "ResultData",
    "SettlementResult",
    "SettlementPreview",
]
