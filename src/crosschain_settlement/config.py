"""Configuration surface for the settlement engine.

``SettlementSettings`` is loaded from the environment (prefix
``SETTLEMENT_``). Strategies never read settings directly; they receive a
``SettlementPolicy`` derived from them, which tests can build by hand.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache
from typing import Dict, List, Literal, Tuple

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .amounts import to_atomic

CIRCLE_ATTESTATION_API_URL = "https://iris-api.circle.com/v2/messages"
CIRCLE_ATTESTATION_API_SANDBOX_URL = "https://iris-api-sandbox.circle.com/v2/messages"
ONE_CLICK_API_URL = "https://1click.chaindefuser.com"
STARGATE_QUOTES_API_URL = "https://stargate.finance/api/v1/quotes"


class SettlementSettings(BaseSettings):
    """Main settlement engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SETTLEMENT_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    environment: Literal["development", "production"] = "production"

    # Fees
    gasless_fee: Decimal = Decimal("0.01")
    bridge_fee: Decimal = Decimal("0.02")

    # Attestation bridge
    balance_confirm_attempts: int = 5
    balance_confirm_delay_seconds: float = 2.0
    attestation_api_url: str = CIRCLE_ATTESTATION_API_URL
    attestation_timeout_seconds: float = 120.0
    attestation_poll_interval_seconds: float = 5.0
    attestation_min_finality_threshold: int = 1000
    attestation_min_max_fee_units: int = 200

    # Chain
    receipt_timeout_seconds: float = 120.0
    receipt_poll_interval_seconds: float = 2.0
    rpc_url_overrides: Dict[str, str] = Field(default_factory=dict)

    # Intent bridge
    intent_api_url: str = ONE_CLICK_API_URL
    intent_api_token: SecretStr = SecretStr("")
    intent_slippage_bps: int = 100
    intent_quote_deadline_seconds: int = 6 * 60 * 60
    intent_quote_wait_ms: int = 10_000
    intent_referral: str = "1llet"
    intent_notify_timeout_seconds: float = 15.0

    # Liquidity bridge
    liquidity_api_url: str = STARGATE_QUOTES_API_URL
    liquidity_slippage_bps: int = 50
    liquidity_preferred_route: str = "stargate/v2/taxi"
    liquidity_override_pairs: List[str] = Field(
        default_factory=lambda: ["base:avalanche:USDC"]
    )

    http_timeout_seconds: float = 30.0

    @field_validator("balance_confirm_attempts")
    @classmethod
    def at_least_one_attempt(cls, value: int) -> int:
        if value < 1:
            raise ValueError("balance_confirm_attempts must be >= 1")
        return value

    @field_validator("liquidity_override_pairs")
    @classmethod
    def well_formed_pairs(cls, value: List[str]) -> List[str]:
        for pair in value:
            if len(pair.split(":")) != 3:
                raise ValueError(f"override pair must be 'source:dest:TOKEN', got {pair!r}")
        return value

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@dataclass(frozen=True)
class SettlementPolicy:
    """Policy values consumed by strategies.

    Attributes:
        development: Zeroes the relay and intent-bridge fees
        gasless_fee: Flat relay fee in human units of the relayed token
        bridge_fee: Protocol fee in human units of the source asset
        balance_confirm_attempts: Balance polls after a verified deposit
        attestation_timeout_seconds: Overall attestation retrieval deadline
    """

    development: bool = False
    gasless_fee: Decimal = Decimal("0.01")
    bridge_fee: Decimal = Decimal("0.02")
    balance_confirm_attempts: int = 5
    balance_confirm_delay_seconds: float = 2.0
    attestation_timeout_seconds: float = 120.0
    attestation_min_finality_threshold: int = 1000
    attestation_min_max_fee_units: int = 200
    receipt_timeout_seconds: float = 120.0
    intent_slippage_bps: int = 100
    intent_quote_deadline_seconds: int = 6 * 60 * 60
    intent_quote_wait_ms: int = 10_000
    intent_referral: str = "1llet"
    intent_notify_timeout_seconds: float = 15.0
    liquidity_slippage_bps: int = 50
    liquidity_preferred_route: str = "stargate/v2/taxi"
    liquidity_override_pairs: Tuple[Tuple[str, str, str], ...] = field(
        default=(("base", "avalanche", "USDC"),)
    )

    @property
    def relay_fee(self) -> Decimal:
        """Flat fee charged by the same-chain relay, human units of the relayed token."""
        return Decimal("0") if self.development else self.gasless_fee

    def relay_fee_units(self, decimals: int) -> int:
        return to_atomic(self.relay_fee, decimals)

    @property
    def intent_fee(self) -> Decimal:
        """Intent-bridge protocol fee in human units of the source asset."""
        return Decimal("0") if self.development else self.bridge_fee

    @classmethod
    def from_settings(cls, settings: SettlementSettings) -> "SettlementPolicy":
        pairs = tuple(
            tuple(part.strip() for part in pair.split(":"))
            for pair in settings.liquidity_override_pairs
        )
        return cls(
            development=settings.is_development,
            gasless_fee=settings.gasless_fee,
            bridge_fee=settings.bridge_fee,
            balance_confirm_attempts=settings.balance_confirm_attempts,
            balance_confirm_delay_seconds=settings.balance_confirm_delay_seconds,
            attestation_timeout_seconds=settings.attestation_timeout_seconds,
            attestation_min_finality_threshold=settings.attestation_min_finality_threshold,
            attestation_min_max_fee_units=settings.attestation_min_max_fee_units,
            receipt_timeout_seconds=settings.receipt_timeout_seconds,
            intent_slippage_bps=settings.intent_slippage_bps,
            intent_quote_deadline_seconds=settings.intent_quote_deadline_seconds,
            intent_quote_wait_ms=settings.intent_quote_wait_ms,
            intent_referral=settings.intent_referral,
            intent_notify_timeout_seconds=settings.intent_notify_timeout_seconds,
            liquidity_slippage_bps=settings.liquidity_slippage_bps,
            liquidity_preferred_route=settings.liquidity_preferred_route,
            liquidity_override_pairs=pairs,  # type: ignore[arg-type]
        )


@lru_cache()
def get_settings() -> SettlementSettings:
    return SettlementSettings()


__all__ = [
    "CIRCLE_ATTESTATION_API_URL",
    "CIRCLE_ATTESTATION_API_SANDBOX_URL",
    "ONE_CLICK_API_URL",
    "STARGATE_QUOTES_API_URL",
    "SettlementSettings",
    "SettlementPolicy",
    "get_settings",
]
