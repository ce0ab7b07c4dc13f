"""HTTP clients for the external attestation, intent and liquidity services."""
from .attestation import AttestationClient
from .intents import IntentClient, IntentQuote, IntentQuoteRequest
from .liquidity import LiquidityClient, LiquidityQuoteParams, find_step, select_route

__all__ = [
    "AttestationClient",
    "IntentClient",
    "IntentQuote",
    "IntentQuoteRequest",
    "LiquidityClient",
    "LiquidityQuoteParams",
    "find_step",
    "select_route",
]
