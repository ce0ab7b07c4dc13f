"""Settlement strategies, one per protocol."""
from .attestation_bridge import AttestationBridgeStrategy
from .base import SettlementStrategy, StrategyContext, StrategyKind
from .gasless import GaslessStrategy
from .intent_bridge import IntentBridgeStrategy
from .liquidity_bridge import LiquidityBridgeStrategy
from .standard import StandardBridgeStrategy

__all__ = [
    "StrategyKind",
    "StrategyContext",
    "SettlementStrategy",
    "LiquidityBridgeStrategy",
    "AttestationBridgeStrategy",
    "IntentBridgeStrategy",
    "GaslessStrategy",
    "StandardBridgeStrategy",
]
