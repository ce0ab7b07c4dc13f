"""Chain capability registry.

Static, read-only table mapping a chain key to the settlement protocols it
supports. Built once at startup and shared by every strategy; nothing mutates
it afterwards, so concurrent reads need no locking.

References:
- CCTP V2 domains and contracts: https://developers.circle.com/cctp/evm-smart-contracts
- 1Click asset ids: https://docs.near-intents.org/near-intents/integration/distribution-channels/1click-api
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Mapping, Optional, Tuple

from .exceptions import UnsupportedRouteError
from .models import DEFAULT_TOKEN

NATIVE_TOKEN_ADDRESS = "0x0000000000000000000000000000000000000000"

# CCTP V2 uses the same contract addresses on every EVM chain
TOKEN_MESSENGER_V2 = "0x28b5a0e9C621a5BadaA536219b3a228C8168cf5d"
MESSAGE_TRANSMITTER_V2 = "0x81D40F21F12A8F0E3252Bccb954D722d4c464B64"


class ChainKind(str, Enum):
    EVM = "evm"
    STELLAR = "stellar"


@dataclass(frozen=True)
class AssetInfo:
    symbol: str
    decimals: int
    address: str
    supports_liquidity_bridge: bool = False

    @property
    def is_native(self) -> bool:
        return self.address in (NATIVE_TOKEN_ADDRESS, "native")


@dataclass(frozen=True)
class AttestationBridgeInfo:
    domain: int
    token_messenger: str = TOKEN_MESSENGER_V2
    message_transmitter: str = MESSAGE_TRANSMITTER_V2
    canonical_asset: str = DEFAULT_TOKEN


@dataclass(frozen=True)
class IntentAsset:
    symbol: str
    asset_id: str
    decimals: int


@dataclass(frozen=True)
class CapabilityEntry:
    """Everything the engine knows about one chain."""

    key: str
    display_name: str
    kind: ChainKind
    rpc_url: str
    chain_id: Optional[int] = None
    rpc_fallback_urls: Tuple[str, ...] = ()
    assets: Tuple[AssetInfo, ...] = ()
    attestation: Optional[AttestationBridgeInfo] = None
    intent_assets: Tuple[IntentAsset, ...] = ()
    intent_needs_memo: bool = False
    liquidity_bridge: bool = False

    @property
    def is_evm(self) -> bool:
        return self.kind == ChainKind.EVM

    @property
    def rpc_urls(self) -> Tuple[str, ...]:
        """Primary endpoint first, then fallbacks in failover order."""
        return (self.rpc_url,) + tuple(url for url in self.rpc_fallback_urls if url != self.rpc_url)

    @property
    def supports_intents(self) -> bool:
        return bool(self.intent_assets)

    def asset(self, symbol: str) -> Optional[AssetInfo]:
        for asset in self.assets:
            if asset.symbol == symbol:
                return asset
        folded = symbol.casefold()
        for asset in self.assets:
            if asset.symbol.casefold() == folded:
                return asset
        return None

    def intent_asset(self, symbol: str) -> Optional[IntentAsset]:
        for asset in self.intent_assets:
            if asset.symbol == symbol:
                return asset
        folded = symbol.casefold()
        for asset in self.intent_assets:
            if asset.symbol.casefold() == folded:
                return asset
        return None


class CapabilityRegistry:
    """Read-only lookup of capability entries by chain key (case-insensitive)."""

    def __init__(self, entries: Iterable[CapabilityEntry]):
        table: Dict[str, CapabilityEntry] = {}
        for entry in entries:
            key = entry.key.lower()
            if key in table:
                raise ValueError(f"Duplicate capability entry for chain {entry.key}")
            table[key] = entry
        self._entries: Mapping[str, CapabilityEntry] = MappingProxyType(table)

    def get(self, chain_key: str) -> Optional[CapabilityEntry]:
        return self._entries.get(chain_key.strip().lower())

    def lookup(self, chain_key: str) -> CapabilityEntry:
        entry = self.get(chain_key)
        if entry is None:
            raise UnsupportedRouteError(
                f"Unsupported chain: {chain_key}",
                details={"chain": chain_key, "supported": sorted(self._entries)},
            )
        return entry

    def keys(self) -> Tuple[str, ...]:
        return tuple(self._entries)

    def __contains__(self, chain_key: object) -> bool:
        return isinstance(chain_key, str) and self.get(chain_key) is not None

    def __iter__(self) -> Iterator[CapabilityEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


def _usdc(address: str, decimals: int = 6, liquidity: bool = False) -> AssetInfo:
    return AssetInfo(DEFAULT_TOKEN, decimals, address, supports_liquidity_bridge=liquidity)


def _native(symbol: str) -> AssetInfo:
    return AssetInfo(symbol, 18, NATIVE_TOKEN_ADDRESS)


def _hot(chain_code: str, symbol: str, suffix: str, decimals: int = 6) -> IntentAsset:
    return IntentAsset(symbol, f"nep245:v2_1.omni.hot.tg:{chain_code}_{suffix}", decimals)


def build_default_registry() -> CapabilityRegistry:
    """Mainnet capability table."""
    return CapabilityRegistry([
        CapabilityEntry(
            key="base",
            display_name="Base",
            kind=ChainKind.EVM,
            chain_id=8453,
            rpc_url="https://mainnet.base.org",
            rpc_fallback_urls=("https://base-rpc.publicnode.com", "https://base.llamarpc.com"),
            assets=(
                _usdc("0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"),
                _native("ETH"),
            ),
            attestation=AttestationBridgeInfo(domain=6),
            intent_assets=(
                IntentAsset(DEFAULT_TOKEN, "nep141:base-0x833589fcd6edb6e08f4c7c32d4f71b54bda02913.omft.near", 6),
                IntentAsset("ETH", "nep141:base.omft.near", 18),
            ),
        ),
        CapabilityEntry(
            key="optimism",
            display_name="Optimism",
            kind=ChainKind.EVM,
            chain_id=10,
            rpc_url="https://mainnet.optimism.io",
            rpc_fallback_urls=("https://optimism-rpc.publicnode.com",),
            assets=(
                _usdc("0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85"),
                AssetInfo("USDT", 6, "0x94b008aA00579c1307B0EF2c499aD98a8ce58e58"),
                AssetInfo("OP", 18, "0x4200000000000000000000000000000000000042"),
                _native("ETH"),
            ),
            attestation=AttestationBridgeInfo(domain=2),
            intent_assets=(
                _hot("10", DEFAULT_TOKEN, "A2ewyUyDp6qsue1jqZsGypkCxRJ"),
                _hot("10", "USDT", "359RPSJVdTxwTJT9TyGssr2rFoWo"),
                _hot("10", "OP", "vLAiSt9KfUGKpw5cD3vsSyNYBo7", 18),
                _hot("10", "ETH", "11111111111111111111", 18),
            ),
        ),
        CapabilityEntry(
            key="arbitrum",
            display_name="Arbitrum",
            kind=ChainKind.EVM,
            chain_id=42161,
            rpc_url="https://arb1.arbitrum.io/rpc",
            rpc_fallback_urls=("https://arbitrum-one-rpc.publicnode.com",),
            assets=(
                _usdc("0xaf88d065e77c8cC2239327C5EDb3A432268e5831"),
                AssetInfo("USDT", 6, "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9"),
                AssetInfo("ARB", 18, "0x912CE59144191C1204E64559FE8253a0e49E6548"),
                _native("ETH"),
            ),
            attestation=AttestationBridgeInfo(domain=3),
            intent_assets=(
                IntentAsset(DEFAULT_TOKEN, "nep141:arb-0xaf88d065e77c8cc2239327c5edb3a432268e5831.omft.near", 6),
                IntentAsset("USDT", "nep141:arb-0xfd086bc7cd5c481dcc9c85ebe478a1c0b69fcbb9.omft.near", 6),
                IntentAsset("ETH", "nep141:arb.omft.near", 18),
                IntentAsset("ARB", "nep141:arb-0x912ce59144191c1204e64559fe8253a0e49e6548.omft.near", 18),
            ),
        ),
        CapabilityEntry(
            key="polygon",
            display_name="Polygon",
            kind=ChainKind.EVM,
            chain_id=137,
            rpc_url="https://polygon-rpc.com",
            rpc_fallback_urls=("https://polygon-bor-rpc.publicnode.com",),
            assets=(
                _usdc("0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359"),
                AssetInfo("USDT", 6, "0xc2132D05D31c914a87C6611C10748AEb04B58e8F"),
                _native("POL"),
            ),
            attestation=AttestationBridgeInfo(domain=7),
            intent_assets=(
                _hot("137", DEFAULT_TOKEN, "qiStmoQJDQPTebaPjgx5VBxZv6L"),
                _hot("137", "POL", "11111111111111111111", 18),
                _hot("137", "USDT", "3hpYoaLtt8MP1Z2GH1U473DMRKgr"),
            ),
        ),
        CapabilityEntry(
            key="avalanche",
            display_name="Avalanche",
            kind=ChainKind.EVM,
            chain_id=43114,
            rpc_url="https://api.avax.network/ext/bc/C/rpc",
            rpc_fallback_urls=("https://avalanche-c-chain-rpc.publicnode.com",),
            assets=(
                _usdc("0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E"),
                _native("AVAX"),
                AssetInfo("USDT", 6, "0x9702230A8Ea53601f5cD2dc00fDBc13d4dF4A8c7"),
            ),
            attestation=AttestationBridgeInfo(domain=1),
            intent_assets=(
                _hot("43114", DEFAULT_TOKEN, "3atVJH3r5c4GqiSYmg9fECvjc47o"),
                _hot("43114", "AVAX", "11111111111111111111", 18),
                _hot("43114", "USDT", "372BeH7ENZieCaabwkbWkBiTTgXp"),
            ),
        ),
        CapabilityEntry(
            key="unichain",
            display_name="Unichain",
            kind=ChainKind.EVM,
            chain_id=130,
            rpc_url="https://mainnet.unichain.org",
            rpc_fallback_urls=("https://unichain-rpc.publicnode.com",),
            assets=(_usdc("0x078D782b760474a361dDA0AF3839290b0EF57AD6"),),
            attestation=AttestationBridgeInfo(domain=10),
        ),
        CapabilityEntry(
            key="world_chain",
            display_name="World Chain",
            kind=ChainKind.EVM,
            chain_id=480,
            rpc_url="https://worldchain-mainnet.g.alchemy.com/public",
            assets=(_usdc("0x79A02482A880bCe3F13E09da970dC34dB4cD24D1"),),
            attestation=AttestationBridgeInfo(domain=14),
        ),
        CapabilityEntry(
            key="monad",
            display_name="Monad",
            kind=ChainKind.EVM,
            chain_id=143,
            rpc_url="https://rpc.monad.xyz",
            assets=(
                _usdc("0x754704Bc059F8C67012fEd69BC8A327a5aafb603"),
                AssetInfo("USDT", 6, "0xe7cd86e13AC4309349F30B3435a9d337750fC82D"),
                _native("MON"),
            ),
            attestation=AttestationBridgeInfo(domain=15),
            intent_assets=(
                _hot("143", DEFAULT_TOKEN, "2dmLwYWkCQKyTjeUPAsGJuiVLbFx"),
                _hot("143", "USDT", "4EJiJxSALvGoTZbnc8K7Ft9533et"),
                _hot("143", "MON", "11111111111111111111", 18),
            ),
        ),
        CapabilityEntry(
            key="bnb",
            display_name="BNB Smart Chain",
            kind=ChainKind.EVM,
            chain_id=56,
            rpc_url="https://bsc-dataseed.binance.org",
            rpc_fallback_urls=("https://bsc-rpc.publicnode.com", "https://bsc-dataseed1.defibit.io"),
            assets=(
                _usdc("0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d", decimals=18),
                AssetInfo("USDT", 18, "0x55d398326f99059fF775485246999027B3197955"),
                _native("BNB"),
            ),
            intent_assets=(
                _hot("56", DEFAULT_TOKEN, "2w93GqMcEmQFDru84j3HZZWt557r", 18),
                _hot("56", "USDT", "2CMMyVTGZkeyNZTSvS5sarzfir6g", 18),
                _hot("56", "BNB", "11111111111111111111", 18),
            ),
        ),
        CapabilityEntry(
            key="gnosis",
            display_name="Gnosis",
            kind=ChainKind.EVM,
            chain_id=100,
            rpc_url="https://rpc.gnosischain.com",
            rpc_fallback_urls=("https://gnosis-rpc.publicnode.com",),
            assets=(
                _usdc("0x2a22f9c3b484c3629090FeED35F17Ff8F88f76F0"),
                AssetInfo("USDT", 6, "0x4ECaBa5870353805a9F068101A40E0f32ed605C6"),
                AssetInfo("EURe", 18, "0x420CA0f9B9b604cE0fd9C18EF134C705e5Fa3430"),
                AssetInfo("GNO", 18, "0x9C58BAcC331c9aa871AFD802DB6379a98e80CEdb"),
                AssetInfo("WETH", 18, "0x6A023CCd1ff6F2045C3309768eAd9E68F978f6e1"),
                _native("XDAI"),
            ),
            intent_assets=(
                IntentAsset(DEFAULT_TOKEN, "nep141:gnosis-0x2a22f9c3b484c3629090feed35f17ff8f88f76f0.omft.near", 6),
                IntentAsset("USDT", "nep141:gnosis-0x4ecaba5870353805a9f068101a40e0f32ed605c6.omft.near", 6),
                IntentAsset("EURe", "nep141:gnosis-0x420ca0f9b9b604ce0fd9c18ef134c705e5fa3430.omft.near", 18),
                IntentAsset("GNO", "nep141:gnosis-0x9c58bacc331c9aa871afd802db6379a98e80cedb.omft.near", 18),
                IntentAsset("WETH", "nep141:gnosis-0x6a023ccd1ff6f2045c3309768ead9e68f978f6e1.omft.near", 18),
                IntentAsset("XDAI", "nep141:gnosis.omft.near", 18),
            ),
        ),
        CapabilityEntry(
            key="stellar",
            display_name="Stellar",
            kind=ChainKind.STELLAR,
            rpc_url="https://horizon.stellar.org",
            assets=(
                AssetInfo(DEFAULT_TOKEN, 7, "GA5ZSEJYB37JRC5AVCIA5MOP4RHTM335X2KGX3IHOJAPP5RE34K4KZVN"),
                AssetInfo("XLM", 7, "native"),
            ),
            intent_assets=(
                _hot("1100", DEFAULT_TOKEN, "111bzQBB65GxAPAVoxqmMcgYo5oS3txhqs1Uh1cgahKQUeTUq1TJu", 7),
                _hot("1100", "XLM", "111bzQBB5v7AhLyPMDwS8uJgQV24KaAPXtwyVWu2KXbbfQU6NXRCz", 6),
            ),
            intent_needs_memo=True,
        ),
    ])


__all__ = [
    "NATIVE_TOKEN_ADDRESS",
    "TOKEN_MESSENGER_V2",
    "MESSAGE_TRANSMITTER_V2",
    "ChainKind",
    "AssetInfo",
    "AttestationBridgeInfo",
    "IntentAsset",
    "CapabilityEntry",
    "CapabilityRegistry",
    "build_default_registry",
]
