"""Chain access: JSON-RPC, EVM and Stellar clients, send serialization."""
from .evm import EvmChainClient, TransactionReceipt, TransactionRequest, address_from_key
from .ledger import LedgerPayment, LedgerTransaction, StellarLedgerClient
from .registry import ChainClientRegistry
from .rpc_client import JsonRpcClient
from .signer_guard import SignerSendGuard

__all__ = [
    "EvmChainClient",
    "TransactionReceipt",
    "TransactionRequest",
    "address_from_key",
    "LedgerPayment",
    "LedgerTransaction",
    "StellarLedgerClient",
    "ChainClientRegistry",
    "JsonRpcClient",
    "SignerSendGuard",
]
