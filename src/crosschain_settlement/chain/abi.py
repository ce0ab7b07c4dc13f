"""Calldata encoders for the contracts the strategies call.

ERC-20 / EIP-3009 on the token, CCTP V2 ``depositForBurn`` on the
TokenMessenger and ``receiveMessage`` on the MessageTransmitter.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from eth_abi import decode, encode
from eth_utils import (
    function_signature_to_4byte_selector,
    is_address,
    keccak,
    to_bytes,
    to_checksum_address,
)

MAX_UINT256 = 2**256 - 1
ZERO_BYTES32 = b"\x00" * 32

TRANSFER_EVENT_TOPIC = "0x" + keccak(text="Transfer(address,address,uint256)").hex()

_APPROVE = "approve(address,uint256)"
_TRANSFER = "transfer(address,uint256)"
_BALANCE_OF = "balanceOf(address)"
_TRANSFER_WITH_AUTHORIZATION = (
    "transferWithAuthorization(address,address,uint256,uint256,uint256,bytes32,uint8,bytes32,bytes32)"
)
_DEPOSIT_FOR_BURN = "depositForBurn(uint256,uint32,bytes32,address,bytes32,uint256,uint32)"
_RECEIVE_MESSAGE = "receiveMessage(bytes,bytes)"


def _hex_to_bytes(value: str) -> bytes:
    return to_bytes(hexstr=value)


def _call(signature: str, types: Tuple[str, ...], args: Tuple[Any, ...]) -> str:
    selector = function_signature_to_4byte_selector(signature)
    return "0x" + (selector + encode(list(types), list(args))).hex()


def address_to_bytes32(address: str) -> bytes:
    """Left-pad a 20-byte address to 32 bytes (CCTP ``mintRecipient``)."""
    if not is_address(address.lower()):
        raise ValueError(f"Invalid EVM address: {address}")
    return b"\x00" * 12 + _hex_to_bytes(address)


def split_signature(signature: str) -> Tuple[int, bytes, bytes]:
    """Split a 65-byte ``r || s || v`` signature into ``(v, r, s)``."""
    raw = _hex_to_bytes(signature)
    if len(raw) != 65:
        raise ValueError(f"Expected a 65-byte signature, got {len(raw)} bytes")
    r, s, v = raw[:32], raw[32:64], raw[64]
    if v < 27:
        v += 27
    return v, r, s


def encode_approve(spender: str, amount: int) -> str:
    return _call(_APPROVE, ("address", "uint256"), (to_checksum_address(spender), amount))


def encode_transfer(to: str, amount: int) -> str:
    return _call(_TRANSFER, ("address", "uint256"), (to_checksum_address(to), amount))


def encode_balance_of(owner: str) -> str:
    return _call(_BALANCE_OF, ("address",), (to_checksum_address(owner),))


def encode_transfer_with_authorization(
    from_address: str,
    to: str,
    value: int,
    valid_after: int,
    valid_before: int,
    nonce: str,
    signature: str,
) -> str:
    v, r, s = split_signature(signature)
    nonce_bytes = _hex_to_bytes(nonce).rjust(32, b"\x00")
    return _call(
        _TRANSFER_WITH_AUTHORIZATION,
        ("address", "address", "uint256", "uint256", "uint256", "bytes32", "uint8", "bytes32", "bytes32"),
        (
            to_checksum_address(from_address),
            to_checksum_address(to),
            value,
            valid_after,
            valid_before,
            nonce_bytes,
            v,
            r,
            s,
        ),
    )


def encode_deposit_for_burn(
    amount: int,
    destination_domain: int,
    mint_recipient: str,
    burn_token: str,
    max_fee: int,
    min_finality_threshold: int,
    destination_caller: bytes = ZERO_BYTES32,
) -> str:
    """CCTP V2 ``depositForBurn``; a zero ``destinationCaller`` lets anyone relay the mint."""
    return _call(
        _DEPOSIT_FOR_BURN,
        ("uint256", "uint32", "bytes32", "address", "bytes32", "uint256", "uint32"),
        (
            amount,
            destination_domain,
            address_to_bytes32(mint_recipient),
            to_checksum_address(burn_token),
            destination_caller,
            max_fee,
            min_finality_threshold,
        ),
    )


def encode_receive_message(message: str, attestation: str) -> str:
    return _call(
        _RECEIVE_MESSAGE,
        ("bytes", "bytes"),
        (_hex_to_bytes(message), _hex_to_bytes(attestation)),
    )


def decode_uint256(data: str) -> int:
    if data in (None, "", "0x"):
        return 0
    return decode(["uint256"], _hex_to_bytes(data))[0]


def decode_transfer_log(log: Dict[str, Any]) -> Optional[Tuple[str, str, int]]:
    """Decode an ERC-20 ``Transfer`` log into ``(from, to, value)``; ``None`` for other logs."""
    topics = log.get("topics") or []
    if len(topics) != 3 or str(topics[0]).lower() != TRANSFER_EVENT_TOPIC:
        return None
    sender = to_checksum_address("0x" + str(topics[1])[-40:])
    recipient = to_checksum_address("0x" + str(topics[2])[-40:])
    return sender, recipient, decode_uint256(log.get("data", "0x"))


__all__ = [
    "MAX_UINT256",
    "ZERO_BYTES32",
    "TRANSFER_EVENT_TOPIC",
    "address_to_bytes32",
    "split_signature",
    "encode_approve",
    "encode_transfer",
    "encode_balance_of",
    "encode_transfer_with_authorization",
    "encode_deposit_for_burn",
    "encode_receive_message",
    "decode_uint256",
    "decode_transfer_log",
]
