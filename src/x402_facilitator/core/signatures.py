"""
Signature helpers for ERC-3009 authorizations.

Wallet kind is never declared in an x402 payload, so it is inferred once from
the signature length and threaded through verification and settlement.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import keccak
from hexbytes import HexBytes

__all__ = [
    "CounterfactualWrapper",
    "ERC6492_MAGIC_SUFFIX",
    "EOA_SIGNATURE_LENGTH",
    "SignatureParts",
    "WalletKind",
    "classify_signature",
    "decompose_signature",
    "parse_counterfactual_wrapper",
    "recover_typed_data_signer",
    "to_signature_bytes",
    "typed_data_digest",
]

EOA_SIGNATURE_LENGTH = 65
ERC6492_MAGIC_SUFFIX = bytes.fromhex(
    "6492649264926492649264926492649264926492649264926492649264926492"
)
_ZERO_ADDRESS = "0x" + "00" * 20

SignatureLike = Union[bytes, str]


class WalletKind(str, Enum):
    EOA = "eoa"
    CONTRACT_WALLET = "contract_wallet"


def to_signature_bytes(signature: SignatureLike) -> bytes:
    if isinstance(signature, (bytes, bytearray)):
        return bytes(signature)
    return bytes(HexBytes(signature))


def classify_signature(signature: SignatureLike) -> WalletKind:
    """
    Classify a signature as coming from an EOA or a smart-contract wallet.

    Exactly 65 bytes is the canonical ``r || s || v`` ECDSA encoding; anything
    else is treated as a contract wallet signature.
    """
    if len(to_signature_bytes(signature)) == EOA_SIGNATURE_LENGTH:
        return WalletKind.EOA
    return WalletKind.CONTRACT_WALLET


@dataclass(frozen=True)
class CounterfactualWrapper:
    """ERC-6492 envelope used by wallets that are not deployed yet."""

    factory_address: str
    deploy_calldata: bytes
    inner_signature: bytes

    @property
    def has_deployment_info(self) -> bool:
        return self.factory_address != _ZERO_ADDRESS and len(self.deploy_calldata) > 0


def parse_counterfactual_wrapper(signature: SignatureLike) -> Optional[CounterfactualWrapper]:
    """
    Unpack an ERC-6492 signature.

    Format: ``abi.encode(address factory, bytes calldata, bytes signature)``
    followed by the 32-byte magic suffix. Returns ``None`` when the suffix is
    missing or the envelope does not decode.
    """
    raw = to_signature_bytes(signature)
    if len(raw) <= len(ERC6492_MAGIC_SUFFIX) or not raw.endswith(ERC6492_MAGIC_SUFFIX):
        return None
    try:
        factory, calldata, inner = decode(
            ["address", "bytes", "bytes"], raw[: -len(ERC6492_MAGIC_SUFFIX)]
        )
    except (DecodingError, ValueError):
        return None
    return CounterfactualWrapper(
        factory_address=str(factory).lower(),
        deploy_calldata=bytes(calldata),
        inner_signature=bytes(inner),
    )


@dataclass(frozen=True)
class SignatureParts:
    r: bytes
    s: bytes
    y_parity: int
    v: Optional[int] = None


def decompose_signature(signature: SignatureLike) -> SignatureParts:
    """
    Split a 65-byte ECDSA signature into ``r``, ``s`` and its recovery byte.

    Legacy signatures end in 27/28 and expose ``v`` directly. Compact
    signatures end in the raw parity bit and EIP-155 style signatures in
    ``35 + 2 * chainId + parity``; for both ``v`` is ``None``.
    """
    raw = to_signature_bytes(signature)
    if len(raw) != EOA_SIGNATURE_LENGTH:
        raise ValueError(
            f"Expected a {EOA_SIGNATURE_LENGTH}-byte signature, got {len(raw)} bytes"
        )
    last = raw[64]
    if last in (27, 28):
        return SignatureParts(r=raw[:32], s=raw[32:64], y_parity=last - 27, v=last)
    if last in (0, 1):
        return SignatureParts(r=raw[:32], s=raw[32:64], y_parity=last)
    if last >= 35:
        return SignatureParts(r=raw[:32], s=raw[32:64], y_parity=(last - 35) % 2)
    raise ValueError(f"Invalid recovery byte {last}")


def typed_data_digest(typed_data: Dict[str, Any]) -> bytes:
    """Return the EIP-712 hash that the payer signed."""
    signable = encode_typed_data(full_message=typed_data)
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


def recover_typed_data_signer(typed_data: Dict[str, Any], signature: SignatureLike) -> str:
    # Recover from the same parity settlement submits, whatever the encoding.
    parts = decompose_signature(signature)
    canonical = parts.r + parts.s + bytes([27 + parts.y_parity])
    signable = encode_typed_data(full_message=typed_data)
    return Account.recover_message(signable, signature=canonical)
