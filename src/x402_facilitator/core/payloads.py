"""
Helpers for constructing and signing exact-scheme payment payloads.

The typed-data builder is shared by clients (signing) and the facilitator
(signature recovery) so both sides always hash the same structure.
"""

from __future__ import annotations

import base64
import binascii
import json
import secrets
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import to_checksum_address

from .types import (
    ErrorReason,
    ExactEvmAuthorization,
    ExactEvmPayload,
    PayloadError,
    PaymentPayload,
    PaymentRequirements,
    SCHEME_EXACT,
    X402_VERSION,
)

__all__ = [
    "TRANSFER_WITH_AUTHORIZATION_TYPES",
    "TokenDomain",
    "build_facilitator_request",
    "build_payment_payload",
    "build_transfer_typed_data",
    "decode_payment_header",
    "encode_payment_header",
    "sign_authorization",
]

TRANSFER_WITH_AUTHORIZATION_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ],
}


@dataclass(frozen=True)
class TokenDomain:
    """EIP-712 domain of an ERC-3009 token contract."""

    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": to_checksum_address(self.verifying_contract),
        }


def build_transfer_typed_data(
    domain: TokenDomain,
    authorization: ExactEvmAuthorization,
) -> Dict[str, Any]:
    return {
        "types": TRANSFER_WITH_AUTHORIZATION_TYPES,
        "primaryType": "TransferWithAuthorization",
        "domain": domain.as_dict(),
        "message": authorization.to_message(),
    }


def sign_authorization(
    private_key: str,
    requirements: PaymentRequirements,
    domain: TokenDomain,
    *,
    now: Optional[int] = None,
    nonce: Optional[bytes] = None,
    backdate_seconds: int = 600,
    value: Optional[int] = None,
) -> ExactEvmPayload:
    """
    Construct and sign the ERC-3009 TransferWithAuthorization payload.

    The authorization is valid from ``now - backdate_seconds`` until
    ``now + requirements.max_timeout_seconds``.
    """
    now = int(time.time()) if now is None else now
    nonce_bytes = nonce if nonce is not None else secrets.token_bytes(32)
    account = Account.from_key(private_key)

    authorization = ExactEvmAuthorization(
        from_address=account.address,
        to=to_checksum_address(requirements.pay_to),
        value=str(requirements.max_amount if value is None else value),
        valid_after=str(now - backdate_seconds),
        valid_before=str(now + requirements.max_timeout_seconds),
        nonce="0x" + nonce_bytes.hex(),
    )

    signable = encode_typed_data(
        full_message=build_transfer_typed_data(domain, authorization)
    )
    signature = account.sign_message(signable).signature

    return ExactEvmPayload(
        signature="0x" + bytes(signature).hex(),
        authorization=authorization,
    )


def build_payment_payload(
    private_key: str,
    requirements: PaymentRequirements,
    domain: TokenDomain,
    *,
    now: Optional[int] = None,
    nonce: Optional[bytes] = None,
) -> PaymentPayload:
    return PaymentPayload(
        scheme=SCHEME_EXACT,
        network=requirements.network,
        payload=sign_authorization(
            private_key, requirements, domain, now=now, nonce=nonce
        ),
    )


def build_facilitator_request(
    payload: PaymentPayload,
    requirements: PaymentRequirements,
) -> Dict[str, Any]:
    """Build the body accepted by a facilitator's ``/verify`` and ``/settle``."""
    return {
        "x402Version": X402_VERSION,
        "paymentPayload": payload.to_dict(),
        "paymentRequirements": requirements.to_dict(),
    }


def encode_payment_header(payload: PaymentPayload) -> str:
    """Encode a payload for the ``X-PAYMENT`` request header."""
    raw = json.dumps(payload.to_dict(), separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_payment_header(header: str) -> PaymentPayload:
    try:
        decoded = base64.b64decode(header.strip(), validate=True)
        values = json.loads(decoded)
    except (binascii.Error, ValueError) as exc:
        raise PayloadError(
            ErrorReason.INVALID_PAYLOAD, "X-PAYMENT header is not base64 encoded JSON"
        ) from exc
    if not isinstance(values, dict):
        raise PayloadError(ErrorReason.INVALID_PAYLOAD, "X-PAYMENT header must hold an object")
    return PaymentPayload.from_dict(values)
