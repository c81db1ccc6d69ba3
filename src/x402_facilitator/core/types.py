"""
Wire-level value objects for the x402 exact scheme on EVM networks.

Every object is immutable and converts to and from the camelCase JSON shape
used by resource servers and facilitators.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from eth_utils import is_hex_address, to_checksum_address

__all__ = [
    "ErrorReason",
    "ExactEvmAuthorization",
    "ExactEvmPayload",
    "PayloadError",
    "PaymentPayload",
    "PaymentRequirements",
    "SCHEME_EXACT",
    "SettleResult",
    "UINT256_MAX",
    "VerifyResult",
    "X402_VERSION",
    "parse_uint",
]

SCHEME_EXACT = "exact"
X402_VERSION = 1
UINT256_MAX = 2**256 - 1


class ErrorReason(str, Enum):
    UNSUPPORTED_SCHEME = "unsupported_scheme"
    INVALID_NETWORK = "invalid_network"
    INVALID_SIGNATURE = "invalid_exact_evm_payload_signature"
    RECIPIENT_MISMATCH = "invalid_exact_evm_payload_recipient_mismatch"
    VALID_BEFORE = "invalid_exact_evm_payload_authorization_valid_before"
    VALID_AFTER = "invalid_exact_evm_payload_authorization_valid_after"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INSUFFICIENT_VALUE = "invalid_exact_evm_payload_authorization_value"
    UNDEPLOYED_SMART_WALLET = "invalid_exact_evm_payload_undeployed_smart_wallet"
    INVALID_TRANSACTION_STATE = "invalid_transaction_state"
    INVALID_SCHEME = "invalid_scheme"
    INVALID_PAYLOAD = "invalid_payload"
    INVALID_PAYMENT_REQUIREMENTS = "invalid_payment_requirements"
    INVALID_X402_VERSION = "invalid_x402_version"


class PayloadError(ValueError):
    """Raised when a request body cannot be turned into value objects."""

    def __init__(self, reason: ErrorReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


def parse_uint(raw: Any, field_name: str) -> int:
    """
    Parse a decimal-string unsigned integer into an arbitrary-precision ``int``.

    Values must fit in uint256 because they end up as contract arguments.
    """
    if isinstance(raw, bool):
        raise ValueError(f"{field_name} must be a decimal string, got {raw!r}")
    text = str(raw).strip()
    if not text.isdigit():
        raise ValueError(f"{field_name} must be an unsigned decimal integer, got {raw!r}")
    value = int(text)
    if value > UINT256_MAX:
        raise ValueError(f"{field_name} does not fit in uint256")
    return value


def _require(values: Mapping[str, Any], key: str, reason: ErrorReason) -> Any:
    try:
        return values[key]
    except KeyError as exc:
        raise PayloadError(reason, f"Missing field '{key}'") from exc
    except TypeError as exc:
        raise PayloadError(reason, f"Expected an object containing '{key}'") from exc


def _address(raw: Any, field_name: str, reason: ErrorReason) -> str:
    if not isinstance(raw, str) or not is_hex_address(raw):
        raise PayloadError(reason, f"{field_name} is not a valid EVM address")
    return raw


def _hex(raw: Any, field_name: str, reason: ErrorReason) -> str:
    if not isinstance(raw, str):
        raise PayloadError(reason, f"{field_name} must be a hex string")
    body = raw[2:] if raw.startswith(("0x", "0X")) else raw
    try:
        bytes.fromhex(body)
    except ValueError as exc:
        raise PayloadError(reason, f"{field_name} is not valid hex") from exc
    return "0x" + body.lower()


@dataclass(frozen=True)
class PaymentRequirements:
    """Terms declared by the resource server for a single request."""

    scheme: str
    network: str
    max_amount_required: str
    pay_to: str
    asset: str
    resource: str = ""
    description: str = ""
    mime_type: str = ""
    max_timeout_seconds: int = 60
    output_schema: Optional[Mapping[str, Any]] = None
    extra: Optional[Mapping[str, Any]] = None

    @property
    def max_amount(self) -> int:
        return parse_uint(self.max_amount_required, "maxAmountRequired")

    def extra_value(self, key: str) -> Optional[str]:
        if not self.extra:
            return None
        value = self.extra.get(key)
        return str(value) if value else None

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "PaymentRequirements":
        reason = ErrorReason.INVALID_PAYMENT_REQUIREMENTS
        max_amount = str(_require(values, "maxAmountRequired", reason))
        try:
            parse_uint(max_amount, "maxAmountRequired")
        except ValueError as exc:
            raise PayloadError(reason, str(exc)) from exc
        extra = values.get("extra")
        if extra is not None and not isinstance(extra, Mapping):
            raise PayloadError(reason, "extra must be an object")
        try:
            max_timeout_seconds = int(values.get("maxTimeoutSeconds") or 60)
        except (TypeError, ValueError) as exc:
            raise PayloadError(reason, "maxTimeoutSeconds must be an integer") from exc
        return cls(
            scheme=str(_require(values, "scheme", reason)),
            network=str(_require(values, "network", reason)),
            max_amount_required=max_amount,
            pay_to=_address(_require(values, "payTo", reason), "payTo", reason),
            asset=_address(_require(values, "asset", reason), "asset", reason),
            resource=str(values.get("resource") or ""),
            description=str(values.get("description") or ""),
            mime_type=str(values.get("mimeType") or ""),
            max_timeout_seconds=max_timeout_seconds,
            output_schema=values.get("outputSchema"),
            extra=dict(extra) if extra is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scheme": self.scheme,
            "network": self.network,
            "maxAmountRequired": self.max_amount_required,
            "resource": self.resource,
            "description": self.description,
            "mimeType": self.mime_type,
            "outputSchema": self.output_schema,
            "payTo": self.pay_to,
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "asset": self.asset,
            "extra": dict(self.extra) if self.extra is not None else None,
        }


@dataclass(frozen=True)
class ExactEvmAuthorization:
    """The ERC-3009 ``TransferWithAuthorization`` message signed by the payer."""

    from_address: str
    to: str
    value: str
    valid_after: str
    valid_before: str
    nonce: str

    @property
    def value_int(self) -> int:
        return parse_uint(self.value, "value")

    @property
    def valid_after_int(self) -> int:
        return parse_uint(self.valid_after, "validAfter")

    @property
    def valid_before_int(self) -> int:
        return parse_uint(self.valid_before, "validBefore")

    @property
    def nonce_bytes(self) -> bytes:
        return bytes.fromhex(self.nonce[2:])

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "ExactEvmAuthorization":
        reason = ErrorReason.INVALID_PAYLOAD
        numbers = {}
        for key in ("value", "validAfter", "validBefore"):
            raw = _require(values, key, reason)
            try:
                numbers[key] = str(parse_uint(raw, key))
            except ValueError as exc:
                raise PayloadError(reason, str(exc)) from exc

        nonce = _hex(_require(values, "nonce", reason), "nonce", reason)
        if len(nonce) != 66:
            raise PayloadError(reason, "nonce must be 32 bytes")

        return cls(
            from_address=_address(_require(values, "from", reason), "from", reason),
            to=_address(_require(values, "to", reason), "to", reason),
            value=numbers["value"],
            valid_after=numbers["validAfter"],
            valid_before=numbers["validBefore"],
            nonce=nonce,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_address,
            "to": self.to,
            "value": self.value,
            "validAfter": self.valid_after,
            "validBefore": self.valid_before,
            "nonce": self.nonce,
        }

    def to_message(self) -> Dict[str, Any]:
        """Return the EIP-712 message with integer and bytes fields decoded."""
        return {
            "from": to_checksum_address(self.from_address),
            "to": to_checksum_address(self.to),
            "value": self.value_int,
            "validAfter": self.valid_after_int,
            "validBefore": self.valid_before_int,
            "nonce": self.nonce_bytes,
        }


@dataclass(frozen=True)
class ExactEvmPayload:
    signature: str
    authorization: ExactEvmAuthorization

    @property
    def signature_bytes(self) -> bytes:
        return bytes.fromhex(self.signature[2:])

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "ExactEvmPayload":
        reason = ErrorReason.INVALID_PAYLOAD
        return cls(
            signature=_hex(_require(values, "signature", reason), "signature", reason),
            authorization=ExactEvmAuthorization.from_dict(
                _require(values, "authorization", reason)
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "authorization": self.authorization.to_dict(),
        }


@dataclass(frozen=True)
class PaymentPayload:
    scheme: str
    network: str
    payload: ExactEvmPayload
    x402_version: int = X402_VERSION

    @property
    def payer(self) -> str:
        return self.payload.authorization.from_address

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "PaymentPayload":
        reason = ErrorReason.INVALID_PAYLOAD
        version = _require(values, "x402Version", reason)
        if version != X402_VERSION:
            raise PayloadError(
                ErrorReason.INVALID_X402_VERSION,
                f"Unsupported x402Version {version!r}",
            )
        return cls(
            scheme=str(_require(values, "scheme", reason)),
            network=str(_require(values, "network", reason)),
            payload=ExactEvmPayload.from_dict(_require(values, "payload", reason)),
            x402_version=X402_VERSION,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "x402Version": self.x402_version,
            "scheme": self.scheme,
            "network": self.network,
            "payload": self.payload.to_dict(),
        }


@dataclass(frozen=True)
class VerifyResult:
    """
    Outcome of a verification.

    ``payer`` is always populated so failures can be attributed to an account.
    """

    is_valid: bool
    payer: str
    invalid_reason: Optional[ErrorReason] = None

    def __post_init__(self) -> None:
        if self.is_valid and self.invalid_reason is not None:
            raise ValueError("A valid result cannot carry an invalid reason")
        if not self.is_valid and self.invalid_reason is None:
            raise ValueError("An invalid result must carry a reason")

    @classmethod
    def valid(cls, payer: str) -> "VerifyResult":
        return cls(is_valid=True, payer=payer)

    @classmethod
    def invalid(cls, reason: ErrorReason, payer: str) -> "VerifyResult":
        return cls(is_valid=False, payer=payer, invalid_reason=reason)

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "VerifyResult":
        is_valid = bool(values.get("isValid"))
        reason = values.get("invalidReason")
        if is_valid:
            invalid_reason = None
        else:
            invalid_reason = ErrorReason(reason) if reason else ErrorReason.INVALID_SCHEME
        return cls(
            is_valid=is_valid,
            payer=str(values.get("payer") or ""),
            invalid_reason=invalid_reason,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "invalidReason": self.invalid_reason.value if self.invalid_reason else None,
            "payer": self.payer,
        }


@dataclass(frozen=True)
class SettleResult:
    success: bool
    network: str
    payer: str
    transaction: str = ""
    error_reason: Optional[ErrorReason] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def failure(
        cls,
        reason: ErrorReason,
        *,
        network: str,
        payer: str,
        transaction: str = "",
    ) -> "SettleResult":
        return cls(
            success=False,
            network=network,
            payer=payer,
            transaction=transaction,
            error_reason=reason,
        )

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "SettleResult":
        reason = values.get("errorReason")
        return cls(
            success=bool(values.get("success")),
            network=str(values.get("network") or ""),
            payer=str(values.get("payer") or ""),
            transaction=str(values.get("transaction") or ""),
            error_reason=ErrorReason(reason) if reason else None,
            raw=dict(values),
        )

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "success": self.success,
            "transaction": self.transaction,
            "network": self.network,
            "payer": self.payer,
        }
        if self.error_reason is not None:
            body["errorReason"] = self.error_reason.value
        return body
