"""
Public facade for the x402 exact-scheme EVM facilitator.

The most useful pieces are re-exported so integrators can
``from x402_facilitator import ...`` without navigating the package.
"""

from .api import (
    create_facilitator,
    create_facilitator_client,
    parse_facilitator_request,
    settle_request,
    verify_request,
)
from .core import (
    ChainUnavailableError,
    ConfigError,
    ErrorReason,
    ExactEvmFacilitator,
    FacilitatorClient,
    FacilitatorConfig,
    FacilitatorParameters,
    FacilitatorUnavailableError,
    PayloadError,
    PaymentPayload,
    PaymentRequirements,
    SettleResult,
    TokenDomain,
    VerifyResult,
    WalletKind,
    Web3ChainClient,
    build_payment_payload,
    classify_signature,
    decode_payment_header,
    encode_payment_header,
    load_facilitator_config,
    sign_authorization,
)

__all__ = (
    "ChainUnavailableError",
    "ConfigError",
    "ErrorReason",
    "ExactEvmFacilitator",
    "FacilitatorClient",
    "FacilitatorConfig",
    "FacilitatorParameters",
    "FacilitatorUnavailableError",
    "PayloadError",
    "PaymentPayload",
    "PaymentRequirements",
    "SettleResult",
    "TokenDomain",
    "VerifyResult",
    "WalletKind",
    "Web3ChainClient",
    "build_payment_payload",
    "classify_signature",
    "create_facilitator",
    "create_facilitator_client",
    "decode_payment_header",
    "encode_payment_header",
    "load_facilitator_config",
    "parse_facilitator_request",
    "settle_request",
    "sign_authorization",
    "verify_request",
)
