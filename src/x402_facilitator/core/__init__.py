"""
Core primitives that implement exact-scheme verification and settlement.
"""

from .chain import (
    ChainReadError,
    ChainReader,
    ChainUnavailableError,
    ChainWriter,
    SignatureEngine,
    TransactionReceipt,
    TransactionRejectedError,
    TransferCall,
    TransferVariant,
    UniversalSignatureEngine,
    Web3ChainClient,
)
from .client import FacilitatorClient, FacilitatorUnavailableError
from .config import (
    ConfigError,
    FacilitatorConfig,
    FacilitatorParameters,
    load_facilitator_config,
)
from .environment import FacilitatorEnvironment, build_environment, load_env_file
from .facilitator import Clock, ExactEvmFacilitator, system_clock
from .networks import NETWORKS, UnknownNetworkError, resolve_chain_id
from .payloads import (
    TokenDomain,
    build_facilitator_request,
    build_payment_payload,
    build_transfer_typed_data,
    decode_payment_header,
    encode_payment_header,
    sign_authorization,
)
from .signatures import (
    CounterfactualWrapper,
    SignatureParts,
    WalletKind,
    classify_signature,
    decompose_signature,
    parse_counterfactual_wrapper,
)
from .types import (
    ErrorReason,
    ExactEvmAuthorization,
    ExactEvmPayload,
    PayloadError,
    PaymentPayload,
    PaymentRequirements,
    SettleResult,
    VerifyResult,
)

__all__ = [
    "ChainReadError",
    "ChainReader",
    "ChainUnavailableError",
    "ChainWriter",
    "Clock",
    "ConfigError",
    "CounterfactualWrapper",
    "ErrorReason",
    "ExactEvmAuthorization",
    "ExactEvmFacilitator",
    "ExactEvmPayload",
    "FacilitatorClient",
    "FacilitatorConfig",
    "FacilitatorEnvironment",
    "FacilitatorParameters",
    "FacilitatorUnavailableError",
    "NETWORKS",
    "PayloadError",
    "PaymentPayload",
    "PaymentRequirements",
    "SettleResult",
    "SignatureEngine",
    "SignatureParts",
    "TokenDomain",
    "TransactionReceipt",
    "TransactionRejectedError",
    "TransferCall",
    "TransferVariant",
    "UniversalSignatureEngine",
    "UnknownNetworkError",
    "VerifyResult",
    "WalletKind",
    "Web3ChainClient",
    "build_environment",
    "build_facilitator_request",
    "build_payment_payload",
    "build_transfer_typed_data",
    "classify_signature",
    "decode_payment_header",
    "decompose_signature",
    "encode_payment_header",
    "load_env_file",
    "load_facilitator_config",
    "parse_counterfactual_wrapper",
    "resolve_chain_id",
    "sign_authorization",
    "system_clock",
]
