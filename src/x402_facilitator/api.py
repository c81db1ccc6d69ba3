"""
Public, high-level helpers for running an exact-scheme facilitator.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Tuple

import requests

from .core.chain import Web3ChainClient
from .core.client import FacilitatorClient
from .core.config import (
    ConfigError,
    FacilitatorConfig,
    FacilitatorParameters,
    load_facilitator_config,
)
from .core.facilitator import Clock, ExactEvmFacilitator, system_clock
from .core.types import (
    ErrorReason,
    PayloadError,
    PaymentPayload,
    PaymentRequirements,
    SettleResult,
    VerifyResult,
    X402_VERSION,
)

__all__ = [
    "ConfigError",
    "create_facilitator",
    "create_facilitator_client",
    "parse_facilitator_request",
    "settle_request",
    "verify_request",
]


def _resolve_config(
    config: Optional[FacilitatorConfig],
    *,
    env_file: Optional[str],
    overrides: Optional[Mapping[str, str]],
    base: Optional[Mapping[str, str]],
    parameters: Optional[FacilitatorParameters],
    explicit: Mapping[str, Any],
) -> FacilitatorConfig:
    if config is None:
        return load_facilitator_config(
            env_file=env_file,
            overrides=overrides,
            base=base,
            parameters=parameters,
            **explicit,
        )
    extras = (overrides, base, parameters, *explicit.values())
    if any(item is not None and item != {} for item in extras):
        raise ValueError(
            "Provide either a pre-built FacilitatorConfig or individual parameters, not both."
        )
    return config


def create_facilitator(
    *,
    config: Optional[FacilitatorConfig] = None,
    clock: Clock = system_clock,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    parameters: Optional[FacilitatorParameters] = None,
    **explicit: Any,
) -> ExactEvmFacilitator:
    """
    Construct an :class:`ExactEvmFacilitator` backed by a web3 RPC endpoint.

    Without a private key the facilitator can verify but not settle.
    """
    cfg = _resolve_config(
        config,
        env_file=env_file,
        overrides=overrides,
        base=base,
        parameters=parameters,
        explicit=explicit,
    )
    chain = Web3ChainClient(
        cfg.require_rpc_url(),
        cfg.private_key,
        erc6492_validator=cfg.erc6492_validator,
        receipt_timeout_seconds=cfg.receipt_timeout_seconds,
        receipt_poll_seconds=cfg.receipt_poll_seconds,
        request_timeout_seconds=cfg.request_timeout_seconds,
    )
    return ExactEvmFacilitator(
        chain,
        chain if cfg.private_key else None,
        clock=clock,
        custom_networks=cfg.custom_networks,
    )


def create_facilitator_client(
    *,
    config: Optional[FacilitatorConfig] = None,
    session: Optional[requests.Session] = None,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    parameters: Optional[FacilitatorParameters] = None,
    **explicit: Any,
) -> FacilitatorClient:
    """Construct a :class:`FacilitatorClient` for a remote facilitator."""
    cfg = _resolve_config(
        config,
        env_file=env_file,
        overrides=overrides,
        base=base,
        parameters=parameters,
        explicit=explicit,
    )
    return FacilitatorClient(
        cfg.facilitator_url,
        session=session,
        timeout=cfg.request_timeout_seconds,
    )


def parse_facilitator_request(
    body: Mapping[str, Any],
) -> Tuple[PaymentPayload, PaymentRequirements]:
    """
    Split a ``/verify`` or ``/settle`` body into typed objects.

    Raises :class:`PayloadError` when the body is malformed.
    """
    if not isinstance(body, Mapping):
        raise PayloadError(ErrorReason.INVALID_PAYLOAD, "Request body must be an object")
    version = body.get("x402Version", X402_VERSION)
    if version != X402_VERSION:
        raise PayloadError(
            ErrorReason.INVALID_X402_VERSION, f"Unsupported x402Version {version!r}"
        )

    raw_payload = body.get("paymentPayload")
    if not isinstance(raw_payload, Mapping):
        raise PayloadError(ErrorReason.INVALID_PAYLOAD, "paymentPayload must be an object")
    raw_requirements = body.get("paymentRequirements")
    if not isinstance(raw_requirements, Mapping):
        raise PayloadError(
            ErrorReason.INVALID_PAYMENT_REQUIREMENTS, "paymentRequirements must be an object"
        )

    return PaymentPayload.from_dict(raw_payload), PaymentRequirements.from_dict(raw_requirements)


def _claimed_payer(body: Mapping[str, Any]) -> str:
    try:
        payer = body["paymentPayload"]["payload"]["authorization"]["from"]
    except (KeyError, TypeError):
        return ""
    return payer if isinstance(payer, str) else ""


def _claimed_network(body: Mapping[str, Any]) -> str:
    try:
        network = body["paymentPayload"]["network"]
    except (KeyError, TypeError):
        return ""
    return network if isinstance(network, str) else ""


async def verify_request(
    facilitator: ExactEvmFacilitator,
    body: Mapping[str, Any],
) -> VerifyResult:
    try:
        payload, requirements = parse_facilitator_request(body)
    except PayloadError as exc:
        return VerifyResult.invalid(exc.reason, _claimed_payer(body))
    return await facilitator.verify(payload, requirements)


async def settle_request(
    facilitator: ExactEvmFacilitator,
    body: Mapping[str, Any],
) -> SettleResult:
    try:
        payload, requirements = parse_facilitator_request(body)
    except PayloadError as exc:
        return SettleResult.failure(
            exc.reason, network=_claimed_network(body), payer=_claimed_payer(body)
        )
    return await facilitator.settle(payload, requirements)

