"""
Verification and settlement for the exact scheme on EVM networks.

``verify`` runs an ordered battery of checks and stops at the first failure,
so the order below decides which reason is reported. ``settle`` re-runs the
same routine before submitting anything on-chain.

Undeployed wallets presenting an ERC-6492 signature pass verification, but
settlement does not deploy them. Callers that want to accept such wallets
must deploy them through the factory between verify and settle.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from eth_utils import to_checksum_address

from .chain import (
    ChainReadError,
    ChainReader,
    ChainWriter,
    SignatureEngine,
    TransactionRejectedError,
    TransferCall,
    TransferVariant,
    UniversalSignatureEngine,
)
from .networks import UnknownNetworkError, default_token_name, resolve_chain_id
from .payloads import TokenDomain, build_transfer_typed_data
from .signatures import WalletKind, classify_signature
from .types import (
    ErrorReason,
    PaymentPayload,
    PaymentRequirements,
    SCHEME_EXACT,
    SettleResult,
    VerifyResult,
)

__all__ = [
    "Clock",
    "ExactEvmFacilitator",
    "VALID_BEFORE_BUFFER_SECONDS",
    "system_clock",
]

# Room for the round trip between verification and block inclusion.
VALID_BEFORE_BUFFER_SECONDS = 6
LEGACY_V_BASE = 27

Clock = Callable[[], int]


def system_clock() -> int:
    return int(time.time())


@dataclass(frozen=True)
class _Validation:
    result: VerifyResult
    wallet_kind: WalletKind


class ExactEvmFacilitator:
    """
    Verifies and settles ERC-3009 authorizations for the ``exact`` scheme.

    ``reader`` serves balance and bytecode reads, ``writer`` submits
    transactions (usually the same :class:`Web3ChainClient`). Both entry
    points are coroutines and keep no state between calls.
    """

    def __init__(
        self,
        reader: ChainReader,
        writer: Optional[ChainWriter] = None,
        *,
        signature_engine: Optional[SignatureEngine] = None,
        clock: Clock = system_clock,
        custom_networks: Optional[Mapping[str, int]] = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._engine = signature_engine or UniversalSignatureEngine(reader)
        self._clock = clock
        self._custom_networks = dict(custom_networks or {})

    async def verify(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> VerifyResult:
        validation = await self._validate(payload, requirements)
        return validation.result

    async def settle(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> SettleResult:
        payer = payload.payer
        network = payload.network

        validation = await self._validate(payload, requirements)
        if not validation.result.is_valid:
            reason = validation.result.invalid_reason or ErrorReason.INVALID_SCHEME
            logging.info("Refusing to settle for %s: %s", payer, reason.value)
            return SettleResult.failure(reason, network=network, payer=payer)

        if self._writer is None:
            raise RuntimeError("Settlement requires a chain writer")

        exact = payload.payload
        signature = exact.signature_bytes

        if validation.wallet_kind is WalletKind.CONTRACT_WALLET:
            try:
                code = await self._reader.get_bytecode(payer)
            except ChainReadError as exc:
                logging.warning("Bytecode read for %s failed at settlement: %s", payer, exc)
                code = b""
            if not code:
                logging.info("Smart wallet %s is still undeployed at settlement", payer)
                return SettleResult.failure(
                    ErrorReason.UNDEPLOYED_SMART_WALLET, network=network, payer=payer
                )
            wrapper = self._engine.parse_counterfactual_wrapper(signature)
            call = TransferCall(
                variant=TransferVariant.BYTES_SIGNATURE,
                asset=requirements.asset,
                authorization=exact.authorization,
                signature=wrapper.inner_signature if wrapper is not None else signature,
            )
        else:
            parts = self._engine.decompose_signature(signature)
            v = parts.v if parts.v is not None else LEGACY_V_BASE + parts.y_parity
            call = TransferCall(
                variant=TransferVariant.SCALAR_TRIPLE,
                asset=requirements.asset,
                authorization=exact.authorization,
                v=v,
                r=parts.r,
                s=parts.s,
            )

        try:
            tx_hash = await self._writer.submit_transfer_authorization(call)
        except TransactionRejectedError as exc:
            logging.warning("Transfer for %s rejected by the node: %s", payer, exc)
            return SettleResult.failure(
                ErrorReason.INVALID_TRANSACTION_STATE, network=network, payer=payer
            )

        receipt = await self._writer.await_receipt(tx_hash)
        if not receipt.succeeded:
            logging.warning("Transfer %s for %s reverted", tx_hash, payer)
            return SettleResult.failure(
                ErrorReason.INVALID_TRANSACTION_STATE,
                network=network,
                payer=payer,
                transaction=tx_hash,
            )

        logging.info("Settled payment from %s on %s: %s", payer, network, tx_hash)
        return SettleResult(success=True, network=network, payer=payer, transaction=tx_hash)

    async def _resolve_domain(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> TokenDomain:
        chain_id = resolve_chain_id(payload.network, self._custom_networks)
        asset = requirements.asset

        name = requirements.extra_value("name") or default_token_name(payload.network, asset)
        if name is None:
            name = await self._reader.get_token_name(asset)
        version = requirements.extra_value("version")
        if version is None:
            version = await self._reader.get_token_version(asset)

        return TokenDomain(
            name=name, version=version, chain_id=chain_id, verifying_contract=asset
        )

    async def _validate(
        self,
        payload: PaymentPayload,
        requirements: PaymentRequirements,
    ) -> _Validation:
        exact = payload.payload
        authorization = exact.authorization
        payer = authorization.from_address
        wallet_kind = classify_signature(exact.signature_bytes)

        def reject(reason: ErrorReason) -> _Validation:
            logging.info("Rejected payment from %s: %s", payer, reason.value)
            return _Validation(VerifyResult.invalid(reason, payer), wallet_kind)

        if payload.scheme != SCHEME_EXACT or requirements.scheme != SCHEME_EXACT:
            return reject(ErrorReason.UNSUPPORTED_SCHEME)

        try:
            domain = await self._resolve_domain(payload, requirements)
        except (UnknownNetworkError, ChainReadError) as exc:
            logging.info("Could not resolve network %s: %s", payload.network, exc)
            return reject(ErrorReason.INVALID_NETWORK)

        typed_data = build_transfer_typed_data(domain, authorization)
        signer = await self._engine.recover_signer(typed_data, exact.signature_bytes, payer)
        if signer is None or not _same_address(signer, payer):
            return reject(ErrorReason.INVALID_SIGNATURE)

        if not _same_address(authorization.to, requirements.pay_to):
            return reject(ErrorReason.RECIPIENT_MISMATCH)

        now = self._clock()
        if authorization.valid_before_int < now + VALID_BEFORE_BUFFER_SECONDS:
            return reject(ErrorReason.VALID_BEFORE)
        if authorization.valid_after_int > now:
            return reject(ErrorReason.VALID_AFTER)

        required = requirements.max_amount
        try:
            balance = await self._reader.get_token_balance(requirements.asset, payer)
        except ChainReadError as exc:
            logging.warning("Balance read for %s failed: %s", payer, exc)
            return reject(ErrorReason.INSUFFICIENT_FUNDS)
        if balance < required:
            return reject(ErrorReason.INSUFFICIENT_FUNDS)

        if authorization.value_int < required:
            return reject(ErrorReason.INSUFFICIENT_VALUE)

        if wallet_kind is WalletKind.CONTRACT_WALLET:
            try:
                code = await self._reader.get_bytecode(payer)
            except ChainReadError as exc:
                logging.warning("Bytecode read for %s failed: %s", payer, exc)
                return reject(ErrorReason.UNDEPLOYED_SMART_WALLET)
            if not code:
                wrapper = self._engine.parse_counterfactual_wrapper(exact.signature_bytes)
                if wrapper is None or not wrapper.has_deployment_info:
                    return reject(ErrorReason.UNDEPLOYED_SMART_WALLET)

        return _Validation(VerifyResult.valid(payer), wallet_kind)


def _same_address(left: str, right: str) -> bool:
    try:
        return to_checksum_address(left) == to_checksum_address(right)
    except ValueError:
        return False
