from __future__ import annotations

from dataclasses import replace
from typing import Any, List, Optional, Sequence

import pytest
from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_typed_data

from x402_facilitator.core.chain import (
    TransactionReceipt,
    TransactionRejectedError,
    TransferCall,
)
from x402_facilitator.core.facilitator import ExactEvmFacilitator
from x402_facilitator.core.payloads import TokenDomain, build_transfer_typed_data
from x402_facilitator.core.signatures import ERC6492_MAGIC_SUFFIX
from x402_facilitator.core.types import (
    ExactEvmAuthorization,
    ExactEvmPayload,
    PaymentPayload,
    PaymentRequirements,
)

NOW = 1_700_000_000
PAYER_KEY = "0x" + "11" * 32
OTHER_KEY = "0x" + "22" * 32
PAYER = Account.from_key(PAYER_KEY).address
SMART_WALLET = "0x9999999999999999999999999999999999999999"
FACTORY = "0x4e59b44847b379578588920ca78fbf26c0b4956c"
PAY_TO = "0x1234567890123456789012345678901234567890"
ASSET = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
NETWORK = "base-sepolia"
DOMAIN = TokenDomain(name="USDC", version="2", chain_id=84532, verifying_contract=ASSET)
DEPLOYED_CODE = bytes.fromhex("608060405234801561001057600080fd5b50")
TX_HASH = "0x" + "ab" * 32
NONCE = "0x" + "42" * 32


class FakeChain:
    """In-memory chain reader and writer that records every call."""

    def __init__(
        self,
        *,
        balance: int = 2_000_000,
        code: bytes | Exception | Sequence[bytes | Exception] = b"",
        token_name: str = "USDC",
        token_version: str = "2",
        receipt_status: str = "success",
    ) -> None:
        self.balance = balance
        self._code: List[bytes | Exception] = (
            [code] if isinstance(code, (bytes, Exception)) else list(code)
        )
        self.token_name = token_name
        self.token_version = token_version
        self.receipt_status = receipt_status
        self.signature_valid = True
        self.balance_error: Optional[Exception] = None
        self.metadata_error: Optional[Exception] = None
        self.reject_submission = False
        self.balance_reads: List[str] = []
        self.bytecode_reads: List[str] = []
        self.signature_checks: List[tuple] = []
        self.metadata_reads: List[str] = []
        self.submissions: List[TransferCall] = []

    async def get_token_balance(self, asset: str, address: str) -> int:
        self.balance_reads.append(address)
        if self.balance_error is not None:
            raise self.balance_error
        return self.balance

    async def get_bytecode(self, address: str) -> bytes:
        self.bytecode_reads.append(address)
        code = self._code.pop(0) if len(self._code) > 1 else self._code[0]
        if isinstance(code, Exception):
            raise code
        return code

    async def get_token_name(self, asset: str) -> str:
        self.metadata_reads.append("name")
        if self.metadata_error is not None:
            raise self.metadata_error
        return self.token_name

    async def get_token_version(self, asset: str) -> str:
        self.metadata_reads.append("version")
        if self.metadata_error is not None:
            raise self.metadata_error
        return self.token_version

    async def is_valid_signature(self, wallet: str, digest: bytes, signature: bytes) -> bool:
        self.signature_checks.append(("eip1271", wallet, digest, signature))
        return self.signature_valid

    async def is_valid_counterfactual_signature(
        self, wallet: str, digest: bytes, signature: bytes
    ) -> bool:
        self.signature_checks.append(("erc6492", wallet, digest, signature))
        return self.signature_valid

    async def submit_transfer_authorization(self, call: TransferCall) -> str:
        if self.reject_submission:
            raise TransactionRejectedError("execution reverted: FiatTokenV2: invalid signature")
        self.submissions.append(call)
        return TX_HASH

    async def await_receipt(self, tx_hash: str) -> TransactionReceipt:
        return TransactionReceipt(tx_hash, self.receipt_status, 123)


def make_requirements(**changes: Any) -> PaymentRequirements:
    requirements = PaymentRequirements(
        scheme="exact",
        network=NETWORK,
        max_amount_required="1000000",
        pay_to=PAY_TO,
        asset=ASSET,
        resource="https://example.com/resource",
        description="Test resource",
        mime_type="application/json",
        max_timeout_seconds=300,
        extra={"name": "USDC", "version": "2"},
    )
    return replace(requirements, **changes)


def make_authorization(**changes: Any) -> ExactEvmAuthorization:
    authorization = ExactEvmAuthorization(
        from_address=PAYER,
        to=PAY_TO,
        value="1000000",
        valid_after=str(NOW - 600),
        valid_before=str(NOW + 300),
        nonce=NONCE,
    )
    return replace(authorization, **changes)


def sign(
    authorization: ExactEvmAuthorization,
    key: str = PAYER_KEY,
    domain: TokenDomain = DOMAIN,
) -> str:
    signable = encode_typed_data(full_message=build_transfer_typed_data(domain, authorization))
    return "0x" + bytes(Account.from_key(key).sign_message(signable).signature).hex()


def make_payload(
    authorization: Optional[ExactEvmAuthorization] = None,
    *,
    signature: Optional[str] = None,
    scheme: str = "exact",
    network: str = NETWORK,
) -> PaymentPayload:
    authorization = authorization or make_authorization()
    return PaymentPayload(
        scheme=scheme,
        network=network,
        payload=ExactEvmPayload(
            signature=signature if signature is not None else sign(authorization),
            authorization=authorization,
        ),
    )


def contract_signature(length_bytes: int = 100) -> str:
    return "0x" + "1b" * length_bytes


def wrap_erc6492(inner: bytes, factory: str = FACTORY, calldata: bytes = b"\xde\xad\xbe\xef") -> str:
    envelope = encode(["address", "bytes", "bytes"], [factory, calldata, inner])
    return "0x" + (envelope + ERC6492_MAGIC_SUFFIX).hex()


def smart_wallet_payload(signature: Optional[str] = None) -> PaymentPayload:
    return make_payload(
        make_authorization(from_address=SMART_WALLET),
        signature=signature or contract_signature(),
    )


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def facilitator(chain: FakeChain) -> ExactEvmFacilitator:
    return ExactEvmFacilitator(chain, chain, clock=lambda: NOW)

