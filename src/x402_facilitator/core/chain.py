"""
Chain collaborators used by the facilitator.

The facilitator only depends on the :class:`ChainReader`, :class:`ChainWriter`
and :class:`SignatureEngine` interfaces; :class:`Web3ChainClient` implements
the first two over web3's ``AsyncWeb3``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Protocol, Tuple

from eth_abi import encode
from eth_account import Account
from eth_utils import keccak, to_checksum_address
from web3 import AsyncWeb3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    TimeExhausted,
    Web3ValidationError,
)

from .signatures import (
    CounterfactualWrapper,
    SignatureLike,
    SignatureParts,
    WalletKind,
    classify_signature,
    decompose_signature,
    parse_counterfactual_wrapper,
    recover_typed_data_signer,
    to_signature_bytes,
    typed_data_digest,
)
from .types import ExactEvmAuthorization

__all__ = [
    "ChainReadError",
    "ChainReader",
    "ChainUnavailableError",
    "ChainWriter",
    "EIP1271_MAGIC_VALUE",
    "SignatureEngine",
    "TOKEN_ABI",
    "TransactionReceipt",
    "TransactionRejectedError",
    "TransferCall",
    "TransferVariant",
    "UniversalSignatureEngine",
    "Web3ChainClient",
]

EIP1271_MAGIC_VALUE = bytes.fromhex("1626ba7e")

_AUTHORIZATION_INPUTS = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "validAfter", "type": "uint256"},
    {"name": "validBefore", "type": "uint256"},
    {"name": "nonce", "type": "bytes32"},
]

TOKEN_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "name",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "name": "version",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "name": "transferWithAuthorization",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": _AUTHORIZATION_INPUTS + [{"name": "signature", "type": "bytes"}],
        "outputs": [],
    },
    {
        "name": "transferWithAuthorization",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": _AUTHORIZATION_INPUTS
        + [
            {"name": "v", "type": "uint8"},
            {"name": "r", "type": "bytes32"},
            {"name": "s", "type": "bytes32"},
        ],
        "outputs": [],
    },
]

_ERC1271_ABI = [
    {
        "name": "isValidSignature",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "hash", "type": "bytes32"},
            {"name": "signature", "type": "bytes"},
        ],
        "outputs": [{"name": "magicValue", "type": "bytes4"}],
    }
]

# UniversalSigValidator from the ERC-6492 reference implementation.
_ERC6492_VALIDATOR_ABI = [
    {
        "name": "isValidSig",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "_signer", "type": "address"},
            {"name": "_hash", "type": "bytes32"},
            {"name": "_signature", "type": "bytes"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    }
]


class ChainUnavailableError(RuntimeError):
    """The chain could not be reached. Callers should treat this as transient."""


class ChainReadError(Exception):
    """A read reached the chain but the contract call failed."""


class TransactionRejectedError(Exception):
    """The node refused the transaction, typically because it would revert."""


class TransferVariant(str, Enum):
    BYTES_SIGNATURE = "bytes_signature"
    SCALAR_TRIPLE = "scalar_triple"


@dataclass(frozen=True)
class TransferCall:
    """Arguments for one ``transferWithAuthorization`` overload."""

    variant: TransferVariant
    asset: str
    authorization: ExactEvmAuthorization
    signature: bytes = b""
    v: int = 0
    r: bytes = b""
    s: bytes = b""

    @property
    def function_signature(self) -> str:
        head = "transferWithAuthorization(address,address,uint256,uint256,uint256,bytes32,"
        if self.variant is TransferVariant.BYTES_SIGNATURE:
            return head + "bytes)"
        return head + "uint8,bytes32,bytes32)"

    @property
    def argument_types(self) -> List[str]:
        return self.function_signature[len("transferWithAuthorization("):-1].split(",")

    @property
    def selector(self) -> bytes:
        return keccak(text=self.function_signature)[:4]

    def contract_args(self) -> Tuple[Any, ...]:
        auth = self.authorization
        head = (
            to_checksum_address(auth.from_address),
            to_checksum_address(auth.to),
            auth.value_int,
            auth.valid_after_int,
            auth.valid_before_int,
            auth.nonce_bytes,
        )
        if self.variant is TransferVariant.BYTES_SIGNATURE:
            return head + (self.signature,)
        return head + (self.v, self.r, self.s)

    def calldata(self) -> bytes:
        return self.selector + encode(self.argument_types, list(self.contract_args()))


@dataclass(frozen=True)
class TransactionReceipt:
    transaction_hash: str
    status: str
    block_number: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class ChainReader(Protocol):
    async def get_token_balance(self, asset: str, address: str) -> int: ...

    async def get_bytecode(self, address: str) -> bytes: ...

    async def get_token_name(self, asset: str) -> str: ...

    async def get_token_version(self, asset: str) -> str: ...

    async def is_valid_signature(self, wallet: str, digest: bytes, signature: bytes) -> bool: ...

    async def is_valid_counterfactual_signature(
        self, wallet: str, digest: bytes, signature: bytes
    ) -> bool: ...


class ChainWriter(Protocol):
    async def submit_transfer_authorization(self, call: TransferCall) -> str: ...

    async def await_receipt(self, tx_hash: str) -> TransactionReceipt: ...


class SignatureEngine(ABC):
    """
    Recovers and dissects authorization signatures.

    Subclasses decide how signers are recovered; parsing and decomposition are
    shared.
    """

    @abstractmethod
    async def recover_signer(
        self,
        typed_data: Dict[str, Any],
        signature: bytes,
        claimed: str,
    ) -> Optional[str]:
        """Return the address that produced ``signature``, or ``None``."""

    def parse_counterfactual_wrapper(
        self, signature: SignatureLike
    ) -> Optional[CounterfactualWrapper]:
        return parse_counterfactual_wrapper(signature)

    def decompose_signature(self, signature: SignatureLike) -> SignatureParts:
        return decompose_signature(signature)


class UniversalSignatureEngine(SignatureEngine):
    """
    Signature recovery for EOAs and smart-contract wallets.

    EOA signatures are recovered locally. Deployed contract wallets are asked
    through EIP-1271 whether they accept the signature, and undeployed wallets
    carrying ERC-6492 deployment info are checked through the universal
    validator. An undeployed wallet without deployment info has nothing to
    check against; its claimed signer is returned and the deployment check
    rejects it.
    """

    def __init__(self, reader: ChainReader) -> None:
        self._reader = reader

    async def recover_signer(
        self,
        typed_data: Dict[str, Any],
        signature: bytes,
        claimed: str,
    ) -> Optional[str]:
        if classify_signature(signature) is WalletKind.EOA:
            try:
                return recover_typed_data_signer(typed_data, signature)
            except Exception as exc:  # noqa: BLE001
                logging.info("EOA signature recovery failed: %s", exc)
                return None

        wrapper = self.parse_counterfactual_wrapper(signature)
        try:
            code = await self._reader.get_bytecode(claimed)
        except ChainReadError as exc:
            logging.info("Bytecode read for %s failed: %s", claimed, exc)
            return None

        digest = typed_data_digest(typed_data)
        if code:
            inner = wrapper.inner_signature if wrapper is not None else to_signature_bytes(signature)
            valid = await self._reader.is_valid_signature(claimed, digest, inner)
        elif wrapper is not None and wrapper.has_deployment_info:
            valid = await self._reader.is_valid_counterfactual_signature(
                claimed, digest, to_signature_bytes(signature)
            )
        else:
            return claimed
        return claimed if valid else None


@contextmanager
def _chain_call(description: str) -> Iterator[None]:
    try:
        yield
    except (BadFunctionCallOutput, ContractLogicError, Web3ValidationError) as exc:
        raise ChainReadError(f"{description} failed: {exc}") from exc
    except (ChainReadError, ChainUnavailableError, TransactionRejectedError):
        raise
    except Exception as exc:  # noqa: BLE001
        raise ChainUnavailableError(f"{description} failed: {exc}") from exc


class Web3ChainClient:
    """
    ``AsyncWeb3`` implementation of :class:`ChainReader` and :class:`ChainWriter`.

    Submissions are signed locally with the facilitator key. Nonce allocation
    and broadcast are serialised so one client can settle concurrently.
    Counterfactual signatures need an ERC-6492 ``UniversalSigValidator``
    deployed on the network; without one they are reported invalid.
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        private_key: Optional[str] = None,
        *,
        web3: Optional[AsyncWeb3] = None,
        erc6492_validator: Optional[str] = None,
        receipt_timeout_seconds: float = 120,
        receipt_poll_seconds: float = 2,
        request_timeout_seconds: float = 30,
    ) -> None:
        if web3 is None:
            if not rpc_url:
                raise ValueError("Either rpc_url or web3 must be provided")
            web3 = AsyncWeb3(
                AsyncWeb3.AsyncHTTPProvider(
                    rpc_url, request_kwargs={"timeout": request_timeout_seconds}
                )
            )
        self.web3 = web3
        self._account = Account.from_key(private_key) if private_key else None
        self._erc6492_validator = erc6492_validator
        self._receipt_timeout = receipt_timeout_seconds
        self._receipt_poll = receipt_poll_seconds
        self._send_lock = asyncio.Lock()

    @property
    def address(self) -> Optional[str]:
        return self._account.address if self._account is not None else None

    def _token(self, asset: str) -> Any:
        return self.web3.eth.contract(address=to_checksum_address(asset), abi=TOKEN_ABI)

    async def get_token_balance(self, asset: str, address: str) -> int:
        with _chain_call(f"balanceOf({address}) on {asset}"):
            balance = await self._token(asset).functions.balanceOf(
                to_checksum_address(address)
            ).call()
        return int(balance)

    async def get_bytecode(self, address: str) -> bytes:
        with _chain_call(f"getCode({address})"):
            code = await self.web3.eth.get_code(to_checksum_address(address))
        return bytes(code or b"")

    async def get_token_name(self, asset: str) -> str:
        with _chain_call(f"name() on {asset}"):
            return str(await self._token(asset).functions.name().call())

    async def get_token_version(self, asset: str) -> str:
        with _chain_call(f"version() on {asset}"):
            return str(await self._token(asset).functions.version().call())

    async def is_valid_signature(self, wallet: str, digest: bytes, signature: bytes) -> bool:
        contract = self.web3.eth.contract(
            address=to_checksum_address(wallet), abi=_ERC1271_ABI
        )
        try:
            with _chain_call(f"isValidSignature on {wallet}"):
                result = await contract.functions.isValidSignature(digest, signature).call()
        except ChainReadError as exc:
            logging.info("Wallet %s rejected signature: %s", wallet, exc)
            return False
        return bytes(result)[:4] == EIP1271_MAGIC_VALUE

    async def is_valid_counterfactual_signature(
        self, wallet: str, digest: bytes, signature: bytes
    ) -> bool:
        if not self._erc6492_validator:
            logging.warning(
                "No ERC-6492 validator configured; cannot check signature for undeployed %s",
                wallet,
            )
            return False
        validator = self.web3.eth.contract(
            address=to_checksum_address(self._erc6492_validator),
            abi=_ERC6492_VALIDATOR_ABI,
        )
        try:
            with _chain_call(f"isValidSig for {wallet}"):
                result = await validator.functions.isValidSig(
                    to_checksum_address(wallet), digest, signature
                ).call()
        except ChainReadError as exc:
            logging.info("Counterfactual signature for %s rejected: %s", wallet, exc)
            return False
        return bool(result)

    async def submit_transfer_authorization(self, call: TransferCall) -> str:
        if self._account is None:
            raise RuntimeError("A facilitator private key is required to submit transactions")

        sender = self._account.address
        transaction: Dict[str, Any] = {
            "from": sender,
            "to": to_checksum_address(call.asset),
            "data": "0x" + call.calldata().hex(),
            "value": 0,
        }

        async with self._send_lock:
            try:
                with _chain_call(f"{call.variant.value} transferWithAuthorization"):
                    transaction["gas"] = await self.web3.eth.estimate_gas(transaction)
                    transaction["gasPrice"] = await self.web3.eth.gas_price
                    transaction["chainId"] = await self.web3.eth.chain_id
                    transaction["nonce"] = await self.web3.eth.get_transaction_count(
                        sender, "pending"
                    )
                    signed = self._account.sign_transaction(
                        {key: value for key, value in transaction.items() if key != "from"}
                    )
                    tx_hash = await self.web3.eth.send_raw_transaction(signed.raw_transaction)
            except ChainReadError as exc:
                raise TransactionRejectedError(str(exc)) from exc

        tx_hash_hex = "0x" + bytes(tx_hash).hex()
        logging.info("Submitted %s transfer for %s: %s", call.variant.value, call.asset, tx_hash_hex)
        return tx_hash_hex

    async def await_receipt(self, tx_hash: str) -> TransactionReceipt:
        try:
            receipt = await self.web3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self._receipt_timeout,
                poll_latency=self._receipt_poll,
            )
        except TimeExhausted as exc:
            raise ChainUnavailableError(
                f"Timed out waiting for receipt of {tx_hash}"
            ) from exc
        except Exception as exc:  # noqa: BLE001
            raise ChainUnavailableError(f"Receipt lookup for {tx_hash} failed: {exc}") from exc

        return TransactionReceipt(
            transaction_hash=tx_hash,
            status="success" if receipt["status"] == 1 else "reverted",
            block_number=receipt.get("blockNumber"),
        )
