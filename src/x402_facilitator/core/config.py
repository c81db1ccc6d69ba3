"""
Configuration objects and helpers for the facilitator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from eth_account import Account
from eth_utils import is_hex_address, to_checksum_address

from .environment import build_environment
from .networks import UnknownNetworkError, resolve_chain_id

__all__ = [
    "ConfigError",
    "FacilitatorConfig",
    "FacilitatorParameters",
    "load_facilitator_config",
]

_PARAMETER_TO_ENV_KEY = {
    "private_key": "X402_FACILITATOR_PRIVATE_KEY",
    "rpc_url": "X402_RPC_URL",
    "network": "X402_NETWORK",
    "chain_id": "X402_CHAIN_ID",
    "facilitator_url": "X402_FACILITATOR_URL",
    "erc6492_validator": "X402_ERC6492_VALIDATOR",
    "receipt_timeout_seconds": "X402_RECEIPT_TIMEOUT_SECONDS",
    "receipt_poll_seconds": "X402_RECEIPT_POLL_SECONDS",
    "request_timeout_seconds": "X402_REQUEST_TIMEOUT_SECONDS",
}


class ConfigError(Exception):
    """Raised when the supplied configuration is invalid."""


@dataclass(frozen=True)
class FacilitatorParameters:
    """
    Explicit parameter bundle for constructing :class:`FacilitatorConfig`.
    """

    private_key: Optional[str] = None
    rpc_url: Optional[str] = None
    network: Optional[str] = None
    chain_id: Optional[int | str] = None
    facilitator_url: Optional[str] = None
    erc6492_validator: Optional[str] = None
    receipt_timeout_seconds: Optional[float | str] = None
    receipt_poll_seconds: Optional[float | str] = None
    request_timeout_seconds: Optional[float | str] = None

    def as_overrides(self) -> Dict[str, str]:
        overrides: Dict[str, str] = {}
        for field_name, env_key in _PARAMETER_TO_ENV_KEY.items():
            value = getattr(self, field_name)
            if value is not None:
                overrides[env_key] = str(value)
        return overrides


def _normalize_private_key(raw_key: str) -> str:
    key = raw_key.strip()
    if not key.startswith("0x"):
        key = "0x" + key
    if len(key) != 66:
        raise ConfigError("X402_FACILITATOR_PRIVATE_KEY must be 32 bytes (64 hex chars)")
    try:
        bytes.fromhex(key[2:])
    except ValueError as exc:
        raise ConfigError("X402_FACILITATOR_PRIVATE_KEY is not valid hex") from exc
    return key


def _positive_number(values: Mapping[str, str], key: str, default: str) -> float:
    raw = values.get(key) or default
    try:
        number = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be a number, got '{raw}'") from exc
    if number <= 0:
        raise ConfigError(f"{key} must be greater than zero")
    return number


@dataclass(frozen=True)
class FacilitatorConfig:
    network: str = "bsc"
    rpc_url: Optional[str] = None
    private_key: Optional[str] = None
    facilitator_address: Optional[str] = None
    chain_id: Optional[int] = None
    facilitator_url: str = "https://api.x402.unibase.com"
    erc6492_validator: Optional[str] = None
    receipt_timeout_seconds: float = 120.0
    receipt_poll_seconds: float = 2.0
    request_timeout_seconds: float = 30.0

    @property
    def custom_networks(self) -> Dict[str, int]:
        if self.chain_id is None:
            return {}
        return {self.network: self.chain_id}

    def require_rpc_url(self) -> str:
        if not self.rpc_url:
            raise ConfigError("X402_RPC_URL must be provided to verify or settle locally")
        return self.rpc_url

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "FacilitatorConfig":
        def get(key: str) -> Optional[str]:
            value = values.get(key)
            return value.strip() if value and value.strip() else None

        network = get("X402_NETWORK") or "bsc"

        chain_id: Optional[int] = None
        raw_chain_id = get("X402_CHAIN_ID")
        if raw_chain_id is not None:
            try:
                chain_id = int(raw_chain_id)
            except ValueError as exc:
                raise ConfigError(
                    f"X402_CHAIN_ID must be an integer, got '{raw_chain_id}'"
                ) from exc
            if chain_id <= 0:
                raise ConfigError("X402_CHAIN_ID must be greater than zero")
        else:
            try:
                resolve_chain_id(network)
            except UnknownNetworkError as exc:
                raise ConfigError(
                    f"X402_NETWORK '{network}' is unknown; set X402_CHAIN_ID to register it"
                ) from exc

        private_key: Optional[str] = None
        facilitator_address: Optional[str] = None
        raw_key = get("X402_FACILITATOR_PRIVATE_KEY")
        if raw_key is not None:
            private_key = _normalize_private_key(raw_key)
            facilitator_address = Account.from_key(private_key).address

        facilitator_url = (get("X402_FACILITATOR_URL") or cls.facilitator_url).rstrip("/")

        erc6492_validator = get("X402_ERC6492_VALIDATOR")
        if erc6492_validator is not None:
            if not is_hex_address(erc6492_validator):
                raise ConfigError("X402_ERC6492_VALIDATOR must be a contract address")
            erc6492_validator = to_checksum_address(erc6492_validator)

        return cls(
            network=network,
            rpc_url=get("X402_RPC_URL"),
            private_key=private_key,
            facilitator_address=facilitator_address,
            chain_id=chain_id,
            facilitator_url=facilitator_url,
            erc6492_validator=erc6492_validator,
            receipt_timeout_seconds=_positive_number(
                values, "X402_RECEIPT_TIMEOUT_SECONDS", "120"
            ),
            receipt_poll_seconds=_positive_number(values, "X402_RECEIPT_POLL_SECONDS", "2"),
            request_timeout_seconds=_positive_number(
                values, "X402_REQUEST_TIMEOUT_SECONDS", "30"
            ),
        )

    @classmethod
    def from_env(
        cls,
        *,
        env_file: Optional[str] = ".env",
        overrides: Optional[Mapping[str, str]] = None,
        base: Optional[Mapping[str, str]] = None,
        parameters: Optional[FacilitatorParameters] = None,
        **explicit: Any,
    ) -> "FacilitatorConfig":
        unknown = set(explicit) - set(_PARAMETER_TO_ENV_KEY)
        if unknown:
            raise TypeError(f"Unknown facilitator parameter(s): {', '.join(sorted(unknown))}")

        merged_overrides = dict(overrides or {})
        if parameters is not None:
            merged_overrides.update(parameters.as_overrides())
        merged_overrides.update(
            FacilitatorParameters(**explicit).as_overrides() if explicit else {}
        )

        environment = build_environment(
            env_file=env_file,
            base=base,
            overrides=merged_overrides,
        )
        return cls.from_mapping(environment.variables)


def load_facilitator_config(
    *,
    env_file: Optional[str] = ".env",
    overrides: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
    parameters: Optional[FacilitatorParameters] = None,
    **explicit: Any,
) -> FacilitatorConfig:
    """
    Convenience wrapper that mirrors :meth:`FacilitatorConfig.from_env`.

    Settings may come from environment variables, a ``.env`` file, keyword
    arguments named after :class:`FacilitatorParameters` fields, or any mix.
    """
    return FacilitatorConfig.from_env(
        env_file=env_file,
        overrides=overrides,
        base=base,
        parameters=parameters,
        **explicit,
    )
