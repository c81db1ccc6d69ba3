"""
Known EVM networks for the exact scheme.

x402 v1 identifies networks by short names; CAIP-2 ``eip155:<chainId>``
identifiers and config-registered custom networks are accepted as well.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

__all__ = [
    "NETWORKS",
    "NetworkInfo",
    "UnknownNetworkError",
    "default_token_name",
    "resolve_chain_id",
]


class UnknownNetworkError(ValueError):
    """Raised when a network identifier cannot be mapped to a chain id."""


@dataclass(frozen=True)
class NetworkInfo:
    chain_id: int
    default_asset: Optional[str] = None
    default_token_name: Optional[str] = None


NETWORKS: Dict[str, NetworkInfo] = {
    "bsc": NetworkInfo(56, "0xf3A3E4D9c163251124229Da6DC9C98D889647804", "Wrapped USDC"),
    "bsc-testnet": NetworkInfo(97),
    "base": NetworkInfo(8453, "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", "USD Coin"),
    "base-sepolia": NetworkInfo(84532, "0x036CbD53842c5426634e7929541eC2318f3dCF7e", "USDC"),
    "avalanche": NetworkInfo(43114, "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E", "USD Coin"),
    "avalanche-fuji": NetworkInfo(43113, "0x5425890298aed601595a70AB815c96711a31Bc65", "USD Coin"),
    "iotex": NetworkInfo(4689),
    "sei": NetworkInfo(1329),
    "sei-testnet": NetworkInfo(1328),
    "polygon": NetworkInfo(137, "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359", "USD Coin"),
    "polygon-amoy": NetworkInfo(80002, "0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582", "USDC"),
    "peaq": NetworkInfo(3338),
    "skale-base-sepolia": NetworkInfo(324705682),
}


def resolve_chain_id(
    network: str,
    custom_networks: Optional[Mapping[str, int]] = None,
) -> int:
    if custom_networks and network in custom_networks:
        return int(custom_networks[network])

    info = NETWORKS.get(network)
    if info is not None:
        return info.chain_id

    if network.startswith("eip155:"):
        reference = network.split(":", 1)[1]
        if reference.isdigit() and int(reference) > 0:
            return int(reference)

    raise UnknownNetworkError(f"Unknown network: {network}")


def default_token_name(network: str, asset: str) -> Optional[str]:
    """Return the EIP-712 name of the network's default asset, if ``asset`` is it."""
    info = NETWORKS.get(network)
    if info is None or info.default_asset is None:
        return None
    if info.default_asset.lower() != asset.lower():
        return None
    return info.default_token_name
