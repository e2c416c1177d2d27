"""Chain definitions for supported EVM networks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FeeMarket(str, Enum):
    """How a chain prices gas."""

    EIP1559 = "eip1559"
    LEGACY = "legacy"


@dataclass(frozen=True)
class ChainDescriptor:
    """An EVM-compatible blockchain network.

    ``rpc_urls`` is tried in order; the first entry is preferred.
    """

    name: str
    chain_id: int
    display_name: str
    native_symbol: str
    rpc_urls: tuple[str, ...]
    explorer_url: str | None = None
    native_decimals: int = 18
    fee_market: FeeMarket = FeeMarket.EIP1559

    @property
    def key(self) -> str:
        """Registry key: lower-cased name with whitespace collapsed to dashes."""
        return normalize_chain_name(self.name)

    @property
    def is_legacy(self) -> bool:
        return self.fee_market is FeeMarket.LEGACY

    def tx_url(self, tx_hash: str) -> str | None:
        if not self.explorer_url:
            return None
        return f"{self.explorer_url.rstrip('/')}/tx/{tx_hash}"

    def address_url(self, address: str) -> str | None:
        if not self.explorer_url:
            return None
        return f"{self.explorer_url.rstrip('/')}/address/{address}"


def normalize_chain_name(name: str) -> str:
    return "-".join(name.strip().lower().split())


BUILTIN_CHAINS: dict[str, ChainDescriptor] = {
    "ethereum": ChainDescriptor(
        name="ethereum",
        chain_id=1,
        display_name="Ethereum",
        native_symbol="ETH",
        rpc_urls=(
            "https://ethereum.publicnode.com",
            "https://cloudflare-eth.com",
            "https://rpc.ankr.com/eth",
        ),
        explorer_url="https://etherscan.io",
    ),
    "base": ChainDescriptor(
        name="base",
        chain_id=8453,
        display_name="Base",
        native_symbol="ETH",
        rpc_urls=(
            "https://mainnet.base.org",
            "https://base.publicnode.com",
            "https://base.llamarpc.com",
        ),
        explorer_url="https://basescan.org",
    ),
    "polygon": ChainDescriptor(
        name="polygon",
        chain_id=137,
        display_name="Polygon",
        native_symbol="POL",
        rpc_urls=(
            "https://polygon.llamarpc.com",
            "https://polygon.publicnode.com",
            "https://rpc.ankr.com/polygon",
        ),
        explorer_url="https://polygonscan.com",
    ),
    "arbitrum": ChainDescriptor(
        name="arbitrum",
        chain_id=42161,
        display_name="Arbitrum One",
        native_symbol="ETH",
        rpc_urls=(
            "https://arbitrum.publicnode.com",
            "https://arbitrum.llamarpc.com",
            "https://rpc.ankr.com/arbitrum",
        ),
        explorer_url="https://arbiscan.io",
    ),
    "optimism": ChainDescriptor(
        name="optimism",
        chain_id=10,
        display_name="Optimism",
        native_symbol="ETH",
        rpc_urls=(
            "https://optimism.publicnode.com",
            "https://optimism.llamarpc.com",
            "https://rpc.ankr.com/optimism",
        ),
        explorer_url="https://optimistic.etherscan.io",
    ),
    "megaeth": ChainDescriptor(
        name="megaeth",
        chain_id=4326,
        display_name="MegaETH",
        native_symbol="ETH",
        rpc_urls=(
            "https://mainnet.megaeth.com/rpc",
            "https://rpc-megaeth-mainnet.globalstake.io",
        ),
        explorer_url="https://mega.etherscan.io",
    ),
    # Accepts a zero gas price for sponsored transactions.
    "lightlink": ChainDescriptor(
        name="lightlink",
        chain_id=1890,
        display_name="LightLink Phoenix",
        native_symbol="ETH",
        rpc_urls=("https://replicator.phoenix.lightlink.io/rpc/v1",),
        explorer_url="https://phoenix.lightlink.io",
        fee_market=FeeMarket.LEGACY,
    ),
}
