"""Chain registry: built-in networks merged with user-defined ones.

User chains live in a JSON file (``~/.evm-wallet-chains.json`` by default)
keyed by chain name::

    {
      "berachain": {
        "chainId": 80094,
        "name": "berachain",
        "nativeToken": {"symbol": "BERA", "decimals": 18},
        "rpcs": ["https://rpc.berachain.com"],
        "explorer": {"name": "berachain Explorer", "url": "https://berascan.io"},
        "legacyGas": false
      }
    }

The file is read once when the registry is constructed. All writes go
through :meth:`ChainRegistry.add` and :meth:`ChainRegistry.remove`.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from evm_wallet.errors import (
    BuiltInImmutable,
    ChainConfigError,
    InvalidChainConfig,
    UnknownChain,
)
from evm_wallet.wallet.chains import (
    BUILTIN_CHAINS,
    ChainDescriptor,
    FeeMarket,
    normalize_chain_name,
)

logger = logging.getLogger("evm_wallet.wallet.registry")


# ---------------------------------------------------------------------------
# Persisted schema
# ---------------------------------------------------------------------------


class NativeTokenEntry(BaseModel):
    symbol: str = "ETH"
    decimals: int = 18


class ExplorerEntry(BaseModel):
    name: str = ""
    url: str


class UserChainEntry(BaseModel):
    """One chain as stored in the user chain file."""

    model_config = ConfigDict(populate_by_name=True)

    chain_id: int = Field(alias="chainId")
    name: str
    native_token: NativeTokenEntry = Field(
        default_factory=NativeTokenEntry, alias="nativeToken"
    )
    rpcs: list[str]
    explorer: Optional[ExplorerEntry] = None
    legacy_gas: bool = Field(default=False, alias="legacyGas")

    def to_descriptor(self, key: str) -> ChainDescriptor:
        return ChainDescriptor(
            name=key,
            chain_id=self.chain_id,
            display_name=self.name,
            native_symbol=self.native_token.symbol,
            native_decimals=self.native_token.decimals,
            rpc_urls=tuple(self.rpcs),
            explorer_url=self.explorer.url if self.explorer else None,
            fee_market=FeeMarket.LEGACY if self.legacy_gas else FeeMarket.EIP1559,
        )

    @classmethod
    def from_descriptor(cls, chain: ChainDescriptor) -> UserChainEntry:
        explorer = None
        if chain.explorer_url:
            explorer = ExplorerEntry(
                name=f"{chain.display_name} Explorer", url=chain.explorer_url
            )
        return cls(
            chain_id=chain.chain_id,
            name=chain.display_name,
            native_token=NativeTokenEntry(
                symbol=chain.native_symbol, decimals=chain.native_decimals
            ),
            rpcs=list(chain.rpc_urls),
            explorer=explorer,
            legacy_gas=chain.is_legacy,
        )


_USER_FILE_ADAPTER = TypeAdapter(dict[str, UserChainEntry])


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def is_valid_url(url: str) -> bool:
    """Return True for an absolute http(s) URL with a host."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_descriptor(chain: ChainDescriptor) -> None:
    """Raise :class:`InvalidChainConfig` if *chain* cannot be registered."""
    if not chain.key:
        raise InvalidChainConfig("Chain name must not be empty.")
    if isinstance(chain.chain_id, bool) or not isinstance(chain.chain_id, int) or chain.chain_id <= 0:
        raise InvalidChainConfig(f"Invalid chainId: {chain.chain_id!r}")
    if not chain.rpc_urls:
        raise InvalidChainConfig("At least one RPC URL is required.")
    for url in chain.rpc_urls:
        if not is_valid_url(url):
            raise InvalidChainConfig(f"Invalid RPC URL: {url}")
    if chain.explorer_url is not None and not is_valid_url(chain.explorer_url):
        raise InvalidChainConfig(f"Invalid explorer URL: {chain.explorer_url}")
    if chain.native_decimals < 0:
        raise InvalidChainConfig(f"Invalid decimals: {chain.native_decimals}")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ChainRegistry:
    """Built-in chains plus the user chain file, merged by name."""

    def __init__(
        self,
        path: Path,
        user_chains: dict[str, ChainDescriptor] | None = None,
        builtins: dict[str, ChainDescriptor] | None = None,
    ) -> None:
        self.path = path
        self._builtins = dict(BUILTIN_CHAINS if builtins is None else builtins)
        self._user: dict[str, ChainDescriptor] = dict(user_chains or {})

    @classmethod
    def load(cls, path: Path) -> ChainRegistry:
        """Build a registry from the built-ins and one read of *path*."""
        return cls(path, user_chains=_read_user_file(path))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def resolve(self, name: str) -> ChainDescriptor:
        """Look up a chain by name, case-insensitively."""
        key = normalize_chain_name(name)
        if key in self._user:
            return self._user[key]
        if key in self._builtins:
            return self._builtins[key]
        raise UnknownChain(name, self.names())

    def list(self) -> list[ChainDescriptor]:
        """Return every chain; user entries replace built-ins of the same name."""
        merged = dict(self._builtins)
        for key in sorted(self._user):
            merged[key] = self._user[key]
        return list(merged.values())

    def names(self) -> list[str]:
        return [chain.key for chain in self.list()]

    def is_builtin(self, name: str) -> bool:
        return normalize_chain_name(name) in self._builtins

    def is_user_defined(self, name: str) -> bool:
        return normalize_chain_name(name) in self._user

    def user_chain_names(self) -> list[str]:
        return sorted(self._user)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, chain: ChainDescriptor) -> str:
        """Validate and persist a user chain.

        Returns ``"updated"`` if a user chain of the same name was replaced,
        ``"added"`` otherwise.
        """
        validate_descriptor(chain)
        key = chain.key
        if chain.name != key:
            chain = dataclasses.replace(chain, name=key)

        action = "updated" if key in self._user else "added"
        updated = dict(self._user)
        updated[key] = chain
        _write_user_file(self.path, updated)
        self._user = updated
        logger.info(f"Chain '{key}' {action} (chainId={chain.chain_id})")
        return action

    def remove(self, name: str) -> ChainDescriptor:
        """Delete a user chain and return it."""
        key = normalize_chain_name(name)
        if key in self._builtins:
            raise BuiltInImmutable(key)
        if key not in self._user:
            raise UnknownChain(name, self.user_chain_names())

        updated = dict(self._user)
        removed = updated.pop(key)
        _write_user_file(self.path, updated)
        self._user = updated
        logger.info(f"Chain '{key}' removed (chainId={removed.chain_id})")
        return removed


# ---------------------------------------------------------------------------
# File I/O
# ---------------------------------------------------------------------------


def _read_user_file(path: Path) -> dict[str, ChainDescriptor]:
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8") or "{}")
        entries = _USER_FILE_ADAPTER.validate_python(raw)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ChainConfigError(f"Cannot read user chains from {path}: {exc}") from exc

    chains: dict[str, ChainDescriptor] = {}
    for raw_key, entry in entries.items():
        key = normalize_chain_name(raw_key)
        chain = entry.to_descriptor(key)
        try:
            validate_descriptor(chain)
        except InvalidChainConfig as exc:
            raise ChainConfigError(f"Chain '{raw_key}' in {path}: {exc}") from exc
        chains[key] = chain
    logger.debug(f"Loaded {len(chains)} user chain(s) from {path}")
    return chains


def _write_user_file(path: Path, chains: dict[str, ChainDescriptor]) -> None:
    """Atomically replace the user chain file."""
    data = {
        key: UserChainEntry.from_descriptor(chain).model_dump(
            by_alias=True, exclude_none=True
        )
        for key, chain in sorted(chains.items())
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
