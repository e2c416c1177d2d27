"""Configuration system for the EVM wallet.

Loads wallet settings from ``~/.evm-wallet/config.yaml`` (or the directory
named by ``EVM_WALLET_HOME``), supports environment variable expansion, and
resolves the paths of the user chain file and the keystore.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Substitute ``${NAME}`` with the value of environment variable NAME.

    Unset variables keep their placeholder, which then fails validation
    or shows up verbatim in the resolved path.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Apply :func:`_expand_env_vars` to every string in parsed YAML."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class RpcSettings(BaseModel):
    """Endpoint failover policy."""

    timeout_seconds: float = 10.0
    # Extra full passes over the endpoint list after the first one fails.
    retry_passes: int = Field(default=1, ge=0)


class FeeSettings(BaseModel):
    """Fee estimation defaults.

    Gwei values are converted to wei by :mod:`evm_wallet.wallet.gas`.
    """

    safety_margin: int = Field(default=2, ge=1)
    priority_fee_percentile: int = Field(default=75, ge=0, le=100)
    window_blocks: int = 20           # how far back the sample window reaches
    sample_blocks: int = 10           # blocks actually fetched from the window
    sample_stride: int = 2            # fetch every Nth block
    txs_per_block: int = 10
    min_priority_fee_gwei: float = 0.1
    default_priority_fee_gwei: float = 2.0
    gas_limit_buffer_percent: int = Field(default=20, ge=0)


class WalletSettings(BaseModel):
    """Root configuration object."""

    chains_file: Optional[str] = None  # defaults to ~/.evm-wallet-chains.json
    keystore_dir: Optional[str] = None  # defaults to the home dir
    rpc: RpcSettings = Field(default_factory=RpcSettings)
    fees: FeeSettings = Field(default_factory=FeeSettings)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------

DEFAULT_CHAINS_FILENAME = ".evm-wallet-chains.json"


def get_home_dir() -> Path:
    """Return the wallet home directory (no auto-create).

    ``EVM_WALLET_HOME`` overrides the default ``~/.evm-wallet``.
    """
    override = os.environ.get("EVM_WALLET_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".evm-wallet"


def get_chains_path(settings: WalletSettings) -> Path:
    """Return the path of the persisted user chain file."""
    if settings.chains_file:
        return Path(settings.chains_file).expanduser()
    return Path.home() / DEFAULT_CHAINS_FILENAME


def get_keystore_dir(settings: WalletSettings) -> Path:
    """Return the directory holding ``keystore.json``."""
    if settings.keystore_dir:
        return Path(settings.keystore_dir).expanduser()
    return get_home_dir()


def load_config(path: Path | None = None) -> WalletSettings:
    """Load and validate wallet settings from a YAML file.

    A missing file yields the defaults. Environment variable placeholders
    (``${VAR}``) are expanded before validation.
    """
    if path is None:
        path = get_home_dir() / "config.yaml"
    if not path.exists():
        return WalletSettings()
    raw_text = path.read_text(encoding="utf-8")
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _expand_env_recursive(raw_data)
    return WalletSettings.model_validate(expanded)


def save_config(settings: WalletSettings, path: Path) -> None:
    """Serialize :class:`WalletSettings` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = settings.model_dump(mode="python", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
