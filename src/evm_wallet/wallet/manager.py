"""High-level wallet manager used by the CLI and by agents."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable

from evm_wallet.config import (
    WalletSettings,
    get_chains_path,
    get_keystore_dir,
    load_config,
)
from evm_wallet.errors import WalletError
from evm_wallet.wallet.chains import ChainDescriptor
from evm_wallet.wallet.gas import FeeEnvelope, FeeEstimator, FeeOptions
from evm_wallet.wallet.keystore import (
    KeystoreSigner,
    Signer,
    create_wallet,
    keystore_path,
    load_address,
)
from evm_wallet.wallet.provider import RpcClient
from evm_wallet.wallet.registry import ChainRegistry
from evm_wallet.wallet.transfer import (
    SubmissionResult,
    TransferIntent,
    TransferOrchestrator,
    from_base_units,
)

logger = logging.getLogger("evm_wallet.wallet.manager")


class WalletManager:
    """Ties together settings, the chain registry, the keystore and RPC."""

    def __init__(
        self,
        settings: WalletSettings,
        registry: ChainRegistry,
        wallet_dir: Path,
        rpc_factory: Callable[[ChainDescriptor], RpcClient] | None = None,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.wallet_dir = wallet_dir
        self._rpc_factory = rpc_factory

    @classmethod
    def load(cls, config_path: Path | None = None) -> WalletManager:
        """Build a manager from the config file and the user chain file."""
        settings = load_config(config_path)
        registry = ChainRegistry.load(get_chains_path(settings))
        return cls(settings, registry, get_keystore_dir(settings))

    def rpc_for(self, chain: ChainDescriptor) -> RpcClient:
        if self._rpc_factory is not None:
            return self._rpc_factory(chain)
        return RpcClient(
            chain,
            timeout=self.settings.rpc.timeout_seconds,
            retry_passes=self.settings.rpc.retry_passes,
        )

    # ------------------------------------------------------------------
    # Wallet lifecycle
    # ------------------------------------------------------------------

    def create(self, password: str) -> str:
        """Create a new wallet and return the address."""
        return create_wallet(self.wallet_dir, password)

    def has_wallet(self) -> bool:
        """Check whether a keystore exists."""
        return keystore_path(self.wallet_dir).exists()

    @property
    def address(self) -> str | None:
        """The wallet address, or ``None`` if no wallet exists."""
        return load_address(self.wallet_dir)

    def unlock(self, password: str) -> KeystoreSigner:
        return KeystoreSigner.from_keystore(self.wallet_dir, password)

    # ------------------------------------------------------------------
    # Balances and fees
    # ------------------------------------------------------------------

    def get_balance(self, chain_name: str, address: str | None = None) -> dict[str, Any]:
        """Native balance on one chain as ``{balance, symbol, error}``.

        Network errors are reported in ``error`` rather than raised, so one
        bad chain never hides the others.
        """
        chain = self.registry.resolve(chain_name)
        addr = address or self.address
        if addr is None:
            raise FileNotFoundError("No wallet found. Run 'evm-wallet wallet create'.")
        try:
            wei = self.rpc_for(chain).get_balance(addr)
            return {
                "balance": format(from_base_units(wei, chain.native_decimals), "f"),
                "symbol": chain.native_symbol,
                "error": None,
            }
        except Exception as e:
            logger.warning(f"Failed to get balance on {chain.key}: {e}")
            return {"balance": "0", "symbol": chain.native_symbol, "error": str(e)}

    async def get_all_balances(
        self, address: str | None = None, chain_names: list[str] | None = None
    ) -> dict[str, dict[str, Any]]:
        """Query native balances on many chains concurrently."""
        addr = address or self.address
        if addr is None:
            raise FileNotFoundError("No wallet found. Run 'evm-wallet wallet create'.")
        names = chain_names or self.registry.names()

        def _one(name: str) -> dict[str, Any]:
            try:
                return self.get_balance(name, addr)
            except WalletError as e:
                logger.warning(f"Failed to get balance on {name}: {e}")
                return {"balance": "0", "symbol": "", "error": str(e)}

        results = await asyncio.gather(
            *(asyncio.to_thread(_one, name) for name in names)
        )
        return dict(zip(names, results))

    def get_fees(self, chain_name: str, options: FeeOptions | None = None) -> FeeEnvelope:
        """Current fee prices on one chain (no gas limit)."""
        chain = self.registry.resolve(chain_name)
        estimator = FeeEstimator(self.rpc_for(chain), self.settings.fees)
        return estimator.estimate_fees(options)

    async def get_all_fees(
        self, chain_names: list[str] | None = None
    ) -> dict[str, dict[str, Any]]:
        """Current fee prices on many chains; failures are isolated per chain."""
        names = chain_names or self.registry.names()

        def _one(name: str) -> dict[str, Any]:
            try:
                return {"success": True, **self.get_fees(name).to_dict()}
            except Exception as e:
                logger.warning(f"Failed to estimate fees on {name}: {e}")
                return {"success": False, "error": str(e)}

        results = await asyncio.gather(
            *(asyncio.to_thread(_one, name) for name in names)
        )
        return dict(zip(names, results))

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def orchestrator(self, signer: Signer) -> TransferOrchestrator:
        return TransferOrchestrator(
            self.registry, signer, self.settings, rpc_factory=self.rpc_for
        )

    def transfer(
        self,
        signer: Signer,
        chain_name: str,
        intent: TransferIntent,
        options: FeeOptions | None = None,
    ) -> SubmissionResult:
        result = self.orchestrator(signer).transfer(chain_name, intent, options)
        logger.info(f"Transfer sent on {result.chain}: tx={result.tx_hash}")
        return result

    # ------------------------------------------------------------------
    # Explorer links
    # ------------------------------------------------------------------

    def explorer_tx_url(self, chain_name: str, tx_hash: str) -> str | None:
        return self.registry.resolve(chain_name).tx_url(tx_hash)

    def explorer_address_url(self, chain_name: str, address: str) -> str | None:
        return self.registry.resolve(chain_name).address_url(address)
