"""Gas fee estimation for EIP-1559 and legacy fee markets.

The fee *price* is best effort: when priority-fee sampling fails it falls
back to safer defaults instead of raising, since an underpriced transaction
only confirms slowly. The gas *limit* is not: if the node cannot simulate
the transaction, :class:`GasEstimationFailed` is raised and nothing is sent.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from web3 import Web3

from evm_wallet.config import FeeSettings
from evm_wallet.errors import GasEstimationFailed
from evm_wallet.wallet.chains import FeeMarket
from evm_wallet.wallet.provider import RpcClient

logger = logging.getLogger("evm_wallet.wallet.gas")


def parse_gwei(value: str | float | Decimal) -> int:
    """Convert a gwei amount to wei."""
    return int(Web3.to_wei(Decimal(str(value)), "gwei"))


def format_gwei(wei: int) -> str:
    """Render a wei amount as gwei without trailing zeros."""
    return format(Decimal(Web3.from_wei(wei, "gwei")).normalize(), "f")


@dataclass(frozen=True)
class FeeEnvelope:
    """Priced fee parameters for a single transaction.

    ``gas_limit`` is 0 for envelopes produced by
    :meth:`FeeEstimator.estimate_fees`, which prices gas without simulating
    a transaction.
    """

    fee_market: FeeMarket
    gas_limit: int = 0
    gas_price: int | None = None
    base_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None
    max_fee_per_gas: int | None = None

    @property
    def price_per_gas(self) -> int:
        """The most the sender can pay per unit of gas."""
        if self.fee_market is FeeMarket.EIP1559:
            return self.max_fee_per_gas or 0
        return self.gas_price or 0

    @property
    def max_cost_wei(self) -> int:
        return self.price_per_gas * self.gas_limit

    def with_gas_limit(self, gas_limit: int) -> FeeEnvelope:
        return dataclasses.replace(self, gas_limit=gas_limit)

    def tx_params(self) -> dict[str, int]:
        """Fee fields to merge into an unsigned transaction."""
        if self.fee_market is FeeMarket.EIP1559:
            params = {
                "maxFeePerGas": self.max_fee_per_gas,
                "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            }
        elif self.fee_market is FeeMarket.LEGACY:
            params = {"gasPrice": self.gas_price}
        else:
            raise ValueError(f"Unhandled fee market: {self.fee_market}")
        if self.gas_limit:
            params["gas"] = self.gas_limit
        return params

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.fee_market.value}
        if self.gas_limit:
            data["gasLimit"] = str(self.gas_limit)
            data["estimatedCostWei"] = str(self.max_cost_wei)
            data["estimatedCostNative"] = str(Web3.from_wei(self.max_cost_wei, "ether"))
        if self.fee_market is FeeMarket.EIP1559:
            data["baseFeePerGas"] = str(self.base_fee_per_gas)
            data["maxPriorityFeePerGas"] = str(self.max_priority_fee_per_gas)
            data["maxFeePerGas"] = str(self.max_fee_per_gas)
            data["baseFeeGwei"] = format_gwei(self.base_fee_per_gas or 0)
            data["priorityFeeGwei"] = format_gwei(self.max_priority_fee_per_gas or 0)
            data["maxFeeGwei"] = format_gwei(self.max_fee_per_gas or 0)
        else:
            data["gasPrice"] = str(self.gas_price)
            data["gasPriceGwei"] = format_gwei(self.gas_price or 0)
        return data


@dataclass(frozen=True)
class FeeOptions:
    """Per-call overrides; ``None`` means "use the configured default"."""

    safety_margin: int | None = None
    priority_fee_percentile: int | None = None
    # Legacy gas price override in wei. 0 is valid (gasless chains).
    gas_price: int | None = None

    def __post_init__(self) -> None:
        if self.safety_margin is not None and self.safety_margin < 1:
            raise ValueError(f"safety_margin must be >= 1, got {self.safety_margin}")
        if self.priority_fee_percentile is not None and not (
            0 <= self.priority_fee_percentile <= 100
        ):
            raise ValueError(
                f"priority_fee_percentile must be 0-100, got {self.priority_fee_percentile}"
            )
        if self.gas_price is not None and self.gas_price < 0:
            raise ValueError(f"gas_price must be >= 0, got {self.gas_price}")


class FeeEstimator:
    """Prices transactions for one chain."""

    def __init__(self, rpc: RpcClient, settings: FeeSettings | None = None) -> None:
        self.rpc = rpc
        self.settings = settings or FeeSettings()

    @property
    def min_priority_fee(self) -> int:
        return parse_gwei(self.settings.min_priority_fee_gwei)

    @property
    def default_priority_fee(self) -> int:
        return parse_gwei(self.settings.default_priority_fee_gwei)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def estimate(self, tx: dict[str, Any], options: FeeOptions | None = None) -> FeeEnvelope:
        """Price *tx* and attach a buffered gas limit."""
        envelope = self.estimate_fees(options)
        return envelope.with_gas_limit(self.estimate_gas_limit(tx))

    def estimate_fees(self, options: FeeOptions | None = None) -> FeeEnvelope:
        """Price gas for the chain's fee market without a gas limit."""
        options = options or FeeOptions()
        market = self.rpc.chain.fee_market
        if market is FeeMarket.EIP1559:
            return self._estimate_eip1559(options)
        elif market is FeeMarket.LEGACY:
            return self._estimate_legacy(options)
        raise ValueError(f"Unhandled fee market: {market}")

    def estimate_gas_limit(self, tx: dict[str, Any]) -> int:
        """Simulate *tx* and add the configured safety buffer."""
        try:
            raw = int(self.rpc.estimate_gas(tx))
        except Exception as exc:
            raise GasEstimationFailed(f"Failed to estimate gas limit: {exc}") from exc
        return raw + raw * self.settings.gas_limit_buffer_percent // 100

    # ------------------------------------------------------------------
    # Fee markets
    # ------------------------------------------------------------------

    def _estimate_eip1559(self, options: FeeOptions) -> FeeEnvelope:
        try:
            latest = self.rpc.get_block("latest")
        except Exception as exc:
            logger.warning(
                f"{self.rpc.chain.key}: cannot read latest block ({exc}), "
                "using legacy gas price"
            )
            return self._estimate_legacy(options)
        base_fee = latest.get("baseFeePerGas")
        if base_fee is None:
            logger.info(
                f"{self.rpc.chain.key}: latest block has no baseFeePerGas, "
                "using legacy gas price"
            )
            return self._estimate_legacy(options)

        margin = (
            options.safety_margin
            if options.safety_margin is not None
            else self.settings.safety_margin
        )
        priority_fee = self.estimate_priority_fee(
            options.priority_fee_percentile
            if options.priority_fee_percentile is not None
            else self.settings.priority_fee_percentile
        )
        return FeeEnvelope(
            fee_market=FeeMarket.EIP1559,
            base_fee_per_gas=base_fee,
            max_priority_fee_per_gas=priority_fee,
            max_fee_per_gas=base_fee * margin + priority_fee,
        )

    def _estimate_legacy(self, options: FeeOptions) -> FeeEnvelope:
        if options.gas_price is not None:
            gas_price = options.gas_price
        else:
            gas_price = self.rpc.get_gas_price()
        return FeeEnvelope(fee_market=FeeMarket.LEGACY, gas_price=gas_price)

    # ------------------------------------------------------------------
    # Priority-fee sampling
    # ------------------------------------------------------------------

    def estimate_priority_fee(self, percentile: int) -> int:
        """Pick a priority fee from recent blocks.

        Returns the default priority fee when nothing could be sampled.
        """
        try:
            samples = self.sample_priority_fees()
        except Exception as exc:
            logger.warning(
                f"{self.rpc.chain.key}: priority fee sampling failed ({exc}), "
                "using default"
            )
            return self.default_priority_fee

        if not samples:
            return self.default_priority_fee

        samples.sort()
        selected = samples[percentile * (len(samples) - 1) // 100]
        return max(selected, self.min_priority_fee)

    def sample_priority_fees(self) -> list[int]:
        """Collect ``maxPriorityFeePerGas`` from a window of recent blocks."""
        s = self.settings
        latest_number = self.rpc.get_block_number()
        start = latest_number - s.window_blocks + 1

        fees: list[int] = []
        for i in range(s.sample_blocks):
            number = start + i * s.sample_stride
            if number < 0:
                continue
            if number > latest_number:
                break
            try:
                block = self.rpc.get_block(number, full_transactions=True)
            except Exception as exc:
                logger.debug(f"{self.rpc.chain.key}: skipping block {number}: {exc}")
                continue
            for tx in (block.get("transactions") or [])[: s.txs_per_block]:
                if not isinstance(tx, Mapping):
                    continue
                priority = tx.get("maxPriorityFeePerGas")
                if priority is not None and tx.get("maxFeePerGas") is not None:
                    fees.append(int(priority))
        return fees
