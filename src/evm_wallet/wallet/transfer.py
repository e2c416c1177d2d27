"""Native and ERC-20 transfers: validate, price, build, sign, broadcast.

A transfer moves through these stages and stops at the first failure::

    validated -> balance_checked -> fee_estimated -> built -> signed
              -> broadcast -> confirmed

:meth:`TransferOrchestrator.prepare` runs the read-only stages and returns a
:class:`TransferQuote` that a caller can show for confirmation.
:meth:`TransferOrchestrator.execute` reads a fresh nonce, signs, and
broadcasts. Broadcasting is never retried here: resending after an
ambiguous failure could double-spend.

Both methods raise only :class:`WalletError` subclasses. Node errors that
no specific error covers surface as :class:`TransferFailed`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, localcontext
from enum import Enum
from typing import Any, Callable

from eth_abi import encode as abi_encode
from web3 import Web3

from evm_wallet.config import WalletSettings
from evm_wallet.errors import (
    BroadcastFailed,
    InsufficientBalance,
    InvalidAddress,
    InvalidAmount,
    SigningFailed,
    TransferFailed,
    UnknownToken,
    WalletError,
)
from evm_wallet.wallet.chains import ChainDescriptor
from evm_wallet.wallet.gas import FeeEnvelope, FeeEstimator, FeeOptions
from evm_wallet.wallet.keystore import Signer
from evm_wallet.wallet.provider import RpcClient
from evm_wallet.wallet.registry import ChainRegistry
from evm_wallet.wallet.tokens import get_token_address

logger = logging.getLogger("evm_wallet.wallet.transfer")

ERC20_ABI: list[dict[str, Any]] = [
    {
        "name": "transfer",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "name": "symbol",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
]

TRANSFER_SELECTOR = bytes(Web3.keccak(text="transfer(address,uint256)")[:4])


class TransferStage(str, Enum):
    VALIDATED = "validated"
    BALANCE_CHECKED = "balance_checked"
    FEE_ESTIMATED = "fee_estimated"
    BUILT = "built"
    SIGNED = "signed"
    BROADCAST = "broadcast"
    CONFIRMED = "confirmed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Amount / calldata helpers
# ---------------------------------------------------------------------------


def parse_amount(value: str | int | Decimal) -> Decimal:
    """Parse a user-supplied amount; it must be a positive finite number."""
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite() or amount <= 0:
        raise InvalidAmount(f"Amount must be greater than zero: {value!r}")
    return amount


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Scale *amount* to integer base units, rejecting excess precision."""
    with localcontext() as ctx:
        ctx.prec = 100
        scaled = amount.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise InvalidAmount(
                f"Amount {amount} has more than {decimals} decimal places"
            )
        return int(scaled)


def from_base_units(value: int, decimals: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 100
        return (Decimal(value).scaleb(-decimals)).normalize()


def encode_transfer(to: str, amount: int) -> str:
    """ABI-encode an ERC-20 ``transfer(to, amount)`` call."""
    args = abi_encode(["address", "uint256"], [Web3.to_checksum_address(to), amount])
    return Web3.to_hex(TRANSFER_SELECTOR + args)


def _checksum(address: str, label: str) -> str:
    if not isinstance(address, str) or not Web3.is_address(address):
        raise InvalidAddress(address, label)
    return Web3.to_checksum_address(address)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransferIntent:
    """Send ``amount`` of ``token`` (native asset if ``None``) to ``to``.

    ``token`` may be a contract address or a symbol from the token catalog.
    """

    to: str
    amount: Decimal
    token: str | None = None

    @classmethod
    def create(
        cls, to: str, amount: str | int | Decimal, token: str | None = None
    ) -> TransferIntent:
        return cls(to=to, amount=parse_amount(amount), token=token or None)


@dataclass(frozen=True)
class TransferQuote:
    """Everything known about a transfer before it is signed."""

    chain: ChainDescriptor
    sender: str
    to: str
    amount: Decimal
    amount_base: int
    symbol: str
    decimals: int
    token_address: str | None
    balance_base: int
    fee: FeeEnvelope
    tx: dict[str, Any] = field(repr=False)

    @property
    def is_native(self) -> bool:
        return self.token_address is None

    @property
    def fee_cost_wei(self) -> int:
        return self.fee.max_cost_wei

    @property
    def total_native_wei(self) -> int:
        """Native asset leaving the wallet: amount plus fee, or just the fee."""
        if self.is_native:
            return self.amount_base + self.fee_cost_wei
        return self.fee_cost_wei

    def to_dict(self) -> dict[str, Any]:
        native_decimals = self.chain.native_decimals
        data = {
            "chain": self.chain.key,
            "from": self.sender,
            "to": self.to,
            "amount": format(self.amount, "f"),
            "symbol": self.symbol,
            "tokenAddress": self.token_address,
            "fee": self.fee.to_dict(),
            "estimatedFeeNative": format(
                from_base_units(self.fee_cost_wei, native_decimals), "f"
            ),
        }
        if self.is_native:
            data["totalDeduction"] = format(
                from_base_units(self.total_native_wei, native_decimals), "f"
            )
        return data


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of a broadcast transfer."""

    tx_hash: str
    chain: str
    sender: str
    to: str
    amount: Decimal
    symbol: str
    token_address: str | None
    nonce: int
    fee: FeeEnvelope
    explorer_url: str | None
    success: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "txHash": self.tx_hash,
            "explorerUrl": self.explorer_url,
            "from": self.sender,
            "to": self.to,
            "amount": format(self.amount, "f"),
            "symbol": self.symbol,
            "chain": self.chain,
            "tokenAddress": self.token_address,
            "nonce": self.nonce,
            "gasType": self.fee.fee_market.value,
            "fee": self.fee.to_dict(),
        }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class TransferOrchestrator:
    """Turns a :class:`TransferIntent` into a broadcast transaction."""

    def __init__(
        self,
        registry: ChainRegistry,
        signer: Signer,
        settings: WalletSettings | None = None,
        rpc_factory: Callable[[ChainDescriptor], RpcClient] | None = None,
    ) -> None:
        self.registry = registry
        self.signer = signer
        self.settings = settings or WalletSettings()
        self._rpc_factory = rpc_factory or self._default_rpc

    def _default_rpc(self, chain: ChainDescriptor) -> RpcClient:
        return RpcClient(
            chain,
            timeout=self.settings.rpc.timeout_seconds,
            retry_passes=self.settings.rpc.retry_passes,
        )

    def rpc_for(self, chain: ChainDescriptor) -> RpcClient:
        return self._rpc_factory(chain)

    def transfer(
        self,
        chain_name: str,
        intent: TransferIntent,
        options: FeeOptions | None = None,
    ) -> SubmissionResult:
        """Prepare and execute in one call, without a confirmation step."""
        return self.execute(self.prepare(chain_name, intent, options))

    # ------------------------------------------------------------------
    # Pre-flight
    # ------------------------------------------------------------------

    def prepare(
        self,
        chain_name: str,
        intent: TransferIntent,
        options: FeeOptions | None = None,
    ) -> TransferQuote:
        """Validate, check balances, and price a transfer. Sends nothing."""
        stage = None
        try:
            chain = self.registry.resolve(chain_name)
            sender = _checksum(self.signer.address, "sender address")
            to = _checksum(intent.to, "recipient address")
            amount = parse_amount(intent.amount)
            token_address = self._resolve_token(chain, intent.token)
            if token_address is None:
                # Catch excess precision before any network call.
                to_base_units(amount, chain.native_decimals)
            stage = self._advance(TransferStage.VALIDATED, chain)

            rpc = self.rpc_for(chain)
            if token_address is None:
                symbol, decimals = chain.native_symbol, chain.native_decimals
                amount_base = to_base_units(amount, decimals)
                balance = rpc.get_balance(sender)
                call_tx = {"from": sender, "to": to, "value": amount_base}
            else:
                decimals = int(rpc.read_contract(token_address, ERC20_ABI, "decimals"))
                symbol = str(rpc.read_contract(token_address, ERC20_ABI, "symbol"))
                amount_base = to_base_units(amount, decimals)
                balance = int(
                    rpc.read_contract(token_address, ERC20_ABI, "balanceOf", [sender])
                )
                call_tx = {
                    "from": sender,
                    "to": token_address,
                    "value": 0,
                    "data": encode_transfer(to, amount_base),
                }
            if balance < amount_base:
                raise InsufficientBalance(
                    have=from_base_units(balance, decimals), need=amount, symbol=symbol
                )
            stage = self._advance(TransferStage.BALANCE_CHECKED, chain)

            fee = FeeEstimator(rpc, self.settings.fees).estimate(call_tx, options)
            native_balance = balance if token_address is None else rpc.get_balance(sender)
            native_needed = fee.max_cost_wei + (amount_base if token_address is None else 0)
            if native_balance < native_needed:
                raise InsufficientBalance(
                    have=from_base_units(native_balance, chain.native_decimals),
                    need=from_base_units(native_needed, chain.native_decimals),
                    symbol=chain.native_symbol,
                )
            stage = self._advance(TransferStage.FEE_ESTIMATED, chain)
        except WalletError as exc:
            self._failed(chain_name, stage, exc)
            raise
        except Exception as exc:
            self._failed(chain_name, stage, exc)
            raise TransferFailed(f"Unexpected error: {exc}") from exc

        return TransferQuote(
            chain=chain,
            sender=sender,
            to=to,
            amount=amount,
            amount_base=amount_base,
            symbol=symbol,
            decimals=decimals,
            token_address=token_address,
            balance_base=balance,
            fee=fee,
            tx=call_tx,
        )

    # ------------------------------------------------------------------
    # Build / sign / broadcast
    # ------------------------------------------------------------------

    def execute(self, quote: TransferQuote) -> SubmissionResult:
        """Build with a fresh nonce, sign, and broadcast *quote*."""
        chain = quote.chain
        rpc = self.rpc_for(chain)
        stage = TransferStage.FEE_ESTIMATED
        try:
            nonce = rpc.get_transaction_count(quote.sender)
            tx = {k: v for k, v in quote.tx.items() if k != "from"}
            tx.update(quote.fee.tx_params())
            tx["nonce"] = nonce
            tx["chainId"] = chain.chain_id
            stage = self._advance(TransferStage.BUILT, chain, f"nonce={nonce}")

            try:
                raw = self.signer.sign_transaction(tx)
            except Exception as exc:
                raise SigningFailed(f"Signing failed: {exc}") from exc
            stage = self._advance(TransferStage.SIGNED, chain)

            try:
                tx_hash = rpc.send_raw_transaction(raw)
            except Exception as exc:
                raise BroadcastFailed(f"Transfer failed: {exc}") from exc
            stage = self._advance(TransferStage.BROADCAST, chain, tx_hash)
        except WalletError as exc:
            self._failed(chain.key, stage, exc)
            raise
        except Exception as exc:
            self._failed(chain.key, stage, exc)
            raise TransferFailed(f"Unexpected error: {exc}") from exc

        self._advance(TransferStage.CONFIRMED, chain, tx_hash)
        return SubmissionResult(
            tx_hash=tx_hash,
            chain=chain.key,
            sender=quote.sender,
            to=quote.to,
            amount=quote.amount,
            symbol=quote.symbol,
            token_address=quote.token_address,
            nonce=nonce,
            fee=quote.fee,
            explorer_url=chain.tx_url(tx_hash),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_token(chain: ChainDescriptor, token: str | None) -> str | None:
        if token is None:
            return None
        if token.lower().startswith("0x"):
            return _checksum(token, "token address")
        address = get_token_address(chain.key, token)
        if address is None:
            raise UnknownToken(f"Unknown token '{token}' on {chain.key}")
        return Web3.to_checksum_address(address)

    @staticmethod
    def _advance(
        stage: TransferStage, chain: ChainDescriptor, detail: str = ""
    ) -> TransferStage:
        suffix = f" ({detail})" if detail else ""
        logger.info(f"[{chain.key}] transfer {stage.value}{suffix}")
        return stage

    @staticmethod
    def _failed(
        chain_name: str, last_stage: TransferStage | None, exc: Exception
    ) -> None:
        reached = last_stage.value if last_stage else "none"
        logger.info(
            f"[{chain_name}] transfer {TransferStage.FAILED.value} "
            f"(last stage: {reached}): {exc}"
        )
