"""Pytest configuration and fixtures.

RPC endpoints are replaced by in-memory fakes that mimic the parts of
``web3.Web3`` the wallet uses (``w3.eth.*`` and ``w3.eth.contract``).
"""

from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
import requests

from evm_wallet.config import WalletSettings
from evm_wallet.wallet.chains import ChainDescriptor, FeeMarket
from evm_wallet.wallet.provider import RpcClient
from evm_wallet.wallet.registry import ChainRegistry

GWEI = 10**9
ETHER = 10**18

SENDER = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x2222222222222222222222222222222222222222"
TOKEN = "0x3333333333333333333333333333333333333333"


class _Call:
    def __init__(self, value: Any) -> None:
        self.value = value

    def call(self) -> Any:
        return self.value


class _TokenFunctions:
    def __init__(self, token: dict[str, Any]) -> None:
        self._token = token

    def decimals(self) -> _Call:
        return _Call(self._token["decimals"])

    def symbol(self) -> _Call:
        return _Call(self._token["symbol"])

    def balanceOf(self, account: str) -> _Call:  # noqa: N802
        return _Call(self._token["balances"].get(account.lower(), 0))


class _Contract:
    def __init__(self, token: dict[str, Any]) -> None:
        self.functions = _TokenFunctions(token)


class FakeNode:
    """An endpoint that answers every call from in-memory state."""

    def __init__(
        self,
        *,
        balance: int = 10 * ETHER,
        nonce: int = 0,
        gas_price: int = 3 * GWEI,
        base_fee: int | None = 10 * GWEI,
        latest_number: int = 100,
        blocks: dict[int, Any] | None = None,
        gas_estimate: int | Exception = 21_000,
        send_result: bytes | Exception = b"\xab" * 32,
        tokens: dict[str, dict[str, Any]] | None = None,
    ) -> None:
        self.balance = balance
        self.nonce = nonce
        self._gas_price = gas_price
        self.base_fee = base_fee
        self.latest_number = latest_number
        self.blocks = blocks or {}
        self.gas_estimate = gas_estimate
        self.send_result = send_result
        self.tokens = tokens or {}
        self.calls: list[tuple[str, Any]] = []

    def _record(self, name: str, arg: Any = None) -> None:
        self.calls.append((name, arg))

    def called(self, name: str) -> list[Any]:
        return [arg for call, arg in self.calls if call == name]

    # --- w3.eth surface -------------------------------------------------

    def get_balance(self, address: str) -> int:
        self._record("get_balance", address)
        return self.balance

    def get_transaction_count(self, address: str, block: str = "latest") -> int:
        self._record("get_transaction_count", (address, block))
        return self.nonce

    @property
    def gas_price(self) -> int:
        self._record("gas_price")
        return self._gas_price

    @property
    def block_number(self) -> int:
        self._record("block_number")
        return self.latest_number

    def get_block(self, identifier: Any, full_transactions: bool = False) -> Any:
        self._record("get_block", identifier)
        if identifier == "latest":
            block = {"number": self.latest_number, "transactions": []}
            if self.base_fee is not None:
                block["baseFeePerGas"] = self.base_fee
            return block
        block = self.blocks.get(identifier, {"number": identifier, "transactions": []})
        if isinstance(block, Exception):
            raise block
        return block

    def estimate_gas(self, tx: dict[str, Any]) -> int:
        self._record("estimate_gas", tx)
        if isinstance(self.gas_estimate, Exception):
            raise self.gas_estimate
        return self.gas_estimate

    def send_raw_transaction(self, raw: bytes) -> bytes:
        self._record("send_raw_transaction", raw)
        if isinstance(self.send_result, Exception):
            raise self.send_result
        return self.send_result

    def contract(self, address: str, abi: Any) -> _Contract:
        self._record("contract", address)
        return _Contract(self.tokens[address.lower()])


class DownNode:
    """An endpoint whose every call fails at the transport level."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error or requests.ConnectionError("connection refused")
        self.hits = 0

    def __getattr__(self, name: str) -> Any:
        self.hits += 1
        raise self.error


class FakeWeb3:
    def __init__(self, eth: Any) -> None:
        self.eth = eth


def web3_factory(nodes: dict[str, Any]):
    """Map endpoint URLs to fake nodes."""
    return lambda url: FakeWeb3(nodes[url])


class FakeSigner:
    """Records what it signs and returns fixed bytes."""

    def __init__(
        self,
        address: str = SENDER,
        raw: bytes = b"\x02signed",
        error: Exception | None = None,
    ) -> None:
        self._address = address
        self.raw = raw
        self.error = error
        self.signed: list[dict[str, Any]] = []

    @property
    def address(self) -> str:
        return self._address

    def sign_transaction(self, tx: dict[str, Any]) -> bytes:
        if self.error is not None:
            raise self.error
        self.signed.append(dict(tx))
        return self.raw


def make_chain(
    name: str = "testchain",
    urls: tuple[str, ...] = ("https://rpc-a.test", "https://rpc-b.test"),
    fee_market: FeeMarket = FeeMarket.EIP1559,
    chain_id: int = 8453,
    explorer_url: str | None = "https://scan.test",
) -> ChainDescriptor:
    return ChainDescriptor(
        name=name,
        chain_id=chain_id,
        display_name=name.title(),
        native_symbol="ETH",
        rpc_urls=urls,
        explorer_url=explorer_url,
        fee_market=fee_market,
    )


def make_rpc(chain: ChainDescriptor, nodes: dict[str, Any], retry_passes: int = 1) -> RpcClient:
    return RpcClient(chain, retry_passes=retry_passes, web3_factory=web3_factory(nodes))


@pytest.fixture
def chains_path(tmp_path: Path) -> Path:
    return tmp_path / "chains.json"


@pytest.fixture
def registry(chains_path: Path) -> ChainRegistry:
    return ChainRegistry.load(chains_path)


@pytest.fixture
def settings() -> WalletSettings:
    return WalletSettings()


@pytest.fixture
def half_ether() -> int:
    return int(Decimal("0.5") * ETHER)
