"""Tests for the transfer orchestrator."""

from decimal import Decimal

import pytest
import requests
from web3.exceptions import Web3RPCError

from conftest import (
    ETHER,
    GWEI,
    RECIPIENT,
    SENDER,
    TOKEN,
    DownNode,
    FakeNode,
    FakeSigner,
    FakeWeb3,
    make_chain,
    make_rpc,
)
from evm_wallet.errors import (
    BroadcastFailed,
    GasEstimationFailed,
    InsufficientBalance,
    InvalidAddress,
    InvalidAmount,
    SigningFailed,
    TransferFailed,
    UnknownChain,
    UnknownToken,
)
from evm_wallet.wallet.chains import FeeMarket
from evm_wallet.wallet.gas import FeeOptions
from evm_wallet.wallet.provider import RpcClient
from evm_wallet.wallet.tokens import get_token_address
from evm_wallet.wallet.transfer import (
    TRANSFER_SELECTOR,
    TransferIntent,
    TransferOrchestrator,
    encode_transfer,
    from_base_units,
    parse_amount,
    to_base_units,
)

A, B = "https://rpc-a.test", "https://rpc-b.test"
TX_HASH = "0x" + "ab" * 32


@pytest.fixture
def chain(registry):
    chain = make_chain()
    registry.add(chain)
    return chain


def _orchestrator(registry, nodes, signer=None) -> TransferOrchestrator:
    """Route every chain's endpoints to *nodes* (a URL map or a single node)."""
    if isinstance(nodes, dict):
        factory = lambda chain: make_rpc(chain, nodes)  # noqa: E731
    else:
        factory = lambda chain: RpcClient(  # noqa: E731
            chain, web3_factory=lambda url: FakeWeb3(nodes)
        )
    return TransferOrchestrator(registry, signer or FakeSigner(), rpc_factory=factory)


def _token_node(token_balance: int = 5_000_000, decimals: int = 6, symbol: str = "TKN", **kwargs):
    token = {"decimals": decimals, "symbol": symbol, "balances": {SENDER.lower(): token_balance}}
    return FakeNode(tokens={TOKEN.lower(): token}, **kwargs)


class TestNativeTransfer:

    def test_insufficient_balance_stops_before_pricing(self, registry, chain, half_ether):
        """0.5 ETH held, 1.0 ETH requested."""
        node = FakeNode(balance=half_ether)
        signer = FakeSigner()
        orch = _orchestrator(registry, {A: node}, signer)

        with pytest.raises(InsufficientBalance) as exc_info:
            orch.transfer("testchain", TransferIntent.create(RECIPIENT, "1.0"))

        assert exc_info.value.have == Decimal("0.5")
        assert exc_info.value.need == Decimal("1.0")
        assert "Have: 0.5 ETH, Need: 1.0 ETH" in str(exc_info.value)
        assert node.called("estimate_gas") == []
        assert node.called("send_raw_transaction") == []
        assert signer.signed == []

    def test_first_endpoint_timeout_fails_over(self, registry, chain, half_ether):
        node = FakeNode(nonce=5)
        orch = _orchestrator(registry, {A: DownNode(requests.Timeout("timed out")), B: node})

        result = orch.transfer("testchain", TransferIntent.create(RECIPIENT, "0.5"))

        assert result.nonce == 5
        assert result.tx_hash == TX_HASH
        assert len(node.called("send_raw_transaction")) == 1

    def test_successful_transfer(self, registry, chain, half_ether):
        node = FakeNode(nonce=3, base_fee=10 * GWEI)
        signer = FakeSigner()
        orch = _orchestrator(registry, {A: node}, signer)

        result = orch.transfer("TESTCHAIN", TransferIntent.create(RECIPIENT, "0.5"))

        assert result.success
        assert result.explorer_url == f"https://scan.test/tx/{TX_HASH}"
        assert result.symbol == "ETH"
        assert result.token_address is None
        assert node.called("send_raw_transaction") == [b"\x02signed"]

        (tx,) = signer.signed
        assert "from" not in tx
        assert tx == {
            "to": RECIPIENT,
            "value": half_ether,
            "maxFeePerGas": 2 * 10 * GWEI + 2 * GWEI,
            "maxPriorityFeePerGas": 2 * GWEI,
            "gas": 25_200,
            "nonce": 3,
            "chainId": 8453,
        }

    def test_result_to_dict(self, registry, chain):
        orch = _orchestrator(registry, {A: FakeNode()})
        data = orch.transfer("testchain", TransferIntent.create(RECIPIENT, "0.5")).to_dict()

        assert data["success"] is True
        assert data["txHash"] == TX_HASH
        assert data["from"] == SENDER
        assert data["amount"] == "0.5"
        assert data["gasType"] == "eip1559"
        assert data["fee"]["gasLimit"] == "25200"

    def test_native_must_cover_fee(self, registry, chain, half_ether):
        node = FakeNode(balance=half_ether)
        signer = FakeSigner()
        orch = _orchestrator(registry, {A: node}, signer)

        with pytest.raises(InsufficientBalance, match="ETH"):
            orch.transfer("testchain", TransferIntent.create(RECIPIENT, "0.5"))
        assert signer.signed == []

    def test_legacy_chain_uses_gas_price(self, registry):
        registry.add(make_chain(name="oldchain", fee_market=FeeMarket.LEGACY))
        signer = FakeSigner()
        orch = _orchestrator(registry, {A: FakeNode(gas_price=4 * GWEI)}, signer)

        result = orch.transfer("oldchain", TransferIntent.create(RECIPIENT, "0.5"))

        (tx,) = signer.signed
        assert tx["gasPrice"] == 4 * GWEI
        assert "maxFeePerGas" not in tx
        assert result.to_dict()["gasType"] == "legacy"

    def test_gasless_chain_with_zero_gas_price(self, registry):
        node = FakeNode(balance=1 * ETHER)
        signer = FakeSigner()
        orch = _orchestrator(registry, node, signer)

        orch.transfer(
            "lightlink",
            TransferIntent.create(RECIPIENT, "1"),
            FeeOptions(gas_price=0),
        )

        (tx,) = signer.signed
        assert tx["gasPrice"] == 0
        assert tx["chainId"] == 1890
        assert node.called("gas_price") == []

    def test_nonce_read_at_execute(self, registry, chain):
        node = FakeNode(nonce=1)
        signer = FakeSigner()
        orch = _orchestrator(registry, {A: node}, signer)

        quote = orch.prepare("testchain", TransferIntent.create(RECIPIENT, "0.5"))
        assert node.called("get_transaction_count") == []
        node.nonce = 8
        orch.execute(quote)

        assert signer.signed[0]["nonce"] == 8


class TestQuote:

    def test_total_native_includes_amount(self, registry, chain, half_ether):
        orch = _orchestrator(registry, {A: FakeNode()})
        quote = orch.prepare("testchain", TransferIntent.create(RECIPIENT, "0.5"))

        assert quote.is_native
        assert quote.fee_cost_wei == 25_200 * (22 * GWEI)
        assert quote.total_native_wei == half_ether + quote.fee_cost_wei
        assert "totalDeduction" in quote.to_dict()

    def test_token_quote_total_is_fee_only(self, registry, chain):
        orch = _orchestrator(registry, {A: _token_node()})
        quote = orch.prepare("testchain", TransferIntent.create(RECIPIENT, "1", TOKEN))

        assert not quote.is_native
        assert quote.total_native_wei == quote.fee_cost_wei
        assert "totalDeduction" not in quote.to_dict()


class TestTokenTransfer:

    def test_token_transfer_encodes_call(self, registry, chain):
        node = _token_node()
        signer = FakeSigner()
        orch = _orchestrator(registry, {A: node}, signer)

        result = orch.transfer("testchain", TransferIntent.create(RECIPIENT, "2.5", TOKEN))

        (tx,) = signer.signed
        assert tx["to"] == TOKEN
        assert tx["value"] == 0
        assert tx["data"] == encode_transfer(RECIPIENT, 2_500_000)
        assert tx["data"].startswith("0x" + TRANSFER_SELECTOR.hex())
        assert result.symbol == "TKN"
        assert result.token_address == TOKEN

    def test_catalog_symbol_resolves(self, registry):
        usdc = get_token_address("base", "USDC")
        token = {"decimals": 6, "symbol": "USDC", "balances": {SENDER.lower(): 10_000_000}}
        node = FakeNode(tokens={usdc.lower(): token})
        orch = _orchestrator(registry, node)

        result = orch.transfer("base", TransferIntent.create(RECIPIENT, "1", "usdc"))

        assert result.token_address.lower() == usdc.lower()
        assert result.symbol == "USDC"

    def test_unknown_token_symbol(self, registry, chain):
        node = FakeNode()
        orch = _orchestrator(registry, {A: node})
        with pytest.raises(UnknownToken):
            orch.prepare("testchain", TransferIntent.create(RECIPIENT, "1", "NOPE"))
        assert node.calls == []

    def test_insufficient_token_balance(self, registry, chain):
        orch = _orchestrator(registry, {A: _token_node(token_balance=1_000_000)})
        with pytest.raises(InsufficientBalance) as exc_info:
            orch.prepare("testchain", TransferIntent.create(RECIPIENT, "2", TOKEN))
        assert exc_info.value.symbol == "TKN"
        assert exc_info.value.have == Decimal("1")

    def test_token_transfer_needs_native_for_fee(self, registry, chain):
        signer = FakeSigner()
        orch = _orchestrator(registry, {A: _token_node(balance=0)}, signer)
        with pytest.raises(InsufficientBalance) as exc_info:
            orch.transfer("testchain", TransferIntent.create(RECIPIENT, "1", TOKEN))
        assert exc_info.value.symbol == "ETH"
        assert signer.signed == []

    def test_too_many_token_decimals(self, registry, chain):
        orch = _orchestrator(registry, {A: _token_node()})
        with pytest.raises(InvalidAmount):
            orch.prepare("testchain", TransferIntent.create(RECIPIENT, "1.0000001", TOKEN))


class TestValidation:
    """Failures that must happen before anything is sent."""

    @pytest.mark.parametrize("to", ["0x1234", "not-an-address", "", "0x" + "zz" * 20])
    def test_invalid_recipient(self, registry, chain, to):
        node = FakeNode()
        orch = _orchestrator(registry, {A: node})
        with pytest.raises(InvalidAddress):
            orch.prepare("testchain", TransferIntent(to=to, amount=Decimal("1")))
        assert node.calls == []

    def test_invalid_token_address(self, registry, chain):
        orch = _orchestrator(registry, {A: FakeNode()})
        with pytest.raises(InvalidAddress):
            orch.prepare("testchain", TransferIntent.create(RECIPIENT, "1", "0x1234"))

    def test_unknown_chain(self, registry):
        with pytest.raises(UnknownChain):
            _orchestrator(registry, {}).prepare(
                "nonexistent", TransferIntent.create(RECIPIENT, "1")
            )

    def test_native_excess_decimals_rejected_offline(self, registry, chain):
        node = FakeNode()
        orch = _orchestrator(registry, {A: node})
        with pytest.raises(InvalidAmount):
            orch.prepare("testchain", TransferIntent.create(RECIPIENT, "0." + "0" * 18 + "1"))
        assert node.calls == []

    @pytest.mark.parametrize("amount", ["0", "-1", "abc", "", "NaN", "Infinity"])
    def test_invalid_amounts(self, amount):
        with pytest.raises(InvalidAmount):
            parse_amount(amount)


class TestSignAndBroadcast:

    def test_signing_failure(self, registry, chain):
        node = FakeNode()
        orch = _orchestrator(registry, {A: node}, FakeSigner(error=RuntimeError("locked")))
        with pytest.raises(SigningFailed, match="locked"):
            orch.transfer("testchain", TransferIntent.create(RECIPIENT, "0.5"))
        assert node.called("send_raw_transaction") == []

    def test_broadcast_rejection_is_not_retried(self, registry, chain):
        first = FakeNode(send_result=ValueError("nonce too low"))
        second = FakeNode()
        orch = _orchestrator(registry, {A: first, B: second})

        with pytest.raises(BroadcastFailed, match="nonce too low"):
            orch.transfer("testchain", TransferIntent.create(RECIPIENT, "0.5"))
        assert len(first.called("send_raw_transaction")) == 1
        assert second.called("send_raw_transaction") == []

    def test_broadcast_with_all_endpoints_down(self, registry, chain):
        class SendsNothing(FakeNode):
            def send_raw_transaction(self, raw):
                raise requests.ConnectionError("refused")

        orch = _orchestrator(registry, {A: SendsNothing(), B: SendsNothing()})
        with pytest.raises(BroadcastFailed, match="All RPC endpoints failed"):
            orch.transfer("testchain", TransferIntent.create(RECIPIENT, "0.5"))

    def test_gas_estimation_failure_stops_transfer(self, registry, chain):
        node = FakeNode(gas_estimate=ValueError("execution reverted"))
        signer = FakeSigner()
        orch = _orchestrator(registry, {A: node}, signer)

        with pytest.raises(GasEstimationFailed):
            orch.transfer("testchain", TransferIntent.create(RECIPIENT, "0.5"))
        assert signer.signed == []
        assert node.called("send_raw_transaction") == []


class TestNodeErrors:
    """Errors with no specific meaning surface as TransferFailed."""

    def test_balance_read_error(self, registry, chain):
        node = FakeNode()

        def get_balance(address):
            raise Web3RPCError("header not found")

        node.get_balance = get_balance
        orch = _orchestrator(registry, {A: node})

        with pytest.raises(TransferFailed, match="header not found") as exc_info:
            orch.prepare("testchain", TransferIntent.create(RECIPIENT, "0.5"))
        assert isinstance(exc_info.value.__cause__, Web3RPCError)

    def test_token_decimals_read_error(self, registry, chain):
        class NoContracts(FakeNode):
            def contract(self, address, abi):
                raise Web3RPCError("execution aborted")

        orch = _orchestrator(registry, {A: NoContracts()})
        with pytest.raises(TransferFailed, match="execution aborted"):
            orch.prepare("testchain", TransferIntent.create(RECIPIENT, "1", TOKEN))

    def test_nonce_read_error(self, registry, chain):
        node = FakeNode()
        signer = FakeSigner()
        orch = _orchestrator(registry, {A: node}, signer)
        quote = orch.prepare("testchain", TransferIntent.create(RECIPIENT, "0.5"))

        def get_transaction_count(address, block="latest"):
            raise Web3RPCError("nonce unavailable")

        node.get_transaction_count = get_transaction_count
        with pytest.raises(TransferFailed, match="nonce unavailable"):
            orch.execute(quote)
        assert signer.signed == []
        assert node.called("send_raw_transaction") == []


class TestUnits:

    def test_to_base_units(self):
        assert to_base_units(Decimal("1.5"), 6) == 1_500_000
        assert to_base_units(Decimal("0.000000000000000001"), 18) == 1

    def test_excess_precision(self):
        with pytest.raises(InvalidAmount):
            to_base_units(Decimal("1.0000001"), 6)

    def test_from_base_units(self):
        assert from_base_units(1_500_000, 6) == Decimal("1.5")
        assert from_base_units(0, 18) == 0
