"""Web3 RPC access with ordered endpoint failover.

Each logical call walks the chain's ``rpc_urls`` in order. Transport
failures (connection refused, timeouts, HTTP 5xx/429) move on to the next
endpoint; RPC error responses and contract reverts are raised unchanged.
When every endpoint has failed, the whole pass is repeated
``retry_passes`` more times before :class:`RpcExhausted` is raised.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, TypeVar

import requests
from web3 import Web3
from web3.exceptions import ProviderConnectionError
from web3.middleware import ExtraDataToPOAMiddleware

from evm_wallet.errors import RpcExhausted
from evm_wallet.wallet.chains import ChainDescriptor

logger = logging.getLogger("evm_wallet.wallet.provider")

T = TypeVar("T")

Web3Factory = Callable[[str], Web3]


def is_transport_error(exc: BaseException) -> bool:
    """Return True if *exc* means the endpoint itself is unusable."""
    if isinstance(exc, requests.HTTPError):
        response = exc.response
        if response is None:
            return True
        return response.status_code >= 500 or response.status_code == 429
    return isinstance(
        exc,
        (
            requests.ConnectionError,
            requests.Timeout,
            ProviderConnectionError,
            ConnectionError,
            TimeoutError,
        ),
    )


class RpcClient:
    """Read and broadcast against one chain's endpoint list."""

    def __init__(
        self,
        chain: ChainDescriptor,
        *,
        timeout: float = 10.0,
        retry_passes: int = 1,
        web3_factory: Web3Factory | None = None,
    ) -> None:
        if retry_passes < 0:
            raise ValueError("retry_passes must be >= 0")
        self.chain = chain
        self.timeout = timeout
        self.retry_passes = retry_passes
        self._web3_factory = web3_factory or self._build_web3

    def _build_web3(self, url: str) -> Web3:
        """Create a fresh Web3 instance for *url*.

        The provider's own retry loop is disabled so failover stays under
        this client's control. Injects POA middleware for non-mainnet chains.
        """
        w3 = Web3(
            Web3.HTTPProvider(
                url,
                request_kwargs={"timeout": self.timeout},
                exception_retry_configuration=None,
            )
        )
        if self.chain.chain_id != 1:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return w3

    def call(self, label: str, fn: Callable[[Web3], T]) -> T:
        """Run *fn* against each endpoint until one answers."""
        last_error: BaseException | None = None
        passes = 1 + self.retry_passes
        for attempt in range(passes):
            for url in self.chain.rpc_urls:
                try:
                    return fn(self._web3_factory(url))
                except Exception as exc:
                    if not is_transport_error(exc):
                        raise
                    last_error = exc
                    logger.warning(
                        f"{self.chain.key}: {label} failed on {url} "
                        f"(pass {attempt + 1}/{passes}): {exc}"
                    )
        raise RpcExhausted(self.chain.key, last_error) from last_error

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(self, address: str) -> int:
        """Native balance in wei."""
        checksum = Web3.to_checksum_address(address)
        return self.call("get_balance", lambda w3: w3.eth.get_balance(checksum))

    def get_transaction_count(self, address: str, block: str = "pending") -> int:
        checksum = Web3.to_checksum_address(address)
        return self.call(
            "get_transaction_count",
            lambda w3: w3.eth.get_transaction_count(checksum, block),
        )

    def get_gas_price(self) -> int:
        return self.call("get_gas_price", lambda w3: w3.eth.gas_price)

    def get_block_number(self) -> int:
        return self.call("get_block_number", lambda w3: w3.eth.block_number)

    def get_block(
        self, block_identifier: int | str = "latest", full_transactions: bool = False
    ) -> Any:
        return self.call(
            "get_block",
            lambda w3: w3.eth.get_block(
                block_identifier, full_transactions=full_transactions
            ),
        )

    def estimate_gas(self, tx: dict[str, Any]) -> int:
        return self.call("estimate_gas", lambda w3: w3.eth.estimate_gas(tx))

    def read_contract(
        self,
        address: str,
        abi: list[dict[str, Any]],
        fn_name: str,
        args: Iterable[Any] = (),
    ) -> Any:
        """Call a view function and return its decoded result."""
        checksum = Web3.to_checksum_address(address)
        call_args = tuple(args)

        def _read(w3: Web3) -> Any:
            contract = w3.eth.contract(address=checksum, abi=abi)
            return getattr(contract.functions, fn_name)(*call_args).call()

        return self.call(f"read_contract:{fn_name}", _read)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def send_raw_transaction(self, raw_transaction: bytes) -> str:
        """Broadcast a signed transaction and return its 0x-prefixed hash."""
        tx_hash = self.call(
            "send_raw_transaction",
            lambda w3: w3.eth.send_raw_transaction(raw_transaction),
        )
        if isinstance(tx_hash, str):
            return tx_hash
        return Web3.to_hex(tx_hash)
