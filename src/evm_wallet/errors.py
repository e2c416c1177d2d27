"""Exception hierarchy for the wallet.

Every failure surfaced to a caller is a :class:`WalletError` subclass with a
human-readable message. Underlying causes are chained with ``raise ... from``.
"""

from __future__ import annotations

from decimal import Decimal


class WalletError(Exception):
    """Base class for all wallet errors."""


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class UnknownChain(WalletError):
    def __init__(self, name: str, available: list[str] | None = None) -> None:
        self.name = name
        self.available = available or []
        msg = f"Unknown chain '{name}'."
        if self.available:
            msg += f" Available: {', '.join(self.available)}"
        super().__init__(msg)


class BuiltInImmutable(WalletError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Chain '{name}' is built in and cannot be removed. "
            "Only user-defined chains can be removed."
        )


class InvalidChainConfig(WalletError):
    """A chain descriptor failed validation before being persisted."""


class ChainConfigError(WalletError):
    """The persisted user chain file could not be read."""


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------


class RpcExhausted(WalletError):
    """Every endpoint of a chain failed, including the retry passes."""

    def __init__(self, chain: str, last_error: BaseException | None) -> None:
        self.chain = chain
        self.last_error = last_error
        super().__init__(
            f"All RPC endpoints failed for {chain}: {last_error}"
        )


class GasEstimationFailed(WalletError):
    """The gas-limit simulation failed; the transaction must not be sent."""


# ---------------------------------------------------------------------------
# Transfer
# ---------------------------------------------------------------------------


class InvalidAddress(WalletError):
    def __init__(self, address: str, label: str = "address") -> None:
        self.address = address
        super().__init__(f"Invalid {label}: {address!r}")


class InvalidAmount(WalletError):
    pass


class UnknownToken(WalletError):
    pass


class InsufficientBalance(WalletError):
    def __init__(self, have: Decimal, need: Decimal, symbol: str) -> None:
        self.have = have
        self.need = need
        self.symbol = symbol
        super().__init__(
            f"Insufficient balance. Have: {have:f} {symbol}, Need: {need:f} {symbol}"
        )


class SigningFailed(WalletError):
    pass


class BroadcastFailed(WalletError):
    pass


class TransferFailed(WalletError):
    """A node or contract call failed in a way no other error describes.

    The original exception is chained as ``__cause__``.
    """
