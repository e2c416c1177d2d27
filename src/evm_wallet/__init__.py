"""Self-custodied EVM wallet for autonomous agents.

Resolves chains from a built-in plus user-defined registry, reads chain
state through failover RPC endpoints, prices transactions for EIP-1559 and
legacy fee markets, and signs and broadcasts transfers.
"""

__version__ = "0.1.0"
