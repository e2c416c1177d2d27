"""Blockchain wallet core.

Chain registry, failover RPC access, EIP-1559/legacy fee estimation, and
the transfer pipeline that signs and broadcasts transactions.
"""
