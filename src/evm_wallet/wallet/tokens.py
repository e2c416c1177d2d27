"""Well-known token contracts on the built-in chains."""

from __future__ import annotations

from web3 import Web3

from evm_wallet.wallet.chains import normalize_chain_name

TOKENS: dict[str, dict[str, str]] = {
    "base": {
        "USDC": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        "USDT": "0xfde4C96c8593536E31F229EA8f37b2ADa2699bb2",
        "DAI": "0x50c5725949A6F0c72E6C4a641F24049A917DB0Cb",
        "WETH": "0x4200000000000000000000000000000000000006",
    },
    "ethereum": {
        "USDC": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
        "USDT": "0xdAC17F958D2ee523a2206206994597C13D831ec7",
        "DAI": "0x6B175474E89094C44Da98b954EedeAC495271d0F",
        "WETH": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
    },
    "polygon": {
        "USDC": "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
        "USDT": "0xc2132D05D31c914a87C6611C10748AEb04B58e8F",
        "DAI": "0x8f3Cf7ad23Cd3CaDbD9735AFf958023239c6A063",
        "WPOL": "0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270",
    },
    "arbitrum": {
        "USDC": "0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
        "USDT": "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9",
        "DAI": "0xDA10009cBd5D07dd0CeCc66161FC93D7c9000da1",
        "WETH": "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
    },
    "optimism": {
        "USDC": "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85",
        "USDT": "0x94b008aA00579c1307B0EF2c499aD98a8ce58e58",
        "DAI": "0xDA10009cBd5D07dd0CeCc66161FC93D7c9000da1",
        "WETH": "0x4200000000000000000000000000000000000006",
    },
}


def get_token_address(chain_name: str, symbol: str) -> str | None:
    """Return the contract address for *symbol* on *chain_name*, if known."""
    chain_tokens = TOKENS.get(normalize_chain_name(chain_name), {})
    return chain_tokens.get(symbol.upper())


def get_token_symbol(chain_name: str, address: str) -> str | None:
    """Return the catalog symbol for a contract address, if known."""
    chain_tokens = TOKENS.get(normalize_chain_name(chain_name), {})
    for symbol, token_address in chain_tokens.items():
        if token_address.lower() == address.lower():
            return symbol
    return None


def list_tokens(chain_name: str) -> dict[str, str]:
    """Return ``{symbol: checksummed address}`` for a chain."""
    chain_tokens = TOKENS.get(normalize_chain_name(chain_name), {})
    return {sym: Web3.to_checksum_address(addr) for sym, addr in chain_tokens.items()}
