"""CLI for the EVM wallet - manage chains, balances, and transfers."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from evm_wallet.errors import WalletError

app = typer.Typer(
    name="evm-wallet",
    help="Self-custodied EVM wallet for autonomous agents.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

_config_path: Optional[Path] = None


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"evm-wallet {version('evm-agent-wallet')}")
        raise typer.Exit()


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Path to config.yaml (default: ~/.evm-wallet/config.yaml)",
        envvar="EVM_WALLET_CONFIG",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Self-custodied EVM wallet for autonomous agents."""
    global _config_path
    _config_path = config
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run(coro):
    """Run an async function synchronously."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor() as pool:
                return pool.submit(asyncio.run, coro).result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        return asyncio.run(coro)


def _manager():
    from evm_wallet.wallet.manager import WalletManager

    return WalletManager.load(_config_path)


def _emit_json(payload: dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, default=str))


def _fail(message: str, json_output: bool) -> None:
    """Report an error in the selected format and exit with status 1."""
    if json_output:
        _emit_json({"success": False, "error": message})
    else:
        err_console.print(f"[red]Error: {message}[/red]")
    raise typer.Exit(1)


def _password(prompt: str = "Wallet password: ") -> str:
    env_password = os.environ.get("EVM_WALLET_PASSWORD")
    if env_password:
        return env_password
    return console.input(f"[bold]{prompt}[/bold]", password=True)


# ------------------------------------------------------------------
# chains sub-commands
# ------------------------------------------------------------------

chains_app = typer.Typer(
    name="chains",
    help="List, add, and remove EVM chains.",
    no_args_is_help=True,
)
app.add_typer(chains_app, name="chains")


@chains_app.command("list")
def chains_list(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    verbose: bool = typer.Option(False, "--verbose", help="Show full chain details"),
):
    """List built-in and user-defined chains."""
    try:
        registry = _manager().registry
    except WalletError as e:
        _fail(str(e), json_output)

    chains = registry.list()
    user_keys = set(registry.user_chain_names())

    if json_output:
        _emit_json({
            "success": True,
            "total": len(chains),
            "builtIn": len(chains) - len(user_keys),
            "userDefined": len(user_keys),
            "chains": {
                c.key: {
                    "chainId": c.chain_id,
                    "name": c.display_name,
                    "nativeToken": c.native_symbol,
                    "decimals": c.native_decimals,
                    "rpcs": list(c.rpc_urls),
                    "explorer": c.explorer_url,
                    "legacyGas": c.is_legacy,
                    "userDefined": c.key in user_keys,
                }
                for c in chains
            },
        })
        return

    table = Table(title="Available EVM Chains")
    table.add_column("Chain", style="cyan")
    table.add_column("ID", justify="right")
    table.add_column("Token")
    table.add_column("Type")
    table.add_column("Source", style="dim")
    if verbose:
        table.add_column("Explorer", style="dim")
        table.add_column("RPCs", justify="right")

    for c in chains:
        row = [
            c.key,
            str(c.chain_id),
            c.native_symbol,
            "Legacy" if c.is_legacy else "EIP-1559",
            "User" if c.key in user_keys else "Built-in",
        ]
        if verbose:
            row += [c.explorer_url or "-", str(len(c.rpc_urls))]
        table.add_row(*row)

    console.print(table)
    console.print(
        f"Total: {len(chains)} chains "
        f"({len(chains) - len(user_keys)} built-in, {len(user_keys)} user-defined)"
    )
    if user_keys:
        console.print(f"[dim]User chains config: {registry.path}[/dim]")


@chains_app.command("add")
def chains_add(
    name: str = typer.Argument(help="Chain identifier (e.g. berachain)"),
    chain_id: int = typer.Argument(help="Numeric chain ID (e.g. 80094)"),
    rpc: str = typer.Argument(help="RPC endpoint URL"),
    extra_rpcs: list[str] = typer.Option(
        [], "--rpc", help="Additional fallback RPC URL (repeatable)"
    ),
    native_token: str = typer.Option("ETH", "--native-token", help="Native token symbol"),
    decimals: int = typer.Option(18, "--decimals", help="Native token decimals"),
    explorer: Optional[str] = typer.Option(None, "--explorer", help="Block explorer URL"),
    legacy_gas: bool = typer.Option(
        False, "--legacy-gas", help="Use legacy gas pricing (no EIP-1559)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Add or update a user-defined chain."""
    from evm_wallet.wallet.chains import ChainDescriptor, FeeMarket, normalize_chain_name

    chain = ChainDescriptor(
        name=normalize_chain_name(name),
        chain_id=chain_id,
        display_name=name,
        native_symbol=native_token,
        native_decimals=decimals,
        rpc_urls=(rpc, *extra_rpcs),
        explorer_url=explorer,
        fee_market=FeeMarket.LEGACY if legacy_gas else FeeMarket.EIP1559,
    )
    try:
        registry = _manager().registry
        action = registry.add(chain)
    except WalletError as e:
        _fail(str(e), json_output)

    if json_output:
        _emit_json({
            "success": True,
            "action": action,
            "chain": chain.key,
            "chainId": chain.chain_id,
            "configPath": str(registry.path),
        })
        return

    console.print(f"[green]{action.capitalize()} chain '{chain.key}'[/green] (chainId: {chain_id})")
    console.print(f"  RPC: {', '.join(chain.rpc_urls)}")
    console.print(f"  Native token: {native_token}")
    if explorer:
        console.print(f"  Explorer: {explorer}")
    if legacy_gas:
        console.print("  Legacy gas: enabled")
    console.print(f"\n[dim]Config saved to: {registry.path}[/dim]")


@chains_app.command("remove")
def chains_remove(
    name: str = typer.Argument(help="User-defined chain to remove"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Remove a user-defined chain. Built-in chains cannot be removed."""
    try:
        registry = _manager().registry
        if not (yes or json_output) and registry.is_user_defined(name) and not registry.is_builtin(name):
            chain = registry.resolve(name)
            console.print(Panel(
                f"Name:     {chain.key}\n"
                f"Chain ID: {chain.chain_id}\n"
                f"RPC:      {chain.rpc_urls[0]}",
                title="Chain to remove",
            ))
            typer.confirm("Remove this chain?", abort=True)
        removed = registry.remove(name)
    except WalletError as e:
        _fail(str(e), json_output)

    if json_output:
        _emit_json({
            "success": True,
            "removed": removed.key,
            "chainId": removed.chain_id,
            "configPath": str(registry.path),
        })
    else:
        console.print(f"[green]Removed chain '{removed.key}'[/green] (chainId: {removed.chain_id})")


# ------------------------------------------------------------------
# wallet sub-commands
# ------------------------------------------------------------------

wallet_app = typer.Typer(
    name="wallet",
    help="Create and inspect the local wallet.",
    no_args_is_help=True,
)
app.add_typer(wallet_app, name="wallet")


@wallet_app.command("create")
def wallet_create(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Generate a new wallet with an encrypted keystore."""
    manager = _manager()
    if manager.has_wallet():
        if json_output:
            _emit_json({"success": True, "created": False, "address": manager.address})
        else:
            console.print("[yellow]Wallet already exists.[/yellow]")
            console.print(f"Wallet address: [cyan]{manager.address}[/cyan]")
        return

    password = _password("Set wallet password: ")
    if not os.environ.get("EVM_WALLET_PASSWORD"):
        confirm = console.input("[bold]Confirm password: [/bold]", password=True)
        if password != confirm:
            _fail("Passwords do not match.", json_output)

    addr = manager.create(password)
    if json_output:
        _emit_json({"success": True, "created": True, "address": addr})
        return
    console.print(Panel(
        f"[bold green]Wallet created![/bold green]\n\n"
        f"Address: [cyan]{addr}[/cyan]\n\n"
        f"[dim]Your keystore is encrypted with your password.\n"
        f"This address works on every EVM chain. Fund it to start transacting.[/dim]",
        title="EVM Wallet",
    ))


@wallet_app.command("address")
def wallet_address(
    chain: Optional[str] = typer.Option(None, "--chain", "-c", help="Show explorer link for this chain"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show the wallet address."""
    manager = _manager()
    addr = manager.address
    if addr is None:
        _fail("No wallet found. Run 'evm-wallet wallet create' first.", json_output)

    explorer = None
    if chain:
        try:
            explorer = manager.explorer_address_url(chain, addr)
        except WalletError as e:
            _fail(str(e), json_output)

    if json_output:
        _emit_json({"success": True, "address": addr, "explorerUrl": explorer})
        return
    body = f"[cyan]{addr}[/cyan]"
    if explorer:
        body += f"\n\nExplorer: {explorer}"
    console.print(Panel(body, title="Wallet Address"))


# ------------------------------------------------------------------
# balances, fees, transfers
# ------------------------------------------------------------------


@app.command()
def balance(
    chain: Optional[str] = typer.Argument(None, help="Chain name (omit for all chains)"),
    address: Optional[str] = typer.Option(None, "--address", "-a", help="Address to inspect (default: wallet)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show native token balances."""
    manager = _manager()
    try:
        if chain:
            key = manager.registry.resolve(chain).key
            result = {key: manager.get_balance(chain, address)}
        else:
            result = _run(manager.get_all_balances(address))
    except (WalletError, FileNotFoundError) as e:
        _fail(str(e), json_output)

    if json_output:
        _emit_json({"success": True, "address": address or manager.address, "balances": result})
        return

    table = Table(title="Wallet Balances")
    table.add_column("Chain", style="cyan")
    table.add_column("Balance", justify="right")
    table.add_column("Symbol")
    table.add_column("Status", style="dim")
    for name, info in result.items():
        err = info.get("error")
        table.add_row(
            name,
            info["balance"],
            info["symbol"],
            f"[red]{err}[/red]" if err else "[green]OK[/green]",
        )
    console.print(table)


@app.command()
def gas(
    chain: Optional[str] = typer.Argument(None, help="Chain name (omit for all chains)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show current gas prices."""
    manager = _manager()
    try:
        names = [manager.registry.resolve(chain).key] if chain else None
    except WalletError as e:
        _fail(str(e), json_output)
    result = _run(manager.get_all_fees(names))

    if json_output:
        _emit_json({"success": True, "chains": result})
        return

    table = Table(title="Gas Prices")
    table.add_column("Chain", style="cyan")
    table.add_column("Type")
    table.add_column("Base fee (gwei)", justify="right")
    table.add_column("Priority (gwei)", justify="right")
    table.add_column("Max / price (gwei)", justify="right")
    for name, info in result.items():
        if not info["success"]:
            table.add_row(name, "-", "-", "-", f"[red]{info['error']}[/red]")
        elif info["type"] == "eip1559":
            table.add_row(
                name, "EIP-1559", info["baseFeeGwei"], info["priorityFeeGwei"], info["maxFeeGwei"]
            )
        else:
            table.add_row(name, "Legacy", "-", "-", info["gasPriceGwei"])
    console.print(table)


@app.command()
def tokens(
    chain: str = typer.Argument(help="Chain name (e.g. base)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List well-known ERC-20 tokens on a chain."""
    from evm_wallet.wallet.tokens import list_tokens

    manager = _manager()
    try:
        key = manager.registry.resolve(chain).key
    except WalletError as e:
        _fail(str(e), json_output)
    catalog = list_tokens(key)

    if json_output:
        _emit_json({"success": True, "chain": key, "tokens": catalog})
        return
    if not catalog:
        console.print(f"[yellow]No known tokens on {key}.[/yellow] Pass a contract address instead.")
        return
    table = Table(title=f"Known Tokens on {key}")
    table.add_column("Symbol", style="cyan")
    table.add_column("Contract")
    for symbol, address in catalog.items():
        table.add_row(symbol, address)
    console.print(table)


@app.command()
def transfer(
    chain: str = typer.Argument(help="Chain name (e.g. base)"),
    to: str = typer.Argument(help="Recipient address"),
    amount: str = typer.Argument(help="Amount to send (e.g. 0.01)"),
    token: Optional[str] = typer.Argument(None, help="ERC-20 contract address or symbol (omit for native)"),
    gas_price: Optional[str] = typer.Option(
        None, "--gas-price", help="Gas price in gwei for legacy chains (0 for gasless)"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Send native tokens or ERC-20 tokens."""
    from evm_wallet.wallet.gas import FeeOptions, format_gwei, parse_gwei
    from evm_wallet.wallet.tokens import get_token_symbol
    from evm_wallet.wallet.transfer import TransferIntent

    manager = _manager()
    if not manager.has_wallet():
        _fail("No wallet found. Run 'evm-wallet wallet create' first.", json_output)

    try:
        intent = TransferIntent.create(to, amount, token)
        options = FeeOptions()
        if gas_price is not None:
            try:
                wei = parse_gwei(gas_price)
            except (ArithmeticError, ValueError):
                wei = -1
            if wei < 0:
                _fail(f"Invalid gas price: {gas_price}", json_output)
            options = FeeOptions(gas_price=wei)

        signer = manager.unlock(_password())
        orchestrator = manager.orchestrator(signer)
        quote = orchestrator.prepare(chain, intent, options)
    except (WalletError, ValueError, FileNotFoundError) as e:
        _fail(str(e), json_output)

    if not json_output:
        fee = quote.fee
        fee_line = (
            f"Gas Price: {format_gwei(fee.gas_price or 0)} gwei (legacy)"
            if fee.fee_market.value == "legacy"
            else f"Max Fee: {format_gwei(fee.max_fee_per_gas or 0)} gwei (EIP-1559)"
        )
        info = quote.to_dict()
        native = quote.chain.native_symbol
        total = (
            f"Total Deduction: {info['totalDeduction']} {native}"
            if quote.is_native
            else f"Gas Cost: {info['estimatedFeeNative']} {native} (separate from token transfer)"
        )
        console.print(Panel(
            f"From:   {quote.sender}\n"
            f"To:     {quote.to}\n"
            f"Amount: [bold]{info['amount']} {quote.symbol}[/bold]\n"
            f"Chain:  {quote.chain.display_name}\n\n"
            f"Gas Limit: {fee.gas_limit:,}\n"
            f"{fee_line}\n"
            f"Est. Cost: {info['estimatedFeeNative']} {native}\n\n"
            f"{total}",
            title="Transfer Details",
        ))
        if not quote.is_native and get_token_symbol(quote.chain.key, quote.token_address) is None:
            console.print(
                "[yellow]Token contract is not in the known-token list. "
                "Double-check the address.[/yellow]"
            )
        if not yes:
            typer.confirm("Proceed with transfer?", abort=True)

    try:
        result = orchestrator.execute(quote)
    except WalletError as e:
        _fail(str(e), json_output)

    if json_output:
        _emit_json(result.to_dict())
        return
    console.print(Panel(
        f"[bold green]Transfer sent![/bold green]\n\n"
        f"Tx: [cyan]{result.tx_hash}[/cyan]\n"
        f"Explorer: {result.explorer_url or 'n/a'}\n\n"
        f"[dim]Transaction may take a few minutes to confirm.[/dim]",
        title="Transaction Sent",
    ))


if __name__ == "__main__":
    app()
