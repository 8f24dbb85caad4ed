"""
Astrix CLI

Command-line access to the execution core, mostly for debugging contract
wiring against a node.

Commands:
  whoami  - Show the configured signer address
  head    - Show the chain head seen by the block monitor
  call    - Read-only contract call
  send    - State-mutating contract call (waits for confirmation)
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import sys
from typing import Any, Optional

import click

from .config import SdkConfig
from .errors import AstrixError
from .logging_setup import configure_logging
from .operations import Operation
from .pneuma.abi import load_abi
from .pneuma.blocks import BlockSnapshot
from .sdk import AstrixSDK
from .sigil.eth import load_identity


VERSION = "0.3.0"


def _make_sdk(ctx: click.Context) -> AstrixSDK:
    return AstrixSDK(ctx.obj["config"])


def _parse_args(args_json: str) -> list:
    try:
        args = json.loads(args_json)
        if not isinstance(args, list):
            raise ValueError("Args must be a JSON array")
    except (json.JSONDecodeError, ValueError) as exc:
        click.secho(f"ERROR: Invalid args: {exc}", fg="red")
        sys.exit(1)
    return args


def _build_operation(factory, contract: str, func_name: str, abi_path: str, **kwargs: Any) -> Operation:
    try:
        return factory(
            f"{contract.lower()}.{func_name}",
            contract,
            load_abi(abi_path),
            function=func_name,
            **kwargs,
        )
    except (ValueError, KeyError, FileNotFoundError) as exc:
        click.secho(f"ERROR: {exc}", fg="red")
        sys.exit(1)


def _printable(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [_printable(v) for v in value]
    if isinstance(value, dict):
        return {k: _printable(v) for k, v in value.items()}
    return value


# ============ Main CLI Group ============


@click.group()
@click.version_option(version=VERSION, prog_name="astrix")
@click.option("--rpc-url", envvar="ASTRIX_RPC_URL", default=None, help="JSON-RPC endpoint")
@click.option("--chain-id", envvar="ASTRIX_CHAIN_ID", default=None, type=int, help="Chain ID")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, rpc_url: Optional[str], chain_id: Optional[int], verbose: bool) -> None:
    """Astrix - contract operations over JSON-RPC."""
    configure_logging("DEBUG" if verbose else "WARNING")

    config = SdkConfig.from_env()
    overrides: dict[str, Any] = {}
    if rpc_url:
        overrides["rpc_url"] = rpc_url
    if chain_id is not None:
        overrides["chain_id"] = chain_id
    if verbose:
        overrides["verbose"] = True
    ctx.ensure_object(dict)
    ctx.obj["config"] = dataclasses.replace(config, **overrides)


# ============ Identity ============


@cli.command()
def whoami() -> None:
    """Show current wallet identity."""
    try:
        account = load_identity()
        click.echo(f"Address: {account.address}")
    except ValueError:
        click.echo("No wallet found.")
        click.echo("Set PRIVATE_KEY in ~/.astrix/.env.")
        sys.exit(1)


# ============ Chain head ============


@cli.command()
@click.pass_context
def head(ctx: click.Context) -> None:
    """Show the current block height as seen by the block monitor."""

    async def _run() -> BlockSnapshot:
        sdk = _make_sdk(ctx)
        try:
            await sdk.start()
            return sdk.block_status()
        finally:
            await sdk.close()

    status = asyncio.run(_run())
    config = ctx.obj["config"]
    click.echo(f"  Chain:  {config.chain_id}")
    click.echo(f"  RPC:    {config.rpc_url}")
    if not status.is_live:
        click.secho("  Height: unknown (node unreachable)", fg="yellow")
        sys.exit(1)
    click.echo(f"  Height: {status.height}")


# ============ Contract calls ============


@cli.command()
@click.option("--contract", required=True, help="Target contract address")
@click.option("--function", "func_name", required=True, help="Function name to call")
@click.option("--args", "args_json", default="[]", help="Function args as JSON array")
@click.option("--abi", "abi_path", required=True, type=click.Path(exists=True, dir_okay=False),
              help="ABI or compilation artifact JSON")
@click.pass_context
def call(ctx: click.Context, contract: str, func_name: str, args_json: str, abi_path: str) -> None:
    """Read from a contract (eth_call)."""
    args = _parse_args(args_json)
    operation = _build_operation(Operation.read, contract, func_name, abi_path)

    async def _run() -> Any:
        sdk = _make_sdk(ctx)
        try:
            return await sdk.read(operation, args)
        finally:
            await sdk.close()

    try:
        result = asyncio.run(_run())
    except AstrixError as exc:
        click.secho(f"Call failed: {exc}", fg="red")
        sys.exit(1)

    click.echo(json.dumps(_printable(result), default=str))


@cli.command()
@click.option("--contract", required=True, help="Target contract address")
@click.option("--function", "func_name", required=True, help="Function name to call")
@click.option("--args", "args_json", default="[]", help="Function args as JSON array")
@click.option("--abi", "abi_path", required=True, type=click.Path(exists=True, dir_okay=False),
              help="ABI or compilation artifact JSON")
@click.option("--event", default=None, help="Event expected in the receipt")
@click.option("--field", "fields", multiple=True, help="Event field(s) to return")
@click.option("--value", default=0, type=int, help="ETH value in wei")
@click.option("--gas-limit", default=None, type=int, help="Gas limit (default: estimate)")
@click.pass_context
def send(
    ctx: click.Context,
    contract: str,
    func_name: str,
    args_json: str,
    abi_path: str,
    event: Optional[str],
    fields: tuple[str, ...],
    value: int,
    gas_limit: Optional[int],
) -> None:
    """
    Send a state-mutating contract call and wait for confirmation.

    Signs with PRIVATE_KEY from ~/.astrix/.env or the environment. Client pays gas.
    """
    args = _parse_args(args_json)

    try:
        account = load_identity()
    except ValueError as exc:
        click.secho(f"ERROR: {exc}", fg="red")
        sys.exit(1)

    operation = _build_operation(
        Operation.write,
        contract,
        func_name,
        abi_path,
        event=event,
        event_fields=tuple(fields),
        gas_limit=gas_limit,
    )

    async def _run():
        sdk = _make_sdk(ctx)
        try:
            sender = sdk.connect(account)
            click.echo(f"  Sender:   {sender}")
            click.echo(f"  Target:   {contract}")
            click.echo(f"  Function: {func_name}")
            click.echo(f"  Args:     {args}")
            return await sdk.write(operation, args, value=value)
        finally:
            await sdk.close()

    try:
        result = asyncio.run(_run())
    except AstrixError as exc:
        click.secho(f"Transaction failed: {exc}", fg="red")
        sys.exit(1)

    click.secho("SUCCESS: Transaction confirmed!", fg="green")
    click.echo(f"  TX:    {result.tx_hash}")
    click.echo(f"  Block: {result.block_number}")
    if result.value is not None:
        click.echo(f"  Result: {json.dumps(_printable(result.value), default=str)}")


if __name__ == "__main__":
    cli()
