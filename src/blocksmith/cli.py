"""
Blocksmith CLI

Command-line interface for the local Ethereum dev harness.

Commands:
  launch    - Start anvil, create wallets, wait for Ctrl-C
  compile   - Compile an inline Solidity file and list its ABI
  resolve   - Find a name's resolver and fetch its profile
  info      - Show configuration and tool paths
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import sys
from pathlib import Path
from typing import Optional

import click

from .chain.rpc import RpcClient
from .config import (
    ENS_REGISTRY,
    get_anvil_path,
    get_forge_path,
    get_launch_timeout,
    get_profile,
    get_rpc_timeout,
)
from .ens import Node, RecordQuery, Resolver, registry_contract
from .errors import BlocksmithError, ConfigError
from .forge.compile import compile_sol
from .forge.project import FoundryBase, find_root
from .foundry import DEFAULT_WALLET, Foundry

# ============ Constants ============

VERSION = "0.4.0"


# ============ Banner ============


def _print_banner() -> None:
    click.echo(
        click.style("  ◆ ", fg="cyan")
        + click.style("B L O C K S M I T H", fg="bright_white", bold=True)
        + click.style(f"  v{VERSION}", dim=True)
    )
    click.echo()


def _fail(exc: BlocksmithError) -> None:
    click.echo(click.style("Error: ", fg="red") + str(exc), err=True)
    for diagnostic in getattr(exc, "errors", []) or []:
        click.echo(diagnostic.message.rstrip(), err=True)
    sys.exit(exc.exit_code)


# ============ Main CLI Group ============


@click.group(invoke_without_command=True)
@click.version_option(version=VERSION, prog_name="blocksmith")
@click.option("--verbose", "-v", count=True, help="Log to stderr (-v info, -vv debug)")
@click.pass_context
def cli(ctx: click.Context, verbose: int) -> None:
    """Blocksmith - anvil launcher, deployer and ENS resolver toolkit."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG if verbose > 1 else logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    if ctx.invoked_subcommand is None:
        _print_banner()
        click.echo(ctx.get_help())


# ============ Launch ============


@cli.command()
@click.option("--port", "-p", default=0, show_default=True, help="Port (0 picks a free one)")
@click.option("--chain-id", type=int, help="Chain id")
@click.option("--block-time", type=int, help="Interval mining period in seconds")
@click.option("--fork-url", help="RPC endpoint to fork from")
@click.option("--wallet", "-w", "wallets", multiple=True, help="Wallet name to create (repeatable)")
@click.option("--proc-log/--no-proc-log", default=False, help="Echo anvil output")
@click.option("--root", type=click.Path(file_okay=False, path_type=Path), help="Project root")
def launch(
    port: int,
    chain_id: Optional[int],
    block_time: Optional[int],
    fork_url: Optional[str],
    wallets: tuple[str, ...],
    proc_log: bool,
    root: Optional[Path],
) -> None:
    """Start anvil and keep it running until interrupted."""

    async def run() -> None:
        foundry = await Foundry.launch(
            root=root,
            wallets=wallets or (DEFAULT_WALLET,),
            proc_log=proc_log,
            port=port,
            chain_id=chain_id,
            block_sec=block_time,
            fork_url=fork_url,
        )
        try:
            click.echo()
            click.echo(click.style("  Endpoint:  ", dim=True) + click.style(foundry.endpoint, fg="bright_white"))
            click.echo(click.style("  Chain:     ", dim=True) + str(foundry.chain_id))
            for name, wallet in foundry.wallets.items():
                click.echo(
                    click.style(f"  {name:<10} ", dim=True)
                    + click.style(wallet.address, fg="green")
                    + click.style(f"  {wallet.private_key}", dim=True)
                )
            click.echo()
            click.echo(click.style("  Ctrl-C to stop", dim=True))
            await asyncio.Event().wait()
        finally:
            await foundry.shutdown()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("Stopped.")
    except BlocksmithError as exc:
        _fail(exc)


# ============ Compile ============


@cli.command("compile")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--contract", "-c", help="Contract name (default: last contract in the file)")
@click.option("--optimize", type=int, default=None, help="Enable the optimizer with this many runs")
@click.option("--root", type=click.Path(file_okay=False, path_type=Path), help="Project root for remappings")
def compile_cmd(file: Path, contract: Optional[str], optimize: Optional[int], root: Optional[Path]) -> None:
    """Compile a Solidity file on its own and list its ABI."""
    try:
        base = FoundryBase.load(root) if root else _maybe_project()
        artifact = asyncio.run(
            compile_sol(file.read_text(encoding="utf-8"), contract=contract, base=base, optimize=optimize)
        )
    except BlocksmithError as exc:
        _fail(exc)
        return

    click.echo(click.style(artifact.contract, fg="bright_white", bold=True) + click.style(f"  {artifact.origin}", dim=True))
    click.echo(click.style("  Bytecode:  ", dim=True) + f"{len(artifact.bytecode) // 2 - 1} bytes")
    if artifact.libraries:
        click.echo(click.style("  Libraries: ", dim=True) + ", ".join(artifact.libraries))
    abi = artifact.abi
    fragments = ([abi.constructor] if abi.constructor else []) + abi.functions + abi.events + abi.errors
    for frag in fragments:
        click.echo("  " + frag.format())


def _maybe_project() -> Optional[FoundryBase]:
    try:
        return FoundryBase.load(find_root())
    except ConfigError:
        return None


# ============ Resolve ============


@cli.command()
@click.argument("name")
@click.option("--rpc-url", required=True, envvar="BLOCKSMITH_RPC_URL", help="JSON-RPC endpoint")
@click.option("--registry", default=ENS_REGISTRY, show_default=True, help="ENS registry address")
@click.option("--record", "-r", "records", multiple=True, help="Record (text:<key>, addr:<coin>, contenthash, ...)")
@click.option("--multi/--no-multi", default=True, help="Batch records in one multicall when supported")
@click.option("--tor", type=click.Choice(["on", "off"]), default=None, help="Force off-chain lensing on/off")
@click.option("--ccip/--no-ccip", default=True, help="Follow CCIP-Read off-chain lookups")
def resolve(
    name: str,
    rpc_url: str,
    registry: str,
    records: tuple[str, ...],
    multi: bool,
    tor: Optional[str],
    ccip: bool,
) -> None:
    """Find NAME's resolver and fetch its records."""
    try:
        queries = [RecordQuery.parse(r) for r in records] or None
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--record") from exc

    async def run():
        async with RpcClient(rpc_url) as client:
            resolver = await Resolver.get(registry_contract(client, registry), Node.from_name(name))
            if resolver is None:
                return None, None
            return resolver, await resolver.profile(queries, multi=multi, tor=tor, ccip=ccip)

    try:
        resolver, profile = asyncio.run(run())
    except BlocksmithError as exc:
        _fail(exc)
        return

    if resolver is None:
        click.echo(f"No resolver for {name}")
        sys.exit(1)

    flags = [flag for flag in ("wild", "tor") if getattr(resolver, flag)]
    click.echo(click.style(name, fg="bright_white", bold=True))
    click.echo(click.style("  Resolver:  ", dim=True) + click.style(resolver.address, fg="green"))
    click.echo(click.style("  Base:      ", dim=True) + f"{resolver.base.name or '[root]'} (drop {resolver.drop})")
    click.echo(click.style("  Flags:     ", dim=True) + (", ".join(flags) or "none"))
    click.echo(click.style("  Multicall: ", dim=True) + ("yes" if profile.multicalled else "no"))
    click.echo()
    for key, value in profile.values.items():
        if isinstance(value, (bytes, bytearray)):
            value = "0x" + bytes(value).hex()
        click.echo(click.style(f"  {key:<18} ", dim=True) + str(value))
    for key, err in profile.errors.items():
        click.echo(click.style(f"  {key:<18} ", dim=True) + click.style(str(err) or type(err).__name__, fg="yellow"))


# ============ Info ============


@cli.command()
def info() -> None:
    """Show system information."""
    _print_banner()

    click.secho("  Tools ──────────────────────────────────", fg="cyan")
    click.echo()
    for label, command in (("anvil", get_anvil_path()), ("forge", get_forge_path())):
        found = shutil.which(command)
        status = click.style(found, fg="bright_white") if found else click.style("not found", fg="yellow")
        click.echo(click.style(f"  {label:<12} ", dim=True) + status)
    click.echo()

    click.secho("  Config ─────────────────────────────────", fg="cyan")
    click.echo()
    try:
        root = str(find_root())
    except ConfigError:
        root = click.style("none", fg="yellow") + click.style("  (no foundry.toml above cwd)", dim=True)
    timeout = get_launch_timeout()
    rpc_timeout = get_rpc_timeout()
    click.echo(click.style("  Project:     ", dim=True) + root)
    click.echo(click.style("  Profile:     ", dim=True) + get_profile())
    click.echo(click.style("  Launch wait: ", dim=True) + (f"{timeout:g}s" if timeout is not None else "unbounded"))
    click.echo(click.style("  RPC timeout: ", dim=True) + (f"{rpc_timeout:g}s" if rpc_timeout is not None else "unbounded"))
    click.echo()


# ============ Entry Points ============


def main() -> None:
    """Blocksmith CLI entry point."""
    if sys.platform == "win32":
        try:
            sys.stdout.reconfigure(encoding="utf-8")  # type: ignore[union-attr]
            sys.stderr.reconfigure(encoding="utf-8")  # type: ignore[union-attr]
        except (AttributeError, OSError):
            pass
    cli()


if __name__ == "__main__":
    main()
