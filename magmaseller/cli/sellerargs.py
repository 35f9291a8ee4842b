import asyncio
import click
import functools
import sys
from pydantic import ValidationError

from magmaseller.cli.helpers import format_errors
from magmaseller.cli.sellercli import SellerCLI
from magmaseller.errors import ConfigurationFatal, MagmaSellerError
from magmaseller.settings import MagmaSettings, SellerSettings, ServiceSettings


def node_options(f):
    """ln backend and credential cache overrides shared by every command"""
    options = [
        click.option(
            "--rest-host",
            "rest_host",
            type=str,
            default=None,
            help="LND REST endpoint, e.g. https://127.0.0.1:8080"
        ),
        click.option(
            "--macaroon-path",
            "macaroon_path",
            type=click.Path(exists=True, dir_okay=False),
            default=None,
            help="path to a macaroon with invoice, onchain, peers and signer permissions"
        ),
        click.option(
            "--tls-cert-path",
            "tls_cert_path",
            type=click.Path(exists=True, dir_okay=False),
            default=None,
            help="path to the lnd tls cert"
        ),
        click.option(
            "--credential-cache-path",
            "credential_cache_path",
            type=click.Path(dir_okay=False),
            default=None,
            help=f"where the Magma API key is cached [default: {MagmaSettings().credential_cache_path}]"
        ),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def build_cli(**overrides) -> SellerCLI:
    """settings from .env/environment, command line values take precedence"""
    overrides = {k: v for k, v in overrides.items() if v is not None}
    try:
        settings = SellerSettings(**overrides)
        return SellerCLI(settings)
    except ValidationError as e:
        click.echo(format_errors(e), err=True)
        sys.exit(1)
    except ConfigurationFatal as e:
        click.echo(f"Configuration error:\n  {e}", err=True)
        sys.exit(1)


def exit_on_error(f):
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except MagmaSellerError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    return wrapper


# --- run subcommand -----------
@click.command("run", help="Poll Magma and fulfill orders until stopped")
@node_options
@click.option(
    "--interval",
    "loop_interval",
    type=int,
    default=None,
    help=f"seconds between poll cycles, at least 10 [default: {ServiceSettings().loop_interval}]"
)
@click.option(
    "--reject-if-buyer-offline/--accept-if-buyer-offline",
    "reject_if_buyer_offline",
    default=None,
    help="reject new orders whose buyer node cannot be reached "
    f"[default: {MagmaSettings().reject_if_buyer_offline}]"
)
@click.option(
    "--once",
    is_flag=True,
    help="run a single poll cycle and exit"
)
@exit_on_error
def run(once, **kwargs):
    cli = build_cli(**kwargs)
    report = asyncio.run(cli.cmd_run(once=once))
    if once:
        click.echo(f"Cycle finished: {report}" if report else "Cycle did not complete, see log")


# --- login subcommand -----------
@click.command("login", help="Sign a Magma login with the node key and cache a new API key")
@node_options
@exit_on_error
def login(**kwargs):
    cli = build_cli(**kwargs)
    asyncio.run(cli.cmd_login())


# --- orders subcommand -----------
@click.command("orders", help="List the orders placed against your Magma offers")
@node_options
@exit_on_error
def orders(**kwargs):
    cli = build_cli(**kwargs)
    asyncio.run(cli.cmd_orders())
