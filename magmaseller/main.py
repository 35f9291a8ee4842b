import click

from magmaseller.cli.sellerargs import login, orders, run
from magmaseller.cli.logger import LoggerSetup
from magmaseller.settings import LogLevel, MagmaSellerSettings

LOG_LEVELS = [lvl.value.lower() for lvl in LogLevel]


@click.group(
    context_settings={
        "help_option_names": ["-h", "--help"],
        "max_content_width": 120,
        "terminal_width": 120,
    }
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=MagmaSellerSettings().log_level.value.lower(),
    show_default=True,
    help="logging level, e.g. DEBUG, info, WaRnInG, etc.",
)
@click.pass_context
def cli(ctx, log_level):
    """
    magmaseller: sell Lightning channels on Amboss Magma from your LND node
    """
    level_enum = LogLevel[log_level.upper()]
    LoggerSetup(level_enum).setup_logging()

    ctx.ensure_object(dict)
    ctx.obj["log_level"] = level_enum


def register_commands(group: click.Group):
    group.add_command(run)
    group.add_command(login)
    group.add_command(orders)


def main():
    register_commands(cli)
    cli()


if __name__ == "__main__":
    main()
