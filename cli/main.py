#!/usr/bin/env python3
"""
SFT Ledger - Command Line Interface

Manage a semi-fungible token ledger: initialize a collection, create token
classes, mint and move instances, manage approvals and inspect the block log.
"""

import click

from . import __version__
from .commands.blocks import archive, blocks
from .commands.classes import challenge, token_class
from .commands.collection import collection, init
from .commands.tokens import (
    approvals, approve, balance_of, mint, owner_of, revoke, transfer, transfer_from
)
from .context import CLIContext, pass_context


@click.group(context_settings={'help_option_names': ['-h', '--help']})
@click.option('--config-file', '-c', type=click.Path(dir_okay=False),
              help='Path to configuration file')
@click.option('--profile', type=click.Choice(['development', 'production']),
              help='Configuration profile')
@click.option('--output-format', '-o',
              type=click.Choice(['table', 'json', 'yaml']),
              help='Output format (defaults to cli.output_format)')
@click.option('--caller', help='Principal performing the operation (defaults to ledger.caller)')
@click.option('--verbose', '-v', count=True,
              help='Increase verbosity (-v for info, -vv for debug)')
@click.version_option(__version__, prog_name='sft-ledger')
@pass_context
def cli(ctx: CLIContext, config_file, profile, output_format, caller, verbose):
    """
    SFT Ledger command line interface.

    Examples:
        sft-ledger --caller alice init
        sft-ledger --caller alice class create --name Gold --asset-file gold.png --author alice
        sft-ledger --caller alice mint --class-id 1 --holder bob --holder carol
        sft-ledger -o json blocks get --start 0 --length 10
    """
    ctx.config_file = config_file
    ctx.profile = profile
    ctx.output_format = output_format
    ctx.caller_override = caller
    ctx.verbose = verbose

    ctx.setup_logging()
    ctx.logger.debug(f"Configuration sources: {ctx.config.get_sources()}")


cli.add_command(init)
cli.add_command(collection)
cli.add_command(token_class)
cli.add_command(challenge)
cli.add_command(mint)
cli.add_command(transfer)
cli.add_command(transfer_from)
cli.add_command(approve)
cli.add_command(revoke)
cli.add_command(owner_of)
cli.add_command(balance_of)
cli.add_command(approvals)
cli.add_command(blocks)
cli.add_command(archive)


def main():
    cli(prog_name='sft-ledger')


if __name__ == '__main__':
    main()
