"""
Collection Management Commands for the SFT Ledger CLI

Initialize a ledger and manage collection metadata, settings and roles.
"""

from typing import Optional, Tuple

import click

from registry.schema import CollectionPatch, CollectionSettings
from ..context import CLIContext, handle_cli_error, pass_context


@click.command()
@click.option('--symbol', help='Collection symbol')
@click.option('--name', help='Collection name')
@click.option('--description', help='Collection description')
@click.option('--supply-cap', type=int, help='Maximum number of token classes')
@click.option('--controller', 'controllers', multiple=True,
              help='Controller principal (repeatable; defaults to the caller)')
@pass_context
@handle_cli_error
def init(ctx: CLIContext, symbol: Optional[str], name: Optional[str], description: Optional[str],
         supply_cap: Optional[int], controllers: Tuple[str, ...]):
    """
    Initialize a new ledger from the configured collection.

    Command line options override the ``collection`` configuration section.
    """
    overrides = {
        'collection.symbol': symbol,
        'collection.name': name,
        'collection.description': description,
        'collection.supply_cap': supply_cap,
    }
    for key, value in overrides.items():
        if value is not None:
            ctx.config.set(key, value)
    if controllers:
        ctx.config.set('collection.controllers', list(controllers))
    elif not ctx.config.get('collection.controllers'):
        ctx.config.set('collection.controllers', [ctx.caller])

    ledger = ctx.open_ledger(create=True)
    ctx.logger.info(f"Initialized collection {ledger.collection.symbol}")
    ctx.output(ledger.collection_metadata())


@click.group()
@pass_context
def collection(ctx: CLIContext):
    """Collection metadata, settings and roles."""
    ctx.logger.debug("Collection command group invoked")


@collection.command('show')
@click.option('--roles', is_flag=True, help='Include controllers, managers and minters')
@pass_context
@handle_cli_error
def show_collection(ctx: CLIContext, roles: bool):
    ledger = ctx.open_ledger()
    data = dict(ledger.collection_metadata())
    if roles:
        data['controllers'] = sorted(ledger.collection.controllers)
        data['managers'] = sorted(ledger.collection.managers)
        data['minters'] = sorted(ledger.collection.minters)
    ctx.output(data)


@collection.command('update')
@click.option('--name', help='Collection name')
@click.option('--description', help='Collection description')
@click.option('--logo', help='Logo URL or data URI')
@click.option('--assets-origin', help='Origin serving the class assets')
@click.option('--supply-cap', type=int, help='Maximum number of token classes')
@click.option('--set', 'settings', multiple=True, metavar='KEY=VALUE',
              help=f"Collection setting (repeatable): {', '.join(CollectionSettings.model_fields)}")
@pass_context
@handle_cli_error
def update_collection(ctx: CLIContext, name, description, logo, assets_origin, supply_cap, settings):
    """
    Update collection metadata and settings (controllers only).

    Examples:
        sft-ledger collection update --name "Gold Coins" --set max_memo_size=64
    """
    patch = {
        'name': name,
        'description': description,
        'logo': logo,
        'assets_origin': assets_origin,
        'supply_cap': supply_cap,
    }
    for pair in settings:
        key, sep, value = pair.partition('=')
        if not sep or key not in CollectionSettings.model_fields:
            raise click.BadParameter(f"unknown setting {pair!r}", param_hint='--set')
        patch[key] = value

    ledger = ctx.open_ledger()
    ledger.update_collection(ctx.caller, CollectionPatch(**{k: v for k, v in patch.items() if v is not None}))
    ctx.output(ledger.collection_metadata())


@collection.command('set-minters')
@click.argument('principals', nargs=-1)
@pass_context
@handle_cli_error
def set_minters(ctx: CLIContext, principals: Tuple[str, ...]):
    """Replace the minter set (controllers only)."""
    ledger = ctx.open_ledger()
    ledger.set_minters(ctx.caller, principals)
    ctx.output({'minters': sorted(ledger.collection.minters)})


@collection.command('set-managers')
@click.argument('principals', nargs=-1)
@pass_context
@handle_cli_error
def set_managers(ctx: CLIContext, principals: Tuple[str, ...]):
    """Replace the manager set (controllers only)."""
    ledger = ctx.open_ledger()
    ledger.set_managers(ctx.caller, principals)
    ctx.output({'managers': sorted(ledger.collection.managers)})
