"""
Token Class Commands for the SFT Ledger CLI

Create, update and list token classes, and issue the challenges authors
present when creating a class themselves.
"""

import mimetypes
from pathlib import Path
from typing import Optional, Tuple

import click

from registry.schema import CreateClassArgs, UpdateClassArgs
from registry.token_classes import compute_asset_hash
from ..context import CLIContext, handle_cli_error, parse_metadata, pass_context


def _read_asset(asset_file: str) -> Tuple[bytes, str, str]:
    path = Path(asset_file)
    content = path.read_bytes()
    content_type = mimetypes.guess_type(path.name)[0] or 'application/octet-stream'
    return content, path.name, content_type


@click.group('class')
@pass_context
def token_class(ctx: CLIContext):
    """Token class management commands."""
    ctx.logger.debug("Class command group invoked")


@token_class.command('create')
@click.option('--name', required=True, help='Class name')
@click.option('--description', help='Class description')
@click.option('--asset-file', type=click.Path(exists=True, dir_okay=False), required=True,
              help='File holding the class asset')
@click.option('--asset-name', help='Asset name (defaults to the file name)')
@click.option('--content-type', help='Asset content type (guessed from the file name)')
@click.option('--metadata', '-m', multiple=True, metavar='KEY=VALUE', help='Class metadata (repeatable)')
@click.option('--supply-cap', type=int, help='Maximum number of instances')
@click.option('--author', help='Class author (defaults to the caller)')
@click.option('--challenge', help='Challenge token issued for this asset and author')
@click.option('--by-challenge', is_flag=True,
              help='Create as the author by presenting a challenge instead of as a manager')
@pass_context
@handle_cli_error
def create_class(ctx: CLIContext, name, description, asset_file, asset_name, content_type,
                 metadata, supply_cap, author, challenge, by_challenge):
    """
    Create a token class.

    Managers create classes directly. Authors pass --by-challenge together
    with a challenge a manager issued for the same asset and author.

    Examples:
        sft-ledger class create --name Gold --asset-file gold.png --supply-cap 100
        sft-ledger --caller bob class create --name Art --asset-file art.png --by-challenge --challenge 3fa2...
    """
    content, file_name, guessed_type = _read_asset(asset_file)
    args = CreateClassArgs(
        name=name,
        description=description,
        asset_name=asset_name or file_name,
        asset_content_type=content_type or guessed_type,
        asset_content=content,
        metadata=parse_metadata(list(metadata)),
        supply_cap=supply_cap,
        author=author or ctx.caller,
        challenge=challenge,
    )

    ledger = ctx.open_ledger()
    if by_challenge:
        class_id = ledger.create_class_by_challenge(ctx.caller, args)
    else:
        class_id = ledger.create_class(ctx.caller, args)
    ctx.output({'class_id': class_id, 'asset_hash': compute_asset_hash(content)})


@token_class.command('update')
@click.argument('class_id', type=int)
@click.option('--name', help='Class name')
@click.option('--description', help='Class description')
@click.option('--asset-file', type=click.Path(exists=True, dir_okay=False), help='Replacement asset')
@click.option('--asset-name', help='Asset name')
@click.option('--content-type', help='Asset content type')
@click.option('--metadata', '-m', multiple=True, metavar='KEY=VALUE',
              help='Replacement class metadata (repeatable)')
@click.option('--supply-cap', type=int, help='Lower the supply cap')
@click.option('--author', help='New class author')
@pass_context
@handle_cli_error
def update_class(ctx: CLIContext, class_id, name, description, asset_file, asset_name,
                 content_type, metadata, supply_cap, author):
    """Update a token class (managers or the class author)."""
    changes = {
        'name': name,
        'description': description,
        'asset_name': asset_name,
        'asset_content_type': content_type,
        'supply_cap': supply_cap,
        'author': author,
    }
    changes = {k: v for k, v in changes.items() if v is not None}
    if metadata:
        changes['metadata'] = parse_metadata(list(metadata))
    if asset_file:
        content, file_name, guessed_type = _read_asset(asset_file)
        changes['asset_content'] = content
        changes.setdefault('asset_name', file_name)
        changes.setdefault('asset_content_type', guessed_type)
    if not changes:
        raise click.UsageError("Nothing to update")

    ledger = ctx.open_ledger()
    ledger.update_class(ctx.caller, UpdateClassArgs(id=class_id, **changes))
    ctx.output(ledger.class_metadata([class_id])[0])


@token_class.command('show')
@click.argument('class_ids', type=int, nargs=-1, required=True)
@pass_context
@handle_cli_error
def show_class(ctx: CLIContext, class_ids: Tuple[int, ...]):
    ledger = ctx.open_ledger()
    rows = []
    for class_id, metadata in zip(class_ids, ledger.class_metadata(list(class_ids))):
        rows.append({'class_id': class_id, **(metadata or {'error': 'not found'})})
    ctx.output(rows[0] if len(rows) == 1 else rows)


@token_class.command('list')
@click.option('--prev', type=int, help='List classes after this id')
@click.option('--take', type=int, help='Page size')
@click.option('--tokens', 'with_tokens', is_flag=True, help='Include minted instance ids')
@pass_context
@handle_cli_error
def list_classes(ctx: CLIContext, prev: Optional[int], take: Optional[int], with_tokens: bool):
    """List token classes in id order."""
    ledger = ctx.open_ledger()
    class_ids = ledger.classes(prev, take)
    rows = []
    for class_id, metadata in zip(class_ids, ledger.class_metadata(class_ids)):
        row = {
            'class_id': class_id,
            'name': metadata.get('icrc7:name'),
            'asset_name': metadata.get('asset_name'),
            'asset_hash': metadata.get('asset_hash'),
        }
        if with_tokens:
            row['tokens'] = ledger.tokens_in(class_id)
        rows.append(row)
    ctx.output(rows)


@click.group()
@pass_context
def challenge(ctx: CLIContext):
    """Class creation challenges."""
    ctx.logger.debug("Challenge command group invoked")


@challenge.command('issue')
@click.option('--asset-file', type=click.Path(exists=True, dir_okay=False), help='Asset to commit to')
@click.option('--asset-hash', help='SHA3-256 of the asset (hex), instead of --asset-file')
@click.option('--author', required=True, help='Principal allowed to present the challenge')
@pass_context
@handle_cli_error
def issue_challenge(ctx: CLIContext, asset_file: Optional[str], asset_hash: Optional[str], author: str):
    """Issue a one-time challenge binding an asset to an author (managers only)."""
    if bool(asset_file) == bool(asset_hash):
        raise click.UsageError("Give exactly one of --asset-file or --asset-hash")
    if asset_file:
        asset_hash = compute_asset_hash(Path(asset_file).read_bytes())

    ledger = ctx.open_ledger()
    token = ledger.issue_challenge(ctx.caller, asset_hash, author)
    ctx.output({'challenge': token, 'asset_hash': asset_hash, 'author': author})
