"""
Block Log Commands for the SFT Ledger CLI

Read blocks, check the hash chain and drive archive hand-offs.
"""

from typing import List, Optional, Tuple

import click

from ..context import CLIContext, handle_cli_error, pass_context


def _parse_range(value: str) -> Tuple[int, int]:
    start, sep, length = value.partition(':')
    try:
        if not sep:
            raise ValueError
        return int(start), int(length)
    except ValueError:
        raise click.BadParameter(f"range must be START:LENGTH, got {value!r}", param_hint='--range')


def _block_row(block) -> dict:
    return {
        'index': block.index,
        'btype': block.btype.value,
        'ts': block.ts,
        'tid': block.tx.get('tid'),
        'from': block.tx.get('from'),
        'to': block.tx.get('to'),
        'digest': block.digest,
    }


@click.group()
@pass_context
def blocks(ctx: CLIContext):
    """Block log inspection commands."""
    ctx.logger.debug("Blocks command group invoked")


@blocks.command('get')
@click.option('--start', type=int, default=0, show_default=True, help='First block index')
@click.option('--length', type=int, default=10, show_default=True, help='Number of blocks')
@click.option('--range', 'ranges', multiple=True, metavar='START:LENGTH',
              help='Additional ranges (repeatable); replaces --start/--length')
@click.option('--fetch-archived', is_flag=True, help='Resolve archived ranges through their archives')
@click.option('--full', is_flag=True, help='Show complete block contents')
@pass_context
@handle_cli_error
def get_blocks(ctx: CLIContext, start: int, length: int, ranges: Tuple[str, ...],
               fetch_archived: bool, full: bool):
    """
    Read blocks by index.

    Blocks already moved to an archive are reported as archive ranges unless
    --fetch-archived is given.

    Examples:
        sft-ledger blocks get --start 0 --length 20
        sft-ledger -o json blocks get --range 0:5 --range 100:5 --fetch-archived --full
    """
    ledger = ctx.open_ledger()
    requested: List[Tuple[int, int]] = [_parse_range(r) for r in ranges] or [(start, length)]
    result = ledger.get_blocks(requested)

    found = list(result.blocks)
    if fetch_archived:
        for archived in result.archived:
            found.extend(ledger.fetch_archived(archived))
        found.sort(key=lambda b: b.index)

    if full:
        data = result.to_dict()
        data['blocks'] = [b.model_dump(mode='json') for b in found]
        if fetch_archived:
            data['archived_blocks'] = []
        ctx.output(data)
        return

    ctx.output([_block_row(b) for b in found])
    if result.archived and not fetch_archived:
        click.echo(
            f"{sum(a.length for a in result.archived)} requested blocks are archived; "
            f"use --fetch-archived to read them",
            err=True,
        )


@blocks.command('tip')
@pass_context
@handle_cli_error
def tip(ctx: CLIContext):
    """Show the certified tip of the chain."""
    certificate = ctx.open_ledger().get_tip_certificate()
    if certificate is None:
        ctx.output({'last_block_index': None})
        return
    data = certificate.model_dump(mode='json')
    data['certified_digest'] = certificate.certified_digest()
    ctx.output(data)


@blocks.command('verify')
@pass_context
@handle_cli_error
def verify(ctx: CLIContext):
    """Recompute the hash chain of the retained blocks."""
    ledger = ctx.open_ledger()
    ok = ledger.verify_log()
    ctx.output({'valid': ok, 'log_length': ledger.state.block_log.length})
    if not ok:
        raise click.ClickException("Block log hash chain is broken")


@blocks.command('archives')
@click.option('--from-id', help='Only archives whose id sorts after this one')
@pass_context
@handle_cli_error
def archives(ctx: CLIContext, from_id: Optional[str]):
    """List archives and the block ranges they hold."""
    ctx.output(ctx.open_ledger().get_archives(from_id))


@blocks.command('types')
@pass_context
@handle_cli_error
def block_types(ctx: CLIContext):
    ctx.output(ctx.open_ledger().supported_block_types())


@click.group()
@pass_context
def archive(ctx: CLIContext):
    """Archive hand-off commands."""
    ctx.logger.debug("Archive command group invoked")


@archive.command('run')
@click.option('--force', is_flag=True, help='Archive even below the trigger threshold')
@pass_context
@handle_cli_error
def run_archive(ctx: CLIContext, force: bool):
    """Move the oldest retained blocks to the configured archive."""
    pointer = ctx.open_ledger().run_archiving(force=force)
    if pointer is None:
        ctx.output({'archived': 0})
        return
    ctx.output({
        'archived': pointer.length,
        'archive_id': pointer.archive_id,
        'start': pointer.start,
        'end': pointer.end,
    })
