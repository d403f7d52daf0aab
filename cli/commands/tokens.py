"""
Token Commands for the SFT Ledger CLI

Mint instances, transfer them, and manage the approvals that let spenders
transfer on an owner's behalf. Batch commands accept either a single item
through options or a JSON file holding a list of items.
"""

from typing import Any, List, Optional, Sequence, Type

import click
from pydantic import BaseModel

from validator.errors import ItemResult
from validator.requests import (
    ApprovalInfo, ApproveCollectionArg, ApproveTokenArg, IsApprovedArg, MintArg,
    RevokeCollectionApprovalArg, RevokeTokenApprovalArg, TransferArg, TransferFromArg
)
from ..context import (
    CLIContext, handle_cli_error, load_json_file, parse_account, parse_memo, pass_context
)


def _batch_from_file(batch_file: str, model: Type[BaseModel]) -> List[Any]:
    items = load_json_file(batch_file)
    if not isinstance(items, list):
        raise click.BadParameter("batch file must hold a JSON list", param_hint='--batch-file')
    return [model.model_validate(item) for item in items]


def _output_results(ctx: CLIContext, results: Sequence[ItemResult]):
    rows = []
    for i, result in enumerate(results):
        row = {'item': i, 'status': 'ok' if result.ok else 'error'}
        if result.ok:
            row['block_index'] = result.value
        else:
            row['error'] = result.error.to_dict()
        rows.append(row)
    ctx.output(rows)
    if any(not r.ok for r in results):
        ctx.logger.warning(f"{sum(1 for r in results if not r.ok)} of {len(results)} items failed")


def _require_single(batch_file: Optional[str], **required):
    if batch_file:
        return
    missing = [name for name, value in required.items() if value is None]
    if missing:
        raise click.UsageError(f"Missing {', '.join('--' + m.replace('_', '-') for m in missing)} "
                               f"(or give --batch-file)")


_created_at_option = click.option('--created-at-time', type=int,
                                  help='Client timestamp (ns); enables duplicate detection')
_memo_option = click.option('--memo', help='Memo (hex)')
_batch_option = click.option('--batch-file', type=click.Path(exists=True, dir_okay=False),
                             help='JSON file with a list of items')


@click.command()
@click.option('--class-id', type=int, required=True, help='Token class to mint from')
@click.option('--holder', 'holders', multiple=True, required=True,
              help='Recipient account, owner[.subaccount] (repeatable, one instance each)')
@_memo_option
@pass_context
@handle_cli_error
def mint(ctx: CLIContext, class_id: int, holders, memo: Optional[str]):
    """
    Mint one instance of a class per holder (minters or controllers).

    Examples:
        sft-ledger mint --class-id 1 --holder bob --holder carol
    """
    arg = MintArg(
        token_class_id=class_id,
        holders=[parse_account(h) for h in holders],
        memo=parse_memo(memo),
    )
    ledger = ctx.open_ledger()
    token_ids = ledger.mint(ctx.caller, arg)
    ctx.output([
        {'token_id': token_id, 'holder': str(holder)}
        for token_id, holder in zip(token_ids, arg.holders)
    ])


@click.command()
@click.option('--token-id', type=int, help='Instance to transfer')
@click.option('--to', 'to', help='Recipient account, owner[.subaccount]')
@click.option('--from-subaccount', help='Caller subaccount holding the instance (hex)')
@_memo_option
@_created_at_option
@_batch_option
@pass_context
@handle_cli_error
def transfer(ctx: CLIContext, token_id, to, from_subaccount, memo, created_at_time, batch_file):
    """Transfer instances owned by the caller."""
    _require_single(batch_file, token_id=token_id, to=to)
    if batch_file:
        args = _batch_from_file(batch_file, TransferArg)
    else:
        args = [TransferArg(
            from_subaccount=from_subaccount,
            to=parse_account(to),
            token_id=token_id,
            memo=parse_memo(memo),
            created_at_time=created_at_time,
        )]
    _output_results(ctx, ctx.open_ledger().transfer(ctx.caller, args))


@click.command('transfer-from')
@click.option('--token-id', type=int, help='Instance to transfer')
@click.option('--from', 'from_', help='Owner account, owner[.subaccount]')
@click.option('--to', 'to', help='Recipient account, owner[.subaccount]')
@click.option('--spender-subaccount', help='Caller subaccount the approval was granted to (hex)')
@_memo_option
@_created_at_option
@_batch_option
@pass_context
@handle_cli_error
def transfer_from(ctx: CLIContext, token_id, from_, to, spender_subaccount, memo, created_at_time, batch_file):
    """Transfer instances on behalf of their owner using an approval."""
    _require_single(batch_file, token_id=token_id, to=to, **{'from': from_})
    if batch_file:
        args = _batch_from_file(batch_file, TransferFromArg)
    else:
        args = [TransferFromArg(
            spender_subaccount=spender_subaccount,
            from_=parse_account(from_),
            to=parse_account(to),
            token_id=token_id,
            memo=parse_memo(memo),
            created_at_time=created_at_time,
        )]
    _output_results(ctx, ctx.open_ledger().transfer_from(ctx.caller, args))


@click.group()
@pass_context
def approve(ctx: CLIContext):
    """Grant approvals to spenders."""
    ctx.logger.debug("Approve command group invoked")


def _approval_info(spender, from_subaccount, expires_at, memo, created_at_time) -> ApprovalInfo:
    return ApprovalInfo(
        spender=parse_account(spender),
        from_subaccount=from_subaccount,
        expires_at=expires_at,
        memo=parse_memo(memo),
        created_at_time=created_at_time,
    )


@approve.command('token')
@click.option('--token-id', type=int, help='Instance to approve')
@click.option('--spender', help='Spender account, owner[.subaccount]')
@click.option('--from-subaccount', help='Caller subaccount holding the instance (hex)')
@click.option('--expires-at', type=int, help='Expiry (ns since the epoch)')
@_memo_option
@_created_at_option
@_batch_option
@pass_context
@handle_cli_error
def approve_token(ctx: CLIContext, token_id, spender, from_subaccount, expires_at, memo,
                  created_at_time, batch_file):
    """Approve a spender for single instances."""
    _require_single(batch_file, token_id=token_id, spender=spender)
    if batch_file:
        args = _batch_from_file(batch_file, ApproveTokenArg)
    else:
        args = [ApproveTokenArg(
            token_id=token_id,
            approval_info=_approval_info(spender, from_subaccount, expires_at, memo, created_at_time),
        )]
    _output_results(ctx, ctx.open_ledger().approve_tokens(ctx.caller, args))


@approve.command('collection')
@click.option('--spender', help='Spender account, owner[.subaccount]')
@click.option('--from-subaccount', help='Caller subaccount granting the approval (hex)')
@click.option('--expires-at', type=int, help='Expiry (ns since the epoch)')
@_memo_option
@_created_at_option
@_batch_option
@pass_context
@handle_cli_error
def approve_collection(ctx: CLIContext, spender, from_subaccount, expires_at, memo,
                       created_at_time, batch_file):
    """Approve a spender for every instance the caller's account holds."""
    _require_single(batch_file, spender=spender)
    if batch_file:
        args = _batch_from_file(batch_file, ApproveCollectionArg)
    else:
        args = [ApproveCollectionArg(
            approval_info=_approval_info(spender, from_subaccount, expires_at, memo, created_at_time),
        )]
    _output_results(ctx, ctx.open_ledger().approve_collection(ctx.caller, args))


@click.group()
@pass_context
def revoke(ctx: CLIContext):
    """Revoke approvals."""
    ctx.logger.debug("Revoke command group invoked")


@revoke.command('token')
@click.option('--token-id', type=int, help='Instance whose approvals to revoke')
@click.option('--spender', help='Spender to revoke (all spenders when omitted)')
@click.option('--from-subaccount', help='Caller subaccount that granted the approval (hex)')
@_memo_option
@_created_at_option
@_batch_option
@pass_context
@handle_cli_error
def revoke_token(ctx: CLIContext, token_id, spender, from_subaccount, memo, created_at_time, batch_file):
    _require_single(batch_file, token_id=token_id)
    if batch_file:
        args = _batch_from_file(batch_file, RevokeTokenApprovalArg)
    else:
        args = [RevokeTokenApprovalArg(
            spender=parse_account(spender) if spender else None,
            from_subaccount=from_subaccount,
            token_id=token_id,
            memo=parse_memo(memo),
            created_at_time=created_at_time,
        )]
    _output_results(ctx, ctx.open_ledger().revoke_token_approvals(ctx.caller, args))


@revoke.command('collection')
@click.option('--spender', help='Spender to revoke (all spenders when omitted)')
@click.option('--from-subaccount', help='Caller subaccount that granted the approval (hex)')
@_memo_option
@_created_at_option
@_batch_option
@pass_context
@handle_cli_error
def revoke_collection(ctx: CLIContext, spender, from_subaccount, memo, created_at_time, batch_file):
    if batch_file:
        args = _batch_from_file(batch_file, RevokeCollectionApprovalArg)
    else:
        args = [RevokeCollectionApprovalArg(
            spender=parse_account(spender) if spender else None,
            from_subaccount=from_subaccount,
            memo=parse_memo(memo),
            created_at_time=created_at_time,
        )]
    _output_results(ctx, ctx.open_ledger().revoke_collection_approvals(ctx.caller, args))


@click.command('owner-of')
@click.argument('token_ids', type=int, nargs=-1, required=True)
@pass_context
@handle_cli_error
def owner_of(ctx: CLIContext, token_ids):
    """Show the owner of each instance."""
    owners = ctx.open_ledger().owner_of(list(token_ids))
    ctx.output([
        {'token_id': token_id, 'owner': str(owner) if owner else None}
        for token_id, owner in zip(token_ids, owners)
    ])


@click.command('balance-of')
@click.argument('accounts', nargs=-1, required=True)
@click.option('--tokens', 'with_tokens', is_flag=True, help='Include the first page of instance ids')
@pass_context
@handle_cli_error
def balance_of(ctx: CLIContext, accounts, with_tokens: bool):
    """Show how many instances each account holds."""
    ledger = ctx.open_ledger()
    parsed = [parse_account(a) for a in accounts]
    rows = []
    for account, balance in zip(parsed, ledger.balance_of(parsed)):
        row = {'account': str(account), 'balance': balance}
        if with_tokens:
            row['tokens'] = ledger.tokens_of(account)
        rows.append(row)
    ctx.output(rows)


@click.command('approvals')
@click.option('--token-id', type=int, help='List token approvals of this instance')
@click.option('--owner', help='List collection approvals granted by this account')
@click.option('--spender', help='With --token-id, only check whether this spender is approved by the caller')
@click.option('--take', type=int, help='Page size')
@pass_context
@handle_cli_error
def approvals(ctx: CLIContext, token_id: Optional[int], owner: Optional[str],
              spender: Optional[str], take: Optional[int]):
    """Inspect active approvals."""
    ledger = ctx.open_ledger()
    if spender is not None:
        if token_id is None:
            raise click.UsageError("--spender requires --token-id")
        approved = ledger.is_approved(ctx.caller, [IsApprovedArg(spender=parse_account(spender), token_id=token_id)])
        ctx.output({'token_id': token_id, 'spender': spender, 'approved': approved[0]})
        return
    if (token_id is None) == (owner is None):
        raise click.UsageError("Give exactly one of --token-id or --owner")

    if token_id is not None:
        found = ledger.get_token_approvals(token_id, take=take)
    else:
        found = ledger.get_collection_approvals(parse_account(owner), take=take)
    ctx.output([
        {
            'approval_id': a.approval_id,
            'grantor': str(a.grantor),
            'spender': str(a.spender),
            'token_id': a.instance_id,
            'expires_at': a.expires_at,
        }
        for a in found
    ])
