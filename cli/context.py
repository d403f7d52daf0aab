"""
Shared CLI context for the SFT Ledger commands.

Holds the parsed global options and the loaded configuration, opens the
ledger on demand and formats command output.
"""

import functools
import json
import logging
import sys
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from pydantic import ValidationError

from ledger.archive import JSONFileArchive
from ledger.service import Ledger
from registry.schema import Account
from registry.storage import LedgerStorage
from validator.audit_logger import AuditLogger
from validator.errors import AtomicBatchError, LedgerError
from .config import ConfigurationManager
from .output import OutputFormatter, to_plain


class CLIContext:
    """Global CLI context for sharing state across commands."""

    def __init__(self):
        self.config_file: Optional[str] = None
        self.profile: Optional[str] = None
        self.output_format: Optional[str] = None
        self.verbose: int = 0
        self.caller_override: Optional[str] = None
        self.config_manager: Optional[ConfigurationManager] = None
        self.logger = logging.getLogger('sft-ledger')
        self._ledger: Optional[Ledger] = None

    @property
    def config(self) -> ConfigurationManager:
        if self.config_manager is None:
            self.config_manager = ConfigurationManager(self.config_file, self.profile)
        return self.config_manager

    def setup_logging(self):
        """Configure the root logger from the verbosity flags, falling back to the configured level."""
        if self.verbose:
            level = logging.INFO if self.verbose == 1 else logging.DEBUG
        else:
            level = getattr(logging, str(self.config.get('logging.level', 'WARNING')).upper(), logging.WARNING)

        root = logging.getLogger()
        if not any(getattr(h, '_sft_ledger', False) for h in root.handlers):
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
            handler._sft_ledger = True
            root.addHandler(handler)
        root.setLevel(level)

    @property
    def caller(self) -> str:
        caller = self.caller_override or self.config.get('ledger.caller')
        if not caller:
            raise click.UsageError("No caller principal given; use --caller or set ledger.caller")
        return caller

    def storage(self) -> LedgerStorage:
        return LedgerStorage(
            storage_dir=self.config.get('ledger.storage_dir'),
            compressed=bool(self.config.get('ledger.compressed', False)),
            backup_count=int(self.config.get('ledger.backup_count', 5)),
        )

    def open_ledger(self, create: bool = False) -> Ledger:
        """
        Open the ledger in the configured storage directory.

        Args:
            create: Initialize a new ledger from the configured collection;
                refuses to overwrite an existing one
        """
        if self._ledger is not None:
            return self._ledger

        storage = self.storage()
        if create and storage.exists():
            raise click.ClickException(f"A ledger already exists in {storage.storage_dir}")
        if not create and not storage.exists():
            raise click.ClickException(
                f"No ledger found in {storage.storage_dir}; run 'sft-ledger init' first"
            )

        archive_file = self.config.get('ledger.archive_file') or Path(storage.storage_dir) / 'archive.jsonl'
        audit_log = self.config.get('ledger.audit_log')
        audit_logger = AuditLogger({'log_file': audit_log}) if audit_log else None

        collection = self.config.collection() if create else None
        self._ledger = Ledger(
            collection=collection,
            storage=storage,
            archive=JSONFileArchive(archive_file),
            audit_logger=audit_logger,
        )
        self.logger.debug(f"Opened ledger in {storage.storage_dir}")
        return self._ledger

    def output(self, data: Any, headers: Optional[List[str]] = None):
        format_type = self.output_format or self.config.get('cli.output_format', 'table')
        click.echo(OutputFormatter(format_type).format(data, headers))


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


def handle_cli_error(func):
    """Decorator to report ledger and validation errors without a traceback."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (click.ClickException, click.exceptions.Exit, click.Abort):
            raise
        except KeyboardInterrupt:
            click.echo("\nOperation cancelled by user.", err=True)
            sys.exit(130)
        except Exception as e:
            ctx = click.get_current_context(silent=True)
            cli_ctx = ctx.find_object(CLIContext) if ctx is not None else None

            if isinstance(e, AtomicBatchError):
                click.echo(f"Error: {e}", err=True)
                click.echo(json.dumps([r.to_dict() for r in e.results], indent=2, default=str), err=True)
            elif isinstance(e, ValidationError):
                click.echo(f"Invalid input: {e}", err=True)
            elif isinstance(e, LedgerError) and hasattr(e, 'to_dict'):
                click.echo(f"Error: {json.dumps(to_plain(e), default=str)}", err=True)
            else:
                click.echo(f"Error: {e}", err=True)

            if cli_ctx is not None and cli_ctx.verbose >= 2:
                click.echo(traceback.format_exc(), err=True)
            elif not isinstance(e, (LedgerError, ValidationError)):
                click.echo("Use -vv for detailed error information.", err=True)
            sys.exit(1)

    return wrapper


def load_json_file(file_path: str) -> Any:
    path = Path(file_path)
    try:
        with open(path, 'r') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise click.FileError(file_path, hint=f"invalid JSON: {e}")


def parse_account(value: str) -> Account:
    """Parse ``owner`` or ``owner.subaccount`` into an account."""
    try:
        return Account.from_key(value)
    except ValidationError as e:
        raise click.BadParameter(f"invalid account {value!r}: {e.errors()[0]['msg']}")


def parse_memo(value: Optional[str]) -> Optional[bytes]:
    """Memos are given as hex on the command line."""
    if value is None:
        return None
    try:
        return bytes.fromhex(value)
    except ValueError:
        raise click.BadParameter(f"memo must be hex: {value!r}")


def parse_metadata(pairs: List[str]) -> Dict[str, Any]:
    """Parse ``key=value`` pairs; values are JSON when they parse as JSON, text otherwise."""
    metadata: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition('=')
        if not sep or not key:
            raise click.BadParameter(f"metadata must be key=value: {pair!r}")
        try:
            metadata[key] = json.loads(raw)
        except json.JSONDecodeError:
            metadata[key] = raw
    return metadata
