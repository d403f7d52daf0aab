"""
Configuration for the SFT Ledger CLI

Settings are layered: built-in defaults, an optional profile, one YAML or
JSON file and ``SFT_LEDGER_`` environment variables. Later layers win; nested
mappings are merged key by key.
"""

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from registry.schema import Collection, CollectionSettings


# First existing file wins when no file is given explicitly
CONFIG_SEARCH_PATHS = [
    Path.cwd() / '.sft-ledger.yml',
    Path.cwd() / '.sft-ledger.json',
    Path.cwd() / 'sft-ledger.config.yml',
    Path.home() / '.sft-ledger' / 'config.yml',
    Path.home() / '.sft-ledger' / 'config.json',
    Path('/etc/sft-ledger/config.yml'),
]

# SFT_LEDGER_LEDGER__STORAGE_DIR -> {'ledger': {'storage_dir': ...}}
ENV_PREFIX = 'SFT_LEDGER_'
ENV_NESTING = '__'

OUTPUT_FORMATS = ('table', 'json', 'yaml')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

DEFAULT_CONFIG = {
    'ledger': {
        'storage_dir': '~/.sft-ledger/data',
        'archive_file': None,
        'backup_count': 5,
        'compressed': False,
        'caller': None,
        'audit_log': None,
    },
    'collection': {
        'symbol': 'SFT',
        'name': 'SFT Collection',
        'description': None,
        'logo': None,
        'assets_origin': None,
        'supply_cap': None,
        'controllers': [],
        'managers': [],
        'minters': [],
        'settings': CollectionSettings().model_dump(),
    },
    'cli': {
        'output_format': 'table',
    },
    'logging': {
        'level': 'WARNING',
    },
}

PROFILES = {
    'development': {
        'ledger': {'storage_dir': './.sft-ledger-data', 'backup_count': 1},
        'logging': {'level': 'DEBUG'},
    },
    'production': {
        'ledger': {'backup_count': 10},
        'collection': {'settings': {'atomic_batch_transfers': True}},
        'logging': {'level': 'INFO'},
    },
}


def merge_layers(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``base`` updated with ``overlay``, recursing into nested mappings."""
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = merge_layers(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def parse_env_value(raw: str) -> Any:
    """Environment values are JSON when they parse as JSON; yes/no are booleans."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        pass
    lowered = raw.lower()
    if lowered in ('true', 'yes'):
        return True
    if lowered in ('false', 'no'):
        return False
    return raw


def read_config_file(path: Path) -> Dict[str, Any]:
    """Read a YAML or JSON mapping; an empty file reads as an empty mapping."""
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, 'r') as f:
        if path.suffix in ('.yml', '.yaml'):
            data = yaml.safe_load(f)
        elif path.suffix == '.json':
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config file type: {path.suffix or path.name}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def environment_layer(environ=None) -> Dict[str, Any]:
    layer: Dict[str, Any] = {}
    for name, raw in (os.environ if environ is None else environ).items():
        if not name.startswith(ENV_PREFIX):
            continue
        *parents, leaf = name[len(ENV_PREFIX):].lower().split(ENV_NESTING)
        node = layer
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = parse_env_value(raw)
    return layer


def _expand_user_paths(node: Dict[str, Any]) -> None:
    for key, value in node.items():
        if isinstance(value, dict):
            _expand_user_paths(value)
        elif isinstance(value, str) and ('~' in value or '$' in value):
            node[key] = os.path.expanduser(os.path.expandvars(value))


class ConfigurationManager:
    """
    Layered CLI configuration.

    Args:
        config_file: Use this file instead of searching ``CONFIG_SEARCH_PATHS``
        profile: Name of a built-in profile applied on top of the defaults
    """

    def __init__(self, config_file: Optional[str] = None, profile: Optional[str] = None):
        self.logger = logging.getLogger('sft-ledger.config')
        self.config_file = config_file
        self.profile = profile
        self._merged: Optional[Dict[str, Any]] = None
        self._sources: List[str] = []

    def _layers(self) -> Iterator[Tuple[str, Dict[str, Any]]]:
        yield "defaults", DEFAULT_CONFIG

        if self.profile:
            if self.profile not in PROFILES:
                raise ValueError(f"Unknown configuration profile: {self.profile}")
            yield f"profile:{self.profile}", PROFILES[self.profile]

        if self.config_file:
            yield f"file:{self.config_file}", read_config_file(Path(self.config_file))
        else:
            found = next((p for p in CONFIG_SEARCH_PATHS if p.exists()), None)
            if found is not None:
                self.logger.debug(f"Using config file {found}")
                yield f"file:{found}", read_config_file(found)

        env = environment_layer()
        if env:
            yield "environment", env

    def load(self) -> Dict[str, Any]:
        """Merged configuration; computed once and cached until ``reset``."""
        if self._merged is None:
            merged: Dict[str, Any] = {}
            sources = []
            for name, layer in self._layers():
                if layer:
                    merged = merge_layers(merged, layer)
                    sources.append(name)
            _expand_user_paths(merged)
            self._merged, self._sources = merged, sources
        return self._merged

    def get(self, key_path: str, default: Any = None) -> Any:
        """Look up a dotted path such as ``ledger.storage_dir``."""
        node: Any = self.load()
        for part in key_path.split('.'):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key_path: str, value: Any) -> None:
        """Override a value for this process only."""
        *parents, leaf = key_path.split('.')
        node = self.load()
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value

    def save(self, path: Optional[Union[str, Path]] = None, format: str = 'yaml') -> Path:
        config = self.load()
        if path is None:
            path = Path.cwd() / ('.sft-ledger.yml' if format == 'yaml' else '.sft-ledger.json')
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            if format == 'yaml':
                yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)
            else:
                json.dump(config, f, indent=2)
        self.logger.info(f"Wrote configuration to {path}")
        return path

    def collection(self) -> Collection:
        """The collection a new ledger is initialized with."""
        return Collection.model_validate(self.get('collection', {}))

    def validate(self) -> List[str]:
        """Problems with the merged configuration, one message each; empty when usable."""
        problems = []

        try:
            self.collection()
        except ValidationError as e:
            for err in e.errors():
                location = '.'.join(str(p) for p in err['loc'])
                problems.append(f"collection.{location}: {err['msg']}")

        if not self.get('ledger.storage_dir'):
            problems.append("ledger.storage_dir is required")

        backup_count = self.get('ledger.backup_count')
        if isinstance(backup_count, bool) or not isinstance(backup_count, int) or backup_count < 0:
            problems.append("ledger.backup_count must be a non-negative integer")

        output_format = self.get('cli.output_format')
        if output_format not in OUTPUT_FORMATS:
            problems.append(f"Invalid output format: {output_format}")

        level = str(self.get('logging.level', '')).upper()
        if level not in LOG_LEVELS:
            problems.append(f"Invalid logging level: {level}")

        return problems

    def get_sources(self) -> List[str]:
        """Names of the layers that contributed, lowest precedence first."""
        self.load()
        return list(self._sources)

    def reset(self) -> None:
        self._merged = None
        self._sources = []
