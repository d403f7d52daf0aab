"""
Output Formatting Module for the SFT Ledger CLI

Formats command results as tables, JSON or YAML. Pydantic models are dumped
to their JSON form first so every format sees plain data.
"""

import json
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel
from tabulate import tabulate


def to_plain(data: Any) -> Any:
    """Convert models, enums and bytes nested in ``data`` to JSON-compatible values."""
    if isinstance(data, BaseModel):
        return data.model_dump(mode='json')
    if isinstance(data, dict):
        return {str(k): to_plain(v) for k, v in data.items()}
    if isinstance(data, (list, tuple, set)):
        return [to_plain(v) for v in data]
    if isinstance(data, bytes):
        return data.hex()
    if hasattr(data, 'to_dict'):
        return to_plain(data.to_dict())
    return data


class OutputFormatter:
    """Formatter for CLI results."""

    def __init__(self, format_type: str = 'table', max_width: Optional[int] = None):
        self.format_type = format_type
        self.max_width = max_width or 120

    def format(self, data: Any, headers: Optional[List[str]] = None) -> str:
        data = to_plain(data)
        if self.format_type == 'json':
            return self.format_json(data)
        elif self.format_type == 'yaml':
            return self.format_yaml(data)
        else:
            return self.format_table(data, headers)

    def format_json(self, data: Any) -> str:
        return json.dumps(data, indent=2, default=str)

    def format_yaml(self, data: Any) -> str:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False).rstrip()

    def format_table(self, data: Any, headers: Optional[List[str]] = None) -> str:
        if isinstance(data, dict):
            return self._format_dict_table(data)
        elif isinstance(data, list):
            return self._format_list_table(data, headers)
        return str(data)

    def _format_dict_table(self, data: Dict[str, Any]) -> str:
        """Key-value table, one row per entry."""
        if not data:
            return "(empty)"
        return tabulate([[key, self._cell(value)] for key, value in data.items()], tablefmt='plain')

    def _format_list_table(self, data: List[Any], headers: Optional[List[str]] = None) -> str:
        if not data:
            return "(no results)"
        if not all(isinstance(item, dict) for item in data):
            return "\n".join(str(item) for item in data)

        headers = headers or list(dict.fromkeys(k for item in data for k in item))
        rows = [[self._cell(item.get(h)) for h in headers] for item in data]
        return tabulate(rows, headers=headers, tablefmt='grid', maxcolwidths=self._column_width(len(headers)))

    def _column_width(self, columns: int) -> int:
        # grid borders take three characters per column plus one
        return max((self.max_width - 1) // columns - 3, 8)

    @staticmethod
    def _cell(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value, default=str)
        return str(value)
