"""
SFT Ledger - Collection Configuration Store

Holds the collection metadata, role sets and tunable limits read by every
other component. Only controllers may change it.
"""

import logging
from typing import Dict, Iterable, Optional

from pydantic import ValidationError

from validator.errors import ConfigError, ConfigErrorKind
from .schema import Collection, CollectionPatch, CollectionSettings, MetadataValue


logger = logging.getLogger(__name__)

_SETTINGS_FIELDS = set(CollectionSettings.model_fields)


class ConfigStore:
    """Collection-wide configuration with controller-only mutation."""

    def __init__(self, collection: Collection):
        self._collection = collection

    @property
    def collection(self) -> Collection:
        return self._collection

    @property
    def settings(self) -> CollectionSettings:
        return self._collection.settings

    def is_controller(self, principal: str) -> bool:
        return principal in self._collection.controllers

    def is_manager(self, principal: str) -> bool:
        return principal in self._collection.managers

    def is_minter(self, principal: str) -> bool:
        return principal in self._collection.minters

    def _require_controller(self, caller: str) -> None:
        if not self.is_controller(caller):
            raise ConfigError(ConfigErrorKind.UNAUTHORIZED, "caller is not a controller")

    def update(self, caller: str, patch: CollectionPatch, now: int) -> None:
        """
        Apply a partial collection update.

        Args:
            caller: Principal requesting the update
            patch: Fields to change; unset fields are left alone
            now: Ledger time (ns)

        Raises:
            ConfigError: Caller is not a controller, the supply cap is already
                set, or the resulting settings are inconsistent
        """
        self._require_controller(caller)
        changes = patch.model_dump(exclude_unset=True)

        if "supply_cap" in changes and self._collection.supply_cap is not None:
            raise ConfigError(ConfigErrorKind.INVALID_ARGUMENT, "supply cap can not be changed")

        settings_changes = {k: v for k, v in changes.items() if k in _SETTINGS_FIELDS and v is not None}
        meta_changes = {k: v for k, v in changes.items() if k not in _SETTINGS_FIELDS and v is not None}

        try:
            settings = CollectionSettings.model_validate(
                {**self.settings.model_dump(), **settings_changes}
            )
        except ValidationError as e:
            raise ConfigError(ConfigErrorKind.INVALID_ARGUMENT, f"invalid settings: {e.errors()[0]['msg']}")

        self._collection = self._collection.model_copy(
            update={**meta_changes, "settings": settings, "updated_at": now}
        )
        logger.info(f"Collection updated by {caller}: {sorted(changes)}")

    def set_minters(self, caller: str, minters: Iterable[str], now: int) -> None:
        self._require_controller(caller)
        self._collection = self._collection.model_copy(
            update={"minters": set(minters), "updated_at": now}
        )

    def set_managers(self, caller: str, managers: Iterable[str], now: int) -> None:
        self._require_controller(caller)
        self._collection = self._collection.model_copy(
            update={"managers": set(managers), "updated_at": now}
        )

    def take_value(self, take: Optional[int]) -> int:
        """Clamp a caller-supplied page size to the configured limits."""
        if take is None:
            return self.settings.default_take_value
        return max(0, min(take, self.settings.max_take_value))

    def metadata(self, total_supply: int) -> Dict[str, MetadataValue]:
        c = self._collection
        res: Dict[str, MetadataValue] = {
            "icrc7:symbol": c.symbol,
            "icrc7:name": c.name,
            "icrc7:total_supply": total_supply,
            "icrc7:max_query_batch_size": c.settings.max_query_batch_size,
            "icrc7:max_update_batch_size": c.settings.max_update_batch_size,
            "icrc7:default_take_value": c.settings.default_take_value,
            "icrc7:max_take_value": c.settings.max_take_value,
            "icrc7:max_memo_size": c.settings.max_memo_size,
            "icrc7:atomic_batch_transfers": c.settings.atomic_batch_transfers,
            "icrc7:tx_window": c.settings.tx_window,
            "icrc7:permitted_drift": c.settings.permitted_drift,
            "icrc37:max_approvals_per_token_or_collection": c.settings.max_approvals_per_token_or_collection,
            "icrc37:max_revoke_approvals": c.settings.max_revoke_approvals,
        }
        if c.description is not None:
            res["icrc7:description"] = c.description
        if c.logo is not None:
            res["icrc7:logo"] = c.logo
        if c.supply_cap is not None:
            res["icrc7:supply_cap"] = c.supply_cap
        return res
