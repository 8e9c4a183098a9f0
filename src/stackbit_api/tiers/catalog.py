"""Static customer tier catalog loaded from YAML."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from stackbit_api.errors import TierCatalogError
from stackbit_api.tiers.types import CustomerTier, TierAttributes

logger = logging.getLogger(__name__)

DEFAULT_TIER_ID = "developer"
DEFAULT_TIER_CATALOG_PATH = Path(__file__).with_name("default_tiers.yaml")


class TierCatalog:
    """Read-only lookup over the configured customer tiers.

    Iteration order is the declaration order of ``customerTiers`` in the
    source document; trial listings and sweeps depend on it.
    """

    def __init__(
        self,
        tiers: Mapping[str, CustomerTier],
        upgrade_hook_schemes: Mapping[str, Mapping[str, Any]] | None = None,
        transactional_messages: Mapping[str, Any] | None = None,
    ):
        self._tiers: dict[str, CustomerTier] = dict(tiers)
        self.upgrade_hook_schemes: dict[str, dict[str, Any]] = {
            name: dict(hooks) for name, hooks in (upgrade_hook_schemes or {}).items()
        }
        self.transactional_messages: dict[str, Any] = dict(transactional_messages or {})
        self._validate()

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TierCatalog":
        raw_tiers = payload.get("customerTiers") or {}
        tiers: dict[str, CustomerTier] = {}
        for tier_id, raw in raw_tiers.items():
            try:
                tiers[str(tier_id)] = CustomerTier.model_validate(
                    {**(raw or {}), "id": str(tier_id)}
                )
            except PydanticValidationError as exc:
                raise TierCatalogError(f"Invalid tier '{tier_id}': {exc}") from exc
        return cls(
            tiers,
            upgrade_hook_schemes=payload.get("upgradeHookSchemes") or {},
            transactional_messages=payload.get("transactionalMessages") or {},
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "TierCatalog":
        try:
            with path.open("r", encoding="utf-8") as handle:
                payload = yaml.safe_load(handle) or {}
        except FileNotFoundError as exc:
            raise TierCatalogError(f"Tier catalog not found at {path}") from exc
        return cls.from_dict(payload)

    def _validate(self) -> None:
        for tier in self._tiers.values():
            attrs = tier.attributes
            if attrs.trial_tier_of is not None:
                paid = self._tiers.get(attrs.trial_tier_of)
                if paid is None or paid.attributes.is_trial:
                    raise TierCatalogError(
                        f"Trial tier '{tier.id}' must convert to an existing "
                        f"non-trial tier, got '{attrs.trial_tier_of}'"
                    )
            if attrs.downgrades_to is not None and attrs.downgrades_to not in self._tiers:
                raise TierCatalogError(
                    f"Tier '{tier.id}' downgrades to unknown tier '{attrs.downgrades_to}'"
                )
        for scheme, hooks in self.upgrade_hook_schemes.items():
            for hook_name, settings in hooks.items():
                for trial in (settings or {}).get("trialTiers") or []:
                    if trial.get("id") not in self._tiers:
                        raise TierCatalogError(
                            f"Upgrade hook '{scheme}.{hook_name}' references "
                            f"unknown tier '{trial.get('id')}'"
                        )

    def __contains__(self, tier_id: object) -> bool:
        return tier_id in self._tiers

    def __len__(self) -> int:
        return len(self._tiers)

    def iter_tiers(self) -> Iterator[CustomerTier]:
        return iter(self._tiers.values())

    def get_by_id(self, tier_id: Optional[str]) -> CustomerTier | None:
        if tier_id is None:
            return None
        return self._tiers.get(tier_id)

    def get_tier_by_product_id(self, product_id: str) -> CustomerTier | None:
        for tier in self._tiers.values():
            if tier.stripe_product_id == product_id:
                return tier
        return None

    def get_tier_name(self, tier_id: Optional[str]) -> str | None:
        tier = self.get_by_id(tier_id)
        return tier.name if tier else None

    def get_tier_attributes(self, tier_id: Optional[str]) -> TierAttributes | None:
        tier = self.get_by_id(tier_id)
        return tier.attributes if tier else None

    def is_free_tier(self, tier_id: Optional[str]) -> bool:
        attrs = self.get_tier_attributes(tier_id)
        return attrs.is_free if attrs else False

    def is_trial_tier(self, tier_id: Optional[str]) -> bool:
        attrs = self.get_tier_attributes(tier_id)
        return attrs.is_trial if attrs else False

    def is_downgradable_tier(self, tier_id: Optional[str]) -> bool:
        attrs = self.get_tier_attributes(tier_id)
        return bool(attrs and attrs.downgrades_to)

    def get_paid_tier_id_of_trial(self, tier_id: Optional[str]) -> str | None:
        attrs = self.get_tier_attributes(tier_id)
        if attrs and attrs.is_trial:
            return attrs.trial_tier_of
        return None

    def get_paid_tier_of_trial(self, tier_id: Optional[str]) -> CustomerTier | None:
        return self.get_by_id(self.get_paid_tier_id_of_trial(tier_id))

    def get_paid_tier_name_of_trial(self, tier_id: Optional[str]) -> str | None:
        paid = self.get_paid_tier_of_trial(tier_id)
        return paid.name if paid else None

    def list_tiers_for_auto_downgrade(self) -> list[str]:
        return [t.id for t in self._tiers.values() if self.is_downgradable_tier(t.id)]

    def list_downgradable_paid_tiers(self) -> list[str]:
        return [
            t.id
            for t in self._tiers.values()
            if self.is_downgradable_tier(t.id)
            and not t.attributes.is_free
            and not t.attributes.is_trial
        ]

    def list_trial_tiers(self) -> list[CustomerTier]:
        return [t for t in self._tiers.values() if t.attributes.is_trial]

    def get_default_tier_id_for_user(self, user: Any) -> str:
        features = getattr(user, "features", None) or {}
        return features.get("defaultCustomerTier") or DEFAULT_TIER_ID

    def get_default_tier_for_user(self, user: Any) -> CustomerTier | None:
        return self.get_by_id(self.get_default_tier_id_for_user(user))

    def get_plans_message_id(self, tier_id: str, event: str) -> int | None:
        plans = self.transactional_messages.get("plans") or {}
        return (plans.get(tier_id) or {}).get(event)

    def get_message_id(self, name: str) -> int | None:
        value = self.transactional_messages.get(name)
        return value if isinstance(value, int) else None


def _catalog_path() -> Path:
    raw_path = os.getenv("TIER_CATALOG_PATH")
    return Path(raw_path) if raw_path else DEFAULT_TIER_CATALOG_PATH


@lru_cache(maxsize=1)
def get_tier_catalog() -> TierCatalog:
    path = _catalog_path()
    catalog = TierCatalog.from_yaml(path)
    logger.info("Loaded %d customer tiers from %s", len(catalog), path)
    return catalog


def reset_tier_catalog() -> None:
    get_tier_catalog.cache_clear()
