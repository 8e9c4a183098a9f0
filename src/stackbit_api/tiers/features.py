"""Feature resolution and trial eligibility over the tier catalog."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from stackbit_api.models.project import Subscription
from stackbit_api.tiers.catalog import TierCatalog, get_tier_catalog
from stackbit_api.tiers.types import FEATURE_SCHEMA, TierHook, TrialEligibility, TrialTierRef


def sanitize_overrides(overrides: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """Keep only schema keys that are actually present.

    A key missing from the mapping means "no override". A key present with
    ``None`` or ``False`` is an explicit override and is kept.
    """
    if not overrides:
        return {}
    return {key: overrides[key] for key in FEATURE_SCHEMA if key in overrides}


def resolve_features(
    tier_id: Optional[str],
    overrides: Optional[Mapping[str, Any]] = None,
    catalog: Optional[TierCatalog] = None,
) -> dict[str, Any] | None:
    """Effective features of ``tier_id`` with ``overrides`` applied.

    Later layers win: the paid tier behind a trial, then the tier's own
    features, then overrides. Returns ``None`` for an unknown tier.
    """
    catalog = catalog or get_tier_catalog()
    tier = catalog.get_by_id(tier_id)
    if tier is None:
        return None

    features: dict[str, Any] = {}
    paid_tier = catalog.get_paid_tier_of_trial(tier_id)
    if paid_tier is not None:
        features.update(paid_tier.features)
    features.update(tier.features)
    features.update(sanitize_overrides(overrides))
    return features


def resolve_tier_hooks(
    tier_id: Optional[str],
    catalog: Optional[TierCatalog] = None,
) -> dict[str, TierHook]:
    catalog = catalog or get_tier_catalog()
    tier = catalog.get_by_id(tier_id)
    paid_tier = catalog.get_paid_tier_of_trial(tier_id)

    scheme = None
    if paid_tier is not None:
        scheme = paid_tier.upgrade_hook_scheme
    if scheme is None and tier is not None:
        scheme = tier.upgrade_hook_scheme

    hooks = catalog.upgrade_hook_schemes.get(scheme) if scheme else None
    if not hooks:
        return {}

    resolved: dict[str, TierHook] = {}
    for name, settings in hooks.items():
        trial_tiers = [
            TrialTierRef(
                id=trial["id"],
                name=catalog.get_tier_name(trial["id"]),
                paid_tier_name=catalog.get_paid_tier_name_of_trial(trial["id"]),
            )
            for trial in (settings or {}).get("trialTiers") or []
        ]
        resolved[name] = TierHook(trial_tiers=trial_tiers)
    return resolved


def is_eligible_for_trial(
    trial_tier_id: str,
    subscription: Subscription,
    catalog: Optional[TierCatalog] = None,
) -> bool:
    catalog = catalog or get_tier_catalog()
    attributes = catalog.get_tier_attributes(trial_tier_id)
    if attributes is None:
        return False
    if subscription.tier_id == trial_tier_id:
        return True
    if subscription.tier_id not in (attributes.open_to_tier_ids or ()):
        return False
    if not attributes.disqualifying_past_tier_ids:
        return True
    return not any(
        tier_id in subscription.past_tier_ids
        for tier_id in attributes.disqualifying_past_tier_ids
    )


def list_trials_with_eligibility(
    subscription: Subscription,
    catalog: Optional[TierCatalog] = None,
) -> list[TrialEligibility]:
    catalog = catalog or get_tier_catalog()
    return [
        TrialEligibility(
            id=tier.id,
            paid_tier_id=catalog.get_paid_tier_id_of_trial(tier.id),
            eligible=is_eligible_for_trial(tier.id, subscription, catalog),
        )
        for tier in catalog.list_trial_tiers()
    ]
