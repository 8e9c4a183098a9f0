"""Values derived from a project's subscription.

None of these are stored; they are recomputed from the subscription and
the tier catalog on every read.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from stackbit_api.errors import UnknownTierError
from stackbit_api.models.project import Subscription
from stackbit_api.tiers.catalog import DEFAULT_TIER_ID, TierCatalog, get_tier_catalog
from stackbit_api.tiers.features import (
    list_trials_with_eligibility,
    resolve_features,
    resolve_tier_hooks,
)
from stackbit_api.tiers.types import TrialEligibility
from stackbit_api.utils.datetime import is_past


def safe_tier_id(subscription: Subscription) -> str:
    return subscription.tier_id or DEFAULT_TIER_ID


def tier_name(subscription: Subscription, catalog: Optional[TierCatalog] = None) -> str | None:
    return (catalog or get_tier_catalog()).get_tier_name(safe_tier_id(subscription))


def is_free(subscription: Subscription, catalog: Optional[TierCatalog] = None) -> bool:
    return (catalog or get_tier_catalog()).is_free_tier(safe_tier_id(subscription))


def is_trial(subscription: Subscription, catalog: Optional[TierCatalog] = None) -> bool:
    return (catalog or get_tier_catalog()).is_trial_tier(safe_tier_id(subscription))


def paid_tier_id(subscription: Subscription, catalog: Optional[TierCatalog] = None) -> str | None:
    catalog = catalog or get_tier_catalog()
    return catalog.get_paid_tier_id_of_trial(safe_tier_id(subscription))


def paid_tier_name(
    subscription: Subscription, catalog: Optional[TierCatalog] = None
) -> str | None:
    catalog = catalog or get_tier_catalog()
    return catalog.get_paid_tier_name_of_trial(safe_tier_id(subscription))


def available_features(
    subscription: Subscription, catalog: Optional[TierCatalog] = None
) -> dict[str, Any]:
    """Resolved features for the subscription's tier.

    Raises:
        UnknownTierError: the stored tier id is not in the catalog.
    """
    tier_id = safe_tier_id(subscription)
    features = resolve_features(tier_id, subscription.tier_overrides, catalog)
    if features is None:
        raise UnknownTierError(tier_id)
    return features


def eligible_for_trials(
    subscription: Subscription, catalog: Optional[TierCatalog] = None
) -> list[TrialEligibility]:
    return list_trials_with_eligibility(subscription, catalog)


def has_subscription(subscription: Subscription) -> bool:
    return bool(subscription.id)


def is_subscription_ended(
    subscription: Subscription,
    now: Optional[datetime] = None,
    catalog: Optional[TierCatalog] = None,
) -> bool:
    """Whether a trial or cancelled plan has run past its billing cycle.

    Active paid plans never count as ended here, even when the billing date
    has passed; those are reported by the out-of-sync check instead.
    """
    if is_free(subscription, catalog):
        return False
    if not is_trial(subscription, catalog) and not subscription.scheduled_for_cancellation:
        return False
    return is_past(subscription.end_of_billing_cycle, now)


def tier_summary(
    subscription: Subscription, catalog: Optional[TierCatalog] = None
) -> dict[str, Any]:
    tier_id = safe_tier_id(subscription)
    return {
        "id": tier_id,
        "name": tier_name(subscription, catalog),
        "isFree": is_free(subscription, catalog),
        "isTrial": is_trial(subscription, catalog),
        "paidTierId": paid_tier_id(subscription, catalog),
        "paidTierName": paid_tier_name(subscription, catalog),
        "features": resolve_features(tier_id, subscription.tier_overrides, catalog),
        "hooks": {
            name: hook.model_dump(by_alias=True)
            for name, hook in resolve_tier_hooks(tier_id, catalog).items()
        },
        "eligibleForTrials": [
            trial.model_dump(by_alias=True)
            for trial in eligible_for_trials(subscription, catalog)
        ],
    }
