from stackbit_api.tiers.catalog import (
    DEFAULT_TIER_ID,
    TierCatalog,
    get_tier_catalog,
    reset_tier_catalog,
)
from stackbit_api.tiers.features import (
    is_eligible_for_trial,
    list_trials_with_eligibility,
    resolve_features,
    resolve_tier_hooks,
)
from stackbit_api.tiers.types import FEATURE_SCHEMA, CustomerTier, TierAttributes

__all__ = [
    "CustomerTier",
    "DEFAULT_TIER_ID",
    "FEATURE_SCHEMA",
    "TierAttributes",
    "TierCatalog",
    "get_tier_catalog",
    "is_eligible_for_trial",
    "list_trials_with_eligibility",
    "reset_tier_catalog",
    "resolve_features",
    "resolve_tier_hooks",
]
