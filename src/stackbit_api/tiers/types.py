from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Feature keys a tier may declare and a project may override.
FEATURE_SCHEMA: dict[str, type] = {
    "hpPreviews": bool,
    "containerMaxInactivityTimeInMinutes": int,
    "wysiwyg": bool,
    "collaborators": int,
    "environments": int,
    "diff": bool,
    "merge": bool,
    "abTesting": bool,
    "approval": bool,
    "pageGranularity": bool,
    "verifiedPublish": bool,
    "crossPageDep": bool,
    "undo": bool,
    "scheduledPublish": bool,
    "collaboratorRoles": bool,
    "developerTools": bool,
    "settingsConnectedServices": bool,
    "settingsAdvanced": bool,
    "supportAction": str,
    "hasViewerRole": bool,
    "viewersCollaborators": int,
}


class TierAttributes(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    is_free: bool = Field(default=False, alias="isFree")
    is_trial: bool = Field(default=False, alias="isTrial")
    downgrades_to: str | None = Field(default=None, alias="downgradesTo")
    trial_tier_of: str | None = Field(default=None, alias="trialTierOf")
    trial_days: int | None = Field(default=None, alias="trialDays")
    open_to_tier_ids: list[str] | None = Field(default=None, alias="openToTierIds")
    disqualifying_past_tier_ids: list[str] | None = Field(
        default=None, alias="disqualifyingPastTierIds"
    )


class CustomerTier(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    name: str
    attributes: TierAttributes = Field(default_factory=TierAttributes)
    features: dict[str, Any] = Field(default_factory=dict)
    upgrade_hook_scheme: str | None = Field(default=None, alias="upgradeHookScheme")
    stripe_product_id: str | None = Field(default=None, alias="stripeProductId")
    default_plan: str | None = Field(default=None, alias="defaultPlan")


class TrialTierRef(BaseModel):
    id: str
    name: str | None = None
    paid_tier_name: str | None = Field(default=None, alias="paidTierName")

    model_config = ConfigDict(populate_by_name=True)


class TierHook(BaseModel):
    trial_tiers: list[TrialTierRef] = Field(default_factory=list, alias="trialTiers")

    model_config = ConfigDict(populate_by_name=True)


class TrialEligibility(BaseModel):
    id: str
    paid_tier_id: str | None = Field(default=None, alias="paidTierId")
    eligible: bool

    model_config = ConfigDict(populate_by_name=True)
