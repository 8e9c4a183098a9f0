"""In-memory views over project documents.

Projects are stored as documents; these dataclasses are read-only snapshots
built with ``from_document``. Derived subscription values live in
:mod:`stackbit_api.tiers.subscription` as plain functions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

from stackbit_api.models.roles import CollaboratorRole, resolve_role

COLLABORATOR_STATUS_COLLABORATOR = "collaborator"
COLLABORATOR_STATUS_INVITATION_SENT = "invitation-sent"

SPLIT_TEST_PROVISIONED = "provisioned"


@dataclass(frozen=True)
class CollaboratorNotification:
    type: str
    last_sent_at: datetime | None = None
    subscribed: bool | None = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "CollaboratorNotification":
        return cls(
            type=doc.get("type", ""),
            last_sent_at=doc.get("lastSentAt"),
            subscribed=doc.get("subscribed"),
        )

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {"type": self.type, "lastSentAt": self.last_sent_at}
        if self.subscribed is not None:
            doc["subscribed"] = self.subscribed
        return doc


@dataclass(frozen=True)
class Collaborator:
    id: Any
    user_id: Any = None
    invite_token: str | None = None
    invite_email: str | None = None
    role: str | None = None
    notifications: tuple[CollaboratorNotification, ...] = ()

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Collaborator":
        return cls(
            id=doc.get("_id"),
            user_id=doc.get("userId"),
            invite_token=doc.get("inviteToken"),
            invite_email=doc.get("inviteEmail"),
            role=doc.get("role"),
            notifications=tuple(
                CollaboratorNotification.from_document(n)
                for n in doc.get("notifications") or []
            ),
        )

    @property
    def status(self) -> str:
        if self.user_id:
            return COLLABORATOR_STATUS_COLLABORATOR
        return COLLABORATOR_STATUS_INVITATION_SENT

    @property
    def role_or_default(self) -> CollaboratorRole:
        return resolve_role(self.role)

    def is_user(self, user_id: Any) -> bool:
        return self.user_id is not None and str(self.user_id) == str(user_id)


@dataclass(frozen=True)
class Subscription:
    tier_id: str | None = None
    tier_overrides: Mapping[str, Any] = field(default_factory=dict)
    past_tier_ids: tuple[str, ...] = ()
    end_of_billing_cycle: datetime | None = None
    scheduled_for_cancellation: bool = False
    trial_expired_recently: str | None = None
    paid_plan_expired_recently: str | None = None
    trial_started_recently: str | None = None
    id: str | None = None

    @classmethod
    def from_document(cls, doc: Optional[Mapping[str, Any]]) -> "Subscription":
        doc = doc or {}
        return cls(
            tier_id=doc.get("tierId"),
            tier_overrides=dict(doc.get("tierOverrides") or {}),
            past_tier_ids=tuple(doc.get("pastTierIds") or ()),
            end_of_billing_cycle=doc.get("endOfBillingCycle"),
            scheduled_for_cancellation=bool(doc.get("scheduledForCancellation")),
            trial_expired_recently=doc.get("trialExpiredRecently"),
            paid_plan_expired_recently=doc.get("paidPlanExpiredRecently"),
            trial_started_recently=doc.get("trialStartedRecently"),
            id=doc.get("id"),
        )


@dataclass(frozen=True)
class Project:
    id: Any
    name: str | None = None
    owner_id: Any = None
    site_url: str | None = None
    cms: Mapping[str, Any] = field(default_factory=dict)
    environments: Mapping[str, Any] | None = None
    split_tests: tuple[Mapping[str, Any], ...] = ()
    collaborators: tuple[Collaborator, ...] | None = ()
    subscription: Subscription = field(default_factory=Subscription)

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Project":
        raw_collaborators = doc.get("collaborators")
        return cls(
            id=doc.get("_id"),
            name=doc.get("name"),
            owner_id=doc.get("ownerId"),
            site_url=doc.get("siteUrl"),
            cms=dict((doc.get("wizard") or {}).get("cms") or {}),
            environments=doc.get("environments"),
            split_tests=tuple(doc.get("splitTests") or ()),
            collaborators=(
                None
                if raw_collaborators is None
                else tuple(Collaborator.from_document(c) for c in raw_collaborators)
            ),
            subscription=Subscription.from_document(doc.get("subscription")),
        )

    def is_owner(self, user_id: Any) -> bool:
        return self.owner_id is not None and str(self.owner_id) == str(user_id)

    def iter_collaborators(self) -> tuple[Collaborator, ...]:
        return self.collaborators or ()

    def get_collaborator_by_id(self, collaborator_id: Any) -> Collaborator | None:
        for collaborator in self.iter_collaborators():
            if str(collaborator.id) == str(collaborator_id):
                return collaborator
        return None

    def get_collaborator_by_user_id(self, user_id: Any) -> Collaborator | None:
        for collaborator in self.iter_collaborators():
            if collaborator.is_user(user_id):
                return collaborator
        return None

    def get_collaborator_by_token(self, token: str) -> Collaborator | None:
        for collaborator in self.iter_collaborators():
            if collaborator.invite_token and collaborator.invite_token == token:
                return collaborator
        return None

    def has_active_split_test(self) -> bool:
        return bool(self.split_tests) and (
            self.split_tests[0].get("status") == SPLIT_TEST_PROVISIONED
        )

    def get_split_test_by_environment_name(
        self, environment_name: str
    ) -> Mapping[str, Any] | None:
        # Only single-variant tests whose variant list is exactly this environment.
        target = [{"environment": environment_name}]
        for split_test in self.split_tests:
            if list(split_test.get("variants") or []) == target:
                return split_test
        return None

    def summary(self, owner_email: str | None = None) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "cmsId": self.cms.get("id"),
            "cmsTitle": self.cms.get("title"),
            "ownerEmail": owner_email,
            "siteUrl": self.site_url,
        }
