"""Subscription state changes and the cascade that follows a tier change.

Every write is one atomic ``find_one_and_update`` on the project document.
The cascade re-reads the document after each write and derives the next
correction from that fresh copy, so interleaved cascades on the same
project converge: each step is idempotent.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Sequence

from stackbit_api.errors import (
    InvalidTrialTierError,
    NotFoundError,
    StackbitError,
    ValidationError,
)
from stackbit_api.models import roles
from stackbit_api.models.project import Collaborator, Project
from stackbit_api.models.users import User
from stackbit_api.services import analytics as events
from stackbit_api.services.analytics import AnalyticsSink
from stackbit_api.services.notifications import (
    PLANS_EMAIL_CANCELLED,
    PLANS_EMAIL_EXPIRED,
    PLANS_EMAIL_STARTED,
    EmailSender,
)
from stackbit_api.services.split_tests import NoopSplitTestCleaner, SplitTestCleaner
from stackbit_api.storage import ProjectStore, UserStore
from stackbit_api.tiers.catalog import TierCatalog, get_tier_catalog
from stackbit_api.tiers.features import resolve_features
from stackbit_api.tiers.subscription import is_subscription_ended, safe_tier_id
from stackbit_api.tiers.types import FEATURE_SCHEMA
from stackbit_api.utils.datetime import end_of_trial, is_past, local_now
from stackbit_api.utils.logging import sanitize_for_log

logger = logging.getLogger(__name__)

SUBSCRIPTION_FLAGS = ("trialExpiredRecently", "paidPlanExpiredRecently", "trialStartedRecently")

UNLICENSE_UPDATE = {"$set": {"collaborators.$[collaborator].role": roles.UNLICENSED.name}}


def excess_licensed_collaborator_ids(
    collaborators: Iterable[Collaborator], limit: int
) -> list[Any]:
    """Ids of editor-seat collaborators beyond the first ``limit``, in stored order."""
    licensed = [c for c in collaborators if roles.takes_licensed_seat(c.role)]
    return [c.id for c in licensed[max(limit, 0):]]


def excess_viewer_ids(collaborators: Iterable[Collaborator], limit: int) -> list[Any]:
    viewers = [c for c in collaborators if roles.is_viewer_seat_role(c.role)]
    return [c.id for c in viewers[max(limit, 0):]]


class EntitlementEngine:
    def __init__(
        self,
        projects: ProjectStore,
        users: UserStore,
        email: EmailSender,
        analytics: AnalyticsSink,
        split_tests: Optional[SplitTestCleaner] = None,
        catalog: Optional[TierCatalog] = None,
    ):
        self.projects = projects
        self.users = users
        self.email = email
        self.analytics = analytics
        self.split_tests = split_tests or NoopSplitTestCleaner()
        self.catalog = catalog or get_tier_catalog()

    # -- store helpers -------------------------------------------------

    async def get_project(self, project_id: Any) -> Project:
        doc = await self.projects.find_by_id(project_id)
        if doc is None:
            raise NotFoundError(f"Project '{project_id}' not found")
        return Project.from_document(doc)

    async def _update(
        self,
        project_id: Any,
        update: Mapping[str, Any],
        array_filters: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> Project:
        doc = await self.projects.find_one_and_update(
            {"_id": project_id}, update, array_filters
        )
        if doc is None:
            raise NotFoundError(f"Project '{project_id}' not found")
        return Project.from_document(doc)

    async def _unlicense(self, project: Project, collaborator_filter: Mapping[str, Any]) -> Project:
        doc = await self.projects.find_one_and_update(
            {"_id": project.id}, UNLICENSE_UPDATE, [collaborator_filter]
        )
        return Project.from_document(doc) if doc is not None else project

    async def _find_owner(self, project: Project) -> Optional[User]:
        if project.owner_id is None:
            return None
        user = await self.users.find_user_by_id(project.owner_id)
        if user is None:
            logger.warning("Owner %s of project %s not found", project.owner_id, project.id)
        return user

    # -- best-effort side effects ---------------------------------------

    async def _send_plans_email(
        self, project: Project, tier_id: str, event: str, user: Optional[User]
    ) -> None:
        try:
            await self.email.send_plans_email(project, tier_id, event, user)
        except Exception as exc:
            logger.warning(
                "Plans email %s for project %s failed: %s", event, project.id, exc
            )

    def _track(self, event: str, properties: dict[str, Any], user: Optional[User]) -> None:
        try:
            self.analytics.track(event, properties, user)
        except Exception as exc:
            logger.warning("Analytics event %s failed: %s", event, exc)

    def _track_cancellation(
        self, project: Project, tier_id: str, owner: Optional[User]
    ) -> None:
        props = {
            "projectId": str(project.id),
            "projectUrl": project.site_url,
            "userId": str(owner.id) if owner else None,
            "userEmail": owner.email if owner else None,
            "tierId": tier_id,
        }
        if self.catalog.is_trial_tier(tier_id):
            self._track(events.TRIAL_EXPIRED, props, owner)
        else:
            self._track(events.SUBSCRIPTION_CANCELED, props, owner)

    # -- cascade ---------------------------------------------------------

    async def limit_licensed_collaborators(self, project: Project, limit: int) -> Project:
        ids = excess_licensed_collaborator_ids(project.iter_collaborators(), limit)
        if not ids:
            return project
        logger.info("Unlicensing %d collaborators on project %s", len(ids), project.id)
        return await self._unlicense(project, {"collaborator._id": {"$in": ids}})

    async def limit_viewer_collaborators(self, project: Project, limit: int) -> Project:
        ids = excess_viewer_ids(project.iter_collaborators(), limit)
        if not ids:
            return project
        logger.info("Unlicensing %d viewers on project %s", len(ids), project.id)
        return await self._unlicense(project, {"collaborator._id": {"$in": ids}})

    async def unlicense_roles(self, project: Project, role_names: Sequence[str]) -> Project:
        return await self._unlicense(project, {"collaborator.role": {"$in": list(role_names)}})

    async def update_project_after_tier_change(
        self, project: Project, previous_tier_id: str
    ) -> Project:
        logger.info(
            "Project tier change, %s, from %s to %s",
            project.id,
            previous_tier_id,
            safe_tier_id(project.subscription),
        )

        project = await self._update(
            project.id, {"$addToSet": {"subscription.pastTierIds": previous_tier_id}}
        )

        overrides = project.subscription.tier_overrides
        previous_features = resolve_features(previous_tier_id, overrides, self.catalog) or {}
        current_features = resolve_features(
            safe_tier_id(project.subscription), overrides, self.catalog
        )
        if current_features is None:
            logger.warning(
                "Project %s is on unknown tier %s", project.id, project.subscription.tier_id
            )
            current_features = {}

        if not current_features.get("collaboratorRoles") and previous_features.get(
            "collaboratorRoles"
        ):
            project = await self.unlicense_roles(project, sorted(roles.ROLE_GATED_SEAT_ROLES))

        if not current_features.get("hasViewerRole") and previous_features.get("hasViewerRole"):
            project = await self.unlicense_roles(project, sorted(roles.VIEWER_SEAT_ROLES))

        project = await self.limit_licensed_collaborators(
            project, current_features.get("collaborators") or 0
        )
        project = await self.limit_viewer_collaborators(
            project, current_features.get("viewersCollaborators") or 0
        )

        user = await self._find_owner(project)

        if not current_features.get("abTesting") and project.has_active_split_test():
            project = await self.split_tests.cleanup_split_test(project, user)

        tier_id = project.subscription.tier_id
        if tier_id and tier_id != previous_tier_id:
            await self._send_plans_email(project, tier_id, PLANS_EMAIL_STARTED, user)
            new_tier = safe_tier_id(project.subscription)
            if not self.catalog.is_free_tier(new_tier) and not self.catalog.is_trial_tier(
                new_tier
            ):
                self._track(
                    events.SUBSCRIPTION_PURCHASED,
                    {
                        "projectId": str(project.id),
                        "userId": str(user.id) if user else None,
                        "userEmail": user.email if user else None,
                        "tierId": tier_id,
                        "projectUrl": project.site_url,
                    },
                    user,
                )

        return project

    # -- transitions -----------------------------------------------------

    async def cancel_subscription(
        self, project_id: Any, *, immediate: bool = False, skip_email: bool = False
    ) -> Project:
        if not immediate:
            project = await self._update(
                project_id, {"$set": {"subscription.scheduledForCancellation": True}}
            )
            owner = await self._find_owner(project)
            tier_id = safe_tier_id(project.subscription)
            self._track_cancellation(project, tier_id, owner)
            if not skip_email:
                await self._send_plans_email(project, tier_id, PLANS_EMAIL_CANCELLED, owner)
            return project

        project = await self.get_project(project_id)
        previous_tier_id = safe_tier_id(project.subscription)
        attributes = self.catalog.get_tier_attributes(previous_tier_id)
        owner = await self._find_owner(project)

        target_tier_id = attributes.downgrades_to if attributes else None
        if target_tier_id is None and owner is not None:
            target_tier_id = self.catalog.get_default_tier_id_for_user(owner)
        if not target_tier_id:
            logger.info("No downgrade target for project %s on %s", project.id, previous_tier_id)
            return project

        was_free = attributes.is_free if attributes else False
        was_trial = attributes.is_trial if attributes else False
        fields: dict[str, Any] = {"subscription.tierId": target_tier_id}
        if was_trial:
            fields["subscription.trialExpiredRecently"] = previous_tier_id
        if not was_free and not was_trial:
            fields["subscription.paidPlanExpiredRecently"] = previous_tier_id

        project = await self._update(
            project.id,
            {
                "$set": fields,
                "$unset": {
                    "subscription.id": "",
                    "subscription.trialStartedRecently": "",
                    "subscription.scheduledForCancellation": "",
                },
            },
        )
        self._track_cancellation(project, previous_tier_id, owner)
        return await self.update_project_after_tier_change(project, previous_tier_id)

    async def start_subscription(
        self, project_id: Any, *, subscription_id: str, tier_id: str
    ) -> Project:
        project = await self.get_project(project_id)
        previous_tier_id = safe_tier_id(project.subscription)
        project = await self._update(
            project.id,
            {
                "$set": {
                    "subscription.scheduledForCancellation": False,
                    "subscription.id": subscription_id,
                    "subscription.tierId": tier_id,
                }
            },
        )
        return await self.update_project_after_tier_change(project, previous_tier_id)

    async def update_subscription(
        self,
        project_id: Any,
        *,
        end_of_billing_cycle: Optional[datetime] = None,
        scheduled_for_cancellation: Optional[bool] = None,
        subscription_id: Optional[str] = None,
        tier_id: Optional[str] = None,
    ) -> Project:
        project = await self.get_project(project_id)
        stored_tier_id = project.subscription.tier_id
        previous_tier_id = safe_tier_id(project.subscription)

        fields: dict[str, Any] = {}
        if end_of_billing_cycle:
            fields["subscription.endOfBillingCycle"] = end_of_billing_cycle
        if isinstance(scheduled_for_cancellation, bool):
            fields["subscription.scheduledForCancellation"] = scheduled_for_cancellation
        if subscription_id:
            fields["subscription.id"] = subscription_id
        if tier_id:
            fields["subscription.tierId"] = tier_id
        if not fields:
            return project

        project = await self._update(project.id, {"$set": fields})
        if project.subscription.tier_id != stored_tier_id:
            project = await self.update_project_after_tier_change(project, previous_tier_id)
        return project

    async def start_trial(
        self,
        project_id: Any,
        tier_id: str,
        *,
        set_trial_started_recently: bool = False,
        now: Optional[datetime] = None,
    ) -> Project:
        attributes = self.catalog.get_tier_attributes(tier_id)
        if (
            attributes is None
            or not attributes.is_trial
            or not isinstance(attributes.trial_days, int)
        ):
            raise InvalidTrialTierError(tier_id)

        project = await self.get_project(project_id)
        previous_tier_id = safe_tier_id(project.subscription)

        fields: dict[str, Any] = {
            "subscription.scheduledForCancellation": False,
            "subscription.tierId": tier_id,
            "subscription.endOfBillingCycle": end_of_trial(
                now or local_now(), attributes.trial_days
            ),
        }
        if set_trial_started_recently:
            fields["subscription.trialStartedRecently"] = tier_id

        project = await self._update(
            project.id,
            {
                "$set": fields,
                "$unset": {
                    "subscription.trialExpiredRecently": "",
                    "subscription.paidPlanExpiredRecently": "",
                },
            },
        )
        return await self.update_project_after_tier_change(project, previous_tier_id)

    async def downgrade_plan_if_needed(
        self, project: Project, now: Optional[datetime] = None
    ) -> Project:
        previous_tier_id = project.subscription.tier_id
        if not previous_tier_id:
            return project
        if not is_subscription_ended(project.subscription, now, self.catalog):
            return project
        if not self.catalog.is_downgradable_tier(previous_tier_id):
            return project

        project = await self.cancel_subscription(project.id, immediate=True)
        owner = await self._find_owner(project)
        await self._send_plans_email(project, previous_tier_id, PLANS_EMAIL_EXPIRED, owner)
        if self.catalog.is_trial_tier(previous_tier_id) and owner is not None:
            self._track(
                events.TRIAL_EXPIRED,
                {"projectId": str(project.id), "tierId": previous_tier_id},
                owner,
            )
        return project

    async def auto_downgrade_expired_projects(
        self, now: Optional[datetime] = None
    ) -> dict[str, Any]:
        tier_ids = self.catalog.list_tiers_for_auto_downgrade()
        docs = await self.projects.find({"subscription.tierId": {"$in": tier_ids}})

        downgraded: list[str] = []
        failed: list[str] = []
        for doc in docs:
            project = Project.from_document(doc)
            try:
                result = await self.downgrade_plan_if_needed(project, now)
            except StackbitError:
                logger.exception("Auto-downgrade failed for project %s", project.id)
                failed.append(str(project.id))
                continue
            if result.subscription.tier_id != project.subscription.tier_id:
                downgraded.append(str(project.id))

        logger.info(
            "Auto-downgrade checked %d projects, downgraded %d", len(docs), len(downgraded)
        )
        return {"checked": len(docs), "downgraded": downgraded, "failed": failed}

    async def detect_out_of_sync_paid_projects(
        self, now: Optional[datetime] = None
    ) -> list[str]:
        tier_ids = self.catalog.list_downgradable_paid_tiers()
        docs = await self.projects.find({"subscription.tierId": {"$in": tier_ids}})

        out_of_sync: list[str] = []
        for doc in docs:
            project = Project.from_document(doc)
            subscription = project.subscription
            if subscription.scheduled_for_cancellation:
                continue
            if is_past(subscription.end_of_billing_cycle, now):
                out_of_sync.append(str(project.id))

        if out_of_sync:
            logger.info("Out of Sync Projects: %s", ", ".join(out_of_sync))
            try:
                self.analytics.anonymous_track(
                    events.DAILY_OUT_OF_SYNC_PROJECTS, {"projectIds": ", ".join(out_of_sync)}
                )
            except Exception as exc:
                logger.warning("Out of sync report failed: %s", exc)
        return out_of_sync

    async def unset_subscription_flag(self, project_id: Any, flag: str) -> Project:
        if flag not in SUBSCRIPTION_FLAGS:
            raise ValidationError(f"Unknown subscription flag: {sanitize_for_log(flag)}")
        return await self._update(project_id, {"$unset": {f"subscription.{flag}": ""}})

    async def set_tier_overrides(
        self, project_id: Any, overrides: Mapping[str, Any]
    ) -> Project:
        unknown = sorted(set(overrides) - set(FEATURE_SCHEMA))
        if unknown:
            raise ValidationError(f"Unknown tier features: {', '.join(unknown)}")
        if not overrides:
            return await self.get_project(project_id)
        return await self._update(
            project_id,
            {"$set": {f"subscription.tierOverrides.{k}": v for k, v in overrides.items()}},
        )

    async def project_tiers_for_user(self, user_id: Any) -> list[str]:
        return await self.projects.distinct(
            "subscription.tierId",
            {
                "$or": [
                    {"ownerId": user_id},
                    {"collaborators": {"$elemMatch": {"userId": user_id}}},
                ]
            },
        )
