"""Project access for owners, collaborators and system admins.

Covers role resolution, the tier seat checks that gate role assignment, and
the invite lifecycle: an invite record holds a token and an email until a
user consumes the token, at which point the record is linked to that user
and the token is cleared in the same conditional update.
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from bson import ObjectId
from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from stackbit_api.config import get_client_origin
from stackbit_api.errors import (
    AlreadyCollaboratorError,
    CollaboratorDoesNotExistError,
    CollaboratorIsOwnerError,
    CollaboratorTokenInvalidError,
    NotFoundError,
    TierExceededError,
    UnauthorizedError,
    ValidationError,
)
from stackbit_api.models import roles
from stackbit_api.models.project import (
    COLLABORATOR_STATUS_INVITATION_SENT,
    Collaborator,
    CollaboratorNotification,
    Project,
)
from stackbit_api.models.roles import CollaboratorRole, Permission
from stackbit_api.models.users import User
from stackbit_api.services import analytics as events
from stackbit_api.services.analytics import AnalyticsSink
from stackbit_api.services.notifications import EmailSender
from stackbit_api.storage import ProjectStore, UserStore
from stackbit_api.tiers.catalog import TierCatalog, get_tier_catalog
from stackbit_api.tiers.features import resolve_features, resolve_tier_hooks
from stackbit_api.tiers.subscription import safe_tier_id
from stackbit_api.utils.collections import upsert_by_key
from stackbit_api.utils.datetime import utc_now
from stackbit_api.utils.logging import mask_token, sanitize_for_log

logger = logging.getLogger(__name__)

_email_adapter = TypeAdapter(EmailStr)


def is_valid_email(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        _email_adapter.validate_python(value)
    except PydanticValidationError:
        return False
    return True


def _count(collaborators: Optional[list[Collaborator]], required_amount: int) -> int:
    # A present list is counted as is; ``required_amount`` only applies when
    # the project has no collaborator list at all.
    if collaborators is None:
        return 0 + required_amount
    return len(collaborators)


def _number(features: Mapping[str, Any], key: str) -> float:
    if key not in features:
        return math.nan
    value = features[key]
    if value is None:
        return 0
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def check_tier_allowance_for_feature(
    project: Project,
    feature_name: str,
    *,
    required_amount: int = 1,
    role: Optional[str] = "",
    catalog: Optional[TierCatalog] = None,
) -> bool:
    """Whether the project's tier allows one more use of ``feature_name``.

    ``collaborators`` is checked per seat category of ``role``;
    ``environments`` against the configured count; anything else is the
    truthiness of the feature flag.
    """
    features = resolve_features(
        safe_tier_id(project.subscription), project.subscription.tier_overrides, catalog
    )
    if features is None:
        return False

    if feature_name == "collaborators":
        existing = (
            None
            if project.collaborators is None
            else [c for c in project.collaborators if not roles.is_unlicensed(c.role)]
        )
        viewers = (
            None
            if existing is None
            else [c for c in existing if roles.is_viewer_seat_role(c.role)]
        )
        editors = (
            None
            if existing is None
            else [c for c in existing if roles.is_editor_seat_role(c.role)]
        )
        viewers_count = _count(viewers, required_amount)
        editors_count = _count(editors, required_amount)
        available = _number(features, "collaborators")

        if role == roles.VIEWER.name:
            return viewers_count <= (features.get("viewersCollaborators") or 0)
        if role in roles.ROLE_GATED_SEAT_ROLES:
            if not features.get("collaboratorRoles"):
                return False
            return editors_count <= available
        if role == roles.ADMIN.name:
            return editors_count <= available
        return False

    if feature_name == "environments":
        required = len(project.environments or {})
        return required < (features.get("environments") or 0)

    return bool(features.get(feature_name))


class CollaboratorAccessController:
    def __init__(
        self,
        projects: ProjectStore,
        users: UserStore,
        email: Optional[EmailSender] = None,
        analytics: Optional[AnalyticsSink] = None,
        catalog: Optional[TierCatalog] = None,
        client_origin: Optional[str] = None,
    ):
        self.projects = projects
        self.users = users
        self.email = email
        self.analytics = analytics
        self.catalog = catalog or get_tier_catalog()
        self.client_origin = client_origin or get_client_origin()

    # -- role resolution -------------------------------------------------

    def get_collaborator_role(self, project: Project, user: User) -> CollaboratorRole:
        if project.is_owner(user.id):
            return roles.OWNER
        collaborator = project.get_collaborator_by_user_id(user.id)
        if collaborator is not None:
            return collaborator.role_or_default
        if user.is_support_admin:
            return roles.STACKBIT_SUPPORT_ADMIN
        if user.is_admin:
            return roles.STACKBIT_ADMIN
        return roles.NONE

    async def find_project_by_id_and_user_roles(
        self,
        project_id: Any,
        user: User,
        allowed_roles: Iterable[CollaboratorRole],
    ) -> Project | None:
        allowed_roles = list(allowed_roles)

        # System admins see every project, with or without a collaborator record.
        if roles.STACKBIT_ADMIN in allowed_roles and user.is_admin:
            return await self._find_one({"_id": project_id})
        if (
            roles.STACKBIT_SUPPORT_ADMIN in allowed_roles
            and "support_admin" in user.roles
        ):
            return await self._find_one({"_id": project_id})

        clauses: list[dict[str, Any]] = []
        for role in allowed_roles:
            if role is roles.OWNER:
                clauses.append({"ownerId": user.id})
                continue
            if role.is_default_collaborator_role():
                clauses.append(
                    {
                        "collaborators": {
                            "$elemMatch": {"userId": user.id, "role": {"$exists": False}}
                        }
                    }
                )
            clauses.append(
                {"collaborators": {"$elemMatch": {"userId": user.id, "role": role.name}}}
            )

        if not clauses:
            return None
        return await self._find_one({"_id": project_id, "$or": clauses})

    async def find_project_by_id_and_user(
        self, project_id: Any, user: User, permission: Permission
    ) -> Project | None:
        return await self.find_project_by_id_and_user_roles(
            project_id, user, roles.list_by_permission(permission)
        )

    async def find_project_by_id_and_collaborator_token(
        self, project_id: Any, token: str
    ) -> Project | None:
        return await self._find_one(
            {"_id": project_id, "collaborators": {"$elemMatch": {"inviteToken": token}}}
        )

    async def _find_one(self, query: Mapping[str, Any]) -> Project | None:
        doc = await self.projects.find_one(query)
        return Project.from_document(doc) if doc is not None else None

    async def _require_project(
        self, project_id: Any, user: User, permission: Permission
    ) -> Project:
        project = await self.find_project_by_id_and_user(project_id, user, permission)
        if project is None:
            raise NotFoundError(f"Project '{project_id}' not found")
        return project

    # -- seat checks -----------------------------------------------------

    def check_tier_allowance_for_feature(
        self,
        project: Project,
        feature_name: str,
        *,
        required_amount: int = 1,
        role: Optional[str] = "",
    ) -> bool:
        return check_tier_allowance_for_feature(
            project,
            feature_name,
            required_amount=required_amount,
            role=role,
            catalog=self.catalog,
        )

    def require_tier_allowance(
        self,
        project: Project,
        feature_name: str,
        *,
        required_amount: int = 1,
        role: Optional[str] = "",
    ) -> None:
        if self.check_tier_allowance_for_feature(
            project, feature_name, required_amount=required_amount, role=role
        ):
            return
        hooks = resolve_tier_hooks(safe_tier_id(project.subscription), self.catalog)
        raise TierExceededError(
            feature_name,
            role or None,
            hooks={name: hook.model_dump(by_alias=True) for name, hook in hooks.items()},
        )

    # -- store mutations -------------------------------------------------

    async def _update(
        self, query: Mapping[str, Any], update: Mapping[str, Any]
    ) -> Project:
        doc = await self.projects.find_one_and_update(query, update)
        if doc is None:
            raise NotFoundError(f"Project '{query.get('_id')}' not found")
        return Project.from_document(doc)

    async def add_invited_collaborator(
        self,
        project: Project,
        acting_user: User,
        *,
        invite_token: str,
        invite_email: str,
        role: Optional[str] = None,
    ) -> Project:
        if not invite_token or not invite_email:
            raise ValidationError("No data to create collaborator")
        if not project.is_owner(acting_user.id) and (
            project.get_collaborator_by_user_id(acting_user.id) is None
        ):
            raise UnauthorizedError(
                "User does not own project", code="user_does_not_own_project"
            )

        record: dict[str, Any] = {
            "_id": ObjectId(),
            "inviteToken": invite_token,
            "inviteEmail": invite_email,
        }
        if role:
            record["role"] = role
        doc = await self.projects.find_one_and_update(
            {"_id": project.id, "collaborators.inviteToken": {"$ne": invite_token}},
            {"$push": {"collaborators": record}},
        )
        if doc is None:
            # Retried invite: the token is already recorded.
            doc = await self.projects.find_by_id(project.id)
            if doc is None:
                raise NotFoundError(f"Project '{project.id}' not found")
            logger.info(
                "Invite token %s already recorded on project %s",
                mask_token(invite_token),
                project.id,
            )
        return Project.from_document(doc)

    async def update_collaborator_by_token_and_user_id(
        self, project: Project, invite_token: str, user_id: Any
    ) -> Project:
        if not invite_token or not user_id:
            raise ValidationError("Invite token and user id are required")
        if project.get_collaborator_by_token(invite_token) is None:
            raise CollaboratorTokenInvalidError()
        if project.get_collaborator_by_user_id(user_id) is not None:
            raise AlreadyCollaboratorError(str(user_id))

        doc = await self.projects.find_one_and_update(
            {
                "_id": project.id,
                "collaborators": {"$elemMatch": {"inviteToken": invite_token}},
            },
            {
                "$set": {
                    "collaborators.$.userId": user_id,
                    "collaborators.$.inviteEmail": None,
                    "collaborators.$.inviteToken": None,
                }
            },
        )
        if doc is None:
            # Consumed concurrently between the read and this update.
            raise CollaboratorTokenInvalidError()
        return Project.from_document(doc)

    async def remove_collaborator_by_id(
        self, project: Project, collaborator_id: Any
    ) -> Project:
        collaborator = project.get_collaborator_by_id(collaborator_id)
        if collaborator is None:
            raise CollaboratorDoesNotExistError(str(collaborator_id))
        return await self._update(
            {"_id": project.id},
            {"$pull": {"collaborators": {"_id": collaborator.id}}},
        )

    async def update_collaborator_by_id(
        self, project: Project, collaborator_id: Any, update: Mapping[str, Any]
    ) -> Project:
        collaborator = project.get_collaborator_by_id(collaborator_id)
        if collaborator is None:
            raise CollaboratorDoesNotExistError(str(collaborator_id))
        return await self._update(
            {
                "_id": project.id,
                "collaborators": {"$elemMatch": {"_id": collaborator.id}},
            },
            {"$set": {f"collaborators.$.{key}": value for key, value in update.items()}},
        )

    async def set_collaborator_notification_sent(
        self,
        project: Project,
        user_id: Any,
        notification_type: str,
        now: Optional[datetime] = None,
    ) -> Project:
        collaborator = project.get_collaborator_by_user_id(user_id)
        if collaborator is None:
            raise CollaboratorDoesNotExistError(str(user_id))

        existing = {n.type: n for n in collaborator.notifications}.get(notification_type)
        sent = CollaboratorNotification(
            type=notification_type,
            last_sent_at=now or utc_now(),
            subscribed=existing.subscribed if existing else None,
        )
        notifications = upsert_by_key(collaborator.notifications, sent, key=lambda n: n.type)
        return await self._update(
            {
                "_id": project.id,
                "collaborators": {"$elemMatch": {"_id": collaborator.id}},
            },
            {
                "$set": {
                    "collaborators.$.notifications": [n.to_document() for n in notifications]
                }
            },
        )

    # -- reads for the HTTP layer ---------------------------------------

    async def list_users_by_permission(
        self, project: Project, permission: Permission
    ) -> list[User]:
        role_names = {role.name for role in roles.list_by_permission(permission)}
        user_ids = [
            c.user_id
            for c in project.iter_collaborators()
            if c.role in role_names and c.user_id is not None
        ]
        if roles.OWNER.name in role_names and project.owner_id is not None:
            user_ids.append(project.owner_id)
        return await self.users.find_users_by_id(user_ids)

    async def list_collaborators(self, project_id: Any, user: User) -> list[dict[str, Any]]:
        project = await self._require_project(project_id, user, Permission.BASIC_ACCESS)

        user_ids = [c.user_id for c in project.iter_collaborators() if c.user_id is not None]
        emails = {str(u.id): u.email for u in await self.users.find_users_by_id(user_ids)}

        result: list[dict[str, Any]] = []
        if project.owner_id is not None:
            owner = await self.users.find_user_by_id(project.owner_id)
            result.append(
                {
                    "id": str(owner.id) if owner else None,
                    "userId": str(owner.id) if owner else None,
                    "email": owner.email if owner else None,
                    "role": roles.OWNER.name,
                }
            )

        for collaborator in project.iter_collaborators():
            if collaborator.user_id is not None and project.is_owner(collaborator.user_id):
                display_role = roles.OWNER.name
            elif collaborator.status == COLLABORATOR_STATUS_INVITATION_SENT:
                display_role = roles.INVITED.name
            else:
                display_role = collaborator.role_or_default.name
            entry: dict[str, Any] = {
                "id": str(collaborator.id),
                "userId": str(collaborator.user_id) if collaborator.user_id else "",
                "email": (
                    emails.get(str(collaborator.user_id), "")
                    if collaborator.user_id
                    else collaborator.invite_email
                ),
                "role": display_role,
            }
            if display_role == roles.INVITED.name:
                entry["invitationRole"] = collaborator.role_or_default.name
            result.append(entry)
        return result

    async def check_collaborator_token(self, project_id: Any, token: str) -> Project:
        if not token:
            raise ValidationError("Invite token not provided")
        project = await self.find_project_by_id_and_collaborator_token(project_id, token)
        if project is None:
            raise CollaboratorTokenInvalidError()
        return project

    # -- request-level flows --------------------------------------------

    def _track(self, event: str, properties: dict[str, Any], user: Optional[User]) -> None:
        if self.analytics is None:
            return
        try:
            self.analytics.track(event, properties, user)
        except Exception as exc:
            logger.warning("Analytics event %s failed: %s", event, exc)

    async def invite_collaborator(
        self, project_id: Any, user: User, *, email: str, role: str
    ) -> Project:
        if not is_valid_email(email):
            raise ValidationError(
                f"Invalid collaborator email: {sanitize_for_log(email)}",
                code="invalid_collaborator_email",
            )
        if not roles.is_valid_non_phantom_role(role):
            raise ValidationError(f"Unable to add collaborator role: {sanitize_for_log(role)}")

        project = await self._require_project(project_id, user, Permission.MANAGE_COLLABORATORS)
        self.require_tier_allowance(project, "collaborators", role=role)

        invite_token = str(uuid.uuid4())
        project = await self.add_invited_collaborator(
            project, user, invite_token=invite_token, invite_email=email, role=role
        )
        logger.info(
            "Invited %s as %s to project %s (token %s)",
            sanitize_for_log(email),
            role,
            project.id,
            mask_token(invite_token),
        )

        self._track(
            events.COLLABORATOR_INVITED,
            {"projectId": str(project.id), "userId": str(user.id), "collaboratorRole": role},
            user,
        )
        if self.email is not None:
            data = {
                "projectName": project.name,
                "inviterEmail": user.email,
                "inviteUrl": (
                    f"{self.client_origin}/project/{project.id}"
                    f"/accept-collaborator-invite?token={invite_token}"
                ),
                "collaboratorRole": role,
            }
            try:
                await self.email.invite_collaborator_email(email, data)
            except Exception as exc:
                logger.warning("Invite email for project %s failed: %s", project.id, exc)
        return project

    async def change_collaborator_role(
        self, project_id: Any, user: User, collaborator_id: Any, role: str
    ) -> Project:
        if not roles.is_valid_non_phantom_role(role):
            raise ValidationError(f"Role {sanitize_for_log(role)} is not valid")
        project = await self._require_project(project_id, user, Permission.MANAGE_COLLABORATORS)
        if project.get_collaborator_by_id(collaborator_id) is None:
            raise CollaboratorDoesNotExistError(str(collaborator_id))
        if not roles.is_unlicensed(role):
            self.require_tier_allowance(project, "collaborators", role=role)
        return await self.update_collaborator_by_id(project, collaborator_id, {"role": role})

    async def remove_collaborator(
        self, project_id: Any, user: User, collaborator_id: Any
    ) -> Project:
        project = await self._require_project(project_id, user, Permission.MANAGE_COLLABORATORS)
        return await self.remove_collaborator_by_id(project, collaborator_id)

    async def accept_invite(self, project_id: Any, user: User, token: str) -> dict[str, Any]:
        """Link ``user`` to the invite identified by ``token``.

        Order matters: the token must resolve first, the owner is turned away
        before anything else is checked, and the seat check runs before the
        token is consumed.
        """
        if not token:
            raise ValidationError("Invite token not provided")
        project = await self.find_project_by_id_and_collaborator_token(project_id, token)
        if project is None:
            raise CollaboratorTokenInvalidError()

        owner = (
            await self.users.find_user_by_id(project.owner_id)
            if project.owner_id is not None
            else None
        )
        owner_email = owner.email if owner else None

        if project.is_owner(user.id):
            raise CollaboratorIsOwnerError(project.summary(owner_email))

        invited = project.get_collaborator_by_token(token)
        role = invited.role if invited else None
        if not role:
            logger.debug("Collaborator accepting invite without role on project %s", project.id)
        # A record without a role acts as the default role, so that is the seat
        # it is checked against. The invite already holds a pending seat, so it
        # is not counted again.
        self.require_tier_allowance(
            project,
            "collaborators",
            role=role or roles.DEFAULT_COLLABORATOR_ROLE.name,
            required_amount=0,
        )

        project = await self.update_collaborator_by_token_and_user_id(project, token, user.id)

        self._track(
            events.COLLABORATOR_INVITE_ACCEPTED,
            {
                "projectId": str(project.id),
                "userId": str(owner.id) if owner else None,
                "inviteeUserId": str(user.id),
                "collaboratorRole": role,
            },
            owner,
        )
        return {**project.summary(owner_email), "role": role}
