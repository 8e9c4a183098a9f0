"""Domain errors raised by the entitlement engine and the access controller.

Every error carries a stable ``code`` so callers can branch on the kind of
failure without parsing messages. ``status_code`` is only consulted by the
HTTP adapter in :mod:`stackbit_api.api.errors`.
"""

from __future__ import annotations

from typing import Any


class StackbitError(Exception):
    code = "error"
    status_code = 500

    def __init__(self, message: str | None = None, *, code: str | None = None):
        if code is not None:
            self.code = code
        super().__init__(message or self.code)

    @property
    def message(self) -> str:
        return str(self)

    def extra(self) -> dict[str, Any]:
        return {}


class NotFoundError(StackbitError):
    code = "not_found"
    status_code = 404


class CollaboratorDoesNotExistError(NotFoundError):
    code = "collaborator_does_not_exist"

    def __init__(self, collaborator_id: str):
        self.collaborator_id = collaborator_id
        super().__init__(f"Collaborator '{collaborator_id}' does not exist")


class CollaboratorTokenInvalidError(NotFoundError):
    code = "collaborator_token_invalid"

    def __init__(self) -> None:
        super().__init__("Invite token is invalid or has already been used")


class InvalidStateError(StackbitError):
    code = "invalid_state"
    status_code = 500


class UnknownTierError(InvalidStateError):
    code = "invalid_tier"

    def __init__(self, tier_id: str | None):
        self.tier_id = tier_id
        super().__init__(f"Unknown customer tier '{tier_id}'")


class InvalidTrialTierError(InvalidStateError):
    code = "invalid_trial_tier"

    def __init__(self, tier_id: str):
        self.tier_id = tier_id
        super().__init__(f"Tier '{tier_id}' is not a trial tier with trial days")


class TierCatalogError(InvalidStateError):
    code = "invalid_tier_catalog"


class ConflictError(StackbitError):
    code = "conflict"
    status_code = 409


class AlreadyCollaboratorError(ConflictError):
    code = "already_collaborator"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("User is already a collaborator on this project")


class CollaboratorIsOwnerError(ConflictError):
    code = "collaborator_is_owner"

    def __init__(self, project: dict[str, Any]):
        self.project = project
        super().__init__("Project owner cannot accept an invite to their own project")

    def extra(self) -> dict[str, Any]:
        return {"project": self.project}


class TierExceededError(StackbitError):
    code = "project_tier_exceeded"
    status_code = 402

    def __init__(
        self,
        feature: str,
        role: str | None = None,
        hooks: dict[str, Any] | None = None,
    ):
        self.feature = feature
        self.role = role
        self.hooks = hooks or {}
        msg = f"Project tier does not allow '{feature}'"
        if role:
            msg += f" for role '{role}'"
        super().__init__(msg)

    def extra(self) -> dict[str, Any]:
        return {"feature": self.feature, "role": self.role, "hooks": self.hooks}


class UnauthorizedError(StackbitError):
    code = "unauthorized"
    status_code = 403


class ValidationError(StackbitError):
    code = "validation_error"
    status_code = 400
