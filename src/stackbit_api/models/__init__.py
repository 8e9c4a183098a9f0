from stackbit_api.models.project import (
    Collaborator,
    CollaboratorNotification,
    Project,
    Subscription,
)
from stackbit_api.models.roles import CollaboratorRole, Permission
from stackbit_api.models.users import User

__all__ = [
    "Collaborator",
    "CollaboratorNotification",
    "CollaboratorRole",
    "Permission",
    "Project",
    "Subscription",
    "User",
]
