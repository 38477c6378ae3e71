"""
Actor identity and role permissions.

Every engine call receives an ``ActorContext`` resolved upstream (auth
gateway headers for HTTP, explicit construction in jobs and tests).
Roles are a closed enum; ``ROLE_PERMISSIONS`` lists, for every role, the
events it may fire. The table is checked for completeness at import time.
"""

from dataclasses import dataclass
from enum import Enum

from curriculum.core.exceptions import UnauthorizedError


class Role(str, Enum):
    ADMIN = "admin"
    PROGRAM_OWNER = "program_owner"
    CURRICULUM_DESIGNER = "curriculum_designer"
    QA = "qa"
    TEACHER = "teacher"


class Action(str, Enum):
    FRAMEWORK_CREATE = "framework.create"
    FRAMEWORK_UPDATE = "framework.update"
    FRAMEWORK_DELETE = "framework.delete"
    VERSION_CREATE = "version.create"
    VERSION_UPDATE = "version.update"
    VERSION_DELETE = "version.delete"
    VERSION_PUBLISH = "version.publish"
    VERSION_ARCHIVE = "version.archive"
    STRUCTURE_EDIT = "structure.edit"
    APPROVAL_REQUEST = "approval.request"
    APPROVAL_DECIDE_ANY = "approval.decide_any"
    MAPPING_CREATE = "mapping.create"
    MAPPING_UPDATE = "mapping.update"
    MAPPING_DELETE = "mapping.delete"
    COMMENT_WRITE = "comment.write"
    COMMENT_MODERATE = "comment.moderate"
    TAG_MANAGE = "tag.manage"


# Users holding one of these roles may be assigned as approval reviewers.
REVIEWER_ROLES = frozenset({Role.PROGRAM_OWNER, Role.QA, Role.ADMIN})

_AUTHORING = frozenset({
    Action.FRAMEWORK_CREATE,
    Action.FRAMEWORK_UPDATE,
    Action.VERSION_CREATE,
    Action.VERSION_UPDATE,
    Action.STRUCTURE_EDIT,
    Action.APPROVAL_REQUEST,
    Action.MAPPING_CREATE,
    Action.MAPPING_UPDATE,
    Action.COMMENT_WRITE,
    Action.TAG_MANAGE,
})

ROLE_PERMISSIONS: dict[Role, frozenset[Action]] = {
    Role.ADMIN: frozenset(Action),
    # Removing another author's comment is reserved to admins.
    Role.PROGRAM_OWNER: frozenset(Action) - {Action.COMMENT_MODERATE},
    Role.CURRICULUM_DESIGNER: _AUTHORING,
    # QA decides only approvals assigned to them; otherwise they comment.
    Role.QA: frozenset({Action.COMMENT_WRITE}),
    Role.TEACHER: frozenset({Action.COMMENT_WRITE}),
}

_missing = set(Role) - set(ROLE_PERMISSIONS)
if _missing:
    raise RuntimeError(f"ROLE_PERMISSIONS has no entry for {sorted(r.value for r in _missing)}")


def parse_role(value) -> Role:
    """Coerce a raw role string into ``Role``; raises ValueError when unknown."""
    if isinstance(value, Role):
        return value
    return Role(str(value).strip().lower())


@dataclass(frozen=True)
class ActorContext:
    """Who is calling, and in which tenant."""

    actor_id: int
    tenant_id: int
    role: Role

    def can(self, action: Action) -> bool:
        return action in ROLE_PERMISSIONS[self.role]


def require(ctx: ActorContext, action: Action) -> None:
    """Raise UnauthorizedError unless ``ctx.role`` may fire ``action``."""
    if not ctx.can(action):
        raise UnauthorizedError(
            f"Role '{ctx.role.value}' may not perform '{action.value}'",
            details={"role": ctx.role.value, "action": action.value},
        )
