"""
Structural Content Guard.

Courses, units and resources ("structural nodes") are editable only while
their owning Version is in draft. ``guard_mutation`` walks the parent
chain Resource → Unit → Course → Version and rejects the operation with
VERSION_FROZEN before the caller writes anything.

Unit completeness is a pure function of the unit's content fields and
whether it has at least one live resource:

    objectives  20      skills      15      activities  20
    rubric      25      resources   20
"""

from sqlalchemy import func, select

from curriculum.core.exceptions import VersionFrozenError
from curriculum.core.identity import ActorContext
from curriculum.models.curriculum import EDITABLE_VERSION_STATES, Course, Resource, Unit, Version
from curriculum.services.helpers.scoped_queries import get_scoped

COMPLETENESS_WEIGHTS = {
    "objectives": 20,
    "skills": 15,
    "activities": 20,
    "rubric": 25,
    "resources": 20,
}


def resolve_owning_version(session, node, *, tenant_id: int, for_update: bool = False) -> Version:
    if isinstance(node, Resource):
        node = get_scoped(session, Unit, node.unit_id, tenant_id=tenant_id)
    if isinstance(node, Unit):
        node = get_scoped(session, Course, node.course_id, tenant_id=tenant_id)
    if isinstance(node, Course):
        node = get_scoped(session, Version, node.version_id, tenant_id=tenant_id, for_update=for_update)
    if not isinstance(node, Version):
        raise TypeError(f"Not a structural node: {node!r}")
    return node


def guard_mutation(session, ctx: ActorContext, node) -> Version:
    """Return the owning version if it is editable; raise VersionFrozenError otherwise.

    The version row is locked for the rest of the caller's transaction so
    an approval request cannot freeze it mid-edit.
    """
    version = resolve_owning_version(session, node, tenant_id=ctx.tenant_id, for_update=True)
    if version.state not in EDITABLE_VERSION_STATES:
        raise VersionFrozenError(version.id, version.state)
    return version


def compute_completeness(*, objectives, skills, activities, rubric, resource_count: int) -> int:
    score = 0
    if objectives:
        score += COMPLETENESS_WEIGHTS["objectives"]
    if skills:
        score += COMPLETENESS_WEIGHTS["skills"]
    if activities:
        score += COMPLETENESS_WEIGHTS["activities"]
    if rubric is not None:
        score += COMPLETENESS_WEIGHTS["rubric"]
    if resource_count > 0:
        score += COMPLETENESS_WEIGHTS["resources"]
    return min(score, 100)


def live_resource_count(session, *, tenant_id: int, unit_id: int) -> int:
    return session.execute(
        select(func.count(Resource.id)).where(
            Resource.tenant_id == tenant_id,
            Resource.unit_id == unit_id,
            Resource.deleted_at.is_(None),
        )
    ).scalar_one()


def recompute_completeness(session, unit: Unit) -> int:
    """Score ``unit`` from its current (post-update) values and store it."""
    resource_count = 0
    if unit.id is not None:
        resource_count = live_resource_count(session, tenant_id=unit.tenant_id, unit_id=unit.id)
    unit.completeness_score = compute_completeness(
        objectives=unit.objectives,
        skills=unit.skills,
        activities=unit.activities,
        rubric=unit.rubric,
        resource_count=resource_count,
    )
    return unit.completeness_score
