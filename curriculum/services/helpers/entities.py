"""
Resolve a (``entity_type``, ``entity_id``) pair to its live row.

Comments and tag links address their target by type name; this is the
one place the names map onto models.
"""

from curriculum.models.curriculum import Course, Framework, Resource, Unit, Version
from curriculum.models.mapping import Mapping
from curriculum.services.helpers.payloads import parse_choice, parse_str
from curriculum.services.helpers.scoped_queries import get_scoped

ENTITY_MODELS = {
    "framework": Framework,
    "version": Version,
    "course": Course,
    "unit": Unit,
    "resource": Resource,
    "mapping": Mapping,
}


def parse_entity_type(value, allowed, field: str = "entity_type") -> str:
    return parse_choice(parse_str(value, field, required=True), field, allowed)


def resolve_entity(session, tenant_id: int, entity_type: str, entity_id: int):
    """Live row of ``entity_type`` in the tenant; NotFoundError otherwise."""
    return get_scoped(session, ENTITY_MODELS[entity_type], entity_id, tenant_id=tenant_id)
