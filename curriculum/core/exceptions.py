"""
Curriculum service exception hierarchy.

Every engine raises one of these types. Each carries a stable ``code``
(part of the API contract) and the HTTP ``status_code`` the blueprints
render it with, so a single handler produces the same envelope everywhere:

    {"error": {"code": "...", "message": "...", "details": {...}}}

Usage:
    from curriculum.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Version", resource_id=42)
    raise ValidationError("title is required", details={"title": "required"})
"""


class CurriculumError(Exception):
    """Base for all domain errors raised by the service layer."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self), "details": self.details}


class NotFoundError(CurriculumError):
    """Raised when a requested entity does not exist within the caller's tenant.

    Cross-tenant lookups raise this too: a 403 would confirm the row exists.

    Args:
        resource: Entity name (e.g. "Version", "Mapping").
        resource_id: The PK that was looked up.
        tenant_id: The scope that was enforced. Logged, not rendered.
        code: NOT_FOUND, or a narrower code such as NOT_ATTACHED.
    """

    code = "NOT_FOUND"
    status_code = 404

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
        code: str = "NOT_FOUND",
    ) -> None:
        self.code = code
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(CurriculumError):
    """Raised when input is well-formed but violates a field or business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Field-level breakdown; keys are field names.
    """

    code = "VALIDATION_ERROR"
    status_code = 422


class NoUpdatesError(CurriculumError):
    """Raised when a patch carries no updatable field."""

    code = "NO_UPDATES"
    status_code = 400

    def __init__(self, resource: str) -> None:
        super().__init__(f"No updatable fields supplied for {resource}")


class InvalidStateError(CurriculumError):
    """Raised when an operation is illegal for the entity's lifecycle position."""

    code = "INVALID_STATE"
    status_code = 400


class InvalidReferenceError(CurriculumError):
    """Raised when a referenced collaborator row is unusable.

    ``code`` is INVALID_REVIEWER, INVALID_CAMPUS, INVALID_MENTION or
    INVALID_PARENT.
    """

    status_code = 400

    def __init__(self, code: str, message: str, details: dict | None = None) -> None:
        self.code = code
        super().__init__(message, details)


class ConflictError(CurriculumError):
    """Raised when an operation would duplicate a uniquely keyed row.

    Args:
        resource: Model name.
        field: The unique field (or key tuple) that would be duplicated.
        value: The conflicting value.
        code: Stable error code, e.g. DUPLICATE_VERSION or APPROVAL_EXISTS.
    """

    status_code = 409

    def __init__(
        self,
        resource: str,
        field: str,
        value=None,
        code: str = "CONFLICT",
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        self.code = code
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg, details={"field": field})


class VersionFrozenError(CurriculumError):
    """Raised when a structural mutation targets a version outside draft."""

    code = "VERSION_FROZEN"
    status_code = 403

    def __init__(self, version_id: int, state: str) -> None:
        self.version_id = version_id
        self.state = state
        super().__init__(
            f"Version id={version_id} is {state}; structure is read-only",
            details={"version_id": version_id, "state": state},
        )


class UnauthorizedError(CurriculumError):
    """Raised when the actor's role does not permit the requested event."""

    code = "UNAUTHORIZED"
    status_code = 403


class DeleteGuardError(CurriculumError):
    """Raised when a delete is blocked by a lifecycle rule.

    ``code`` is CANNOT_DELETE_LATEST or CANNOT_DELETE_APPLIED.
    """

    status_code = 403

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        super().__init__(message)
