"""
Engine-wide exception hierarchy.

Resolution functions never raise for "nobody qualifies"; that is a
valid outcome (``None``) the orchestrator turns into auto-approval.
Mutating operations (escalation, delegation grant/revoke, step
decisions) raise these types before touching the session, so a failed
call never leaves a partial write behind.

Usage:
    from approval_routing.core.exceptions import NotFoundError, InvalidStateError

    raise NotFoundError(resource="User", resource_id=42)
    raise InvalidStateError("No escalation user defined for step 7")
"""


class NotFoundError(Exception):
    """Raised when a referenced user, department, step or delegation does not exist.

    Args:
        resource: Human-readable entity name (e.g. "User", "ApprovalStep").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Covers self-approval attempts, malformed step-template parameters and
    delegation requests that could never take effect.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidStateError(Exception):
    """Raised when an operation's preconditions are unmet.

    Example: escalating a step whose template defines no escalation user,
    or deciding a step that already left ``pending``. Always surfaced to
    the caller. A broken escalation setup must block visibly rather than
    stall forever.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)
