"""
Reporting-wide exception hierarchy.

Services raise these types; blueprints register one handler per type and
get consistent HTTP status codes everywhere.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Project", resource_id=42)
    raise ValidationError.from_errors([("startDate", "startDate is required when endDate is set")])
"""


class NotFoundError(Exception):
    """Raised when a referenced project or entity does not exist.

    Used for both genuinely missing records and soft-deleted ones; a
    deleted record is indistinguishable from one that never existed.

    Args:
        resource: Human-readable entity name (e.g. "Project", "ShareLink").
        resource_id: The key that was looked up. Included in logs, not in HTTP response.
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
    """Raised when a request is well-formed JSON but semantically invalid.

    Carries every violation found, not just the first, so a client can
    correct all of them in one round trip.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable summary of what failed.
        details: Field-level breakdown; keys are field paths, values are
                 lists of messages for that field.
        errors: Ordered ``(field path, message)`` pairs.
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        errors: list[tuple[str, str]] | None = None,
    ) -> None:
        self.errors = list(errors or [])
        if details is None:
            details = {}
            for field, field_message in self.errors:
                details.setdefault(field, []).append(field_message)
        self.details = details
        super().__init__(message)

    @classmethod
    def from_errors(cls, errors: list[tuple[str, str]]) -> "ValidationError":
        """Build one exception out of a list of ``(field, message)`` pairs."""
        message = "; ".join(msg for _, msg in errors) or "Invalid request"
        return cls(message, errors=errors)


class UpstreamError(Exception):
    """Raised when the data source fails while a report is being computed.

    No retry happens inside the engine; the caller decides whether to
    repeat the whole request. The original exception is kept for logging
    and never rendered into the HTTP response.

    Maps to HTTP 503.
    """

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"Data source failure during {operation}")


class AccessDeniedError(Exception):
    """Raised when the caller is known but may not see the resource.

    Maps to HTTP 403. Used for revoked or expired share links and for
    cross-project reports requested without the admin role.
    """


class AuthenticationRequiredError(Exception):
    """Raised when a resource needs an identity or password the caller did not supply.

    Maps to HTTP 401.
    """
