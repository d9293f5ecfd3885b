"""
Domain error taxonomy.

Every error is recoverable at the request level. Each class carries the HTTP
status it maps to and a stable machine-readable ``code``; the services render
them as ``{"error": ..., "code": ...}`` through a single exception handler.
"""


class MultivoteError(Exception):
    """Base class for all domain errors."""

    status_code = 400
    code = "error"
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def extra(self) -> dict:
        """Additional fields rendered next to ``error`` and ``code``."""
        return {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, **self.extra()}


class NotFound(MultivoteError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class RateLimited(MultivoteError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, wait_seconds: int, message: str | None = None):
        self.wait_seconds = max(0, int(wait_seconds))
        super().__init__(
            message
            or f"Please wait {self.wait_seconds} seconds before requesting a new code"
        )

    def extra(self) -> dict:
        return {"wait_seconds": self.wait_seconds}


class InvalidCode(MultivoteError):
    status_code = 401
    code = "invalid_code"
    default_message = "Invalid or expired code"


class MalformedCode(MultivoteError):
    status_code = 400
    code = "malformed_code"
    default_message = "The code must contain exactly 6 digits"


class AlreadyVoted(MultivoteError):
    status_code = 409
    code = "already_voted"
    default_message = "You have already voted in this category"


class ElectionNotActive(MultivoteError):
    status_code = 409
    code = "election_not_active"

    def __init__(self, status: str, message: str | None = None):
        self.status = str(status)
        super().__init__(message or f"Election is not active (status: {self.status})")

    def extra(self) -> dict:
        return {"status": self.status}


class IllegalTransition(MultivoteError):
    status_code = 409
    code = "illegal_transition"

    def __init__(self, status: str, action: str, message: str | None = None):
        self.status = str(status)
        self.action = str(action)
        super().__init__(
            message or f"Cannot {self.action} an election in status '{self.status}'"
        )

    def extra(self) -> dict:
        return {"status": self.status, "action": self.action}


class StructureLocked(IllegalTransition):
    """Structural edit (categories, candidates, voters) outside ``draft``."""

    code = "structure_locked"

    def __init__(self, status: str, action: str = "edit"):
        super().__init__(
            status,
            action,
            f"Categories, candidates and voters can only be changed while the "
            f"election is in draft (status: {status})",
        )


class InvalidTarget(MultivoteError):
    status_code = 422
    code = "invalid_target"
    default_message = "Voter, category and candidate do not belong together"


class Conflict(MultivoteError):
    status_code = 409
    code = "conflict"
    default_message = "Conflicting record already exists"


class Unauthorized(MultivoteError):
    status_code = 401
    code = "unauthorized"
    default_message = "Not authenticated"


class Forbidden(MultivoteError):
    status_code = 403
    code = "forbidden"
    default_message = "Access denied"


class DeliveryFailed(MultivoteError):
    status_code = 502
    code = "delivery_failed"
    default_message = "Could not send the email. Please try again in a few moments."


class InvalidRequest(MultivoteError):
    status_code = 400
    code = "invalid_request"
    default_message = "Invalid request"
