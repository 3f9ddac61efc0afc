"""RFC 9457 Problem Details exception hierarchy.

All API errors extend ProblemDetailError and are converted to
application/problem+json responses by the exception handler middleware.
Bodies also carry an `error` member with the human-readable message,
which is what the web front end displays.
"""

PROBLEM_BASE = "https://api.singularity.health/problems"


class ProblemDetailError(Exception):
    def __init__(
        self,
        type_uri: str,
        title: str,
        status: int,
        detail: str,
        violations: list[dict] | None = None,
    ):
        self.type_uri = type_uri
        self.title = title
        self.status = status
        self.detail = detail
        self.violations = violations
        super().__init__(detail)


class ValidationError(ProblemDetailError):
    def __init__(self, detail: str, violations: list[dict] | None = None):
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/validation-error",
            title="Validation Error",
            status=400,
            detail=detail,
            violations=violations,
        )


class UnauthorizedError(ProblemDetailError):
    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/unauthorized",
            title="Unauthorized",
            status=401,
            detail=detail,
        )


class NotFoundError(ProblemDetailError):
    def __init__(self, detail: str):
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/not-found",
            title="Not Found",
            status=404,
            detail=detail,
        )


class InvalidTimezoneError(ProblemDetailError):
    def __init__(self, timezone: str):
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/invalid-timezone",
            title="Invalid Timezone",
            status=400,
            detail="Invalid timezone",
            violations=[{"field": "sync_timezone", "message": f"Unknown timezone '{timezone}'"}],
        )


class InvalidSyncTimeError(ProblemDetailError):
    def __init__(self, sync_time: str):
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/invalid-sync-time",
            title="Invalid Sync Time",
            status=400,
            detail="Invalid sync time format. Use HH:MM or HH:MM:SS",
            violations=[{"field": "sync_time", "message": f"Unparseable time '{sync_time}'"}],
        )


class InvalidDateRangeError(ProblemDetailError):
    def __init__(self, start: str, end: str):
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/invalid-date-range",
            title="Invalid Date Range",
            status=400,
            detail=f"Parameter 'from_date' ({start}) must not be after 'to_date' ({end})",
        )


class IntegrationError(ProblemDetailError):
    """A connect/sync/disconnect/settings call that the service reported as failed."""

    def __init__(self, detail: str):
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/integration-error",
            title="Eight Sleep Integration Error",
            status=400,
            detail=detail,
        )


class EncryptionError(Exception):
    """Raised when credentials cannot be encrypted or decrypted."""
