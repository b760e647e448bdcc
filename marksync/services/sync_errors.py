"""Errors raised while reconciling a single client change.

Each error carries a machine-readable ``code`` so conflict entries can be
built without inspecting message text.
"""


class SyncError(Exception):
    code = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def as_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class HierarchyViolation(SyncError):
    code = "hierarchy_violation"


class UniquenessViolation(SyncError):
    code = "name_conflict"


class PermissionDenied(SyncError):
    code = "permission_denied"


class NotFound(SyncError):
    code = "not_found"


class InvalidChange(SyncError):
    code = "invalid_change"


class SyncPayloadError(ValueError):
    """The request body does not have the shape of a sync request."""


def error_entry(exc: Exception) -> dict:
    if isinstance(exc, SyncError):
        return exc.as_dict()
    return {"error": str(exc) or exc.__class__.__name__, "code": SyncError.code}
