"""
Error taxonomy for CivicSense

Services raise these; the handlers registered in main.py turn them into
JSON responses.
"""
from typing import Any, Optional


class CivicSenseError(Exception):
    """Base class for errors with an HTTP mapping"""

    status_code = 500
    code = "InternalError"

    def __init__(self, message: str = "", detail: Optional[Any] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.detail = detail


class ValidationFailed(CivicSenseError):
    status_code = 400
    code = "ValidationError"


class Unauthorized(CivicSenseError):
    status_code = 401
    code = "Unauthorized"


class Forbidden(CivicSenseError):
    status_code = 403
    code = "Forbidden"


class NotFound(CivicSenseError):
    status_code = 404
    code = "NotFound"


class Conflict(CivicSenseError):
    status_code = 409
    code = "Conflict"


class DuplicateEmail(Conflict):
    code = "DuplicateEmail"


class InvalidTransition(Conflict):
    code = "InvalidTransition"


class AlreadyVerified(Conflict):
    status_code = 400
    code = "AlreadyVerified"


class SelfVerificationForbidden(Conflict):
    status_code = 400
    code = "SelfVerificationForbidden"


class UpstreamUnavailable(CivicSenseError):
    status_code = 502
    code = "UpstreamUnavailable"
