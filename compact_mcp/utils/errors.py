import errno
from typing import Any, Dict, Optional

from compact_mcp.models import ErrorType, UserAction


def error_response(request_id: str, code: str, message: str) -> Dict[str, Any]:
    return {
        "request_id": request_id,
        "type": "error",
        "data": None, # Explicitly null for error responses
        "error": {
            "code": code,
            "message": message
        }
    }


class ContractToolError(Exception):
    """
    A classified failure raised by the guard or the compiler invoker.

    The controller turns it into a ValidationFailure / StructureFailure; any
    extra keyword arguments become additional fields of that result.
    """

    def __init__(
        self,
        error_type: ErrorType,
        error: str,
        message: str,
        user_action: Optional[UserAction] = None,
        **extra: Any,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.error = error
        self.message = message
        self.user_action = user_action or UserAction(problem=message, solution="See the error message for details")
        self.extra = extra

    def __str__(self) -> str:
        return f"{self.error_type.value}: {self.error} ({self.message})"


def os_error_code(exc: OSError) -> Optional[str]:
    """Symbolic errno name ("ENOENT", "ENOSPC", ...) for an OSError, if any."""
    if exc.errno is None:
        return None
    return errno.errorcode.get(exc.errno)
