"""
Exception types raised by the FYL back-office library.

The CLI and the HTTP service catch these per call and turn them into a red
console line or a JSON error response.
"""

from typing import Optional

# Postgres error raised when a remote procedure has not been deployed yet
UNDEFINED_FUNCTION_CODE = "42883"


class FYLError(Exception):
    """Base class for all back-office errors."""


class BackendUnavailableError(FYLError):
    """The shared Supabase client never became available."""


class RpcError(FYLError):
    """A remote procedure call failed on the server."""

    def __init__(
        self,
        rpc: str,
        message: str,
        code: Optional[str] = None,
        details: Optional[str] = None,
    ):
        self.rpc = rpc
        self.message = message
        self.code = code
        self.details = details
        super().__init__(f"{rpc}: {message}")


class RpcMissingError(RpcError):
    """The remote procedure does not exist in the database."""


class NotFoundError(FYLError):
    """A row the caller asked for does not exist."""


class ValidationError(FYLError):
    """Input was rejected by a business rule before reaching the backend."""


class PermissionDeniedError(FYLError):
    """The current admin lacks the permission for this action."""
