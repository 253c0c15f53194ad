"""
Error taxonomy for the login flow and CRM calls.

Login errors (AuthorizationDenied, VerifierMissing, TokenExchangeFailed) abort the
attempt and send the user back to /login with a message. SessionNotFound is treated
as "not logged in" and becomes a redirect. RemoteCallFailed is reported per request.
"""


class CrmWebError(Exception):
    """Base class for all errors raised by crm_web."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthorizationDenied(CrmWebError):
    """Salesforce redirected back with an `error` parameter."""

    def __init__(self, error: str, description: str | None = None):
        super().__init__(description or error)
        self.error = error
        self.description = description


class VerifierMissing(CrmWebError):
    """No pending PKCE verifier for this callback (absent, expired, or already used)."""

    def __init__(self, message: str = "PKCE verifier not found. Please log in again."):
        super().__init__(message)


class TokenExchangeFailed(CrmWebError):
    """Token endpoint rejected the code/verifier pair or could not be reached."""

    def __init__(self, message: str, *, unreachable: bool = False):
        super().__init__(message)
        self.unreachable = unreachable


class SessionNotFound(CrmWebError):
    """Request carried no sessionId cookie, or it no longer resolves to a session."""

    def __init__(self, message: str = "Not logged in"):
        super().__init__(message)


class RemoteCallFailed(CrmWebError):
    """A Salesforce REST call failed (HTTP error, API error payload, or transport error)."""

    def __init__(self, message: str, *, status_code: int | None = None, error_code: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
