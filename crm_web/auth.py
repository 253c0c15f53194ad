"""
OAuth2 authorization-code + PKCE login against Salesforce, and cookie sessions.

GET /login generates a verifier, stores it under a fresh tempSessionId and shows the
authorize link. GET /oauth/callback consumes the verifier exactly once, exchanges the
code and issues a sessionId cookie. Logout deletes the session.
"""
import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from crm_web import config
from crm_web.errors import (
    AuthorizationDenied,
    SessionNotFound,
    TokenExchangeFailed,
    VerifierMissing,
)
from crm_web.pages import error_page, esc, page
from crm_web.pkce import build_authorize_url, generate_pkce
from crm_web.salesforce import OAuth2Client
from crm_web.session_store import (
    AuthenticatedSession,
    Identity,
    InMemorySessionStore,
    PendingAuthorization,
    SessionStore,
)

logger = logging.getLogger(__name__)
router = APIRouter()

TEMP_SESSION_COOKIE = "tempSessionId"
SESSION_COOKIE = "sessionId"

_pending_store: InMemorySessionStore[PendingAuthorization] = InMemorySessionStore(
    ttl_seconds=config.PENDING_TTL_SECONDS
)
_session_store: InMemorySessionStore[AuthenticatedSession] = InMemorySessionStore(
    ttl_seconds=config.SESSION_TTL_SECONDS
)


def get_pending_store() -> SessionStore[PendingAuthorization]:
    """Dependency: store of in-flight PKCE verifiers, keyed by tempSessionId."""
    return _pending_store


def get_session_store() -> SessionStore[AuthenticatedSession]:
    """Dependency: store of logged-in sessions, keyed by sessionId."""
    return _session_store


@lru_cache
def get_oauth_client() -> OAuth2Client:
    return OAuth2Client(
        login_url=config.LOGIN_URL,
        client_id=config.CLIENT_ID,
        client_secret=config.CLIENT_SECRET,
        redirect_uri=config.REDIRECT_URI,
        api_version=config.API_VERSION,
        timeout=config.HTTP_TIMEOUT,
    )


# --- flow controller ---


def begin_login(
    pending: SessionStore[PendingAuthorization],
    previous_temp_id: str | None = None,
) -> tuple[str, str]:
    """
    Start a login attempt. Drops any older pending verifier from this browser so only
    one attempt is in flight. Returns (temp_session_id, authorize_url).
    """
    pending.delete(previous_temp_id)
    code_verifier, code_challenge = generate_pkce()
    temp_id = pending.create(PendingAuthorization(code_verifier=code_verifier))
    url = build_authorize_url(
        login_url=config.LOGIN_URL,
        client_id=config.CLIENT_ID,
        redirect_uri=config.REDIRECT_URI,
        scope=config.DEFAULT_SCOPE,
        code_challenge=code_challenge,
    )
    return temp_id, url


def complete_login(
    *,
    pending: SessionStore[PendingAuthorization],
    sessions: SessionStore[AuthenticatedSession],
    oauth: OAuth2Client,
    temp_id: str | None,
    code: str | None,
    error: str | None = None,
    error_description: str | None = None,
) -> str:
    """
    Finish a login attempt from the callback parameters. The pending verifier is
    consumed whatever the outcome. Returns the new session id.
    """
    flow = pending.pop(temp_id)
    if error:
        raise AuthorizationDenied(error, error_description)
    if flow is None:
        raise VerifierMissing()
    if not code:
        raise TokenExchangeFailed("Authorization code not found")

    conn, user_info = oauth.authorize(code, flow.code_verifier)
    identity = Identity.from_user_info(user_info)
    session_id = sessions.create(AuthenticatedSession(connection=conn, identity=identity))
    logger.info("Session created for user %s (org %s)", identity.user_id, identity.organization_id)
    return session_id


def end_session(sessions: SessionStore[AuthenticatedSession], session_id: str | None) -> None:
    sessions.delete(session_id)


def require_session(
    request: Request,
    sessions: SessionStore[AuthenticatedSession] = Depends(get_session_store),
) -> AuthenticatedSession:
    """Dependency for protected routes. Raises SessionNotFound (-> redirect to /login)."""
    session = sessions.get(request.cookies.get(SESSION_COOKIE))
    if session is None:
        raise SessionNotFound()
    return session


# --- routes ---


@router.get("/login", response_class=HTMLResponse)
def login(request: Request, pending: SessionStore[PendingAuthorization] = Depends(get_pending_store)):
    """Login page with a single link to the Salesforce authorize endpoint."""
    temp_id, url = begin_login(pending, request.cookies.get(TEMP_SESSION_COOKIE))
    logger.info("Login started")
    response = page(
        "Login with Salesforce",
        f"""  <h2>Salesforce OAuth Login</h2>
  <p>Login using your Salesforce credentials</p>
  <a href="{esc(url)}" class="btn">Login with Salesforce</a>
  <p style="color: #666; font-size: 14px;">You will be redirected to Salesforce for authentication</p>""",
    )
    response.set_cookie(
        TEMP_SESSION_COOKIE,
        temp_id,
        max_age=config.PENDING_TTL_SECONDS,
        httponly=True,
        secure=config.COOKIE_SECURE,
        samesite="lax",
    )
    return response


@router.get("/oauth/callback")
def oauth_callback(
    request: Request,
    code: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    pending: SessionStore[PendingAuthorization] = Depends(get_pending_store),
    sessions: SessionStore[AuthenticatedSession] = Depends(get_session_store),
    oauth: OAuth2Client = Depends(get_oauth_client),
):
    """Salesforce redirects here with ?code=... or ?error=...&error_description=..."""
    try:
        session_id = complete_login(
            pending=pending,
            sessions=sessions,
            oauth=oauth,
            temp_id=request.cookies.get(TEMP_SESSION_COOKIE),
            code=code,
            error=error,
            error_description=error_description,
        )
    except AuthorizationDenied as e:
        logger.info("Authorization denied: %s", e.error)
        response = error_page("Login error", e.message, 400)
    except VerifierMissing as e:
        logger.warning("Callback without a usable PKCE verifier")
        response = error_page("Login error", e.message, 400)
    except TokenExchangeFailed as e:
        logger.warning("Token exchange failed: %s", e.message)
        response = error_page("Authentication failed", e.message, 502 if e.unreachable else 400)
    else:
        response = RedirectResponse(url="/", status_code=302)
        response.set_cookie(
            SESSION_COOKIE,
            session_id,
            max_age=config.SESSION_TTL_SECONDS,
            httponly=True,
            secure=config.COOKIE_SECURE,
            samesite="lax",
        )
    response.delete_cookie(TEMP_SESSION_COOKIE)
    return response


@router.post("/logout")
@router.get("/logout")
def logout(request: Request, sessions: SessionStore[AuthenticatedSession] = Depends(get_session_store)):
    """Delete the session and clear the cookie."""
    end_session(sessions, request.cookies.get(SESSION_COOKIE))
    logger.info("Logged out")
    response = RedirectResponse(url="/login", status_code=302)
    response.delete_cookie(SESSION_COOKIE)
    return response
