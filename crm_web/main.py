"""
CRM Web App: Salesforce OAuth2 + PKCE login, then account pages over the user's own token.
GET /login, /oauth/callback, /logout, /, /whoami, /accounts/... Port 3000 by default.
"""
import logging

from fastapi import Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from crm_web import config
from crm_web.accounts import router as accounts_router
from crm_web.auth import require_session
from crm_web.auth import router as auth_router
from crm_web.errors import SessionNotFound
from crm_web.pages import esc, page
from crm_web.session_store import AuthenticatedSession

logger = logging.getLogger(__name__)

app = FastAPI(title="CRM Web", version="0.1.0")
app.include_router(auth_router, tags=["auth"])
app.include_router(accounts_router, tags=["accounts"])


@app.exception_handler(SessionNotFound)
def redirect_to_login(request: Request, exc: SessionNotFound):
    """Unauthenticated requests to protected routes go to the login page."""
    return RedirectResponse(url="/login", status_code=302)


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "crm_web"}


@app.get("/", response_class=HTMLResponse)
def home(session: AuthenticatedSession = Depends(require_session)):
    """Landing page after login."""
    user = session.identity
    return page(
        "Salesforce OAuth Demo",
        f"""  <div style="display:flex;justify-content:space-between;align-items:center;border-bottom:1px solid #ddd;">
    <h1>Salesforce OAuth Demo</h1>
    <form method="post" action="/logout"><button class="btn logout">Logout</button></form>
  </div>
  <div style="background:#f8f9fa;padding:15px;border-radius:5px;margin:20px 0;">
    <h3>User Information</h3>
    <p><strong>User ID:</strong> {esc(user.user_id)}</p>
    <p><strong>Username:</strong> {esc(user.username)}</p>
    <p><strong>Organization ID:</strong> {esc(user.organization_id)}</p>
    <p><strong>Login Time:</strong> {esc(session.login_time.strftime("%Y-%m-%d %H:%M:%S UTC"))}</p>
  </div>
  <h3>Available Actions</h3>
  <div>
    <a href="/accounts/table" class="btn">View Accounts</a>
    <a href="/accounts" class="btn">Accounts (JSON)</a>
    <a href="/whoami" class="btn">User Details</a>
    <a href="/query" class="btn">Run SOQL Query</a>
  </div>""",
    )


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logger.info("Login URL: %s/login", config.APP_BASE_URL)
    uvicorn.run(
        "crm_web.main:app",
        host="127.0.0.1",
        port=config.PORT,
        reload=True,
    )
