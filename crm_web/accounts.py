"""
Account pages and JSON endpoints over the logged-in user's Salesforce connection.
All routes require a session; CRM failures are reported per request with status 500.
"""
import json
import logging
import re
from dataclasses import asdict

from fastapi import APIRouter, Depends, Form
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from crm_web.auth import require_session
from crm_web.errors import RemoteCallFailed
from crm_web.pages import error_page, esc, page
from crm_web.salesforce import quote_soql_contains
from crm_web.session_store import AuthenticatedSession

logger = logging.getLogger(__name__)
router = APIRouter()

ACCOUNT_FIELDS = ["Id", "Name", "Type", "Industry", "Phone", "CreatedDate"]
TABLE_FIELDS = ["Id", "Name", "Type", "Industry", "CreatedDate"]
DEFAULT_QUERY = "SELECT Id, Name FROM Account LIMIT 5"
MAX_TABLE_LIMIT = 200

# 15- or 18-character Salesforce record id
_RECORD_ID = re.compile(r"^[A-Za-z0-9]{15}(?:[A-Za-z0-9]{3})?$")


def clamp_limit(limit: int) -> int:
    return min(max(1, limit), MAX_TABLE_LIMIT)


def build_accounts_soql(search: str = "", limit: int = 20) -> str:
    """SOQL for the accounts table; search text is matched literally against Name. Pass a clamped limit."""
    soql = f"SELECT {', '.join(TABLE_FIELDS)} FROM Account"
    if search:
        soql += f" WHERE Name LIKE {quote_soql_contains(search)}"
    return soql + f" ORDER BY CreatedDate DESC LIMIT {int(limit)}"


def _fmt_date(value: str | None) -> str:
    # 2024-01-02T03:04:05.000+0000 -> 2024-01-02 03:04:05
    return value[:19].replace("T", " ") if value else ""


def _account_fields(name: str, type_: str, industry: str) -> dict:
    return {"Name": name, "Type": type_ or None, "Industry": industry or None}


def _remote_error_html(e: RemoteCallFailed) -> HTMLResponse:
    return HTMLResponse(f"<pre>{esc(e.message)}</pre>", status_code=500)


def _not_found(record_id: str) -> HTMLResponse:
    return error_page("Not found", f"Invalid account id: {record_id}", 404, back_href="/accounts/table", back_label="Back")


@router.get("/whoami")
def whoami(session: AuthenticatedSession = Depends(require_session)):
    """Identity captured at login."""
    return asdict(session.identity)


@router.get("/accounts")
def list_accounts(session: AuthenticatedSession = Depends(require_session)):
    """Ten most recent accounts as JSON."""
    try:
        records = session.connection.sobject("Account").find(ACCOUNT_FIELDS, order_by="CreatedDate DESC", limit=10)
    except RemoteCallFailed as e:
        return JSONResponse({"error": e.message}, status_code=500)
    return records


@router.get("/query")
def run_query(q: str | None = None, session: AuthenticatedSession = Depends(require_session)):
    """Run the caller's own SOQL with their own token."""
    try:
        return session.connection.query(q or DEFAULT_QUERY)
    except RemoteCallFailed as e:
        return JSONResponse({"error": e.message}, status_code=500)


@router.get("/accounts/table", response_class=HTMLResponse)
def accounts_table(
    q: str = "",
    limit: int = 20,
    createdId: str = "",
    session: AuthenticatedSession = Depends(require_session),
):
    search = q.strip()
    limit = clamp_limit(limit)
    try:
        result = session.connection.query(build_accounts_soql(search, limit))
    except RemoteCallFailed as e:
        return _remote_error_html(e)

    rows = []
    for r in result.get("records", []):
        rid = esc(r.get("Id"))
        highlight = ' style="background:#fff6cc;"' if createdId and r.get("Id") == createdId else ""
        rows.append(
            f"""    <tr{highlight}>
      <td><a href="/accounts/{rid}">{rid}</a></td>
      <td>{esc(r.get("Name"))}</td>
      <td>{esc(r.get("Type"))}</td>
      <td>{esc(r.get("Industry"))}</td>
      <td>{esc(_fmt_date(r.get("CreatedDate")))}</td>
      <td>
        <a href="/accounts/{rid}/edit">Edit</a> |
        <form style="display:inline" method="post" action="/accounts/{rid}/delete"
              onsubmit="return confirm('Delete this account?');">
          <button type="submit">Delete</button>
        </form>
      </td>
    </tr>"""
        )

    banner = ""
    if createdId:
        banner = f"""  <div style="padding:10px;margin:10px 0;border:1px solid #c8e6c9;background:#e8f5e9;">
    Created Account: <a href="/accounts/{esc(createdId)}">{esc(createdId)}</a>
  </div>"""

    return page(
        "Accounts",
        f"""  <h2>Accounts</h2>
{banner}
  <form>
    <input name="q" placeholder="Search name..." value="{esc(search)}">
    <input name="limit" type="number" value="{limit}" min="1" max="{MAX_TABLE_LIMIT}">
    <button>Search</button>
    <a href="/accounts/new">+ New</a> | <a href="/">Home</a>
  </form>
  <table>
    <thead><tr><th>Id</th><th>Name</th><th>Type</th><th>Industry</th><th>Created</th><th>Actions</th></tr></thead>
    <tbody>
{"".join(rows) if rows else '    <tr><td colspan="6">No accounts</td></tr>'}
    </tbody>
  </table>""",
    )


@router.get("/accounts/new", response_class=HTMLResponse)
def new_account_form(session: AuthenticatedSession = Depends(require_session)):
    return page(
        "Create Account",
        """  <h3>Create Account</h3>
  <form method="post" action="/accounts">
    <p><input name="Name" placeholder="Name" required></p>
    <p><input name="Type" placeholder="Type"></p>
    <p><input name="Industry" placeholder="Industry"></p>
    <button>Create</button> <a href="/accounts/table">Back</a>
  </form>""",
    )


@router.post("/accounts")
def create_account(
    Name: str = Form(...),
    Type: str = Form(""),
    Industry: str = Form(""),
    session: AuthenticatedSession = Depends(require_session),
):
    try:
        result = session.connection.sobject("Account").create(_account_fields(Name, Type, Industry))
    except RemoteCallFailed as e:
        return _remote_error_html(e)
    logger.info("Account %s created by user %s", result["id"], session.identity.user_id)
    return RedirectResponse(url=f"/accounts/table?createdId={result['id']}", status_code=302)


@router.get("/accounts/{record_id}", response_class=HTMLResponse)
def account_detail(record_id: str, session: AuthenticatedSession = Depends(require_session)):
    if not _RECORD_ID.match(record_id):
        return _not_found(record_id)
    try:
        r = session.connection.sobject("Account").retrieve(record_id)
    except RemoteCallFailed as e:
        return _remote_error_html(e)
    return page(
        "Account Detail",
        f"""  <h2>Account Detail</h2>
  <p><b>Name:</b> {esc(r.get("Name"))}</p>
  <p><b>Type:</b> {esc(r.get("Type"))}</p>
  <p><b>Industry:</b> {esc(r.get("Industry"))}</p>
  <p><b>Created:</b> {esc(_fmt_date(r.get("CreatedDate")))}</p>
  <p>
    <a href="/accounts/{esc(record_id)}/edit">Edit</a> |
    <a href="/accounts/table">Back</a>
  </p>
  <details style="margin-top:12px;">
    <summary>Raw JSON</summary>
    <pre>{esc(json.dumps(r, indent=2))}</pre>
  </details>""",
    )


@router.get("/accounts/{record_id}/edit", response_class=HTMLResponse)
def edit_account_form(record_id: str, session: AuthenticatedSession = Depends(require_session)):
    if not _RECORD_ID.match(record_id):
        return _not_found(record_id)
    try:
        r = session.connection.sobject("Account").retrieve(record_id)
    except RemoteCallFailed as e:
        return _remote_error_html(e)
    return page(
        "Edit Account",
        f"""  <h3>Edit Account</h3>
  <form method="post" action="/accounts/{esc(record_id)}/update">
    <p><input name="Name" placeholder="Name" value="{esc(r.get("Name"))}" required></p>
    <p><input name="Type" placeholder="Type" value="{esc(r.get("Type"))}"></p>
    <p><input name="Industry" placeholder="Industry" value="{esc(r.get("Industry"))}"></p>
    <button>Save</button> <a href="/accounts/{esc(record_id)}">Cancel</a>
  </form>""",
    )


@router.post("/accounts/{record_id}/update")
def update_account(
    record_id: str,
    Name: str = Form(...),
    Type: str = Form(""),
    Industry: str = Form(""),
    session: AuthenticatedSession = Depends(require_session),
):
    if not _RECORD_ID.match(record_id):
        return _not_found(record_id)
    try:
        session.connection.sobject("Account").update(record_id, _account_fields(Name, Type, Industry))
    except RemoteCallFailed as e:
        return _remote_error_html(e)
    return RedirectResponse(url=f"/accounts/{record_id}", status_code=302)


@router.post("/accounts/{record_id}/delete")
def delete_account(record_id: str, session: AuthenticatedSession = Depends(require_session)):
    if not _RECORD_ID.match(record_id):
        return _not_found(record_id)
    try:
        session.connection.sobject("Account").destroy(record_id)
    except RemoteCallFailed as e:
        return _remote_error_html(e)
    logger.info("Account %s deleted by user %s", record_id, session.identity.user_id)
    return RedirectResponse(url="/accounts/table", status_code=302)
