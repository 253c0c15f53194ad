"""
Minimal Salesforce REST client: OAuth2 authorization-code exchange (PKCE), identity,
SOQL query and per-object CRUD. Every call goes through httpx with a fixed timeout;
failures surface as TokenExchangeFailed or RemoteCallFailed, never retried.
"""
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import httpx

from crm_web.errors import RemoteCallFailed, TokenExchangeFailed

logger = logging.getLogger(__name__)

_SOQL_ESCAPES = {
    "\\": "\\\\",
    "'": "\\'",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\b": "\\b",
    "\f": "\\f",
}


def quote_soql(value: str) -> str:
    """Render a Python string as a quoted SOQL string literal."""
    return "'" + "".join(_SOQL_ESCAPES.get(ch, ch) for ch in value) + "'"


def quote_soql_contains(value: str) -> str:
    """Quoted LIKE pattern matching names that contain `value` literally (% and _ escaped)."""
    escapes = {**_SOQL_ESCAPES, "%": "\\%", "_": "\\_"}
    return "'%" + "".join(escapes.get(ch, ch) for ch in value) + "%'"


def _error_message(r: httpx.Response) -> tuple[str, str | None]:
    """Extract (message, errorCode) from a Salesforce error response."""
    try:
        body = r.json()
    except ValueError:
        return (r.text or f"HTTP {r.status_code}"), None
    # REST API errors: [{"message": ..., "errorCode": ...}]
    if isinstance(body, list) and body and isinstance(body[0], dict):
        return str(body[0].get("message", r.text)), body[0].get("errorCode")
    # OAuth errors: {"error": ..., "error_description": ...}
    if isinstance(body, dict):
        msg = body.get("error_description") or body.get("error") or body.get("message") or r.text
        return str(msg), body.get("error") or body.get("errorCode")
    return r.text, None


def parse_identity_url(identity_url: str) -> tuple[str, str]:
    """Split https://login.salesforce.com/id/<orgId>/<userId> into (org_id, user_id)."""
    parts = [p for p in urlparse(identity_url).path.split("/") if p]
    if len(parts) < 3 or parts[-3] != "id":
        raise TokenExchangeFailed(f"Unexpected identity URL in token response: {identity_url}")
    return parts[-2], parts[-1]


class SalesforceConnection:
    """Authenticated handle: access token + instance URL. Shared by all requests of one session."""

    def __init__(
        self,
        *,
        instance_url: str,
        access_token: str,
        identity_url: str | None = None,
        api_version: str = "59.0",
        timeout: float = 10.0,
    ):
        self.instance_url = instance_url.rstrip("/")
        self.access_token = access_token
        self.identity_url = identity_url
        self.api_version = api_version
        self.timeout = timeout

    @property
    def base_url(self) -> str:
        return f"{self.instance_url}/services/data/v{self.api_version}"

    def request(self, method: str, url: str, **kwargs) -> Any:
        """Send an authenticated request; return decoded JSON (None for 204)."""
        headers = {"Authorization": f"Bearer {self.access_token}", "Accept": "application/json"}
        try:
            r = httpx.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("Salesforce %s %s failed: %s", method, url, e)
            raise RemoteCallFailed(f"Request to Salesforce failed: {e}") from e
        if r.status_code >= 400:
            message, code = _error_message(r)
            logger.warning("Salesforce %s %s returned %s: %s", method, url, r.status_code, code or message)
            raise RemoteCallFailed(message, status_code=r.status_code, error_code=code)
        if r.status_code == 204 or not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            raise RemoteCallFailed(f"Salesforce returned a non-JSON response ({r.status_code})") from e

    def identity(self) -> dict[str, Any]:
        """Fetch the current user's identity document from the identity URL."""
        if not self.identity_url:
            raise RemoteCallFailed("No identity URL for this connection")
        ident = self.request("GET", self.identity_url)
        if not isinstance(ident, dict):
            raise RemoteCallFailed("Identity lookup returned no identity document")
        return ident

    def query(self, soql: str) -> dict[str, Any]:
        """Run a SOQL query; returns {totalSize, done, records}."""
        return self.request("GET", f"{self.base_url}/query", params={"q": soql})

    def sobject(self, name: str) -> "SObject":
        return SObject(self, name)


class SObject:
    """CRUD on one sObject type (e.g. Account)."""

    def __init__(self, connection: SalesforceConnection, name: str):
        self.connection = connection
        self.name = name

    @property
    def url(self) -> str:
        return f"{self.connection.base_url}/sobjects/{self.name}"

    def create(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Returns {id, success, errors}."""
        result = self.connection.request("POST", self.url, json=fields)
        if not result or not result.get("success"):
            raise RemoteCallFailed(f"Create {self.name} failed: {result}")
        return result

    def retrieve(self, record_id: str) -> dict[str, Any]:
        return self.connection.request("GET", f"{self.url}/{record_id}")

    def update(self, record_id: str, fields: dict[str, Any]) -> None:
        self.connection.request("PATCH", f"{self.url}/{record_id}", json=fields)

    def destroy(self, record_id: str) -> None:
        self.connection.request("DELETE", f"{self.url}/{record_id}")

    def find(self, fields: list[str], *, order_by: str | None = None, limit: int | None = None) -> list[dict]:
        """SELECT the given fields with no filter; returns records."""
        soql = f"SELECT {', '.join(fields)} FROM {self.name}"
        if order_by:
            soql += f" ORDER BY {order_by}"
        if limit is not None:
            soql += f" LIMIT {int(limit)}"
        return self.connection.query(soql).get("records", [])


@dataclass
class TokenGrant:
    access_token: str
    instance_url: str
    identity_url: str
    refresh_token: str | None = None
    scope: str = ""


class OAuth2Client:
    """Salesforce OAuth2 endpoints for one connected app."""

    def __init__(
        self,
        *,
        login_url: str,
        client_id: str,
        redirect_uri: str,
        client_secret: str | None = None,
        api_version: str = "59.0",
        timeout: float = 10.0,
    ):
        self.login_url = login_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.api_version = api_version
        self.timeout = timeout

    @property
    def token_url(self) -> str:
        return f"{self.login_url}/services/oauth2/token"

    def request_token(self, code: str, code_verifier: str) -> TokenGrant:
        """POST authorization_code grant with the PKCE verifier."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "code_verifier": code_verifier,
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret
        try:
            r = httpx.post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise TokenExchangeFailed(f"Token endpoint unreachable: {e}", unreachable=True) from e

        if r.status_code != 200:
            message, _ = _error_message(r)
            raise TokenExchangeFailed(message or "Token exchange failed")

        try:
            body = r.json()
            return TokenGrant(
                access_token=body["access_token"],
                instance_url=body["instance_url"],
                identity_url=body["id"],
                refresh_token=body.get("refresh_token"),
                scope=body.get("scope", ""),
            )
        except KeyError as e:
            raise TokenExchangeFailed(f"Token response missing {e.args[0]}") from e
        except ValueError as e:
            raise TokenExchangeFailed("Token response is not JSON") from e

    def authorize(self, code: str, code_verifier: str) -> tuple[SalesforceConnection, dict[str, Any]]:
        """
        Exchange the code and build a connection.
        Returns (connection, user_info) where user_info has id, organizationId, url and,
        when the identity lookup succeeds, username, email and displayName.
        """
        grant = self.request_token(code, code_verifier)
        org_id, user_id = parse_identity_url(grant.identity_url)
        conn = SalesforceConnection(
            instance_url=grant.instance_url,
            access_token=grant.access_token,
            identity_url=grant.identity_url,
            api_version=self.api_version,
            timeout=self.timeout,
        )
        user_info: dict[str, Any] = {"id": user_id, "organizationId": org_id, "url": grant.identity_url}
        try:
            ident = conn.identity()
        except RemoteCallFailed as e:
            # Login still succeeds with the ids from the token response
            logger.warning("Identity lookup failed for user %s: %s", user_id, e.message)
        else:
            user_info.update(
                username=ident.get("username"),
                email=ident.get("email"),
                displayName=ident.get("display_name"),
            )
        return conn, user_info
