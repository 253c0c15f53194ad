"""
PKCE (RFC 7636) helpers and Salesforce authorize URL builder.
S256 only.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode
from urllib.parse import urlencode


def code_challenge_for(code_verifier: str) -> str:
    """base64url(SHA-256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce() -> tuple[str, str]:
    """New (code_verifier, code_challenge) pair for one login attempt."""
    # 256 random bits, 43 url-safe chars: inside the 43..128 range Salesforce accepts
    code_verifier = secrets.token_urlsafe(32)
    return code_verifier, code_challenge_for(code_verifier)


def build_authorize_url(
    *,
    login_url: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    code_challenge: str,
) -> str:
    """Build the Salesforce /services/oauth2/authorize URL."""
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": scope,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{login_url}/services/oauth2/authorize?{urlencode(params)}"
