"""
CRM web client configuration. All values come from the environment; no secrets in code.
"""
import os

# Connected App credentials registered in Salesforce
CLIENT_ID = os.environ.get("SF_CLIENT_ID", "")
# Optional: PKCE-only connected apps do not require a secret
CLIENT_SECRET = os.environ.get("SF_CLIENT_SECRET", "").strip() or None

# Salesforce login host (use https://test.salesforce.com for sandboxes)
LOGIN_URL = os.environ.get("SF_LOGIN_URL", "https://login.salesforce.com").rstrip("/")

# Public base URL of this app; the callback below must be registered on the connected app
APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:3000").rstrip("/")
REDIRECT_URI = os.environ.get("SF_REDIRECT_URI", f"{APP_BASE_URL}/oauth/callback")

DEFAULT_SCOPE = os.environ.get("SF_SCOPE", "api refresh_token")

# REST API version used for /services/data/vXX.X/...
API_VERSION = os.environ.get("SF_API_VERSION", "59.0")

# Transport timeout (seconds) for token exchange and every CRM call
HTTP_TIMEOUT = float(os.environ.get("HTTP_TIMEOUT", "10"))

# Pending PKCE verifier lifetime: 10 minutes to complete the login round-trip
PENDING_TTL_SECONDS = int(os.environ.get("PENDING_TTL_SECONDS", "600"))

# Authenticated session lifetime; cookie max-age and server-side TTL use the same value
SESSION_TTL_SECONDS = int(os.environ.get("SESSION_TTL_SECONDS", "86400"))

# Set to true behind HTTPS so cookies get the Secure flag
COOKIE_SECURE = os.environ.get("COOKIE_SECURE", "false").lower() in ("1", "true", "yes")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
PORT = int(os.environ.get("PORT", "3000"))
