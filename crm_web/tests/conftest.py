"""
Shared fixtures: fresh stores per test (injected through dependency_overrides) and a
fake Salesforce connection so no test touches the network.
"""
import pytest
from fastapi.testclient import TestClient

from crm_web.auth import SESSION_COOKIE, get_oauth_client, get_pending_store, get_session_store
from crm_web.errors import RemoteCallFailed
from crm_web.main import app
from crm_web.session_store import AuthenticatedSession, Identity, InMemorySessionStore


class FakeSObject:
    def __init__(self, conn, name):
        self.conn = conn
        self.name = name

    def _call(self, op, *args):
        self.conn.calls.append((self.name, op) + args)
        if self.conn.fail:
            raise RemoteCallFailed(self.conn.fail)

    def create(self, fields):
        self._call("create", fields)
        return {"id": "001000000000001AAA", "success": True, "errors": []}

    def retrieve(self, record_id):
        self._call("retrieve", record_id)
        return self.conn.records.get(record_id, {"Id": record_id})

    def update(self, record_id, fields):
        self._call("update", record_id, fields)

    def destroy(self, record_id):
        self._call("destroy", record_id)

    def find(self, fields, *, order_by=None, limit=None):
        self._call("find", fields)
        return list(self.conn.records.values())[:limit]


class FakeConnection:
    """Stands in for SalesforceConnection; records every call."""

    def __init__(self, records=None, fail=None):
        self.records = records or {}
        self.fail = fail
        self.calls = []
        self.queries = []

    def query(self, soql):
        self.queries.append(soql)
        if self.fail:
            raise RemoteCallFailed(self.fail)
        return {"totalSize": len(self.records), "done": True, "records": list(self.records.values())}

    def identity(self):
        return {"user_id": "u1", "organization_id": "org1"}

    def sobject(self, name):
        return FakeSObject(self, name)


class StubOAuth:
    """Stands in for OAuth2Client; remembers the verifier it was given."""

    def __init__(self, user_info=None, error=None):
        self.user_info = user_info or {"id": "u1", "organizationId": "org1"}
        self.error = error
        self.calls = []
        self.connection = FakeConnection()

    def authorize(self, code, code_verifier):
        self.calls.append((code, code_verifier))
        if self.error:
            raise self.error
        return self.connection, dict(self.user_info)


@pytest.fixture
def pending_store():
    return InMemorySessionStore(ttl_seconds=600)


@pytest.fixture
def session_store():
    return InMemorySessionStore(ttl_seconds=86400)


@pytest.fixture
def oauth():
    return StubOAuth()


@pytest.fixture
def client(pending_store, session_store, oauth):
    app.dependency_overrides[get_pending_store] = lambda: pending_store
    app.dependency_overrides[get_session_store] = lambda: session_store
    app.dependency_overrides[get_oauth_client] = lambda: oauth
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def connection():
    return FakeConnection(
        records={
            "001000000000001AAA": {
                "Id": "001000000000001AAA",
                "Name": "Acme <Corp>",
                "Type": "Customer",
                "Industry": "Energy",
                "CreatedDate": "2024-01-02T03:04:05.000+0000",
            }
        }
    )


@pytest.fixture
def logged_in(client, session_store, connection):
    """Client carrying a valid sessionId cookie."""
    session_id = session_store.create(
        AuthenticatedSession(
            connection=connection,
            identity=Identity(user_id="u1", organization_id="org1", username="jane@example.com"),
        )
    )
    client.cookies.set(SESSION_COOKIE, session_id)
    return client
