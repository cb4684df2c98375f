"""
Shared fixtures: an in-memory CRM backend behind httpx.MockTransport and an
in-memory activity log collection.

Directory (branch delhi unless noted):
    m1  manager
    t1  team_lead, team = [c1]
    c1  counselor, team lead t1
    c3  counselor, no team
    h1  counselor, hyderabad
    k1  counselor, kashmir
"""

import asyncio
import json
import uuid

import httpx
import pytest
from fastapi.testclient import TestClient

BACKEND_URL = "http://backend.test/api/v1"
PASSWORD = "Dmhca2025!"
TODAY = "2025-01-15"


def make_user(user_id, role, branch="delhi", **extra):
    user = {
        "id": user_id,
        "username": user_id,
        "name": f"User {user_id}",
        "email": f"{user_id}@dmhca.in",
        "role": role,
        "branch": branch,
        "isActive": True,
        "permissions": [],
        "createdBy": "m1",
    }
    user.update(extra)
    return user


def make_lead(lead_id, branch, assigned=None, status="fresh", follow_up=None):
    return {
        "id": lead_id,
        "leadId": f"DMHCA-{lead_id}",
        "name": f"Dr. {lead_id}",
        "email": f"{lead_id.lower()}@example.org",
        "country": "IN",
        "phone": "+919800000000",
        "course": "Fellowship in Emergency Medicine",
        "qualification": "mbbs",
        "status": status,
        "followUpDate": follow_up,
        "notes": [],
        "assignedCounselor": assigned,
        "branch": branch,
        "source": "website",
        "leadScore": 50,
        "createdAt": "2025-01-10T09:00:00+00:00",
        "updatedAt": "2025-01-10T09:00:00+00:00",
    }


USERS = [
    make_user("m1", "manager"),
    make_user("t1", "team_lead", teamMembers=["c1"]),
    make_user("c1", "counselor", teamLeadId="t1"),
    make_user("c3", "counselor"),
    make_user("h1", "counselor", branch="hyderabad"),
    make_user("k1", "counselor", branch="kashmir"),
]

# 10 leads across the three branches.
# team lead t1 sees L1-L4, counselor c1 sees L1-L2, manager sees all.
# L1, L5 and L8 have a follow-up today.
LEADS = [
    make_lead("L1", "delhi", "c1", status="hot", follow_up=TODAY),
    make_lead("L2", "delhi", "c1"),
    make_lead("L3", "delhi", "t1", status="warm"),
    make_lead("L4", "delhi", "t1"),
    make_lead("L5", "delhi", "c3", follow_up=TODAY),
    make_lead("L6", "delhi", None),
    make_lead("L7", "hyderabad", "c1"),
    make_lead("L8", "hyderabad", "h1", follow_up=TODAY),
    make_lead("L9", "kashmir", "k1"),
    make_lead("L10", "kashmir", None),
]


def run(coro):
    """Run async code in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def auth_h(user_id):
    return {"Authorization": f"Bearer token-{user_id}"}


# ═══════════════════════════════════════════════════════════════
# FAKE CRM BACKEND
# ═══════════════════════════════════════════════════════════════

class FakeBackend:
    def __init__(self):
        self.users = {u["id"]: json.loads(json.dumps(u)) for u in USERS}
        self.leads = [json.loads(json.dumps(lead)) for lead in LEADS]
        self.requests = []
        self.fail_next = []
        self.broken = set()

    def transport(self):
        return httpx.MockTransport(self.handler)

    def _lead(self, lead_id):
        return next((lead for lead in self.leads if lead["id"] == lead_id), None)

    def _authenticated(self, request):
        token = request.headers.get("Authorization", "")[len("Bearer "):]
        if not token.startswith("token-"):
            return None
        return self.users.get(token[len("token-"):])

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_next:
            return httpx.Response(self.fail_next.pop(0), json={"message": "Backend failure"})

        path = request.url.path[len("/api/v1"):]
        if path in self.broken:
            return httpx.Response(500, json={"message": "Backend failure"})
        method = request.method
        body = json.loads(request.content) if request.content else {}

        if path == "/health":
            return httpx.Response(200, json={"status": "ok", "database": True, "version": "1.4.0"})

        if path == "/auth/login":
            user = next((u for u in self.users.values() if u["email"] == body.get("email")), None)
            if not user or body.get("password") != PASSWORD:
                return httpx.Response(401, json={"message": "Invalid credentials"})
            return httpx.Response(200, json={
                "token": f"token-{user['id']}",
                "refreshToken": f"refresh-{user['id']}",
                "user": user,
            })

        if path == "/auth/refresh":
            token = body.get("refreshToken", "")
            if not token.startswith("refresh-"):
                return httpx.Response(401, json={"message": "Invalid refresh token"})
            user_id = token[len("refresh-"):]
            return httpx.Response(200, json={"token": f"token-{user_id}", "refreshToken": f"refresh-{user_id}"})

        me = self._authenticated(request)
        if me is None:
            return httpx.Response(401, json={"message": "Unauthorized"})

        if path == "/auth/me":
            return httpx.Response(200, json={"data": me})
        if path == "/auth/logout":
            return httpx.Response(200, json={"success": True})

        if path == "/leads" and method == "GET":
            rows = self.leads
            statuses = request.url.params.get_list("status")
            branches = request.url.params.get_list("branch")
            if statuses:
                rows = [r for r in rows if r["status"] in statuses]
            if branches:
                rows = [r for r in rows if r["branch"] in branches]
            return httpx.Response(200, json={
                "data": rows,
                "pagination": {"page": 1, "limit": 20, "total": len(rows), "totalPages": 1},
            })

        if path == "/analytics/followups/today":
            rows = [r for r in self.leads if r.get("followUpDate") == TODAY]
            return httpx.Response(200, json={"data": rows})

        if path == "/leads" and method == "POST":
            lead = dict(body, id=str(uuid.uuid4()))
            self.leads.append(lead)
            return httpx.Response(201, json={"data": lead})

        if path.startswith("/leads/"):
            parts = path.split("/")
            lead = self._lead(parts[2])
            if lead is None:
                return httpx.Response(404, json={"message": "Lead not found"})
            action = parts[3] if len(parts) > 3 else None

            if action is None and method == "GET":
                return httpx.Response(200, json={"data": lead})
            if action is None and method == "PUT":
                lead.update(body)
                return httpx.Response(200, json={"data": lead})
            if action is None and method == "DELETE":
                self.leads.remove(lead)
                return httpx.Response(204)
            if action == "assign":
                lead["assignedCounselor"] = body["assignedTo"]
                return httpx.Response(200, json={"success": True})
            if action == "status":
                lead["status"] = body["status"]
                return httpx.Response(200, json={"data": lead})
            if action == "notes":
                lead["notes"].append({"id": str(uuid.uuid4()), "content": body["note"], "author": me["id"]})
                return httpx.Response(201, json={"success": True})

        if path == "/users" and method == "GET":
            rows = list(self.users.values())
            return httpx.Response(200, json={
                "data": rows,
                "pagination": {"page": 1, "limit": 50, "total": len(rows), "totalPages": 1},
            })

        if path == "/users" and method == "POST":
            user = dict(body, id=str(uuid.uuid4()))
            self.users[user["id"]] = user
            return httpx.Response(201, json={"data": user})

        if path.startswith("/users/"):
            user = self.users.get(path.split("/")[2])
            if user is None:
                return httpx.Response(404, json={"message": "User not found"})
            if method == "PUT":
                user.update(body)
                return httpx.Response(200, json={"data": user})
            if method == "DELETE":
                user["isActive"] = False
                return httpx.Response(204)

        if path == "/courses":
            return httpx.Response(200, json={"data": [
                {"id": "co1", "name": "Fellowship in Emergency Medicine", "category": "fellowship"},
            ]})

        return httpx.Response(404, json={"message": f"No route {method} {path}"})


# ═══════════════════════════════════════════════════════════════
# FAKE ACTIVITY LOG COLLECTION
# ═══════════════════════════════════════════════════════════════

class FakeCursor:
    def __init__(self, docs):
        self.docs = docs

    def sort(self, key, direction):
        self.docs = sorted(self.docs, key=lambda d: d.get(key) or "", reverse=direction < 0)
        return self

    def skip(self, n):
        self.docs = self.docs[n:]
        return self

    def limit(self, n):
        self.docs = self.docs[:n]
        return self

    async def to_list(self, length):
        return self.docs[:length]


class FakeCollection:
    def __init__(self):
        self.docs = []

    @staticmethod
    def _field_matches(value, condition):
        if isinstance(condition, dict):
            return value is not None and value >= condition["$gte"]
        return value == condition

    def _match(self, query):
        return [
            d for d in self.docs
            if all(self._field_matches(d.get(k), v) for k, v in query.items())
        ]

    async def insert_one(self, doc):
        self.docs.append(doc)

    def find(self, query, projection=None):
        return FakeCursor(self._match(query))

    async def count_documents(self, query):
        return len(self._match(query))


class FakeDB:
    def __init__(self):
        self.activity_logs = FakeCollection()


# ═══════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════

@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def api_client(backend):
    from dmhca_crm.services.api_client import CRMApiClient
    return CRMApiClient(base_url=BACKEND_URL, retry_delay=0, transport=backend.transport())


@pytest.fixture
def activity_db(monkeypatch):
    from dmhca_crm.services import activity_logger
    fake = FakeDB()
    monkeypatch.setattr(activity_logger, "db", fake)
    return fake


@pytest.fixture
def client(backend, activity_db):
    from dmhca_crm.server import app
    from dmhca_crm.routes.auth import get_api_client
    from dmhca_crm.services.api_client import CRMApiClient

    app.dependency_overrides[get_api_client] = lambda: CRMApiClient(
        base_url=BACKEND_URL, retry_delay=0, transport=backend.transport()
    )
    yield TestClient(app)
    app.dependency_overrides.clear()
