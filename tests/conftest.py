import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="csv-records-test-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ["STORAGE_BASE"] = os.path.join(_TMP, "storage")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("DRAFT_DEBOUNCE_SECONDS", "0.05")

import io
import uuid

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook

from app.main import app
from app.services.agent_services import CapabilityGateway, get_gateway


class FakeRunner:
    """Stands in for the crew: canned text per agent role, or an exception to raise."""

    def __init__(self):
        self.responses = {}
        self.calls = []

    async def __call__(self, role, backstory, prompt, expected_output):
        self.calls.append((role, prompt))
        reply = self.responses.get(role, "")
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def client(runner):
    app.dependency_overrides[get_gateway] = lambda: CapabilityGateway(runner)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.pop(get_gateway, None)


def auth_headers(client, username="admin", password="admin"):
    resp = client.post("/auth/token", data={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.fixture
def admin_headers(client):
    return auth_headers(client)


@pytest.fixture
def operator_headers(client, admin_headers):
    username = f"op-{uuid.uuid4().hex[:8]}"
    resp = client.post(
        "/auth/users",
        json={"username": username, "password": "secret", "name": "Op Erator", "role": "Operator / Analyst"},
        headers=admin_headers,
    )
    assert resp.status_code == 200, resp.text
    return auth_headers(client, username, "secret")


def create_system(client, headers, category="Water System (WFI/PW)", name=None):
    resp = client.post(
        "/systems/",
        json={"name": name or f"Asset {uuid.uuid4().hex[:6]}", "category": category, "location": "Building A"},
        headers=headers,
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


def make_workbook(rows) -> bytes:
    """rows: list of lists written from A1; strings starting with '=' become formulas."""
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
