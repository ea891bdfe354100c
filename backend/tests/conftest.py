"""Shared fixtures for the HR console test suite."""
import asyncio
import csv
import io
import json
from pathlib import Path
from urllib.parse import urlencode

import httpx
import pytest

from hr_console.core.limiter import limiter
from hr_console.services.hr_api import HRApiClient

FIXTURES = Path(__file__).parent / "fixtures"


# ─── Fake HR API ──────────────────────────────────────────────────────────────

def _multipart_file(request: httpx.Request) -> bytes:
    """Return the body of the `file` part of a multipart upload."""
    boundary = request.headers["content-type"].split("boundary=")[1].encode()
    for part in request.content.split(b"--" + boundary):
        if b'name="file"' in part:
            return part.split(b"\r\n\r\n", 1)[1].rstrip(b"\r\n")
    return b""


class FakeHRBackend:
    """In-memory stand-in for the HR REST API, served through httpx.MockTransport.

    Employee imports key rows on email; data rows are numbered from 1.
    Set `gate` to an asyncio.Event to hold import requests until it is set.
    """

    def __init__(self):
        self.employees: dict[str, dict] = {}
        self.users: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.import_calls = 0
        self.gate: asyncio.Event | None = None
        self.page_size = 50
        self.fail_with: httpx.Response | Exception | None = None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.fail_with, Exception):
            raise self.fail_with
        if self.fail_with is not None:
            return self.fail_with

        path = request.url.path
        if path == "/api/employees/import/" and request.method == "POST":
            return await self._import_employees(request)
        if path == "/api/employees/" and request.method == "GET":
            return self._page(request, list(self.employees.values()))
        if path == "/api/accounts/users/" and request.method == "GET":
            return self._page(request, self.users)
        if path == "/api/accounts/users/" and request.method == "POST":
            return self._create_user(json.loads(request.content))
        if path in ("/api/org/companies/", "/api/org/departments/", "/api/org/placements/"):
            return httpx.Response(200, json={"count": 0, "next": None, "previous": None, "results": []})
        return httpx.Response(404, json={"detail": "Not found."})

    async def _import_employees(self, request: httpx.Request) -> httpx.Response:
        self.import_calls += 1
        if self.gate is not None:
            await self.gate.wait()

        dry_run = request.url.params.get("dry_run") == "true"
        rows = list(csv.DictReader(io.StringIO(_multipart_file(request).decode())))
        row_errors: dict[str, dict] = {}
        valid: list[dict] = []
        for number, row in enumerate(rows, start=1):
            email = row.get("email", "")
            if "@" not in email or "." not in email.split("@")[-1]:
                row_errors[str(number)] = {"email": ["Enter a valid email address."]}
            else:
                valid.append(row)

        to_update = sum(1 for row in valid if row["email"] in self.employees)
        to_create = len(valid) - to_update
        errors = {"rows": row_errors} if row_errors else []

        if dry_run:
            return httpx.Response(200, json={
                "validated_count": len(valid),
                "to_create": to_create,
                "to_update": to_update,
                "errors": errors,
                "message": f"{len(valid)} rows valid, {len(row_errors)} with errors",
            })

        for row in valid:
            self.employees[row["email"]] = {"id": len(self.employees) + 1, **row}
        return httpx.Response(200, json={
            "created": to_create,
            "updated": to_update,
            "errors": errors,
            "message": "Import finished",
        })

    def _page(self, request: httpx.Request, records: list[dict]) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        start = (page - 1) * self.page_size
        chunk = records[start:start + self.page_size]
        has_next = start + self.page_size < len(records)
        next_url = None
        if has_next:
            next_url = str(request.url.copy_with(query=urlencode({"page": page + 1}).encode()))
        return httpx.Response(200, json={
            "count": len(records),
            "next": next_url,
            "previous": None,
            "results": chunk,
        })

    def _create_user(self, payload: dict) -> httpx.Response:
        username = payload.get("username", "")
        if any(u["username"].lower() == username.lower() for u in self.users):
            return httpx.Response(400, json={"username": ["A user with that username already exists."]})
        user = {
            "id": len(self.users) + 1,
            "username": username,
            "email": payload.get("email"),
            "name": payload.get("name"),
            "role": payload.get("role"),
        }
        self.users.append(user)
        return httpx.Response(201, json=user)


# ─── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def _no_rate_limits():
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
def hr_backend() -> FakeHRBackend:
    return FakeHRBackend()


@pytest.fixture
def hr_client(hr_backend) -> HRApiClient:
    """HR API client whose requests are served by `hr_backend`."""
    return HRApiClient(token="test-token", transport=hr_backend.transport)


@pytest.fixture
def two_row_employee_csv() -> bytes:
    """Header + one valid row + one row with an invalid email."""
    return (FIXTURES / "employees_two_rows.csv").read_bytes()
