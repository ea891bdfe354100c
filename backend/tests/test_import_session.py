"""Tests for the two-phase import session: dry runs, commits, single-flight and staleness.

Requests are served by the in-memory FakeHRBackend from conftest.
"""
import asyncio

import httpx
import pytest

from hr_console.schemas.imports import ImportRowError
from hr_console.services.import_session import (
    ImportFile,
    ImportFileRejectedError,
    ImportSession,
    ImportSessionStateError,
    ImportState,
    build_import_result,
    check_import_file,
)

EMPLOYEE_ENDPOINT = "/api/employees/import/"
INVALID_EMAIL = ImportRowError(row=2, field="email", message="Enter a valid email address.")


# ─── Helpers ──────────────────────────────────────────────────────────────────

def make_session(hr_client, field_key_map=None) -> ImportSession:
    return ImportSession(
        client=hr_client,
        endpoint=EMPLOYEE_ENDPOINT,
        field_key_map=field_key_map,
        entity="employees",
        session_id="test-session",
    )


def csv_file(content: bytes, filename: str = "employees.csv", content_type: str = "text/csv") -> ImportFile:
    return ImportFile(filename=filename, content_type=content_type, content=content)


async def wait_until(predicate, attempts: int = 200) -> None:
    """Yield to the event loop until `predicate()` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


# ─── File checks ──────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "filename, content_type",
    [
        ("employees.xlsx", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"),
        ("employees.xls", "application/vnd.ms-excel"),
        ("employees.csv", "text/csv"),
        ("employees.csv", "application/csv"),
        ("employees.csv", "application/vnd.ms-excel"),
        ("EMPLOYEES.CSV", "text/csv; charset=utf-8"),
    ],
)
def test_accepted_spreadsheets(filename, content_type):
    check_import_file(ImportFile(filename=filename, content_type=content_type, content=b"x"))


@pytest.mark.parametrize(
    "filename, content_type",
    [
        ("report.pdf", "application/pdf"),
        ("employees.txt", "text/csv"),
        ("employees.csv", "text/plain"),
        ("employees", ""),
    ],
)
def test_rejected_file_types(filename, content_type):
    with pytest.raises(ImportFileRejectedError) as exc_info:
        check_import_file(ImportFile(filename=filename, content_type=content_type, content=b"x"))
    assert not exc_info.value.too_large


def test_empty_file_rejected():
    with pytest.raises(ImportFileRejectedError, match="empty"):
        check_import_file(csv_file(b""))


def test_oversize_file_rejected():
    with pytest.raises(ImportFileRejectedError) as exc_info:
        check_import_file(csv_file(b"x" * 11), max_size=10)
    assert exc_info.value.too_large


def test_rejected_file_leaves_session_untouched(hr_client):
    session = make_session(hr_client)
    with pytest.raises(ImportFileRejectedError):
        session.select_file(csv_file(b"a,b", filename="notes.txt"))
    assert session.state == ImportState.IDLE
    assert session.file is None


# ─── Result building ──────────────────────────────────────────────────────────

def test_build_result_wraps_keyed_errors():
    result = build_import_result(
        {"created": "2", "updated": 1, "errors": {"rows": {"4": {"title": ["Unknown"]}}}},
        dry_run=False,
        field_key_map={"title": "position"},
    )
    assert result.created_count == 2
    assert result.errors == [{"rows": {"4": {"title": ["Unknown"]}}}]
    assert result.row_errors == [ImportRowError(row=4, field="title", message="Unknown")]
    assert result.field_errors == {"position": ["Unknown"]}
    assert result.should_refresh


def test_build_result_without_errors():
    result = build_import_result({"validated_count": 3, "to_create": 2, "to_update": 1}, dry_run=True)
    assert result.errors == []
    assert result.error_count == 0
    assert result.validated_count == 3
    assert not result.should_refresh


def test_commit_with_nothing_persisted_does_not_refresh():
    result = build_import_result({"created": 0, "updated": 0, "errors": ["Row 1 invalid"]}, dry_run=False)
    assert not result.should_refresh
    assert result.row_errors == [ImportRowError(row=0, message="Row 1 invalid")]


@pytest.mark.parametrize("bad", [-3, float("inf"), float("nan"), "lots", True])
def test_unusable_counts_fall_back(bad):
    result = build_import_result(
        {"created": bad, "updated": bad, "validated_count": bad, "to_create": bad}, dry_run=False,
    )
    assert result.created_count == 0
    assert result.updated_count == 0
    assert result.validated_count is None
    assert result.to_create is None


@pytest.mark.asyncio
async def test_non_finite_counts_still_produce_a_result(hr_client, hr_backend, two_row_employee_csv):
    hr_backend.fail_with = httpx.Response(
        200,
        content=b'{"validated_count": 1e400, "to_create": -1}',
        headers={"content-type": "application/json"},
    )
    session = make_session(hr_client)
    session.select_file(csv_file(two_row_employee_csv))

    result = await session.validate()

    assert result.dry_run
    assert result.validated_count is None
    assert result.to_create is None
    assert session.state == ImportState.VALIDATED


# ─── Dry run and commit ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_dry_run_twice_persists_nothing(hr_client, hr_backend, two_row_employee_csv):
    session = make_session(hr_client)
    session.select_file(csv_file(two_row_employee_csv))

    first = await session.validate()
    second = await session.validate()

    assert hr_backend.employees == {}
    assert hr_backend.import_calls == 2
    assert all(r.url.params.get("dry_run") == "true" for r in hr_backend.requests)
    for result in (first, second):
        assert result.dry_run
        assert result.validated_count == 1
        assert result.to_create == 1
        assert result.row_errors == [INVALID_EMAIL]
    assert session.state == ImportState.VALIDATED
    assert session.result is second


@pytest.mark.asyncio
async def test_commit_creates_valid_rows_and_reports_errors(hr_client, hr_backend, two_row_employee_csv):
    session = make_session(hr_client)
    session.select_file(csv_file(two_row_employee_csv))
    await session.validate()

    result = await session.commit()

    assert not result.dry_run
    assert result.created_count == 1
    assert result.updated_count == 0
    assert result.row_errors == [INVALID_EMAIL]
    assert result.field_errors == {"email": ["Enter a valid email address."]}
    assert list(hr_backend.employees) == ["john.doe@example.com"]
    assert "dry_run" not in hr_backend.requests[-1].url.params
    assert session.state == ImportState.IMPORTED


@pytest.mark.asyncio
async def test_second_commit_reports_updates(hr_client, hr_backend, two_row_employee_csv):
    session = make_session(hr_client)
    session.select_file(csv_file(two_row_employee_csv))
    await session.commit()

    result = await session.commit()

    assert result.created_count == 0
    assert result.updated_count == 1


@pytest.mark.asyncio
async def test_validate_without_file_rejected(hr_client):
    session = make_session(hr_client)
    with pytest.raises(ImportSessionStateError):
        await session.validate()


# ─── Failures ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_connection_refused_becomes_general_error(hr_client, hr_backend, two_row_employee_csv):
    hr_backend.fail_with = httpx.ConnectError("[Errno 111] Connection refused")
    session = make_session(hr_client)
    session.select_file(csv_file(two_row_employee_csv))

    result = await session.validate()

    assert result.failed
    assert result.message == "Connection refused - server may be down"
    assert result.row_errors == [ImportRowError(row=0, message="Connection refused - server may be down")]
    assert result.field_errors == {"general": ["Connection refused - server may be down"]}


@pytest.mark.asyncio
async def test_server_error_without_body(hr_client, hr_backend, two_row_employee_csv):
    hr_backend.fail_with = httpx.Response(500, text="<html>boom</html>")
    session = make_session(hr_client)
    session.select_file(csv_file(two_row_employee_csv))

    result = await session.commit()

    assert result.failed
    assert result.message == "Server error (500)"
    assert not result.should_refresh


@pytest.mark.asyncio
async def test_validation_error_body_is_normalized(hr_client, hr_backend, two_row_employee_csv):
    hr_backend.fail_with = httpx.Response(400, json={
        "message": "Import validation errors",
        "errors": {"rows": {"3": {"title": ["Unknown title"]}}},
    })
    session = make_session(hr_client, field_key_map={"title": "position"})
    session.select_file(csv_file(two_row_employee_csv))

    result = await session.validate()

    assert result.failed
    assert result.message == "Import validation errors"
    assert result.row_errors == [ImportRowError(row=3, field="title", message="Unknown title")]
    assert result.field_errors == {"position": ["Unknown title"]}


# ─── Concurrency ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_concurrent_validations_share_one_request(hr_client, hr_backend, two_row_employee_csv):
    hr_backend.gate = asyncio.Event()
    session = make_session(hr_client)
    session.select_file(csv_file(two_row_employee_csv))

    first = asyncio.create_task(session.validate())
    await wait_until(lambda: hr_backend.import_calls == 1)
    second = asyncio.create_task(session.validate())
    await asyncio.sleep(0)
    assert session.in_flight
    assert session.state == ImportState.VALIDATING

    hr_backend.gate.set()
    r1, r2 = await asyncio.gather(first, second)

    assert r1 is r2
    assert hr_backend.import_calls == 1
    assert not session.in_flight


@pytest.mark.asyncio
async def test_commit_during_validation_rejected(hr_client, hr_backend, two_row_employee_csv):
    hr_backend.gate = asyncio.Event()
    session = make_session(hr_client)
    session.select_file(csv_file(two_row_employee_csv))

    validation = asyncio.create_task(session.validate())
    await wait_until(lambda: hr_backend.import_calls == 1)

    with pytest.raises(ImportSessionStateError, match="Validation already in progress"):
        await session.commit()

    hr_backend.gate.set()
    result = await validation
    assert result.dry_run
    assert hr_backend.employees == {}


@pytest.mark.asyncio
async def test_reset_mid_flight_discards_response(hr_client, hr_backend, two_row_employee_csv):
    hr_backend.gate = asyncio.Event()
    session = make_session(hr_client)
    session.select_file(csv_file(two_row_employee_csv))

    validation = asyncio.create_task(session.validate())
    await wait_until(lambda: hr_backend.import_calls == 1)
    session.reset()
    assert session.state == ImportState.IDLE
    assert not session.in_flight

    hr_backend.gate.set()
    stale = await validation

    assert stale.dry_run
    assert session.result is None
    assert session.state == ImportState.IDLE


@pytest.mark.asyncio
async def test_reset_mid_commit_then_validate_keeps_latest(hr_client, hr_backend, two_row_employee_csv):
    """The displayed result comes from the most recently initiated call."""
    hr_backend.gate = asyncio.Event()
    session = make_session(hr_client)
    session.select_file(csv_file(two_row_employee_csv))

    commit = asyncio.create_task(session.commit())
    await wait_until(lambda: hr_backend.import_calls == 1)
    session.reset()
    session.select_file(csv_file(two_row_employee_csv))
    validation = asyncio.create_task(session.validate())
    await wait_until(lambda: hr_backend.import_calls == 2)

    hr_backend.gate.set()
    stale, latest = await asyncio.gather(commit, validation)

    assert not stale.dry_run
    assert session.result is latest
    assert session.result.dry_run
    assert session.state == ImportState.VALIDATED


@pytest.mark.asyncio
async def test_new_file_mid_flight_supersedes_call(hr_client, hr_backend, two_row_employee_csv):
    hr_backend.gate = asyncio.Event()
    session = make_session(hr_client)
    session.select_file(csv_file(two_row_employee_csv))

    validation = asyncio.create_task(session.validate())
    await wait_until(lambda: hr_backend.import_calls == 1)
    session.select_file(csv_file(b"name,email\nAnn Lee,ann@example.com\n", filename="other.csv"))

    hr_backend.gate.set()
    await validation

    assert session.state == ImportState.FILE_SELECTED
    assert session.result is None
    assert session.file.filename == "other.csv"


# ─── Snapshot ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_snapshot_reports_file_and_result(hr_client, two_row_employee_csv):
    session = make_session(hr_client)
    session.select_file(csv_file(two_row_employee_csv))
    await session.validate()

    snapshot = session.snapshot()

    assert snapshot.state == "validated"
    assert snapshot.file.filename == "employees.csv"
    assert snapshot.file.size == len(two_row_employee_csv)
    assert snapshot.result.error_count == 1
    assert snapshot.in_flight is False
