"""Two-phase (dry run, then commit) bulk import sessions.

One ImportSession covers one import dialog: a file is selected, validated with
a dry run any number of times, then committed. Calls are single-flight per
session, and a reset or a new file selection makes any in-flight call stale so
its response is never applied.
"""
import asyncio
import enum
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from hr_console.core.config import settings
from hr_console.schemas.imports import ImportFileOut, ImportResult, ImportSessionOut
from hr_console.services.error_tree import flatten_to_field_errors, flatten_to_row_errors
from hr_console.services.hr_api import HRApiClient, HRApiError

logger = logging.getLogger(__name__)

# ─── Constants ───

ALLOWED_MIME_TYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",  # .xlsx
    "application/vnd.ms-excel",  # .xls (also sent for .csv by some browsers)
    "text/csv",
    "application/csv",
    "text/x-csv",
    "application/x-csv",
    "text/comma-separated-values",
}
ALLOWED_EXTENSIONS = {".xlsx", ".xls", ".csv"}


class ImportState(str, enum.Enum):
    IDLE = "idle"
    FILE_SELECTED = "file_selected"
    VALIDATING = "validating"
    VALIDATED = "validated"
    IMPORTING = "importing"
    IMPORTED = "imported"


_RUNNABLE_STATES = {ImportState.FILE_SELECTED, ImportState.VALIDATED, ImportState.IMPORTED}


# ─── Errors ───

class ImportFileRejectedError(ValueError):
    """The selected file failed client-side checks; nothing was sent."""

    def __init__(self, message: str, too_large: bool = False):
        super().__init__(message)
        self.message = message
        self.too_large = too_large


class ImportSessionStateError(RuntimeError):
    """The requested operation is not allowed in the session's current state."""


# ─── Types ───

@dataclass(frozen=True)
class ImportFile:
    filename: str
    content_type: str
    content: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename)[1].lower()


def check_import_file(file: ImportFile, max_size: int | None = None) -> None:
    """Raise ImportFileRejectedError unless `file` is an acceptable spreadsheet."""
    limit = max_size if max_size is not None else settings.IMPORT_MAX_FILE_SIZE_BYTES
    content_type = (file.content_type or "").split(";")[0].strip().lower()
    if content_type not in ALLOWED_MIME_TYPES or file.extension not in ALLOWED_EXTENSIONS:
        raise ImportFileRejectedError(
            f"Unsupported file '{file.filename}' ({content_type or 'unknown type'}). "
            "Allowed: Excel or CSV files (.xlsx, .xls, .csv)."
        )
    if file.size == 0:
        raise ImportFileRejectedError("Uploaded file is empty.")
    if file.size > limit:
        raise ImportFileRejectedError(
            f"File exceeds {limit // (1024 * 1024)} MB limit ({file.size} bytes).",
            too_large=True,
        )


def _count(value: Any) -> int | None:
    """A non-negative integer count, or None when the value is missing or unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        count = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return count if count >= 0 else None


def build_import_result(
    body: Mapping[str, Any],
    dry_run: bool,
    field_key_map: Mapping[str, str] | None = None,
) -> ImportResult:
    """Build an ImportResult from an import endpoint's JSON body."""
    raw_errors = body.get("errors")
    if raw_errors is None or raw_errors == [] or raw_errors == {}:
        errors: list[Any] = []
    elif isinstance(raw_errors, list):
        errors = raw_errors
    else:
        # keyed object or bare string: keep it whole as one payload
        errors = [raw_errors]

    message = body.get("message")
    return ImportResult(
        created_count=_count(body.get("created")) or 0,
        updated_count=_count(body.get("updated")) or 0,
        validated_count=_count(body.get("validated_count")),
        to_create=_count(body.get("to_create")),
        to_update=_count(body.get("to_update")),
        message=message if isinstance(message, str) else None,
        errors=errors,
        dry_run=dry_run,
        row_errors=flatten_to_row_errors(errors),
        field_errors=flatten_to_field_errors(errors, field_key_map),
    )


def build_failure_result(
    error: HRApiError,
    dry_run: bool,
    field_key_map: Mapping[str, str] | None = None,
) -> ImportResult:
    """Wrap a failed request so it renders through the same error path."""
    payload = error.to_error_payload()
    errors = payload if isinstance(payload, list) else [payload]
    return ImportResult(
        message=error.message,
        errors=errors,
        dry_run=dry_run,
        failed=True,
        row_errors=flatten_to_row_errors(errors),
        field_errors=flatten_to_field_errors(errors, field_key_map),
    )


# ─── Session ───

class ImportSession:
    def __init__(
        self,
        client: HRApiClient,
        endpoint: str,
        field_key_map: Mapping[str, str] | None = None,
        entity: str = "",
        session_id: str = "",
    ):
        self.client = client
        self.endpoint = endpoint
        self.field_key_map = dict(field_key_map or {})
        self.entity = entity
        self.session_id = session_id
        self.state = ImportState.IDLE
        self.file: ImportFile | None = None
        self.result: ImportResult | None = None
        self.updated_at = datetime.now(timezone.utc)
        self._generation = 0
        self._inflight: asyncio.Task | None = None
        self._inflight_dry_run: bool | None = None

    # ─── Properties ───

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def _touch(self, state: ImportState) -> None:
        self.state = state
        self.updated_at = datetime.now(timezone.utc)

    def _supersede(self) -> None:
        """Make any in-flight call stale."""
        self._generation += 1
        self._inflight = None
        self._inflight_dry_run = None

    # ─── Transitions ───

    def select_file(self, file: ImportFile) -> ImportState:
        check_import_file(file)
        if self.in_flight:
            logger.info("Import session %s: new file selected mid-flight, superseding call", self.session_id)
        self._supersede()
        self.file = file
        self.result = None
        self._touch(ImportState.FILE_SELECTED)
        return self.state

    async def validate(self) -> ImportResult:
        return await self._run(dry_run=True)

    async def commit(self) -> ImportResult:
        return await self._run(dry_run=False)

    def reset(self) -> None:
        if self.in_flight:
            logger.info("Import session %s reset mid-flight; response will be ignored", self.session_id)
        self._supersede()
        self.file = None
        self.result = None
        self._touch(ImportState.IDLE)

    # ─── Execution ───

    async def _run(self, dry_run: bool) -> ImportResult:
        if self.in_flight:
            if self._inflight_dry_run != dry_run:
                running = "validation" if self._inflight_dry_run else "import"
                raise ImportSessionStateError(f"{running.capitalize()} already in progress for this session")
            return await asyncio.shield(self._inflight)

        if self.file is None or self.state not in _RUNNABLE_STATES:
            raise ImportSessionStateError(f"Cannot {'validate' if dry_run else 'commit'} from state '{self.state.value}'")

        generation = self._generation
        previous_state = self.state
        self._touch(ImportState.VALIDATING if dry_run else ImportState.IMPORTING)
        self._inflight_dry_run = dry_run
        self._inflight = asyncio.ensure_future(self._execute(self.file, dry_run, generation, previous_state))
        return await asyncio.shield(self._inflight)

    async def _execute(
        self,
        file: ImportFile,
        dry_run: bool,
        generation: int,
        previous_state: ImportState,
    ) -> ImportResult:
        try:
            body = await self.client.post_import(
                self.endpoint, file.filename, file.content, file.content_type, dry_run=dry_run,
            )
            result = build_import_result(body, dry_run, self.field_key_map)
        except HRApiError as exc:
            logger.warning("Import %s (%s, dry_run=%s) failed: %s", self.session_id, self.entity, dry_run, exc.message)
            result = build_failure_result(exc, dry_run, self.field_key_map)
        except BaseException:
            if generation == self._generation:
                self._inflight = None
                self._inflight_dry_run = None
                self._touch(previous_state)
            raise

        if generation != self._generation:
            logger.info("Discarding stale import response for session %s (dry_run=%s)", self.session_id, dry_run)
            return result

        self.result = result
        self._inflight = None
        self._inflight_dry_run = None
        self._touch(ImportState.VALIDATED if dry_run else ImportState.IMPORTED)
        logger.info(
            "Import %s (%s, dry_run=%s): created=%d updated=%d validated=%s errors=%d",
            self.session_id, self.entity, dry_run,
            result.created_count, result.updated_count, result.validated_count, result.error_count,
        )
        return result

    # ─── Views ───

    def snapshot(self) -> ImportSessionOut:
        file_out = None
        if self.file is not None:
            file_out = ImportFileOut(
                filename=self.file.filename,
                content_type=self.file.content_type,
                size=self.file.size,
            )
        return ImportSessionOut(
            session_id=self.session_id,
            entity=self.entity,
            state=self.state.value,
            file=file_out,
            result=self.result,
            in_flight=self.in_flight,
            updated_at=self.updated_at,
        )
