"""Two-phase bulk import endpoints for employees, companies, hierarchy and placements."""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from pydantic import BaseModel

from hr_console.core.config import settings
from hr_console.core.deps import get_hr_client
from hr_console.core.limiter import limiter
from hr_console.schemas.imports import ImportSessionCreated, ImportSessionOut
from hr_console.services.hr_api import HRApiClient
from hr_console.services.import_adapters import IMPORT_ADAPTERS, ImportAdapter, get_adapter
from hr_console.services.import_session import (
    ImportFile,
    ImportFileRejectedError,
    ImportSession,
    ImportSessionStateError,
)
from hr_console.services.list_cache import ListCache, get_list_cache
from hr_console.services.session_store import ImportSessionStore, get_session_store

logger = logging.getLogger(__name__)

router = APIRouter()


class ImportEntityOut(BaseModel):
    entity: str
    description: str
    max_file_size_bytes: int
    accepted_extensions: list[str]


# ─── Helpers ───

def _adapter_or_404(entity: str) -> ImportAdapter:
    try:
        return get_adapter(entity)
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown import entity '{entity}'. Allowed: {', '.join(sorted(IMPORT_ADAPTERS))}.",
        )


def _session_or_404(store: ImportSessionStore, session_id: str) -> ImportSession:
    try:
        return store.get(session_id)
    except KeyError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Import session not found or expired.")


def _conflict(exc: ImportSessionStateError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


# ─── GET /imports/entities ───

@router.get("/entities", response_model=list[ImportEntityOut], summary="List importable entities")
async def list_import_entities():
    return [
        ImportEntityOut(
            entity=adapter.entity,
            description=adapter.description,
            max_file_size_bytes=settings.IMPORT_MAX_FILE_SIZE_BYTES,
            accepted_extensions=[".xlsx", ".xls", ".csv"],
        )
        for adapter in IMPORT_ADAPTERS.values()
    ]


# ─── POST /imports/{entity}/sessions ───

@router.post(
    "/{entity}/sessions",
    response_model=ImportSessionCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Open an import session for an entity",
)
async def open_import_session(
    entity: str,
    client: Annotated[HRApiClient, Depends(get_hr_client)],
    store: Annotated[ImportSessionStore, Depends(get_session_store)],
):
    adapter = _adapter_or_404(entity)
    session = store.open(adapter, client)
    return ImportSessionCreated(session_id=session.session_id, entity=entity, state=session.state.value)


# ─── GET /imports/sessions/{id} ───

@router.get("/sessions/{session_id}", response_model=ImportSessionOut, summary="Get import session state")
async def get_import_session(
    session_id: str,
    store: Annotated[ImportSessionStore, Depends(get_session_store)],
):
    return _session_or_404(store, session_id).snapshot()


# ─── PUT /imports/sessions/{id}/file ───

@router.put(
    "/sessions/{session_id}/file",
    response_model=ImportSessionOut,
    summary="Select the spreadsheet to import (.xlsx, .xls, .csv; max 50 MB)",
)
@limiter.limit(settings.RATE_LIMIT_IMPORTS)
async def select_import_file(
    request: Request,
    session_id: str,
    file: Annotated[UploadFile, File(description="Excel or CSV file, max 50 MB")],
    store: Annotated[ImportSessionStore, Depends(get_session_store)],
):
    session = _session_or_404(store, session_id)

    # limit + 1 bytes is enough to flag an oversize upload
    content = await file.read(settings.IMPORT_MAX_FILE_SIZE_BYTES + 1)
    selected = ImportFile(
        filename=file.filename or "import",
        content_type=file.content_type or "",
        content=content,
    )
    try:
        session.select_file(selected)
    except ImportFileRejectedError as exc:
        raise HTTPException(
            status_code=(
                status.HTTP_413_REQUEST_ENTITY_TOO_LARGE if exc.too_large else status.HTTP_400_BAD_REQUEST
            ),
            detail=exc.message,
        )
    return session.snapshot()


# ─── POST /imports/sessions/{id}/validate ───

@router.post("/sessions/{session_id}/validate", response_model=ImportSessionOut, summary="Dry-run the selected file")
@limiter.limit(settings.RATE_LIMIT_IMPORTS)
async def validate_import(
    request: Request,
    session_id: str,
    client: Annotated[HRApiClient, Depends(get_hr_client)],
    store: Annotated[ImportSessionStore, Depends(get_session_store)],
):
    session = _session_or_404(store, session_id)
    session.client = client
    try:
        await session.validate()
    except ImportSessionStateError as exc:
        raise _conflict(exc)
    return session.snapshot()


# ─── POST /imports/sessions/{id}/commit ───

@router.post("/sessions/{session_id}/commit", response_model=ImportSessionOut, summary="Import the selected file")
@limiter.limit(settings.RATE_LIMIT_IMPORTS)
async def commit_import(
    request: Request,
    session_id: str,
    client: Annotated[HRApiClient, Depends(get_hr_client)],
    store: Annotated[ImportSessionStore, Depends(get_session_store)],
    cache: Annotated[ListCache, Depends(get_list_cache)],
):
    session = _session_or_404(store, session_id)
    adapter = _adapter_or_404(session.entity)
    session.client = client
    try:
        await adapter.commit(session, cache)
    except ImportSessionStateError as exc:
        raise _conflict(exc)
    return session.snapshot()


# ─── POST /imports/sessions/{id}/reset ───

@router.post("/sessions/{session_id}/reset", response_model=ImportSessionOut, summary="Clear file and results")
async def reset_import_session(
    session_id: str,
    store: Annotated[ImportSessionStore, Depends(get_session_store)],
):
    session = _session_or_404(store, session_id)
    session.reset()
    return session.snapshot()


# ─── DELETE /imports/sessions/{id} ───

@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Close an import session")
async def close_import_session(
    session_id: str,
    store: Annotated[ImportSessionStore, Depends(get_session_store)],
):
    _session_or_404(store, session_id)
    store.discard(session_id)
