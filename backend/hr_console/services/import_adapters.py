"""Per-entity import adapters.

An adapter only supplies what differs between import flows: the endpoint,
the backend → UI field-name table, and which lists to refresh after a commit.
Validation, normalization and the session state machine live in
import_session / error_tree and are shared by every adapter.
"""
import logging
from dataclasses import dataclass, field

from hr_console.schemas.imports import ImportResult
from hr_console.services.hr_api import HRApiClient, HRApiError
from hr_console.services.import_session import ImportSession
from hr_console.services.list_cache import ListCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportAdapter:
    entity: str
    import_endpoint: str
    list_endpoints: tuple[str, ...]
    field_key_map: dict[str, str] = field(default_factory=dict)
    description: str = ""

    def open_session(self, client: HRApiClient, session_id: str = "") -> ImportSession:
        return ImportSession(
            client=client,
            endpoint=self.import_endpoint,
            field_key_map=self.field_key_map,
            entity=self.entity,
            session_id=session_id,
        )

    async def refresh(self, client: HRApiClient, cache: ListCache) -> None:
        """Invalidate and refetch every list this import can change."""
        for endpoint in self.list_endpoints:
            await cache.refresh(endpoint, lambda endpoint=endpoint: client.list_records(endpoint))

    async def commit(self, session: ImportSession, cache: ListCache) -> ImportResult:
        """Commit the session's file and refresh the affected lists on success."""
        # a caller joining an in-flight commit leaves the refresh to the caller that started it
        joined = session.in_flight
        result = await session.commit()
        if result.should_refresh and not joined and session.result is result:
            try:
                await self.refresh(session.client, cache)
            except HRApiError as exc:
                logger.warning("List refresh after %s import failed: %s", self.entity, exc.message)
                for endpoint in self.list_endpoints:
                    cache.invalidate(endpoint)
        return result


# ─── Adapters ───

EMPLOYEE_IMPORT = ImportAdapter(
    entity="employees",
    import_endpoint="/api/employees/import/",
    list_endpoints=("/api/employees/",),
    field_key_map={
        "title": "position",
        "job_title": "position",
        "first_name": "name",
        "last_name": "name",
        "full_name": "name",
        "company_id": "company",
        "departments_ids": "departments",
        "department_id": "departments",
        "phone_number": "phone",
    },
    description="Employees and their user accounts",
)

COMPANY_IMPORT = ImportAdapter(
    entity="companies",
    import_endpoint="/api/org/companies/import/",
    list_endpoints=("/api/org/companies/",),
    field_key_map={
        "company_name": "name",
        "company_code": "code",
    },
    description="Companies",
)

HIERARCHY_IMPORT = ImportAdapter(
    entity="hierarchy",
    import_endpoint="/api/org/companies/import-hierarchy/",
    list_endpoints=("/api/org/companies/", "/api/org/departments/"),
    field_key_map={
        "company_name": "company",
        "company_id": "company",
        "department_name": "department",
        "sub_department_name": "sub_department",
        "section_name": "section",
        "sub_section_name": "sub_section",
    },
    description="Company → department → section hierarchy",
)

PLACEMENT_IMPORT = ImportAdapter(
    entity="placements",
    import_endpoint="/api/org/placements/import-levels/",
    list_endpoints=("/api/org/placements/",),
    field_key_map={
        "employee_id": "employee",
        "employee_code": "employee",
        "level_id": "level",
    },
    description="Employee placement levels",
)

IMPORT_ADAPTERS: dict[str, ImportAdapter] = {
    adapter.entity: adapter
    for adapter in (EMPLOYEE_IMPORT, COMPANY_IMPORT, HIERARCHY_IMPORT, PLACEMENT_IMPORT)
}


def get_adapter(entity: str) -> ImportAdapter:
    """Look up an adapter by entity name. Raises KeyError for unknown entities."""
    return IMPORT_ADAPTERS[entity]
