"""Manual user-account creation against the HR API."""
import logging
from typing import Any

from hr_console.schemas.users import UserCreate, UsernameSuggestionRequest, UsernameSuggestionResponse
from hr_console.services.hr_api import HRApiClient
from hr_console.services.usernames import (
    UsernameDraft,
    build_username_base_from_name,
    generate_unique_username,
    refresh_username_draft,
)

logger = logging.getLogger(__name__)

USER_FIELD_KEY_MAP: dict[str, str] = {
    "first_name": "name",
    "last_name": "name",
    "title": "position",
}


def split_full_name(full_name: str) -> tuple[str, str]:
    """First word as first name, the rest as last name."""
    words = full_name.split()
    if not words:
        return "", ""
    return words[0], " ".join(words[1:])


async def suggest_username(client: HRApiClient, request: UsernameSuggestionRequest) -> UsernameSuggestionResponse:
    existing = await client.list_usernames()
    base = build_username_base_from_name(request.name)

    if request.preferred_suffix:
        username = generate_unique_username(request.name, existing, preferred_suffix=request.preferred_suffix)
        return UsernameSuggestionResponse(username=username, base=base, regenerated=True)

    draft = UsernameDraft(value=request.current_username, source_name=request.previous_name)
    refreshed = refresh_username_draft(draft, request.name, existing)
    return UsernameSuggestionResponse(
        username=refreshed.value,
        base=base,
        regenerated=refreshed.value != request.current_username,
    )


async def provision_user(client: HRApiClient, user: UserCreate) -> dict[str, Any]:
    """Create the account, generating a unique username when none was given.

    A collision the HR API still reports (e.g. a concurrent creation) surfaces
    as HRApiError with a field-scoped payload.
    """
    username = user.username
    if not username:
        existing = await client.list_usernames()
        username = generate_unique_username(user.name, existing)

    first_name, last_name = split_full_name(user.name)
    payload = user.model_dump(exclude_none=True)
    payload.update(username=username, first_name=first_name, last_name=last_name, name=" ".join(user.name.split()))

    created = await client.create_user(payload)
    logger.info("Provisioned user %s (%s)", username, user.role)
    payload.pop("password", None)
    return {**payload, **created}
