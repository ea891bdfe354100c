"""User provisioning API endpoints."""
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from hr_console.core.deps import get_hr_client
from hr_console.schemas.users import UserCreate, UserOut, UsernameSuggestionRequest, UsernameSuggestionResponse
from hr_console.services.error_tree import flatten_to_field_errors
from hr_console.services.hr_api import HRApiClient, HRApiError
from hr_console.services.user_provisioning import USER_FIELD_KEY_MAP, provision_user, suggest_username
from hr_console.services.usernames import InvalidNameError, UsernameSpaceExhaustedError

router = APIRouter()


def _upstream_error(exc: HRApiError) -> HTTPException:
    """Relay an HR API failure with its field errors normalized for the form."""
    if 400 <= exc.status_code < 500:
        status_code = exc.status_code
    else:
        status_code = status.HTTP_502_BAD_GATEWAY
    return HTTPException(
        status_code=status_code,
        detail={
            "message": exc.message,
            "field_errors": flatten_to_field_errors([exc.to_error_payload()], USER_FIELD_KEY_MAP),
        },
    )


def _username_error(exc: Exception) -> HTTPException:
    if isinstance(exc, UsernameSpaceExhaustedError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


@router.post(
    "/username-suggestion",
    response_model=UsernameSuggestionResponse,
    summary="Suggest a unique username for a full name",
)
async def username_suggestion(
    body: UsernameSuggestionRequest,
    client: Annotated[HRApiClient, Depends(get_hr_client)],
):
    try:
        return await suggest_username(client, body)
    except (InvalidNameError, UsernameSpaceExhaustedError) as exc:
        raise _username_error(exc)
    except HRApiError as exc:
        raise _upstream_error(exc)


@router.post(
    "",
    response_model=UserOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a user account (username generated when omitted)",
)
async def create_user(
    body: UserCreate,
    client: Annotated[HRApiClient, Depends(get_hr_client)],
):
    try:
        created = await provision_user(client, body)
    except (InvalidNameError, UsernameSpaceExhaustedError) as exc:
        raise _username_error(exc)
    except HRApiError as exc:
        raise _upstream_error(exc)
    return UserOut.model_validate(created)
