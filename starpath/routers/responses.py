"""Response helpers shared by completion endpoints."""

from typing import Optional
import uuid

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from starpath.completions.base import CompletionOutcome, CompletionResult

# Expected negative outcomes are reported as data with a matching status code
OUTCOME_STATUS_CODES = {
    CompletionOutcome.REQUIREMENTS_NOT_MET: 400,
    CompletionOutcome.LOCKED: 403,
}


def completion_response(result: CompletionResult) -> JSONResponse:
    return JSONResponse(
        status_code=OUTCOME_STATUS_CODES.get(result.outcome, 200),
        content=jsonable_encoder(result.to_dict())
    )


def user_uuid(current_user: dict) -> Optional[uuid.UUID]:
    """The caller's id as a UUID, or None when the token subject is not one."""
    try:
        return uuid.UUID(str(current_user["user_id"]))
    except (KeyError, ValueError):
        return None
