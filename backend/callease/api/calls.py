"""Live call API routes.

Reads come from the in-memory call registry. Control actions return
``{message, outcome, call}`` where ``outcome`` tells a dispatched command
apart from a call that was finalized locally.
"""

from typing import Any

import structlog
from fastapi import APIRouter
from pydantic import BaseModel, Field

from callease.api.deps import Lifecycle
from callease.core.auth import CurrentUser
from callease.core.exceptions import ValidationError

router = APIRouter(prefix="/api/calls", tags=["calls"])
logger = structlog.get_logger()


class StartCallRequest(BaseModel):
    phone_number: str | None = Field(default=None, alias="phoneNumber")


@router.get("")
async def list_calls(current_user: CurrentUser, lifecycle: Lifecycle) -> list[dict[str, Any]]:
    """List calls visible to the caller; admins see every call."""
    return [record.to_dict() for record in lifecycle.list_visible(current_user)]


@router.get("/{call_id}")
async def get_call(call_id: str, current_user: CurrentUser, lifecycle: Lifecycle) -> dict[str, Any]:
    return lifecycle.get_visible(call_id, current_user).to_dict()


@router.post("/start")
async def start_call(
    request: StartCallRequest,
    current_user: CurrentUser,
    lifecycle: Lifecycle,
) -> dict[str, Any]:
    """Place an outbound call on behalf of the current user."""
    phone_number = (request.phone_number or "").strip()
    if not phone_number:
        raise ValidationError("Phone number is required")

    record = await lifecycle.start_outbound(current_user.email, phone_number)
    return record.to_dict()


@router.post("/answer/{call_id}")
async def answer_call(call_id: str, current_user: CurrentUser, lifecycle: Lifecycle) -> dict[str, Any]:
    result = await lifecycle.answer(call_id, current_user)
    return result.to_dict()


@router.post("/reject/{call_id}")
async def reject_call(call_id: str, current_user: CurrentUser, lifecycle: Lifecycle) -> dict[str, Any]:
    result = await lifecycle.reject(call_id, current_user)
    return result.to_dict()


@router.post("/end/{call_id}")
async def end_call(call_id: str, current_user: CurrentUser, lifecycle: Lifecycle) -> dict[str, Any]:
    result = await lifecycle.end(call_id, current_user)
    return result.to_dict()
