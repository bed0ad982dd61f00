"""Persisted call log routes."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from callease.core.auth import AdminUser, CurrentUser
from callease.db.session import get_db
from callease.services.call_logs import list_call_logs

router = APIRouter(prefix="/api", tags=["call-logs"])


class CallLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    call_id: str
    user_email: str
    direction: str
    phone_number: str
    status: str
    start_time: datetime
    end_time: datetime | None
    duration: int
    agent_id: str | None
    notes: str | None


@router.get("/call-logs", response_model=list[CallLogResponse])
async def get_call_logs(
    current_user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> list[CallLogResponse]:
    """Call history from the database; admins see every user's calls."""
    logs = await list_call_logs(db, None if current_user.is_admin else current_user.email)
    return [CallLogResponse.model_validate(log) for log in logs]


@router.get("/admin/call-logs", response_model=list[CallLogResponse])
async def get_all_call_logs(
    admin: AdminUser,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> list[CallLogResponse]:
    logs = await list_call_logs(db)
    return [CallLogResponse.model_validate(log) for log in logs]
