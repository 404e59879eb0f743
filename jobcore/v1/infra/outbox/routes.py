"""
Outbox status endpoint.
"""

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from jobcore.config.settings import Settings, SettingsDep
from jobcore.infra.database import get_session
from jobcore.v1.core.exceptions import create_success_response
from jobcore.v1.infra.outbox.service import OutboxService

router = APIRouter(prefix="/outbox", tags=["outbox"])


@router.get("/status", response_model=dict)
async def get_outbox_status(
    session: AsyncSession = Depends(get_session),
    settings: Settings = SettingsDep,
) -> dict[str, Any]:
    """Pending deliveries and audit outcomes."""

    status = await OutboxService(settings).get_status(session)
    return create_success_response(data=status.model_dump(mode="json"))
