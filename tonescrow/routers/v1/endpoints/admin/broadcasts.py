# tonescrow/routers/v1/endpoints/admin/broadcasts.py

import logging
import math

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from tonescrow.bot.services.broadcast import process_broadcast
from tonescrow.core.exceptions import NotFound
from tonescrow.crud import broadcast as crud_broadcast
from tonescrow.dependencies import get_admin_user, get_db
from tonescrow.models.profile import Profile
from tonescrow.schemas.admin import (
    BroadcastCreate,
    BroadcastDetails,
    BroadcastListItem,
    PaginatedAdminBroadcasts,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=BroadcastDetails, status_code=status.HTTP_202_ACCEPTED)
def create_broadcast(
    data: BroadcastCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    admin: Profile = Depends(get_admin_user),
):
    """[АДМИН] Создает рассылку и запускает отправку в фоне."""
    broadcast = crud_broadcast.create_broadcast(db, data.message_text, data.target, created_by_id=admin.id)
    logger.info(f"Admin {admin.id} created broadcast {broadcast.id} for target '{broadcast.target}'")
    background_tasks.add_task(process_broadcast, broadcast_id=broadcast.id)
    return broadcast


@router.get("", response_model=PaginatedAdminBroadcasts)
def get_broadcasts_history(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    total, items = crud_broadcast.get_broadcasts(db, skip=(page - 1) * size, limit=size)
    return PaginatedAdminBroadcasts(
        total_items=total,
        total_pages=math.ceil(total / size) if total else 0,
        current_page=page,
        size=size,
        items=[BroadcastListItem.model_validate(b) for b in items],
    )


@router.get("/{broadcast_id}", response_model=BroadcastDetails)
def get_broadcast_details(broadcast_id: int, db: Session = Depends(get_db)):
    broadcast = crud_broadcast.get_broadcast(db, broadcast_id)
    if broadcast is None:
        raise NotFound(f"Broadcast {broadcast_id} not found")
    return broadcast
