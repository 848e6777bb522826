# tonescrow/routers/v1/endpoints/admin/users.py

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tonescrow.dependencies import get_admin_user, get_db
from tonescrow.models.profile import Profile
from tonescrow.schemas.admin import (
    AdjustBalanceRequest,
    AdminProfileListItem,
    BlockUserRequest,
    PaginatedAdminProfiles,
)
from tonescrow.services import admin as admin_service
from tonescrow.services import settlement as settlement_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=PaginatedAdminProfiles)
def get_users_list(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    search: str | None = Query(None, description="Поиск по ID, TG ID или username"),
    db: Session = Depends(get_db),
):
    """[АДМИН] Пагинированный список пользователей с поиском."""
    return admin_service.get_paginated_profiles(db, page, size, search)


@router.post("/{profile_id}/block", response_model=AdminProfileListItem)
def block_user_endpoint(profile_id: int, data: BlockUserRequest, db: Session = Depends(get_db)):
    """[АДМИН] Блокирует пользователя."""
    return admin_service.block_user(db, profile_id, data.reason)


@router.post("/{profile_id}/unblock", response_model=AdminProfileListItem)
def unblock_user_endpoint(profile_id: int, db: Session = Depends(get_db)):
    """[АДМИН] Разблокирует пользователя."""
    return admin_service.unblock_user(db, profile_id)


@router.post("/{profile_id}/adjust-balance")
def adjust_balance_endpoint(
    profile_id: int,
    data: AdjustBalanceRequest,
    db: Session = Depends(get_db),
    admin_user: Profile = Depends(get_admin_user),
):
    """[АДМИН] Начисляет или списывает средства. Баланс не может уйти в минус."""
    reason = f"{data.reason} (admin {admin_user.telegram_id})"
    new_balance = settlement_service.adjust_balance(db, profile_id, data.delta, data.currency, reason)
    return {"profile_id": profile_id, "currency": data.currency, "balance": new_balance}
