# tonescrow/services/admin.py

import logging
import math

from sqlalchemy.orm import Session

from tonescrow.core.exceptions import AlreadyProcessed, NotFound
from tonescrow.crud import deposit as crud_deposit
from tonescrow.crud import profile as crud_profile
from tonescrow.crud import transaction as crud_transaction
from tonescrow.crud import withdrawal as crud_withdrawal
from tonescrow.models.deposit import DepositStatus
from tonescrow.models.profile import Profile
from tonescrow.models.transaction import TransactionStatus
from tonescrow.models.withdrawal import WithdrawalStatus
from tonescrow.schemas.admin import AdminProfileListItem, DashboardStats, PaginatedAdminProfiles

logger = logging.getLogger(__name__)


def _get_profile_or_404(db: Session, profile_id: int) -> Profile:
    profile = crud_profile.get_profile(db, profile_id)
    if profile is None:
        raise NotFound(f"Profile {profile_id} not found")
    return profile


def block_user(db: Session, profile_id: int, reason: str) -> Profile:
    """
    Блокирует пользователя. Заблокированный не может создавать сделки, выводы и
    депозиты и не получает новых реферальных начислений. Балансы не трогаются.
    """
    profile = _get_profile_or_404(db, profile_id)
    if profile.is_blocked:
        raise AlreadyProcessed(f"Profile {profile_id} is already blocked", reason=profile.blocked_reason)

    crud_profile.set_blocked(db, profile_id, True, reason)
    db.commit()
    db.refresh(profile)
    logger.warning(f"Profile {profile_id} blocked. Reason: {reason}")
    return profile


def unblock_user(db: Session, profile_id: int) -> Profile:
    profile = _get_profile_or_404(db, profile_id)
    if not profile.is_blocked:
        raise AlreadyProcessed(f"Profile {profile_id} is not blocked")

    crud_profile.set_blocked(db, profile_id, False)
    db.commit()
    db.refresh(profile)
    logger.info(f"Profile {profile_id} unblocked.")
    return profile


def get_paginated_profiles(db: Session, page: int, size: int, search: str | None = None) -> PaginatedAdminProfiles:
    skip = (page - 1) * size
    if search:
        items = crud_profile.find_profiles(db, search, skip=skip, limit=size)
        total = crud_profile.count_found_profiles(db, search)
    else:
        items = crud_profile.list_profiles(db, skip=skip, limit=size)
        total = crud_profile.count_all_profiles(db)

    return PaginatedAdminProfiles(
        total_items=total,
        total_pages=math.ceil(total / size) if total else 0,
        current_page=page,
        size=size,
        items=[AdminProfileListItem.model_validate(p) for p in items],
    )


def get_dashboard_stats(db: Session) -> DashboardStats:
    """Счетчики для главного экрана админки."""
    in_progress = (
        crud_transaction.count_by_status(db, TransactionStatus.PAYMENT_RECEIVED)
        + crud_transaction.count_by_status(db, TransactionStatus.ITEM_SENT)
    )
    return DashboardStats(
        total_users=crud_profile.count_all_profiles(db),
        blocked_users=crud_profile.count_blocked_profiles(db),
        transactions_pending_payment=crud_transaction.count_by_status(db, TransactionStatus.PENDING_PAYMENT),
        transactions_in_progress=in_progress,
        transactions_disputed=crud_transaction.count_by_status(db, TransactionStatus.DISPUTED),
        transactions_completed=crud_transaction.count_by_status(db, TransactionStatus.COMPLETED),
        withdrawals_pending=crud_withdrawal.count_by_status(db, WithdrawalStatus.PENDING),
        withdrawals_needs_review=crud_withdrawal.count_needs_review(db),
        deposits_pending=crud_deposit.count_by_status(db, DepositStatus.PENDING),
    )
