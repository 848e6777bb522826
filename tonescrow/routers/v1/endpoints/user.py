# tonescrow/routers/v1/endpoints/user.py
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tonescrow.crud import referral as crud_referral
from tonescrow.dependencies import get_current_user, get_db
from tonescrow.models.profile import Profile
from tonescrow.schemas.profile import Profile as ProfileSchema, ReferralEarning, ReferralInfo, WalletAddressUpdate
from tonescrow.schemas.transaction import RatingSummary
from tonescrow.services import rating as rating_service
from tonescrow.services import referral as referral_service
from tonescrow.services import user as user_service

router = APIRouter()


@router.get("/users/me", response_model=ProfileSchema)
def read_users_me(current_user: Profile = Depends(get_current_user)):
    return current_user


@router.put("/users/me/wallet", response_model=ProfileSchema)
def update_wallet(
    data: WalletAddressUpdate,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    """Сохраняет TON-адрес для выплат."""
    return user_service.update_wallet_address(db, current_user, data.ton_wallet_address)


@router.get("/users/me/referrals", response_model=ReferralInfo)
def get_referral_info(
    current_user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Реферальная ссылка, количество приглашенных по уровням и общий доход."""
    return referral_service.get_referral_info(db, current_user)


@router.get("/users/me/referrals/earnings", response_model=List[ReferralEarning])
def get_referral_earnings(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    current_user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return crud_referral.get_earnings(db, current_user.id, skip=(page - 1) * size, limit=size)


@router.get("/users/{profile_id}/ratings", response_model=RatingSummary)
def get_profile_ratings(
    profile_id: int,
    limit: int = Query(20, ge=1, le=100),
    current_user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Средняя оценка пользователя и последние отзывы о нем."""
    return rating_service.get_profile_rating_summary(db, profile_id, limit=limit)
