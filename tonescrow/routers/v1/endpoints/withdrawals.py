# tonescrow/routers/v1/endpoints/withdrawals.py
from typing import List

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from tonescrow.core.limiter import limiter
from tonescrow.crud import withdrawal as crud_withdrawal
from tonescrow.dependencies import get_current_escrow_settings, get_current_user, get_db
from tonescrow.models.profile import Profile
from tonescrow.schemas.settings import EscrowSettings
from tonescrow.schemas.withdrawal import Withdrawal, WithdrawalCreate
from tonescrow.services import withdrawal as withdrawal_service

router = APIRouter()


@router.post("/withdrawals", response_model=Withdrawal, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
def create_withdrawal(
    request: Request,
    data: WithdrawalCreate,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
    escrow_settings: EscrowSettings = Depends(get_current_escrow_settings),
):
    """Заявка на вывод. Баланс списывается только при одобрении."""
    return withdrawal_service.create_withdrawal(
        db, current_user, data.amount, data.currency, data.destination, data.payment_method, escrow_settings
    )


@router.get("/withdrawals", response_model=List[Withdrawal])
def list_my_withdrawals(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return crud_withdrawal.get_user_withdrawals(db, current_user.id, skip=(page - 1) * size, limit=size)
