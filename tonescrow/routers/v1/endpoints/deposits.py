# tonescrow/routers/v1/endpoints/deposits.py
from typing import List

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from tonescrow.core.limiter import limiter
from tonescrow.crud import deposit as crud_deposit
from tonescrow.dependencies import get_current_escrow_settings, get_current_user, get_db
from tonescrow.models.profile import Profile
from tonescrow.schemas.deposit import Deposit, DepositCreate, DepositInstructions
from tonescrow.schemas.settings import EscrowSettings
from tonescrow.services import deposit as deposit_service

router = APIRouter()


@router.post("/deposits", response_model=DepositInstructions, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
def create_deposit(
    request: Request,
    data: DepositCreate,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
    escrow_settings: EscrowSettings = Depends(get_current_escrow_settings),
):
    """
    Пополнение баланса. TON: перевод на адрес платформы с memo `dep_<CODE>`,
    зачисляется мониторингом. MMK: скриншот перевода, зачисляет администратор.
    """
    deposit, pay_to = deposit_service.create_deposit(
        db, current_user, data.amount, data.currency, data.payment_method, escrow_settings,
        screenshot_url=str(data.screenshot_url) if data.screenshot_url else None,
    )
    return DepositInstructions(
        deposit=Deposit.model_validate(deposit),
        pay_to_address=pay_to,
        memo=deposit_service.deposit_memo(deposit) if data.currency == "TON" else None,
    )


@router.get("/deposits", response_model=List[Deposit])
def list_my_deposits(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return crud_deposit.get_user_deposits(db, current_user.id, skip=(page - 1) * size, limit=size)
