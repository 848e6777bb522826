# tonescrow/routers/v1/endpoints/admin/deposits.py

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tonescrow.crud import deposit as crud_deposit
from tonescrow.dependencies import get_db
from tonescrow.schemas.admin import ConfirmDepositRequest, RejectRequest
from tonescrow.schemas.deposit import Deposit
from tonescrow.services import deposit as deposit_service

router = APIRouter()


@router.get("", response_model=List[Deposit])
def get_deposits_list(
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    return crud_deposit.get_deposits(db, status=status, skip=(page - 1) * size, limit=size)


@router.post("/{deposit_id}/approve", response_model=Deposit)
def approve_deposit_endpoint(deposit_id: int, data: ConfirmDepositRequest, db: Session = Depends(get_db)):
    """[АДМИН] Подтверждает пополнение (MMK по скриншоту или нераспознанный TON-перевод)."""
    return deposit_service.confirm_deposit(db, deposit_id, amount=data.amount, notes=data.notes)


@router.post("/{deposit_id}/reject", response_model=Deposit)
def reject_deposit_endpoint(deposit_id: int, data: RejectRequest, db: Session = Depends(get_db)):
    return deposit_service.reject_deposit(db, deposit_id, notes=data.notes)
