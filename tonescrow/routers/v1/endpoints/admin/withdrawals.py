# tonescrow/routers/v1/endpoints/admin/withdrawals.py

import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tonescrow.crud import withdrawal as crud_withdrawal
from tonescrow.dependencies import get_current_escrow_settings, get_db
from tonescrow.schemas.admin import ApproveWithdrawalRequest, ReconcileWithdrawalRequest, RejectRequest
from tonescrow.schemas.settings import EscrowSettings
from tonescrow.schemas.withdrawal import Withdrawal
from tonescrow.services import withdrawal as withdrawal_service
from tonescrow.services.custody import get_custody_wallet

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=List[Withdrawal])
def get_withdrawals_list(
    status: str | None = Query(None, description="pending, approved, completed, rejected"),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    return crud_withdrawal.get_withdrawals(db, status=status, skip=(page - 1) * size, limit=size)


@router.post("/{withdrawal_id}/approve", response_model=Withdrawal)
def approve_withdrawal_endpoint(
    withdrawal_id: int,
    data: ApproveWithdrawalRequest,
    db: Session = Depends(get_db),
    escrow_settings: EscrowSettings = Depends(get_current_escrow_settings),
):
    """[АДМИН] Одобряет вывод, выплаченный вне системы. Списывает баланс и начисляет рефералам."""
    return withdrawal_service.approve_withdrawal(
        db, withdrawal_id, escrow_settings, notes=data.notes, reference=data.reference
    )


@router.post("/{withdrawal_id}/reject", response_model=Withdrawal)
def reject_withdrawal_endpoint(withdrawal_id: int, data: RejectRequest, db: Session = Depends(get_db)):
    return withdrawal_service.reject_withdrawal(db, withdrawal_id, notes=data.notes)


@router.post("/{withdrawal_id}/process", response_model=Withdrawal)
async def process_withdrawal_endpoint(
    withdrawal_id: int,
    db: Session = Depends(get_db),
    escrow_settings: EscrowSettings = Depends(get_current_escrow_settings),
):
    """[АДМИН] Немедленная автоматическая выплата одной TON-заявки через кастодиальный кошелек."""
    custody = get_custody_wallet(db)
    return await withdrawal_service.process_automated_withdrawal(db, withdrawal_id, custody, escrow_settings)


@router.post("/{withdrawal_id}/reconcile", response_model=Withdrawal)
def reconcile_withdrawal_endpoint(
    withdrawal_id: int,
    data: ReconcileWithdrawalRequest,
    db: Session = Depends(get_db),
    escrow_settings: EscrowSettings = Depends(get_current_escrow_settings),
):
    """[АДМИН] Сверка заявки с неизвестным исходом перевода по истории кошелька."""
    return withdrawal_service.reconcile_withdrawal(
        db, withdrawal_id, escrow_settings, was_sent=data.was_sent, reference=data.reference, notes=data.notes
    )
