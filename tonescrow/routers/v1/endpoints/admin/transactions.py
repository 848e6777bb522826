# tonescrow/routers/v1/endpoints/admin/transactions.py

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tonescrow.crud import rating as crud_rating
from tonescrow.crud import transaction as crud_transaction
from tonescrow.dependencies import get_current_escrow_settings, get_db
from tonescrow.models.transaction import PaymentMethod
from tonescrow.schemas.admin import ConfirmPaymentRequest, ResolveDisputeRequest
from tonescrow.schemas.settings import EscrowSettings
from tonescrow.schemas.transaction import Rating, Transaction
from tonescrow.services import escrow as escrow_service

router = APIRouter()


@router.get("", response_model=List[Transaction])
def get_transactions_list(
    status: str | None = Query(None, description="Фильтр по статусу, например disputed"),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    return crud_transaction.get_transactions(db, status=status, skip=(page - 1) * size, limit=size)


@router.post("/{transaction_id}/confirm-payment", response_model=Transaction)
def confirm_payment_endpoint(
    transaction_id: int,
    data: ConfirmPaymentRequest,
    db: Session = Depends(get_db),
):
    """[АДМИН] Ручное подтверждение оплаты (платеж не распознан мониторингом)."""
    return escrow_service.confirm_payment(db, transaction_id, data.tx_hash, method=PaymentMethod.MANUAL)


@router.post("/{transaction_id}/resolve", response_model=Transaction)
def resolve_dispute_endpoint(
    transaction_id: int,
    data: ResolveDisputeRequest,
    db: Session = Depends(get_db),
    escrow_settings: EscrowSettings = Depends(get_current_escrow_settings),
):
    """[АДМИН] Решение спора: favor_seller -> completed с расчетом, favor_buyer -> cancelled."""
    return escrow_service.resolve_dispute(db, transaction_id, data.resolution, escrow_settings, notes=data.notes)


@router.get("/{transaction_id}/ratings", response_model=List[Rating])
def get_transaction_ratings(transaction_id: int, db: Session = Depends(get_db)):
    return crud_rating.get_transaction_ratings(db, transaction_id)
