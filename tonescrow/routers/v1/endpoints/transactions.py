# tonescrow/routers/v1/endpoints/transactions.py
from typing import List

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from tonescrow.core.limiter import limiter
from tonescrow.crud import transaction as crud_transaction
from tonescrow.dependencies import get_current_escrow_settings, get_current_user, get_db
from tonescrow.models.profile import Profile
from tonescrow.schemas.settings import EscrowSettings
from tonescrow.schemas.transaction import (
    ClaimRequest,
    DisputeCreate,
    PaymentInstructions,
    Rating,
    RatingCreate,
    SettlementResult,
    Transaction,
)
from tonescrow.services import escrow as escrow_service
from tonescrow.services import rating as rating_service
from tonescrow.services.custody import get_receiving_address
from tonescrow.services.ton_monitor import TX_MEMO_PREFIX

router = APIRouter()


@router.post("/transactions/claim", response_model=PaymentInstructions, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def claim_product(
    request: Request,
    data: ClaimRequest,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
    escrow_settings: EscrowSettings = Depends(get_current_escrow_settings),
):
    """
    Покупатель забирает товар по ссылке. Для TON в ответе адрес и memo,
    с которыми нужно отправить платеж; оплатить можно и с внутреннего баланса.
    """
    transaction = escrow_service.claim_product(db, current_user, data.link, escrow_settings)
    pay_to = get_receiving_address(db) if transaction.currency == "TON" else None
    return PaymentInstructions(
        transaction=Transaction.model_validate(transaction),
        pay_to_address=pay_to,
        memo=f"{TX_MEMO_PREFIX}{transaction.unique_link}",
    )


@router.get("/transactions", response_model=List[Transaction])
def list_my_transactions(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    """Сделки, где пользователь покупатель или продавец."""
    return crud_transaction.get_user_transactions(db, current_user.id, skip=(page - 1) * size, limit=size)


@router.get("/transactions/{transaction_id}", response_model=Transaction)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return escrow_service.get_transaction_for_participant(db, current_user, transaction_id)


@router.post("/transactions/{transaction_id}/pay-with-balance", response_model=Transaction)
@limiter.limit("10/minute")
def pay_with_balance(
    request: Request,
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
    escrow_settings: EscrowSettings = Depends(get_current_escrow_settings),
):
    return escrow_service.pay_with_balance(db, current_user, transaction_id, escrow_settings)


@router.post("/transactions/{transaction_id}/item-sent", response_model=Transaction)
def mark_item_sent(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return escrow_service.mark_item_sent(db, current_user, transaction_id)


@router.post("/transactions/{transaction_id}/confirm", response_model=SettlementResult)
@limiter.limit("10/minute")
def confirm_received(
    request: Request,
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
    escrow_settings: EscrowSettings = Depends(get_current_escrow_settings),
):
    """Покупатель подтверждает получение. Повторный вызов возвращает already_settled=true."""
    return escrow_service.confirm_received(db, current_user, transaction_id, escrow_settings)


@router.post("/transactions/{transaction_id}/dispute", response_model=Transaction)
def open_dispute(
    transaction_id: int,
    data: DisputeCreate,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return escrow_service.open_dispute(db, current_user, transaction_id, data.reason)


@router.post("/transactions/{transaction_id}/cancel", response_model=Transaction)
def cancel_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return escrow_service.cancel_by_seller(db, current_user, transaction_id)


@router.post("/transactions/{transaction_id}/rating", response_model=Rating, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def rate_transaction(
    request: Request,
    transaction_id: int,
    data: RatingCreate,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    """Оценка второй стороны после завершения сделки. Одна оценка от участника."""
    return rating_service.rate_counterparty(db, current_user, transaction_id, data.rating, data.comment)


@router.get("/transactions/{transaction_id}/ratings", response_model=List[Rating])
def get_transaction_ratings(
    transaction_id: int,
    db: Session = Depends(get_db),
    current_user: Profile = Depends(get_current_user),
):
    return rating_service.get_ratings_for_participant(db, current_user, transaction_id)
