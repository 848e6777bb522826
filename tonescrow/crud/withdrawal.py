# tonescrow/crud/withdrawal.py

from typing import Any, List
from sqlalchemy.orm import Session

from tonescrow.models.withdrawal import Withdrawal, WithdrawalStatus


def get_withdrawal(db: Session, withdrawal_id: int) -> Withdrawal | None:
    return db.query(Withdrawal).filter(Withdrawal.id == withdrawal_id).first()

def create_withdrawal(db: Session, **fields: Any) -> Withdrawal:
    withdrawal = Withdrawal(**fields)
    db.add(withdrawal)
    db.commit()
    db.refresh(withdrawal)
    return withdrawal

def transition(db: Session, withdrawal_id: int, from_status: str, to_status: str, **fields: Any) -> bool:
    """Условный переход статуса вывода. НЕ коммитит."""
    updated = db.query(Withdrawal).filter(
        Withdrawal.id == withdrawal_id,
        Withdrawal.status == from_status,
    ).update({"status": to_status, **fields}, synchronize_session=False)
    return updated == 1

def update_fields(db: Session, withdrawal_id: int, **fields: Any) -> None:
    db.query(Withdrawal).filter(Withdrawal.id == withdrawal_id).update(fields, synchronize_session=False)

def get_user_withdrawals(db: Session, profile_id: int, skip: int = 0, limit: int = 20) -> List[Withdrawal]:
    return db.query(Withdrawal).filter(
        Withdrawal.profile_id == profile_id
    ).order_by(Withdrawal.id.desc()).offset(skip).limit(limit).all()

def get_withdrawals(db: Session, status: str | None = None, skip: int = 0, limit: int = 50) -> List[Withdrawal]:
    query = db.query(Withdrawal)
    if status:
        query = query.filter(Withdrawal.status == status)
    return query.order_by(Withdrawal.id.desc()).offset(skip).limit(limit).all()

def get_oldest_pending_ton_ids(db: Session, limit: int) -> List[int]:
    """Очередь автовывода: самые старые pending TON-заявки, исключая помеченные на ручную сверку."""
    rows = db.query(Withdrawal.id).filter(
        Withdrawal.status == WithdrawalStatus.PENDING,
        Withdrawal.payment_method == "TON",
        Withdrawal.needs_review == False,
    ).order_by(Withdrawal.created_at.asc(), Withdrawal.id.asc()).limit(limit).all()
    return [row[0] for row in rows]

def count_by_status(db: Session, status: str) -> int:
    return db.query(Withdrawal).filter(Withdrawal.status == status).count()

def count_needs_review(db: Session) -> int:
    return db.query(Withdrawal).filter(Withdrawal.needs_review == True).count()
