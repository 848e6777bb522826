# tonescrow/crud/deposit.py

from datetime import datetime
from typing import Any, List
from sqlalchemy.orm import Session

from tonescrow.models.deposit import Deposit, DepositStatus


def get_deposit(db: Session, deposit_id: int) -> Deposit | None:
    return db.query(Deposit).filter(Deposit.id == deposit_id).first()

def get_deposit_by_code(db: Session, code: str) -> Deposit | None:
    return db.query(Deposit).filter(Deposit.unique_code == code).first()

def get_deposit_by_tx_hash(db: Session, tx_hash: str) -> Deposit | None:
    return db.query(Deposit).filter(Deposit.ton_tx_hash == tx_hash).first()

def create_deposit(db: Session, **fields: Any) -> Deposit:
    deposit = Deposit(**fields)
    db.add(deposit)
    db.commit()
    db.refresh(deposit)
    return deposit

def transition(db: Session, deposit_id: int, from_status: str, to_status: str, **fields: Any) -> bool:
    """Условный переход статуса депозита. НЕ коммитит."""
    updated = db.query(Deposit).filter(
        Deposit.id == deposit_id,
        Deposit.status == from_status,
    ).update({"status": to_status, **fields}, synchronize_session=False)
    return updated == 1

def get_user_deposits(db: Session, profile_id: int, skip: int = 0, limit: int = 20) -> List[Deposit]:
    return db.query(Deposit).filter(
        Deposit.profile_id == profile_id
    ).order_by(Deposit.id.desc()).offset(skip).limit(limit).all()

def get_deposits(db: Session, status: str | None = None, skip: int = 0, limit: int = 50) -> List[Deposit]:
    query = db.query(Deposit)
    if status:
        query = query.filter(Deposit.status == status)
    return query.order_by(Deposit.id.desc()).offset(skip).limit(limit).all()

def expire_overdue(db: Session, now: datetime) -> int:
    """Массово помечает просроченные pending-депозиты. НЕ коммитит."""
    return db.query(Deposit).filter(
        Deposit.status == DepositStatus.PENDING,
        Deposit.expires_at.isnot(None),
        Deposit.expires_at < now,
    ).update({"status": DepositStatus.EXPIRED}, synchronize_session=False)

def count_by_status(db: Session, status: str) -> int:
    return db.query(Deposit).filter(Deposit.status == status).count()
