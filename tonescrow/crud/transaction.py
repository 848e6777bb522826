# tonescrow/crud/transaction.py

from datetime import datetime
from typing import Any, List
from sqlalchemy.orm import Session
from sqlalchemy import or_

from tonescrow.models.transaction import Transaction, TransactionStatus


def get_transaction(db: Session, transaction_id: int) -> Transaction | None:
    return db.query(Transaction).filter(Transaction.id == transaction_id).first()

def get_transaction_by_link(db: Session, link: str) -> Transaction | None:
    return db.query(Transaction).filter(Transaction.unique_link == link).first()

def get_transaction_by_tx_hash(db: Session, tx_hash: str) -> Transaction | None:
    return db.query(Transaction).filter(Transaction.ton_tx_hash == tx_hash).first()

def get_live_claim(db: Session, product_id: int, now: datetime) -> Transaction | None:
    """Активная (не просроченная) заявка на товар в статусе pending_payment."""
    return db.query(Transaction).filter(
        Transaction.product_id == product_id,
        Transaction.status == TransactionStatus.PENDING_PAYMENT,
        Transaction.expires_at > now,
    ).order_by(Transaction.id.desc()).first()

def create_transaction(db: Session, **fields: Any) -> Transaction:
    """Создает сделку. Требует внешнего вызова db.commit()."""
    transaction = Transaction(**fields)
    db.add(transaction)
    db.flush()
    return transaction

def transition(
    db: Session,
    transaction_id: int,
    from_status: str | tuple,
    to_status: str,
    **fields: Any,
) -> bool:
    """
    Условный переход статуса: UPDATE ... WHERE id = :id AND status = :from_status.
    Возвращает True, только если именно этот вызов изменил строку.
    Проигравший в гонке получает False и обязан трактовать это как no-op.
    НЕ коммитит.
    """
    expected = (from_status,) if isinstance(from_status, str) else tuple(from_status)
    values = {"status": to_status, **fields}
    updated = db.query(Transaction).filter(
        Transaction.id == transaction_id,
        Transaction.status.in_(expected),
    ).update(values, synchronize_session=False)
    return updated == 1


def get_user_transactions(db: Session, profile_id: int, skip: int = 0, limit: int = 20) -> List[Transaction]:
    """Сделки, где пользователь покупатель или продавец (от новых к старым)."""
    return db.query(Transaction).filter(
        or_(Transaction.buyer_id == profile_id, Transaction.seller_id == profile_id)
    ).order_by(Transaction.id.desc()).offset(skip).limit(limit).all()

def get_transactions(db: Session, status: str | None = None, skip: int = 0, limit: int = 50) -> List[Transaction]:
    query = db.query(Transaction)
    if status:
        query = query.filter(Transaction.status == status)
    return query.order_by(Transaction.id.desc()).offset(skip).limit(limit).all()

def count_by_status(db: Session, status: str) -> int:
    return db.query(Transaction).filter(Transaction.status == status).count()

def get_expired_pending_ids(db: Session, now: datetime) -> List[int]:
    rows = db.query(Transaction.id).filter(
        Transaction.status == TransactionStatus.PENDING_PAYMENT,
        Transaction.expires_at.isnot(None),
        Transaction.expires_at < now,
    ).all()
    return [row[0] for row in rows]

def get_auto_confirm_candidate_ids(db: Session, sent_before: datetime) -> List[int]:
    rows = db.query(Transaction.id).filter(
        Transaction.status == TransactionStatus.ITEM_SENT,
        Transaction.item_sent_at.isnot(None),
        Transaction.item_sent_at < sent_before,
    ).all()
    return [row[0] for row in rows]
