# tonescrow/crud/broadcast.py
from sqlalchemy import or_
from sqlalchemy.orm import Session

from tonescrow.models.broadcast import Broadcast, BroadcastTarget
from tonescrow.models.profile import Profile
from tonescrow.models.transaction import Transaction


def create_broadcast(db: Session, message_text: str, target: str, created_by_id: int | None = None) -> Broadcast:
    db_broadcast = Broadcast(message_text=message_text, target=target, created_by_id=created_by_id)
    db.add(db_broadcast)
    db.commit()
    db.refresh(db_broadcast)
    return db_broadcast

def get_broadcast(db: Session, broadcast_id: int) -> Broadcast | None:
    return db.get(Broadcast, broadcast_id)

def get_broadcasts(db: Session, skip: int = 0, limit: int = 20) -> tuple[int, list[Broadcast]]:
    query = db.query(Broadcast)
    total = query.count()
    items = query.order_by(Broadcast.id.desc()).offset(skip).limit(limit).all()
    return total, items

def get_recipient_chat_ids(db: Session, target: str) -> list[int]:
    """Telegram id незаблокированных пользователей, попадающих под выбранную аудиторию."""
    query = db.query(Profile.telegram_id).filter(Profile.is_blocked == False)
    if target == BroadcastTarget.WITH_BALANCE:
        query = query.filter(Profile.balance > 0)
    elif target == BroadcastTarget.ACTIVE:
        has_deals = db.query(Transaction.id).filter(
            or_(Transaction.buyer_id == Profile.id, Transaction.seller_id == Profile.id)
        ).exists()
        query = query.filter(has_deals)
    return [row.telegram_id for row in query.order_by(Profile.id).all()]
