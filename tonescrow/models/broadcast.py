# tonescrow/models/broadcast.py
from sqlalchemy import Column, Integer, String, Text, DateTime, func
from tonescrow.db.session import Base


class BroadcastStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BroadcastTarget:
    ALL = "all"
    # Есть хотя бы одна сделка в роли покупателя или продавца
    ACTIVE = "active"
    # Положительный TON-баланс
    WITH_BALANCE = "with_balance"


class Broadcast(Base):
    __tablename__ = "broadcasts"

    id = Column(Integer, primary_key=True, index=True)
    message_text = Column(Text, nullable=False)
    target = Column(String, nullable=False, default=BroadcastTarget.ALL)

    status = Column(String, default=BroadcastStatus.PENDING, nullable=False, index=True)
    sent_count = Column(Integer, default=0, nullable=False)
    failed_count = Column(Integer, default=0, nullable=False)
    created_by_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
