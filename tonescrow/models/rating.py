# tonescrow/models/rating.py
from sqlalchemy import Column, Integer, ForeignKey, DateTime, Text, CheckConstraint, UniqueConstraint, func
from sqlalchemy.orm import relationship

from tonescrow.db.session import Base


class Rating(Base):
    """Оценка второй стороны завершенной сделки: 1-5 звезд и необязательный комментарий."""
    __tablename__ = "ratings"
    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_ratings_rating_range"),
        # Одна оценка от участника на сделку
        UniqueConstraint("transaction_id", "rater_id", name="uq_ratings_transaction_rater"),
    )

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, index=True)
    rater_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    rated_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    rater = relationship("Profile", foreign_keys=[rater_id])
    rated = relationship("Profile", foreign_keys=[rated_id])
