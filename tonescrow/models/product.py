# tonescrow/models/product.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric, Boolean, func
from sqlalchemy.orm import relationship

from tonescrow.db.session import Base

class Product(Base):
    __tablename__ = "products"
    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    price = Column(Numeric(20, 9), nullable=False)
    currency = Column(String, nullable=False, default="TON", server_default="TON")
    # Ссылка, которую продавец отдает покупателю: t.me/<bot>?start=buy_<unique_link>
    unique_link = Column(String, unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, server_default='true')
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    seller = relationship("Profile")
