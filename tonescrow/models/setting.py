# tonescrow/models/setting.py

from sqlalchemy import Column, String, Text, DateTime, func

from tonescrow.db.session import Base


class Setting(Base):
    """Глобальные настройки маркетплейса в формате ключ/значение."""
    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
