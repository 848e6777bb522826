# tonescrow/crud/setting.py
from sqlalchemy.orm import Session

from tonescrow.models.setting import Setting


def get_value(db: Session, key: str) -> str | None:
    row = db.query(Setting).filter(Setting.key == key).first()
    return row.value if row else None

def get_all(db: Session) -> dict[str, str | None]:
    return {row.key: row.value for row in db.query(Setting).all()}

def set_value(db: Session, key: str, value: str | None, description: str | None = None) -> Setting:
    """Upsert одного ключа. Требует внешнего вызова db.commit()."""
    row = db.query(Setting).filter(Setting.key == key).first()
    if row is None:
        row = Setting(key=key, value=value, description=description)
        db.add(row)
    else:
        row.value = value
        if description is not None:
            row.description = description
    return row

def delete_key(db: Session, key: str) -> bool:
    deleted = db.query(Setting).filter(Setting.key == key).delete(synchronize_session=False)
    return deleted > 0
