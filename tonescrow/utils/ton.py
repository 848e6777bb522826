# tonescrow/utils/ton.py
import re
import secrets
import string
from datetime import datetime, timezone
from decimal import Decimal

NANOTONS_IN_TON = Decimal(1_000_000_000)

# user-friendly адрес (base64url, 48 символов, EQ/UQ/kQ/0Q) или raw "0:<hex64>"
_FRIENDLY_ADDRESS_RE = re.compile(r"^[EUk0]Q[A-Za-z0-9_-]{46}$")
_RAW_ADDRESS_RE = re.compile(r"^-?[0-9]+:[0-9a-fA-F]{64}$")
_PHONE_RE = re.compile(r"^\+?[0-9]{7,15}$")


def is_valid_ton_address(address: str | None) -> bool:
    if not address:
        return False
    address = address.strip()
    return bool(_FRIENDLY_ADDRESS_RE.match(address) or _RAW_ADDRESS_RE.match(address))


def is_valid_phone_account(value: str | None) -> bool:
    """KBZPay / WavePay: номер телефона или счета, только цифры и необязательный '+'."""
    if not value:
        return False
    return bool(_PHONE_RE.match(value.replace(" ", "").replace("-", "")))


def nano_to_ton(nanotons: int | str) -> Decimal:
    return Decimal(int(nanotons)) / NANOTONS_IN_TON


def generate_code(length: int = 6) -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_link_token(length: int = 12) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite возвращает naive datetime, Postgres - aware. Приводим к aware UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
