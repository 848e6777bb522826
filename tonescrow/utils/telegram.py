# tonescrow/utils/telegram.py
import hmac
import hashlib
import json
from urllib.parse import unquote, parse_qsl
from tonescrow.core.config import settings

def validate_init_data(init_data: str) -> tuple[bool, dict]:
    """
    Валидирует initData от Telegram Mini App.
    Возвращает кортеж: (валидность, данные). Поле 'user' уже распарсено из JSON.
    """
    try:
        parsed_data = dict(parse_qsl(unquote(init_data)))
    except ValueError:
        return False, {}

    if "hash" not in parsed_data:
        return False, {}

    hash_str = parsed_data.pop("hash")
    data_check_string = "\n".join(f"{k}={v}" for k, v in sorted(parsed_data.items()))

    secret_key = hmac.new("WebAppData".encode(), settings.TELEGRAM_BOT_TOKEN.encode(), hashlib.sha256).digest()
    calculated_hash = hmac.new(secret_key, data_check_string.encode(), hashlib.sha256).hexdigest()

    if not hmac.compare_digest(calculated_hash, hash_str):
        return False, {}

    if "user" in parsed_data:
        try:
            parsed_data["user"] = json.loads(parsed_data["user"])
        except json.JSONDecodeError:
            return False, {}
    return True, parsed_data
