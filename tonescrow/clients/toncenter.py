# tonescrow/clients/toncenter.py

import httpx
from decimal import Decimal
from tonescrow.core.config import settings
from tonescrow.utils.ton import nano_to_ton
import logging

logger = logging.getLogger(__name__)

class ToncenterClient:
    """
    Асинхронный клиент для toncenter.com API v2 (только чтение: балансы и входящие переводы).
    Подписание и отправка переводов живут в services/custody.py.
    """
    def __init__(self, base_url: str, api_key: str | None):
        headers = {"X-API-Key": api_key} if api_key else {}
        timeouts = httpx.Timeout(10.0, read=20.0)
        self.async_client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeouts
        )

    async def get(self, endpoint: str, params: dict = None) -> dict:
        """
        Выполняет GET-запрос и возвращает поле `result`.
        Toncenter отвечает {"ok": false, "error": ...} даже при HTTP 200, это тоже ошибка.
        """
        try:
            response = await self.async_client.get(endpoint, params=params)
            response.raise_for_status()
        except httpx.RequestError as e:
            logger.error(f"Network error during GET request to {e.request.url!r}.", exc_info=True)
            raise
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error during GET request to {e.request.url!r}: {e.response.text}", exc_info=True)
            raise

        data = response.json()
        if not data.get("ok"):
            logger.error(f"Toncenter returned error for {endpoint}: {data.get('error')}")
            raise ValueError(f"Toncenter error: {data.get('error')}")
        return data["result"]

    async def get_address_balance(self, address: str) -> Decimal:
        """Баланс адреса в TON."""
        result = await self.get("getAddressBalance", params={"address": address})
        return nano_to_ton(result)

    async def get_transactions(self, address: str, limit: int = 50) -> list[dict]:
        """
        Последние транзакции адреса, нормализованные к виду
        {"hash", "amount" (TON), "source", "memo", "utime"}. Берем только входящие сообщения.
        """
        raw = await self.get("getTransactions", params={"address": address, "limit": limit})
        result = []
        for tx in raw:
            in_msg = tx.get("in_msg") or {}
            tx_hash = (tx.get("transaction_id") or {}).get("hash") or tx.get("hash") or f"{tx.get('utime')}_{tx.get('lt')}"
            result.append({
                "hash": tx_hash,
                "amount": nano_to_ton(in_msg.get("value") or 0),
                "source": in_msg.get("source") or "",
                "memo": (in_msg.get("message") or "").strip(),
                "utime": tx.get("utime"),
            })
        return result

# Создаем синглтон
toncenter_client = ToncenterClient(
    base_url=settings.TONCENTER_API_URL,
    api_key=settings.TONCENTER_API_KEY
)
