# tonescrow/services/custody.py
"""
Кастодиальный TON-кошелек платформы.

Мнемоника хранится только в зашифрованном виде (setting `ton_mnemonic_encrypted`)
и расшифровывается на время одной операции. Наружу отдаются адрес, баланс и
результат перевода с четким разделением исходов:
  * DefiniteTransferFailure  - перевод точно не ушел в сеть, повтор безопасен;
  * UncertainExternalOutcome - перевод мог уйти, только ручная сверка.

Все проверки (адрес, сумма, memo, ключ API, расшифровка мнемоники) выполняются
ДО вызова отправки. Любая ошибка самого вызова отправки считается неизвестным
исходом, кроме доказанного отказа в соединении.
"""
import asyncio
import logging
import socket
import time
from decimal import Decimal, ROUND_DOWN

from pydantic import BaseModel
from sqlalchemy.orm import Session
from tonutils.client import TonapiClient
from tonutils.utils import to_amount
from tonutils.wallet import WalletV4R2

from tonescrow.clients.toncenter import toncenter_client
from tonescrow.core.config import settings
from tonescrow.core.exceptions import (
    ConfigurationMissing,
    DecryptionError,
    DefiniteTransferFailure,
    InsufficientFunds,
    UncertainExternalOutcome,
    ValidationError,
)
from tonescrow.crud import setting as crud_setting
from tonescrow.services import secret_store
from tonescrow.services.settings import CUSTODY_ADDRESS_KEY, MNEMONIC_KEY
from tonescrow.utils.ton import is_valid_ton_address

logger = logging.getLogger(__name__)

MNEMONIC_WORDS = 24
MASKED_MNEMONIC = "●●●● ●●●● ●●●● ●●●● ●●●● ●●●● (24 words)"

NANOTONS_PER_TON = Decimal(10) ** 9
# Текстовый комментарий должен поместиться в одну ячейку вместе с 32-битным префиксом
MAX_MEMO_BYTES = 123


class TransferReceipt(BaseModel):
    reference: str
    destination: str
    amount: Decimal


def normalize_mnemonic(mnemonic: str) -> list[str]:
    words = mnemonic.strip().lower().split()
    if len(words) != MNEMONIC_WORDS or not all(word.isalpha() for word in words):
        raise ValidationError(f"Invalid mnemonic format. Must be {MNEMONIC_WORDS} words.")
    return words


def _make_client() -> TonapiClient:
    if not settings.TONAPI_KEY:
        raise ConfigurationMissing("TONAPI_KEY is not configured.")
    return TonapiClient(api_key=settings.TONAPI_KEY, is_testnet=settings.TON_IS_TESTNET)


def _derive_address(words: list[str]) -> str:
    # Клиент нужен конструктору кошелька, сеть при выводе адреса не используется
    client = TonapiClient(api_key=settings.TONAPI_KEY or "-", is_testnet=settings.TON_IS_TESTNET)
    wallet, _, _, _ = WalletV4R2.from_mnemonic(client, words)
    return wallet.address.to_str(is_bounceable=False)


def _is_connect_failure(error: BaseException) -> bool:
    """Соединение не было установлено (отказ, DNS): запрос до сети не дошел."""
    seen = set()
    current = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, (ConnectionRefusedError, socket.gaierror)):
            return True
        os_error = getattr(current, "os_error", None)
        if isinstance(os_error, (ConnectionRefusedError, socket.gaierror)):
            return True
        current = current.__cause__ or current.__context__
    return False


def classify_transfer_error(error: BaseException) -> Exception:
    """
    Исход ошибки, возникшей в вызове отправки. Ответ сети мог не разобраться уже
    после рассылки сообщения, поэтому "точно не ушло" только при отказе в соединении.
    """
    message = str(error).strip() or repr(error)
    if _is_connect_failure(error):
        return DefiniteTransferFailure(f"TON API unreachable, transfer not sent: {message}")
    return UncertainExternalOutcome(f"Transfer outcome unknown: {message}")


def to_nanotons(amount: Decimal) -> int:
    return int((Decimal(amount) * NANOTONS_PER_TON).to_integral_value(rounding=ROUND_DOWN))


class TonCustodyWallet:
    def __init__(self, db: Session, passphrase: str | None = None):
        self.db = db
        self.passphrase = passphrase if passphrase is not None else settings.MNEMONIC_PASSPHRASE

    def is_configured(self) -> bool:
        """Есть мнемоника и ключ API для отправки."""
        return bool(crud_setting.get_value(self.db, MNEMONIC_KEY)) and bool(settings.TONAPI_KEY)

    def _load_mnemonic(self) -> list[str]:
        blob = crud_setting.get_value(self.db, MNEMONIC_KEY)
        if not blob:
            raise ConfigurationMissing("Custody wallet is not configured.")
        return secret_store.decrypt(blob, self.passphrase).split()

    def ensure_ready(self) -> None:
        """
        Проверка перед списанием с баланса пользователя: ключ API задан,
        мнемоника расшифровывается. Бросает ConfigurationMissing / DecryptionError.
        """
        if not settings.TONAPI_KEY:
            raise ConfigurationMissing("TONAPI_KEY is not configured.")
        self._load_mnemonic()

    async def get_address(self) -> str:
        address = crud_setting.get_value(self.db, CUSTODY_ADDRESS_KEY)
        if address:
            return address
        return _derive_address(self._load_mnemonic())

    async def get_balance(self) -> Decimal:
        address = await self.get_address()
        try:
            return await asyncio.wait_for(
                toncenter_client.get_address_balance(address),
                timeout=settings.TON_BALANCE_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error(f"Custody balance request for {address} timed out")
            raise UncertainExternalOutcome("Custody balance request timed out")
        except Exception as e:
            raise DefiniteTransferFailure(f"Custody balance unavailable: {e}")

    def _prepare_transfer(self, destination: str, amount: Decimal, memo: str):
        """Все, что может отказать до отправки. Ошибки здесь означают: в сеть ничего не ушло."""
        if not is_valid_ton_address(destination):
            raise DefiniteTransferFailure(f"Malformed destination address: {destination}")
        nanotons = to_nanotons(amount)
        if nanotons <= 0:
            raise DefiniteTransferFailure(f"Transfer amount must be positive, got {amount}")
        if len((memo or "").encode("utf-8")) > MAX_MEMO_BYTES:
            raise DefiniteTransferFailure(f"Transfer memo is longer than {MAX_MEMO_BYTES} bytes")

        try:
            self.ensure_ready()
        except (ConfigurationMissing, DecryptionError) as e:
            raise DefiniteTransferFailure(f"Custody wallet unavailable, transfer not sent: {e.message}")

        try:
            wallet, _, _, _ = WalletV4R2.from_mnemonic(_make_client(), self._load_mnemonic())
        except Exception as e:
            raise DefiniteTransferFailure(f"Failed to open custody wallet: {e}")
        return wallet, nanotons

    async def transfer(self, destination: str, amount: Decimal, memo: str) -> TransferReceipt:
        """
        Подписывает и отправляет перевод. Таймаут и любая ошибка отправки, кроме
        отказа в соединении, трактуются как неизвестный исход: автоповтор запрещен.
        """
        wallet, nanotons = self._prepare_transfer(destination, amount, memo)

        logger.info(f"Custody transfer: {amount} TON ({nanotons} nanoton) -> {destination} (memo: {memo})")
        try:
            tx_hash = await asyncio.wait_for(
                wallet.transfer(destination=destination, amount=to_amount(nanotons, 9, 9), body=memo),
                timeout=settings.TON_TRANSFER_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.critical(f"Custody transfer to {destination} timed out, outcome unknown")
            raise UncertainExternalOutcome("Transfer timed out after broadcast attempt")
        except Exception as e:
            outcome = classify_transfer_error(e)
            logger.error(f"Custody transfer to {destination} failed ({outcome.code}): {e}", exc_info=True)
            raise outcome

        reference = str(tx_hash) if tx_hash else f"auto_{int(time.time() * 1000)}"
        logger.info(f"Custody transfer sent: {amount} TON -> {destination}, reference={reference}")
        return TransferReceipt(reference=reference, destination=destination, amount=amount)


def get_custody_wallet(db: Session) -> TonCustodyWallet:
    return TonCustodyWallet(db)


def get_receiving_address(db: Session) -> str | None:
    """Адрес для входящих платежей: явно заданный admin_ton_wallet, иначе кастодиальный кошелек."""
    return crud_setting.get_value(db, "admin_ton_wallet") or crud_setting.get_value(db, CUSTODY_ADDRESS_KEY)


# --- Управление мнемоникой (админка) ---

def store_mnemonic(db: Session, mnemonic: str, passphrase: str | None = None) -> str:
    """Проверяет, шифрует и сохраняет мнемонику. Возвращает адрес кошелька."""
    passphrase = passphrase if passphrase is not None else settings.MNEMONIC_PASSPHRASE
    words = normalize_mnemonic(mnemonic)
    address = _derive_address(words)
    blob = secret_store.encrypt(" ".join(words), passphrase)

    crud_setting.set_value(db, MNEMONIC_KEY, blob, description="Encrypted custody wallet mnemonic")
    crud_setting.set_value(db, CUSTODY_ADDRESS_KEY, address, description="Custody wallet address")
    db.commit()
    logger.warning(f"Custody mnemonic updated, wallet address {address}")
    return address


def delete_mnemonic(db: Session) -> bool:
    deleted = crud_setting.delete_key(db, MNEMONIC_KEY)
    crud_setting.delete_key(db, CUSTODY_ADDRESS_KEY)
    db.commit()
    if deleted:
        logger.warning("Custody mnemonic deleted")
    return deleted


def get_mnemonic_status(db: Session) -> dict:
    configured = bool(crud_setting.get_value(db, MNEMONIC_KEY))
    return {
        "configured": configured,
        "masked_mnemonic": MASKED_MNEMONIC if configured else None,
        "address": crud_setting.get_value(db, CUSTODY_ADDRESS_KEY),
    }


async def manual_transfer(db: Session, destination: str, amount: Decimal, memo: str | None = None) -> TransferReceipt:
    """Ручной перевод с кастодиального кошелька (админка). Баланс проверяется с учетом резерва на комиссию сети."""
    if amount <= 0:
        raise ValidationError("Amount must be positive", amount=amount)
    if not is_valid_ton_address(destination):
        raise ValidationError("Invalid TON address", destination=destination)

    wallet = get_custody_wallet(db)
    balance = await wallet.get_balance()
    required = amount + settings.TON_NETWORK_FEE_RESERVE
    if balance < required:
        raise InsufficientFunds(required=required, available=balance, currency="TON")

    receipt = await wallet.transfer(destination, amount, memo or f"manual_{int(time.time())}")
    logger.warning(f"Manual custody transfer: {amount} TON -> {destination}, reference={receipt.reference}")
    return receipt


async def verify_mnemonic(db: Session, with_balance: bool = True) -> dict:
    """Расшифровывает мнемонику, выводит адрес и (опционально) запрашивает баланс."""
    wallet = get_custody_wallet(db)
    address = _derive_address(wallet._load_mnemonic())
    balance = await wallet.get_balance() if with_balance else None
    return {"configured": True, "address": address, "balance": balance}
