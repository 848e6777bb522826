# tonescrow/services/ton_monitor.py
"""
Мониторинг входящих TON-переводов на кошелек платформы.

memo `tx_<link>`  -> оплата эскроу-сделки (допуск по сумме max(0.05, 5%));
memo `dep_<CODE>` -> пополнение баланса на фактически полученную сумму.
Все остальное логируется для ручного разбора.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from tonescrow.bot.services.notification import notify_admins
from tonescrow.clients.toncenter import toncenter_client
from tonescrow.core.config import settings
from tonescrow.core.exceptions import AlreadyProcessed, EscrowError
from tonescrow.crud import deposit as crud_deposit
from tonescrow.crud import transaction as crud_transaction
from tonescrow.models.deposit import DepositStatus
from tonescrow.models.transaction import PaymentMethod, TransactionStatus
from tonescrow.services import deposit as deposit_service
from tonescrow.services import escrow as escrow_service
from tonescrow.services.custody import get_receiving_address
from tonescrow.utils.ton import as_utc

logger = logging.getLogger(__name__)

MIN_INCOMING_TON = Decimal("0.01")
MIN_TOLERANCE_TON = Decimal("0.05")
TOLERANCE_RATE = Decimal("0.05")

TX_MEMO_PREFIX = "tx_"


def amount_matches(received: Decimal, expected: Decimal) -> bool:
    tolerance = max(MIN_TOLERANCE_TON, expected * TOLERANCE_RATE)
    return abs(received - expected) <= tolerance


def _already_recorded(db: Session, tx_hash: str) -> bool:
    return (
        crud_deposit.get_deposit_by_tx_hash(db, tx_hash) is not None
        or crud_transaction.get_transaction_by_tx_hash(db, tx_hash) is not None
    )


def _process_escrow_payment(db: Session, tx_hash: str, amount: Decimal, link: str, now: datetime) -> str:
    transaction = crud_transaction.get_transaction_by_link(db, link)
    if transaction is None or transaction.status != TransactionStatus.PENDING_PAYMENT or transaction.currency != "TON":
        logger.warning(f"Incoming {amount} TON ({tx_hash}) references unknown or inactive deal link '{link}'")
        notify_admins("Unmatched payment", f"{amount} TON with memo tx_{link} does not match a payable deal.\nHash: {tx_hash}", db=db)
        return "unmatched"

    expires_at = as_utc(transaction.expires_at)
    if expires_at is not None and expires_at < now:
        escrow_service.cancel_for_late_payment(db, transaction.id, amount, tx_hash)
        return "late_payment"

    expected = Decimal(transaction.amount)
    if not amount_matches(amount, expected):
        logger.warning(f"Payment for transaction {transaction.id}: expected {expected} TON, got {amount} TON ({tx_hash})")
        notify_admins(
            "Payment amount mismatch",
            f"Transaction #{transaction.id}: expected {expected} TON, received {amount} TON.\nHash: {tx_hash}",
            db=db,
        )
        return "amount_mismatch"

    escrow_service.confirm_payment(db, transaction.id, tx_hash, method=PaymentMethod.ONCHAIN)
    if amount >= settings.HIGH_VALUE_TX_ALERT_TON:
        notify_admins("High-value payment", f"Transaction #{transaction.id}: {amount} TON received.\nHash: {tx_hash}", db=db)
    return "payment_confirmed"


def _process_deposit(db: Session, tx_hash: str, amount: Decimal, code: str, now: datetime) -> str:
    deposit = crud_deposit.get_deposit_by_code(db, code.upper())
    if deposit is None or deposit.status != DepositStatus.PENDING or deposit.currency != "TON":
        logger.warning(f"Incoming {amount} TON ({tx_hash}) references unknown deposit code '{code}'")
        notify_admins("Unmatched deposit", f"{amount} TON with memo dep_{code} does not match a pending deposit.\nHash: {tx_hash}", db=db)
        return "unmatched"

    expires_at = as_utc(deposit.expires_at)
    if expires_at is not None and expires_at < now:
        if crud_deposit.transition(db, deposit.id, DepositStatus.PENDING, DepositStatus.EXPIRED,
                                   admin_notes=f"Payment {amount} TON arrived after expiry. Hash: {tx_hash}"):
            db.commit()
            notify_admins("Late deposit", f"Deposit #{deposit.id}: {amount} TON arrived after expiry.\nHash: {tx_hash}", db=db)
        else:
            db.rollback()
        return "deposit_expired"

    deposit_service.confirm_deposit(db, deposit.id, amount=amount, tx_hash=tx_hash)
    return "deposit_confirmed"


def process_incoming(db: Session, incoming: dict, now: datetime | None = None) -> str:
    """Обрабатывает один входящий перевод. Возвращает метку исхода."""
    now = now or datetime.now(timezone.utc)
    tx_hash = incoming["hash"]
    amount = Decimal(incoming["amount"])
    memo = incoming.get("memo") or ""

    if amount < MIN_INCOMING_TON:
        return "ignored"
    if _already_recorded(db, tx_hash):
        return "duplicate"

    try:
        if memo.startswith(TX_MEMO_PREFIX):
            return _process_escrow_payment(db, tx_hash, amount, memo[len(TX_MEMO_PREFIX):], now)
        if memo.startswith(deposit_service.DEPOSIT_MEMO_PREFIX):
            return _process_deposit(db, tx_hash, amount, memo[len(deposit_service.DEPOSIT_MEMO_PREFIX):], now)
    except AlreadyProcessed:
        return "duplicate"

    logger.info(f"Incoming {amount} TON without recognizable memo ('{memo}'), hash={tx_hash}")
    return "unmatched"


async def run_ton_monitor(db: Session, client=None, limit: int = 50) -> dict:
    """Один проход мониторинга. Переводы обрабатываются от старых к новым."""
    client = client or toncenter_client
    address = get_receiving_address(db)
    if not address:
        logger.warning("TON monitor skipped: receiving wallet is not configured.")
        return {"skipped": True}

    incoming = await client.get_transactions(address, limit=limit)
    report: dict = {}
    for item in reversed(incoming):
        try:
            outcome = process_incoming(db, item)
        except EscrowError as e:
            logger.error(f"TON monitor failed to process {item.get('hash')}: {e.message}")
            outcome = "error"
        report[outcome] = report.get(outcome, 0) + 1

    matched = {k: v for k, v in report.items() if k not in ("ignored", "duplicate")}
    if matched:
        logger.info(f"TON monitor pass: {report}")
    return report
