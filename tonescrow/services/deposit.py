# tonescrow/services/deposit.py

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from tonescrow.bot.services.notification import notify, notify_admins
from tonescrow.core.exceptions import (
    AlreadyProcessed,
    ConfigurationMissing,
    InvalidTransition,
    NotFound,
    UserBlocked,
    ValidationError,
)
from tonescrow.crud import deposit as crud_deposit
from tonescrow.crud import profile as crud_profile
from tonescrow.models.deposit import Deposit, DepositStatus as D
from tonescrow.models.profile import Profile
from tonescrow.schemas import notification as n
from tonescrow.schemas.settings import EscrowSettings
from tonescrow.services import settlement as settlement_service
from tonescrow.services.custody import get_receiving_address
from tonescrow.services.settings import ensure_not_maintenance
from tonescrow.services.withdrawal import METHOD_CURRENCY
from tonescrow.utils.money import quantize, validate_currency
from tonescrow.utils.ton import generate_code

logger = logging.getLogger(__name__)

DEPOSIT_MEMO_PREFIX = "dep_"


def deposit_memo(deposit: Deposit) -> str:
    return f"{DEPOSIT_MEMO_PREFIX}{deposit.unique_code}"


def _get_deposit_or_404(db: Session, deposit_id: int) -> Deposit:
    deposit = crud_deposit.get_deposit(db, deposit_id)
    if deposit is None:
        raise NotFound(f"Deposit {deposit_id} not found")
    return deposit


def create_deposit(
    db: Session,
    profile: Profile,
    amount: Decimal,
    currency: str,
    method: str,
    escrow_settings: EscrowSettings,
    screenshot_url: str | None = None,
) -> tuple[Deposit, str | None]:
    """
    Заявка на пополнение. Баланс меняется только при подтверждении.
    TON: уникальный код для memo и срок действия; MMK: обязателен скриншот перевода.
    Возвращает (депозит, адрес для оплаты или None для MMK).
    """
    ensure_not_maintenance(escrow_settings)
    if profile.is_blocked:
        raise UserBlocked("Your account is blocked.", reason=profile.blocked_reason)

    validate_currency(currency)
    if METHOD_CURRENCY.get(method) != currency:
        raise ValidationError(f"Payment method {method} cannot be used for {currency}", method=method, currency=currency)
    if not escrow_settings.is_method_enabled(method):
        raise ValidationError(f"Payment method {method} is currently disabled", method=method)

    amount = quantize(amount, currency)
    if amount <= 0:
        raise ValidationError("Amount must be positive", amount=amount)

    code = generate_code()
    while crud_deposit.get_deposit_by_code(db, code) is not None:
        code = generate_code()

    pay_to = None
    expires_at = None
    if currency == "TON":
        pay_to = get_receiving_address(db)
        if not pay_to:
            raise ConfigurationMissing("TON receiving wallet is not configured.")
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=escrow_settings.deposit_expiry_minutes)
    elif not screenshot_url:
        raise ValidationError("Payment screenshot is required for MMK deposits")

    deposit = crud_deposit.create_deposit(
        db,
        profile_id=profile.id,
        amount=amount,
        currency=currency,
        unique_code=code,
        status=D.PENDING,
        payment_method=method,
        screenshot_url=str(screenshot_url) if screenshot_url else None,
        expires_at=expires_at,
    )
    logger.info(f"Deposit {deposit.id} created: profile={profile.id} {amount} {currency} via {method}, code={code}")

    if currency == "MMK":
        notify_admins(
            "New MMK deposit",
            f"#{deposit.id}: {amount} MMK via {method}\nProfile {profile.id} (tg {profile.telegram_id})\nProof: {deposit.screenshot_url}",
            db=db,
        )
    return deposit, pay_to


def confirm_deposit(
    db: Session,
    deposit_id: int,
    amount: Decimal | None = None,
    tx_hash: str | None = None,
    notes: str | None = None,
) -> Deposit:
    """
    pending -> confirmed + зачисление ровно один раз в одной транзакции БД.
    amount: фактически полученная сумма (для TON из блокчейна); по умолчанию заявленная.
    """
    deposit = _get_deposit_or_404(db, deposit_id)
    if deposit.status == D.CONFIRMED:
        raise AlreadyProcessed(f"Deposit {deposit_id} is already confirmed", status=deposit.status)
    if deposit.status != D.PENDING:
        raise InvalidTransition(f"Deposit {deposit_id} is '{deposit.status}'", status=deposit.status)

    credited = quantize(amount if amount is not None else deposit.amount, deposit.currency)
    if credited <= 0:
        raise ValidationError("Deposit amount must be positive", amount=credited)

    try:
        if not crud_deposit.transition(
            db, deposit_id, D.PENDING, D.CONFIRMED,
            amount=credited, ton_tx_hash=tx_hash, admin_notes=notes,
            confirmed_at=datetime.now(timezone.utc),
        ):
            db.rollback()
            db.expire_all()
            current = _get_deposit_or_404(db, deposit_id)
            if current.status == D.CONFIRMED:
                raise AlreadyProcessed(f"Deposit {deposit_id} is already confirmed", status=current.status)
            raise InvalidTransition(f"Deposit {deposit_id} is '{current.status}'", status=current.status)

        settlement_service.credit(db, deposit.profile_id, credited, deposit.currency, reason=f"deposit #{deposit_id}")
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(deposit)
    logger.info(f"Deposit {deposit_id} confirmed: +{credited} {deposit.currency} to profile {deposit.profile_id}")
    profile = crud_profile.get_profile(db, deposit.profile_id)
    notify(n.DepositConfirmed(
        chat_id=profile.telegram_id if profile else None, deposit_id=deposit.id,
        amount=credited, currency=deposit.currency,
    ))
    return deposit


def reject_deposit(db: Session, deposit_id: int, notes: str | None = None) -> Deposit:
    deposit = _get_deposit_or_404(db, deposit_id)
    if deposit.status == D.REJECTED:
        raise AlreadyProcessed(f"Deposit {deposit_id} is already rejected", status=deposit.status)
    if deposit.status != D.PENDING:
        raise InvalidTransition(f"Deposit {deposit_id} is '{deposit.status}'", status=deposit.status)

    if not crud_deposit.transition(db, deposit_id, D.PENDING, D.REJECTED, admin_notes=notes):
        db.rollback()
        raise InvalidTransition(f"Deposit {deposit_id} changed concurrently")
    db.commit()

    db.refresh(deposit)
    logger.info(f"Deposit {deposit_id} rejected. Notes: {notes}")
    profile = crud_profile.get_profile(db, deposit.profile_id)
    notify(n.DepositRejected(chat_id=profile.telegram_id if profile else None, deposit_id=deposit.id, notes=notes))
    return deposit


def expire_deposits(db: Session, now: datetime | None = None) -> int:
    """Помечает просроченные pending-депозиты как expired. Балансы не трогает."""
    now = now or datetime.now(timezone.utc)
    expired = crud_deposit.expire_overdue(db, now)
    db.commit()
    if expired:
        logger.info(f"Expired {expired} pending deposits")
    return expired
