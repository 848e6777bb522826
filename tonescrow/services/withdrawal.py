# tonescrow/services/withdrawal.py

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Tuple

from sqlalchemy.orm import Session

from tonescrow.bot.services.notification import notify, notify_admins
from tonescrow.core.config import settings
from tonescrow.core.exceptions import (
    AlreadyProcessed,
    ConfigurationMissing,
    CustodyBalanceInsufficient,
    DecryptionError,
    DefiniteTransferFailure,
    EscrowError,
    InsufficientFunds,
    InvalidTransition,
    NotFound,
    UncertainExternalOutcome,
    UserBlocked,
    ValidationError,
)
from tonescrow.crud import profile as crud_profile
from tonescrow.crud import withdrawal as crud_withdrawal
from tonescrow.models.profile import Profile
from tonescrow.models.referral import ReferralEarning
from tonescrow.models.withdrawal import Withdrawal, WithdrawalStatus as W
from tonescrow.schemas import notification as n
from tonescrow.schemas.settings import EscrowSettings
from tonescrow.schemas.withdrawal import AutoWithdrawReport
from tonescrow.services import settlement as settlement_service
from tonescrow.services import settings as settings_service
from tonescrow.services.custody import get_custody_wallet
from tonescrow.utils.money import percent_of, quantize, validate_currency
from tonescrow.utils.ton import is_valid_phone_account, is_valid_ton_address

logger = logging.getLogger(__name__)

# Метод вывода -> валюта, с баланса которой он списывает
METHOD_CURRENCY = {
    "TON": "TON",
    "KBZPAY": "MMK",
    "WAVEPAY": "MMK",
}


def _get_withdrawal_or_404(db: Session, withdrawal_id: int) -> Withdrawal:
    withdrawal = crud_withdrawal.get_withdrawal(db, withdrawal_id)
    if withdrawal is None:
        raise NotFound(f"Withdrawal {withdrawal_id} not found")
    return withdrawal

def _chat_id(db: Session, profile_id: int) -> int | None:
    profile = crud_profile.get_profile(db, profile_id)
    return profile.telegram_id if profile else None

def _ensure_pending(withdrawal: Withdrawal) -> None:
    if withdrawal.status in (W.APPROVED, W.COMPLETED):
        raise AlreadyProcessed(f"Withdrawal {withdrawal.id} is already {withdrawal.status}", status=withdrawal.status)
    if withdrawal.status != W.PENDING:
        raise InvalidTransition(f"Withdrawal {withdrawal.id} is '{withdrawal.status}'", status=withdrawal.status)

def _lost_race(db: Session, withdrawal_id: int) -> None:
    db.rollback()
    db.expire_all()
    _ensure_pending(_get_withdrawal_or_404(db, withdrawal_id))
    # Строка снова pending, но UPDATE ее не задел: считаем конфликтом
    raise InvalidTransition(f"Withdrawal {withdrawal_id} changed concurrently, retry")

def _notify_referral_rewards(paid: List[Tuple[Profile, ReferralEarning]]) -> None:
    for referrer, earning in paid:
        notify(n.ReferralEarned(
            chat_id=referrer.telegram_id, amount=earning.amount, currency=earning.currency, level=earning.level,
        ))

def _debit_and_approve(db: Session, withdrawal: Withdrawal, **fields) -> None:
    """
    pending -> approved + списание полной суммы с баланса. Не коммитит.
    Если денег не хватает, InsufficientFunds откатит и переход статуса.
    """
    if not crud_withdrawal.transition(db, withdrawal.id, W.PENDING, W.APPROVED, **fields):
        _lost_race(db, withdrawal.id)
    settlement_service.debit(
        db, withdrawal.profile_id, withdrawal.amount, withdrawal.currency,
        reason=f"withdrawal #{withdrawal.id}",
    )


# --- Создание заявки ---

def create_withdrawal(
    db: Session,
    profile: Profile,
    amount: Decimal,
    currency: str,
    destination: str,
    method: str,
    escrow_settings: EscrowSettings,
) -> Withdrawal:
    """
    Создает заявку на вывод. Баланс НЕ проверяется и НЕ меняется:
    списание происходит только при одобрении.
    """
    settings_service.ensure_not_maintenance(escrow_settings)
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
    minimum = escrow_settings.min_withdrawal(currency)
    if amount < minimum:
        raise ValidationError(f"Minimum withdrawal is {minimum} {currency}", minimum=minimum)

    destination = (destination or "").strip()
    if method == "TON":
        if not is_valid_ton_address(destination):
            raise ValidationError("Invalid TON wallet address", destination=destination)
    elif not is_valid_phone_account(destination):
        raise ValidationError("Invalid phone or account number", destination=destination)

    fee = percent_of(amount, escrow_settings.withdrawal_fee_rate, currency)
    withdrawal = crud_withdrawal.create_withdrawal(
        db,
        profile_id=profile.id,
        amount=amount,
        fee=fee,
        payout_amount=amount - fee,
        currency=currency,
        destination=destination,
        payment_method=method,
        status=W.PENDING,
    )
    logger.info(f"Withdrawal {withdrawal.id} created: profile={profile.id} {amount} {currency} via {method}")
    notify_admins(
        "New withdrawal request",
        f"#{withdrawal.id}: {amount} {currency} via {method}\nProfile {profile.id} (tg {profile.telegram_id})\nTo: {destination}",
        db=db,
    )
    return withdrawal


# --- Ручной режим ---

def approve_withdrawal(
    db: Session,
    withdrawal_id: int,
    escrow_settings: EscrowSettings,
    notes: str | None = None,
    reference: str | None = None,
) -> Withdrawal:
    """
    Одобрение администратором (выплата производится вне системы).
    Одна атомарная единица: условное списание + pending -> approved + реферальные награды.
    """
    withdrawal = _get_withdrawal_or_404(db, withdrawal_id)
    _ensure_pending(withdrawal)

    try:
        _debit_and_approve(
            db, withdrawal,
            admin_notes=notes,
            tx_reference=reference,
            processed_at=datetime.now(timezone.utc),
        )
        paid = settlement_service.pay_referral_rewards(db, withdrawal, escrow_settings)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(withdrawal)
    logger.info(f"Withdrawal {withdrawal.id} approved manually ({withdrawal.amount} {withdrawal.currency}), referral rewards: {len(paid)}")
    notify(n.WithdrawalApproved(
        chat_id=_chat_id(db, withdrawal.profile_id), withdrawal_id=withdrawal.id,
        payout_amount=withdrawal.payout_amount, currency=withdrawal.currency, reference=reference,
    ))
    _notify_referral_rewards(paid)
    return withdrawal


def reject_withdrawal(db: Session, withdrawal_id: int, notes: str | None = None) -> Withdrawal:
    """pending -> rejected. Баланс не трогаем: при создании ничего не списывалось."""
    withdrawal = _get_withdrawal_or_404(db, withdrawal_id)
    if withdrawal.status == W.REJECTED:
        raise AlreadyProcessed(f"Withdrawal {withdrawal_id} is already rejected", status=withdrawal.status)
    if withdrawal.status != W.PENDING:
        raise InvalidTransition(f"Withdrawal {withdrawal_id} is '{withdrawal.status}'", status=withdrawal.status)

    if not crud_withdrawal.transition(
        db, withdrawal_id, W.PENDING, W.REJECTED, admin_notes=notes, processed_at=datetime.now(timezone.utc)
    ):
        _lost_race(db, withdrawal_id)
    db.commit()

    db.refresh(withdrawal)
    logger.info(f"Withdrawal {withdrawal_id} rejected. Notes: {notes}")
    notify(n.WithdrawalRejected(
        chat_id=_chat_id(db, withdrawal.profile_id), withdrawal_id=withdrawal.id,
        amount=withdrawal.amount, currency=withdrawal.currency, notes=notes,
    ))
    return withdrawal


# --- Автоматический режим ---

async def process_automated_withdrawal(
    db: Session,
    withdrawal_id: int,
    custody,
    escrow_settings: EscrowSettings,
) -> Withdrawal:
    """
    Автовыплата TON через кастодиальный кошелек:
      (a) баланс кошелька -> (b) хватает ли payout + резерв на комиссию сети ->
      списание + pending -> approved -> (c) перевод -> (d, e) reference + completed + рефералка.

    Нехватка на кошельке: заявка остается pending, пишем заметку и алертим операторов.
    Перевод точно не ушел: возвращаем деньги на баланс и статус в pending.
    Исход неизвестен: остаемся в approved с needs_review, никаких автоповторов.
    """
    withdrawal = _get_withdrawal_or_404(db, withdrawal_id)
    if withdrawal.payment_method != "TON" or withdrawal.currency != "TON":
        raise ValidationError("Only TON withdrawals can be processed automatically")
    if withdrawal.needs_review:
        raise InvalidTransition(f"Withdrawal {withdrawal_id} is awaiting manual review", status=withdrawal.status)
    _ensure_pending(withdrawal)

    payout = Decimal(withdrawal.payout_amount)
    required = payout + settings.TON_NETWORK_FEE_RESERVE

    # Кошелек должен быть готов к подписи до того, как деньги спишутся с пользователя
    try:
        custody.ensure_ready()
    except (ConfigurationMissing, DecryptionError) as e:
        _hold_pending(db, withdrawal_id, "Custody wallet is not ready", f"custody wallet not ready ({e.message})")
        raise

    # (a) + (b)
    try:
        on_chain_balance = await custody.get_balance()
    except (UncertainExternalOutcome, DefiniteTransferFailure) as e:
        _hold_pending(db, withdrawal_id, "Custody balance unavailable", f"custody balance unavailable ({e.message})")
        e.extra.setdefault("stage", "balance_check")
        raise
    if on_chain_balance < required:
        note = (
            f"Auto-withdraw failed: insufficient custody balance "
            f"({on_chain_balance} TON < {required} TON). Needs manual processing."
        )
        crud_withdrawal.update_fields(db, withdrawal_id, admin_notes=note)
        db.commit()
        logger.error(f"Withdrawal {withdrawal_id}: {note}")
        notify_admins("Custody wallet balance too low", f"Withdrawal #{withdrawal_id}: {note}", db=db)
        raise CustodyBalanceInsufficient(
            required=required, available=on_chain_balance,
            message=f"Custody wallet balance {on_chain_balance} TON is below required {required} TON",
            withdrawal_id=withdrawal_id,
        )

    try:
        _debit_and_approve(db, withdrawal, processed_at=datetime.now(timezone.utc))
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Withdrawal {withdrawal_id} approved for automated payout of {payout} TON")

    # (c)
    try:
        receipt = await custody.transfer(withdrawal.destination, payout, memo=f"Withdrawal #{withdrawal_id}")
    except DefiniteTransferFailure as e:
        _revert_to_pending(db, withdrawal, reason=e.message)
        raise
    except (ConfigurationMissing, DecryptionError) as e:
        _revert_to_pending(db, withdrawal, reason=f"custody wallet not ready ({e.message})")
        raise DefiniteTransferFailure(f"Custody wallet unavailable, transfer not sent: {e.message}", withdrawal_id=withdrawal_id)
    except UncertainExternalOutcome as e:
        _flag_for_review(db, withdrawal, reason=e.message)
        raise
    except Exception as e:
        _flag_for_review(db, withdrawal, reason=f"Unexpected transfer error: {e}")
        raise UncertainExternalOutcome(f"Transfer outcome unknown: {e}", withdrawal_id=withdrawal_id)

    # (d) + (e)
    try:
        completed = crud_withdrawal.transition(
            db, withdrawal_id, W.APPROVED, W.COMPLETED,
            tx_reference=receipt.reference,
            processed_at=datetime.now(timezone.utc),
        )
        if not completed:
            db.rollback()
            _flag_for_review(db, withdrawal, reason=f"Transfer sent ({receipt.reference}) but status changed concurrently")
            raise UncertainExternalOutcome("Withdrawal status changed during transfer", withdrawal_id=withdrawal_id)
        paid = settlement_service.pay_referral_rewards(db, withdrawal, escrow_settings)
        db.commit()
    except UncertainExternalOutcome:
        raise
    except Exception:
        db.rollback()
        logger.critical(f"Withdrawal {withdrawal_id}: transfer {receipt.reference} sent but completion failed to persist", exc_info=True)
        _flag_for_review(db, withdrawal, reason=f"Transfer sent ({receipt.reference}) but completion failed to persist")
        raise

    db.refresh(withdrawal)
    logger.info(f"Withdrawal {withdrawal_id} completed: {payout} TON -> {withdrawal.destination}, ref={receipt.reference}")
    notify(n.WithdrawalCompleted(
        chat_id=_chat_id(db, withdrawal.profile_id), withdrawal_id=withdrawal.id,
        payout_amount=payout, reference=receipt.reference,
    ))
    _notify_referral_rewards(paid)
    return withdrawal


def _hold_pending(db: Session, withdrawal_id: int, title: str, reason: str) -> None:
    """Автовыплата отложена до списания: заявка остается pending с заметкой для операторов."""
    note = f"Auto-withdraw postponed: {reason}. Needs manual processing."
    crud_withdrawal.update_fields(db, withdrawal_id, admin_notes=note)
    db.commit()
    logger.error(f"Withdrawal {withdrawal_id}: {note}")
    notify_admins(title, f"Withdrawal #{withdrawal_id}: {note}", db=db)


def _revert_to_pending(db: Session, withdrawal: Withdrawal, reason: str) -> None:
    """Компенсация после точно неотправленного перевода: деньги обратно, статус pending."""
    try:
        if crud_withdrawal.transition(
            db, withdrawal.id, W.APPROVED, W.PENDING,
            admin_notes=f"Auto-withdraw failed, safe to retry: {reason}",
            processed_at=None,
        ):
            settlement_service.credit(
                db, withdrawal.profile_id, withdrawal.amount, withdrawal.currency,
                reason=f"revert failed withdrawal #{withdrawal.id}",
            )
        db.commit()
    except Exception:
        db.rollback()
        logger.critical(f"Failed to revert withdrawal {withdrawal.id} after definite transfer failure", exc_info=True)
        raise
    logger.warning(f"Withdrawal {withdrawal.id} reverted to pending: {reason}")
    notify_admins("Auto-withdraw failed", f"Withdrawal #{withdrawal.id} returned to pending.\n{reason}", db=db)


def _flag_for_review(db: Session, withdrawal: Withdrawal, reason: str) -> None:
    crud_withdrawal.update_fields(
        db, withdrawal.id,
        needs_review=True,
        admin_notes=f"MANUAL REVIEW REQUIRED: {reason}",
    )
    db.commit()
    logger.critical(f"Withdrawal {withdrawal.id} flagged for manual review: {reason}")
    notify_admins(
        "Withdrawal needs manual review",
        f"Withdrawal #{withdrawal.id} ({withdrawal.payout_amount} TON -> {withdrawal.destination})\n"
        f"{reason}\nCheck the custody wallet history before taking any action. Do NOT retry blindly.",
        db=db,
    )
    notify(n.WithdrawalNeedsReview(chat_id=_chat_id(db, withdrawal.profile_id), withdrawal_id=withdrawal.id))


def reconcile_withdrawal(
    db: Session,
    withdrawal_id: int,
    escrow_settings: EscrowSettings,
    was_sent: bool,
    reference: str | None = None,
    notes: str | None = None,
) -> Withdrawal:
    """
    Ручная сверка заявки с needs_review после проверки истории кошелька.
    was_sent=True  -> completed + реферальные награды;
    was_sent=False -> возврат средств и pending (можно отклонить или повторить).
    """
    withdrawal = _get_withdrawal_or_404(db, withdrawal_id)
    if not withdrawal.needs_review or withdrawal.status != W.APPROVED:
        raise InvalidTransition(f"Withdrawal {withdrawal_id} is not awaiting review", status=withdrawal.status)

    paid = []
    try:
        if was_sent:
            if not reference:
                raise ValidationError("Reference of the on-chain transfer is required")
            if not crud_withdrawal.transition(
                db, withdrawal_id, W.APPROVED, W.COMPLETED,
                tx_reference=reference, needs_review=False, admin_notes=notes,
                processed_at=datetime.now(timezone.utc),
            ):
                raise InvalidTransition(f"Withdrawal {withdrawal_id} changed concurrently")
            paid = settlement_service.pay_referral_rewards(db, withdrawal, escrow_settings)
        else:
            if not crud_withdrawal.transition(
                db, withdrawal_id, W.APPROVED, W.PENDING,
                needs_review=False, admin_notes=notes, processed_at=None,
            ):
                raise InvalidTransition(f"Withdrawal {withdrawal_id} changed concurrently")
            settlement_service.credit(
                db, withdrawal.profile_id, withdrawal.amount, withdrawal.currency,
                reason=f"reconcile unsent withdrawal #{withdrawal_id}",
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(withdrawal)
    logger.info(f"Withdrawal {withdrawal_id} reconciled: was_sent={was_sent}, status={withdrawal.status}")
    if was_sent:
        notify(n.WithdrawalCompleted(
            chat_id=_chat_id(db, withdrawal.profile_id), withdrawal_id=withdrawal.id,
            payout_amount=withdrawal.payout_amount, reference=reference,
        ))
        _notify_referral_rewards(paid)
    return withdrawal


async def auto_withdraw_task(db: Session, custody=None, force: bool = False) -> AutoWithdrawReport:
    """
    Один проход автовывода: самые старые pending TON-заявки небольшой пачкой.
    Работает только в режиме 'auto' (или при force=True из админки).
    """
    escrow_settings = settings_service.get_escrow_settings(db)
    if escrow_settings.withdrawal_mode != "auto" and not force:
        return AutoWithdrawReport(skipped=True, reason="withdrawal_mode is manual")

    custody = custody or get_custody_wallet(db)
    if not custody.is_configured():
        logger.warning("Auto-withdraw skipped: custody wallet is not configured.")
        return AutoWithdrawReport(skipped=True, reason="custody wallet is not configured")

    report = AutoWithdrawReport()
    withdrawal_ids = crud_withdrawal.get_oldest_pending_ton_ids(db, settings.AUTO_WITHDRAW_BATCH_SIZE)
    for index, withdrawal_id in enumerate(withdrawal_ids):
        if index:
            await asyncio.sleep(settings.AUTO_WITHDRAW_DELAY_SECONDS)
        try:
            await process_automated_withdrawal(db, withdrawal_id, custody, escrow_settings)
            report.processed += 1
        except AlreadyProcessed:
            continue
        except CustodyBalanceInsufficient as e:
            report.failed += 1
            report.errors.append(f"#{withdrawal_id}: {e.message}")
            # Остальным заявкам тоже не хватит
            break
        except (ConfigurationMissing, DecryptionError) as e:
            report.failed += 1
            report.errors.append(f"#{withdrawal_id}: {e.message}")
            break
        except UncertainExternalOutcome as e:
            if e.extra.get("stage") == "balance_check":
                report.failed += 1
            else:
                report.needs_review += 1
            report.errors.append(f"#{withdrawal_id}: {e.message}")
            # Состояние кошелька неизвестно, дальше не отправляем
            break
        except (DefiniteTransferFailure, InsufficientFunds) as e:
            report.failed += 1
            report.errors.append(f"#{withdrawal_id}: {e.message}")
        except EscrowError as e:
            report.failed += 1
            report.errors.append(f"#{withdrawal_id}: {e.message}")
            logger.error(f"Auto-withdraw of {withdrawal_id} failed: {e.message}")

    if withdrawal_ids:
        logger.info(f"Auto-withdraw pass finished: {report.model_dump()}")
    return report
