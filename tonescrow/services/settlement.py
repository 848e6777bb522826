# tonescrow/services/settlement.py
"""
Единственное место, где меняются балансы пользователей.

Все функции работают внутри текущей транзакции сессии. Те, что завершают
бизнес-операцию (settle, adjust_balance), сами делают commit/rollback;
вспомогательные (credit, debit, pay_referral_rewards) НЕ коммитят и
вызываются как часть более крупной атомарной операции.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Tuple

from sqlalchemy.orm import Session

from tonescrow.core.exceptions import (
    InsufficientFunds,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from tonescrow.crud import profile as crud_profile
from tonescrow.crud import referral as crud_referral
from tonescrow.crud import transaction as crud_transaction
from tonescrow.models.profile import Profile
from tonescrow.models.referral import ReferralEarning
from tonescrow.models.transaction import TransactionStatus
from tonescrow.models.withdrawal import Withdrawal
from tonescrow.schemas.settings import EscrowSettings
from tonescrow.schemas.transaction import SettlementResult
from tonescrow.utils.money import percent_of, quantize, to_decimal, validate_currency

logger = logging.getLogger(__name__)


def calculate_commission(amount: Decimal, rate: Decimal, currency: str) -> Tuple[Decimal, Decimal]:
    """
    Комиссия = amount * rate%, округляется один раз до точности валюты.
    seller_net считается вычитанием, поэтому commission + seller_net == amount всегда.
    """
    amount = quantize(amount, currency)
    commission = percent_of(amount, rate, currency)
    seller_net = amount - commission
    return commission, seller_net


# --- Низкоуровневые операции с балансом (без commit) ---

def credit(db: Session, profile_id: int, amount: Decimal, currency: str, reason: str) -> None:
    amount = to_decimal(amount)
    if amount <= 0:
        raise ValidationError("Credit amount must be positive", amount=amount)
    if not crud_profile.increment_balance(db, profile_id, amount, currency):
        raise NotFound(f"Profile {profile_id} not found")
    logger.info(f"Balance credit: profile={profile_id} +{amount} {currency} ({reason})")


def debit(db: Session, profile_id: int, amount: Decimal, currency: str, reason: str) -> None:
    """Условное списание: UPDATE ... WHERE balance >= amount. При нехватке ничего не меняется."""
    amount = to_decimal(amount)
    if amount <= 0:
        raise ValidationError("Debit amount must be positive", amount=amount)
    if not crud_profile.decrement_balance_if_sufficient(db, profile_id, amount, currency):
        available = crud_profile.get_balance(db, profile_id, currency)
        if available is None:
            raise NotFound(f"Profile {profile_id} not found")
        raise InsufficientFunds(required=amount, available=available, currency=currency)
    logger.info(f"Balance debit: profile={profile_id} -{amount} {currency} ({reason})")


# --- Расчет по сделке ---

def settle(
    db: Session,
    transaction_id: int,
    escrow_settings: EscrowSettings,
    from_status: str = TransactionStatus.ITEM_SENT,
    **fields,
) -> SettlementResult:
    """
    Переводит сделку в `completed` и зачисляет продавцу seller_net. Ровно один раз.

    Ставка комиссии берется из переданного снимка настроек. Переход статуса и
    зачисление выполняются в одной транзакции БД; победителя гонки определяет
    условный UPDATE по ожидаемому статусу. Повторный или проигравший вызов
    возвращает SettlementResult(already_settled=True) без изменений баланса.
    """
    transaction = crud_transaction.get_transaction(db, transaction_id)
    if transaction is None:
        raise NotFound(f"Transaction {transaction_id} not found")

    if transaction.status == TransactionStatus.COMPLETED:
        logger.info(f"Transaction {transaction_id} already settled, skipping.")
        return SettlementResult(transaction_id=transaction_id, already_settled=True, currency=transaction.currency)

    currency = transaction.currency
    amount = quantize(transaction.amount, currency)
    commission, seller_net = calculate_commission(amount, escrow_settings.commission_rate, currency)
    seller_id = transaction.seller_id
    now = datetime.now(timezone.utc)

    try:
        won = crud_transaction.transition(
            db, transaction_id, from_status, TransactionStatus.COMPLETED,
            commission=commission,
            seller_net=seller_net,
            confirmed_at=now,
            settled_at=now,
            **fields,
        )
        if not won:
            db.rollback()
            db.expire_all()
            current = crud_transaction.get_transaction(db, transaction_id)
            if current is not None and current.status == TransactionStatus.COMPLETED:
                logger.info(f"Transaction {transaction_id} settled by a concurrent call, no-op.")
                return SettlementResult(transaction_id=transaction_id, already_settled=True, currency=currency)
            raise InvalidTransition(
                f"Transaction {transaction_id} cannot be completed from status '{current.status if current else None}'",
                expected=from_status,
            )

        credit(db, seller_id, seller_net, currency, reason=f"sale #{transaction_id}")
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Transaction {transaction_id} settled: amount={amount} commission={commission} "
        f"seller_net={seller_net} {currency} -> seller {seller_id}"
    )
    return SettlementResult(
        transaction_id=transaction_id,
        seller_id=seller_id,
        amount=amount,
        commission=commission,
        seller_net=seller_net,
        currency=currency,
    )


# --- Реферальные вознаграждения ---

def pay_referral_rewards(
    db: Session,
    withdrawal: Withdrawal,
    escrow_settings: EscrowSettings,
) -> List[Tuple[Profile, ReferralEarning]]:
    """
    Начисляет рефереру (L1) и рефереру реферера (L2) процент от суммы вывода.
    Это расход платформы: выплата самому пользователю не уменьшается.
    Заблокированные рефереры ничего не получают. НЕ коммитит.
    """
    currency = withdrawal.currency
    rates = {1: escrow_settings.referral_l1_rate, 2: escrow_settings.referral_l2_rate}
    paid: List[Tuple[Profile, ReferralEarning]] = []

    for link in crud_referral.get_referrer_chain(db, withdrawal.profile_id):
        rate = rates.get(link.level)
        if not rate:
            continue
        referrer = crud_profile.get_profile(db, link.referrer_id)
        if referrer is None:
            continue
        if referrer.is_blocked:
            logger.info(f"Referrer {referrer.id} is blocked, skipping L{link.level} reward for withdrawal {withdrawal.id}.")
            continue

        reward = percent_of(withdrawal.amount, rate, currency)
        if reward <= 0:
            continue

        credit(db, referrer.id, reward, currency, reason=f"referral L{link.level} from withdrawal #{withdrawal.id}")
        crud_profile.increment_referral_earnings(db, referrer.id, reward)
        earning = crud_referral.create_earning(
            db,
            referrer_id=referrer.id,
            from_profile_id=withdrawal.profile_id,
            withdrawal_id=withdrawal.id,
            level=link.level,
            amount=reward,
            currency=currency,
        )
        paid.append((referrer, earning))

    return paid


# --- Ручная корректировка ---

def adjust_balance(db: Session, profile_id: int, delta: Decimal, currency: str, reason: str) -> Decimal:
    """Корректировка баланса администратором. В минус не уходит. Возвращает новый баланс."""
    validate_currency(currency)
    delta = quantize(delta, currency)
    if delta == 0:
        raise ValidationError("Adjustment delta must not be zero")

    try:
        if delta > 0:
            credit(db, profile_id, delta, currency, reason=f"admin adjustment: {reason}")
        else:
            debit(db, profile_id, -delta, currency, reason=f"admin adjustment: {reason}")
        db.commit()
    except Exception:
        db.rollback()
        raise

    new_balance = crud_profile.get_balance(db, profile_id, currency)
    logger.info(f"Admin balance adjustment for profile {profile_id}: {delta:+} {currency}, new balance {new_balance}. Reason: {reason}")
    return new_balance
