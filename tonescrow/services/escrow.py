# tonescrow/services/escrow.py

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from tonescrow.bot.services.notification import notify, notify_admins
from tonescrow.core.exceptions import (
    AlreadyProcessed,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    UserBlocked,
    ValidationError,
)
from tonescrow.crud import product as crud_product
from tonescrow.crud import profile as crud_profile
from tonescrow.crud import transaction as crud_transaction
from tonescrow.models.product import Product
from tonescrow.models.profile import Profile
from tonescrow.models.transaction import PaymentMethod, Transaction, TransactionStatus as S
from tonescrow.schemas import notification as n
from tonescrow.schemas.settings import EscrowSettings
from tonescrow.schemas.transaction import SettlementResult
from tonescrow.services import settlement as settlement_service
from tonescrow.services.settings import ensure_not_maintenance
from tonescrow.utils.money import quantize, validate_currency
from tonescrow.utils.ton import as_utc, generate_link_token

logger = logging.getLogger(__name__)

# Граф переходов. Все, чего здесь нет, запрещено.
VALID_TRANSITIONS: dict[str, set[str]] = {
    S.PENDING_PAYMENT: {S.PAYMENT_RECEIVED, S.CANCELLED},
    S.PAYMENT_RECEIVED: {S.ITEM_SENT, S.DISPUTED},
    S.ITEM_SENT: {S.COMPLETED, S.DISPUTED},
    S.DISPUTED: {S.COMPLETED, S.CANCELLED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
}

DISPUTABLE = (S.PAYMENT_RECEIVED, S.ITEM_SENT)
MAX_TITLE_LENGTH = 100


def validate_transition(from_status: str, to_status: str) -> None:
    if to_status not in VALID_TRANSITIONS.get(from_status, set()):
        raise InvalidTransition(
            f"Transition {from_status} -> {to_status} is not allowed",
            from_status=from_status, to_status=to_status,
        )


# --- Вспомогательные функции ---

def _ensure_active(profile: Profile) -> None:
    if profile.is_blocked:
        raise UserBlocked("Your account is blocked.", reason=profile.blocked_reason)

def _get_transaction_or_404(db: Session, transaction_id: int) -> Transaction:
    transaction = crud_transaction.get_transaction(db, transaction_id)
    if transaction is None:
        raise NotFound(f"Transaction {transaction_id} not found")
    return transaction

def _chat_id(db: Session, profile_id: int | None) -> int | None:
    if profile_id is None:
        return None
    profile = crud_profile.get_profile(db, profile_id)
    return profile.telegram_id if profile else None

def _is_currency_enabled(currency: str, escrow_settings: EscrowSettings) -> bool:
    if currency == "TON":
        return escrow_settings.ton_enabled
    return escrow_settings.kbzpay_enabled or escrow_settings.wavepay_enabled

def _lost_race(db: Session, transaction_id: int, expected: tuple, target: str) -> None:
    """
    Условный UPDATE не затронул строку. Если сделка уже в целевом статусе, это
    повторная доставка (AlreadyProcessed), иначе переход недопустим.
    """
    db.rollback()
    db.expire_all()
    current = _get_transaction_or_404(db, transaction_id)
    if current.status == target:
        logger.info(f"Transaction {transaction_id} is already '{target}', no-op.")
        raise AlreadyProcessed(f"Transaction {transaction_id} is already {target}", status=target)
    raise InvalidTransition(
        f"Transaction {transaction_id} is '{current.status}', expected one of {list(expected)}",
        status=current.status,
    )

def _transition(db: Session, transaction: Transaction, to_status: str, **fields) -> None:
    """Проверка по графу + условный UPDATE. Не коммитит."""
    validate_transition(transaction.status, to_status)
    if not crud_transaction.transition(db, transaction.id, transaction.status, to_status, **fields):
        _lost_race(db, transaction.id, (transaction.status,), to_status)


# --- Листинги ---

def create_product(
    db: Session,
    seller: Profile,
    title: str,
    price: Decimal,
    currency: str,
    escrow_settings: EscrowSettings,
) -> Product:
    """Создает листинг с уникальной ссылкой для покупателя."""
    ensure_not_maintenance(escrow_settings)
    _ensure_active(seller)
    validate_currency(currency)

    title = (title or "").strip()
    if not title or len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title must be 1-{MAX_TITLE_LENGTH} characters long")
    price = quantize(price, currency)
    if price <= 0:
        raise ValidationError("Price must be positive", price=price)
    if not _is_currency_enabled(currency, escrow_settings):
        raise ValidationError(f"Payments in {currency} are currently disabled", currency=currency)

    link = generate_link_token()
    while crud_product.get_product_by_link(db, link) is not None:
        link = generate_link_token()

    product = crud_product.create_product(db, seller.id, title, price, currency, link)
    logger.info(f"Seller {seller.id} created product {product.id} ({price} {currency}), link={link}")
    return product


def deactivate_product(db: Session, seller: Profile, product_id: int) -> Product:
    product = crud_product.get_product(db, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found")
    if product.seller_id != seller.id:
        raise PermissionDenied("Only the seller can deactivate this product")

    crud_product.deactivate_product(db, product_id)
    db.commit()
    db.refresh(product)
    logger.info(f"Seller {seller.id} deactivated product {product_id}")
    return product


def get_transaction_for_participant(db: Session, profile: Profile, transaction_id: int) -> Transaction:
    transaction = _get_transaction_or_404(db, transaction_id)
    if profile.id not in (transaction.buyer_id, transaction.seller_id):
        raise NotFound(f"Transaction {transaction_id} not found")
    return transaction


# --- Жизненный цикл сделки ---

def claim_product(db: Session, buyer: Profile, link: str, escrow_settings: EscrowSettings) -> Transaction:
    """
    Покупатель забирает ссылку: создается сделка в pending_payment с окном оплаты.
    Повторный claim тем же покупателем возвращает уже существующую сделку.
    """
    ensure_not_maintenance(escrow_settings)
    _ensure_active(buyer)

    # Блокируем строку товара, чтобы два покупателя не создали две заявки одновременно
    product = db.query(Product).filter(Product.unique_link == link).with_for_update().first()
    if product is None:
        raise NotFound("Product not found")
    if not product.is_active:
        raise ValidationError("This product is no longer available")
    if product.seller_id == buyer.id:
        raise ValidationError("You cannot buy your own product")

    now = datetime.now(timezone.utc)
    live = crud_transaction.get_live_claim(db, product.id, now)
    if live is not None:
        if live.buyer_id == buyer.id:
            db.rollback()
            return live
        raise ValidationError("This product is currently reserved by another buyer")

    commission, seller_net = settlement_service.calculate_commission(
        product.price, escrow_settings.commission_rate, product.currency
    )
    token = generate_link_token()
    while crud_transaction.get_transaction_by_link(db, token) is not None:
        token = generate_link_token()

    try:
        transaction = crud_transaction.create_transaction(
            db,
            product_id=product.id,
            seller_id=product.seller_id,
            buyer_id=buyer.id,
            amount=quantize(product.price, product.currency),
            currency=product.currency,
            commission=commission,
            seller_net=seller_net,
            status=S.PENDING_PAYMENT,
            unique_link=token,
            expires_at=now + timedelta(minutes=escrow_settings.transaction_expiry_minutes),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(transaction)
    logger.info(f"Buyer {buyer.id} claimed product {product.id}: transaction {transaction.id}, expires {transaction.expires_at}")
    return transaction


def confirm_payment(
    db: Session,
    transaction_id: int,
    tx_hash: str,
    method: str = PaymentMethod.ONCHAIN,
) -> Transaction:
    """Внешний сигнал об оплате (мониторинг блокчейна или админ): pending_payment -> payment_received."""
    transaction = _get_transaction_or_404(db, transaction_id)
    if transaction.status == S.PAYMENT_RECEIVED and transaction.ton_tx_hash == tx_hash:
        raise AlreadyProcessed(f"Payment for transaction {transaction_id} already confirmed", status=transaction.status)
    if transaction.buyer_id is None:
        raise ValidationError("Transaction has no buyer yet")

    try:
        _transition(db, transaction, S.PAYMENT_RECEIVED, ton_tx_hash=tx_hash, payment_method=method)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(transaction)
    logger.info(f"Payment confirmed for transaction {transaction_id} via {method}, hash={tx_hash}")
    notify(n.PaymentReceived(
        chat_id=_chat_id(db, transaction.seller_id), transaction_id=transaction.id,
        amount=transaction.amount, currency=transaction.currency,
    ))
    return transaction


def pay_with_balance(db: Session, buyer: Profile, transaction_id: int, escrow_settings: EscrowSettings) -> Transaction:
    """Оплата с внутреннего баланса: списание и смена статуса в одной транзакции БД."""
    ensure_not_maintenance(escrow_settings)
    _ensure_active(buyer)

    transaction = _get_transaction_or_404(db, transaction_id)
    if transaction.buyer_id != buyer.id:
        raise PermissionDenied("This is not your transaction")
    if transaction.status != S.PENDING_PAYMENT:
        raise InvalidTransition(f"Transaction is '{transaction.status}', payment is not expected", status=transaction.status)
    if as_utc(transaction.expires_at) and as_utc(transaction.expires_at) < datetime.now(timezone.utc):
        raise ValidationError("Payment window has expired")

    reference = f"balance_{int(datetime.now(timezone.utc).timestamp() * 1000)}"
    try:
        _transition(db, transaction, S.PAYMENT_RECEIVED, ton_tx_hash=reference, payment_method=PaymentMethod.BALANCE)
        settlement_service.debit(
            db, buyer.id, transaction.amount, transaction.currency, reason=f"payment for transaction #{transaction.id}"
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(transaction)
    logger.info(f"Buyer {buyer.id} paid transaction {transaction.id} from balance ({transaction.amount} {transaction.currency})")
    notify(n.PaymentReceived(
        chat_id=_chat_id(db, transaction.seller_id), transaction_id=transaction.id,
        amount=transaction.amount, currency=transaction.currency,
    ))
    return transaction


def mark_item_sent(db: Session, seller: Profile, transaction_id: int) -> Transaction:
    transaction = _get_transaction_or_404(db, transaction_id)
    if transaction.seller_id != seller.id:
        raise PermissionDenied("Only the seller can mark the item as sent")

    try:
        _transition(db, transaction, S.ITEM_SENT, item_sent_at=datetime.now(timezone.utc))
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(transaction)
    logger.info(f"Seller {seller.id} marked transaction {transaction.id} as sent")
    notify(n.ItemSent(chat_id=_chat_id(db, transaction.buyer_id), transaction_id=transaction.id))
    return transaction


def _notify_completed(db: Session, transaction: Transaction, result: SettlementResult) -> None:
    notify(n.TransactionCompleted(
        chat_id=_chat_id(db, transaction.seller_id), transaction_id=transaction.id,
        role="seller", seller_net=result.seller_net, currency=result.currency,
    ))
    notify(n.TransactionCompleted(
        chat_id=_chat_id(db, transaction.buyer_id), transaction_id=transaction.id,
        role="buyer", seller_net=result.seller_net, currency=result.currency,
    ))


def confirm_received(db: Session, buyer: Profile, transaction_id: int, escrow_settings: EscrowSettings) -> SettlementResult:
    """Покупатель подтверждает получение: item_sent -> completed + расчет с продавцом."""
    transaction = _get_transaction_or_404(db, transaction_id)
    if transaction.buyer_id != buyer.id:
        raise PermissionDenied("Only the buyer can confirm receipt")
    if transaction.status not in (S.ITEM_SENT, S.COMPLETED):
        raise InvalidTransition("Only a sent item can be confirmed", status=transaction.status)

    result = settlement_service.settle(db, transaction.id, escrow_settings, from_status=S.ITEM_SENT)
    if not result.already_settled:
        _notify_completed(db, transaction, result)
    return result


def auto_confirm_transactions(db: Session, escrow_settings: EscrowSettings, now: datetime | None = None) -> dict:
    """Автоподтверждение item_sent сделок, висящих дольше auto_confirm_hours."""
    now = now or datetime.now(timezone.utc)
    sent_before = now - timedelta(hours=escrow_settings.auto_confirm_hours)
    report = {"completed": 0, "skipped": 0, "errors": 0}

    for transaction_id in crud_transaction.get_auto_confirm_candidate_ids(db, sent_before):
        try:
            result = settlement_service.settle(db, transaction_id, escrow_settings, from_status=S.ITEM_SENT)
        except InvalidTransition:
            # Статус успел измениться (например, открыт спор)
            report["skipped"] += 1
            continue
        except Exception as e:
            logger.error(f"Auto-confirm failed for transaction {transaction_id}: {e}", exc_info=True)
            report["errors"] += 1
            continue

        if result.already_settled:
            report["skipped"] += 1
            continue
        report["completed"] += 1
        _notify_completed(db, crud_transaction.get_transaction(db, transaction_id), result)

    if report["completed"] or report["errors"]:
        logger.info(f"Auto-confirm finished: {report}")
    return report


def open_dispute(db: Session, actor: Profile, transaction_id: int, reason: str) -> Transaction:
    """Спор может открыть покупатель или продавец из payment_received / item_sent."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Dispute reason is required")

    transaction = _get_transaction_or_404(db, transaction_id)
    if actor.id not in (transaction.buyer_id, transaction.seller_id):
        raise PermissionDenied("Only a party of the deal can open a dispute")
    if transaction.status == S.DISPUTED:
        raise AlreadyProcessed("Dispute is already open", status=transaction.status)
    if transaction.status not in DISPUTABLE:
        raise InvalidTransition(f"Cannot dispute a transaction in status '{transaction.status}'", status=transaction.status)

    try:
        _transition(
            db, transaction, S.DISPUTED,
            disputed_at=datetime.now(timezone.utc),
            dispute_reason=reason,
            dispute_opened_by_id=actor.id,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(transaction)
    logger.warning(f"Dispute opened on transaction {transaction.id} by profile {actor.id}: {reason}")

    other_party = transaction.seller_id if actor.id == transaction.buyer_id else transaction.buyer_id
    notify(n.DisputeOpened(chat_id=_chat_id(db, other_party), transaction_id=transaction.id, reason=reason))
    notify_admins(
        "New dispute",
        f"Transaction #{transaction.id}: {transaction.amount} {transaction.currency}\nOpened by profile {actor.id}\nReason: {reason}",
        db=db,
    )
    return transaction


def resolve_dispute(
    db: Session,
    transaction_id: int,
    resolution: str,
    escrow_settings: EscrowSettings,
    notes: str | None = None,
) -> Transaction:
    """
    Арбитраж администратора.
    favor_buyer -> cancelled без выплат; favor_seller -> completed через тот же settle(),
    что и обычное завершение.
    """
    if resolution not in ("favor_buyer", "favor_seller"):
        raise ValidationError("Resolution must be 'favor_buyer' or 'favor_seller'", resolution=resolution)

    transaction = _get_transaction_or_404(db, transaction_id)
    if transaction.status in (S.COMPLETED, S.CANCELLED) and transaction.resolution == resolution:
        raise AlreadyProcessed("Dispute already resolved", status=transaction.status)
    if transaction.status != S.DISPUTED:
        raise InvalidTransition(f"Transaction is '{transaction.status}', not disputed", status=transaction.status)

    if resolution == "favor_seller":
        result = settlement_service.settle(
            db, transaction.id, escrow_settings, from_status=S.DISPUTED,
            resolution=resolution, admin_notes=notes,
        )
        if result.already_settled:
            raise AlreadyProcessed("Dispute already resolved", status=S.COMPLETED)
    else:
        try:
            _transition(db, transaction, S.CANCELLED, resolution=resolution, admin_notes=notes)
            db.commit()
        except Exception:
            db.rollback()
            raise

    db.expire_all()
    transaction = _get_transaction_or_404(db, transaction_id)
    logger.info(f"Dispute on transaction {transaction.id} resolved: {resolution}")

    for profile_id, role in ((transaction.buyer_id, "buyer"), (transaction.seller_id, "seller")):
        notify(n.DisputeResolved(
            chat_id=_chat_id(db, profile_id), transaction_id=transaction.id, resolution=resolution, role=role,
        ))
    return transaction


def cancel_by_seller(db: Session, seller: Profile, transaction_id: int) -> Transaction:
    """Продавец отменяет сделку до оплаты. Балансы не затрагиваются."""
    transaction = _get_transaction_or_404(db, transaction_id)
    if transaction.seller_id != seller.id:
        raise PermissionDenied("Only the seller can cancel this transaction")
    if transaction.status != S.PENDING_PAYMENT:
        raise InvalidTransition("Only unpaid transactions can be cancelled", status=transaction.status)

    try:
        _transition(db, transaction, S.CANCELLED, admin_notes="Cancelled by seller")
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(transaction)
    logger.info(f"Seller {seller.id} cancelled transaction {transaction.id}")
    notify(n.TransactionExpired(chat_id=_chat_id(db, transaction.buyer_id), transaction_id=transaction.id, role="buyer"))
    return transaction


def cancel_for_late_payment(db: Session, transaction_id: int, amount: Decimal, tx_hash: str) -> bool:
    """
    Платеж пришел после истечения окна оплаты: сделка отменяется, деньги не
    зачисляются автоматически. Возврат делает администратор вручную по заметке.
    """
    note = (
        f"Late payment received after expiration. Amount: {amount} TON, Hash: {tx_hash}. "
        f"Buyer must contact admin for manual refund."
    )
    won = crud_transaction.transition(db, transaction_id, S.PENDING_PAYMENT, S.CANCELLED, admin_notes=note)
    db.commit()
    if not won:
        return False

    transaction = crud_transaction.get_transaction(db, transaction_id)
    logger.warning(f"Transaction {transaction_id} cancelled due to late payment {tx_hash} ({amount} TON)")
    notify(n.TransactionExpired(chat_id=_chat_id(db, transaction.buyer_id), transaction_id=transaction_id, role="buyer"))
    notify(n.TransactionExpired(chat_id=_chat_id(db, transaction.seller_id), transaction_id=transaction_id, role="seller"))
    notify_admins("Late payment", f"Transaction #{transaction_id}: {note}", db=db)
    return True


def expire_transactions(db: Session, now: datetime | None = None) -> int:
    """
    Отменяет все pending_payment сделки с истекшим сроком. Балансы не меняются:
    деньги еще не поступали. Безопасна при параллельном запуске: каждая строка
    переводится условным UPDATE, проигравший просто пропускает ее.
    """
    now = now or datetime.now(timezone.utc)
    expired = 0

    for transaction_id in crud_transaction.get_expired_pending_ids(db, now):
        won = crud_transaction.transition(
            db, transaction_id, S.PENDING_PAYMENT, S.CANCELLED, admin_notes="Expired: payment not received in time"
        )
        db.commit()
        if not won:
            continue
        expired += 1

        transaction = crud_transaction.get_transaction(db, transaction_id)
        logger.info(f"Transaction {transaction_id} expired and was cancelled")
        notify(n.TransactionExpired(chat_id=_chat_id(db, transaction.buyer_id), transaction_id=transaction_id, role="buyer"))
        notify(n.TransactionExpired(chat_id=_chat_id(db, transaction.seller_id), transaction_id=transaction_id, role="seller"))

    if expired:
        logger.info(f"Expired {expired} unpaid transactions")
    return expired
