# tonescrow/bot/services/notification.py
import asyncio
import logging
from html import escape
from typing import Callable, Dict

from aiogram.exceptions import TelegramForbiddenError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tonescrow.bot.core import bot
from tonescrow.core.exceptions import ConfigurationMissing
from tonescrow.schemas import notification as n
from tonescrow.schemas.settings import EscrowSettings
from tonescrow.services import settings as settings_service

logger = logging.getLogger(__name__)

# Ссылки на запущенные задачи, чтобы их не собрал GC до завершения
_background_tasks: set[asyncio.Task] = set()
_main_loop: asyncio.AbstractEventLoop | None = None


# --- Форматирование сообщений ---

def _transaction_expired(m: n.TransactionExpired) -> str:
    if m.role == "buyer":
        return f"⌛ Your payment window for deal #{m.transaction_id} has expired. The deal was cancelled."
    return f"⌛ Deal #{m.transaction_id} was cancelled: the buyer did not pay in time."

def _payment_received(m: n.PaymentReceived) -> str:
    return (
        f"💰 Payment of <b>{m.amount} {m.currency}</b> received for deal #{m.transaction_id}.\n"
        f"Please send the item to the buyer and mark it as sent."
    )

def _item_sent(m: n.ItemSent) -> str:
    return f"📦 The seller marked deal #{m.transaction_id} as sent. Please confirm once you receive the item."

def _transaction_completed(m: n.TransactionCompleted) -> str:
    if m.role == "seller":
        return f"✅ Deal #{m.transaction_id} completed. <b>{m.seller_net} {m.currency}</b> was credited to your balance."
    return f"✅ Deal #{m.transaction_id} completed. Thank you for using escrow!"

def _dispute_opened(m: n.DisputeOpened) -> str:
    return (
        f"⚠️ A dispute was opened for deal #{m.transaction_id}.\n"
        f"Reason: {escape(m.reason)}\nAn admin will review it."
    )

def _dispute_resolved(m: n.DisputeResolved) -> str:
    won = (m.resolution == "favor_buyer") == (m.role == "buyer")
    verdict = "in your favor" if won else "in favor of the other party"
    return f"⚖️ The dispute for deal #{m.transaction_id} was resolved {verdict}."

def _withdrawal_approved(m: n.WithdrawalApproved) -> str:
    text = f"✅ Withdrawal #{m.withdrawal_id} approved: <b>{m.payout_amount} {m.currency}</b>."
    if m.reference:
        text += f"\nReference: <code>{escape(m.reference)}</code>"
    return text

def _withdrawal_rejected(m: n.WithdrawalRejected) -> str:
    text = f"❌ Withdrawal #{m.withdrawal_id} for {m.amount} {m.currency} was rejected. Your balance was not changed."
    if m.notes:
        text += f"\nReason: {escape(m.notes)}"
    return text

def _withdrawal_completed(m: n.WithdrawalCompleted) -> str:
    return (
        f"✅ Withdrawal #{m.withdrawal_id} sent: <b>{m.payout_amount} TON</b>.\n"
        f"Reference: <code>{escape(m.reference)}</code>"
    )

def _withdrawal_needs_review(m: n.WithdrawalNeedsReview) -> str:
    return f"⏳ Withdrawal #{m.withdrawal_id} is being verified by an operator. No action is needed from you."

def _deposit_confirmed(m: n.DepositConfirmed) -> str:
    return f"💳 Deposit #{m.deposit_id} confirmed: <b>{m.amount} {m.currency}</b> added to your balance."

def _deposit_rejected(m: n.DepositRejected) -> str:
    text = f"❌ Deposit #{m.deposit_id} was rejected."
    if m.notes:
        text += f"\nReason: {escape(m.notes)}"
    return text

def _referral_earned(m: n.ReferralEarned) -> str:
    return f"🎁 You earned <b>{m.amount} {m.currency}</b> from a level {m.level} referral."

def _rating_received(m: n.RatingReceived) -> str:
    text = f"⭐ You received a rating of {'⭐' * m.rating} {m.rating}/5 for deal #{m.transaction_id}."
    if m.comment:
        text += f"\n💬 \"{escape(m.comment)}\""
    return text

def _admin_alert(m: n.AdminAlert) -> str:
    return f"🚨 <b>{escape(m.title)}</b>\n\n{escape(m.message)}"


_RENDERERS: Dict[str, Callable] = {
    "transaction_expired": _transaction_expired,
    "payment_received": _payment_received,
    "item_sent": _item_sent,
    "transaction_completed": _transaction_completed,
    "dispute_opened": _dispute_opened,
    "dispute_resolved": _dispute_resolved,
    "withdrawal_approved": _withdrawal_approved,
    "withdrawal_rejected": _withdrawal_rejected,
    "withdrawal_completed": _withdrawal_completed,
    "withdrawal_needs_review": _withdrawal_needs_review,
    "deposit_confirmed": _deposit_confirmed,
    "deposit_rejected": _deposit_rejected,
    "referral_earned": _referral_earned,
    "rating_received": _rating_received,
    "admin_alert": _admin_alert,
}


def render(notification: n.Notification) -> str:
    """Превращает типизированное уведомление в HTML-текст для Telegram."""
    return _RENDERERS[notification.kind](notification)


def admin_chat_ids(db: Session | None = None) -> list[int]:
    """
    Получатели алертов по снимку настроек (admin_telegram_id из таблицы settings
    имеет приоритет над окружением). Без контакта алерт не отправляется, это логируется.
    """
    escrow_settings = EscrowSettings()
    if db is not None:
        try:
            escrow_settings = settings_service.get_escrow_settings(db)
        except SQLAlchemyError as e:
            logger.error(f"Failed to read admin contact from settings table: {e}")
    try:
        return settings_service.get_admin_chat_ids(escrow_settings)
    except ConfigurationMissing as e:
        logger.warning(f"{e.message} Admin alerts are not delivered.")
        return []


def _recipients(notification: n.Notification) -> list[int]:
    if isinstance(notification, n.AdminAlert):
        return list(notification.chat_ids) or admin_chat_ids()
    return [notification.chat_id] if notification.chat_id else []


async def send_notification(notification: n.Notification) -> None:
    """
    Доставляет одно уведомление. Любая ошибка логируется и гасится:
    сбой доставки никогда не влияет на результат операции с деньгами.
    """
    recipients = _recipients(notification)
    if not recipients:
        logger.info(f"Skipping notification '{notification.kind}': no recipient chat.")
        return

    try:
        text = render(notification)
    except Exception as e:
        logger.error(f"Failed to render notification '{notification.kind}': {e}", exc_info=True)
        return

    for chat_id in recipients:
        try:
            await bot.send_message(chat_id=chat_id, text=text)
        except TelegramForbiddenError:
            logger.warning(f"Chat {chat_id} has blocked the bot. Notification '{notification.kind}' dropped.")
        except Exception as e:
            logger.error(f"Failed to send notification '{notification.kind}' to chat {chat_id}: {e}")


def bind_event_loop(loop: asyncio.AbstractEventLoop | None) -> None:
    """Запоминает основной event loop приложения для уведомлений из синхронных эндпоинтов (threadpool)."""
    global _main_loop
    _main_loop = loop


def notify(notification: n.Notification) -> None:
    """
    Fire-and-forget: планирует отправку и сразу возвращает управление.
    Из потока threadpool отправка передается в основной loop приложения.
    Без доступного event loop (синхронный скрипт) уведомление только логируется.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop is not None:
        task = loop.create_task(send_notification(notification))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
    elif _main_loop is not None and _main_loop.is_running():
        asyncio.run_coroutine_threadsafe(send_notification(notification), _main_loop)
    else:
        logger.info(f"No running event loop, notification '{notification.kind}' not sent.")


def notify_admins(title: str, message: str, db: Session | None = None) -> None:
    chat_ids = admin_chat_ids(db)
    if not chat_ids:
        logger.warning(f"Admin alert '{title}' dropped: no admin contact.")
        return
    notify(n.AdminAlert(title=title, message=message, chat_ids=chat_ids))
