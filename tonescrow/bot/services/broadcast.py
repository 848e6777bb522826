# tonescrow/bot/services/broadcast.py

import asyncio
import logging
from datetime import datetime, timezone
from html import escape

from aiogram.exceptions import TelegramForbiddenError
from sqlalchemy.orm import Session

from tonescrow.bot.core import bot
from tonescrow.bot.services.notification import notify_admins
from tonescrow.crud import broadcast as crud_broadcast
from tonescrow.db.session import SessionLocal
from tonescrow.models.broadcast import BroadcastStatus

logger = logging.getLogger(__name__)
BROADCAST_SLEEP_SECONDS = 0.05 # ~20 сообщений в секунду, ниже лимита Telegram
MAX_REPORTED_ERRORS = 10


def format_broadcast(message_text: str) -> str:
    return f"📢 <b>Announcement</b>\n\n{escape(message_text)}"


async def process_broadcast(broadcast_id: int, db: Session | None = None) -> dict | None:
    """
    Выполняет рассылку: отправляет сообщение всем получателям выбранной аудитории,
    сохраняет счетчики и присылает отчет администраторам.
    Без переданной сессии открывает собственную (запуск из BackgroundTasks).
    """
    own_session = db is None
    if own_session:
        db = SessionLocal()
    broadcast = None
    try:
        broadcast = crud_broadcast.get_broadcast(db, broadcast_id)
        if not broadcast or broadcast.status != BroadcastStatus.PENDING:
            logger.warning(f"Broadcast {broadcast_id} not found or already started. Aborting.")
            return None

        logger.info(f"Starting broadcast {broadcast_id} for target '{broadcast.target}'...")
        broadcast.status = BroadcastStatus.PROCESSING
        broadcast.started_at = datetime.now(timezone.utc)
        db.commit()

        chat_ids = crud_broadcast.get_recipient_chat_ids(db, broadcast.target)
        text = format_broadcast(broadcast.message_text)

        sent_count = 0
        errors = []
        for chat_id in chat_ids:
            try:
                await bot.send_message(chat_id=chat_id, text=text, disable_web_page_preview=True)
                sent_count += 1
            except TelegramForbiddenError:
                errors.append(f"{chat_id}: bot blocked by user")
            except Exception as e:
                logger.error(f"Failed to send broadcast {broadcast_id} to chat {chat_id}: {e}")
                errors.append(f"{chat_id}: {e}")

            await asyncio.sleep(BROADCAST_SLEEP_SECONDS)

        broadcast.status = BroadcastStatus.COMPLETED
        broadcast.sent_count = sent_count
        broadcast.failed_count = len(errors)
        broadcast.finished_at = datetime.now(timezone.utc)
        db.commit()

        report = {
            "sent": sent_count,
            "failed": len(errors),
            "total": len(chat_ids),
            "errors": errors[:MAX_REPORTED_ERRORS],
        }
        logger.info(f"Broadcast {broadcast_id} completed. Sent: {sent_count}, Failed: {len(errors)}")

        summary = f"Broadcast #{broadcast_id} ({broadcast.target}): sent {sent_count} of {len(chat_ids)}, failed {len(errors)}."
        if errors:
            summary += "\n" + "\n".join(report["errors"])
        notify_admins("Broadcast finished", summary, db=db)
        return report

    except Exception:
        logger.error(f"Broadcast {broadcast_id} failed catastrophically.", exc_info=True)
        db.rollback()
        if broadcast is not None:
            broadcast.status = BroadcastStatus.FAILED
            broadcast.finished_at = datetime.now(timezone.utc)
            db.commit()
        raise
    finally:
        if own_session:
            db.close()
