# tonescrow/services/referral.py

import logging
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from tonescrow.core.config import settings
from tonescrow.crud import profile as crud_profile
from tonescrow.crud import referral as crud_referral
from tonescrow.models.profile import Profile
from tonescrow.schemas.profile import ReferralInfo

logger = logging.getLogger(__name__)


def build_referral_link(code: str | None) -> str:
    return f"https://t.me/{settings.TELEGRAM_BOT_USERNAME}?start=ref_{code}" if code else ""


def register_referral(db: Session, referred: Profile, referral_code: str | None) -> bool:
    """
    Привязывает нового пользователя к пригласившему.
    Создает связь уровня 1 и, если пригласивший сам был приглашен, связь уровня 2.
    Глубже второго уровня цепочка не строится. Возвращает True, если связь создана.
    """
    if not referral_code:
        return False

    referrer = crud_profile.get_profile_by_referral_code(db, referral_code.strip())
    if referrer is None:
        logger.info(f"Referral code '{referral_code}' not found, ignoring.")
        return False
    if referrer.id == referred.id:
        logger.info(f"Profile {referred.id} tried to refer itself, ignoring.")
        return False
    if crud_referral.get_referral_by_referred_id(db, referred.id, level=1) is not None:
        return False

    try:
        crud_referral.create_referral(db, referrer_id=referrer.id, referred_id=referred.id, level=1)
        grand = crud_referral.get_referral_by_referred_id(db, referrer.id, level=1)
        if grand is not None and grand.referrer_id != referred.id:
            crud_referral.create_referral(db, referrer_id=grand.referrer_id, referred_id=referred.id, level=2)
        referred.referred_by_id = referrer.id
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning(f"Referral for profile {referred.id} already exists (concurrent registration).")
        return False

    logger.info(f"Profile {referred.id} registered as referral of {referrer.id}")
    return True


def get_referral_info(db: Session, profile: Profile) -> ReferralInfo:
    return ReferralInfo(
        referral_code=profile.referral_code,
        referral_link=build_referral_link(profile.referral_code),
        level_1_count=crud_referral.count_referrals_by_level(db, profile.id, 1),
        level_2_count=crud_referral.count_referrals_by_level(db, profile.id, 2),
        total_earned=profile.total_referral_earnings,
    )
