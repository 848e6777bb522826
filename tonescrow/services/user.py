# tonescrow/services/user.py

import logging
from sqlalchemy.orm import Session

from tonescrow.core.exceptions import ValidationError
from tonescrow.models.profile import Profile
from tonescrow.utils.ton import is_valid_ton_address

logger = logging.getLogger(__name__)


def update_wallet_address(db: Session, profile: Profile, address: str) -> Profile:
    """Сохраняет TON-адрес пользователя для выплат."""
    address = address.strip()
    if not is_valid_ton_address(address):
        raise ValidationError("Invalid TON wallet address", address=address)

    profile.ton_wallet_address = address
    db.commit()
    db.refresh(profile)
    logger.info(f"Profile {profile.id} updated TON wallet address to {address}")
    return profile
