# tonescrow/routers/v1/endpoints/admin/custody.py

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tonescrow.dependencies import get_admin_user, get_db
from tonescrow.models.profile import Profile
from tonescrow.schemas.admin import CustodyStatus, CustodyTransferRequest, CustodyTransferResult, MnemonicSetRequest
from tonescrow.services import custody as custody_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/mnemonic")
def get_mnemonic_status_endpoint(db: Session = Depends(get_db)):
    """[АДМИН] Статус мнемоники. Сама фраза никогда не возвращается."""
    return custody_service.get_mnemonic_status(db)


@router.post("/mnemonic", response_model=CustodyStatus)
def set_mnemonic_endpoint(
    data: MnemonicSetRequest,
    db: Session = Depends(get_db),
    admin_user: Profile = Depends(get_admin_user),
):
    address = custody_service.store_mnemonic(db, data.mnemonic)
    logger.warning(f"Custody mnemonic set by admin {admin_user.telegram_id}")
    return CustodyStatus(configured=True, address=address)


@router.post("/mnemonic/verify", response_model=CustodyStatus)
async def verify_mnemonic_endpoint(db: Session = Depends(get_db)):
    """[АДМИН] Расшифровывает мнемонику, выводит адрес и запрашивает баланс."""
    return CustodyStatus(**await custody_service.verify_mnemonic(db))


@router.delete("/mnemonic")
def delete_mnemonic_endpoint(db: Session = Depends(get_db), admin_user: Profile = Depends(get_admin_user)):
    deleted = custody_service.delete_mnemonic(db)
    logger.warning(f"Custody mnemonic delete requested by admin {admin_user.telegram_id}: deleted={deleted}")
    return {"deleted": deleted}


@router.get("/balance", response_model=CustodyStatus)
async def get_custody_balance_endpoint(db: Session = Depends(get_db)):
    wallet = custody_service.get_custody_wallet(db)
    return CustodyStatus(configured=True, address=await wallet.get_address(), balance=await wallet.get_balance())


@router.post("/transfer", response_model=CustodyTransferResult)
async def manual_transfer_endpoint(
    data: CustodyTransferRequest,
    db: Session = Depends(get_db),
    admin_user: Profile = Depends(get_admin_user),
):
    """[АДМИН] Ручной перевод с кастодиального кошелька. Балансы пользователей не меняются."""
    logger.warning(f"Manual custody transfer requested by admin {admin_user.telegram_id}: {data.amount} TON -> {data.destination}")
    receipt = await custody_service.manual_transfer(db, data.destination, data.amount, data.memo)
    return CustodyTransferResult(reference=receipt.reference, destination=receipt.destination, amount=receipt.amount)
