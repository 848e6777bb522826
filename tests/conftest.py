# tests/conftest.py
import itertools
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

# Настройки читаются при импорте tonescrow.core.config, поэтому окружение задаем до импортов проекта
os.environ.setdefault("DATABASE_USER", "test")
os.environ.setdefault("DATABASE_PASSWORD", "test")
os.environ.setdefault("DATABASE_HOST", "localhost")
os.environ.setdefault("DATABASE_PORT", "5432")
os.environ.setdefault("DATABASE_NAME", "tonescrow_test")
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:TEST-token-for-unit-tests")
os.environ.setdefault("TELEGRAM_BOT_USERNAME", "tonescrow_test_bot")
os.environ.setdefault("ADMIN_TELEGRAM_IDS", "999")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("MNEMONIC_PASSPHRASE", "test-passphrase")
os.environ.setdefault("AUTO_WITHDRAW_DELAY_SECONDS", "0")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tonescrow.db.session import Base
# Импортируем все модели для создания таблиц
from tonescrow.models import broadcast, deposit, product, profile, rating, referral, setting, transaction, withdrawal  # noqa: F401
from tonescrow.models.profile import Profile
from tonescrow.models.referral import Referral
from tonescrow.models.transaction import Transaction, TransactionStatus
from tonescrow.models.withdrawal import Withdrawal, WithdrawalStatus
from tonescrow.schemas.settings import EscrowSettings
from tonescrow.services.custody import TransferReceipt
from tonescrow.utils.ton import generate_link_token

# Используем in-memory SQLite для тестов - это быстро и изолированно.
# StaticPool: одно соединение на все сессии, иначе каждая сессия видела бы свою пустую БД
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TON_ADDRESS = "UQ" + "A" * 46


@pytest.fixture(scope="function")
def db_session() -> Session:
    """
    Фикстура для создания чистой базы данных для каждого теста.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def sent_notifications(mocker) -> AsyncMock:
    """
    Telegram не трогаем: подменяем доставку. Мок фиксирует уведомления,
    запланированные внутри работающего event loop (async-тесты).
    """
    return mocker.patch("tonescrow.bot.services.notification.send_notification", new_callable=AsyncMock)


@pytest.fixture
def escrow_settings() -> EscrowSettings:
    return EscrowSettings()


# --- Фабрики ---

@pytest.fixture
def make_profile(db_session):
    counter = itertools.count(1001)

    def _make(balance="0", balance_mmk="0", is_blocked=False, telegram_id=None, wallet=None) -> Profile:
        tg_id = telegram_id or next(counter)
        profile = Profile(
            telegram_id=tg_id,
            telegram_username=f"user{tg_id}",
            referral_code=f"REF{tg_id}",
            balance=Decimal(balance),
            balance_mmk=Decimal(balance_mmk),
            is_blocked=is_blocked,
            blocked_reason="test" if is_blocked else None,
            ton_wallet_address=wallet,
        )
        db_session.add(profile)
        db_session.commit()
        db_session.refresh(profile)
        return profile

    return _make


@pytest.fixture
def make_transaction(db_session):
    def _make(seller, buyer, amount="10", currency="TON", status=TransactionStatus.PENDING_PAYMENT, **fields) -> Transaction:
        fields.setdefault("expires_at", datetime.now(timezone.utc) + timedelta(hours=1))
        transaction = Transaction(
            seller_id=seller.id,
            buyer_id=buyer.id if buyer else None,
            amount=Decimal(amount),
            currency=currency,
            commission=Decimal("0"),
            seller_net=Decimal("0"),
            status=status,
            unique_link=generate_link_token(),
            **fields,
        )
        db_session.add(transaction)
        db_session.commit()
        db_session.refresh(transaction)
        return transaction

    return _make


@pytest.fixture
def make_withdrawal(db_session):
    def _make(profile, amount="10", fee="0.3", currency="TON", method="TON", destination=TON_ADDRESS,
              status=WithdrawalStatus.PENDING, **fields) -> Withdrawal:
        withdrawal = Withdrawal(
            profile_id=profile.id,
            amount=Decimal(amount),
            fee=Decimal(fee),
            payout_amount=Decimal(amount) - Decimal(fee),
            currency=currency,
            payment_method=method,
            destination=destination,
            status=status,
            **fields,
        )
        db_session.add(withdrawal)
        db_session.commit()
        db_session.refresh(withdrawal)
        return withdrawal

    return _make


@pytest.fixture
def link_referral(db_session):
    def _link(referrer, referred, level=1):
        db_session.add(Referral(referrer_id=referrer.id, referred_id=referred.id, level=level))
        db_session.commit()

    return _link


@pytest.fixture
def fake_custody():
    """Кастодиальный кошелек без сети: баланс и перевод настраиваются в тесте."""
    custody = MagicMock()
    custody.is_configured.return_value = True
    custody.ensure_ready.return_value = None
    custody.get_balance = AsyncMock(return_value=Decimal("1000"))
    custody.transfer = AsyncMock(
        return_value=TransferReceipt(reference="tx-hash-1", destination=TON_ADDRESS, amount=Decimal("1"))
    )
    return custody


# --- HTTP ---

@pytest.fixture
def app(db_session):
    from tonescrow.dependencies import get_db
    from tonescrow.main import app as fastapi_app

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncClient:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def _auth_headers(profile: Profile) -> dict:
    from tonescrow.services.auth import create_access_token
    token = create_access_token({"sub": str(profile.id), "tg_id": str(profile.telegram_id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers_for():
    return _auth_headers


@pytest.fixture
def test_user(make_profile) -> Profile:
    return make_profile(balance="100")


@pytest.fixture
def user_auth_headers(test_user) -> dict:
    return _auth_headers(test_user)


@pytest.fixture
def admin_user(make_profile) -> Profile:
    return make_profile(telegram_id=999)


@pytest.fixture
def admin_auth_headers(admin_user) -> dict:
    return _auth_headers(admin_user)
