from decimal import Decimal
from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Настройки базы данных
    DATABASE_USER: str
    DATABASE_PASSWORD: str
    DATABASE_HOST: str
    DATABASE_PORT: int
    DATABASE_NAME: str

    # Telegram
    TELEGRAM_BOT_TOKEN: str
    TELEGRAM_BOT_USERNAME: str
    MINI_APP_URL: str = ""
    ADMIN_TELEGRAM_IDS_STR: str = Field(alias="ADMIN_TELEGRAM_IDS")
    ADMIN_CHAT_ID: int | None = None

    # Настройки JWT токенов
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7 # 7 дней

    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    RATE_LIMIT_ENABLED: bool = True
    SCHEDULER_ENABLED: bool = True

    # TON сеть и кастодиальный кошелек
    TONCENTER_API_URL: str = "https://toncenter.com/api/v2"
    TONCENTER_API_KEY: str = ""
    TONAPI_KEY: str = ""
    TON_IS_TESTNET: bool = False
    # Пароль, из которого выводится ключ шифрования мнемоники
    MNEMONIC_PASSPHRASE: str = ""
    # Запас на комиссию сети при отправке (в TON)
    TON_NETWORK_FEE_RESERVE: Decimal = Decimal("0.05")
    TON_BALANCE_TIMEOUT_SECONDS: float = 15.0
    TON_TRANSFER_TIMEOUT_SECONDS: float = 60.0

    # Интервалы фоновых задач (в секундах)
    TON_MONITOR_INTERVAL_SECONDS: int = 30
    AUTO_WITHDRAW_INTERVAL_SECONDS: int = 60
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 60
    MAINTENANCE_CHECK_INTERVAL_SECONDS: int = 60
    AUTO_WITHDRAW_BATCH_SIZE: int = 5
    # Пауза между выплатами в одном проходе (seqno кошелька должен успеть обновиться)
    AUTO_WITHDRAW_DELAY_SECONDS: float = 2.0
    # Входящие платежи от этой суммы дублируются админам
    HIGH_VALUE_TX_ALERT_TON: Decimal = Decimal("50")

    @property
    def ADMIN_TELEGRAM_IDS(self) -> List[int]:
        return [int(admin_id.strip()) for admin_id in self.ADMIN_TELEGRAM_IDS_STR.split(',') if admin_id.strip()]

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}"

    @property
    def DATABASE_URL(self) -> str:
        return f"postgresql+psycopg2://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"

    model_config = SettingsConfigDict(env_file=".env", populate_by_name=True)

settings = Settings()
