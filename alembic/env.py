# alembic/env.py

import sys
from os.path import abspath, dirname
# Добавляем путь к проекту, чтобы импорты работали
sys.path.insert(0, abspath(dirname(dirname(__file__))))

from logging.config import fileConfig
from sqlalchemy import engine_from_config
from sqlalchemy.pool import NullPool
from alembic import context

# Настройки читают .env, URL базы берется оттуда, а не из alembic.ini
from tonescrow.core.config import settings
from tonescrow.db.session import Base
# Все модели должны быть импортированы, чтобы попасть в metadata
from tonescrow.models.profile import Profile
from tonescrow.models.referral import Referral, ReferralEarning
from tonescrow.models.product import Product
from tonescrow.models.transaction import Transaction
from tonescrow.models.withdrawal import Withdrawal
from tonescrow.models.deposit import Deposit
from tonescrow.models.setting import Setting
from tonescrow.models.rating import Rating
from tonescrow.models.broadcast import Broadcast

target_metadata = Base.metadata

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=settings.DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = engine_from_config(
        {"sqlalchemy.url": settings.DATABASE_URL},
        prefix="sqlalchemy.",
        poolclass=NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection, target_metadata=target_metadata, compare_type=True
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
