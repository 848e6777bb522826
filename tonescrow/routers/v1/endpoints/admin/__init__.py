# tonescrow/routers/v1/endpoints/admin/__init__.py

from fastapi import APIRouter, Depends
from tonescrow.dependencies import get_admin_user

from . import (
    general,
    users,
    transactions,
    withdrawals,
    deposits,
    settings,
    custody,
    tasks,
    broadcasts,
)

# Зависимость get_admin_user применяется ко ВСЕМ эндпоинтам этого роутера.
router = APIRouter(
    tags=["Admin"],
    dependencies=[Depends(get_admin_user)]
)

# /admin/dashboard
router.include_router(general.router)

# /admin/users, /admin/users/{id}/block, /admin/users/{id}/adjust-balance
router.include_router(users.router, prefix="/users")

# /admin/transactions, /admin/transactions/{id}/confirm-payment, /admin/transactions/{id}/resolve
router.include_router(transactions.router, prefix="/transactions")

# /admin/withdrawals/{id}/approve|reject|process|reconcile
router.include_router(withdrawals.router, prefix="/withdrawals")

# /admin/deposits/{id}/approve|reject
router.include_router(deposits.router, prefix="/deposits")

# /admin/settings
router.include_router(settings.router, prefix="/settings")

# /admin/custody/mnemonic, /admin/custody/balance, /admin/custody/transfer
router.include_router(custody.router, prefix="/custody")

# /admin/tasks, /admin/tasks/run
router.include_router(tasks.router, prefix="/tasks")

# /admin/broadcasts, /admin/broadcasts/{id}
router.include_router(broadcasts.router, prefix="/broadcasts")
