# tonescrow/routers/v1/api.py

from fastapi import APIRouter

from tonescrow.routers.v1.endpoints import auth, user, products, transactions, withdrawals, deposits
from tonescrow.routers.v1.endpoints import admin as admin_v1_router

# Главный роутер API версии v1; в main.py подключается с префиксом /api
api_router = APIRouter(prefix="/v1")

# Пользовательские эндпоинты
api_router.include_router(auth.router, tags=["Authentication"])
api_router.include_router(user.router, tags=["Users"])
api_router.include_router(products.router, tags=["Products"])
api_router.include_router(transactions.router, tags=["Transactions"])
api_router.include_router(withdrawals.router, tags=["Withdrawals"])
api_router.include_router(deposits.router, tags=["Deposits"])

# Админские эндпоинты
api_router.include_router(admin_v1_router.router, prefix="/admin")
