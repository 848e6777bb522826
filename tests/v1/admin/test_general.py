# tests/v1/admin/test_general.py

from unittest.mock import MagicMock

import pytest
from httpx import AsyncClient

from tonescrow.models.transaction import TransactionStatus as S
from tonescrow.models.withdrawal import WithdrawalStatus as W
from tonescrow.tasks_registry import TASKS


@pytest.mark.parametrize("path", [
    "/api/v1/admin/dashboard",
    "/api/v1/admin/users",
    "/api/v1/admin/settings",
    "/api/v1/admin/tasks",
    "/api/v1/admin/custody/mnemonic",
    "/api/v1/admin/broadcasts",
])
async def test_admin_endpoints_reject_regular_users(client: AsyncClient, user_auth_headers: dict, path):
    response = await client.get(path, headers=user_auth_headers)
    assert response.status_code == 403


async def test_get_admin_dashboard(
    client: AsyncClient,
    admin_auth_headers: dict,
    make_profile,
    make_transaction,
    make_withdrawal,
):
    # 1. Готовим данные для счетчиков
    seller = make_profile()
    buyer = make_profile(is_blocked=True)
    make_transaction(seller, buyer)
    make_transaction(seller, buyer, status=S.ITEM_SENT)
    make_transaction(seller, buyer, status=S.DISPUTED)
    make_withdrawal(seller)
    make_withdrawal(seller, status=W.APPROVED, needs_review=True)

    # 2. Делаем запрос к нашему API
    response = await client.get("/api/v1/admin/dashboard", headers=admin_auth_headers)

    # 3. Проверяем результат
    assert response.status_code == 200
    data = response.json()
    assert data["total_users"] == 3  # админ + продавец + покупатель
    assert data["blocked_users"] == 1
    assert data["transactions_pending_payment"] == 1
    assert data["transactions_in_progress"] == 1
    assert data["transactions_disputed"] == 1
    assert data["transactions_completed"] == 0
    assert data["withdrawals_pending"] == 1
    assert data["withdrawals_needs_review"] == 1
    assert data["deposits_pending"] == 0


async def test_get_and_patch_settings(client: AsyncClient, admin_auth_headers: dict):
    response = await client.get("/api/v1/admin/settings", headers=admin_auth_headers)
    assert response.status_code == 200
    assert response.json()["withdrawal_mode"] == "manual"

    response = await client.patch(
        "/api/v1/admin/settings",
        json={"commission_rate": "2.5", "withdrawal_mode": "auto", "bot_maintenance": True},
        headers=admin_auth_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert float(data["commission_rate"]) == 2.5
    assert data["withdrawal_mode"] == "auto"
    assert data["bot_maintenance"] is True
    # Остальные поля не тронуты
    assert float(data["referral_l1_rate"]) == 5


async def test_patch_settings_rejects_out_of_range(client: AsyncClient, admin_auth_headers: dict):
    response = await client.patch(
        "/api/v1/admin/settings", json={"commission_rate": "80"}, headers=admin_auth_headers
    )
    assert response.status_code == 422

    response = await client.patch(
        "/api/v1/admin/settings", json={"withdrawal_mode": "sometimes"}, headers=admin_auth_headers
    )
    assert response.status_code == 422


async def test_get_tasks_list(client: AsyncClient, admin_auth_headers: dict):
    response = await client.get("/api/v1/admin/tasks", headers=admin_auth_headers)

    assert response.status_code == 200
    names = {task["task_name"] for task in response.json()}
    assert {"ton_monitor", "auto_withdraw", "expire_transactions", "auto_confirm_transactions"} <= names


async def test_run_task(client: AsyncClient, admin_auth_headers: dict, mocker):
    # 1. Подменяем реальную задачу, чтобы она не ходила в сеть и в боевую БД
    fake_task = MagicMock(return_value=0)
    mocker.patch.dict(TASKS["expire_transactions"], {"function": fake_task})

    # 2. Запускаем
    response = await client.post(
        "/api/v1/admin/tasks/run", json={"task_name": "expire_transactions"}, headers=admin_auth_headers
    )

    # 3. Задача принята и выполнена в фоне
    assert response.status_code == 202
    assert response.json()["status"] == "accepted"
    fake_task.assert_called_once_with()


async def test_run_unknown_task(client: AsyncClient, admin_auth_headers: dict):
    response = await client.post(
        "/api/v1/admin/tasks/run", json={"task_name": "make_coffee"}, headers=admin_auth_headers
    )
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"
