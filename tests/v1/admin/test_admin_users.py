# tests/v1/admin/test_admin_users.py

from decimal import Decimal

from httpx import AsyncClient

from tonescrow.crud import profile as crud_profile


async def test_list_and_search_users(client: AsyncClient, admin_auth_headers: dict, make_profile):
    first = make_profile()
    make_profile()

    response = await client.get("/api/v1/admin/users", params={"size": 2}, headers=admin_auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total_items"] == 3
    assert data["total_pages"] == 2
    assert len(data["items"]) == 2

    response = await client.get(
        "/api/v1/admin/users", params={"search": first.telegram_username}, headers=admin_auth_headers
    )
    data = response.json()
    assert data["total_items"] == 1
    assert data["items"][0]["id"] == first.id


async def test_block_and_unblock_user(client: AsyncClient, admin_auth_headers: dict, test_user, user_auth_headers):
    response = await client.post(
        f"/api/v1/admin/users/{test_user.id}/block", json={"reason": "Fraud"}, headers=admin_auth_headers
    )
    assert response.status_code == 200
    assert response.json()["is_blocked"] is True
    assert response.json()["blocked_reason"] == "Fraud"

    # Повторная блокировка ничего не меняет
    response = await client.post(
        f"/api/v1/admin/users/{test_user.id}/block", json={"reason": "Again"}, headers=admin_auth_headers
    )
    assert response.status_code == 200
    assert response.json()["code"] == "already_processed"

    # Заблокированный видит профиль, но не может выводить средства
    response = await client.get("/api/v1/users/me", headers=user_auth_headers)
    assert response.status_code == 200
    response = await client.post(
        "/api/v1/withdrawals",
        json={"amount": "10", "destination": "UQ" + "A" * 46},
        headers=user_auth_headers,
    )
    assert response.status_code == 403

    response = await client.post(f"/api/v1/admin/users/{test_user.id}/unblock", headers=admin_auth_headers)
    assert response.status_code == 200
    assert response.json()["is_blocked"] is False


async def test_block_unknown_user(client: AsyncClient, admin_auth_headers: dict):
    response = await client.post("/api/v1/admin/users/424242/block", json={"reason": "x"}, headers=admin_auth_headers)
    assert response.status_code == 404


async def test_adjust_balance(client: AsyncClient, db_session, admin_auth_headers: dict, test_user):
    response = await client.post(
        f"/api/v1/admin/users/{test_user.id}/adjust-balance",
        json={"delta": "-40", "currency": "TON", "reason": "Refund of late payment"},
        headers=admin_auth_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["profile_id"] == test_user.id
    assert Decimal(str(data["balance"])) == Decimal("60")

    response = await client.post(
        f"/api/v1/admin/users/{test_user.id}/adjust-balance",
        json={"delta": "5000", "currency": "MMK", "reason": "KBZPay top-up"},
        headers=admin_auth_headers,
    )
    assert response.status_code == 200
    assert crud_profile.get_balance(db_session, test_user.id, "MMK") == Decimal("5000")


async def test_adjust_balance_cannot_go_negative(client: AsyncClient, db_session, admin_auth_headers: dict, test_user):
    response = await client.post(
        f"/api/v1/admin/users/{test_user.id}/adjust-balance",
        json={"delta": "-100.5", "reason": "Chargeback"},
        headers=admin_auth_headers,
    )

    assert response.status_code == 409
    assert response.json()["code"] == "insufficient_funds"
    assert crud_profile.get_balance(db_session, test_user.id, "TON") == Decimal("100")
