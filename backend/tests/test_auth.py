"""
Tests for authentication endpoints: registration, login and role guards.
"""

import pytest
from httpx import AsyncClient

from app.core.security import decode_access_token


@pytest.mark.asyncio
async def test_register_user(client: AsyncClient):
    """Successful registration returns a customer account with no points."""
    response = await client.post("/api/v1/auth/register", json={
        "email": "new@example.com",
        "username": "newuser",
        "password": "securepassword123",
        "phone": "+2348031234567",
    })
    assert response.status_code == 201
    data = response.json()
    assert data["email"] == "new@example.com"
    assert data["username"] == "newuser"
    assert data["role"] == "customer"
    assert data["loyalty_points"] == 0
    assert "hashed_password" not in data


@pytest.mark.asyncio
async def test_register_duplicate_email(client: AsyncClient, test_user):
    response = await client.post("/api/v1/auth/register", json={
        "email": "test@example.com",
        "username": "different",
        "password": "securepassword123",
    })
    assert response.status_code == 409
    assert response.json()["code"] == "account_exists"


@pytest.mark.asyncio
async def test_register_duplicate_username(client: AsyncClient, test_user):
    response = await client.post("/api/v1/auth/register", json={
        "email": "different@example.com",
        "username": "testuser",
        "password": "securepassword123",
    })
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_register_weak_password(client: AsyncClient):
    """Password under 8 chars returns 422."""
    response = await client.post("/api/v1/auth/register", json={
        "email": "weak@example.com",
        "username": "weakuser",
        "password": "short",
    })
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_register_bad_phone(client: AsyncClient):
    response = await client.post("/api/v1/auth/register", json={
        "email": "phone@example.com",
        "username": "phoneuser",
        "password": "securepassword123",
        "phone": "call-me",
    })
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_login_success(client: AsyncClient, test_user):
    """Valid credentials return a JWT carrying the user's id and role."""
    user_id = test_user.id
    response = await client.post("/api/v1/auth/login", json={
        "email": "test@example.com",
        "password": "testpassword123",
    })
    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    claims = decode_access_token(data["access_token"])
    assert claims["sub"] == str(user_id)
    assert claims["role"] == "customer"


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, test_user):
    response = await client.post("/api/v1/auth/login", json={
        "email": "test@example.com",
        "password": "wrongpassword",
    })
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_login_nonexistent_email(client: AsyncClient):
    response = await client.post("/api/v1/auth/login", json={
        "email": "nobody@example.com",
        "password": "anypassword123",
    })
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_me_requires_token(client: AsyncClient):
    response = await client.get("/api/v1/auth/me")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_me_rejects_garbage_token(client: AsyncClient):
    response = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_me_returns_profile(client: AsyncClient, test_user, auth_headers):
    response = await client.get("/api/v1/auth/me", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["username"] == "testuser"


@pytest.mark.asyncio
async def test_admin_route_forbidden_for_customer(client: AsyncClient, auth_headers):
    """Customers cannot create trips."""
    response = await client.post(
        "/api/v1/trips/",
        json={
            "origin": "Lagos",
            "destination": "Ibadan",
            "departure_time": "2099-01-01T08:00:00Z",
            "price": "3500.00",
            "total_seats": 14,
        },
        headers=auth_headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_onboards_driver(client: AsyncClient, admin_headers):
    response = await client.post(
        "/api/v1/auth/staff",
        json={
            "email": "driver2@example.com",
            "username": "driver_two",
            "password": "driverpassword123",
            "role": "driver",
        },
        headers=admin_headers,
    )
    assert response.status_code == 201
    assert response.json()["role"] == "driver"

    login = await client.post(
        "/api/v1/auth/login", json={"email": "driver2@example.com", "password": "driverpassword123"}
    )
    assert decode_access_token(login.json()["access_token"])["role"] == "driver"


@pytest.mark.asyncio
async def test_staff_onboarding_rules(client: AsyncClient, auth_headers, admin_headers):
    payload = {
        "email": "sneaky@example.com",
        "username": "sneaky",
        "password": "password12345",
        "role": "admin",
    }
    assert (await client.post("/api/v1/auth/staff", json=payload, headers=auth_headers)).status_code == 403

    payload["role"] = "customer"
    assert (await client.post("/api/v1/auth/staff", json=payload, headers=admin_headers)).status_code == 422
