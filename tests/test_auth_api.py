"""
Authentication API tests: registration, login, current user, token refresh
"""
from datetime import timedelta

import pytest

from conftest import PASSWORD, auth_headers, make_user
from maraude_tracker.auth.utils import create_access_token
from maraude_tracker.models.db_models import UserRole


def registration(association, **fields) -> dict:
    payload = {
        "firstName": "Camille",
        "lastName": "Martin",
        "email": "Camille.Martin@Example.org",
        "password": PASSWORD,
        "associationId": str(association.id),
    }
    payload.update(fields)
    return payload


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_volunteer(self, client, association):
        response = await client.post("/api/auth/register", json=registration(association))
        assert response.status_code == 201
        data = response.json()
        assert data["tokenType"] == "bearer"
        assert data["accessToken"]
        assert data["user"]["email"] == "camille.martin@example.org"
        assert data["user"]["role"] == "volunteer"
        assert data["user"]["association"]["name"] == association.name
        assert "hashedPassword" not in data["user"]

    @pytest.mark.asyncio
    async def test_register_coordinator(self, client, association):
        response = await client.post("/api/auth/register", json=registration(association, role="coordinator"))
        assert response.status_code == 201
        assert response.json()["user"]["role"] == "coordinator"

    @pytest.mark.asyncio
    async def test_admin_role_cannot_be_self_assigned(self, client, association):
        response = await client.post("/api/auth/register", json=registration(association, role="admin"))
        assert response.status_code == 400
        assert "role" in response.json()["details"]

    @pytest.mark.asyncio
    async def test_duplicate_email(self, client, association, volunteer):
        response = await client.post("/api/auth/register", json=registration(association, email=volunteer.email.upper()))
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_inactive_association(self, client, db, association):
        association.is_active = False
        db.commit()
        response = await client.post("/api/auth/register", json=registration(association))
        assert response.status_code == 400
        assert response.json()["error"] == "Association is not active"

    @pytest.mark.asyncio
    async def test_unknown_association(self, client, association):
        payload = registration(association, associationId="00000000-0000-4000-8000-000000000000")
        response = await client.post("/api/auth/register", json=payload)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_short_password(self, client, association):
        response = await client.post("/api/auth/register", json=registration(association, password="123"))
        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"
        assert "password" in response.json()["details"]


class TestLogin:
    @pytest.mark.asyncio
    async def test_login(self, client, volunteer):
        response = await client.post("/api/auth/login", json={"email": volunteer.email, "password": PASSWORD})
        assert response.status_code == 200
        token = response.json()["accessToken"]

        me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["id"] == str(volunteer.id)

    @pytest.mark.asyncio
    async def test_email_is_case_insensitive(self, client, volunteer):
        response = await client.post("/api/auth/login", json={"email": volunteer.email.upper(), "password": PASSWORD})
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_wrong_password(self, client, volunteer):
        response = await client.post("/api/auth/login", json={"email": volunteer.email, "password": "wrong-one"})
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid credentials"}

    @pytest.mark.asyncio
    async def test_unknown_email(self, client, association):
        response = await client.post("/api/auth/login", json={"email": "nobody@example.org", "password": PASSWORD})
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid credentials"

    @pytest.mark.asyncio
    async def test_inactive_user(self, client, db, association):
        user = make_user(db, association, UserRole.VOLUNTEER, "parti@example.org", is_active=False)
        response = await client.post("/api/auth/login", json={"email": user.email, "password": PASSWORD})
        assert response.status_code == 401
        assert response.json()["error"] == "User account is inactive"

    @pytest.mark.asyncio
    async def test_inactive_association(self, client, db, association, volunteer):
        association.is_active = False
        db.commit()
        response = await client.post("/api/auth/login", json={"email": volunteer.email, "password": PASSWORD})
        assert response.status_code == 401
        assert response.json()["error"] == "Association is inactive"


class TestToken:
    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get("/api/auth/me")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_garbage_token(self, client):
        response = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_expired_token(self, client, volunteer):
        token = create_access_token({"user_id": volunteer.id}, expires_delta=timedelta(minutes=-1))
        response = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_deactivated_user_token(self, client, db, volunteer):
        headers = auth_headers(volunteer)
        volunteer.is_active = False
        db.commit()
        response = await client.get("/api/auth/me", headers=headers)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_refresh(self, client, coordinator):
        response = await client.post("/api/auth/refresh", headers=auth_headers(coordinator))
        assert response.status_code == 200
        assert response.json()["user"]["role"] == "coordinator"
        assert response.json()["accessToken"]
