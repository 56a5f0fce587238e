"""Login / logout API test cases."""
import pytest
from httpx import AsyncClient
from framework.config import settings
from framework.logging.audit import ALLOW, DENY
from framework.security import Role, TokenCodec

LOGIN_URL = f"{settings.API_V1_AUTH_PREFIX}/login"
TENANTS_URL = settings.API_V1_TENANTS_PREFIX
PASSWORD = "password123"


class TestLogin:

    @pytest.mark.asyncio
    async def test_login_success(self, client: AsyncClient, world, codec, audit_sink):
        """Login returns a token bound to the user's tenant and role, and sets the cookie."""
        response = await client.post(LOGIN_URL, json={"email": "alice@demo.io", "password": PASSWORD})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["token_type"] == "bearer"
        assert data["user"] == {"id": world.alice.id, "tenant_id": world.demo.id, "role": "standard_user"}
        assert response.cookies.get(settings.ACCESS_TOKEN_COOKIE_NAME) == data["access_token"]

        claims = codec.decode(data["access_token"])
        assert claims.user_id == world.alice.id
        assert claims.tenant_id == world.demo.id
        assert claims.role is Role.STANDARD_USER

        assert audit_sink.filter(action="auth:login", outcome=ALLOW, actor_id=world.alice.id)

    @pytest.mark.asyncio
    async def test_email_is_case_insensitive(self, client: AsyncClient, world):
        response = await client.post(LOGIN_URL, json={"email": "Alice@Demo.IO", "password": PASSWORD})
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_super_admin_token_has_no_tenant(self, client: AsyncClient, world):
        response = await client.post(LOGIN_URL, json={"email": "root@platform.io", "password": PASSWORD})

        assert response.status_code == 200
        assert response.json()["data"]["user"]["tenant_id"] is None

    @pytest.mark.asyncio
    async def test_unknown_email_and_wrong_password_look_the_same(self, client: AsyncClient, world, audit_sink):
        wrong_password = await client.post(LOGIN_URL, json={"email": "alice@demo.io", "password": "nope-nope"})
        unknown_email = await client.post(LOGIN_URL, json={"email": "nobody@demo.io", "password": PASSWORD})

        assert wrong_password.status_code == unknown_email.status_code == 401
        assert wrong_password.json() == unknown_email.json()
        assert wrong_password.headers["WWW-Authenticate"] == "Bearer"
        assert len(audit_sink.filter(action="auth:login", outcome=DENY)) == 2

    @pytest.mark.asyncio
    async def test_suspended_tenant_cannot_login(self, client: AsyncClient, world, auth):
        await client.post(f"{TENANTS_URL}/{world.demo.id}/suspend", headers=auth(world.super_admin))

        response = await client.post(LOGIN_URL, json={"email": "alice@demo.io", "password": PASSWORD})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_fields(self, client: AsyncClient, world):
        response = await client.post(LOGIN_URL, json={"email": "alice@demo.io"})
        assert response.status_code == 422
        assert response.json()["code"] == 422


class TestTokenTransport:

    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient, world):
        response = await client.get(f"{TENANTS_URL}/{world.demo.id}/projects")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["message"] == "Could not validate credentials"

    @pytest.mark.asyncio
    async def test_cookie_token_accepted(self, client: AsyncClient, world):
        await client.post(LOGIN_URL, json={"email": "alice@demo.io", "password": PASSWORD})

        # The client replays the cookie set by login
        response = await client.get(f"{TENANTS_URL}/{world.demo.id}/projects")

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_token_signed_with_other_key(self, client: AsyncClient, world):
        token = TokenCodec("not-the-server-key").issue(world.alice.id, world.demo.id, Role.STANDARD_USER).token
        headers = {"Authorization": f"Bearer {token}"}

        response = await client.get(f"{TENANTS_URL}/{world.demo.id}/projects", headers=headers)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_logout_clears_cookie(self, client: AsyncClient, world):
        await client.post(LOGIN_URL, json={"email": "alice@demo.io", "password": PASSWORD})

        response = await client.post(f"{settings.API_V1_AUTH_PREFIX}/logout")

        assert response.status_code == 200
        assert client.cookies.get(settings.ACCESS_TOKEN_COOKIE_NAME) is None
