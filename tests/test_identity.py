import httpx
import pytest

from app.services.identity import IdentityClient, bearer_token


@pytest.mark.parametrize("header,expected", [
    ("Bearer abc", "abc"),
    ("Bearer   abc ", "abc"),
    ("Bearer ", None),
    ("Basic abc", None),
    (None, None),
])
def test_bearer_token(header, expected):
    assert bearer_token(header) == expected


def client_for(handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return IdentityClient(http, base_url="https://auth.test/", api_key="anon")


@pytest.mark.asyncio
async def test_get_user():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"id": "u1", "email": "a@example.com", "role": "authenticated"})

    user = await client_for(handler).get_user("tok")

    assert user.id == "u1"
    assert user.email == "a@example.com"
    assert user.raw["role"] == "authenticated"
    assert str(seen[0].url) == "https://auth.test/auth/v1/user"
    assert seen[0].headers["apikey"] == "anon"
    assert seen[0].headers["authorization"] == "Bearer tok"


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(401, json={"msg": "invalid JWT"}),
    httpx.Response(200, text="<html>"),
    httpx.Response(200, json={"email": "no-id@example.com"}),
])
async def test_get_user_rejections(response):
    assert await client_for(lambda request: response).get_user("tok") is None


@pytest.mark.asyncio
async def test_get_user_provider_down():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    assert await client_for(handler).get_user("tok") is None
