"""
Tests for Farcaster username resolution.
"""

import httpx
import pytest

from castpay_relay.errors import UserNotFoundError
from castpay_relay.identity import UsernameResolver

from conftest import RECIPIENT


def _resolver(handler, api_key: str = "neynar-key", **kwargs) -> UsernameResolver:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return UsernameResolver(api_key=api_key, base_url="https://neynar.test/v2/farcaster", client=client, **kwargs)


def _user_payload(addresses):
    return {
        "user": {
            "fid": 42,
            "username": "alice",
            "display_name": "Alice",
            "verified_addresses": {"eth_addresses": addresses},
        }
    }


class TestUsernameResolver:
    """Tests for UsernameResolver.resolve."""

    @pytest.mark.asyncio
    async def test_resolves_first_verified_address(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=_user_payload([RECIPIENT, "0x000000000000000000000000000000000000dEaD"]))

        resolver = _resolver(handler)
        user = await resolver.resolve("@Alice")
        await resolver.close()

        assert user.username == "alice"
        assert user.address == RECIPIENT
        assert user.fid == 42
        assert user.display_name == "Alice"
        assert requests[0].url.params["username"] == "alice"
        assert requests[0].headers["api_key"] == "neynar-key"

    @pytest.mark.asyncio
    async def test_cached(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json=_user_payload([RECIPIENT]))

        resolver = _resolver(handler)
        await resolver.resolve("alice")
        await resolver.resolve("@alice")
        await resolver.close()

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_expired_cache_refetches(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json=_user_payload([RECIPIENT]))

        resolver = _resolver(handler, cache_ttl_seconds=0)
        await resolver.resolve("alice")
        await resolver.resolve("alice")
        await resolver.close()

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_no_verified_address(self):
        resolver = _resolver(lambda request: httpx.Response(200, json=_user_payload([])))
        with pytest.raises(UserNotFoundError):
            await resolver.resolve("alice")
        await resolver.close()

    @pytest.mark.asyncio
    async def test_http_error(self):
        resolver = _resolver(lambda request: httpx.Response(404, json={"message": "not found"}))
        with pytest.raises(UserNotFoundError):
            await resolver.resolve("nobody")
        await resolver.close()

    @pytest.mark.asyncio
    async def test_no_api_key(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("should not call the API")

        resolver = _resolver(handler, api_key=None)
        with pytest.raises(UserNotFoundError):
            await resolver.resolve("alice")
        await resolver.close()

    @pytest.mark.asyncio
    async def test_empty_username(self):
        resolver = _resolver(lambda request: httpx.Response(500))
        with pytest.raises(UserNotFoundError):
            await resolver.resolve("@")
        await resolver.close()
