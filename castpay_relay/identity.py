"""
Farcaster username resolution via the Neynar API.

The relay itself only ever handles resolved addresses; this lookup exists
for clients that want to pay "@alice" instead of 0x....
"""

import time
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from .errors import UserNotFoundError

logger = structlog.get_logger()


@dataclass
class ResolvedUser:
    """A username mapped to its first verified ETH address."""

    username: str
    address: str
    source: str = "neynar"
    display_name: Optional[str] = None
    fid: Optional[int] = None


class UsernameResolver:
    """Neynar user-by-username lookups with a short TTL cache."""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.neynar.com/v2/farcaster",
        cache_ttl_seconds: float = 300.0,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.cache_ttl_seconds = cache_ttl_seconds
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._cache: dict[str, tuple[float, ResolvedUser]] = {}

    @staticmethod
    def normalize(username: str) -> str:
        return username.strip().lstrip("@").lower()

    async def close(self) -> None:
        await self.client.aclose()

    async def resolve(self, username: str) -> ResolvedUser:
        """
        Resolve a username (with or without a leading @).

        Raises:
            UserNotFoundError: unknown user, no verified address, API not
                configured, or the API call failed
        """
        name = self.normalize(username)
        if not name:
            raise UserNotFoundError("Username required")

        cached = self._cache.get(name)
        if cached and time.monotonic() - cached[0] < self.cache_ttl_seconds:
            return cached[1]

        if not self.api_key:
            raise UserNotFoundError("User not found or no verified address")

        try:
            response = await self.client.get(
                f"{self.base_url}/user/by_username",
                params={"username": name},
                headers={"api_key": self.api_key},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error("neynar_lookup_failed", username=name, error=str(e))
            raise UserNotFoundError("User not found or no verified address") from e

        user = data.get("user") or {}
        addresses = (user.get("verified_addresses") or {}).get("eth_addresses") or []
        if not addresses:
            raise UserNotFoundError("User not found or no verified address")

        resolved = ResolvedUser(
            username=name,
            address=addresses[0],
            display_name=user.get("display_name"),
            fid=user.get("fid"),
        )
        self._cache[name] = (time.monotonic(), resolved)
        self._evict_expired()

        logger.info("username_resolved", username=name, address=resolved.address)
        return resolved

    def _evict_expired(self) -> None:
        now = time.monotonic()
        expired = [k for k, (at, _) in self._cache.items() if now - at >= self.cache_ttl_seconds]
        for key in expired:
            del self._cache[key]
