"""
OAuth bearer token cache

One instance per adapter. Holds {token, expires_at_ms} and refreshes
ahead of the carrier-reported expiry. Not locked: two concurrent callers
that both see an expired token both fetch, and the last write wins.
"""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple

from carrier_gateway.core.config import settings
from carrier_gateway.core.utils import epoch_ms

logger = logging.getLogger(__name__)

# (access_token, expires_in_seconds)
TokenFetcher = Callable[[], Awaitable[Tuple[str, int]]]


@dataclass
class CachedToken:
    token: str
    expires_at_ms: int


class TokenCache:
    """
    Client-credentials token cache.

    Args:
        fetcher: coroutine performing the grant, returning (token, expires_in)
        clock: epoch-millisecond clock, injectable for tests
        margin_seconds: how long before carrier expiry the token is dropped
    """

    def __init__(
        self,
        fetcher: TokenFetcher,
        clock: Callable[[], int] = epoch_ms,
        margin_seconds: Optional[int] = None,
    ):
        self._fetcher = fetcher
        self._clock = clock
        self._margin_seconds = (
            settings.SHIPPING_TOKEN_REFRESH_MARGIN_SECONDS
            if margin_seconds is None else margin_seconds
        )
        self._cached: Optional[CachedToken] = None

    @property
    def cached(self) -> Optional[CachedToken]:
        return self._cached

    async def get_token(self) -> str:
        now = self._clock()
        if self._cached and now < self._cached.expires_at_ms:
            return self._cached.token

        token, expires_in = await self._fetcher()
        self._cached = CachedToken(
            token=token,
            expires_at_ms=now + (int(expires_in) - self._margin_seconds) * 1000,
        )
        logger.info(f"Carrier token refreshed, expires in {expires_in}s")
        return token

    def reset(self) -> None:
        """Drop the cached token."""
        self._cached = None
