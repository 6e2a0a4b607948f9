"""API key authentication."""
from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader
from typing import Optional
import structlog
from ..config import get_settings

log = structlog.get_logger()

api_key_header = APIKeyHeader(name="X-CallBridge-Key", auto_error=False)


class APIKeyRegistry:
    """
    In-memory API key registry.

    Keys come from the comma-separated API_KEYS setting.
    """

    def __init__(self, keys: str | None = None):
        self._keys: set[str] = set()
        raw = keys if keys is not None else get_settings().API_KEYS
        for key in raw.split(","):
            key = key.strip()
            if key:
                self._keys.add(key)
        log.info("api_keys.loaded", count=len(self._keys))

    def validate(self, key: str) -> bool:
        return key in self._keys

    def add_key(self, key: str):
        self._keys.add(key)
        log.info("api_key.added")

    def remove_key(self, key: str) -> bool:
        if key in self._keys:
            self._keys.discard(key)
            log.info("api_key.removed")
            return True
        return False

    def count(self) -> int:
        return len(self._keys)


registry = APIKeyRegistry()


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)) -> str:
    """
    Dependency to verify the API key from the X-CallBridge-Key header.

    Raises:
        HTTPException: 401 if the key is missing, 403 if it is unknown
    """
    if not get_settings().REQUIRE_AUTH:
        return "anonymous"

    # No configured keys means authentication is off
    if registry.count() == 0:
        log.debug("auth.skipped", reason="no_keys_configured")
        return "anonymous"

    if not api_key:
        log.warning("auth.failed", reason="missing_key")
        raise HTTPException(
            status_code=401,
            detail="Missing API key. Provide X-CallBridge-Key header.",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if not registry.validate(api_key):
        log.warning("auth.failed", reason="invalid_key")
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    return api_key
