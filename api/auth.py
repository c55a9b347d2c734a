"""``X-API-Key`` header check for the local backup API."""
from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status


def _unauthorized(reason: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=reason)


class APIKeyAuth:
    """FastAPI dependency comparing the request header with a fixed key.

    An empty or missing key locks the API: every request gets 401.
    """

    def __init__(self, expected_key: Optional[str]) -> None:
        self._key = (expected_key or "").strip()

    @property
    def configured(self) -> bool:
        return bool(self._key)

    def __call__(self, x_api_key: Optional[str] = Header(None)) -> str:
        if not self.configured:
            raise _unauthorized("API key is not configured.")
        offered = (x_api_key or "").strip()
        if not offered or not secrets.compare_digest(offered.encode("utf-8"), self._key.encode("utf-8")):
            raise _unauthorized("Invalid or missing API key.")
        return self._key


__all__ = ["APIKeyAuth"]
