"""Failure taxonomy shared by the store client and the UI workflows."""

from __future__ import annotations

from typing import Optional


class StoreError(RuntimeError):
    """Raised when a call to the remote store fails."""


class NetworkFailure(StoreError):
    """No response was received (connection error or timeout)."""


class ServerRejection(StoreError):
    """The store answered with a non-2xx status."""

    def __init__(self, status_code: int, detail: Optional[str] = None) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(detail or f"Request failed with status {status_code}")

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code in (409, 429)

    @property
    def is_daily_limit(self) -> bool:
        # The store reports its one-per-24h rule with a 400/409/429 naming the window
        return self.status_code in (400, 409, 429) and "24" in (self.detail or "")


class ValidationFailure(ValueError):
    """Client-side validation rejected an action before any network call."""


__all__ = ["StoreError", "NetworkFailure", "ServerRejection", "ValidationFailure"]
