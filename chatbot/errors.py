"""Exceptions raised by the chat service."""

from __future__ import annotations

from typing import Optional


class GatewayError(RuntimeError):
    """The upstream model call failed (network, auth, quota or bad payload)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is None:
            return base
        return f"{base} (status {self.status_code})"
