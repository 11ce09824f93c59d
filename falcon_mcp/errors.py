from __future__ import annotations

from typing import Any


class FalconError(RuntimeError):
    """Base class for every failure a tool call can report."""


class AuthenticationError(FalconError):
    def __init__(self, message: str):
        super().__init__(f"Authentication failed: {message}")


class ApiRequestError(FalconError):
    def __init__(self, message: str, status: int | None = None, payload: Any = None):
        super().__init__(message)
        self.status = status
        self.payload = payload


class UnknownToolError(FalconError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


def error_message(payload: Any) -> str | None:
    """
    Pull the most useful message out of a Falcon error body.
    Only the first entry of ``errors`` is surfaced.
    """
    if not isinstance(payload, dict):
        return None
    errors = payload.get("errors")
    if isinstance(errors, list) and errors:
        first = errors[0]
        if isinstance(first, dict) and first.get("message"):
            return str(first["message"])
    if payload.get("message"):
        return str(payload["message"])
    return None
