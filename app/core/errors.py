from __future__ import annotations

from fastapi import HTTPException


def bad_request(code: str, message: str, **extra):
    raise HTTPException(status_code=400, detail={"code": code, "message": message, **extra})


def not_found(code: str, message: str):
    raise HTTPException(status_code=404, detail={"code": code, "message": message})


def conflict(code: str, message: str):
    raise HTTPException(status_code=409, detail={"code": code, "message": message})


class FeedFetchError(RuntimeError):
    """The external detection feed could not be fetched for this cycle."""


class StoreError(RuntimeError):
    """A read or write against the event/alert store failed."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class InvalidTransition(ValueError):
    """Alert status may only move forward (open -> acknowledged -> resolved)."""


class NotFoundError(LookupError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class MissingFields(ValueError):
    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"Missing required fields: {', '.join(missing)}")
        self.missing = missing
