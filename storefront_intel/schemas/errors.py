"""
schemas/errors.py — Structured error response model

Returned by the HTTPException and RequestValidationError handlers in main.py.
Tracking endpoints rarely produce these: store and destination failures
are absorbed and reported in the normal response body instead.
"""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    status_code: int
    request_id: str = ""
    path: str = ""
    detail: list | None = None
