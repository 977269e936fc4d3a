"""One-shot notices carried in the signed session cookie until the next page render."""
from __future__ import annotations

from fastapi import Request

FLASH_KEY = "flash_messages"


def flash(request: Request, message: str, category: str = "info") -> None:
    request.session[FLASH_KEY] = [
        *request.session.get(FLASH_KEY, []),
        {"message": message, "category": category},
    ]


def consume_flashes(request: Request) -> list[dict[str, str]]:
    return request.session.pop(FLASH_KEY, [])
