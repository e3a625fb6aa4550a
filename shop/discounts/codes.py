from __future__ import annotations

import logging
import re
import secrets
import string
from typing import Awaitable, Callable, Optional

from shop.discounts.errors import CodeGenerationExhausted

logger = logging.getLogger(__name__)

ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8
MAX_ATTEMPTS = 10

_CODE_RE = re.compile(r"^[A-Z0-9_-]+$", re.IGNORECASE)
MIN_CODE_LEN = 3
MAX_CODE_LEN = 50


def normalize_code(code: str) -> str:
    return code.strip().upper()


def is_valid_code(code: Optional[str]) -> bool:
    if not code:
        return False
    code = code.strip()
    return MIN_CODE_LEN <= len(code) <= MAX_CODE_LEN and bool(_CODE_RE.match(code))


def generate_code(length: int = CODE_LENGTH, choice: Callable[[str], str] = secrets.choice) -> str:
    return "".join(choice(ALPHABET) for _ in range(length))


async def generate_unique_code(
    exists: Callable[[str], Awaitable[bool]],
    *,
    length: int = CODE_LENGTH,
    attempts: int = MAX_ATTEMPTS,
    choice: Callable[[str], str] = secrets.choice,
) -> str:
    """
    Генерирует код, которого ещё нет в хранилище.
    Коллизия проверяется на каждой попытке; после `attempts` неудач
    поднимается CodeGenerationExhausted, последний код не переиспользуется.
    """
    for attempt in range(1, attempts + 1):
        code = generate_code(length, choice)
        if not await exists(code):
            return code
        logger.warning("Generated discount code collided (attempt %d/%d)", attempt, attempts)

    raise CodeGenerationExhausted(attempts)
