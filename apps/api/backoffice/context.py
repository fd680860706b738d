from __future__ import annotations

import re
import uuid
from contextvars import ContextVar, Token

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

MAX_CORRELATION_ID_LENGTH = 128
_CORRELATION_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]+$")


def is_valid_correlation_id(value: str | None) -> bool:
    return bool(value) and len(value) <= MAX_CORRELATION_ID_LENGTH and _CORRELATION_ID_PATTERN.match(value) is not None


def accept_correlation_id(raw: str | None) -> str:
    """Returns the caller's id when it is safe to log and echo, else a fresh one."""
    return raw if raw is not None and is_valid_correlation_id(raw) else str(uuid.uuid4())


def set_correlation_id(value: str | None) -> Token[str | None]:
    return correlation_id_var.set(value)


def reset_correlation_id(token: Token[str | None]) -> None:
    correlation_id_var.reset(token)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()
