from __future__ import annotations

import re
import secrets
from collections.abc import Callable

from backoffice.errors import ConflictError

TOKEN_BYTES = 16
LINK_SUFFIX_BYTES = 8
SLUG_MAX_LENGTH = 30
SLUG_MIN_LENGTH = 2
SLUG_FALLBACK = "e"

_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")


def new_token() -> str:
    """Opaque bearer secret, 32 lowercase hex characters."""
    return secrets.token_hex(TOKEN_BYTES)


def slugify_seed(seed_text: str) -> str:
    slug = _NON_SLUG_RE.sub("-", seed_text.lower()).strip("-")[:SLUG_MAX_LENGTH]
    if len(slug) < SLUG_MIN_LENGTH:
        return SLUG_FALLBACK
    return slug


def new_link(seed_text: str | None = None) -> str:
    suffix = secrets.token_hex(LINK_SUFFIX_BYTES)
    if not seed_text:
        return suffix
    return f"{slugify_seed(seed_text)}-{suffix}"


def generate_unique_link(
    seed_text: str | None,
    is_taken: Callable[[str], bool],
    max_attempts: int,
    *,
    generator: Callable[[str | None], str] = new_link,
) -> str:
    for _ in range(max(1, max_attempts)):
        candidate = generator(seed_text)
        if not is_taken(candidate):
            return candidate
    raise ConflictError(
        "Could not allocate a unique access link",
        code="ACCESS_LINK_EXHAUSTED",
        details={"attempts": max_attempts},
    )
