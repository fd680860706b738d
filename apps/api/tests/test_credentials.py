from __future__ import annotations

import re
from collections.abc import Iterator

import pytest

from backoffice.entitlements.credentials import (
    LINK_SUFFIX_BYTES,
    SLUG_MAX_LENGTH,
    generate_unique_link,
    new_link,
    new_token,
    slugify_seed,
)
from backoffice.errors import ConflictError


def test_new_token_is_fixed_length_hex() -> None:
    token = new_token()
    assert re.fullmatch(r"[0-9a-f]{32}", token)
    assert new_token() != token


@pytest.mark.parametrize(
    ("seed", "expected"),
    [
        ("Acme Corp", "acme-corp"),
        ("  --Hello,   World!!--  ", "hello-world"),
        ("ÄÖÜ Industries", "industries"),
        ("x", "e"),
        ("!!!", "e"),
        ("A" * 50, "a" * SLUG_MAX_LENGTH),
    ],
)
def test_slugify_seed(seed: str, expected: str) -> None:
    assert slugify_seed(seed) == expected


def test_new_link_joins_slug_and_hex_suffix() -> None:
    link = new_link("Acme Corp")
    slug, suffix = link.rsplit("-", 1)
    assert slug == "acme-corp"
    assert re.fullmatch(rf"[0-9a-f]{{{LINK_SUFFIX_BYTES * 2}}}", suffix)


def test_new_link_without_seed_is_bare_suffix() -> None:
    assert re.fullmatch(rf"[0-9a-f]{{{LINK_SUFFIX_BYTES * 2}}}", new_link(None))
    assert re.fullmatch(rf"[0-9a-f]{{{LINK_SUFFIX_BYTES * 2}}}", new_link(""))


def test_unique_links_from_colliding_seed_never_repeat() -> None:
    taken: set[str] = set()
    for _ in range(10_000):
        link = generate_unique_link("Same Company", taken.__contains__, 5)
        assert link not in taken
        taken.add(link)
    assert len(taken) == 10_000


def test_generate_unique_link_retries_on_collision() -> None:
    candidates: Iterator[str] = iter(["dup-1", "dup-1", "dup-2"])
    taken = {"dup-1"}

    link = generate_unique_link("seed", taken.__contains__, 5, generator=lambda _seed: next(candidates))

    assert link == "dup-2"


def test_generate_unique_link_gives_up_after_max_attempts() -> None:
    with pytest.raises(ConflictError) as exc_info:
        generate_unique_link("seed", lambda _candidate: True, 3, generator=lambda _seed: "always-taken")
    assert exc_info.value.code == "ACCESS_LINK_EXHAUSTED"
    assert exc_info.value.status_code == 409
