"""Conversion of free-form CSV header cells into staging column identifiers."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from ..exceptions import IdentifierError

MAX_IDENTIFIER_LENGTH = 30

_NON_ALNUM = re.compile(r"[^A-Z0-9]+")


def sanitize_identifier(raw: str, used: Iterable[str] = ()) -> str:
    """Return a schema-safe identifier for ``raw`` that does not collide with ``used``.

    The header text is upper-cased, runs of non-alphanumeric characters collapse
    into one underscore, and names that do not start with a letter get a ``C_``
    prefix. Collisions receive a ``_01``, ``_02``... suffix while staying within
    :data:`MAX_IDENTIFIER_LENGTH`.
    """

    taken = set(used)
    name = _NON_ALNUM.sub("_", raw.strip().upper()).strip("_")
    if not name or not name[0].isalpha():
        name = f"C_{name}"
    name = name[:MAX_IDENTIFIER_LENGTH]

    base = name
    counter = 1
    while name in taken:
        if counter > 99:
            raise IdentifierError(f"Too many columns collide on identifier '{base}'")
        suffix = f"_{counter:02d}"
        name = base[: MAX_IDENTIFIER_LENGTH - len(suffix)] + suffix
        counter += 1
    return name


def resolve_staging_identifiers(header: Sequence[str]) -> list[str]:
    """Sanitize a whole header, keeping identifiers unique within the file."""

    resolved: list[str] = []
    for cell in header:
        resolved.append(sanitize_identifier(cell, resolved))
    return resolved
