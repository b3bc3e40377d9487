"""Utility helpers for the IzleNext service."""

from __future__ import annotations

import re
import unicodedata
from typing import Any
from urllib.parse import parse_qsl


MISSING_MARKERS = frozenset({"", "N/A", "n/a"})


def slugify(value: str) -> str:
    """Return a URL-friendly slug."""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-zA-Z0-9]+", "-", value)
    value = value.strip("-")
    value = re.sub(r"-+", "-", value)
    return value.lower() or "category"


def split_item_id(item_id: str) -> tuple[str | None, str]:
    """Split ``tv_1234`` into its media type prefix and raw provider id."""

    prefix, separator, raw = str(item_id).partition("_")
    if not separator:
        return None, prefix
    if prefix not in {"tv", "movie"}:
        return None, str(item_id)
    return prefix, raw


def parse_query_string(params: str | None) -> dict[str, str]:
    """Parse ``a=1&b=2`` into an ordered dictionary, ignoring blanks."""

    if not params:
        return {}
    return {key: value for key, value in parse_qsl(params.lstrip("?&")) if key}


def clean_text(value: Any) -> str | None:
    """Return stripped text, or ``None`` for blanks and ``N/A`` markers."""

    if value is None:
        return None
    text = str(value).strip()
    if text in MISSING_MARKERS:
        return None
    return text


def parse_year(value: Any) -> int | None:
    """Extract a four digit year from a provider date string."""

    if isinstance(value, int):
        return value if 1800 <= value <= 2200 else None
    if not isinstance(value, str) or len(value) < 4:
        return None
    try:
        return int(value[:4])
    except ValueError:
        return None
