"""Helpers for logging signed device cloud URLs safely."""

from __future__ import annotations

import re

_BEWIT_FIRST = re.compile(r"\?bewit=[^ &]+")
_BEWIT_LATER = re.compile(r"&bewit=[^ &]+")


def remove_bewit(url: str) -> str:
    """Strip the ``bewit`` signature from a URL, keeping every other argument.

    >>> remove_bewit("https://cloud.example/logs?bewit=abc&page=2")
    'https://cloud.example/logs?page=2'
    """
    cleaned = _BEWIT_FIRST.sub("?", url)
    cleaned = _BEWIT_LATER.sub("", cleaned)
    cleaned = cleaned.replace("?&", "?")
    if cleaned.endswith("?"):
        cleaned = cleaned[:-1]
    return cleaned
