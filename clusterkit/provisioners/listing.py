"""Normalize backend list output into cluster names."""

from __future__ import annotations

import json
from enum import Enum
from typing import Iterable, List


class ListFormat(str, Enum):
    """Shapes of list output produced by backend commands."""

    JSON = "json"
    LINES = "lines"


def parse_list(fmt: ListFormat, raw: str, ignore: Iterable[str] = ()) -> List[str]:
    """Extract cluster names from ``raw`` list output.

    ``JSON`` expects an array of objects with a ``name`` field; entries with an
    empty name are dropped. ``LINES`` takes one name per line; blank lines and
    any line listed in ``ignore`` (a backend's "no clusters" message) are
    dropped. Order is preserved.

    Raises:
        ValueError: JSON output that is not an array of objects.
    """

    text = raw.strip()
    if not text:
        return []

    if fmt is ListFormat.JSON:
        entries = json.loads(text)
        if not isinstance(entries, list):
            raise ValueError("expected a JSON array of clusters")
        names = []
        for entry in entries:
            if not isinstance(entry, dict):
                raise ValueError("expected each cluster entry to be an object")
            name = entry.get("name") or ""
            if isinstance(name, str) and name:
                names.append(name)
        return names

    skipped = {line.strip() for line in ignore}
    names = []
    for line in text.splitlines():
        name = line.strip()
        if name and name not in skipped:
            names.append(name)
    return names
